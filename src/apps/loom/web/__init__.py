"""Web service exposing render control and render output."""
