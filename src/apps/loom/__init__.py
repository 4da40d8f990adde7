"""Loom: preview server and CLI for R Markdown renders."""

from .version import LOOM_VERSION, __version__

__all__ = ["LOOM_VERSION", "__version__"]
