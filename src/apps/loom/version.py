"""Version information for the Loom render service."""

LOOM_VERSION = "0.1.0"
__version__ = LOOM_VERSION
