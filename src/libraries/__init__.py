"""Runtime libraries for the Loom render service."""

from . import rendering

__all__ = ["__version__", "rendering"]

__version__ = "0.1.0"
