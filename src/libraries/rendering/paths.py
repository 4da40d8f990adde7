"""Home-relative path aliasing used in published paths and URLs."""

from __future__ import annotations

import os
from pathlib import Path


def _home(home: Path | None) -> Path:
    return home if home is not None else Path(os.path.expanduser("~"))


def alias_path(path: Path | str | None, *, home: Path | None = None) -> str:
    """Return ``path`` with the home directory replaced by ``~``.

    ``None`` and empty paths alias to the empty string.
    """

    if path is None or str(path) == "":
        return ""
    candidate = Path(path)
    home_dir = _home(home)
    try:
        relative = candidate.relative_to(home_dir)
    except ValueError:
        return candidate.as_posix()
    if str(relative) == ".":
        return "~"
    return f"~/{relative.as_posix()}"


def resolve_aliased_path(value: str, *, home: Path | None = None) -> Path:
    """Expand a leading ``~`` in ``value`` against the home directory."""

    if value == "~":
        return _home(home)
    if value.startswith("~/"):
        return _home(home) / value[2:]
    return Path(value)


__all__ = ["alias_path", "resolve_aliased_path"]
