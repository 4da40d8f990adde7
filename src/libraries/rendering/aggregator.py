"""Capture of render process output and completion marker detection."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from .models import OutputKind

OUTPUT_CREATED_MARKER = "Output created: "


class OutputAggregator:
    """Accumulate output chunks for one render job in arrival order.

    Both streams share a single capture so the marker scan sees stdout and
    stderr interleaved exactly as the supervisor received them.
    """

    def __init__(self) -> None:
        self._chunks: list[tuple[OutputKind, str]] = []

    def __len__(self) -> int:
        return len(self._chunks)

    def append(self, kind: OutputKind, text: str) -> None:
        if text:
            self._chunks.append((kind, text))

    def chunks(self, kind: OutputKind | None = None) -> Iterator[tuple[OutputKind, str]]:
        for entry in self._chunks:
            if kind is None or entry[0] is kind:
                yield entry

    def text(self) -> str:
        """Return the unified capture of every chunk received so far."""

        return "".join(text for _, text in self._chunks)

    def find_output_file(self, base_dir: Path) -> Path | None:
        """Return the artifact announced by the first completion marker line.

        Relative paths are resolved against ``base_dir`` (the directory of the
        rendered document). Only call this once the process has exited; a
        partially received marker would yield a truncated path.
        """

        for line in self.text().split("\n"):
            if not line.startswith(OUTPUT_CREATED_MARKER):
                continue
            name = line[len(OUTPUT_CREATED_MARKER) :].strip()
            if not name:
                continue
            return base_dir / Path(name).expanduser()
        return None

    def clear(self) -> None:
        self._chunks.clear()


__all__ = ["OUTPUT_CREATED_MARKER", "OutputAggregator"]
