"""Streaming rewrite of MathJax references in rendered HTML documents.

Rendered documents load MathJax from a CDN. When a preview is served the
script reference is pointed at the copy bundled with the toolchain instead::

    in:   script.src = "http://cdn.example/MathJax.js?config=TeX"
    out:  script.src = "mathjax/MathJax.js?config=TeX"

If no math markup has been seen by the time the reference is reached the
reference line is dropped, so documents without math never load MathJax.

The filter is a fold over the document's lines: :func:`rewrite_chunk` takes
the current :class:`FilterState` and one chunk and returns the next state
together with the bytes to emit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Iterator

HELPER_SEGMENT = "mathjax"
MATHJAX_BEGIN_COMMENT = b"<!-- dynamically load mathjax"
MATHJAX_CONFIG_SCRIPT = (
    b'<script type="text/x-mathjax-config">'
    b'MathJax.Hub.Config({"HTML-CSS": { minScaleAdjust: 125, availableFonts: [] }});'
    b"</script>"
)

_MATH_TOKENS = frozenset({b"\\[", b"\\(", b"<math"})

_PATTERN = re.compile(
    re.escape(MATHJAX_BEGIN_COMMENT)
    + rb"|\\\[|\\\(|<math"
    + rb'|^(?P<prefix>[ \t]*<?script.src[ \t]*=[ \t]*)"http[^"]*?(?P<resource>MathJax\.js[^"]*)"(?P<rest>[^\n]*\n?)',
    re.MULTILINE,
)


@dataclass(frozen=True)
class FilterState:
    """State threaded through successive :func:`rewrite_chunk` calls."""

    requires_helper: bool = False
    inject_config: bool = False


def rewrite_chunk(state: FilterState, chunk: bytes) -> tuple[FilterState, bytes]:
    """Rewrite one line-aligned chunk of the document.

    Patterns anchored at the start of a line assume ``chunk`` starts at a line
    boundary; feed the document line by line.
    """

    requires_helper = state.requires_helper
    pieces: list[bytes] = []
    position = 0
    for match in _PATTERN.finditer(chunk):
        pieces.append(chunk[position : match.start()])
        position = match.end()
        token = match.group(0)
        if token in _MATH_TOKENS:
            requires_helper = True
            pieces.append(token)
        elif token == MATHJAX_BEGIN_COMMENT:
            if state.inject_config:
                pieces.append(MATHJAX_CONFIG_SCRIPT + b"\n")
            pieces.append(token)
        elif requires_helper:
            pieces.append(
                match.group("prefix")
                + b'"'
                + HELPER_SEGMENT.encode("ascii")
                + b"/"
                + match.group("resource")
                + b'"'
                + match.group("rest")
            )
    pieces.append(chunk[position:])

    if requires_helper != state.requires_helper:
        state = replace(state, requires_helper=requires_helper)
    return state, b"".join(pieces)


def filter_stream(
    lines: Iterable[bytes], *, inject_config: bool = False
) -> Iterator[bytes]:
    """Apply :func:`rewrite_chunk` to every line of ``lines`` in one pass."""

    state = FilterState(inject_config=inject_config)
    for line in lines:
        state, output = rewrite_chunk(state, line)
        if output:
            yield output


def filter_file(path: Path, *, inject_config: bool = False) -> Iterator[bytes]:
    """Yield the filtered contents of ``path`` without reading it all at once."""

    with path.open("rb") as handle:
        yield from filter_stream(handle, inject_config=inject_config)


__all__ = [
    "FilterState",
    "HELPER_SEGMENT",
    "MATHJAX_BEGIN_COMMENT",
    "MATHJAX_CONFIG_SCRIPT",
    "filter_file",
    "filter_stream",
    "rewrite_chunk",
]
