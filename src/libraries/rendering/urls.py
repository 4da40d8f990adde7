"""URL scheme used to serve render output.

The aliased output file path is embedded as a single URL segment::

    rmd_output/~%252Fdocs%252Freport.html/

The path is percent-encoded twice when published because the HTTP layer
decodes the whole request path once before the output route sees it; the
route decodes the remaining layer itself. Deployments whose front end decodes
twice (historically the Windows desktop shell) need a third pass. The pass
count is configuration, see :data:`DEFAULT_ENCODE_PASSES`.
"""

from __future__ import annotations

import os
from urllib.parse import quote, unquote

OUTPUT_MOUNT = "rmd_output"
OUTPUT_LOCATION = f"/{OUTPUT_MOUNT}/"

DEFAULT_ENCODE_PASSES = 3 if os.name == "nt" else 2


def encode_output_file(output_file: str, *, passes: int = DEFAULT_ENCODE_PASSES) -> str:
    """Percent-encode ``output_file`` ``passes`` times, escaping ``/`` too."""

    if passes < 1:
        raise ValueError("The output file must be encoded at least once.")
    encoded = output_file
    for _ in range(passes):
        encoded = quote(encoded, safe="")
    return encoded


def build_output_url(output_file: str, *, passes: int = DEFAULT_ENCODE_PASSES) -> str:
    """Return the relative URL serving ``output_file``; empty if there is none."""

    if not output_file:
        return ""
    return f"{OUTPUT_MOUNT}/{encode_output_file(output_file, passes=passes)}/"


def split_output_path(path: str) -> tuple[str, str] | None:
    """Split a route path into the decoded output file and the remainder.

    ``path`` is what follows :data:`OUTPUT_LOCATION` after the HTTP layer's
    own decoding pass. ``None`` means the output file segment is missing.
    """

    segment, separator, rest = path.partition("/")
    if not separator or not segment:
        return None
    return unquote(segment), rest


__all__ = [
    "DEFAULT_ENCODE_PASSES",
    "OUTPUT_LOCATION",
    "OUTPUT_MOUNT",
    "build_output_url",
    "encode_output_file",
    "split_output_path",
]
