"""HTTP route serving render output and the resources it references.

Requests embed the aliased output file as the first path segment. For
``~/docs/report.html`` the document and its resources are requested as::

    /rmd_output/~%252Fdocs%252Freport.html/            the document itself
    /rmd_output/~%252Fdocs%252Freport.html/mathjax/... bundled MathJax files
    /rmd_output/~%252Fdocs%252Freport.html/figure.png  siblings of the output

Starlette decodes the request path once before routing, so the segment is
decoded a second time here.
"""

from __future__ import annotations

import mimetypes
from pathlib import Path

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse, StreamingResponse
from starlette.responses import Response

from apps.loom.config import LoomSettings
from apps.loom.web.dependencies import get_settings, get_supervisor
from libraries.rendering.mathjax import HELPER_SEGMENT, filter_file
from libraries.rendering.paths import resolve_aliased_path
from libraries.rendering.supervisor import RenderSupervisor
from libraries.rendering.urls import OUTPUT_LOCATION, split_output_path

logger = structlog.get_logger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}
CACHEABLE_HEADERS = {"Cache-Control": "private, max-age=3600"}

router = APIRouter()


def _not_found(detail: str, **context: object) -> HTTPException:
    logger.info("render.output.not_found", detail=detail, **context)
    return HTTPException(status_code=404, detail=detail)


def _resolve_within(base: Path, relative: str) -> Path | None:
    """Resolve ``relative`` under ``base``; ``None`` if it escapes ``base``."""

    root = base.resolve()
    candidate = (root / relative).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        return None
    return candidate


@router.get(OUTPUT_LOCATION + "{path:path}")  # type: ignore[misc]
def serve_output(
    path: str,
    supervisor: RenderSupervisor = Depends(get_supervisor),
    settings: LoomSettings = Depends(get_settings),
) -> Response:
    parts = split_output_path(path)
    if parts is None:
        raise _not_found("No output file found", path=path)
    output_file, rest = parts

    output_path = resolve_aliased_path(output_file, home=supervisor.environment.home)
    if not output_path.is_file():
        raise _not_found(f"{output_file} not found", output_file=output_file)

    if not rest:
        # The document URL is identical for every render of the same file, so
        # it must never be served from a cache.
        media_type = mimetypes.guess_type(output_path.name)[0] or "text/html"
        return StreamingResponse(
            filter_file(output_path, inject_config=settings.inject_mathjax_config),
            media_type=media_type,
            headers=NO_CACHE_HEADERS,
        )

    resource: Path | None
    if rest.startswith(HELPER_SEGMENT + "/"):
        helper_dir = supervisor.environment.toolchain.helper_directory()
        if helper_dir is None:
            raise _not_found("MathJax is not available", resource=rest)
        resource = _resolve_within(helper_dir, rest[len(HELPER_SEGMENT) + 1 :])
    else:
        resource = _resolve_within(output_path.parent, rest)

    if resource is None or not resource.is_file():
        raise _not_found(f"{rest} not found", output_file=output_file, resource=rest)
    return FileResponse(resource, headers=CACHEABLE_HEADERS)


__all__ = ["CACHEABLE_HEADERS", "NO_CACHE_HEADERS", "router", "serve_output"]
