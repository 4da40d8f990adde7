"""FastAPI application exposing render control, render events and output."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Awaitable, Callable, Mapping

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator
from starlette.responses import Response

from apps.loom.version import LOOM_VERSION
from apps.loom.web.dependencies import get_event_broadcaster, get_supervisor
from apps.loom.web.events import (
    EventBroadcaster,
    format_sse_chunk,
    resolve_keepalive_interval,
)
from apps.loom.web.output import router as output_router
from libraries.rendering.models import RenderResult
from libraries.rendering.supervisor import DEFAULT_ENCODING, RenderSupervisor

logger = structlog.get_logger(__name__)

SNAPSHOT_EVENT = "render.snapshot"


class RenderRequest(BaseModel):
    """Request to render one source document."""

    file: str = Field(..., description="Path of the document, `~` aliases home.")
    line: int = Field(-1, description="Editor line the render was requested from.")
    encoding: str = Field(DEFAULT_ENCODING, description="Text encoding of the source.")

    @field_validator("file", "encoding", mode="before")
    @classmethod
    def _strip_string(cls, value: str) -> str:
        text = str(value).strip()
        if not text:
            raise ValueError("Value cannot be empty.")
        return text


class RenderAccepted(BaseModel):
    """Acknowledgement of a render request."""

    result: bool = Field(
        ..., description="False when another render is still in progress."
    )


class RenderContext(BaseModel):
    """Availability of the rendering toolchain."""

    toolchain_installed: bool


class RenderStatus(BaseModel):
    """Snapshot of the supervisor state."""

    running: bool
    has_output: bool
    result: RenderResult | None = None


def _status(supervisor: RenderSupervisor) -> RenderStatus:
    return RenderStatus(
        running=supervisor.is_running(),
        has_output=supervisor.has_output(),
        result=supervisor.last_result,
    )


app = FastAPI(title="Loom Render Service", version=LOOM_VERSION)
app.include_router(output_router)


@app.on_event("shutdown")
async def stop_active_render() -> None:
    provider = app.dependency_overrides.get(get_supervisor, get_supervisor)
    supervisor = provider()
    await supervisor.shutdown()


@app.middleware("http")
async def log_requests(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    logger.info("loom.api.request.start", method=request.method, path=request.url.path)
    response = await call_next(request)
    logger.info(
        "loom.api.request.complete",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
    )
    return response


@app.get("/rmarkdown/context", response_model=RenderContext)  # type: ignore[misc]
def render_context(
    supervisor: RenderSupervisor = Depends(get_supervisor),
) -> RenderContext:
    return RenderContext(**supervisor.context())


@app.post("/rmarkdown/render", response_model=RenderAccepted)  # type: ignore[misc]
async def render(
    render_request: RenderRequest,
    supervisor: RenderSupervisor = Depends(get_supervisor),
) -> RenderAccepted:
    accepted = supervisor.request_render(
        render_request.file, render_request.line, render_request.encoding
    )
    logger.info(
        "loom.api.render",
        file=render_request.file,
        line=render_request.line,
        accepted=accepted,
    )
    return RenderAccepted(result=accepted)


@app.post("/rmarkdown/terminate")  # type: ignore[misc]
async def terminate_render(
    supervisor: RenderSupervisor = Depends(get_supervisor),
) -> Mapping[str, Any]:
    supervisor.request_termination()
    return {}


@app.get("/rmarkdown/status", response_model=RenderStatus)  # type: ignore[misc]
def render_status(
    supervisor: RenderSupervisor = Depends(get_supervisor),
) -> RenderStatus:
    return _status(supervisor)


async def render_event_stream(
    request: Request,
    broadcaster: EventBroadcaster,
    supervisor: RenderSupervisor,
) -> AsyncGenerator[bytes, None]:
    """Yield a status snapshot followed by every render event as SSE frames."""

    queue = await broadcaster.subscribe()
    keepalive = resolve_keepalive_interval()
    try:
        snapshot = {"event": SNAPSHOT_EVENT, "data": _status(supervisor).model_dump(mode="json")}
        yield format_sse_chunk(SNAPSHOT_EVENT, snapshot)

        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield b": keepalive\n\n"
                continue
            event_name = event.get("event") if isinstance(event, Mapping) else None
            yield format_sse_chunk(
                event_name if isinstance(event_name, str) else None, event
            )
    finally:
        await broadcaster.unsubscribe(queue)


@app.get("/rmarkdown/events")  # type: ignore[misc]
async def stream_render_events(
    request: Request,
    broadcaster: EventBroadcaster = Depends(get_event_broadcaster),
    supervisor: RenderSupervisor = Depends(get_supervisor),
) -> StreamingResponse:
    return StreamingResponse(
        render_event_stream(request, broadcaster, supervisor),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


__all__ = [
    "RenderAccepted",
    "RenderContext",
    "RenderRequest",
    "RenderStatus",
    "app",
    "render_event_stream",
]
