"""Typer CLI entry points for the Loom render service."""

from __future__ import annotations

import asyncio
from importlib import import_module
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog
import typer

from apps.loom.config import LoomSettings, load_settings
from apps.loom.utils.errors import (
    LoomToolchainError,
    LoomRenderFailedError,
    LoomValidationError,
)
from apps.loom.web.dependencies import build_supervisor
from libraries.rendering.models import RENDER_OUTPUT_EVENT, OutputKind, RenderResult
from libraries.rendering.paths import alias_path
from libraries.rendering.supervisor import DEFAULT_ENCODING
from libraries.rendering.urls import build_output_url

log = structlog.get_logger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000

app = typer.Typer(name="loom", help="Render R Markdown documents and serve previews.")
web_app = typer.Typer(name="web", help="Web interface helpers.")
app.add_typer(web_app)


def _profile_option() -> Any:
    return typer.Option(
        None, "--profile", help="Configuration profile from loom.toml to use."
    )


def _load_uvicorn() -> Any:
    """Dynamically import uvicorn to keep it optional for non-web commands."""

    return import_module("uvicorn")


def _settings(profile: str | None) -> LoomSettings:
    return load_settings(profile=profile)


@web_app.command("serve")
def serve(
    host: str = typer.Option(
        DEFAULT_HOST,
        "--host",
        "-h",
        help="Host interface to bind the server to.",
        show_default=True,
    ),
    port: int = typer.Option(
        DEFAULT_PORT,
        "--port",
        "-p",
        min=1,
        max=65535,
        help="Port to expose the server on.",
        show_default=True,
    ),
    reload: bool = typer.Option(
        False,
        "--reload/--no-reload",
        help="Automatically reload when source files change.",
        show_default=True,
    ),
    log_level: str = typer.Option(
        "info",
        "--log-level",
        help="Log level passed to uvicorn.",
        show_default=True,
    ),
) -> None:
    """Launch the render service using uvicorn."""

    typer.echo(f"Starting Loom render service on http://{host}:{port}")
    uvicorn = _load_uvicorn()
    uvicorn.run(
        "apps.loom.web.render:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


def _echo_event(payload: Mapping[str, Any]) -> None:
    if payload.get("event") != RENDER_OUTPUT_EVENT:
        return
    data = payload.get("data") or {}
    typer.echo(
        data.get("text", ""),
        nl=False,
        err=data.get("type") == OutputKind.ERROR.value,
    )


async def _render_in_foreground(
    settings: LoomSettings, target: Path, line: int, encoding: str
) -> RenderResult:
    supervisor = build_supervisor(settings, _echo_event)
    supervisor.request_render(target, line, encoding)
    try:
        result = await supervisor.wait()
    except asyncio.CancelledError:
        await supervisor.shutdown()
        raise
    assert result is not None
    return result


@app.command("render")
def render(
    target: Path = typer.Argument(..., help="R Markdown document to render."),
    line: int = typer.Option(-1, "--line", help="Source line passed through to the result."),
    encoding: str = typer.Option(
        DEFAULT_ENCODING, "--encoding", "-e", help="Encoding of the source document."
    ),
    profile: Optional[str] = _profile_option(),
) -> None:
    """Render a document in the foreground, streaming the render output."""

    if not target.is_file():
        raise LoomValidationError(f"Document '{target}' does not exist.")

    settings = _settings(profile)
    result = asyncio.run(_render_in_foreground(settings, target, line, encoding))
    log.info("loom.cli.render.complete", succeeded=result.succeeded)
    if not result.succeeded:
        raise LoomRenderFailedError(
            f"Rendering {result.target_file} produced no output.",
            hint="The render output above shows why",
        )

    typer.secho(f"Output: {result.output_file}", fg=typer.colors.GREEN)
    typer.echo(f"Preview URL: /{result.output_url}")


@app.command("context")
def context(profile: Optional[str] = _profile_option()) -> None:
    """Report whether the R Markdown toolchain is installed."""

    settings = _settings(profile)
    supervisor = build_supervisor(settings, lambda payload: None)
    installed = supervisor.context()["toolchain_installed"]
    if not installed:
        raise LoomToolchainError(
            "R Markdown is not installed or is older than the supported version.",
            hint="Install rmarkdown in R or point LOOM_RSCRIPT at a working Rscript",
        )
    typer.echo("R Markdown toolchain: installed")


@app.command("output-url")
def output_url(
    output_file: Path = typer.Argument(..., help="Rendered file to build a URL for."),
    profile: Optional[str] = _profile_option(),
) -> None:
    """Print the preview URL serving an already rendered file."""

    settings = _settings(profile)
    aliased = alias_path(output_file.expanduser().absolute())
    typer.echo("/" + build_output_url(aliased, passes=settings.url_encode_passes))


__all__ = ["app", "web_app"]
