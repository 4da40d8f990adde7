"""Shared pytest fixtures for the Loom test suite."""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Any, Callable, Mapping

import pytest

from libraries.rendering.errors import RenderError
from libraries.rendering.job import RenderEnvironment
from libraries.rendering.models import OutputFormat
from libraries.rendering.supervisor import RenderSupervisor

SUCCESS_SCRIPT = textwrap.dedent(
    """
    import pathlib, sys
    pathlib.Path("report.html").write_text("<html><body>ok</body></html>")
    sys.stderr.write("processing\\n")
    sys.stderr.flush()
    sys.stdout.write("Output created: report.html\\r\\n")
    """
)

SLOW_SCRIPT = textwrap.dedent(
    """
    import sys, time
    sys.stdout.write("working\\n")
    sys.stdout.flush()
    time.sleep(30)
    sys.stdout.write("Output created: never.html\\n")
    """
)


class ScriptToolchain:
    """Toolchain running a Python snippet in place of the R front end."""

    def __init__(
        self,
        script: str = SUCCESS_SCRIPT,
        *,
        output_format: OutputFormat | None = None,
        probe_error: RenderError | None = None,
        launch_error: RenderError | None = None,
        installed: bool = True,
        helper_dir: Path | None = None,
    ) -> None:
        self.script = script
        self.output_format = output_format or OutputFormat(
            name="html_document", options={"toc": True}
        )
        self.probe_error = probe_error
        self.launch_error = launch_error
        self.installed = installed
        self.helper_dir = helper_dir
        self.commands: list[list[str]] = []

    def render_command(self, target: Path, encoding: str) -> list[str]:
        if self.launch_error is not None:
            raise self.launch_error
        command = [sys.executable, "-c", self.script, target.name, encoding]
        self.commands.append(command)
        return command

    def environment(self) -> Mapping[str, str] | None:
        return None

    async def probe_output_format(self, target: Path, encoding: str) -> OutputFormat:
        if self.probe_error is not None:
            raise self.probe_error
        return self.output_format

    def is_installed(self) -> bool:
        return self.installed

    def helper_directory(self) -> Path | None:
        return self.helper_dir


class EventRecorder:
    """Notifier collecting every published render event."""

    def __init__(self) -> None:
        self.events: list[Mapping[str, Any]] = []

    def __call__(self, payload: Mapping[str, Any]) -> None:
        self.events.append(payload)

    def names(self) -> list[str]:
        return [event["event"] for event in self.events]

    def of(self, name: str) -> list[Mapping[str, Any]]:
        return [event["data"] for event in self.events if event["event"] == name]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def document(home: Path) -> Path:
    docs = home / "docs"
    docs.mkdir()
    path = docs / "report.Rmd"
    path.write_text("---\ntitle: Report\n---\n\nHello\n", encoding="utf-8")
    return path


@pytest.fixture
def make_supervisor(
    home: Path, recorder: EventRecorder
) -> Callable[..., RenderSupervisor]:
    def factory(toolchain: Any | None = None, **kwargs: Any) -> RenderSupervisor:
        kwargs.setdefault("notify", recorder)
        kwargs.setdefault("poll_interval", 0.05)
        environment = RenderEnvironment(
            toolchain=toolchain or ScriptToolchain(), home=home, **kwargs
        )
        return RenderSupervisor(environment)

    return factory


@pytest.fixture
def script_toolchain() -> type[ScriptToolchain]:
    return ScriptToolchain


@pytest.fixture
def slow_script() -> str:
    return SLOW_SCRIPT
