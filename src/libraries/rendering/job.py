"""Supervision of a single R Markdown render process."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

import structlog

from .aggregator import OutputAggregator
from .errors import RenderError, RenderLaunchError
from .models import (
    RENDER_COMPLETED_EVENT,
    RENDER_OUTPUT_EVENT,
    RENDER_STARTED_EVENT,
    OutputFormat,
    OutputKind,
    RenderResult,
    RenderState,
)
from .paths import alias_path
from .publish import NullPublishHistory, PublishHistory
from .toolchain import Toolchain
from .urls import DEFAULT_ENCODE_PASSES, build_output_url

logger = structlog.get_logger(__name__)

Notifier = Callable[[Mapping[str, Any]], None]
ResultAmender = Callable[[str, Path, int, dict[str, Any]], None]

DEFAULT_POLL_INTERVAL = 0.25
READ_CHUNK_SIZE = 4096
WEB_DOCUMENT_SUFFIXES = frozenset({".html", ".htm"})


def amend_results(
    format_name: str, target: Path, source_line: int, payload: dict[str, Any]
) -> None:
    """Default format specific additions: no slide information."""

    payload.setdefault("preview_slide", -1)
    payload.setdefault("slide_navigation", None)


@dataclass(frozen=True)
class RenderEnvironment:
    """Collaborators and settings shared by every job of a supervisor."""

    toolchain: Toolchain
    notify: Notifier
    publish_history: PublishHistory = field(default_factory=NullPublishHistory)
    amend: ResultAmender = amend_results
    url_encode_passes: int = DEFAULT_ENCODE_PASSES
    poll_interval: float = DEFAULT_POLL_INTERVAL
    home: Path | None = None


async def _pump(
    stream: asyncio.StreamReader | None,
    kind: OutputKind,
    queue: asyncio.Queue[tuple[OutputKind, bytes | None]],
) -> None:
    try:
        if stream is None:
            return
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            if not data:
                break
            queue.put_nowait((kind, data))
    finally:
        queue.put_nowait((kind, None))


class RenderJob:
    """State machine around one invocation of the render process.

    All state changes happen on the job's own task: output arrival, the
    periodic cancellation poll and process exit. :meth:`request_cancel` only
    raises a flag which that task observes.
    """

    def __init__(
        self, target: Path, source_line: int, environment: RenderEnvironment
    ) -> None:
        self.target = target
        self.source_line = source_line
        self.encoding: str | None = None
        self.state = RenderState.STARTING
        self.output_format = OutputFormat.empty()
        self.output_path: Path | None = None
        self.cancel_requested = False
        self.result: RenderResult | None = None
        self._env = environment
        self._buffer = OutputAggregator()
        self._task: asyncio.Task[None] | None = None
        self._log = logger.bind(target=str(target))

    @property
    def aliased_target(self) -> str:
        return alias_path(self.target, home=self._env.home)

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    @property
    def has_output(self) -> bool:
        return (
            self.state.is_terminal
            and self.output_path is not None
            and self.output_path.exists()
        )

    def start(self, encoding: str) -> None:
        """Schedule the render on the running event loop and return at once."""

        if self._task is not None:
            raise RuntimeError("Render job has already been started.")
        loop = asyncio.get_running_loop()
        self.encoding = encoding
        self._task = loop.create_task(self._run(), name=f"render:{self.target.name}")

    def request_cancel(self) -> None:
        if not self.state.is_active or self.cancel_requested:
            return
        self.cancel_requested = True
        self._log.info("render.job.cancel_requested", state=self.state.value)

    async def wait(self) -> RenderResult:
        """Wait for the job to finalize and return its result."""

        if self._task is None:
            raise RuntimeError("Render job has not been started.")
        await asyncio.shield(self._task)
        assert self.result is not None
        return self.result

    async def abort(self) -> None:
        """Cancel the job's task; the process is killed and the job cancelled."""

        if self._task is None or self._task.done():
            return
        self._task.cancel()
        await asyncio.wait({self._task})

    async def _run(self) -> None:
        try:
            await self._execute()
        except asyncio.CancelledError:
            self._finalize(RenderState.CANCELLED)
            raise
        except Exception as exc:
            self._log.exception("render.job.unexpected_error")
            self._fail_with_error(str(exc) or type(exc).__name__)

    async def _execute(self) -> None:
        assert self.encoding is not None
        self.output_format = await self._probe_output_format(self.encoding)
        self._emit(
            RENDER_STARTED_EVENT,
            {
                "output_format": self.output_format.model_dump(mode="json"),
                "target_file": self.aliased_target,
            },
        )
        self._log.info(
            "render.job.started",
            encoding=self.encoding,
            output_format=self.output_format.name,
        )

        if self.cancel_requested:
            self._finalize(RenderState.CANCELLED)
            return

        try:
            process = await self._spawn(self.encoding)
        except RenderError as exc:
            self._log.error("render.job.launch_failed", code=exc.code, error=exc.message)
            self._fail_with_error(exc.summary)
            return
        except OSError as exc:
            self._log.error("render.job.launch_failed", error=str(exc))
            self._fail_with_error(exc.strerror or str(exc))
            return

        self.state = RenderState.RUNNING
        exit_code = await self._supervise(process)
        self._on_exit(exit_code)

    async def _probe_output_format(self, encoding: str) -> OutputFormat:
        try:
            return await self._env.toolchain.probe_output_format(self.target, encoding)
        except RenderError as exc:
            self._log.warning(
                "render.job.format_probe_failed", code=exc.code, error=exc.summary
            )
            return OutputFormat.empty()

    async def _spawn(self, encoding: str) -> asyncio.subprocess.Process:
        working_dir = self.target.parent
        if not working_dir.is_dir():
            raise RenderLaunchError(
                f"Working directory '{working_dir}' does not exist",
                context={"working_dir": str(working_dir)},
            )
        command = self._env.toolchain.render_command(self.target, encoding)
        return await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=working_dir,
            env=self._env.toolchain.environment(),
            start_new_session=os.name == "posix",
        )

    async def _supervise(self, process: asyncio.subprocess.Process) -> int:
        queue: asyncio.Queue[tuple[OutputKind, bytes | None]] = asyncio.Queue()
        readers = [
            asyncio.create_task(_pump(process.stdout, OutputKind.NORMAL, queue)),
            asyncio.create_task(_pump(process.stderr, OutputKind.ERROR, queue)),
        ]
        decoders = {
            kind: codecs.getincrementaldecoder("utf-8")(errors="replace")
            for kind in OutputKind
        }
        open_streams = len(readers)
        signalled = False
        try:
            while open_streams:
                if self.cancel_requested and not signalled:
                    self._signal(process, signal.SIGTERM)
                    signalled = True
                try:
                    kind, data = await asyncio.wait_for(
                        queue.get(), timeout=self._env.poll_interval
                    )
                except asyncio.TimeoutError:
                    continue
                if data is None:
                    open_streams -= 1
                    text = decoders[kind].decode(b"", final=True)
                else:
                    text = decoders[kind].decode(data)
                if self.cancel_requested:
                    continue
                self._on_output(kind, text)
            return await process.wait()
        finally:
            for reader in readers:
                reader.cancel()
            if process.returncode is None:
                self._signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
                await process.wait()

    def _signal(self, process: asyncio.subprocess.Process, signum: int) -> None:
        if process.returncode is not None:
            return
        self._log.info("render.job.signal", pid=process.pid, signal=int(signum))
        with contextlib.suppress(ProcessLookupError):
            if os.name == "posix":
                os.killpg(process.pid, signum)
            else:
                process.terminate()

    def _on_output(self, kind: OutputKind, text: str) -> None:
        if not text:
            return
        self._buffer.append(kind, text)
        self._emit_output(kind, text)

    def _on_exit(self, exit_code: int) -> None:
        if self.cancel_requested:
            self._log.info("render.job.cancelled", exit_code=exit_code)
            self._finalize(RenderState.CANCELLED)
            return

        candidate = self._buffer.find_output_file(self.target.parent)
        if exit_code == 0 and candidate is not None and candidate.exists():
            self.output_path = candidate
            self._finalize(RenderState.COMPLETED)
            return

        self._log.warning(
            "render.job.failed",
            exit_code=exit_code,
            output_file=str(candidate) if candidate is not None else None,
        )
        self._finalize(RenderState.FAILED)

    def _fail_with_error(self, summary: str) -> None:
        message = f"Error rendering R Markdown for {self.aliased_target} {summary}"
        self._emit_output(OutputKind.ERROR, message)
        self._finalize(RenderState.FAILED)

    def _previously_published(self) -> bool:
        if self.output_path is None:
            return False
        if self.output_path.suffix.lower() not in WEB_DOCUMENT_SUFFIXES:
            return False
        return bool(self._env.publish_history.previous_upload_id(self.output_path))

    def _finalize(self, state: RenderState) -> None:
        if self.result is not None:
            return
        if state is not RenderState.COMPLETED:
            self.output_path = None
        self.state = state

        output_file = alias_path(self.output_path, home=self._env.home)
        payload: dict[str, Any] = {
            "succeeded": state is RenderState.COMPLETED,
            "target_file": self.aliased_target,
            "output_file": output_file,
            "output_url": build_output_url(
                output_file, passes=self._env.url_encode_passes
            ),
            "output_format": self.output_format,
            "rpubs_published": self._previously_published(),
        }
        self._env.amend(self.output_format.name, self.target, self.source_line, payload)
        self.result = RenderResult.model_validate(payload)
        self._buffer.clear()

        self._log.info(
            "render.job.completed",
            state=state.value,
            output_file=output_file or None,
        )
        self._emit(RENDER_COMPLETED_EVENT, self.result.model_dump(mode="json"))

    def _emit_output(self, kind: OutputKind, text: str) -> None:
        self._emit(RENDER_OUTPUT_EVENT, {"type": kind.value, "text": text})

    def _emit(self, event: str, data: Mapping[str, Any]) -> None:
        self._env.notify({"event": event, "data": dict(data)})


__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "Notifier",
    "RenderEnvironment",
    "RenderJob",
    "ResultAmender",
    "amend_results",
]
