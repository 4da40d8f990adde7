"""Process-wide owner of the single active render job."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog

from .job import RenderEnvironment, RenderJob
from .models import RenderResult
from .paths import resolve_aliased_path

logger = structlog.get_logger(__name__)

DEFAULT_ENCODING = "UTF-8"
DEFAULT_SHUTDOWN_GRACE = 10.0


class RenderSupervisor:
    """Serialize render requests so at most one job is active at a time.

    The supervisor is created once by the hosting application and lives on its
    event loop; :meth:`request_render` must be called from that loop.
    """

    def __init__(self, environment: RenderEnvironment) -> None:
        self._environment = environment
        self._current: RenderJob | None = None

    @property
    def environment(self) -> RenderEnvironment:
        return self._environment

    @property
    def current(self) -> RenderJob | None:
        return self._current

    @property
    def last_result(self) -> RenderResult | None:
        if self._current is None:
            return None
        return self._current.result

    def is_running(self) -> bool:
        return self._current is not None and self._current.is_active

    def has_output(self) -> bool:
        return self._current is not None and self._current.has_output

    def context(self) -> dict[str, Any]:
        return {"toolchain_installed": self._environment.toolchain.is_installed()}

    def request_render(
        self,
        target: str | Path,
        source_line: int = -1,
        encoding: str = DEFAULT_ENCODING,
    ) -> bool:
        """Start rendering ``target`` unless a render is already in progress.

        Returns ``False`` without side effects when a job is active. Otherwise
        the new job is scheduled and ``True`` is returned before the render
        process has finished.
        """

        if self.is_running():
            logger.info(
                "render.supervisor.rejected",
                target=str(target),
                active=str(self._current.target) if self._current else None,
            )
            return False

        path = resolve_aliased_path(str(target), home=self._environment.home)
        job = RenderJob(path.absolute(), source_line, self._environment)
        job.start(encoding or DEFAULT_ENCODING)
        self._current = job
        logger.info(
            "render.supervisor.accepted",
            target=str(job.target),
            line=source_line,
            encoding=job.encoding,
        )
        return True

    def request_termination(self) -> None:
        if self.is_running():
            assert self._current is not None
            self._current.request_cancel()

    async def wait(self) -> RenderResult | None:
        """Wait for the current job, if any, and return its result."""

        if self._current is None:
            return None
        return await self._current.wait()

    async def shutdown(self, grace_period: float = DEFAULT_SHUTDOWN_GRACE) -> None:
        """Terminate the active job and wait for it to finalize.

        The render process gets ``grace_period`` seconds to exit after SIGTERM;
        after that the job is aborted and the process killed.
        """

        job = self._current
        if job is None or not job.is_active:
            return
        logger.info("render.supervisor.shutdown", target=str(job.target))
        job.request_cancel()
        try:
            await asyncio.wait_for(job.wait(), timeout=grace_period)
        except asyncio.TimeoutError:
            logger.warning(
                "render.supervisor.shutdown_timeout",
                target=str(job.target),
                grace_period=grace_period,
            )
            await job.abort()


__all__ = ["DEFAULT_ENCODING", "DEFAULT_SHUTDOWN_GRACE", "RenderSupervisor"]
