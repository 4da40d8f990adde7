"""Integration with the R Markdown toolchain that performs the rendering."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

import structlog

from .errors import OutputFormatProbeError, ToolchainNotFoundError
from .models import OutputFormat

logger = structlog.get_logger(__name__)

DEFAULT_RSCRIPT = "Rscript"
REQUIRED_RMARKDOWN_VERSION = "0.2"
PANDOC_ENV = "RSTUDIO_PANDOC"
RMARKDOWN_V1_MARKER = "<!-- rmarkdown v1 -->"

_R_ARGS = ("--slave", "--no-save", "--no-restore", "-e")


@runtime_checkable
class Toolchain(Protocol):
    """Operations the render supervisor needs from the rendering toolchain."""

    def render_command(self, target: Path, encoding: str) -> list[str]:
        """Return the argv rendering ``target``; run in its directory."""

    def environment(self) -> Mapping[str, str] | None:
        """Return the environment for the render process, ``None`` to inherit."""

    async def probe_output_format(self, target: Path, encoding: str) -> OutputFormat:
        """Return the output format ``target`` renders to by default."""

    def is_installed(self) -> bool:
        """Return whether a usable toolchain version is installed."""

    def helper_directory(self) -> Path | None:
        """Return the directory holding the bundled MathJax distribution."""


def _r_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class RMarkdownToolchain:
    """Drive ``rmarkdown`` through the ``Rscript`` front end."""

    def __init__(
        self,
        rscript: str | None = None,
        *,
        pandoc: str | None = None,
        probe_timeout: float = 30.0,
    ) -> None:
        self._rscript = rscript or DEFAULT_RSCRIPT
        self._pandoc = pandoc
        self._probe_timeout = probe_timeout
        self._helper_directory: Path | None = None

    def program_path(self) -> str:
        resolved = shutil.which(self._rscript)
        if resolved is None:
            raise ToolchainNotFoundError(
                f"Unable to locate R program '{self._rscript}'",
                hint="Install R or set LOOM_RSCRIPT to the Rscript executable",
                context={"rscript": self._rscript},
            )
        return resolved

    def _command(self, expression: str) -> list[str]:
        return [self.program_path(), *_R_ARGS, expression]

    def render_command(self, target: Path, encoding: str) -> list[str]:
        expression = (
            f"rmarkdown::render({_r_string(target.name)}, "
            f"encoding={_r_string(encoding)});"
        )
        return self._command(expression)

    def environment(self) -> Mapping[str, str] | None:
        if not self._pandoc:
            return None
        env = os.environ.copy()
        env[PANDOC_ENV] = self._pandoc
        return env

    async def probe_output_format(self, target: Path, encoding: str) -> OutputFormat:
        expression = (
            "fmt <- rmarkdown:::default_output_format("
            f"{_r_string(str(target))}, {_r_string(encoding)}); "
            "cat(jsonlite::toJSON(list(name = fmt$name, options = fmt$options), "
            "auto_unbox = TRUE, null = 'null'))"
        )
        command = self._command(expression)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.environment(),
            )
        except OSError as exc:
            raise OutputFormatProbeError(
                f"Unable to start the output format probe: {exc}",
                context={"target": str(target)},
            ) from exc
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._probe_timeout
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise OutputFormatProbeError(
                "Timed out querying the default output format",
                context={"target": str(target), "timeout": self._probe_timeout},
            ) from exc
        if process.returncode != 0:
            raise OutputFormatProbeError(
                "The default output format could not be determined",
                hint=stderr.decode("utf-8", errors="replace").strip() or None,
                context={"target": str(target), "exit_code": process.returncode},
            )
        try:
            payload = json.loads(stdout.decode("utf-8", errors="replace") or "{}")
        except json.JSONDecodeError as exc:
            raise OutputFormatProbeError(
                f"Invalid output format description: {exc}",
                context={"target": str(target)},
            ) from exc
        if not isinstance(payload, dict):
            raise OutputFormatProbeError(
                "Output format description is not an object",
                context={"target": str(target)},
            )
        name = payload.get("name")
        return OutputFormat(
            name=name if isinstance(name, str) else "",
            options=payload.get("options"),
        )

    def _evaluate(self, expression: str) -> str:
        completed = subprocess.run(
            self._command(expression),
            capture_output=True,
            text=True,
            timeout=self._probe_timeout,
            env=self.environment(),
            check=True,
        )
        return completed.stdout.strip()

    def is_installed(self) -> bool:
        expression = (
            "cat(requireNamespace('rmarkdown', quietly = TRUE) && "
            "utils::packageVersion('rmarkdown') >= "
            f"{_r_string(REQUIRED_RMARKDOWN_VERSION)})"
        )
        try:
            return self._evaluate(expression) == "TRUE"
        except ToolchainNotFoundError:
            return False
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("render.toolchain.version_check_failed", error=str(exc))
            return False

    def helper_directory(self) -> Path | None:
        if self._helper_directory is not None:
            return self._helper_directory
        try:
            location = self._evaluate(
                "cat(system.file('rmd/h/m', package = 'rmarkdown'))"
            )
        except (ToolchainNotFoundError, OSError, subprocess.SubprocessError) as exc:
            logger.error("render.toolchain.mathjax_lookup_failed", error=str(exc))
            return None
        if not location:
            logger.error("render.toolchain.mathjax_missing")
            return None
        self._helper_directory = Path(location)
        return self._helper_directory


def detect_source_type(
    path: Path | str, contents: str, *, markdown_to_html_override: bool = False
) -> str | None:
    """Return ``"rmarkdown"`` for documents rendered through this toolchain.

    ``.Rmd`` and ``.md`` files qualify unless they carry the v1 marker comment
    or the user configured the legacy markdown-to-HTML pipeline.
    """

    if not str(path):
        return None
    if Path(path).suffix.lower() not in {".rmd", ".md"}:
        return None
    if RMARKDOWN_V1_MARKER in contents.lower() or markdown_to_html_override:
        return None
    return "rmarkdown"


__all__ = [
    "DEFAULT_RSCRIPT",
    "PANDOC_ENV",
    "RMarkdownToolchain",
    "Toolchain",
    "detect_source_type",
]
