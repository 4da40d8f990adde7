"""Errors surfaced by the ``loom`` command and the exit codes they map to."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit status of the ``loom`` command."""

    SUCCESS = 0
    VALIDATION = 1
    CONFIG = 2
    TOOLCHAIN = 3
    RENDER_FAILED = 4
    INTERRUPTED = 130


class LoomError(Exception):
    """An expected failure reported to the user without a traceback.

    ``hint`` is an optional follow-up printed below the message, in the same
    spirit as :attr:`libraries.rendering.errors.RenderError.hint`.
    """

    exit_code = ExitCode.VALIDATION
    label = "Error"

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        return self.message

    def describe(self) -> list[str]:
        """Return the lines printed to stderr for this error."""

        lines = [f"{self.label}: {self.message}"]
        if self.hint:
            lines.append(f"  hint: {self.hint}")
        return lines


class LoomValidationError(LoomError):
    """The command line named a document or value that cannot be used."""

    label = "Validation error"


class LoomConfigError(LoomError):
    """A ``loom.toml`` file or ``LOOM_*`` variable is invalid."""

    exit_code = ExitCode.CONFIG
    label = "Configuration error"


class LoomToolchainError(LoomError):
    """R or the rmarkdown package is missing or unusable."""

    exit_code = ExitCode.TOOLCHAIN
    label = "Toolchain error"


class LoomRenderFailedError(LoomError):
    """A foreground render finished without producing output."""

    exit_code = ExitCode.RENDER_FAILED
    label = "Render failed"
