"""Errors raised by the rendering toolchain integration."""

from __future__ import annotations

from typing import Any, Mapping


class RenderError(RuntimeError):
    """Raised when a render cannot be prepared or launched."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "render.error",
        hint: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.hint = hint
        self.context: dict[str, Any] = dict(context or {})

    @property
    def summary(self) -> str:
        """Return a one line, human readable description of the failure."""

        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class ToolchainNotFoundError(RenderError):
    """Raised when the external rendering program cannot be located."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "render.toolchain_not_found")
        super().__init__(message, **kwargs)


class RenderLaunchError(RenderError):
    """Raised when the render process could not be spawned."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "render.launch_failed")
        super().__init__(message, **kwargs)


class OutputFormatProbeError(RenderError):
    """Raised when the toolchain cannot report a document's output format."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "render.format_probe_failed")
        super().__init__(message, **kwargs)


__all__ = [
    "OutputFormatProbeError",
    "RenderError",
    "RenderLaunchError",
    "ToolchainNotFoundError",
]
