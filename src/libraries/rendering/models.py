"""Data structures shared by the render supervisor and its consumers."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


RENDER_STARTED_EVENT = "rmd_render_started"
RENDER_OUTPUT_EVENT = "rmd_render_output"
RENDER_COMPLETED_EVENT = "rmd_render_completed"


class RenderState(str, Enum):
    """Lifecycle states of a render job."""

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (RenderState.STARTING, RenderState.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


class OutputKind(str, Enum):
    """Stream a chunk of process output arrived on."""

    NORMAL = "normal"
    ERROR = "error"


class OutputFormat(BaseModel):
    """Output format reported by the toolchain for a source document."""

    model_config = ConfigDict(frozen=True)

    name: str = Field("", description="Format identifier, e.g. html_document.")
    options: Any = Field(
        None, description="Format options exactly as reported by the toolchain."
    )

    @classmethod
    def empty(cls) -> "OutputFormat":
        return cls()


class RenderResult(BaseModel):
    """Outcome of a render job, published once when the job finalizes.

    Format specific amenders may contribute additional keys; they are kept as
    extra fields on the model.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    succeeded: bool = Field(..., description="Whether an output artifact was produced.")
    target_file: str = Field(..., description="Aliased path of the rendered source.")
    output_file: str = Field(
        "", description="Aliased path of the produced artifact, empty if none."
    )
    output_url: str = Field(
        "", description="Relative URL serving the artifact, empty if none."
    )
    output_format: OutputFormat = Field(default_factory=OutputFormat)
    preview_slide: int = Field(
        -1, description="Slide to show first for presentation formats."
    )
    slide_navigation: Any = Field(
        None, description="Slide navigation data for presentation formats."
    )
    rpubs_published: bool = Field(
        False, description="Whether the HTML output has been published before."
    )


__all__ = [
    "OutputFormat",
    "OutputKind",
    "RENDER_COMPLETED_EVENT",
    "RENDER_OUTPUT_EVENT",
    "RENDER_STARTED_EVENT",
    "RenderResult",
    "RenderState",
]
