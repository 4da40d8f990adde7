"""Supervision of R Markdown renders and serving of their output."""

from .aggregator import OUTPUT_CREATED_MARKER, OutputAggregator
from .errors import (
    OutputFormatProbeError,
    RenderError,
    RenderLaunchError,
    ToolchainNotFoundError,
)
from .job import RenderEnvironment, RenderJob, amend_results
from .mathjax import FilterState, filter_file, filter_stream, rewrite_chunk
from .models import (
    RENDER_COMPLETED_EVENT,
    RENDER_OUTPUT_EVENT,
    RENDER_STARTED_EVENT,
    OutputFormat,
    OutputKind,
    RenderResult,
    RenderState,
)
from .publish import JsonPublishHistory, NullPublishHistory, PublishHistory
from .supervisor import RenderSupervisor
from .toolchain import RMarkdownToolchain, Toolchain, detect_source_type
from .urls import OUTPUT_LOCATION, build_output_url, split_output_path

__all__ = [
    "FilterState",
    "JsonPublishHistory",
    "NullPublishHistory",
    "OUTPUT_CREATED_MARKER",
    "OUTPUT_LOCATION",
    "OutputAggregator",
    "OutputFormat",
    "OutputFormatProbeError",
    "OutputKind",
    "PublishHistory",
    "RENDER_COMPLETED_EVENT",
    "RENDER_OUTPUT_EVENT",
    "RENDER_STARTED_EVENT",
    "RMarkdownToolchain",
    "RenderEnvironment",
    "RenderError",
    "RenderJob",
    "RenderLaunchError",
    "RenderResult",
    "RenderState",
    "RenderSupervisor",
    "Toolchain",
    "ToolchainNotFoundError",
    "amend_results",
    "build_output_url",
    "detect_source_type",
    "filter_file",
    "filter_stream",
    "rewrite_chunk",
    "split_output_path",
]
