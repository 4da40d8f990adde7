"""Runtime wiring shared by the Loom web routes."""

from __future__ import annotations

from functools import lru_cache

import structlog

from apps.loom.config import LoomSettings, load_settings
from apps.loom.web.events import EventBroadcaster
from libraries.rendering.job import Notifier, RenderEnvironment
from libraries.rendering.publish import (
    JsonPublishHistory,
    NullPublishHistory,
    PublishHistory,
)
from libraries.rendering.supervisor import RenderSupervisor
from libraries.rendering.toolchain import RMarkdownToolchain

logger = structlog.get_logger(__name__)


def build_supervisor(settings: LoomSettings, notify: Notifier) -> RenderSupervisor:
    """Create a supervisor driving the R toolchain described by ``settings``."""

    publish_history: PublishHistory
    if settings.publish_history is not None:
        publish_history = JsonPublishHistory(settings.publish_history)
    else:
        publish_history = NullPublishHistory()

    environment = RenderEnvironment(
        toolchain=RMarkdownToolchain(settings.rscript, pandoc=settings.pandoc),
        notify=notify,
        publish_history=publish_history,
        url_encode_passes=settings.url_encode_passes,
        poll_interval=settings.poll_interval,
    )
    logger.info(
        "loom.supervisor.configured",
        profile=settings.profile,
        rscript=settings.rscript,
        url_encode_passes=settings.url_encode_passes,
    )
    return RenderSupervisor(environment)


@lru_cache
def get_settings() -> LoomSettings:  # pragma: no cover - runtime wiring
    return load_settings()


@lru_cache
def get_event_broadcaster() -> EventBroadcaster:  # pragma: no cover - runtime wiring
    return EventBroadcaster(max_buffer=get_settings().event_buffer)


@lru_cache
def get_supervisor() -> RenderSupervisor:  # pragma: no cover - runtime wiring
    return build_supervisor(get_settings(), get_event_broadcaster().publish)


__all__ = [
    "build_supervisor",
    "get_event_broadcaster",
    "get_settings",
    "get_supervisor",
]
