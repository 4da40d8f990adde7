"""Lookup of previous publications of rendered HTML documents."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class PublishHistory(Protocol):
    """Report the upload identifier recorded for a rendered document."""

    def previous_upload_id(self, output_file: Path) -> str | None:
        """Return the identifier of the last upload of ``output_file``."""


class NullPublishHistory:
    """History used when publication tracking is not configured."""

    def previous_upload_id(self, output_file: Path) -> str | None:
        return None


class JsonPublishHistory:
    """Publish history backed by a JSON object mapping paths to upload ids."""

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw_data = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning(
                "render.publish.read_failed", path=str(self._path), error=str(exc)
            )
            return {}
        try:
            payload = json.loads(raw_data or "{}")
        except json.JSONDecodeError as exc:
            logger.warning(
                "render.publish.decode_failed", path=str(self._path), error=str(exc)
            )
            return {}
        if not isinstance(payload, dict):
            logger.warning("render.publish.invalid_payload", path=str(self._path))
            return {}
        return {
            str(key): str(value)
            for key, value in payload.items()
            if isinstance(value, str) and value
        }

    def previous_upload_id(self, output_file: Path) -> str | None:
        return self._load().get(str(output_file))

    def record_upload(self, output_file: Path, upload_id: str) -> None:
        """Remember ``upload_id`` as the latest publication of ``output_file``."""

        entries = self._load()
        entries[str(output_file)] = upload_id
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(entries, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self._path)


__all__ = ["JsonPublishHistory", "NullPublishHistory", "PublishHistory"]
