"""Loading of Loom settings from ``loom.toml`` profiles and the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older runtimes.
    import tomli as tomllib  # type: ignore[no-redef]

from apps.loom.utils.errors import LoomConfigError
from libraries.rendering.job import DEFAULT_POLL_INTERVAL
from libraries.rendering.urls import DEFAULT_ENCODE_PASSES

CONFIG_FILENAME = "loom.toml"

RSCRIPT_ENV = "LOOM_RSCRIPT"
PANDOC_ENV = "LOOM_PANDOC"
URL_ENCODE_PASSES_ENV = "LOOM_URL_ENCODE_PASSES"
MATHJAX_INJECT_CONFIG_ENV = "LOOM_MATHJAX_INJECT_CONFIG"
EVENT_BUFFER_ENV = "LOOM_EVENT_BUFFER"
PUBLISH_HISTORY_ENV = "LOOM_PUBLISH_HISTORY"
POLL_INTERVAL_ENV = "LOOM_POLL_INTERVAL"

DEFAULT_EVENT_BUFFER = 256

_ENV_OVERRIDES: Mapping[str, str] = {
    "rscript": RSCRIPT_ENV,
    "pandoc": PANDOC_ENV,
    "url_encode_passes": URL_ENCODE_PASSES_ENV,
    "inject_mathjax_config": MATHJAX_INJECT_CONFIG_ENV,
    "event_buffer": EVENT_BUFFER_ENV,
    "publish_history": PUBLISH_HISTORY_ENV,
    "poll_interval": POLL_INTERVAL_ENV,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class LoomSettings:
    """Resolved settings for the render supervisor and the web service."""

    profile: str = "default"
    rscript: str | None = None
    pandoc: str | None = None
    url_encode_passes: int = DEFAULT_ENCODE_PASSES
    inject_mathjax_config: bool = False
    event_buffer: int = DEFAULT_EVENT_BUFFER
    publish_history: Path | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    sources: tuple[Path, ...] = ()


def load_settings(
    *,
    profile: str | None = None,
    workspace: Path | None = None,
    project_root: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> LoomSettings:
    """Load and merge Loom configuration, then apply environment overrides.

    The configuration is sourced from up to three locations, in the following
    precedence order (lowest to highest): user, project, then workspace.  Each
    location may provide a :mod:`toml` document containing a ``profiles`` table
    with named dictionaries of settings.  Later files override earlier ones via
    deep-merge semantics.  ``LOOM_*`` environment variables override the
    selected profile.

    When *profile* is ``None`` the loader falls back to the ``LOOM_PROFILE``
    environment variable, then to the highest precedence ``default_profile``
    and finally to ``"default"``.
    """

    env = os.environ if environ is None else environ
    merged_config: Dict[str, Any] = {}
    sources: list[Path] = []

    for path in _iter_config_paths(
        workspace=workspace, project_root=project_root, environ=env
    ):
        try:
            document = _load_toml(path)
        except OSError as exc:  # pragma: no cover - filesystem errors are rare.
            raise LoomConfigError(
                f"Unable to read configuration file '{path}': {exc}"
            ) from exc
        except tomllib.TOMLDecodeError as exc:
            raise LoomConfigError(
                f"Configuration file '{path}' is not valid TOML: {exc}"
            ) from exc
        merged_config = _deep_merge(merged_config, document)
        sources.append(path)

    profiles = merged_config.get("profiles", {})
    if not isinstance(profiles, Mapping):
        raise LoomConfigError("The 'profiles' table must contain mappings of settings")

    selected_profile = _determine_profile_name(merged_config, profile, env)

    profile_data: Dict[str, Any]
    if selected_profile in profiles:
        raw_data = profiles[selected_profile]
        if not isinstance(raw_data, Mapping):
            raise LoomConfigError(
                f"Profile '{selected_profile}' must be a mapping of configuration values"
            )
        profile_data = dict(raw_data)
    elif selected_profile == "default" or not profiles:
        profile_data = {}
    else:
        available = ", ".join(sorted(str(name) for name in profiles)) or "<none>"
        raise LoomConfigError(
            f"Profile '{selected_profile}' was not found. Available profiles: {available}."
        )

    for key, env_name in _ENV_OVERRIDES.items():
        if env_name in env:
            profile_data[key] = env[env_name]

    return _build_settings(selected_profile, profile_data, tuple(sources))


def _build_settings(
    name: str, data: Mapping[str, Any], sources: tuple[Path, ...]
) -> LoomSettings:
    unknown = sorted(set(data) - set(_ENV_OVERRIDES))
    if unknown:
        raise LoomConfigError(
            f"Unknown settings in profile '{name}': {', '.join(unknown)}"
        )

    passes = _as_int(data, "url_encode_passes", DEFAULT_ENCODE_PASSES)
    if passes < 1:
        raise LoomConfigError("'url_encode_passes' must be at least 1")
    event_buffer = _as_int(data, "event_buffer", DEFAULT_EVENT_BUFFER)
    if event_buffer < 1:
        raise LoomConfigError("'event_buffer' must be at least 1")
    poll_interval = _as_float(data, "poll_interval", DEFAULT_POLL_INTERVAL)
    if poll_interval <= 0:
        raise LoomConfigError("'poll_interval' must be greater than zero")

    publish_history = data.get("publish_history")
    return LoomSettings(
        profile=name,
        rscript=_as_optional_str(data, "rscript"),
        pandoc=_as_optional_str(data, "pandoc"),
        url_encode_passes=passes,
        inject_mathjax_config=_as_bool(data, "inject_mathjax_config", False),
        event_buffer=event_buffer,
        publish_history=(
            Path(os.path.expanduser(str(publish_history))) if publish_history else None
        ),
        poll_interval=poll_interval,
        sources=sources,
    )


def _as_optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise LoomConfigError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise LoomConfigError(f"'{key}' must be an integer, got {value!r}") from exc


def _as_float(data: Mapping[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise LoomConfigError(f"'{key}' must be a number, got {value!r}") from exc


def _as_bool(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise LoomConfigError(f"'{key}' must be a boolean, got {value!r}")


def _iter_config_paths(
    *,
    workspace: Path | None,
    project_root: Path | None,
    environ: Mapping[str, str],
) -> Iterable[Path]:
    """Yield configuration files in precedence order."""

    yielded: set[Path] = set()

    for path in _user_config_paths(environ):
        if path.exists() and path not in yielded:
            yielded.add(path)
            yield path

    project_candidate = _normalise_project_root(project_root, environ)
    for path in _project_config_paths(project_candidate):
        if path.exists() and path not in yielded:
            yielded.add(path)
            yield path

    if workspace is not None:
        workspace_path = workspace / CONFIG_FILENAME
        if workspace_path.exists() and workspace_path not in yielded:
            yielded.add(workspace_path)
            yield workspace_path


def _user_config_paths(environ: Mapping[str, str]) -> tuple[Path, ...]:
    """Return user-level configuration search paths."""

    home = Path(environ.get("HOME") or os.path.expanduser("~"))
    xdg_config = environ.get("XDG_CONFIG_HOME")

    candidates = []
    if xdg_config:
        candidates.append(Path(xdg_config) / "loom" / CONFIG_FILENAME)

    candidates.append(home / ".config" / "loom" / CONFIG_FILENAME)
    candidates.append(home / CONFIG_FILENAME)

    return tuple(candidates)


def _project_config_paths(project_root: Path) -> tuple[Path, ...]:
    return (
        project_root / CONFIG_FILENAME,
        project_root / ".loom" / CONFIG_FILENAME,
    )


def _normalise_project_root(
    project_root: Path | None, environ: Mapping[str, str]
) -> Path:
    if project_root is not None:
        return project_root
    env_root = environ.get("LOOM_PROJECT_ROOT")
    if env_root:
        return Path(env_root)
    return Path.cwd()


def _load_toml(path: Path) -> Dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _deep_merge(base: Dict[str, Any], new: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in new.items():
        if (
            key in merged
            and isinstance(merged[key], Mapping)
            and isinstance(value, Mapping)
        ):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _determine_profile_name(
    config: Mapping[str, Any], override: str | None, environ: Mapping[str, str]
) -> str:
    if override:
        return override

    env_profile = environ.get("LOOM_PROFILE")
    if env_profile:
        return env_profile

    default_profile = config.get("default_profile")
    if isinstance(default_profile, str) and default_profile:
        return default_profile

    return "default"
