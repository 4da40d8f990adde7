from __future__ import annotations

from pathlib import Path

import pytest

from apps.loom.config import LoomSettings, load_settings
from apps.loom.utils.errors import LoomConfigError


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def environ(tmp_path: Path) -> dict[str, str]:
    return {"HOME": str(tmp_path / "user")}


def test_defaults_without_configuration(tmp_path: Path, environ: dict[str, str]) -> None:
    settings = load_settings(project_root=tmp_path / "project", environ=environ)

    assert settings == LoomSettings()


def test_workspace_overrides_project_and_user(
    tmp_path: Path, environ: dict[str, str]
) -> None:
    user = _write(
        tmp_path / "user" / ".config" / "loom" / "loom.toml",
        '[profiles.default]\nrscript = "/usr/bin/Rscript"\nevent_buffer = 32\n',
    )
    project = _write(
        tmp_path / "project" / "loom.toml",
        '[profiles.default]\npandoc = "/opt/pandoc"\nevent_buffer = 64\n',
    )
    workspace = _write(
        tmp_path / "workspace" / "loom.toml",
        "[profiles.default]\nurl_encode_passes = 3\n",
    )

    settings = load_settings(
        workspace=workspace.parent, project_root=project.parent, environ=environ
    )

    assert settings.rscript == "/usr/bin/Rscript"
    assert settings.pandoc == "/opt/pandoc"
    assert settings.event_buffer == 64
    assert settings.url_encode_passes == 3
    assert settings.sources == (user, project, workspace)


def test_environment_overrides_selected_profile(
    tmp_path: Path, environ: dict[str, str]
) -> None:
    _write(
        tmp_path / "project" / "loom.toml",
        'default_profile = "studio"\n'
        "[profiles.studio]\n"
        'rscript = "/studio/Rscript"\n'
        "inject_mathjax_config = false\n",
    )
    environ.update(
        {
            "LOOM_RSCRIPT": "/env/Rscript",
            "LOOM_MATHJAX_INJECT_CONFIG": "yes",
            "LOOM_POLL_INTERVAL": "0.5",
            "LOOM_PUBLISH_HISTORY": str(tmp_path / "uploads.json"),
        }
    )

    settings = load_settings(project_root=tmp_path / "project", environ=environ)

    assert settings.profile == "studio"
    assert settings.rscript == "/env/Rscript"
    assert settings.inject_mathjax_config is True
    assert settings.poll_interval == 0.5
    assert settings.publish_history == tmp_path / "uploads.json"


def test_profile_argument_wins_over_environment(
    tmp_path: Path, environ: dict[str, str]
) -> None:
    _write(
        tmp_path / "project" / "loom.toml",
        "[profiles.a]\nevent_buffer = 1\n[profiles.b]\nevent_buffer = 2\n",
    )
    environ["LOOM_PROFILE"] = "a"

    assert load_settings(project_root=tmp_path / "project", environ=environ).event_buffer == 1
    settings = load_settings(
        profile="b", project_root=tmp_path / "project", environ=environ
    )
    assert settings.event_buffer == 2


def test_unknown_profile_is_rejected(tmp_path: Path, environ: dict[str, str]) -> None:
    _write(tmp_path / "project" / "loom.toml", "[profiles.studio]\n")

    with pytest.raises(LoomConfigError, match="Available profiles: studio"):
        load_settings(profile="farm", project_root=tmp_path / "project", environ=environ)


@pytest.mark.parametrize(
    "content",
    [
        "[profiles.default]\nurl_encode_passes = 0\n",
        "[profiles.default]\nevent_buffer = 'many'\n",
        "[profiles.default]\npoll_interval = 0\n",
        "[profiles.default]\ninject_mathjax_config = 'maybe'\n",
        "[profiles.default]\ncolour = 'blue'\n",
        "[profiles.default\n",
    ],
)
def test_invalid_configuration_raises(
    tmp_path: Path, environ: dict[str, str], content: str
) -> None:
    _write(tmp_path / "project" / "loom.toml", content)

    with pytest.raises(LoomConfigError):
        load_settings(project_root=tmp_path / "project", environ=environ)
