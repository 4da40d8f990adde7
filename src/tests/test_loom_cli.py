from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest
from typer.testing import CliRunner

from apps.loom import app as cli_module
from apps.loom.__main__ import main
from apps.loom.config import LoomSettings
from apps.loom.utils.errors import ExitCode
from libraries.rendering.job import Notifier, RenderEnvironment
from libraries.rendering.supervisor import RenderSupervisor
from libraries.rendering.urls import build_output_url

runner = CliRunner()


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> LoomSettings:
    resolved = LoomSettings(url_encode_passes=3)
    monkeypatch.setattr(cli_module, "_settings", lambda profile: resolved)
    return resolved


@pytest.fixture
def use_toolchain(
    monkeypatch: pytest.MonkeyPatch, home: Path
) -> Callable[[Any], None]:
    def install(toolchain: Any) -> None:
        def build(settings: LoomSettings, notify: Notifier) -> RenderSupervisor:
            environment = RenderEnvironment(
                toolchain=toolchain,
                notify=notify,
                url_encode_passes=settings.url_encode_passes,
                poll_interval=0.05,
                home=home,
            )
            return RenderSupervisor(environment)

        monkeypatch.setattr(cli_module, "build_supervisor", build)

    return install


def test_output_url_prints_encoded_location(
    settings: LoomSettings, tmp_path: Path
) -> None:
    output = tmp_path / "site" / "report.html"

    result = runner.invoke(cli_module.app, ["output-url", str(output)])

    assert result.exit_code == 0
    assert result.stdout.strip() == "/" + build_output_url(output.as_posix(), passes=3)


def test_render_streams_output_and_reports_location(
    settings: LoomSettings,
    use_toolchain: Callable[[Any], None],
    script_toolchain: Any,
    document: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    use_toolchain(script_toolchain())

    exit_code = main(["render", str(document)])

    captured = capsys.readouterr()
    assert exit_code == ExitCode.SUCCESS
    assert "Output created: report.html" in captured.out
    assert "processing" in captured.err
    assert "Output: ~/docs/report.html" in captured.out
    assert "Preview URL: /rmd_output/~%25252Fdocs%25252Freport.html/" in captured.out


def test_render_without_output_fails(
    settings: LoomSettings,
    use_toolchain: Callable[[Any], None],
    script_toolchain: Any,
    document: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    use_toolchain(script_toolchain('print("nothing to see")'))

    exit_code = main(["render", str(document)])

    assert exit_code == ExitCode.RENDER_FAILED
    assert "Render failed" in capsys.readouterr().err


def test_render_missing_document(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(["render", str(tmp_path / "missing.Rmd")])

    assert exit_code == ExitCode.VALIDATION
    assert "does not exist" in capsys.readouterr().err


def test_context_reports_missing_toolchain(
    settings: LoomSettings,
    use_toolchain: Callable[[Any], None],
    script_toolchain: Any,
    capsys: pytest.CaptureFixture[str],
) -> None:
    use_toolchain(script_toolchain(installed=False))

    assert main(["context"]) == ExitCode.TOOLCHAIN
    err = capsys.readouterr().err
    assert "Toolchain error" in err
    assert "hint: Install rmarkdown" in err

    use_toolchain(script_toolchain())

    assert main(["context"]) == ExitCode.SUCCESS
    assert "installed" in capsys.readouterr().out


def test_interrupt_maps_to_exit_code(
    settings: LoomSettings,
    use_toolchain: Callable[[Any], None],
    script_toolchain: Any,
    capsys: pytest.CaptureFixture[str],
) -> None:
    toolchain = script_toolchain()

    def interrupted() -> bool:
        raise KeyboardInterrupt

    toolchain.is_installed = interrupted
    use_toolchain(toolchain)

    assert main(["context"]) == ExitCode.INTERRUPTED
    assert "Interrupted" in capsys.readouterr().err
