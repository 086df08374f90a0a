"""Tests for the mediator CLI."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from src.cli import cli
from src.config.settings import ConfigError

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "MEDIATOR_REGISTER", "MEDIATOR_PORT", "MEDIATOR_HOST",
        "MEDIATOR_CONFIG_PATH", "MEDIATOR_SHUTDOWN_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_show_config_prints_bundled_defaults() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, [
        "--mediator-config", str(CONFIG_DIR / "mediator.json"), "show-config",
    ])
    assert result.exit_code == 0
    output = json.loads(result.output)
    assert output["urn"].startswith("urn:mediator:")
    assert "upstreamTaskURL" in output["config"]


def test_show_config_missing_file_fails(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, [
        "--mediator-config", str(tmp_path / "nope.json"), "show-config",
    ])
    assert result.exit_code == 1
    assert "Cannot read mediator config" in result.output


def test_serve_standalone_runs_uvicorn() -> None:
    runner = CliRunner()
    app = MagicMock()
    with patch("src.cli.build_app", return_value=app) as build, \
            patch("src.cli.uvicorn.run") as run:
        result = runner.invoke(cli, ["serve", "--standalone", "--port", "4321"])

    assert result.exit_code == 0
    settings = build.call_args[0][0]
    assert settings.register is False
    assert settings.port == 4321
    run.assert_called_once()
    assert run.call_args[0][0] is app
    assert run.call_args.kwargs["port"] == 4321
    assert run.call_args.kwargs["timeout_graceful_shutdown"] == 5.0


def test_serve_bounds_graceful_shutdown(monkeypatch: pytest.MonkeyPatch) -> None:
    # A caller held open after a failed forward must not keep the server up.
    monkeypatch.setenv("MEDIATOR_SHUTDOWN_TIMEOUT", "1.5")
    runner = CliRunner()
    with patch("src.cli.build_app"), patch("src.cli.uvicorn.run") as run:
        result = runner.invoke(cli, ["serve", "--standalone"])

    assert result.exit_code == 0
    assert run.call_args.kwargs["timeout_graceful_shutdown"] == 1.5


def test_serve_defaults_to_registered_mode() -> None:
    runner = CliRunner()
    with patch("src.cli.build_app") as build, patch("src.cli.uvicorn.run"):
        result = runner.invoke(cli, ["serve"])

    assert result.exit_code == 0
    assert build.call_args[0][0].register is True


def test_serve_config_error_exits_nonzero() -> None:
    runner = CliRunner()
    with patch("src.cli.build_app", side_effect=ConfigError("TLS file not found: tls/key.pem")), \
            patch("src.cli.uvicorn.run") as run:
        result = runner.invoke(cli, ["serve", "--standalone"])

    assert result.exit_code == 1
    assert "TLS file not found" in result.output
    run.assert_not_called()
