"""Unit tests for the CLI — command registration, exit codes, plan output."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from deckhand.cli import common
from deckhand.cli.app import app
from deckhand.cli.commands import run as run_module
from deckhand.models.config import ConfigError
from deckhand.models.run import PipelineRun
from deckhand.models.stages import RunStatus

runner = CliRunner(env={"COLUMNS": "200"})

MINIMAL_TOML = """
project_name = "shop"

[[artifacts]]
name = "api"
image = "registry.test/shop-api"
context = "api"

[[services]]
name = "api"
artifact = "api"

[[health_checks]]
service = "api"
url = "http://localhost:8080/health"
"""


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("DECKHAND_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.delenv("DECKHAND_BUILD_ID", raising=False)
    path = tmp_path / "deckhand.toml"
    path.write_text(MINIMAL_TOML, encoding="utf-8")
    return path


class _StubCoordinator:
    status = RunStatus.SUCCESS

    def __init__(self, config, settings=None) -> None:
        self.config = config

    def run(self, *, build_id=None, notify=True, cancel=None) -> PipelineRun:
        run = PipelineRun(project=self.config.project_name, build_id=str(build_id or 1))
        run.complete(self.status, "" if self.status == RunStatus.SUCCESS else "something broke")
        run.finalize()
        return run


class TestCliApp:
    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "verify", "plan"):
            assert command in result.output

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_version(self):
        from deckhand import __version__

        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestRunCommand:
    @pytest.mark.parametrize(
        ("status", "exit_code"),
        [(RunStatus.SUCCESS, 0), (RunStatus.PARTIAL_FAILURE, 0), (RunStatus.FAILED, 1)],
    )
    def test_exit_code_follows_status(self, config_file, monkeypatch, status, exit_code):
        stub = type("Stub", (_StubCoordinator,), {"status": status})
        monkeypatch.setattr(run_module, "PipelineCoordinator", stub)
        result = runner.invoke(app, ["run", "--config", str(config_file), "--no-notify"])
        assert result.exit_code == exit_code
        assert "shop" in result.output

    def test_missing_config_exits_2(self, tmp_path: Path):
        result = runner.invoke(app, ["run", "--config", str(tmp_path / "nope.toml")])
        assert result.exit_code == 2


class TestPlanCommand:
    def test_plan_shows_next_build(self, config_file):
        result = runner.invoke(app, ["plan", "--config", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "#1" in result.output
        assert "registry.test/shop-api:1" in result.output
        assert "http://localhost:8080/health" in result.output

    def test_plan_with_build_id(self, config_file):
        result = runner.invoke(app, ["plan", "--config", str(config_file), "--build-id", "42"])
        assert "registry.test/shop-api:42" in result.output


class TestVerifyCommand:
    def test_no_checks(self, tmp_path: Path):
        path = tmp_path / "deckhand.toml"
        path.write_text('project_name = "empty"\n', encoding="utf-8")
        result = runner.invoke(app, ["verify", "--config", str(path)])
        assert result.exit_code == 0
        assert "No health checks" in result.output


class TestFindConfig:
    def test_explicit_path_wins(self, tmp_path: Path):
        assert common.find_config(tmp_path / "x.toml") == tmp_path / "x.toml"

    def test_prefers_deckhand_toml(self, tmp_path: Path):
        (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
        (tmp_path / "deckhand.toml").write_text("", encoding="utf-8")
        assert common.find_config(None, tmp_path).name == "deckhand.toml"

    def test_falls_back_to_pyproject(self, tmp_path: Path):
        (tmp_path / "pyproject.toml").write_text("", encoding="utf-8")
        assert common.find_config(None, tmp_path).name == "pyproject.toml"

    def test_nothing_found(self, tmp_path: Path):
        with pytest.raises(ConfigError):
            common.find_config(None, tmp_path)
