"""Tests for the harbormaster CLI."""

import logging

import pytest
import yaml
from typer.testing import CliRunner

from harbormaster import cli
from harbormaster.cli import app
from harbormaster.core.config import load_config

runner = CliRunner()


class TestInitConfig:
    def test_writes_loadable_config(self, tmp_path):
        """Test that the sample configuration validates."""
        output = tmp_path / "conf" / "harbormaster.yaml"

        result = runner.invoke(app, ["init-config", "--output", str(output)])

        assert result.exit_code == 0
        assert yaml.safe_load(output.read_text())["image"]["repository"] == "my-app"
        config = load_config(output)
        assert config.container.wait_for == "READY"


class TestContainerCommands:
    """Tests for commands driving the engine."""

    def test_run_prints_id(self, fake_engine):
        fake_engine.script(
            """\
case "$1" in
  run) echo "abc123def456" ;;
  logs) echo "server READY"; exec sleep 30 ;;
esac
"""
        )
        result = runner.invoke(
            app,
            [
                "--engine", str(fake_engine.binary),
                "run", "nginx",
                "--name", "web",
                "-p", "8080:80",
                "-e", "MODE=dev",
                "--wait-for", "READY",
                "--cmd", "nginx -g 'daemon off;'",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "abc123def456" in result.output
        run_call = fake_engine.calls()[0]
        assert run_call.startswith("run -d --name web -p 8080:80 -e MODE=dev -e FORCE_COLOR=1 nginx")
        assert run_call.endswith("-g daemon off;")

    def test_run_failure_exit_code(self, fake_engine):
        fake_engine.script('echo "pull access denied" >&2; exit 125\n')
        result = runner.invoke(app, ["--engine", str(fake_engine.binary), "run", "nope"])
        assert result.exit_code == 1
        assert "pull access denied" in result.output

    def test_run_invalid_env(self, fake_engine):
        fake_engine.script("")
        result = runner.invoke(app, ["--engine", str(fake_engine.binary), "run", "nginx", "-e", "BROKEN"])
        assert result.exit_code != 0
        assert fake_engine.calls() == []

    def test_stop_failure_shows_logs(self, fake_engine):
        fake_engine.script(
            """\
case "$1" in
  logs) echo "[info] draining"; exec sleep 30 ;;
  stop) sleep 0.3; echo "cannot stop" >&2; exit 1 ;;
esac
"""
        )
        result = runner.invoke(app, ["--engine", str(fake_engine.binary), "stop", "abc"])

        assert result.exit_code == 1
        assert "Captured logs:" in result.output
        assert "[info] draining" in result.output

    def test_rm(self, fake_engine):
        fake_engine.script("")
        result = runner.invoke(app, ["--engine", str(fake_engine.binary), "rm", "abc", "-f"])
        assert result.exit_code == 0
        assert fake_engine.calls() == ["rm -f abc"]

    def test_cleanup_never_fails(self, fake_engine):
        fake_engine.script('case "$1" in logs) exit 0 ;; *) exit 1 ;; esac\n')
        result = runner.invoke(app, ["--engine", str(fake_engine.binary), "cleanup", "abc"])
        assert result.exit_code == 0

    def test_ps_by_image(self, fake_engine):
        fake_engine.script('printf "abc123\\tweb\\tnginx\\tUp 1 minute\\t\\n"\n')
        result = runner.invoke(app, ["--engine", str(fake_engine.binary), "ps", "--image", "nginx"])
        assert result.exit_code == 0
        assert "web" in result.output

    def test_tag(self, fake_engine):
        fake_engine.script("")
        result = runner.invoke(app, ["--engine", str(fake_engine.binary), "tag", "a:1", "b:2"])
        assert result.exit_code == 0
        assert fake_engine.calls() == ["tag a:1 b:2"]

    def test_config_engine_used(self, fake_engine, tmp_path):
        """Test that the engine binary can come from the project file."""
        fake_engine.script("")
        config = tmp_path / "harbormaster.yaml"
        config.write_text(f"engine:\n  binary: {fake_engine.binary}\n")

        result = runner.invoke(app, ["--config", str(config), "ensure-stopped", "web"])

        assert result.exit_code == 0
        assert fake_engine.calls()[0].startswith("ps -a --filter name=web")

    def test_bad_config(self, tmp_path):
        result = runner.invoke(app, ["--config", str(tmp_path / "missing.yaml"), "ps"])
        assert result.exit_code == 1
        assert "Error loading config" in result.output


class TestHubCommands:
    def test_missing_credentials(self, monkeypatch):
        monkeypatch.delenv("HARBORMASTER_HUB_USERNAME", raising=False)
        monkeypatch.delenv("HARBORMASTER_HUB_PASSWORD", raising=False)
        result = runner.invoke(app, ["hub-tags", "web"])
        assert result.exit_code == 1
        assert "credentials missing" in result.output


@pytest.fixture(autouse=True)
def _restore_logging():
    """The CLI reconfigures the root logger; keep tests isolated from that."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLogging:
    def test_cli_uses_module_logger(self):
        assert cli.logger is logging.getLogger("harbormaster.cli")
