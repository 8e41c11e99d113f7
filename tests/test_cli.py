"""Tests for the command line interface."""

import pytest
from click.testing import CliRunner

from kuber_controller import __version__, cli


@pytest.fixture
def runner():
    """Provide a click test runner."""
    return CliRunner()


@pytest.mark.unit
class TestCli:
    """Test the controller commands."""

    def test_version(self, runner):
        """Test that the version command prints the package version."""
        result = runner.invoke(cli.cli, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_run_help_lists_options(self, runner):
        """Test that run documents its overrides."""
        result = runner.invoke(cli.cli, ["run", "--help"])
        assert result.exit_code == 0
        for option in ("--kubeconfig", "--leader-elect", "--workers", "--log-level"):
            assert option in result.output

    def test_run_rejects_zero_workers(self, runner):
        """Test option validation before anything connects."""
        result = runner.invoke(cli.cli, ["run", "--workers", "0"])
        assert result.exit_code == 2

    def test_run_exits_when_cluster_config_fails(self, runner, monkeypatch, settings):
        """Test that an unusable kubeconfig ends the process with status 1."""

        def unavailable(*args, **kwargs):
            raise RuntimeError("no cluster configuration found")

        monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
        monkeypatch.setattr(cli.KubernetesResourceClient, "from_config", unavailable)
        result = runner.invoke(cli.cli, ["run", "--log-level", "error"])
        assert result.exit_code == 1
