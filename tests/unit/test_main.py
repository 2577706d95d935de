"""Unit tests for the root command group."""

import pytest
from click.testing import CliRunner

from adhar_cli import __version__
from adhar_cli.main import cli


@pytest.mark.cli_unit
class TestMain:
    """Tests for the adhar entry point."""

    @pytest.fixture
    def runner(self):
        """Create CLI runner."""
        return CliRunner()

    def test_version(self, runner):
        """Test version output."""
        result = runner.invoke(cli, ["version"])

        assert result.exit_code == 0
        assert result.output.strip() == f"adhar version {__version__}"

    def test_help_lists_commands(self, runner):
        """Test every command is registered."""
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("up", "down", "cluster", "config", "version"):
            assert command in result.output

    def test_log_file(self, runner, tmp_path):
        """Test --log-file is accepted and created."""
        log_file = tmp_path / "adhar.log"
        result = runner.invoke(cli, ["--log-file", str(log_file), "-vv", "version"])

        assert result.exit_code == 0
        assert log_file.exists()

    def test_unknown_command(self, runner):
        """Test unknown commands fail with usage."""
        result = runner.invoke(cli, ["provision"])

        assert result.exit_code == 2
        assert "No such command" in result.output
