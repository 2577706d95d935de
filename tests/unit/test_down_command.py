"""Unit tests for adhar down command."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner
from mocks import FakeProvider

from adhar_cli.errors import CommandError
from adhar_cli.main import cli


@pytest.mark.cli_unit
class TestDown:
    """Tests for adhar down."""

    @pytest.fixture
    def runner(self):
        """Create CLI runner."""
        return CliRunner()

    def test_down_force(self, runner):
        """Test the local cluster is deleted without a prompt."""
        provider = FakeProvider(name="kind")
        with patch("adhar_cli.commands.down.create_provider", return_value=provider) as create:
            result = runner.invoke(cli, ["down", "--force"])

        assert result.exit_code == 0
        assert "✓ Cluster 'adhar' deleted" in result.output
        create.assert_called_once_with("kind")
        assert provider.calls == [("delete_cluster", "kind-adhar")]

    def test_down_named_cluster(self, runner):
        """Test --name selects the cluster."""
        provider = FakeProvider(name="kind")
        with patch("adhar_cli.commands.down.create_provider", return_value=provider):
            result = runner.invoke(cli, ["down", "--name", "dev"], input="y\n")

        assert result.exit_code == 0
        assert provider.calls == [("delete_cluster", "kind-dev")]

    def test_down_aborted(self, runner):
        """Test declining the prompt deletes nothing."""
        provider = FakeProvider(name="kind")
        with patch("adhar_cli.commands.down.create_provider", return_value=provider):
            result = runner.invoke(cli, ["down"], input="n\n")

        assert result.exit_code == 0
        assert "Aborted." in result.output
        assert provider.calls == []

    def test_down_failure(self, runner):
        """Test a failed deletion exits 1."""
        error = CommandError(command=["kind", "delete", "cluster"], stderr="docker not running")
        provider = FakeProvider(name="kind", errors={"delete_cluster": error})
        with patch("adhar_cli.commands.down.create_provider", return_value=provider):
            result = runner.invoke(cli, ["down", "--force"])

        assert result.exit_code == 1
        assert "✗" in result.output
        assert "docker not running" in result.output
