"""Unit tests for adhar up command."""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from adhar_cli.commands.up import parse_extra_ports
from adhar_cli.errors import PhaseError, ResourceError
from adhar_cli.main import cli
from adhar_cli.pipeline.manager import EnvironmentResult, ProvisionSummary
from adhar_cli.pipeline.phases import PhaseOutcome, PhaseStatus, PipelineResult


def _result(name="adhar", failed=False) -> PipelineResult:
    outcomes = [PhaseOutcome(name="one", status=PhaseStatus.COMPLETED)]
    if not failed:
        outcomes.append(PhaseOutcome(name="two", status=PhaseStatus.COMPLETED))
        return PipelineResult(name=name, outcomes=outcomes)
    outcomes.append(PhaseOutcome(name="two", status=PhaseStatus.FAILED))
    error = PhaseError(
        phase="Create Kind cluster", index=1, cause=ResourceError(message="port 443 in use")
    )
    return PipelineResult(name=name, outcomes=outcomes, failed_index=1, error=error)


def _summary(*failing: str) -> ProvisionSummary:
    return ProvisionSummary(
        results=[
            EnvironmentResult(name=name, success=name not in failing)
            for name in ("staging", "production")
        ]
    )


class TestParseExtraPorts:
    """Tests for parse_extra_ports."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("", []),
            ("8080:30080", ["8080:30080"]),
            ("8080:30080, 9090:30090,", ["8080:30080", "9090:30090"]),
        ],
    )
    def test_parse(self, value, expected):
        """Test comma separated mappings are split and trimmed."""
        assert parse_extra_ports(value) == expected


@pytest.mark.cli_unit
class TestUpLocal:
    """Tests for adhar up without a configuration file."""

    @pytest.fixture
    def runner(self):
        """Create CLI runner."""
        return CliRunner()

    def test_up_local(self, runner):
        """Test the local pipeline runs with options from the flags."""
        run_local = AsyncMock(return_value=_result())
        with patch("adhar_cli.commands.up._run_local", run_local):
            result = runner.invoke(
                cli,
                [
                    "up",
                    "--name",
                    "dev",
                    "--protocol",
                    "http",
                    "--port",
                    "8080",
                    "--extra-ports",
                    "9000:30900",
                    "--recreate",
                    "--no-exit",
                ],
            )

        assert result.exit_code == 0
        options, runtime = run_local.call_args.args
        assert options.name == "dev"
        assert options.protocol == "http"
        assert options.port == "8080"
        assert options.extra_ports == ["9000:30900"]
        assert options.recreate
        assert not options.exit_on_sync
        assert not runtime.dry_run

    def test_up_local_quiet_dry_run(self, runner):
        """Test global quiet and dry run flags reach the runtime options."""
        run_local = AsyncMock(return_value=_result())
        with patch("adhar_cli.commands.up._run_local", run_local):
            result = runner.invoke(cli, ["-q", "-v", "up", "--dry-run"])

        assert result.exit_code == 0
        runtime = run_local.call_args.args[1]
        assert runtime.suppress_output
        assert runtime.dry_run
        assert runtime.verbose == 1

    def test_up_local_failure(self, runner):
        """Test a failed phase exits 1 with the summary and the error."""
        run_local = AsyncMock(return_value=_result(failed=True))
        with patch("adhar_cli.commands.up._run_local", run_local):
            result = runner.invoke(cli, ["up"])

        assert result.exit_code == 1
        assert "1 of 2 steps completed" in result.output
        assert "✗ Create Kind cluster: port 443 in use" in result.output

    def test_up_local_interrupted(self, runner):
        """Test Ctrl+C is reported as a cancellation."""
        with patch("adhar_cli.commands.up._run_local", AsyncMock(side_effect=KeyboardInterrupt)):
            result = runner.invoke(cli, ["up"])

        assert result.exit_code == 1
        assert "✗ Cancelled" in result.output


@pytest.mark.cli_unit
class TestUpEnvironments:
    """Tests for adhar up with a configuration file."""

    @pytest.fixture
    def runner(self):
        """Create CLI runner."""
        return CliRunner()

    def test_up_all_environments(self, runner, config_file):
        """Test every environment is provisioned when none is named."""
        run_all = AsyncMock(return_value=_summary())
        with patch("adhar_cli.commands.up._run_environments", run_all):
            result = runner.invoke(cli, ["up", "-f", str(config_file)])

        assert result.exit_code == 0
        assert "✓ Environments Provisioned: 2/2" in result.output
        config, names, _ = run_all.call_args.args
        assert names is None
        assert set(config.environments) == {"staging", "production"}

    def test_up_global_file_option(self, runner, config_file):
        """Test the group-level -f selects the configuration too."""
        run_all = AsyncMock(return_value=_summary())
        with patch("adhar_cli.commands.up._run_environments", run_all):
            result = runner.invoke(cli, ["-f", str(config_file), "up"])

        assert result.exit_code == 0
        run_all.assert_awaited_once()

    def test_up_partial_failure(self, runner, config_file):
        """Test a failed environment makes the command fail."""
        with patch(
            "adhar_cli.commands.up._run_environments",
            AsyncMock(return_value=_summary("staging")),
        ):
            result = runner.invoke(cli, ["up", "-f", str(config_file)])

        assert result.exit_code == 1
        assert "failed to provision 1 out of 2 environments" in result.output

    def test_up_single_environment(self, runner, config_file):
        """Test --env provisions only the named environment."""
        run_one = AsyncMock(return_value=_result(name="staging"))
        with patch("adhar_cli.commands.up._run_environment", run_one):
            result = runner.invoke(cli, ["up", "-f", str(config_file), "--env", "staging"])

        assert result.exit_code == 0
        assert "✓ Environment staging provisioned (2 of 2 steps completed)" in result.output
        assert run_one.call_args.args[1] == "staging"

    def test_up_single_environment_failure(self, runner, config_file):
        """Test a phase failure for --env exits 1 with the phase name."""
        error = PhaseError(
            phase="Create cluster", index=2, cause=ResourceError(message="eksctl create failed")
        )
        with patch("adhar_cli.commands.up._run_environment", AsyncMock(side_effect=error)):
            result = runner.invoke(cli, ["up", "-f", str(config_file), "--env", "production"])

        assert result.exit_code == 1
        assert "✗ Create cluster: eksctl create failed" in result.output

    def test_up_select(self, runner, config_file):
        """Test --select provisions the chosen environments."""
        selected = ProvisionSummary(results=[EnvironmentResult(name="staging", success=True)])
        run_all = AsyncMock(return_value=selected)
        with (
            patch(
                "adhar_cli.commands.up.EnvironmentSelector.prompt_selection",
                return_value=["staging"],
            ),
            patch("adhar_cli.commands.up._run_environments", run_all),
        ):
            result = runner.invoke(cli, ["up", "-f", str(config_file), "--select"])

        assert result.exit_code == 0
        assert "1 environment selected → staging" in result.output
        assert run_all.call_args.args[1] == ["staging"]

    def test_up_select_nothing(self, runner, config_file):
        """Test an empty selection provisions nothing."""
        run_all = AsyncMock()
        with (
            patch("adhar_cli.commands.up.EnvironmentSelector.prompt_selection", return_value=[]),
            patch("adhar_cli.commands.up._run_environments", run_all),
        ):
            result = runner.invoke(cli, ["up", "-f", str(config_file), "--select"])

        assert result.exit_code == 0
        assert "No environments selected." in result.output
        run_all.assert_not_called()

    def test_up_select_cancelled(self, runner, config_file):
        """Test cancelling the prompt exits 1."""
        with patch(
            "adhar_cli.commands.up.EnvironmentSelector.prompt_selection",
            side_effect=KeyboardInterrupt,
        ):
            result = runner.invoke(cli, ["up", "-f", str(config_file), "--select"])

        assert result.exit_code == 1
        assert "✗ Cancelled" in result.output

    def test_up_missing_file(self, runner, tmp_path):
        """Test a missing configuration file is reported."""
        result = runner.invoke(cli, ["up", "-f", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "config file not found" in result.output

    def test_up_invalid_yaml(self, runner, tmp_path):
        """Test an unparsable configuration file is reported."""
        path = tmp_path / "broken.yaml"
        path.write_text("providers: [unclosed\n")
        result = runner.invoke(cli, ["up", "-f", str(path)])

        assert result.exit_code == 1
        assert "invalid YAML" in result.output
