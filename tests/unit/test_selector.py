"""Unit tests for interactive environment selection."""

from unittest.mock import MagicMock, patch

import pytest

from adhar_cli.config import load_config
from adhar_cli.selector import EnvironmentSelector, display_selection_summary


@pytest.fixture
def selector(config_file):
    return EnvironmentSelector(load_config(config_file))


def _checkbox(answer):
    prompt = MagicMock()
    prompt.ask.return_value = answer
    return MagicMock(return_value=prompt)


class TestEnvironmentSelector:
    """Tests for EnvironmentSelector."""

    def test_prompt_preselects_non_production(self, selector):
        """Test non-production environments start checked and production does not."""
        checkbox = _checkbox(["staging"])
        with patch("adhar_cli.selector.questionary.checkbox", checkbox):
            selected = selector.prompt_selection()

        assert selected == ["staging"]
        choices = {choice.value: choice for choice in checkbox.call_args.kwargs["choices"]}
        assert choices["staging"].checked
        assert not choices["production"].checked

    def test_prompt_cancelled(self, selector):
        """Test Ctrl+C in the prompt raises KeyboardInterrupt."""
        with patch("adhar_cli.selector.questionary.checkbox", _checkbox(None)):
            with pytest.raises(KeyboardInterrupt):
                selector.prompt_selection()

    def test_prompt_without_environments(self, selector):
        """Test nothing is asked when there is nothing to choose."""
        checkbox = _checkbox([])
        with patch("adhar_cli.selector.questionary.checkbox", checkbox):
            assert selector.prompt_selection([]) == []
        checkbox.assert_not_called()

    def test_format_choice(self, selector):
        """Test choices show provider, region and a production marker."""
        envs = {env.name: env for env in selector.environments()}

        staging = selector._format_environment_choice(envs["staging"])
        production = selector._format_environment_choice(envs["production"])

        assert staging == f"{'staging':<20s} do/nyc3 (non-production)"
        assert production == f"{'production':<20s} aws/us-west-2 ⚠ production"

    def test_select_all(self, selector):
        """Test non-interactive selection returns every environment."""
        assert selector.select_all() == ["staging", "production"]


class TestSelectionSummary:
    """Tests for display_selection_summary."""

    @pytest.mark.parametrize(
        "names,expected",
        [
            ([], "No environments selected."),
            (["staging"], "1 environment selected → staging"),
            (["staging", "production"], "2 environments selected → staging, production"),
        ],
    )
    def test_summary(self, capsys, names, expected):
        """Test the summary line for zero, one and many environments."""
        display_selection_summary(names)
        assert capsys.readouterr().out.strip() == expected
