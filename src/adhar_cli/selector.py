"""Environment Selector - Interactive environment selection for `adhar up --select`.

This module provides an interactive UI for choosing which configured
environments to provision.
"""

from __future__ import annotations

import click
import questionary
from questionary import Choice

from .config import PRODUCTION, PlatformConfig, ResolvedEnvironment


class EnvironmentSelector:
    """Interactive environment selection.

    Uses questionary for checkbox-based selection with keyboard navigation.
    """

    def __init__(self, config: PlatformConfig):
        """Initialize selector.

        Args:
            config: Platform configuration listing the environments
        """
        self.config = config

    def environments(self) -> list[ResolvedEnvironment]:
        return list(self.config.resolve_environments().values())

    def prompt_selection(self, environments: list[ResolvedEnvironment] | None = None) -> list[str]:
        """Show interactive checkbox selection.

        Non-production environments are pre-selected.

        Args:
            environments: Environments to offer (all configured ones by default)

        Returns:
            List of selected environment names

        Raises:
            KeyboardInterrupt: If user cancels (Ctrl+C)
        """
        environments = self.environments() if environments is None else environments
        if not environments:
            return []

        choices = [
            Choice(
                title=self._format_environment_choice(env),
                value=env.name,
                checked=env.type != PRODUCTION,
            )
            for env in environments
        ]

        selected = questionary.checkbox(
            "Select environments to provision (↑↓ navigate, Space toggle, Enter confirm):",
            choices=choices,
        ).ask()

        if selected is None:
            # User cancelled (Ctrl+C)
            raise KeyboardInterrupt("Selection cancelled by user")

        return selected

    def select_all(self, environments: list[ResolvedEnvironment] | None = None) -> list[str]:
        """Non-interactive mode: select all environments."""
        environments = self.environments() if environments is None else environments
        return [env.name for env in environments]

    def _format_environment_choice(self, env: ResolvedEnvironment) -> str:
        """Format an environment for display in the selection UI.

        Args:
            env: Environment to format

        Returns:
            Formatted string like "staging   aws/us-east-1 (non-production)"
        """
        name_part = f"{env.name:<20s}"
        target = f"{env.provider}/{env.region}" if env.region else env.provider
        marker = " ⚠ production" if env.type == PRODUCTION else f" ({env.type})"
        return f"{name_part} {target}{marker}"


def display_selection_summary(selected_names: list[str]) -> None:
    """Display a summary of the selection.

    Args:
        selected_names: List of selected environment names
    """
    count = len(selected_names)
    if count == 0:
        click.echo("No environments selected.")
    elif count == 1:
        click.echo(f"1 environment selected → {selected_names[0]}")
    else:
        click.echo(f"{count} environments selected → {', '.join(selected_names)}")
