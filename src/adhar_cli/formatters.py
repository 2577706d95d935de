"""CLI output formatting helpers."""

from typing import Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from .models import Cluster
from .providers.registry import ProviderInfo

console = Console()

STATUS_STYLES = {
    "running": "green",
    "creating": "yellow",
    "updating": "yellow",
    "deleting": "yellow",
    "error": "red",
}


def print_config_yaml(data: dict[str, Any], section: str | None = None) -> None:
    """Print data as YAML.

    Args:
        data: Data to print
        section: Optional section name for header
    """
    if section:
        click.echo(f"{section}:")
        yaml_str = yaml.dump(data, default_flow_style=False, sort_keys=False)
        for line in yaml_str.splitlines():
            click.echo(f"  {line}")
    else:
        click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))


def print_cluster_table(clusters: list[Cluster]) -> None:
    """Print clusters as a table.

    Args:
        clusters: Clusters to list
    """
    if not clusters:
        click.echo("No clusters found.")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("NAME")
    table.add_column("PROVIDER")
    table.add_column("REGION")
    table.add_column("VERSION")
    table.add_column("STATUS")
    table.add_column("ENDPOINT")
    for cluster in sorted(clusters, key=lambda c: c.id):
        status = cluster.status.value
        style = STATUS_STYLES.get(status, "dim")
        table.add_row(
            cluster.id,
            cluster.name,
            cluster.provider,
            cluster.region,
            cluster.version or "-",
            f"[{style}]{status}[/{style}]",
            cluster.endpoint or "-",
        )
    console.print(table)


def print_provider_table(providers: list[ProviderInfo]) -> None:
    """Print the provider catalog.

    Args:
        providers: Catalog entries to show
    """
    table = Table(show_header=True, header_style="bold")
    table.add_column("PROVIDER")
    table.add_column("NAME")
    table.add_column("DESCRIPTION")
    table.add_column("REQUIRED CONFIG")
    table.add_column("REGIONS")
    for info in providers:
        table.add_row(
            info.name,
            info.display_name,
            info.description,
            ", ".join(info.required_config) or "-",
            ", ".join(info.regions),
        )
    console.print(table)
