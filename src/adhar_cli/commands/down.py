"""Down command for removing the local platform."""

from __future__ import annotations

import asyncio
import sys

import click

from ..errors import AdharError
from ..pipeline.local import DEFAULT_CLUSTER_NAME
from ..providers.registry import create_provider
from ..shared.logging import get_logger

logger = get_logger(__name__)


@click.command()
@click.option("--name", default=DEFAULT_CLUSTER_NAME, help="Local cluster name")
@click.option("--force", is_flag=True, help="Do not ask for confirmation")
def down(name: str, force: bool) -> None:
    """Delete the local kind cluster and its record."""
    if not force and not click.confirm(f"Delete local cluster '{name}'?", default=False):
        click.echo("Aborted.")
        return

    provider = create_provider("kind")
    cluster_id = provider.cluster_id(name)
    try:
        asyncio.run(provider.delete_cluster(cluster_id))
    except AdharError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)

    logger.info("local cluster deleted", cluster_id=cluster_id)
    click.echo(f"✓ Cluster '{name}' deleted")
