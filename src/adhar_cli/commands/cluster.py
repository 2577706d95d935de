"""Cluster commands.

`adhar cluster` inspects and manages clusters across every configured
provider (plus the local kind provider, which is always available).
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import click

from ..config import PlatformConfig, load_config
from ..errors import AdharError, NotSupportedError
from ..formatters import print_cluster_table, print_config_yaml, print_provider_table
from ..providers.locator import ClusterLocator
from ..providers.registry import PROVIDER_CATALOG, ProviderRegistry, default_registry
from ..shared.logging import get_logger

logger = get_logger(__name__)


def build_locator(
    config: PlatformConfig, registry: ProviderRegistry | None = None
) -> ClusterLocator:
    """Locator over the configured providers; providers that cannot be built are skipped."""
    registry = registry or default_registry
    providers = []
    for name, provider_config in config.providers.items():
        try:
            provider = registry.create(provider_config.type, provider_config.to_provider_map())
            providers.append(provider)
        except AdharError as e:
            logger.warning("provider unavailable", provider=name, error=str(e))
    return ClusterLocator(providers, registry=registry)


def _locator(ctx: click.Context) -> ClusterLocator:
    try:
        config = load_config(ctx.obj.get("config_path"))
    except AdharError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)
    return build_locator(config)


@click.group()
def cluster() -> None:
    """Inspect and manage clusters."""
    pass


@cluster.command("list")
@click.option("--provider", help="Only list clusters of this provider")
@click.pass_context
def cluster_list(ctx: click.Context, provider: str | None) -> None:
    """List clusters across providers."""
    locator = _locator(ctx)
    clusters = asyncio.run(locator.list_all())
    if provider:
        clusters = [c for c in clusters if c.provider == provider.lower()]

    if ctx.obj.get("json_output"):
        click.echo(json.dumps([c.to_dict() for c in clusters], indent=2))
        return
    print_cluster_table(clusters)


@cluster.command("get")
@click.argument("ref")
@click.pass_context
def cluster_get(ctx: click.Context, ref: str) -> None:
    """Show a cluster by id or name."""
    locator = _locator(ctx)
    try:
        _, found = asyncio.run(locator.locate(ref))
    except AdharError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)

    if ctx.obj.get("json_output"):
        click.echo(json.dumps(found.to_dict(), indent=2))
        return
    print_config_yaml(found.to_dict())


@cluster.command("delete")
@click.argument("ref")
@click.option("--force", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def cluster_delete(ctx: click.Context, ref: str, force: bool) -> None:
    """Delete a cluster by id or name."""
    locator = _locator(ctx)

    try:
        provider, found = asyncio.run(locator.locate(ref))
    except AdharError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)

    if not force and not click.confirm(f"Delete cluster '{found.id}'?", default=False):
        click.echo("Aborted.")
        return

    try:
        asyncio.run(provider.delete_cluster(found.id))
    except AdharError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)
    click.echo(f"✓ Cluster '{found.id}' deleted")


@cluster.command("kubeconfig")
@click.argument("ref")
@click.option("-o", "--output", type=click.Path(), help="Write to file instead of stdout")
@click.pass_context
def cluster_kubeconfig(ctx: click.Context, ref: str, output: str | None) -> None:
    """Print the kubeconfig of a cluster."""
    locator = _locator(ctx)

    async def _kubeconfig() -> str:
        provider, found = await locator.locate(ref)
        return await provider.get_kubeconfig(found.id)

    try:
        kubeconfig = asyncio.run(_kubeconfig())
    except AdharError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)

    if output:
        path = Path(output)
        path.write_text(kubeconfig)
        path.chmod(0o600)
        click.echo(f"✓ Kubeconfig written to {path}")
        return
    click.echo(kubeconfig)


@cluster.command("investigate")
@click.argument("ref")
@click.pass_context
def cluster_investigate(ctx: click.Context, ref: str) -> None:
    """Collect diagnostics for a cluster."""
    locator = _locator(ctx)

    async def _investigate() -> dict:
        provider, found = await locator.locate(ref)
        return await provider.investigate_cluster(found.id)

    try:
        report = asyncio.run(_investigate())
    except NotSupportedError as e:
        click.echo(f"⚠ {e.message}")
        return
    except AdharError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)

    if ctx.obj.get("json_output"):
        click.echo(json.dumps(report, indent=2, default=str))
        return
    print_config_yaml(report)


@cluster.command("providers")
@click.pass_context
def cluster_providers(ctx: click.Context) -> None:
    """List supported providers."""
    infos = [PROVIDER_CATALOG[name] for name in sorted(PROVIDER_CATALOG)]
    if ctx.obj.get("json_output"):
        click.echo(
            json.dumps(
                [
                    {
                        "name": info.name,
                        "displayName": info.display_name,
                        "description": info.description,
                        "requiredConfig": info.required_config,
                        "regions": info.regions,
                        "features": info.features,
                    }
                    for info in infos
                ],
                indent=2,
            )
        )
        return
    print_provider_table(infos)
