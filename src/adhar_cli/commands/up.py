"""Up command for provisioning the platform.

This module provides the `adhar up` command. Without a configuration file it
stands up the platform on a local kind cluster; with one it provisions the
file's environments on their cloud providers.
"""

from __future__ import annotations

import asyncio
import sys

import click

from ..config import PlatformConfig, RuntimeOptions, load_config
from ..errors import AdharError
from ..pipeline.local import DEFAULT_CLUSTER_NAME, DEFAULT_KUBE_VERSION, LocalOptions, LocalPipeline
from ..pipeline.manager import ProviderManager, ProvisionSummary
from ..pipeline.phases import PipelineResult
from ..selector import EnvironmentSelector, display_selection_summary
from ..shared.cancel import CancelToken, install_signal_handlers
from ..shared.logging import get_logger

logger = get_logger(__name__)


def parse_extra_ports(value: str) -> list[str]:
    """Split "8080:30080,9090:30090" into port mappings."""
    return [item.strip() for item in value.split(",") if item.strip()]


async def _run_local(options: LocalOptions, runtime: RuntimeOptions) -> PipelineResult:
    token = CancelToken()
    install_signal_handlers(token)
    pipeline = LocalPipeline(options, runtime, token=token)
    return await pipeline.run()


async def _run_environment(
    config: PlatformConfig, name: str, runtime: RuntimeOptions
) -> PipelineResult:
    token = CancelToken()
    install_signal_handlers(token)
    manager = ProviderManager(config, runtime=runtime, token=token)
    return await manager.provision_environment(name)


async def _run_environments(
    config: PlatformConfig, names: list[str] | None, runtime: RuntimeOptions
) -> ProvisionSummary:
    token = CancelToken()
    install_signal_handlers(token)
    manager = ProviderManager(config, runtime=runtime, token=token)
    return await manager.provision_all(names)


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


@click.command()
@click.option("-f", "--file", "config_file", type=click.Path(), help="Platform configuration file")
@click.option("--env", "environment", help="Provision a single environment from the file")
@click.option("-d", "--dry-run", is_flag=True, help="Show what would be created without changes")
@click.option("--select", is_flag=True, help="Choose environments interactively")
@click.option("--recreate", is_flag=True, help="Delete and recreate the local cluster")
@click.option("--name", default=DEFAULT_CLUSTER_NAME, help="Local cluster name")
@click.option(
    "--kube-version", default=DEFAULT_KUBE_VERSION, help="Kubernetes version of the local cluster"
)
@click.option("--extra-ports", default="", help="Extra port mappings, e.g. 8080:30080,9090:30090")
@click.option("--kind-config", default="", help="Custom kind configuration file")
@click.option("--host", default="adhar.localtest.me", help="Host name of the platform")
@click.option("--ingress-host-name", default="", help="Host name used by ingress, if different")
@click.option(
    "--protocol",
    type=click.Choice(["http", "https"]),
    default="https",
    help="Protocol the platform is served on",
)
@click.option("--port", default="8443", help="Port the platform is served on")
@click.option(
    "--use-path-routing", is_flag=True, help="Route services by path instead of subdomain"
)
@click.option("--dev-password", is_flag=True, help="Use a static development password")
@click.option("--no-exit", is_flag=True, help="Keep watching after the platform is ready")
@click.pass_context
def up(
    ctx: click.Context,
    config_file: str | None,
    environment: str | None,
    dry_run: bool,
    select: bool,
    recreate: bool,
    name: str,
    kube_version: str,
    extra_ports: str,
    kind_config: str,
    host: str,
    ingress_host_name: str,
    protocol: str,
    port: str,
    use_path_routing: bool,
    dev_password: bool,
    no_exit: bool,
) -> None:
    """Provision the platform.

    Examples:

        # Local platform on kind
        adhar up

        # Every environment of a configuration file
        adhar up -f platform.yaml

        # One environment, preview only
        adhar up -f platform.yaml --env staging --dry-run
    """
    runtime = RuntimeOptions(
        suppress_output=ctx.obj.get("quiet", False),
        verbose=ctx.obj.get("verbose", 0),
        dry_run=dry_run,
    )
    config_file = config_file or ctx.obj.get("config_path")

    try:
        if not config_file:
            options = LocalOptions(
                name=name,
                kube_version=kube_version,
                recreate=recreate,
                extra_ports=parse_extra_ports(extra_ports),
                kind_config=kind_config,
                host=host,
                ingress_host=ingress_host_name,
                protocol=protocol,
                port=port,
                use_path_routing=use_path_routing,
                dev_password=dev_password,
                exit_on_sync=not no_exit,
            )
            result = asyncio.run(_run_local(options, runtime))
            if not result.success:
                click.echo(f"  {result.summary}", err=True)
                _fail(str(result.error))
            return

        config = load_config(config_file)
        if environment:
            result = asyncio.run(_run_environment(config, environment, runtime))
            click.echo(f"✓ Environment {environment} provisioned ({result.summary})")
            return

        names = None
        if select:
            names = EnvironmentSelector(config).prompt_selection()
            display_selection_summary(names)
            if not names:
                return
        summary = asyncio.run(_run_environments(config, names, runtime))
        summary.raise_for_status()
        click.echo(f"✓ {summary.summary}")
    except KeyboardInterrupt:
        _fail("Cancelled")
    except AdharError as e:
        logger.debug("up failed", error=str(e))
        _fail(e.message)
