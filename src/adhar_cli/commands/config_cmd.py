"""Config commands."""

from __future__ import annotations

import json
import sys
from dataclasses import asdict
from typing import Any

import click

from ..config import PlatformConfig, load_config
from ..errors import AdharError, ConfigurationError
from ..formatters import print_config_yaml

VALID_SECTIONS = ["globalSettings", "providers", "environments"]

GLOBAL_SETTING_FIELDS = {
    "adharContext": "adhar_context",
    "defaultHost": "default_host",
    "defaultHttpPort": "default_http_port",
    "defaultHttpsPort": "default_https_port",
    "enableHAMode": "enable_ha_mode",
    "email": "email",
    "productionProvider": "production_provider",
    "nonProductionProvider": "non_production_provider",
}


def provider_role(config: PlatformConfig, name: str) -> str:
    """Whether a provider hosts the management cluster, workloads, or both."""
    try:
        workload = config.get_workload_provider()
    except ConfigurationError:
        return "unassigned"
    roles = []
    if config.is_management_provider(name):
        roles.append("management")
    if name == workload:
        roles.append("workload")
    return " and ".join(roles)


def config_to_dict(config: PlatformConfig) -> dict[str, Any]:
    """Resolved configuration as plain data; global settings carry their source."""
    settings = config.global_settings
    global_settings = {
        key: {"value": getattr(settings, attr), "source": config.get_source(key)}
        for key, attr in GLOBAL_SETTING_FIELDS.items()
    }
    providers = {
        name: {
            "type": provider.type,
            "region": provider.region,
            "primary": provider.primary,
            "role": provider_role(config, name),
            # Credentials are never echoed back
            "auth": sorted(provider.auth),
        }
        for name, provider in config.providers.items()
    }
    environments = {}
    for name, env in config.resolve_environments().items():
        environments[name] = {
            "type": env.type,
            "provider": env.provider,
            "region": env.region,
            "clusterConfig": {item.key: item.value for item in env.cluster_config},
            "coreServices": {
                service: asdict(value.chart) for service, value in env.core_services.items()
            },
            "addons": [addon.name for addon in env.addons],
        }
    return {
        "globalSettings": global_settings,
        "providers": providers,
        "environments": environments,
    }


@click.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@click.option("--section", help="Show specific section")
@click.pass_context
def config_show(ctx: click.Context, section: str | None) -> None:
    """Show the resolved configuration and where each setting came from."""
    if section and section not in VALID_SECTIONS:
        click.echo(f"Error: Unknown section '{section}'", err=True)
        click.echo(f"\nValid sections:\n  {', '.join(VALID_SECTIONS)}")
        sys.exit(1)

    try:
        loaded = load_config(ctx.obj.get("config_path"))
        data = config_to_dict(loaded)
    except AdharError as e:
        click.echo(f"✗ {e.message}", err=True)
        sys.exit(1)

    if section:
        data = data[section]

    if ctx.obj.get("json_output"):
        click.echo(json.dumps(data, indent=2, default=str))
        return

    if not section:
        click.echo("Adhar Configuration")
        click.echo(f"Source: {loaded.path or 'built-in defaults'}\n")
    print_config_yaml(data, section)
