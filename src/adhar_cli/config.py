"""Platform configuration management.

Handles the declarative platform file (~/.adhar/config.yaml by default):
providers, environment templates, environments and global settings.
Supports environment variable overrides for global settings and records where
each global value came from.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError
from .shared.logging import get_logger
from .shared.paths import get_config_file

logger = get_logger(__name__)

# Environment types
PRODUCTION = "production"
NON_PRODUCTION = "non-production"

# Core services every environment may configure
CORE_SERVICES = ("argocd", "gitea", "nginx", "cilium")

# Providers that may be configured at the same time
MAX_PROVIDERS = 2

# Default values
DEFAULT_CONTEXT = "adhar-mgmt"
DEFAULT_HOST = "adhar.localtest.me"
DEFAULT_EMAIL = "admin@adhar.io"

# Environment variable overrides for global settings
ENV_VARS = {
    "defaultHost": "ADHAR_DEFAULT_HOST",
    "email": "ADHAR_EMAIL",
    "enableHAMode": "ADHAR_ENABLE_HA",
}

# Provider-level authentication keys carried into the provider config map
AUTH_FIELDS = (
    "accessKeyId",
    "secretAccessKey",
    "sessionToken",
    "profile",
    "clientId",
    "clientSecret",
    "tenantId",
    "subscriptionId",
    "resourceGroup",
    "projectId",
    "serviceAccountKey",
    "token",
    "apiKey",
    "endpoint",
    "kubeconfigPath",
)


@dataclass
class KeyValue:
    key: str
    value: str


@dataclass
class ChartConfig:
    """Helm chart coordinates."""

    repo_url: str = ""
    name: str = ""
    version: str = ""


@dataclass
class ServiceConfig:
    chart: ChartConfig = field(default_factory=ChartConfig)
    values: list[KeyValue] = field(default_factory=list)


@dataclass
class AddonConfig:
    name: str
    chart: ChartConfig = field(default_factory=ChartConfig)
    target_namespace: str = ""
    create_namespace: bool = False
    values: list[KeyValue] = field(default_factory=list)


@dataclass
class GlobalSettings:
    """Settings shared by every environment."""

    adhar_context: str = DEFAULT_CONTEXT
    default_host: str = DEFAULT_HOST
    default_http_port: int = 80
    default_https_port: int = 443
    enable_ha_mode: bool = False
    email: str = DEFAULT_EMAIL
    production_provider: str = ""
    non_production_provider: str = ""


@dataclass
class ProviderConfig:
    """One configured provider."""

    name: str
    type: str
    region: str = ""
    primary: bool = False
    auth: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)

    def to_provider_map(self) -> dict[str, Any]:
        """Flatten into the raw map handed to the provider constructor.

        Nested `config` entries come first; type, region, primary and
        authentication fields override them.
        """
        result: dict[str, Any] = dict(self.config)
        result.update({"type": self.type, "region": self.region, "primary": self.primary})
        result.update({k: v for k, v in self.auth.items() if v not in (None, "")})
        return result


@dataclass
class EnvironmentTemplate:
    cluster_config: list[KeyValue] = field(default_factory=list)
    core_services: dict[str, ServiceConfig] = field(default_factory=dict)
    addons: list[AddonConfig] = field(default_factory=list)


@dataclass
class EnvironmentConfig:
    """One named deployment target as written in the file."""

    name: str
    type: str = ""
    provider: str = ""
    region: str = ""
    template: str = ""
    cluster_config: list[KeyValue] = field(default_factory=list)
    core_services: dict[str, ServiceConfig] = field(default_factory=dict)
    addons: list[AddonConfig] = field(default_factory=list)


@dataclass
class ResolvedEnvironment:
    """Environment merged over its template; read-only once built."""

    name: str
    provider: str
    region: str
    type: str
    cluster_config: list[KeyValue] = field(default_factory=list)
    core_services: dict[str, ServiceConfig] = field(default_factory=dict)
    addons: list[AddonConfig] = field(default_factory=list)
    global_settings: GlobalSettings = field(default_factory=GlobalSettings)

    @property
    def is_production(self) -> bool:
        return self.type == PRODUCTION

    def cluster_value(self, *keys: str, default: str = "") -> str:
        """First value found for any of the keys."""
        values = {item.key: item.value for item in self.cluster_config}
        for key in keys:
            if key in values:
                return values[key]
        return default


@dataclass
class PlatformConfig:
    """Declarative platform configuration."""

    global_settings: GlobalSettings = field(default_factory=GlobalSettings)
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    environment_templates: dict[str, EnvironmentTemplate] = field(default_factory=dict)
    environments: dict[str, EnvironmentConfig] = field(default_factory=dict)
    path: Path | None = None

    # Track where each global setting came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a global setting."""
        return self._sources.get(key, "default")

    def validate_providers(self) -> None:
        """Check provider count and primary designation.

        Raises:
            ConfigurationError: No providers, more than two, or an ambiguous primary.
        """
        if not self.providers:
            raise ConfigurationError(message="at least one provider must be configured")

        names = list(self.providers)
        primaries = [name for name, provider in self.providers.items() if provider.primary]
        if len(names) > MAX_PROVIDERS:
            raise ConfigurationError(
                message=(
                    f"maximum of {MAX_PROVIDERS} providers allowed, "
                    f"found {len(names)} providers: {names}"
                )
            )
        if len(names) == MAX_PROVIDERS:
            if not primaries:
                raise ConfigurationError(
                    message=(
                        "when configuring 2 providers, one must be marked as 'primary: true' "
                        "for management cluster provisioning"
                    )
                )
            if len(primaries) > 1:
                raise ConfigurationError(
                    message=(
                        f"only one provider can be marked as primary, found {len(primaries)} "
                        f"primary providers: {primaries}"
                    )
                )

    def get_primary_provider(self) -> str:
        """Provider that hosts the management cluster.

        Raises:
            ConfigurationError: None configured or none marked primary.
        """
        if not self.providers:
            raise ConfigurationError(message="no providers configured")
        if len(self.providers) == 1:
            return next(iter(self.providers))
        for name, provider in self.providers.items():
            if provider.primary:
                return name
        raise ConfigurationError(
            message="no primary provider found in multi-provider configuration"
        )

    def get_workload_provider(self) -> str:
        """Provider for workload clusters: the non-primary one when two are configured."""
        primary = self.get_primary_provider()
        for name in self.providers:
            if name != primary:
                return name
        return primary

    def is_management_provider(self, name: str) -> bool:
        try:
            return name == self.get_primary_provider()
        except ConfigurationError:
            return False

    def resolve_environment(self, name: str) -> ResolvedEnvironment:
        """Merge an environment over its template.

        Rules:
        - provider defaults to the first configured provider
        - region defaults to the provider's region
        - type defaults to non-production
        - cluster config: environment entries override template entries with the
          same key; template-only keys are kept
        - core services: environment first, template fills gaps
        - addons: template addons followed by environment addons

        Raises:
            ConfigurationError: Unknown environment.
        """
        env = self.environments.get(name)
        if env is None:
            raise ConfigurationError(
                message=(
                    f"environment '{name}' not found; "
                    f"available: {', '.join(self.environments) or 'none'}"
                )
            )
        template = self.environment_templates.get(env.template) if env.template else None
        if env.template and template is None:
            logger.warning(
                "environment template not found", environment=name, template=env.template
            )

        provider = env.provider or next(iter(self.providers), "")
        region = env.region
        if not region and provider in self.providers:
            region = self.providers[provider].region

        merged: dict[str, str] = {}
        for item in (template.cluster_config if template else []) + env.cluster_config:
            merged[item.key] = item.value

        core_services = dict(env.core_services)
        if template:
            for service, config in template.core_services.items():
                core_services.setdefault(service, config)

        addons = (list(template.addons) if template else []) + list(env.addons)

        return ResolvedEnvironment(
            name=name,
            provider=provider,
            region=region,
            type=env.type or NON_PRODUCTION,
            cluster_config=[KeyValue(key=k, value=v) for k, v in merged.items()],
            core_services=core_services,
            addons=addons,
            global_settings=self.global_settings,
        )

    def resolve_environments(self) -> dict[str, ResolvedEnvironment]:
        return {name: self.resolve_environment(name) for name in self.environments}


@dataclass
class RuntimeOptions:
    """Per-invocation switches threaded through pipelines and providers."""

    suppress_output: bool = False
    verbose: int = 0
    dry_run: bool = False


# -- parsing --------------------------------------------------------------------


def _as_dict(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(message=f"{where} must be a mapping")
    return value


def _parse_key_values(items: Any, where: str) -> list[KeyValue]:
    result = []
    for item in items or []:
        if not isinstance(item, dict) or "key" not in item:
            raise ConfigurationError(message=f"{where} entries need 'key' and 'value'")
        value = item.get("value", "")
        result.append(KeyValue(key=str(item["key"]), value="" if value is None else str(value)))
    return result


def _parse_chart(data: Any) -> ChartConfig:
    data = data or {}
    return ChartConfig(
        repo_url=str(data.get("repoURL", "")),
        name=str(data.get("name", "")),
        version=str(data.get("version", "")),
    )


def _parse_services(data: Any, where: str) -> dict[str, ServiceConfig]:
    services = {}
    for name, service in _as_dict(data, where).items():
        service = service or {}
        services[name] = ServiceConfig(
            chart=_parse_chart(service.get("chart")),
            values=_parse_key_values(service.get("values"), f"{where}.{name}.values"),
        )
    return services


def _parse_addons(items: Any, where: str) -> list[AddonConfig]:
    addons = []
    for item in items or []:
        if not isinstance(item, dict) or not item.get("name"):
            raise ConfigurationError(message=f"{where} entries need a 'name'")
        addons.append(
            AddonConfig(
                name=str(item["name"]),
                chart=_parse_chart(item.get("chart")),
                target_namespace=str(item.get("targetNamespace", "")),
                create_namespace=bool(item.get("createNamespace", False)),
                values=_parse_key_values(item.get("values"), f"{where}.{item['name']}.values"),
            )
        )
    return addons


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_config(data: dict[str, Any], path: Path | None = None) -> PlatformConfig:
    """Build a PlatformConfig from the parsed YAML document.

    Raises:
        ConfigurationError: A section has the wrong shape or a value the wrong type.
    """
    data = _as_dict(data, "config")
    config = PlatformConfig(path=path)
    sources: dict[str, str] = {}

    settings = _as_dict(data.get("globalSettings"), "globalSettings")
    gs = config.global_settings
    fields_map = {
        "adharContext": ("adhar_context", str),
        "defaultHost": ("default_host", str),
        "defaultHttpPort": ("default_http_port", int),
        "defaultHttpsPort": ("default_https_port", int),
        "enableHAMode": ("enable_ha_mode", _parse_bool),
        "email": ("email", str),
        "productionProvider": ("production_provider", str),
        "nonProductionProvider": ("non_production_provider", str),
    }
    for key, (attr, convert) in fields_map.items():
        sources[key] = "default"
        if key in settings and settings[key] is not None:
            try:
                setattr(gs, attr, convert(settings[key]))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(message=f"globalSettings.{key}: {e}") from e
            sources[key] = "config file"

    for name, provider in _as_dict(data.get("providers"), "providers").items():
        provider = _as_dict(provider, f"providers.{name}")
        config.providers[name] = ProviderConfig(
            name=name,
            type=str(provider.get("type") or name),
            region=str(provider.get("region") or ""),
            primary=_parse_bool(provider.get("primary", False)),
            auth={key: provider[key] for key in AUTH_FIELDS if key in provider},
            config=_as_dict(provider.get("config"), f"providers.{name}.config"),
        )

    templates = _as_dict(data.get("environmentTemplates"), "environmentTemplates")
    for name, template in templates.items():
        template = _as_dict(template, f"environmentTemplates.{name}")
        where = f"environmentTemplates.{name}"
        config.environment_templates[name] = EnvironmentTemplate(
            cluster_config=_parse_key_values(
                template.get("clusterConfig"), f"{where}.clusterConfig"
            ),
            core_services=_parse_services(template.get("coreServices"), f"{where}.coreServices"),
            addons=_parse_addons(template.get("addons"), f"{where}.addons"),
        )

    for name, env in _as_dict(data.get("environments"), "environments").items():
        env = _as_dict(env, f"environments.{name}")
        where = f"environments.{name}"
        config.environments[name] = EnvironmentConfig(
            name=name,
            type=str(env.get("type") or ""),
            provider=str(env.get("provider") or ""),
            region=str(env.get("region") or ""),
            template=str(env.get("template") or ""),
            cluster_config=_parse_key_values(env.get("clusterConfig"), f"{where}.clusterConfig"),
            core_services=_parse_services(env.get("coreServices"), f"{where}.coreServices"),
            addons=_parse_addons(env.get("addons"), f"{where}.addons"),
        )

    config._sources = sources
    return config


def default_config() -> PlatformConfig:
    """Built-in configuration: a single kind provider and a local environment."""
    config = PlatformConfig(
        providers={
            "kind": ProviderConfig(name="kind", type="kind", region="local", primary=True),
        },
        environment_templates={
            "development-defaults": EnvironmentTemplate(
                cluster_config=[
                    KeyValue(key="autoScale", value="true"),
                    KeyValue(key="minNodes", value="1"),
                    KeyValue(key="maxNodes", value="3"),
                ],
            ),
        },
        environments={
            "local": EnvironmentConfig(
                name="local",
                type=NON_PRODUCTION,
                template="development-defaults",
                cluster_config=[
                    KeyValue(key="name", value="adhar"),
                    KeyValue(key="nodeCount", value="1"),
                ],
            ),
        },
    )
    defaults = ("adharContext", "defaultHost", "email", "enableHAMode")
    config._sources = {key: "default" for key in defaults}
    return config


def _apply_env_overrides(config: PlatformConfig) -> None:
    gs = config.global_settings
    if os.environ.get(ENV_VARS["defaultHost"]):
        gs.default_host = os.environ[ENV_VARS["defaultHost"]]
        config._sources["defaultHost"] = "environment"
    if os.environ.get(ENV_VARS["email"]):
        gs.email = os.environ[ENV_VARS["email"]]
        config._sources["email"] = "environment"
    if os.environ.get(ENV_VARS["enableHAMode"]):
        gs.enable_ha_mode = _parse_bool(os.environ[ENV_VARS["enableHAMode"]])
        config._sources["enableHAMode"] = "environment"


def load_config(path: str | Path | None = None) -> PlatformConfig:
    """Load platform configuration.

    Precedence (highest to lowest):
    1. Environment variables (global settings only)
    2. Config file (explicit path, ADHAR_CONFIG, or ~/.adhar/config.yaml)
    3. Built-in defaults

    Args:
        path: Explicit config file; must exist when given.

    Returns:
        PlatformConfig with values and sources

    Raises:
        ConfigurationError: Explicit file missing, unreadable or invalid YAML.
    """
    explicit = path is not None
    config_path = Path(path).expanduser() if explicit else get_config_file()

    if not config_path.exists():
        if explicit:
            raise ConfigurationError(message=f"config file not found: {config_path}")
        logger.debug("no config file, using built-in defaults", path=str(config_path))
        config = default_config()
    else:
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(message=f"cannot read config file {config_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(message=f"invalid YAML in {config_path}: {e}") from e
        config = parse_config(data, path=config_path)
        logger.debug(
            "config loaded",
            path=str(config_path),
            providers=list(config.providers),
            environments=list(config.environments),
        )

    _apply_env_overrides(config)
    return config
