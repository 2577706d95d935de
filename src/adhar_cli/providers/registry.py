"""Provider registry.

Maps a provider name to a constructor. Built-in providers register themselves
when `adhar_cli.providers` is imported; a later registration under the same
name replaces the earlier one. Constructors run lazily, on the first
`create()` for a given name and configuration.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..errors import ProviderNotFoundError
from ..shared.logging import get_logger
from .base import Provider

logger = get_logger(__name__)

ProviderConstructor = Callable[[dict[str, Any]], Provider]


@dataclass
class ProviderInfo:
    """Catalog entry describing a provider to users."""

    name: str
    display_name: str
    description: str
    required_config: list[str] = field(default_factory=list)
    regions: list[str] = field(default_factory=list)
    features: list[str] = field(default_factory=list)


PROVIDER_CATALOG: dict[str, ProviderInfo] = {
    "kind": ProviderInfo(
        name="kind",
        display_name="Kind (local)",
        description="Kubernetes in Docker for local development, free",
        regions=["local"],
        features=["local-development", "multi-node", "port-mapping"],
    ),
    "aws": ProviderInfo(
        name="aws",
        display_name="Amazon Web Services",
        description="Amazon EKS clusters managed through eksctl",
        required_config=["accessKeyId", "secretAccessKey"],
        regions=["us-east-1", "us-west-2", "eu-west-1", "eu-central-1", "ap-southeast-1"],
        features=["autoscaling", "node-groups", "load-balancers", "managed-control-plane"],
    ),
    "azure": ProviderInfo(
        name="azure",
        display_name="Microsoft Azure",
        description="Azure Kubernetes Service clusters managed through the az CLI",
        required_config=["subscriptionId", "resourceGroup"],
        regions=["eastus", "westus2", "westeurope", "northeurope", "southeastasia"],
        features=["autoscaling", "node-pools", "managed-control-plane"],
    ),
    "gcp": ProviderInfo(
        name="gcp",
        display_name="Google Cloud Platform",
        description="Google Kubernetes Engine clusters managed through gcloud",
        required_config=["projectId", "serviceAccountKey"],
        regions=["us-central1", "us-east1", "europe-west1", "asia-southeast1"],
        features=["autoscaling", "node-pools", "managed-control-plane"],
    ),
    "digitalocean": ProviderInfo(
        name="digitalocean",
        display_name="DigitalOcean",
        description="DigitalOcean Kubernetes clusters managed through doctl",
        required_config=["token"],
        regions=["nyc1", "nyc3", "sfo3", "ams3", "fra1", "lon1", "sgp1"],
        features=["autoscaling", "node-pools"],
    ),
    "civo": ProviderInfo(
        name="civo",
        display_name="Civo",
        description="Civo k3s clusters managed through the civo CLI",
        required_config=["apiKey"],
        regions=["LON1", "NYC1", "FRA1"],
        features=["fast-provisioning", "node-pools"],
    ),
    "custom": ProviderInfo(
        name="custom",
        display_name="Custom (on-premises)",
        description="Existing on-premises clusters registered by endpoint and kubeconfig",
        required_config=["endpoint"],
        regions=["on-premises"],
        features=["bring-your-own-cluster"],
    ),
}


def _cache_key(name: str, config: dict[str, Any]) -> str:
    return name + ":" + json.dumps(config, sort_keys=True, default=str)


class ProviderRegistry:
    """Name -> constructor mapping with lazily built, cached instances."""

    def __init__(self) -> None:
        self._constructors: dict[str, ProviderConstructor] = {}
        self._instances: dict[str, Provider] = {}

    def register(self, name: str, constructor: ProviderConstructor) -> None:
        """Register a constructor; replaces any earlier registration for the name.

        Args:
            name: Provider name (case-insensitive)
            constructor: Callable taking the raw config map and returning a Provider
        """
        key = name.lower()
        if key in self._constructors:
            logger.debug("provider re-registered", provider=key)
        self._constructors[key] = constructor
        # Instances built by the previous constructor are stale
        self._instances = {k: v for k, v in self._instances.items() if not k.startswith(key + ":")}

    def create(self, name: str, config: dict[str, Any] | None = None) -> Provider:
        """Get the provider for a name and configuration, constructing it on first use.

        Args:
            name: Provider name
            config: Raw provider configuration

        Returns:
            Provider instance

        Raises:
            ProviderNotFoundError: No constructor is registered under the name
        """
        key = name.lower()
        constructor = self._constructors.get(key)
        if constructor is None:
            raise ProviderNotFoundError(name=name)

        config = dict(config or {})
        cache_key = _cache_key(key, config)
        provider = self._instances.get(cache_key)
        if provider is None:
            provider = constructor(config)
            self._instances[cache_key] = provider
            logger.debug("provider constructed", provider=key)
        return provider

    def is_supported(self, name: str) -> bool:
        return name.lower() in self._constructors

    def supported_providers(self) -> list[str]:
        return sorted(self._constructors)


default_registry = ProviderRegistry()


def register_provider(name: str, registry: ProviderRegistry | None = None):
    """Class decorator registering a Provider subclass under `name`."""

    def decorator(cls: type[Provider]) -> type[Provider]:
        (registry or default_registry).register(name, lambda config: cls(config))
        return cls

    return decorator


def create_provider(name: str, config: dict[str, Any] | None = None) -> Provider:
    """Create a provider from the default registry."""
    return default_registry.create(name, config)


def get_provider_info(name: str) -> ProviderInfo:
    """Look up the catalog entry for a provider.

    Raises:
        ProviderNotFoundError: Provider is not in the catalog
    """
    info = PROVIDER_CATALOG.get(name.lower())
    if info is None:
        raise ProviderNotFoundError(name=name)
    return info
