"""Cluster lookup across configured providers.

Cluster ids are always "<provider>-<name>", so an id names its provider and
one lookup suffices. A bare name is tried against every configured provider.
The local kind provider is always searched, configured or not: it is the
default provider and needs no credentials.
"""

from __future__ import annotations

from ..errors import AdharError, ClusterNotFoundError
from ..models import Cluster
from ..shared.logging import get_logger
from .base import Provider
from .registry import ProviderRegistry, default_registry

logger = get_logger(__name__)

DEFAULT_PROVIDER = "kind"


class ClusterLocator:
    """Indexed cluster lookup by id or name."""

    def __init__(
        self,
        providers: list[Provider] | None = None,
        registry: ProviderRegistry | None = None,
    ):
        """Initialize locator.

        Args:
            providers: Providers built from configuration.
            registry: Registry used to build the default provider when it is not configured.
        """
        self.providers: dict[str, Provider] = {p.name: p for p in providers or []}
        if DEFAULT_PROVIDER not in self.providers:
            registry = registry or default_registry
            self.providers[DEFAULT_PROVIDER] = registry.create(DEFAULT_PROVIDER)

    def provider_for_id(self, cluster_id: str) -> Provider | None:
        """Provider whose id prefix matches, preferring the longest provider name."""
        for name in sorted(self.providers, key=len, reverse=True):
            if cluster_id.startswith(f"{name}-"):
                return self.providers[name]
        return None

    async def locate(self, ref: str) -> tuple[Provider, Cluster]:
        """Find a cluster by id or bare name.

        Args:
            ref: Cluster id ("kind-adhar") or name ("adhar").

        Returns:
            Tuple of (provider, cluster).

        Raises:
            ClusterNotFoundError: No configured provider knows the cluster.
        """
        provider = self.provider_for_id(ref)
        if provider is not None:
            try:
                return provider, await provider.get_cluster(ref)
            except ClusterNotFoundError:
                # Names may themselves start with a provider name
                pass

        for provider in self.providers.values():
            try:
                return provider, await provider.get_cluster(provider.cluster_id(ref))
            except ClusterNotFoundError:
                continue
            except AdharError as e:
                logger.warning("cluster lookup failed", provider=provider.name, error=str(e))
        raise ClusterNotFoundError(cluster_id=ref, provider=", ".join(sorted(self.providers)))

    async def list_all(self) -> list[Cluster]:
        """Clusters from every provider; providers that fail are logged and skipped."""
        clusters: list[Cluster] = []
        for provider in self.providers.values():
            try:
                clusters.extend(await provider.list_clusters())
            except AdharError as e:
                logger.warning("listing clusters failed", provider=provider.name, error=str(e))
        return clusters
