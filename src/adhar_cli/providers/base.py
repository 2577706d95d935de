"""Provider interface.

A Provider drives cluster lifecycle against one infrastructure (kind, a cloud
API, an on-premises endpoint). The capability set is deliberately wide so
callers never branch on the concrete provider type: operations that make no
sense for an infrastructure raise NotSupportedError from the default
implementations below, and callers treat that as "not available here".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable

from ..errors import NotFoundError, NotSupportedError, ValidationError
from ..models import (
    VPC,
    Addon,
    Backup,
    Cluster,
    ClusterCost,
    ClusterSpec,
    Credentials,
    HealthStatus,
    LoadBalancer,
    LoadBalancerSpec,
    Metrics,
    NodeGroup,
    NodeGroupSpec,
    Storage,
    StorageSpec,
    VPCSpec,
)
from ..shared.shell import CommandRunner, run_command

# Tags every adhar-created cluster carries
MANAGED_TAGS = {
    "adhar.io/managed-by": "adhar",
    "adhar.io/created-by": "adhar-cli",
    "adhar.io/version": "v1.0.0",
}


class Provider(ABC):
    """Cluster lifecycle operations for one infrastructure.

    Construction must stay free of network calls; anything that talks to the
    infrastructure happens in the async methods.
    """

    #: Registry name; also the prefix of every cluster id this provider issues
    name: str = ""

    #: Public API endpoint probed by pre-flight network checks
    endpoint_url: str | None = None

    def __init__(self, config: dict[str, Any] | None = None, runner: CommandRunner | None = None):
        """Initialize provider.

        Args:
            config: Raw provider configuration; each provider owns its schema
            runner: Command runner for CLI-backed operations
        """
        self.config: dict[str, Any] = dict(config or {})
        self.runner: CommandRunner = runner or run_command

    @property
    def region(self) -> str:
        return str(self.config.get("region", ""))

    # -- identity helpers ---------------------------------------------------

    def cluster_id(self, cluster_name: str) -> str:
        """Build the provider-prefixed id for a cluster name."""
        return f"{self.name}-{cluster_name}"

    def cluster_name(self, cluster_id: str) -> str:
        """Recover the bare cluster name from an id (ids without the prefix pass through)."""
        prefix = f"{self.name}-"
        return cluster_id[len(prefix) :] if cluster_id.startswith(prefix) else cluster_id

    def check_spec(self, spec: ClusterSpec) -> None:
        """Reject specs addressed to a different provider.

        Raises:
            ValidationError: spec.provider does not match this provider
        """
        if spec.provider.lower() != self.name:
            raise ValidationError(
                message=f"provider mismatch: expected '{self.name}', got '{spec.provider}'",
                field_name="provider",
            )
        if not spec.name:
            raise ValidationError(message="cluster name is required", field_name="name")

    def _unsupported(self, operation: str) -> NotSupportedError:
        return NotSupportedError(provider=self.name, operation=operation)

    # -- required capabilities ----------------------------------------------

    @abstractmethod
    async def authenticate(self, credentials: Credentials | None = None) -> None:
        """Verify credentials against the infrastructure."""

    @abstractmethod
    async def validate_permissions(self) -> None:
        """Verify the authenticated identity may create clusters."""

    @abstractmethod
    async def create_cluster(self, spec: ClusterSpec) -> Cluster:
        """Create a cluster and return it in its post-creation state."""

    @abstractmethod
    async def delete_cluster(self, cluster_id: str) -> None:
        """Delete a cluster."""

    @abstractmethod
    async def get_cluster(self, cluster_id: str) -> Cluster:
        """Get a cluster by id.

        Raises:
            ClusterNotFoundError: No cluster has this id
        """

    @abstractmethod
    async def list_clusters(self) -> list[Cluster]:
        """List clusters known to this provider."""

    @abstractmethod
    async def get_kubeconfig(self, cluster_id: str) -> str:
        """Return a raw kubeconfig document for the cluster."""

    # -- optional capabilities (default adapter) ----------------------------

    async def update_cluster(self, cluster_id: str, spec: ClusterSpec) -> Cluster:
        raise self._unsupported("update cluster")

    async def upgrade_cluster(self, cluster_id: str, version: str) -> None:
        raise self._unsupported("upgrade cluster")

    async def backup_cluster(self, cluster_id: str) -> Backup:
        raise self._unsupported("backup cluster")

    async def restore_cluster(self, backup_id: str, cluster_id: str) -> None:
        raise self._unsupported("restore cluster")

    async def add_node_group(self, cluster_id: str, spec: NodeGroupSpec) -> NodeGroup:
        raise self._unsupported("add node group")

    async def remove_node_group(self, cluster_id: str, name: str) -> None:
        raise self._unsupported("remove node group")

    async def scale_node_group(self, cluster_id: str, name: str, replicas: int) -> None:
        raise self._unsupported("scale node group")

    async def get_node_group(self, cluster_id: str, name: str) -> NodeGroup:
        for group in await self.list_node_groups(cluster_id):
            if group.name == name:
                return group
        raise NotFoundError(message=f"node group '{name}' not found in cluster '{cluster_id}'")

    async def list_node_groups(self, cluster_id: str) -> list[NodeGroup]:
        raise self._unsupported("list node groups")

    async def create_vpc(self, spec: VPCSpec) -> VPC:
        raise self._unsupported("create VPC")

    async def delete_vpc(self, vpc_id: str) -> None:
        raise self._unsupported("delete VPC")

    async def get_vpc(self, vpc_id: str) -> VPC:
        raise self._unsupported("get VPC")

    async def create_load_balancer(self, spec: LoadBalancerSpec) -> LoadBalancer:
        raise self._unsupported("create load balancer")

    async def delete_load_balancer(self, lb_id: str) -> None:
        raise self._unsupported("delete load balancer")

    async def get_load_balancer(self, lb_id: str) -> LoadBalancer:
        raise self._unsupported("get load balancer")

    async def create_storage(self, spec: StorageSpec) -> Storage:
        raise self._unsupported("create storage")

    async def delete_storage(self, storage_id: str) -> None:
        raise self._unsupported("delete storage")

    async def get_storage(self, storage_id: str) -> Storage:
        raise self._unsupported("get storage")

    async def get_cluster_health(self, cluster_id: str) -> HealthStatus:
        raise self._unsupported("cluster health")

    async def get_cluster_metrics(self, cluster_id: str) -> Metrics:
        raise self._unsupported("cluster metrics")

    async def install_addon(
        self, cluster_id: str, addon_name: str, config: dict[str, Any] | None = None
    ) -> None:
        raise self._unsupported("install addon")

    async def uninstall_addon(self, cluster_id: str, addon_name: str) -> None:
        raise self._unsupported("uninstall addon")

    async def list_addons(self, cluster_id: str) -> list[Addon]:
        raise self._unsupported("list addons")

    async def get_cluster_cost(self, cluster_id: str) -> ClusterCost:
        raise self._unsupported("cost estimation")

    async def get_cost_breakdown(self, cluster_id: str) -> dict[str, float]:
        return (await self.get_cluster_cost(cluster_id)).breakdown

    async def investigate_cluster(self, cluster_id: str) -> dict[str, Any]:
        """Best-effort diagnostics; may raise NotSupportedError."""
        raise self._unsupported("investigate cluster")


@runtime_checkable
class QuotaChecker(Protocol):
    """Optional capability: providers that can check account quotas before creation."""

    async def check_resource_quotas(self, spec: ClusterSpec) -> None:
        """Raise QuotaExceededError if the spec does not fit the account's quotas."""


def supports_quota_check(provider: Provider) -> bool:
    return isinstance(provider, QuotaChecker)
