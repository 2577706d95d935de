"""Cluster data model shared by providers, stores and pipelines.

Cluster records are persisted as JSON with camelCase keys (id, name, provider,
region, version, status, endpoint, createdAt, updatedAt, tags, metadata).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Tags that mark a cluster as created and owned by adhar
MANAGED_BY_TAG = "adhar.io/managed-by"
MANAGED_BY_VALUE = "adhar"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClusterStatus(Enum):
    """Lifecycle state of a cluster."""

    CREATING = "creating"
    RUNNING = "running"
    UPDATING = "updating"
    DELETING = "deleting"
    ERROR = "error"
    UNKNOWN = "unknown"


class NodeGroupStatus(Enum):
    """Lifecycle state of a node group."""

    CREATING = "creating"
    READY = "ready"
    SCALING = "scaling"
    DELETING = "deleting"
    ERROR = "error"


@dataclass
class EtcdSpec:
    external: bool = False
    replicas: int = 1
    backup_schedule: str | None = None


@dataclass
class ApiServerSpec:
    extra_args: dict[str, str] = field(default_factory=dict)
    cert_sans: list[str] = field(default_factory=list)


@dataclass
class ControlPlaneSpec:
    """Control plane sizing."""

    replicas: int = 1
    instance_type: str = ""
    high_availability: bool = False
    etcd: EtcdSpec = field(default_factory=EtcdSpec)
    api_server: ApiServerSpec = field(default_factory=ApiServerSpec)


@dataclass
class AutoScalingSpec:
    min_replicas: int = 0
    max_replicas: int = 0

    @property
    def enabled(self) -> bool:
        return self.max_replicas > 0


@dataclass
class TaintSpec:
    key: str
    value: str = ""
    effect: str = "NoSchedule"


@dataclass
class NodeGroupSpec:
    """Desired worker pool."""

    name: str
    replicas: int = 1
    instance_type: str = ""
    autoscaling: AutoScalingSpec = field(default_factory=AutoScalingSpec)
    taints: list[TaintSpec] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class NodeGroup:
    """Observed worker pool."""

    name: str
    replicas: int
    instance_type: str = ""
    status: NodeGroupStatus = NodeGroupStatus.READY
    labels: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class NetworkingSpec:
    """Cluster networking. http_port/https_port override the host ports of local clusters."""

    cni: str = "cilium"
    pod_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    cluster_dns: str = ""
    http_port: int | None = None
    https_port: int | None = None
    # "host:container" pairs added to the first control-plane node
    extra_port_mappings: list[str] = field(default_factory=list)


@dataclass
class SecuritySpec:
    rbac: bool = True
    network_policies: bool = False
    pod_security_standards: str = "baseline"
    encrypt_secrets: bool = False
    audit_logging: bool = False


@dataclass
class AddonsSpec:
    """Cluster-level addons requested at creation time."""

    monitoring: bool = False
    logging: bool = False
    ingress: bool = True
    cert_manager: bool = False
    backup: bool = False


@dataclass
class DomainConfig:
    name: str
    base_domain: str
    email: str = ""
    certificate_type: str = "selfsigned"
    dns_provider: str | None = None


@dataclass
class ClusterSpec:
    """Desired state for create/update.

    `provider` must match the name of the provider instance that receives it.
    """

    name: str
    provider: str
    region: str = ""
    version: str = ""
    control_plane: ControlPlaneSpec = field(default_factory=ControlPlaneSpec)
    node_groups: list[NodeGroupSpec] = field(default_factory=list)
    networking: NetworkingSpec = field(default_factory=NetworkingSpec)
    security: SecuritySpec = field(default_factory=SecuritySpec)
    addons: AddonsSpec = field(default_factory=AddonsSpec)
    domain: DomainConfig | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def worker_count(self) -> int:
        return sum(group.replicas for group in self.node_groups)


@dataclass
class Cluster:
    """A provisioned (or provisioning) cluster. `id` is the only lookup key."""

    id: str
    name: str
    provider: str
    region: str = ""
    version: str = ""
    status: ClusterStatus = ClusterStatus.UNKNOWN
    endpoint: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    tags: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def managed(self) -> bool:
        """Whether adhar created this cluster."""
        return self.tags.get(MANAGED_BY_TAG) == MANAGED_BY_VALUE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "region": self.region,
            "version": self.version,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.endpoint:
            data["endpoint"] = self.endpoint
        if self.tags:
            data["tags"] = dict(self.tags)
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cluster:
        """Build a Cluster from its JSON form.

        Raises:
            KeyError: id, name or provider missing
            ValueError: unknown status or malformed timestamp
        """
        return cls(
            id=data["id"],
            name=data["name"],
            provider=data["provider"],
            region=data.get("region", ""),
            version=data.get("version", ""),
            status=ClusterStatus(data.get("status", ClusterStatus.UNKNOWN.value)),
            endpoint=data.get("endpoint") or None,
            created_at=parse_time(data.get("createdAt")),
            updated_at=parse_time(data.get("updatedAt")),
            tags=dict(data.get("tags") or {}),
            metadata=dict(data.get("metadata") or {}),
        )


def parse_time(value: str | None) -> datetime:
    if not value:
        return utcnow()
    # Accept the trailing Z written by other tooling
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class VPCSpec:
    cidr: str
    availability_zones: list[str] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class VPC:
    id: str
    cidr: str
    availability_zones: list[str] = field(default_factory=list)
    status: str = "available"
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class PortSpec:
    port: int
    target_port: int
    protocol: str = "TCP"


@dataclass
class LoadBalancerSpec:
    type: str
    ports: list[PortSpec] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class LoadBalancer:
    id: str
    type: str
    endpoint: str = ""
    status: str = "active"
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class StorageSpec:
    type: str
    size: str
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class Storage:
    id: str
    type: str
    size: str
    status: str = "available"
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class Backup:
    id: str
    cluster_id: str
    status: str = "completed"
    size: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ComponentHealth:
    status: str
    message: str = ""


@dataclass
class HealthStatus:
    """Aggregated cluster health."""

    status: str
    components: dict[str, ComponentHealth] = field(default_factory=dict)
    last_check: datetime = field(default_factory=utcnow)

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


@dataclass
class MetricValue:
    usage: str = ""
    capacity: str = ""
    percent: float = 0.0


@dataclass
class Metrics:
    cpu: MetricValue = field(default_factory=MetricValue)
    memory: MetricValue = field(default_factory=MetricValue)
    disk: MetricValue = field(default_factory=MetricValue)
    network: MetricValue = field(default_factory=MetricValue)


@dataclass
class Addon:
    name: str
    version: str = ""
    status: str = "installed"


@dataclass
class ClusterCost:
    total_cost: float = 0.0
    currency: str = "USD"
    period: str = "monthly"
    breakdown: dict[str, float] = field(default_factory=dict)


@dataclass
class Credentials:
    """Provider credentials handed to authenticate()."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)
