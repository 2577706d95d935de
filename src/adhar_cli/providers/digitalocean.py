"""DigitalOcean Kubernetes provider (doctl)."""

from __future__ import annotations

from typing import Any

from ..errors import QuotaExceededError
from ..models import Cluster, ClusterSpec, ClusterStatus, NodeGroup, NodeGroupSpec, NodeGroupStatus
from .cli import CliProvider
from .registry import register_provider

DEFAULT_REGION = "nyc1"
DEFAULT_SIZE = "s-2vcpu-4gb"
MANAGED_TAG = "adhar-managed"


@register_provider("digitalocean")
class DigitalOceanProvider(CliProvider):
    """DOKS clusters. Implements the quota-check capability from the droplet limit."""

    name = "digitalocean"
    tool = "doctl"
    endpoint_url = "https://api.digitalocean.com"
    status_map = {
        "provisioning": ClusterStatus.CREATING,
        "running": ClusterStatus.RUNNING,
        "upgrading": ClusterStatus.UPDATING,
        "degraded": ClusterStatus.ERROR,
        "error": ClusterStatus.ERROR,
        "deleting": ClusterStatus.DELETING,
    }

    @property
    def region(self) -> str:
        return str(self.config.get("region") or DEFAULT_REGION)

    def cli_env(self) -> dict[str, str]:
        token = self.config.get("token")
        return {"DIGITALOCEAN_ACCESS_TOKEN": str(token)} if token else {}

    def default_instance_type(self) -> str:
        return DEFAULT_SIZE

    def identity_args(self) -> list[str]:
        return ["doctl", "account", "get", "--output", "json"]

    def permission_args(self) -> list[str]:
        return ["doctl", "kubernetes", "options", "versions", "--output", "json"]

    def create_args(self, spec: ClusterSpec) -> list[str]:
        group = spec.node_groups[0] if spec.node_groups else None
        pool = (
            f"name={group.name if group else 'workers'};"
            f"size={(group.instance_type if group else '') or DEFAULT_SIZE};"
            f"count={max(spec.worker_count, 1)}"
        )
        if group and group.autoscaling.enabled:
            scaling = group.autoscaling
            pool += (
                f";auto-scale=true;min-nodes={scaling.min_replicas}"
                f";max-nodes={scaling.max_replicas}"
            )
        args = [
            "doctl", "kubernetes", "cluster", "create", spec.name,
            "--region", self.region,
            "--node-pool", pool,
            "--tag", MANAGED_TAG,
            "--wait",
            "--output", "json",
        ]
        if spec.version:
            args.extend(["--version", spec.version.lstrip("v")])
        return args

    def delete_args(self, cluster_name: str) -> list[str]:
        return ["doctl", "kubernetes", "cluster", "delete", cluster_name, "--force"]

    def describe_args(self, cluster_name: str) -> list[str]:
        return ["doctl", "kubernetes", "cluster", "get", cluster_name, "--output", "json"]

    def list_args(self) -> list[str]:
        return ["doctl", "kubernetes", "cluster", "list", "--output", "json"]

    def parse_cluster(self, data: dict[str, Any]) -> Cluster:
        tags = {"adhar.io/managed-by": "adhar"} if MANAGED_TAG in (data.get("tags") or []) else {}
        return self._build(
            name=data["name"],
            status=(data.get("status") or {}).get("state"),
            version=data.get("version", ""),
            endpoint=data.get("endpoint"),
            region=data.get("region", ""),
            created=data.get("created_at"),
            tags=tags,
            metadata={"uuid": data.get("id", "")},
        )

    def kubeconfig_args(self, cluster_name: str, path: str) -> tuple[list[str], bool]:
        return ["doctl", "kubernetes", "cluster", "kubeconfig", "show", cluster_name], False

    def upgrade_args(self, cluster_name: str, version: str) -> list[str] | None:
        return [
            "doctl", "kubernetes", "cluster", "upgrade", cluster_name,
            "--version", version.lstrip("v"),
        ]

    def node_pool_create_args(self, cluster_name: str, spec: NodeGroupSpec) -> list[str] | None:
        return [
            "doctl", "kubernetes", "cluster", "node-pool", "create", cluster_name,
            "--name", spec.name,
            "--size", spec.instance_type or DEFAULT_SIZE,
            "--count", str(spec.replicas),
        ]

    def node_pool_delete_args(self, cluster_name: str, name: str) -> list[str] | None:
        return [
            "doctl", "kubernetes", "cluster", "node-pool", "delete", cluster_name, name, "--force"
        ]

    def node_pool_scale_args(self, cluster_name: str, name: str, replicas: int) -> list[str] | None:
        return [
            "doctl", "kubernetes", "cluster", "node-pool", "update", cluster_name, name,
            "--count", str(replicas),
        ]

    def node_pool_list_args(self, cluster_name: str) -> list[str] | None:
        return [
            "doctl", "kubernetes", "cluster", "node-pool", "list", cluster_name, "--output", "json"
        ]

    def parse_node_group(self, data: dict[str, Any]) -> NodeGroup:
        return NodeGroup(
            name=data.get("name", ""),
            replicas=int(data.get("count") or 0),
            instance_type=data.get("size", ""),
            status=NodeGroupStatus.READY,
            labels=dict(data.get("labels") or {}),
        )

    async def check_resource_quotas(self, spec: ClusterSpec) -> None:
        """Compare the account's droplet limit with droplets in use plus requested workers.

        Raises:
            QuotaExceededError: Not enough droplets left for the node pool.
        """
        account = await self._cli_json(["doctl", "account", "get", "--output", "json"]) or {}
        limit = int(account.get("droplet_limit") or 0)
        if not limit:
            return
        droplets = (
            await self._cli_json(["doctl", "compute", "droplet", "list", "--output", "json"]) or []
        )
        requested = max(spec.worker_count, 1)
        if len(droplets) + requested > limit:
            raise QuotaExceededError(
                resource="droplets",
                message=(
                    f"droplet limit {limit} exceeded: {len(droplets)} in use, "
                    f"{requested} requested"
                ),
            )
