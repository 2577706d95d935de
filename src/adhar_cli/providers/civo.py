"""Civo k3s provider (civo CLI)."""

from __future__ import annotations

from typing import Any

from ..errors import QuotaExceededError
from ..models import Cluster, ClusterSpec, ClusterStatus, NodeGroup, NodeGroupSpec, NodeGroupStatus
from .cli import CliProvider
from .registry import register_provider

DEFAULT_REGION = "LON1"
DEFAULT_SIZE = "g4s.kube.medium"


@register_provider("civo")
class CivoProvider(CliProvider):
    """Civo Kubernetes clusters. Implements the quota-check capability."""

    name = "civo"
    tool = "civo"
    endpoint_url = "https://api.civo.com"
    status_map = {
        "building": ClusterStatus.CREATING,
        "installing": ClusterStatus.CREATING,
        "active": ClusterStatus.RUNNING,
        "upgrading": ClusterStatus.UPDATING,
        "scaling": ClusterStatus.UPDATING,
        "deleting": ClusterStatus.DELETING,
        "error": ClusterStatus.ERROR,
    }

    @property
    def region(self) -> str:
        return str(self.config.get("region") or DEFAULT_REGION)

    def cli_env(self) -> dict[str, str]:
        token = self.config.get("apiKey") or self.config.get("token")
        return {"CIVO_TOKEN": str(token)} if token else {}

    def default_instance_type(self) -> str:
        return DEFAULT_SIZE

    def identity_args(self) -> list[str]:
        return ["civo", "quota", "show", "-o", "json"]

    def permission_args(self) -> list[str]:
        return ["civo", "kubernetes", "ls", "--region", self.region, "-o", "json"]

    def create_args(self, spec: ClusterSpec) -> list[str]:
        group = spec.node_groups[0] if spec.node_groups else None
        args = [
            "civo", "kubernetes", "create", spec.name,
            "--region", self.region,
            "--nodes", str(max(spec.worker_count, 1)),
            "--size", (group.instance_type if group else "") or DEFAULT_SIZE,
            "--wait",
            "--yes",
            "-o", "json",
        ]
        if spec.version:
            args.extend(["--version", spec.version.lstrip("v")])
        return args

    def delete_args(self, cluster_name: str) -> list[str]:
        return ["civo", "kubernetes", "remove", cluster_name, "--region", self.region, "--yes"]

    def describe_args(self, cluster_name: str) -> list[str]:
        return ["civo", "kubernetes", "show", cluster_name, "--region", self.region, "-o", "json"]

    def list_args(self) -> list[str]:
        return ["civo", "kubernetes", "ls", "--region", self.region, "-o", "json"]

    def parse_cluster(self, data: dict[str, Any]) -> Cluster:
        return self._build(
            name=data["name"],
            status=data.get("status"),
            version=data.get("kubernetes_version") or data.get("version", ""),
            endpoint=data.get("api_endpoint"),
            region=data.get("region", ""),
            created=data.get("created_at"),
            metadata={"civoId": data.get("id", "")},
        )

    def kubeconfig_args(self, cluster_name: str, path: str) -> tuple[list[str], bool]:
        return ["civo", "kubernetes", "config", cluster_name, "--region", self.region], False

    def upgrade_args(self, cluster_name: str, version: str) -> list[str] | None:
        return [
            "civo", "kubernetes", "upgrade", cluster_name,
            "--region", self.region,
            "--version", version.lstrip("v"),
        ]

    def node_pool_create_args(self, cluster_name: str, spec: NodeGroupSpec) -> list[str] | None:
        return [
            "civo", "kubernetes", "node-pool", "create", cluster_name,
            "--region", self.region,
            "--nodes", str(spec.replicas),
            "--size", spec.instance_type or DEFAULT_SIZE,
        ]

    def node_pool_delete_args(self, cluster_name: str, name: str) -> list[str] | None:
        return [
            "civo", "kubernetes", "node-pool", "delete", cluster_name, name,
            "--region", self.region,
            "--yes",
        ]

    def node_pool_scale_args(self, cluster_name: str, name: str, replicas: int) -> list[str] | None:
        return [
            "civo", "kubernetes", "node-pool", "scale", cluster_name, name,
            "--nodes", str(replicas),
            "--region", self.region,
        ]

    async def list_node_groups(self, cluster_id: str) -> list[NodeGroup]:
        # Pools are only reported inside the cluster description
        data = await self._cli_json(self.describe_args(self.cluster_name(cluster_id))) or {}
        return [
            NodeGroup(
                name=pool.get("id", ""),
                replicas=int(pool.get("count") or 0),
                instance_type=pool.get("size", ""),
                status=NodeGroupStatus.READY,
            )
            for pool in data.get("pools") or []
        ]

    async def check_resource_quotas(self, spec: ClusterSpec) -> None:
        """Compare the instance quota with usage plus requested nodes.

        Raises:
            QuotaExceededError: Not enough instances left.
        """
        quota = await self._cli_json(["civo", "quota", "show", "-o", "json"]) or {}
        limit = int(quota.get("instance_count_limit") or 0)
        used = int(quota.get("instance_count_usage") or 0)
        requested = max(spec.worker_count, 1)
        if limit and used + requested > limit:
            raise QuotaExceededError(
                resource="instances",
                message=f"instance quota {limit} exceeded: {used} in use, {requested} requested",
            )
