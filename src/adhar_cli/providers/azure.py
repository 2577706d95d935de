"""Azure Kubernetes Service provider (az CLI)."""

from __future__ import annotations

from typing import Any

from ..models import Cluster, ClusterSpec, ClusterStatus, NodeGroup, NodeGroupSpec, NodeGroupStatus
from .cli import CliProvider
from .registry import register_provider

DEFAULT_REGION = "eastus"
DEFAULT_RESOURCE_GROUP = "adhar-rg"
DEFAULT_VM_SIZE = "Standard_D4s_v3"


@register_provider("azure")
class AzureProvider(CliProvider):
    """AKS clusters in one resource group."""

    name = "azure"
    tool = "az"
    endpoint_url = "https://management.azure.com"
    status_map = {
        "creating": ClusterStatus.CREATING,
        "succeeded": ClusterStatus.RUNNING,
        "updating": ClusterStatus.UPDATING,
        "upgrading": ClusterStatus.UPDATING,
        "scaling": ClusterStatus.UPDATING,
        "deleting": ClusterStatus.DELETING,
        "failed": ClusterStatus.ERROR,
        "canceled": ClusterStatus.ERROR,
    }

    @property
    def region(self) -> str:
        return str(self.config.get("region") or DEFAULT_REGION)

    @property
    def resource_group(self) -> str:
        return str(self.config.get("resourceGroup") or DEFAULT_RESOURCE_GROUP)

    def _scope(self) -> list[str]:
        args = ["--resource-group", self.resource_group]
        if self.config.get("subscriptionId"):
            args.extend(["--subscription", str(self.config["subscriptionId"])])
        return args

    def default_instance_type(self) -> str:
        return DEFAULT_VM_SIZE

    def identity_args(self) -> list[str]:
        args = ["az", "account", "show", "--output", "json"]
        if self.config.get("subscriptionId"):
            args.extend(["--subscription", str(self.config["subscriptionId"])])
        return args

    def permission_args(self) -> list[str]:
        return ["az", "group", "show", "--name", self.resource_group, "--output", "json"]

    def create_args(self, spec: ClusterSpec) -> list[str]:
        group = spec.node_groups[0] if spec.node_groups else None
        args = [
            "az", "aks", "create",
            "--name", spec.name,
            *self._scope(),
            "--location", self.region,
            "--node-count", str(max(spec.worker_count, 1)),
            "--node-vm-size", (group.instance_type if group else "") or DEFAULT_VM_SIZE,
            "--generate-ssh-keys",
            "--output", "json",
        ]
        if spec.version:
            args.extend(["--kubernetes-version", spec.version.lstrip("v")])
        if group and group.autoscaling.enabled:
            args.extend(
                [
                    "--enable-cluster-autoscaler",
                    "--min-count", str(group.autoscaling.min_replicas),
                    "--max-count", str(group.autoscaling.max_replicas),
                ]
            )
        args.append("--tags")
        args.extend(f"{k}={v}" for k, v in self.cluster_tags(spec).items())
        return args

    def delete_args(self, cluster_name: str) -> list[str]:
        return ["az", "aks", "delete", "--name", cluster_name, *self._scope(), "--yes"]

    def describe_args(self, cluster_name: str) -> list[str]:
        return ["az", "aks", "show", "--name", cluster_name, *self._scope(), "--output", "json"]

    def list_args(self) -> list[str]:
        return ["az", "aks", "list", *self._scope(), "--output", "json"]

    def parse_cluster(self, data: dict[str, Any]) -> Cluster:
        fqdn = data.get("fqdn")
        return self._build(
            name=data["name"],
            status=data.get("provisioningState"),
            version=data.get("kubernetesVersion", ""),
            endpoint=f"https://{fqdn}:443" if fqdn else None,
            region=data.get("location", ""),
            tags=data.get("tags"),
            metadata={"resourceGroup": data.get("resourceGroup", self.resource_group)},
        )

    def kubeconfig_args(self, cluster_name: str, path: str) -> tuple[list[str], bool]:
        return [
            "az", "aks", "get-credentials",
            "--name", cluster_name,
            *self._scope(),
            "--file", "-",
        ], False

    def upgrade_args(self, cluster_name: str, version: str) -> list[str] | None:
        return [
            "az", "aks", "upgrade",
            "--name", cluster_name,
            *self._scope(),
            "--kubernetes-version", version.lstrip("v"),
            "--yes",
        ]

    def node_pool_create_args(self, cluster_name: str, spec: NodeGroupSpec) -> list[str] | None:
        return [
            "az", "aks", "nodepool", "add",
            "--cluster-name", cluster_name,
            *self._scope(),
            "--name", spec.name,
            "--node-count", str(spec.replicas),
            "--node-vm-size", spec.instance_type or DEFAULT_VM_SIZE,
        ]

    def node_pool_delete_args(self, cluster_name: str, name: str) -> list[str] | None:
        return [
            "az", "aks", "nodepool", "delete",
            "--cluster-name", cluster_name,
            *self._scope(),
            "--name", name,
        ]

    def node_pool_scale_args(self, cluster_name: str, name: str, replicas: int) -> list[str] | None:
        return [
            "az", "aks", "nodepool", "scale",
            "--cluster-name", cluster_name,
            *self._scope(),
            "--name", name,
            "--node-count", str(replicas),
        ]

    def node_pool_list_args(self, cluster_name: str) -> list[str] | None:
        return [
            "az", "aks", "nodepool", "list",
            "--cluster-name", cluster_name,
            *self._scope(),
            "--output", "json",
        ]

    def parse_node_group(self, data: dict[str, Any]) -> NodeGroup:
        state = str(data.get("provisioningState", "")).lower()
        return NodeGroup(
            name=data.get("name", ""),
            replicas=int(data.get("count") or 0),
            instance_type=data.get("vmSize", ""),
            status=NodeGroupStatus.READY if state == "succeeded" else NodeGroupStatus.CREATING,
        )
