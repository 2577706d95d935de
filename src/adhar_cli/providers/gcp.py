"""Google Kubernetes Engine provider (gcloud)."""

from __future__ import annotations

import json
import re
from typing import Any

from ..errors import AuthenticationError
from ..models import Cluster, ClusterSpec, ClusterStatus, NodeGroup, NodeGroupSpec, NodeGroupStatus
from .cli import CliProvider
from .registry import register_provider

DEFAULT_REGION = "us-central1"
DEFAULT_MACHINE_TYPE = "e2-standard-4"


def _label(value: str) -> str:
    """GKE labels allow lowercase letters, digits, '-' and '_' only."""
    return re.sub(r"[^a-z0-9_-]", "-", value.lower())[:63]


@register_provider("gcp")
class GCPProvider(CliProvider):
    """GKE clusters."""

    name = "gcp"
    tool = "gcloud"
    endpoint_url = "https://container.googleapis.com"
    status_map = {
        "provisioning": ClusterStatus.CREATING,
        "running": ClusterStatus.RUNNING,
        "reconciling": ClusterStatus.UPDATING,
        "stopping": ClusterStatus.DELETING,
        "error": ClusterStatus.ERROR,
        "degraded": ClusterStatus.ERROR,
    }

    @property
    def region(self) -> str:
        return str(self.config.get("region") or DEFAULT_REGION)

    def cli_env(self) -> dict[str, str]:
        env = {}
        if self.config.get("projectId"):
            env["CLOUDSDK_CORE_PROJECT"] = str(self.config["projectId"])
        if self.config.get("serviceAccountKey"):
            env["CLOUDSDK_AUTH_CREDENTIAL_FILE_OVERRIDE"] = str(self.config["serviceAccountKey"])
        return env

    def default_instance_type(self) -> str:
        return DEFAULT_MACHINE_TYPE

    def _location(self) -> list[str]:
        return ["--region", self.region]

    def check_identity(self, output: str) -> None:
        try:
            accounts = json.loads(output or "[]")
        except ValueError:
            accounts = []
        if not accounts:
            raise AuthenticationError(
                provider=self.name,
                message=(
                    "no active gcloud account; run 'gcloud auth login' "
                    "or configure serviceAccountKey"
                ),
            )

    def identity_args(self) -> list[str]:
        return ["gcloud", "auth", "list", "--filter=status:ACTIVE", "--format=json"]

    def permission_args(self) -> list[str]:
        return ["gcloud", "container", "clusters", "list", *self._location(), "--format=json"]

    def create_args(self, spec: ClusterSpec) -> list[str]:
        args = ["gcloud", "container", "clusters", "create", spec.name, *self._location()]
        if spec.version:
            args.extend(["--cluster-version", spec.version.lstrip("v")])
        group = spec.node_groups[0] if spec.node_groups else None
        args.extend(["--num-nodes", str(max(spec.worker_count, 1))])
        machine_type = (group.instance_type if group else "") or DEFAULT_MACHINE_TYPE
        args.extend(["--machine-type", machine_type])
        if group and group.autoscaling.enabled:
            args.extend(
                [
                    "--enable-autoscaling",
                    f"--min-nodes={group.autoscaling.min_replicas}",
                    f"--max-nodes={group.autoscaling.max_replicas}",
                ]
            )
        labels = ",".join(f"{_label(k)}={_label(v)}" for k, v in self.cluster_tags(spec).items())
        args.extend(["--labels", labels, "--format=json"])
        return args

    def delete_args(self, cluster_name: str) -> list[str]:
        return [
            "gcloud", "container", "clusters", "delete", cluster_name, *self._location(), "--quiet"
        ]

    def describe_args(self, cluster_name: str) -> list[str]:
        return [
            "gcloud", "container", "clusters", "describe", cluster_name,
            *self._location(),
            "--format=json",
        ]

    def list_args(self) -> list[str]:
        return ["gcloud", "container", "clusters", "list", *self._location(), "--format=json"]

    def parse_cluster(self, data: dict[str, Any]) -> Cluster:
        endpoint = data.get("endpoint")
        return self._build(
            name=data["name"],
            status=data.get("status"),
            version=data.get("currentMasterVersion", ""),
            endpoint=f"https://{endpoint}" if endpoint else None,
            region=data.get("location", ""),
            created=data.get("createTime"),
            tags=data.get("resourceLabels"),
            metadata={"selfLink": data.get("selfLink", "")},
        )

    def kubeconfig_args(self, cluster_name: str, path: str) -> tuple[list[str], bool]:
        # get-credentials writes into the file named by KUBECONFIG
        return [
            "gcloud", "container", "clusters", "get-credentials", cluster_name, *self._location()
        ], True

    def upgrade_args(self, cluster_name: str, version: str) -> list[str] | None:
        return [
            "gcloud", "container", "clusters", "upgrade", cluster_name,
            "--master",
            "--cluster-version", version.lstrip("v"),
            *self._location(),
            "--quiet",
        ]

    def node_pool_create_args(self, cluster_name: str, spec: NodeGroupSpec) -> list[str] | None:
        return [
            "gcloud", "container", "node-pools", "create", spec.name,
            "--cluster", cluster_name,
            *self._location(),
            "--num-nodes", str(spec.replicas),
            "--machine-type", spec.instance_type or DEFAULT_MACHINE_TYPE,
        ]

    def node_pool_delete_args(self, cluster_name: str, name: str) -> list[str] | None:
        return [
            "gcloud", "container", "node-pools", "delete", name,
            "--cluster", cluster_name,
            *self._location(),
            "--quiet",
        ]

    def node_pool_scale_args(self, cluster_name: str, name: str, replicas: int) -> list[str] | None:
        return [
            "gcloud", "container", "clusters", "resize", cluster_name,
            "--node-pool", name,
            "--num-nodes", str(replicas),
            *self._location(),
            "--quiet",
        ]

    def node_pool_list_args(self, cluster_name: str) -> list[str] | None:
        return [
            "gcloud", "container", "node-pools", "list",
            "--cluster", cluster_name,
            *self._location(),
            "--format=json",
        ]

    def parse_node_group(self, data: dict[str, Any]) -> NodeGroup:
        status = str(data.get("status", "")).upper()
        return NodeGroup(
            name=data.get("name", ""),
            replicas=int(data.get("initialNodeCount") or 0),
            instance_type=(data.get("config") or {}).get("machineType", ""),
            status=NodeGroupStatus.READY if status == "RUNNING" else NodeGroupStatus.CREATING,
        )
