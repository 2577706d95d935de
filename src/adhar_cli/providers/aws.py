"""Amazon EKS provider (eksctl for lifecycle, aws CLI for reads)."""

from __future__ import annotations

from typing import Any

from ..models import Cluster, ClusterSpec, ClusterStatus, NodeGroup, NodeGroupSpec, NodeGroupStatus
from .cli import CliProvider
from .registry import register_provider

DEFAULT_REGION = "us-east-1"
DEFAULT_INSTANCE_TYPE = "t3.medium"


@register_provider("aws")
class AWSProvider(CliProvider):
    """EKS clusters."""

    name = "aws"
    tool = "eksctl"
    endpoint_url = "https://sts.amazonaws.com"
    status_map = {
        "creating": ClusterStatus.CREATING,
        "active": ClusterStatus.RUNNING,
        "updating": ClusterStatus.UPDATING,
        "deleting": ClusterStatus.DELETING,
        "failed": ClusterStatus.ERROR,
    }

    @property
    def region(self) -> str:
        return str(self.config.get("region") or DEFAULT_REGION)

    def cli_env(self) -> dict[str, str]:
        env = {"AWS_DEFAULT_REGION": self.region}
        if self.config.get("accessKeyId"):
            env["AWS_ACCESS_KEY_ID"] = str(self.config["accessKeyId"])
        if self.config.get("secretAccessKey"):
            env["AWS_SECRET_ACCESS_KEY"] = str(self.config["secretAccessKey"])
        if self.config.get("profile"):
            env["AWS_PROFILE"] = str(self.config["profile"])
        return env

    def default_instance_type(self) -> str:
        return DEFAULT_INSTANCE_TYPE

    def identity_args(self) -> list[str]:
        return ["aws", "sts", "get-caller-identity", "--output", "json"]

    def permission_args(self) -> list[str]:
        return ["aws", "eks", "list-clusters", "--region", self.region, "--output", "json"]

    def create_args(self, spec: ClusterSpec) -> list[str]:
        args = ["eksctl", "create", "cluster", "--name", spec.name, "--region", self.region]
        if spec.version:
            args.extend(["--version", spec.version.lstrip("v").rsplit(".", 1)[0]])
        if spec.worker_count:
            group = spec.node_groups[0]
            args.extend(
                [
                    "--nodegroup-name",
                    group.name,
                    "--nodes",
                    str(spec.worker_count),
                    "--node-type",
                    group.instance_type or DEFAULT_INSTANCE_TYPE,
                ]
            )
            if group.autoscaling.enabled:
                args.extend(
                    [
                        "--nodes-min",
                        str(group.autoscaling.min_replicas),
                        "--nodes-max",
                        str(group.autoscaling.max_replicas),
                    ]
                )
        else:
            args.append("--without-nodegroup")
        tags = ",".join(f"{k}={v}" for k, v in self.cluster_tags(spec).items())
        args.extend(["--tags", tags])
        return args

    def delete_args(self, cluster_name: str) -> list[str]:
        return [
            "eksctl", "delete", "cluster", "--name", cluster_name, "--region", self.region, "--wait"
        ]

    def describe_args(self, cluster_name: str) -> list[str]:
        return [
            "aws", "eks", "describe-cluster",
            "--name", cluster_name,
            "--region", self.region,
            "--output", "json",
        ]

    def list_args(self) -> list[str]:
        return ["aws", "eks", "list-clusters", "--region", self.region, "--output", "json"]

    def parse_cluster_list(self, data: Any) -> list[dict[str, Any] | str]:
        # list-clusters only returns names
        return list((data or {}).get("clusters", []))

    def unwrap_describe(self, data: Any) -> dict[str, Any]:
        return (data or {}).get("cluster", {})

    def parse_cluster(self, data: dict[str, Any]) -> Cluster:
        return self._build(
            name=data["name"],
            status=data.get("status"),
            version=data.get("version", ""),
            endpoint=data.get("endpoint"),
            created=data.get("createdAt"),
            tags=data.get("tags"),
            metadata={"arn": data.get("arn", "")},
        )

    def kubeconfig_args(self, cluster_name: str, path: str) -> tuple[list[str], bool]:
        return (
            [
                "aws", "eks", "update-kubeconfig",
                "--name", cluster_name,
                "--region", self.region,
                "--kubeconfig", path,
            ],
            True,
        )

    def upgrade_args(self, cluster_name: str, version: str) -> list[str] | None:
        return [
            "eksctl", "upgrade", "cluster",
            "--name", cluster_name,
            "--region", self.region,
            "--version", version.lstrip("v"),
            "--approve",
        ]

    def node_pool_create_args(self, cluster_name: str, spec: NodeGroupSpec) -> list[str] | None:
        return [
            "eksctl", "create", "nodegroup",
            "--cluster", cluster_name,
            "--region", self.region,
            "--name", spec.name,
            "--nodes", str(spec.replicas),
            "--node-type", spec.instance_type or DEFAULT_INSTANCE_TYPE,
        ]

    def node_pool_delete_args(self, cluster_name: str, name: str) -> list[str] | None:
        return [
            "eksctl", "delete", "nodegroup",
            "--cluster", cluster_name,
            "--region", self.region,
            "--name", name,
        ]

    def node_pool_scale_args(self, cluster_name: str, name: str, replicas: int) -> list[str] | None:
        return [
            "eksctl", "scale", "nodegroup",
            "--cluster", cluster_name,
            "--region", self.region,
            "--name", name,
            "--nodes", str(replicas),
        ]

    def node_pool_list_args(self, cluster_name: str) -> list[str] | None:
        return [
            "eksctl", "get", "nodegroup",
            "--cluster", cluster_name,
            "--region", self.region,
            "-o", "json",
        ]

    def parse_node_group(self, data: dict[str, Any]) -> NodeGroup:
        status = str(data.get("Status", "")).upper()
        return NodeGroup(
            name=data.get("Name", ""),
            replicas=int(data.get("DesiredCapacity") or 0),
            instance_type=data.get("InstanceType", ""),
            status=NodeGroupStatus.READY if status == "ACTIVE" else NodeGroupStatus.CREATING,
        )
