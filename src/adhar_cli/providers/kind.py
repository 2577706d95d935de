"""Local kind provider.

Clusters run as Docker containers through the `kind` CLI. kind cannot tell
which of its clusters adhar created, so records live in a ClusterStore; the
store is the only source for get/list.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from ..bootstrap.kubectl import Kubectl
from ..errors import (
    AdharError,
    AuthenticationError,
    ClusterNotFoundError,
    CommandError,
    NotSupportedError,
    ResourceError,
    ToolNotFoundError,
    ValidationError,
)
from ..models import (
    Addon,
    Cluster,
    ClusterCost,
    ClusterSpec,
    ClusterStatus,
    ComponentHealth,
    Credentials,
    HealthStatus,
    MetricValue,
    Metrics,
    NodeGroup,
    NodeGroupStatus,
    utcnow,
)
from ..shared.logging import get_logger
from ..shared.paths import get_cluster_store_file
from ..shared.shell import CommandRunner
from .base import MANAGED_TAGS, Provider
from .registry import register_provider
from .store import ClusterStore, FileClusterStore

logger = get_logger(__name__)

KIND_API_VERSION = "kind.x-k8s.io/v1alpha4"
KIND_NODE_IMAGE = "kindest/node"
CREATE_WAIT = "120s"

# NodePorts the ingress controller listens on inside the control-plane container
INGRESS_HTTP_NODE_PORT = 30080
INGRESS_HTTPS_NODE_PORT = 30443

CILIUM_MANIFESTS = "platform/stack/platform/cilium"
CILIUM_QUICK_INSTALL_URL = (
    "https://raw.githubusercontent.com/cilium/cilium/v1.16.0/install/kubernetes/quick-install.yaml"
)

KIND_ADDONS = ("cilium", "metrics-server", "ingress-nginx")

CONTROL_PLANE_LABEL = "node-role.kubernetes.io/control-plane"


class KindConfigGenerator:
    """Generate kind cluster configuration documents."""

    def generate(self, spec: ClusterSpec) -> dict[str, Any]:
        """Build the kind Cluster document for a spec.

        Args:
            spec: Desired cluster state.

        Returns:
            kind configuration as a plain dict.

        Raises:
            ValidationError: An extra port mapping is not "host:container".
        """
        config: dict[str, Any] = {
            "kind": "Cluster",
            "apiVersion": KIND_API_VERSION,
            "name": spec.name,
            "nodes": [],
        }

        networking = spec.networking
        if networking.cni == "cilium":
            # kind's default CNI and kube-proxy are replaced by cilium
            config["networking"] = {
                "disableDefaultCNI": True,
                "kubeProxyMode": "none",
                "podSubnet": networking.pod_cidr,
                "serviceSubnet": networking.service_cidr,
            }

        for index in range(max(spec.control_plane.replicas, 1)):
            node: dict[str, Any] = {"role": "control-plane"}
            if index == 0:
                node["extraPortMappings"] = self._port_mappings(spec)
            config["nodes"].append(node)

        for group in spec.node_groups:
            for _ in range(group.replicas):
                config["nodes"].append({"role": "worker"})

        return config

    def _port_mappings(self, spec: ClusterSpec) -> list[dict[str, Any]]:
        networking = spec.networking
        mappings = [
            {
                "containerPort": INGRESS_HTTP_NODE_PORT,
                "hostPort": networking.http_port or 80,
                "protocol": "TCP",
            },
            {
                "containerPort": INGRESS_HTTPS_NODE_PORT,
                "hostPort": networking.https_port or 443,
                "protocol": "TCP",
            },
        ]
        for entry in networking.extra_port_mappings:
            host, sep, container = entry.partition(":")
            if not sep or not host.strip().isdigit() or not container.strip().isdigit():
                raise ValidationError(
                    message=f"invalid port mapping '{entry}', expected host:container",
                    field_name="extra_port_mappings",
                )
            mappings.append(
                {
                    "containerPort": int(container),
                    "hostPort": int(host),
                    "protocol": "TCP",
                }
            )
        return mappings

    def needs_config_file(self, config: dict[str, Any]) -> bool:
        """Multi-node topologies and port mappings can only be expressed in a config file."""
        nodes = config.get("nodes", [])
        return len(nodes) > 1 or any("extraPortMappings" in node for node in nodes)

    def render(self, config: dict[str, Any]) -> str:
        return yaml.dump(config, default_flow_style=False, sort_keys=False)


@register_provider("kind")
class KindProvider(Provider):
    """Local Kubernetes clusters through kind."""

    name = "kind"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        runner: CommandRunner | None = None,
        store: ClusterStore | None = None,
    ):
        """Initialize provider.

        Args:
            config: Provider configuration. Recognized keys: kindPath, kubectlPath,
                ciliumPath, nodeImage, kindConfigPath, ciliumManifests, storePath.
            runner: Command runner for kind/kubectl/cilium.
            store: Cluster record store; defaults to the shared JSON file.
        """
        super().__init__(config, runner)
        self.kind_path = self.config.get("kindPath") or "kind"
        self.kubectl_path = self.config.get("kubectlPath") or "kubectl"
        self.cilium_path = self.config.get("ciliumPath") or "cilium"
        self.node_image = self.config.get("nodeImage") or KIND_NODE_IMAGE
        self.kind_config_path = self.config.get("kindConfigPath")
        self.cilium_manifests = self.config.get("ciliumManifests") or CILIUM_MANIFESTS
        self.store = store or FileClusterStore(
            self.config.get("storePath") or get_cluster_store_file()
        )
        self.config_generator = KindConfigGenerator()

    @property
    def region(self) -> str:
        return "local"

    def kubectl_for(self, cluster_name: str) -> Kubectl:
        """kubectl bound to the context kind writes for a cluster."""
        return Kubectl(
            context=f"kind-{cluster_name}", runner=self.runner, binary=self.kubectl_path
        )

    async def _kind(self, *args: str, timeout: float | None = None):
        return await self.runner([self.kind_path, *args], timeout=timeout)

    # -- store helpers --------------------------------------------------------

    async def _put(self, cluster: Cluster) -> None:
        def put(clusters: dict[str, Cluster]) -> None:
            clusters[cluster.id] = cluster

        await asyncio.to_thread(self.store.update, put)

    async def _set_status(self, cluster: Cluster, status: ClusterStatus) -> None:
        cluster.status = status
        cluster.updated_at = utcnow()
        await self._put(cluster)

    # -- authentication -------------------------------------------------------

    async def authenticate(self, credentials: Credentials | None = None) -> None:
        """kind has no credentials; check the binary is installed."""
        (await self._kind("version")).check()

    async def validate_permissions(self) -> None:
        """kind needs a reachable Docker daemon."""
        try:
            result = await self.runner(["docker", "info", "--format", "{{.ServerVersion}}"])
        except ToolNotFoundError as e:
            raise AuthenticationError(
                provider=self.name, message="docker not found. Is Docker installed?"
            ) from e
        if not result.ok:
            raise AuthenticationError(
                provider=self.name,
                message=f"cannot reach the Docker daemon: {result.stderr.strip()}",
            )

    # -- cluster lifecycle ----------------------------------------------------

    async def cluster_exists(self, cluster_name: str) -> bool:
        """Ask kind whether a cluster with this name is running."""
        result = await self._kind("get", "clusters")
        if not result.ok:
            return False
        return cluster_name in {line.strip() for line in result.stdout.splitlines()}

    async def create_cluster(self, spec: ClusterSpec) -> Cluster:
        """Create a kind cluster, install cilium and record it.

        An already running kind cluster with the same name is adopted rather
        than recreated.

        Raises:
            ValidationError: Spec is for another provider or malformed.
            ResourceError: kind could not create the cluster.
        """
        self.check_spec(spec)
        kind_config = self.config_generator.generate(spec)
        cluster = Cluster(
            id=self.cluster_id(spec.name),
            name=spec.name,
            provider=self.name,
            region=self.region,
            version=spec.version,
            status=ClusterStatus.CREATING,
            tags={
                **MANAGED_TAGS,
                "adhar.io/cluster-name": spec.name,
                "adhar.io/provider": self.name,
                **spec.tags,
            },
            metadata={"kindConfig": kind_config},
        )
        await self._put(cluster)
        logger.info("creating kind cluster", cluster_id=cluster.id, nodes=len(kind_config["nodes"]))

        try:
            if await self.cluster_exists(spec.name):
                logger.info("kind cluster already exists, reusing", cluster=spec.name)
            else:
                await self._create_kind_cluster(spec, kind_config)

            if spec.networking.cni == "cilium":
                try:
                    await self.install_cilium(spec.name)
                except AdharError as e:
                    logger.warning(
                        "CNI installation failed, continuing", cluster=spec.name, error=str(e)
                    )
        except (AdharError, asyncio.CancelledError):
            await self._set_status(cluster, ClusterStatus.ERROR)
            raise

        cluster.endpoint = await self._read_endpoint(spec.name)
        await self._set_status(cluster, ClusterStatus.RUNNING)
        logger.info("kind cluster ready", cluster_id=cluster.id, endpoint=cluster.endpoint)
        return cluster

    async def _create_kind_cluster(self, spec: ClusterSpec, kind_config: dict[str, Any]) -> None:
        args = ["create", "cluster", "--name", spec.name]
        if spec.version:
            args.extend(["--image", f"{self.node_image}:{spec.version}"])
        args.extend(["--wait", CREATE_WAIT])

        config_file: str | None = None
        if self.kind_config_path:
            args.extend(["--config", str(self.kind_config_path)])
        elif self.config_generator.needs_config_file(kind_config):
            fd, config_file = tempfile.mkstemp(prefix=f"kind-config-{spec.name}-", suffix=".yaml")
            with os.fdopen(fd, "w") as f:
                f.write(self.config_generator.render(kind_config))
            args.extend(["--config", config_file])

        try:
            result = await self._kind(*args)
        finally:
            if config_file:
                Path(config_file).unlink(missing_ok=True)

        if not result.ok:
            raise self._creation_error(spec.name, result.output)

    def _creation_error(self, cluster_name: str, output: str) -> ResourceError:
        if "Bind for 0.0.0.0" in output or "port is already allocated" in output:
            ports = [port for port in ("80", "443") if f"0.0.0.0:{port} failed" in output]
            return ResourceError(
                operation="create",
                resource_type="kind cluster",
                resource_id=cluster_name,
                retryable=False,
                message=(
                    f"cannot create cluster '{cluster_name}': port(s) "
                    f"{', '.join(ports) or '80/443'} already in use. Delete other kind clusters "
                    "(kind delete clusters --all), stop the service holding the port, "
                    "or retry with a different port (adhar up --port 8080 --protocol http)"
                ),
            )
        return ResourceError(
            operation="create",
            resource_type="kind cluster",
            resource_id=cluster_name,
            message=f"failed to create kind cluster '{cluster_name}': {output}",
        )

    async def _read_endpoint(self, cluster_name: str) -> str | None:
        result = await self._kind("get", "kubeconfig", "--name", cluster_name)
        if not result.ok:
            logger.warning("could not read kind kubeconfig", cluster=cluster_name)
            return None
        try:
            document = yaml.safe_load(result.stdout) or {}
            return document["clusters"][0]["cluster"]["server"]
        except (yaml.YAMLError, KeyError, IndexError, TypeError):
            return None

    async def install_cilium(self, cluster_name: str) -> None:
        """Install cilium with kube-proxy replacement, falling back to kubectl manifests.

        Raises:
            CommandError: Neither the cilium CLI nor the manifests could install it.
        """
        control_plane_host = f"{cluster_name}-control-plane"
        try:
            result = await self.runner(
                [
                    self.cilium_path,
                    "install",
                    "--context",
                    f"kind-{cluster_name}",
                    "--set",
                    "kubeProxyReplacement=true",
                    "--set",
                    f"k8sServiceHost={control_plane_host}",
                    "--set",
                    "k8sServicePort=6443",
                ]
            )
        except ToolNotFoundError:
            logger.info("cilium CLI not found, installing with kubectl", cluster=cluster_name)
            await self._install_cilium_with_kubectl(cluster_name)
            return

        result.check()
        status = await self.runner(
            [
                self.cilium_path, "status",
                "--context", f"kind-{cluster_name}",
                "--wait",
                "--wait-duration=300s",
            ]
        )
        if not status.ok:
            logger.warning("could not verify cilium status, continuing", cluster=cluster_name)

    async def _install_cilium_with_kubectl(self, cluster_name: str) -> None:
        kubectl = self.kubectl_for(cluster_name)
        local = await kubectl.run("apply", "-f", self.cilium_manifests)
        if not local.ok:
            await kubectl.apply_file(CILIUM_QUICK_INSTALL_URL)
            patch = {
                "data": {
                    "kube-proxy-replacement": "true",
                    "k8s-service-host": f"{cluster_name}-control-plane",
                    "k8s-service-port": "6443",
                }
            }
            # Best effort; the quick-install defaults still yield a working CNI
            await kubectl.run(
                "patch", "configmap", "cilium-config",
                "-n", "kube-system",
                "--patch", json.dumps(patch),
            )

        ready, message = await kubectl.wait_for_pods(
            "k8s-app=cilium", namespace="kube-system", timeout_seconds=180
        )
        if not ready:
            raise CommandError(
                command=["kubectl", "wait", "pod"],
                stderr=f"timeout waiting for cilium pods: {message}",
            )

    async def delete_cluster(self, cluster_id: str) -> None:
        """Delete the kind cluster and its record. Deleting an unknown cluster succeeds."""
        cluster_name = self.cluster_name(cluster_id)
        result = await self._kind("delete", "cluster", "--name", cluster_name)
        missing = "not found" in result.output or "No kind cluster" in result.output
        if not result.ok and not missing:
            raise ResourceError(
                operation="delete",
                resource_type="kind cluster",
                resource_id=cluster_name,
                message=f"failed to delete kind cluster '{cluster_name}': {result.output}",
            )

        def remove(clusters: dict[str, Cluster]) -> bool:
            return clusters.pop(self.cluster_id(cluster_name), None) is not None

        removed = await asyncio.to_thread(self.store.update, remove)
        logger.info("kind cluster deleted", cluster=cluster_name, had_record=removed)

    async def update_cluster(self, cluster_id: str, spec: ClusterSpec) -> Cluster:
        raise NotSupportedError(
            provider=self.name,
            operation="update cluster",
            message="kind clusters are immutable; consider recreating the cluster",
        )

    async def upgrade_cluster(self, cluster_id: str, version: str) -> None:
        raise NotSupportedError(
            provider=self.name,
            operation="upgrade cluster",
            message="kind clusters require recreation for version upgrades",
        )

    async def get_cluster(self, cluster_id: str) -> Cluster:
        clusters = await asyncio.to_thread(self.store.load)
        cluster = clusters.get(cluster_id)
        if cluster is None:
            raise ClusterNotFoundError(cluster_id=cluster_id, provider=self.name)
        return cluster

    async def list_clusters(self) -> list[Cluster]:
        clusters = await asyncio.to_thread(self.store.load)
        return sorted(clusters.values(), key=lambda cluster: cluster.created_at)

    async def get_kubeconfig(self, cluster_id: str) -> str:
        cluster_name = self.cluster_name(cluster_id)
        result = await self._kind("get", "kubeconfig", "--name", cluster_name)
        if not result.ok:
            if "could not locate" in result.output or "not found" in result.output:
                raise ClusterNotFoundError(cluster_id=cluster_id, provider=self.name)
            result.check()
        return result.stdout

    # -- observation ----------------------------------------------------------

    async def _nodes(self, cluster_name: str) -> list[dict[str, Any]]:
        result = (await self.kubectl_for(cluster_name).run("get", "nodes", "-o", "json")).check()
        return json.loads(result.stdout).get("items", [])

    async def get_cluster_health(self, cluster_id: str) -> HealthStatus:
        """Node readiness as reported by kubectl."""
        cluster = await self.get_cluster(cluster_id)
        try:
            nodes = await self._nodes(cluster.name)
        except (CommandError, ValueError) as e:
            return HealthStatus(
                status="unhealthy",
                components={"api-server": ComponentHealth(status="unhealthy", message=str(e))},
            )

        components = {}
        for node in nodes:
            ready = _node_ready(node)
            components[node["metadata"]["name"]] = ComponentHealth(
                status="healthy" if ready else "unhealthy",
                message="Ready" if ready else "NotReady",
            )
        ready_count = sum(1 for c in components.values() if c.status == "healthy")
        if components and ready_count == len(components):
            status = "healthy"
        elif ready_count:
            status = "degraded"
        else:
            status = "unhealthy"
        return HealthStatus(status=status, components=components)

    async def get_cluster_metrics(self, cluster_id: str) -> Metrics:
        """Node usage from `kubectl top nodes` (requires metrics-server)."""
        cluster = await self.get_cluster(cluster_id)
        result = await self.kubectl_for(cluster.name).run("top", "nodes", "--no-headers")
        if not result.ok:
            raise ResourceError(
                operation="read",
                resource_type="metrics",
                resource_id=cluster_id,
                message=f"metrics unavailable for {cluster_id}: {result.stderr.strip()}",
            )

        cpu_millis = 0
        memory_mi = 0
        cpu_percents: list[float] = []
        memory_percents: list[float] = []
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) < 5:
                continue
            cpu_millis += _parse_cpu(fields[1])
            cpu_percents.append(_parse_percent(fields[2]))
            memory_mi += _parse_memory(fields[3])
            memory_percents.append(_parse_percent(fields[4]))

        return Metrics(
            cpu=MetricValue(usage=f"{cpu_millis}m", percent=_average(cpu_percents)),
            memory=MetricValue(usage=f"{memory_mi}Mi", percent=_average(memory_percents)),
        )

    async def list_node_groups(self, cluster_id: str) -> list[NodeGroup]:
        """Group kind nodes into control-plane and workers."""
        cluster = await self.get_cluster(cluster_id)
        nodes = await self._nodes(cluster.name)
        groups: dict[str, list[dict[str, Any]]] = {}
        for node in nodes:
            labels = node.get("metadata", {}).get("labels", {})
            group = "control-plane" if CONTROL_PLANE_LABEL in labels else "workers"
            groups.setdefault(group, []).append(node)

        return [
            NodeGroup(
                name=name,
                replicas=len(members),
                instance_type="local",
                status=(
                    NodeGroupStatus.READY
                    if all(_node_ready(node) for node in members)
                    else NodeGroupStatus.ERROR
                ),
            )
            for name, members in groups.items()
        ]

    async def list_addons(self, cluster_id: str) -> list[Addon]:
        return [Addon(name=name) for name in KIND_ADDONS]

    async def get_cluster_cost(self, cluster_id: str) -> ClusterCost:
        return ClusterCost(
            total_cost=0.0, breakdown={"compute": 0.0, "storage": 0.0, "network": 0.0}
        )


def _node_ready(node: dict[str, Any]) -> bool:
    for condition in node.get("status", {}).get("conditions", []):
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def _parse_cpu(value: str) -> int:
    """CPU quantity in millicores ("250m" or "2")."""
    try:
        if value.endswith("m"):
            return int(value[:-1])
        return int(float(value) * 1000)
    except ValueError:
        return 0


def _parse_memory(value: str) -> int:
    """Memory quantity in MiB."""
    units = {"Ki": 1 / 1024, "Mi": 1, "Gi": 1024, "Ti": 1024 * 1024}
    for suffix, factor in units.items():
        if value.endswith(suffix):
            try:
                return int(float(value[: -len(suffix)]) * factor)
            except ValueError:
                return 0
    return 0


def _parse_percent(value: str) -> float:
    try:
        return float(value.rstrip("%"))
    except ValueError:
        return 0.0


def _average(values: list[float]) -> float:
    return round(sum(values) / len(values), 1) if values else 0.0
