"""Custom provider for existing on-premises clusters.

adhar does not build on-premises clusters; it registers one that already
exists (API endpoint plus kubeconfig) so the platform can be bootstrapped on
it. Records live in a ClusterStore like kind's. Deleting a cluster only
forgets the record.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import httpx
import yaml

from ..bootstrap.kubectl import Kubectl
from ..errors import (
    AuthenticationError,
    ClusterNotFoundError,
    ConfigurationError,
    NetworkError,
)
from ..models import (
    Cluster,
    ClusterSpec,
    ClusterStatus,
    ComponentHealth,
    Credentials,
    HealthStatus,
    utcnow,
)
from ..shared.logging import get_logger
from ..shared.paths import ADHAR_DIR
from ..shared.shell import CommandRunner
from .base import MANAGED_TAGS, Provider
from .registry import register_provider
from .store import ClusterStore, FileClusterStore

logger = get_logger(__name__)

CUSTOM_STORE_FILE = ADHAR_DIR / "custom-clusters.json"


@register_provider("custom")
class CustomProvider(Provider):
    """Pre-existing clusters reached through an API endpoint and kubeconfig."""

    name = "custom"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        runner: CommandRunner | None = None,
        store: ClusterStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 10.0,
    ):
        """Initialize provider.

        Args:
            config: Provider configuration. Recognized keys: endpoint,
                kubeconfigPath, clusterType, insecureSkipVerify, storePath.
            runner: Command runner for kubectl.
            store: Cluster record store.
            transport: httpx transport override for the endpoint probe.
            timeout_seconds: Timeout for each probe request.
        """
        super().__init__(config, runner)
        self.kubeconfig_path = self.config.get("kubeconfigPath")
        self.endpoint_url = self.config.get("endpoint") or None
        self.cluster_type = self.config.get("clusterType") or "kubeadm"
        self.verify_tls = not self.config.get("insecureSkipVerify", True)
        self.store = store or FileClusterStore(self.config.get("storePath") or CUSTOM_STORE_FILE)
        self.transport = transport
        self.timeout_seconds = timeout_seconds

    @property
    def region(self) -> str:
        return str(self.config.get("region") or "on-premises")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds, verify=self.verify_tls, transport=self.transport
        )

    async def probe(self, endpoint: str, path: str = "/version") -> httpx.Response:
        """GET a path on the API server.

        Raises:
            NetworkError: The endpoint did not answer.
        """
        try:
            async with self._client() as client:
                return await client.get(f"{endpoint.rstrip('/')}{path}")
        except httpx.ConnectError as e:
            raise NetworkError(
                endpoint=endpoint, message=f"cannot connect to {endpoint}: {e}"
            ) from e
        except httpx.TimeoutException as e:
            raise NetworkError(
                endpoint=endpoint, message=f"timeout connecting to {endpoint}"
            ) from e

    def _endpoint_from_kubeconfig(self, path: str) -> str | None:
        try:
            document = yaml.safe_load(Path(path).expanduser().read_text()) or {}
            return document["clusters"][0]["cluster"]["server"]
        except (OSError, yaml.YAMLError, KeyError, IndexError, TypeError):
            return None

    def _resolve_endpoint(self) -> str:
        endpoint = self.endpoint_url
        if not endpoint and self.kubeconfig_path:
            endpoint = self._endpoint_from_kubeconfig(self.kubeconfig_path)
        if not endpoint:
            raise ConfigurationError(
                message="custom provider requires 'endpoint' or a readable 'kubeconfigPath'"
            )
        return endpoint

    async def authenticate(self, credentials: Credentials | None = None) -> None:
        """Check the API server answers; 401/403 still proves it is reachable.

        Raises:
            NetworkError: Endpoint unreachable or failing.
        """
        if credentials is not None:
            self.config.update(credentials.data)
            self.kubeconfig_path = self.config.get("kubeconfigPath", self.kubeconfig_path)
        endpoint = self._resolve_endpoint()
        response = await self.probe(endpoint)
        if response.status_code >= 500:
            raise NetworkError(
                endpoint=endpoint, message=f"{endpoint} answered HTTP {response.status_code}"
            )
        logger.info("custom endpoint reachable", endpoint=endpoint, status=response.status_code)

    async def validate_permissions(self) -> None:
        """Ask the API server whether the kubeconfig identity may create namespaces."""
        if not self.kubeconfig_path:
            raise AuthenticationError(
                provider=self.name, message="kubeconfigPath is required to validate permissions"
            )
        kubectl = Kubectl(kubeconfig=self.kubeconfig_path, runner=self.runner)
        result = await kubectl.run("auth", "can-i", "create", "namespaces")
        if result.stdout.strip() != "yes":
            raise AuthenticationError(
                provider=self.name,
                message="kubeconfig identity cannot create namespaces on the custom cluster",
            )

    async def create_cluster(self, spec: ClusterSpec) -> Cluster:
        """Register an existing cluster.

        Raises:
            ValidationError: Spec is for another provider.
            ConfigurationError: No endpoint configured.
            NetworkError: Endpoint unreachable.
        """
        self.check_spec(spec)
        endpoint = self._resolve_endpoint()
        response = await self.probe(endpoint)
        version = ""
        if response.status_code == 200:
            try:
                version = response.json().get("gitVersion", "")
            except ValueError:
                version = ""

        cluster = Cluster(
            id=self.cluster_id(spec.name),
            name=spec.name,
            provider=self.name,
            region=self.region,
            version=version or spec.version,
            status=ClusterStatus.RUNNING,
            endpoint=endpoint,
            tags={
                **MANAGED_TAGS,
                "adhar.io/cluster-name": spec.name,
                "adhar.io/provider": self.name,
            },
            metadata={
                "clusterType": self.cluster_type,
                "kubeconfigPath": str(self.kubeconfig_path or ""),
                "isExisting": True,
            },
        )

        def put(clusters: dict[str, Cluster]) -> None:
            clusters[cluster.id] = cluster

        await asyncio.to_thread(self.store.update, put)
        logger.info("custom cluster registered", cluster_id=cluster.id, endpoint=endpoint)
        return cluster

    async def delete_cluster(self, cluster_id: str) -> None:
        """Forget a registered cluster; the cluster itself is left running."""

        def remove(clusters: dict[str, Cluster]) -> None:
            clusters.pop(cluster_id, None)

        await asyncio.to_thread(self.store.update, remove)
        logger.info("custom cluster unregistered", cluster_id=cluster_id)

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
        cluster = await self.get_cluster(cluster_id)
        path = cluster.metadata.get("kubeconfigPath") or self.kubeconfig_path
        if not path:
            raise ConfigurationError(message=f"no kubeconfig recorded for cluster '{cluster_id}'")
        try:
            return Path(path).expanduser().read_text()
        except OSError as e:
            raise ConfigurationError(message=f"cannot read kubeconfig {path}: {e}") from e

    async def get_cluster_health(self, cluster_id: str) -> HealthStatus:
        """Probe /readyz on the recorded endpoint."""
        cluster = await self.get_cluster(cluster_id)
        if not cluster.endpoint:
            return HealthStatus(status="unknown")
        try:
            response = await self.probe(cluster.endpoint, "/readyz")
        except NetworkError as e:
            component = ComponentHealth(status="unhealthy", message=str(e))
            return HealthStatus(status="unhealthy", components={"api-server": component})

        if response.status_code == 200:
            status, message = "healthy", "ok"
        elif response.status_code in (401, 403):
            status, message = "unknown", f"HTTP {response.status_code}"
        else:
            status, message = "unhealthy", f"HTTP {response.status_code}"
        return HealthStatus(
            status=status,
            components={"api-server": ComponentHealth(status=status, message=message)},
            last_check=utcnow(),
        )
