"""Local platform collaborators.

PlatformClient covers what the local pipeline asks of the cluster: CRDs,
CoreDNS, the TLS certificate, the AdharPlatform resource and readiness.
ControllerManager runs the reconciliation loop in the background; the
in-process implementation drives the bootstrap sequencer once the platform
resource exists, records that repositories were created and cancels the run
with reason "synced".
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

from ..bootstrap.kubectl import ADHAR_NAMESPACE, Kubectl
from ..bootstrap.manifests import PLATFORM_KIND, PlatformLayout
from ..bootstrap.readiness import ReadinessPoller
from ..bootstrap.sequencer import BootstrapSequencer
from ..errors import CommandError, ConfigurationError, ResourceError
from ..shared.cancel import CancelReason, CancelToken
from ..shared.logging import get_logger
from ..shared.shell import CommandRunner, run_command

logger = get_logger(__name__)

CERTIFICATE_SECRET = "adhar-cert"
GATEWAY_SERVICE = "cilium-gateway-adhar-gateway"
PLATFORM_RESOURCE = PLATFORM_KIND.lower()

# Deployments that must have a ready replica; alternatives cover manifest and chart installs
REQUIRED_DEPLOYMENTS = (
    ("gitea",),
    ("argo-cd-argocd-server", "argocd-server"),
    ("cilium-operator",),
)
CILIUM_NAMESPACES = (ADHAR_NAMESPACE, "kube-system")


class PlatformClient(Protocol):
    """Cluster-side operations of the local pipeline."""

    async def install_crds(self) -> None: ...

    async def configure_coredns(self, host: str) -> bool: ...

    async def ensure_certificate(self, host: str) -> bytes: ...

    async def upsert_platform(self, resource: dict[str, Any]) -> None: ...

    async def get_platform(self, name: str) -> dict[str, Any] | None: ...

    async def mark_repositories_created(self, name: str) -> None: ...

    async def check_readiness(self, name: str) -> tuple[bool, str]: ...


class KubectlPlatformClient:
    """PlatformClient backed by kubectl and openssl."""

    def __init__(
        self,
        kubectl: Kubectl,
        layout: PlatformLayout,
        runner: CommandRunner | None = None,
        namespace: str = ADHAR_NAMESPACE,
    ):
        """Initialize client.

        Args:
            kubectl: kubectl bound to the local cluster.
            layout: Platform repository checkout (CRDs live there).
            runner: Command runner for openssl.
            namespace: Platform namespace.
        """
        self.kubectl = kubectl
        self.layout = layout
        self.runner = runner or run_command
        self.namespace = namespace

    async def install_crds(self) -> None:
        """Apply the platform CRDs.

        Raises:
            ConfigurationError: The CRD directory is missing.
            CommandError: kubectl apply failed.
        """
        crds = self.layout.crds_dir
        if not crds.is_dir():
            raise ConfigurationError(message=f"CRD directory not found: {crds}")
        await self.kubectl.apply_file(crds)
        logger.info("crds installed", path=str(crds))

    async def configure_coredns(self, host: str) -> bool:
        """Resolve the platform host to the gateway service inside the cluster.

        Returns:
            True if the Corefile changed, False if the rewrite was already present

        Raises:
            ResourceError: The CoreDNS configmap could not be read.
        """
        corefile = await self.kubectl.get_jsonpath(
            "configmap", "coredns", "{.data.Corefile}", namespace="kube-system"
        )
        if not corefile:
            raise ResourceError(
                operation="read",
                resource_type="configmap",
                resource_id="kube-system/coredns",
                message="CoreDNS configmap not found",
            )

        target = f"{GATEWAY_SERVICE}.{self.namespace}.svc.cluster.local"
        rewrite = f"rewrite name regex (.*\\.)?{re.escape(host)} {target} answer auto"
        if rewrite in corefile:
            logger.debug("coredns rewrite already present", host=host)
            return False

        updated, count = re.subn(
            r"(\.:53\s*\{\n)", lambda m: m.group(1) + f"    {rewrite}\n", corefile, count=1
        )
        if count == 0:
            raise ResourceError(
                operation="update",
                resource_type="configmap",
                resource_id="kube-system/coredns",
                message="unexpected Corefile layout; no root server block",
            )
        await self.kubectl.apply_manifests(
            [
                {
                    "apiVersion": "v1",
                    "kind": "ConfigMap",
                    "metadata": {"name": "coredns", "namespace": "kube-system"},
                    "data": {"Corefile": updated},
                }
            ]
        )
        await self.kubectl.run("rollout", "restart", "deployment/coredns", "-n", "kube-system")
        logger.info("coredns configured", host=host, target=target)
        return True

    async def _existing_certificate(self) -> bytes | None:
        encoded = await self.kubectl.get_jsonpath(
            "secret", CERTIFICATE_SECRET, "{.data.tls\\.crt}", namespace=self.namespace
        )
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded)
        except binascii.Error:
            logger.warning("certificate secret is not valid base64, regenerating")
            return None

    async def ensure_certificate(self, host: str) -> bytes:
        """Return the self-signed certificate, creating it when absent.

        Raises:
            CommandError: openssl or kubectl failed.
        """
        existing = await self._existing_certificate()
        if existing:
            logger.info("using existing certificate", secret=CERTIFICATE_SECRET)
            return existing

        await self.kubectl.create_namespace(self.namespace)
        with tempfile.TemporaryDirectory() as tmp:
            cert_path = Path(tmp) / "tls.crt"
            key_path = Path(tmp) / "tls.key"
            (
                await self.runner(
                    [
                        "openssl", "req", "-x509", "-newkey", "rsa:2048", "-nodes",
                        "-keyout", str(key_path),
                        "-out", str(cert_path),
                        "-days", "365",
                        "-subj", f"/CN={host}",
                        "-addext", f"subjectAltName=DNS:{host},DNS:*.{host}",
                    ]
                )
            ).check()
            (
                await self.kubectl.run(
                    "create", "secret", "tls", CERTIFICATE_SECRET,
                    "--cert", str(cert_path),
                    "--key", str(key_path),
                    "-n", self.namespace,
                )
            ).check()
            try:
                certificate = cert_path.read_bytes()
            except OSError as e:
                raise CommandError(command=["openssl", "req"], stderr=str(e)) from e
        logger.info("certificate created", secret=CERTIFICATE_SECRET, host=host)
        return certificate

    async def upsert_platform(self, resource: dict[str, Any]) -> None:
        """Create or update the platform resource (keyed by name and namespace)."""
        output = await self.kubectl.apply_manifests([resource])
        logger.info(
            "platform resource applied", name=resource["metadata"]["name"], result=output.strip()
        )

    async def get_platform(self, name: str) -> dict[str, Any] | None:
        result = await self.kubectl.run(
            "get", PLATFORM_RESOURCE, name, "-n", self.namespace, "-o", "json"
        )
        if not result.ok or not result.stdout.strip():
            return None
        try:
            return json.loads(result.stdout)
        except ValueError:
            return None

    async def mark_repositories_created(self, name: str) -> None:
        patch = json.dumps({"status": {"gitea": {"repositoriesCreated": True}}})
        (
            await self.kubectl.run(
                "patch", PLATFORM_RESOURCE, name,
                "-n", self.namespace,
                "--type", "merge",
                "--subresource", "status",
                "-p", patch,
            )
        ).check()

    async def _deployment_ready(self, names: tuple[str, ...]) -> bool:
        namespaces = CILIUM_NAMESPACES if names[0].startswith("cilium") else (self.namespace,)
        for namespace in namespaces:
            for name in names:
                replicas = await self.kubectl.get_jsonpath(
                    "deployment",
                    name,
                    "{.status.readyReplicas} {.status.availableReplicas}",
                    namespace=namespace,
                )
                counts = replicas.split()
                if len(counts) == 2 and all(c.isdigit() and int(c) >= 1 for c in counts):
                    return True
        return False

    async def check_readiness(self, name: str) -> tuple[bool, str]:
        """Core deployments ready, gateway service present, repositories created.

        Returns:
            Tuple of (ready, what is still missing).
        """
        for names in REQUIRED_DEPLOYMENTS:
            if not await self._deployment_ready(names):
                return False, f"deployment {names[0]} not ready"
        if not await self.kubectl.exists("service", GATEWAY_SERVICE, self.namespace):
            return False, f"service {GATEWAY_SERVICE} missing"
        created = await self.kubectl.get_jsonpath(
            PLATFORM_RESOURCE, name, "{.status.gitea.repositoriesCreated}", namespace=self.namespace
        )
        if created != "true":
            return False, "repositories not created"
        return True, "platform ready"


class ControllerManager(Protocol):
    """Background reconciliation loop."""

    async def start(self, token: CancelToken) -> asyncio.Task: ...


class BootstrapControllerManager:
    """In-process controller: bootstrap the platform once its resource exists."""

    def __init__(
        self,
        platform: PlatformClient,
        sequencer: BootstrapSequencer,
        platform_name: str,
        exit_on_sync: bool = True,
        resource_timeout_seconds: float = 120.0,
        resource_interval_seconds: float = 1.0,
    ):
        """Initialize manager.

        Args:
            platform: Platform client for resource lookups and status updates.
            sequencer: Bootstrap sequencer run on reconcile.
            platform_name: Name of the AdharPlatform resource to reconcile.
            exit_on_sync: Cancel the run with reason "synced" once bootstrapped.
            resource_timeout_seconds: How long to wait for the platform resource.
            resource_interval_seconds: Poll interval while waiting for it.
        """
        self.platform = platform
        self.sequencer = sequencer
        self.platform_name = platform_name
        self.exit_on_sync = exit_on_sync
        self.resource_timeout_seconds = resource_timeout_seconds
        self.resource_interval_seconds = resource_interval_seconds

    async def start(self, token: CancelToken) -> asyncio.Task:
        """Start the manager task; returns once it is running."""
        started = asyncio.Event()
        task = asyncio.ensure_future(self._run(token, started))
        waiter = asyncio.ensure_future(started.wait())
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()
        logger.info("controller manager started", platform=self.platform_name)
        return task

    async def _platform_exists(self) -> bool:
        return await self.platform.get_platform(self.platform_name) is not None

    async def _run(self, token: CancelToken, started: asyncio.Event) -> None:
        started.set()
        poller = ReadinessPoller(
            timeout_seconds=self.resource_timeout_seconds,
            interval_seconds=self.resource_interval_seconds,
        )
        found = await poller.wait_until(self._platform_exists, "platform resource", token)
        if found.cancelled:
            return
        found.raise_for_status(self.resource_timeout_seconds)

        logger.info("reconciling platform", platform=self.platform_name)
        result = await self.sequencer.run()
        result.raise_for_status()
        await self.platform.mark_repositories_created(self.platform_name)
        logger.info("platform repositories created", platform=self.platform_name)

        if self.exit_on_sync:
            token.cancel(CancelReason.SYNCED)
            return
        await token.wait()
