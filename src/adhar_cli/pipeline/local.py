"""Local provisioning pipeline.

Stands up the platform on a kind cluster in six phases:

1. Create Kind cluster
2. Install CRDs
3. Configure DNS & TLS
4. Start controllers (background task; the pipeline moves on once it runs)
5. Create AdharPlatform
6. Waiting for readiness
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import click

from ..bootstrap.kubectl import ADHAR_NAMESPACE, Kubectl
from ..bootstrap.manifests import BuildCustomization, PlatformLayout, build_platform_resource
from ..bootstrap.sequencer import BootstrapSequencer, SequencerOptions
from ..config import RuntimeOptions
from ..errors import AdharError
from ..models import Cluster, ClusterSpec, NetworkingSpec, utcnow
from ..providers.base import Provider
from ..providers.registry import create_provider
from ..shared.cancel import CancelToken
from ..shared.logging import get_logger
from .phases import (
    EchoProgress,
    NullProgress,
    Phase,
    PhaseOutcome,
    PhaseStatus,
    Pipeline,
    PipelineResult,
    ProgressSink,
)
from .platform import (
    BootstrapControllerManager,
    ControllerManager,
    KubectlPlatformClient,
    PlatformClient,
)
from .wait import DEFAULT_GRACE_SECONDS, DEFAULT_POLL_INTERVAL, ReadinessWait

logger = get_logger(__name__)

DEFAULT_CLUSTER_NAME = "adhar"
DEFAULT_KUBE_VERSION = "v1.34.0"

STEP_NAMES = (
    "Create Kind cluster",
    "Install CRDs",
    "Configure DNS & TLS",
    "Start controllers",
    "Create AdharPlatform",
    "Waiting for readiness",
)


@dataclass
class LocalOptions:
    """Flags of `adhar up` without a config file."""

    name: str = DEFAULT_CLUSTER_NAME
    kube_version: str = DEFAULT_KUBE_VERSION
    recreate: bool = False
    extra_ports: list[str] = field(default_factory=list)
    kind_config: str = ""
    host: str = "adhar.localtest.me"
    ingress_host: str = ""
    protocol: str = "https"
    port: str = "8443"
    use_path_routing: bool = False
    dev_password: bool = False
    exit_on_sync: bool = True

    def customization(self, certificate: str = "") -> BuildCustomization:
        return BuildCustomization(
            protocol=self.protocol,
            host=self.host,
            ingress_host=self.ingress_host,
            port=self.port,
            use_path_routing=self.use_path_routing,
            static_password=self.dev_password,
            self_signed_cert=certificate,
        )

    def cluster_spec(self) -> ClusterSpec:
        """kind cluster spec; the platform port is mapped to the gateway's host port."""
        networking = NetworkingSpec(extra_port_mappings=list(self.extra_ports))
        port = int(self.port) if self.port.isdigit() else None
        if self.protocol == "http":
            networking.http_port = port
        else:
            networking.https_port = port
        return ClusterSpec(
            name=self.name,
            provider="kind",
            region="local",
            version=self.kube_version,
            networking=networking,
        )


def argocd_url(options: LocalOptions) -> str:
    """Where ArgoCD is served once the platform is up."""
    if options.use_path_routing:
        return f"{options.protocol}://{options.host}:{options.port}/argocd"
    return f"{options.protocol}://argocd.{options.host}:{options.port}"


class LocalPipeline:
    """Provision the platform on a local kind cluster."""

    def __init__(
        self,
        options: LocalOptions | None = None,
        runtime: RuntimeOptions | None = None,
        provider: Provider | None = None,
        platform: PlatformClient | None = None,
        manager: ControllerManager | None = None,
        layout: PlatformLayout | None = None,
        token: CancelToken | None = None,
        progress: ProgressSink | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        start_delay_seconds: float = 1.0,
        create_delay_seconds: float = 3.0,
    ):
        """Initialize pipeline.

        Args:
            options: Cluster and exposure options.
            runtime: Per-invocation switches (dry run, suppressed output).
            provider: kind provider; created from the registry when omitted.
            platform: Platform client; kubectl-backed when omitted.
            manager: Controller manager; the in-process bootstrap manager when omitted.
            layout: Platform repository checkout.
            token: Run-wide cancellation token.
            progress: Sink for phase transitions.
            poll_interval_seconds: Interval of the readiness safety-net poll.
            grace_seconds: How long the manager may take to stop after cancellation.
            start_delay_seconds: Pause after the manager starts.
            create_delay_seconds: Pause after the platform resource is applied.
        """
        self.options = options or LocalOptions()
        self.runtime = runtime or RuntimeOptions()
        self.token = token or CancelToken()
        self.progress: ProgressSink = progress or (
            EchoProgress(suppress_output=self.runtime.suppress_output)
        )
        self.layout = layout or PlatformLayout.discover()
        self._provider = provider
        self.poll_interval_seconds = poll_interval_seconds
        self.grace_seconds = grace_seconds
        self.start_delay_seconds = start_delay_seconds
        self.create_delay_seconds = create_delay_seconds

        kubectl = Kubectl(context=f"kind-{self.options.name}")
        self.platform = platform or KubectlPlatformClient(kubectl, self.layout)
        self.manager = manager or self._default_manager(kubectl)

        self.cluster: Cluster | None = None
        self.certificate = b""
        self.manager_task: asyncio.Task | None = None

    def _default_manager(self, kubectl: Kubectl) -> ControllerManager:
        progress = (
            NullProgress()
            if self.runtime.suppress_output
            else EchoProgress(suppress_output=False, indent="    ")
        )
        sequencer = BootstrapSequencer(
            kubectl,
            self.layout,
            SequencerOptions(namespace=ADHAR_NAMESPACE),
            token=self.token,
            progress=progress,
        )
        return BootstrapControllerManager(
            self.platform,
            sequencer,
            platform_name=self.options.name,
            exit_on_sync=self.options.exit_on_sync,
        )

    @property
    def provider(self) -> Provider:
        if self._provider is None:
            config = {}
            if self.options.kind_config:
                config["kindConfigPath"] = self.options.kind_config
            self._provider = create_provider("kind", config)
        return self._provider

    def phases(self) -> list[Phase]:
        return [
            Phase(
                STEP_NAMES[0], self.create_cluster, f"Creating kind cluster '{self.options.name}'"
            ),
            Phase(STEP_NAMES[1], self.install_crds, "Installing platform CRDs"),
            Phase(STEP_NAMES[2], self.configure_dns_tls, "Configuring cluster DNS and TLS"),
            Phase(STEP_NAMES[3], self.start_controllers, "Starting platform controllers"),
            Phase(STEP_NAMES[4], self.create_platform, "Creating AdharPlatform resource"),
            # The wait distinguishes interrupts from "synced" itself
            Phase(
                STEP_NAMES[5],
                self.wait_for_readiness,
                "Waiting for platform readiness",
                cancellable=False,
            ),
        ]

    async def run(self) -> PipelineResult:
        """Run the six phases, or print a preview in dry-run mode.

        Returns:
            PipelineResult; on failure the controller manager is stopped.
        """
        if self.runtime.dry_run:
            return self.preview()

        pipeline = Pipeline("local", self.phases(), token=self.token, progress=self.progress)
        result = await pipeline.run()
        if not result.success:
            await self._stop_manager()
        elif not self.runtime.suppress_output:
            self._print_banner()
        return result

    def preview(self) -> PipelineResult:
        """Describe what would be created without touching anything."""
        options = self.options
        lines = [
            "Dry run: no changes will be made",
            "  Environment:  local",
            "  Provider:     kind",
            "  Region:       local",
            f"  Cluster:      {options.name}",
            f"  Kubernetes:   {options.kube_version}",
            f"  Host:         {options.host}",
            f"  Protocol:     {options.protocol}",
            f"  Port:         {options.port}",
        ]
        if not self.runtime.suppress_output:
            for line in lines:
                click.echo(line)
        logger.info("dry run", cluster=options.name, kube_version=options.kube_version)
        outcomes = [
            PhaseOutcome(name=name, status=PhaseStatus.SKIPPED, message="dry run")
            for name in STEP_NAMES
        ]
        return PipelineResult(name="local", outcomes=outcomes)

    def _print_banner(self) -> None:
        click.echo("")
        click.echo("✓ Platform is ready")
        click.echo(f"  ArgoCD: {argocd_url(self.options)}")
        click.echo(
            "  Admin password: kubectl get secret argocd-initial-admin-secret "
            f"-n {ADHAR_NAMESPACE} -o jsonpath='{{.data.password}}' | base64 -d"
        )

    async def _stop_manager(self) -> None:
        task = self.manager_task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("controller manager stopped after failure")

    # -- phases -------------------------------------------------------------------

    async def create_cluster(self) -> None:
        """Create (or adopt) the kind cluster; --recreate deletes it first."""
        spec = self.options.cluster_spec()
        if self.options.recreate:
            cluster_id = self.provider.cluster_id(spec.name)
            logger.info("recreating cluster", cluster_id=cluster_id)
            await self.provider.delete_cluster(cluster_id)
        self.cluster = await self.provider.create_cluster(spec)
        logger.info("cluster created", cluster_id=self.cluster.id, endpoint=self.cluster.endpoint)

    async def install_crds(self) -> None:
        await self.platform.install_crds()

    async def configure_dns_tls(self) -> None:
        """CoreDNS customization is best effort; the certificate is required."""
        try:
            await self.platform.configure_coredns(self.options.host)
        except AdharError as e:
            logger.warning("failed to configure CoreDNS for local resolution", error=str(e))
            self.progress.warning(f"CoreDNS not configured: {e}")
        self.certificate = await self.platform.ensure_certificate(self.options.host)

    async def start_controllers(self) -> None:
        self.manager_task = await self.manager.start(self.token)
        await asyncio.sleep(self.start_delay_seconds)

    async def create_platform(self) -> None:
        resource = build_platform_resource(
            self.options.name,
            self.options.customization(self.certificate.decode(errors="replace")),
            start_time=utcnow().isoformat(),
        )
        await self.platform.upsert_platform(resource)
        await asyncio.sleep(self.create_delay_seconds)

    async def _platform_ready(self) -> tuple[bool, str]:
        return await self.platform.check_readiness(self.options.name)

    async def wait_for_readiness(self) -> None:
        """Wait for the manager, a cancel or observed readiness.

        Raises:
            CancellationError: Interrupted before the platform synced.
            AdharError: The controller manager failed.
        """
        if self.manager_task is None:
            raise RuntimeError("controller manager has not been started")
        wait = ReadinessWait(
            self.manager_task,
            self.token,
            check=self._platform_ready,
            exit_on_sync=self.options.exit_on_sync,
            poll_interval_seconds=self.poll_interval_seconds,
            grace_seconds=self.grace_seconds,
        )
        outcome = await wait.run()
        if outcome.grace_expired:
            self.progress.warning("controller shutdown timed out (non-fatal)")
        logger.info("platform wait finished", reason=outcome.reason)
