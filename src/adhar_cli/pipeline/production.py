"""Production provisioning pipeline.

Provisions one resolved environment on a cloud provider:

1. Validate configuration
2. Pre-flight checks (credentials, permissions, quotas, network)
3. Create cluster
4. Install core services (helm)
5. Install addons (helm, best effort)
6. Setup GitOps (ArgoCD readiness, repositories, platform ApplicationSets)

In dry-run mode only validation runs; every other phase reports what it
would have done.
"""

from __future__ import annotations

import asyncio
import os
import socket
from collections.abc import Awaitable, Callable
from pathlib import Path
from urllib.parse import urlparse

import httpx

from ..bootstrap.gitea import GiteaServer
from ..bootstrap.kubectl import ADHAR_NAMESPACE, Kubectl
from ..bootstrap.manifests import PlatformLayout
from ..config import AddonConfig, ChartConfig, KeyValue, ResolvedEnvironment, RuntimeOptions
from ..errors import AdharError, NetworkError, OperationTimeoutError, ValidationError
from ..models import (
    AddonsSpec,
    Cluster,
    ClusterSpec,
    ControlPlaneSpec,
    DomainConfig,
    NetworkingSpec,
    NodeGroupSpec,
)
from ..providers.base import Provider, supports_quota_check
from ..shared.cancel import CancelToken
from ..shared.logging import get_logger
from ..shared.paths import WORK_DIR
from ..shared.shell import CommandRunner, run_command
from .phases import EchoProgress, Phase, PhaseSkipped, Pipeline, PipelineResult, ProgressSink

logger = get_logger(__name__)

STEP_NAMES = (
    "Validate configuration",
    "Pre-flight checks",
    "Create cluster",
    "Install core services",
    "Install addons",
    "Setup GitOps",
)

# Core services whose chart version is mandatory when configured
VERSIONED_SERVICES = {"argocd": "ArgoCD", "gitea": "Gitea"}

ARGOCD_SERVER = "deployment/argo-cd-argocd-server"
ARGOCD_TIMEOUT_SECONDS = 300

GITOPS_REPOSITORIES = ("platform-manifests", "application-manifests", "infrastructure-manifests")

DEFAULT_DOMAIN = "adhar.localtest.me"
DEFAULT_DOMAIN_EMAIL = "admin@adhar.localtest.me"

Resolver = Callable[[str, int], Awaitable[object]]


def validate_environment(env: ResolvedEnvironment) -> None:
    """Check the fields a production environment cannot do without.

    Raises:
        ValidationError: A required field is missing or empty.
    """
    if not env.name:
        raise ValidationError(message="environment name cannot be empty", field_name="name")
    if not env.provider:
        raise ValidationError(
            message=f"provider not specified for environment '{env.name}'", field_name="provider"
        )
    if not env.region:
        raise ValidationError(
            message=f"region not specified for environment '{env.name}'", field_name="region"
        )
    if not env.cluster_config:
        raise ValidationError(
            message=f"cluster configuration not specified for environment '{env.name}'",
            field_name="clusterConfig",
        )
    for item in env.cluster_config:
        if not item.key:
            raise ValidationError(
                message="cluster config key cannot be empty", field_name="clusterConfig"
            )
        if not str(item.value):
            raise ValidationError(
                message=f"cluster config value cannot be empty for key '{item.key}'",
                field_name="clusterConfig",
            )
    for service, label in VERSIONED_SERVICES.items():
        config = env.core_services.get(service)
        if config is not None and not config.chart.version:
            raise ValidationError(
                message=f"{label} version must be specified when enabled",
                field_name=f"coreServices.{service}",
            )


def _int_value(env: ResolvedEnvironment, keys: tuple[str, ...], default: int) -> int:
    raw = env.cluster_value(*keys)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(
            message=f"cluster config '{keys[0]}' must be an integer, got '{raw}'",
            field_name=keys[0],
        ) from e


def build_cluster_spec(env: ResolvedEnvironment, provider_name: str | None = None) -> ClusterSpec:
    """Cluster spec for an environment; production environments get an HA topology.

    Args:
        env: Resolved environment.
        provider_name: Registry name of the provider receiving the spec
            (defaults to the environment's provider).
    """
    production = env.is_production
    control_plane = _int_value(env, ("controlPlaneReplicas",), 3 if production else 1)
    workers = _int_value(env, ("workerReplicas",), 3 if production else 0)
    instance_type = env.cluster_value("nodeInstanceType", "instanceType")

    node_groups = []
    if workers > 0:
        node_groups.append(
            NodeGroupSpec(name=f"{env.name}-workers", replicas=workers, instance_type=instance_type)
        )

    return ClusterSpec(
        name=env.cluster_value("name", default=env.name),
        provider=provider_name or env.provider,
        region=env.region,
        version=env.cluster_value("kubeVersion", "version"),
        control_plane=ControlPlaneSpec(
            replicas=control_plane,
            instance_type=instance_type,
            high_availability=production or env.global_settings.enable_ha_mode,
        ),
        node_groups=node_groups,
        networking=NetworkingSpec(
            cni="cilium", pod_cidr="10.244.0.0/16", service_cidr="10.96.0.0/12"
        ),
        addons=AddonsSpec(ingress=True, monitoring=production),
        domain=build_domain_config(env),
        tags={"adhar.io/environment": env.name, "adhar.io/environment-type": env.type},
    )


def build_domain_config(env: ResolvedEnvironment) -> DomainConfig:
    settings = env.global_settings
    return DomainConfig(
        name=env.name,
        base_domain=settings.default_host or DEFAULT_DOMAIN,
        email=settings.email or DEFAULT_DOMAIN_EMAIL,
    )


class HelmInstaller:
    """helm install/status against one cluster."""

    def __init__(self, kubeconfig: str | None = None, runner: CommandRunner | None = None):
        self.kubeconfig = kubeconfig
        self.runner = runner or run_command

    def _helm_cmd(self, *args: str) -> list[str]:
        cmd = ["helm", *args]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        return cmd

    async def release_exists(self, name: str, namespace: str) -> bool:
        result = await self.runner(self._helm_cmd("status", name, "-n", namespace))
        return result.ok

    @staticmethod
    def chart_args(chart: ChartConfig) -> list[str]:
        """Chart reference: `repo/chart` for OCI registries, else `chart --repo repo`."""
        if not chart.repo_url:
            return [chart.name]
        if chart.repo_url.startswith("oci://"):
            return [f"{chart.repo_url.rstrip('/')}/{chart.name}"]
        return [chart.name, "--repo", chart.repo_url]

    async def install(
        self,
        name: str,
        chart: ChartConfig,
        namespace: str = ADHAR_NAMESPACE,
        values: list[KeyValue] | None = None,
        create_namespace: bool = True,
    ) -> bool:
        """Install a release unless it already exists.

        Returns:
            True if installed, False if the release was already present

        Raises:
            CommandError: helm install failed.
        """
        if await self.release_exists(name, namespace):
            logger.info("helm release already installed", release=name, namespace=namespace)
            return False

        args = ["install", name, *self.chart_args(chart)]
        if chart.version:
            args.extend(["--version", chart.version])
        args.extend(["--namespace", namespace])
        if create_namespace:
            args.append("--create-namespace")
        for item in values or []:
            args.extend(["--set", f"{item.key}={item.value}"])
        (await self.runner(self._helm_cmd(*args))).check()
        logger.info(
            "helm release installed", release=name, namespace=namespace, version=chart.version
        )
        return True


async def _resolve(host: str, port: int) -> object:
    loop = asyncio.get_running_loop()
    return await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)


class ProductionPipeline:
    """Provision one resolved environment on its cloud provider."""

    def __init__(
        self,
        env: ResolvedEnvironment,
        provider: Provider,
        runtime: RuntimeOptions | None = None,
        layout: PlatformLayout | None = None,
        token: CancelToken | None = None,
        progress: ProgressSink | None = None,
        runner: CommandRunner | None = None,
        kubeconfig_dir: str | Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        resolver: Resolver | None = None,
    ):
        """Initialize pipeline.

        Args:
            env: Resolved environment to provision.
            provider: Provider instance built for env.provider.
            runtime: Per-invocation switches.
            layout: Platform repository checkout (ApplicationSets live there).
            token: Run-wide cancellation token.
            progress: Sink for phase transitions.
            runner: Command runner for helm and kubectl.
            kubeconfig_dir: Where the new cluster's kubeconfig is written.
            transport: httpx transport override for the reachability check.
            resolver: DNS resolver override for the reachability check.
        """
        self.env = env
        self.provider = provider
        self.runtime = runtime or RuntimeOptions()
        self.layout = layout or PlatformLayout.discover()
        self.token = token or CancelToken()
        self.progress: ProgressSink = progress or EchoProgress(
            suppress_output=self.runtime.suppress_output
        )
        self.runner = runner or run_command
        self.kubeconfig_dir = Path(kubeconfig_dir) if kubeconfig_dir else WORK_DIR
        self.transport = transport
        self.resolver = resolver or _resolve

        self.spec = build_cluster_spec(env, provider.name)
        self.cluster: Cluster | None = None
        self.kubeconfig_path: Path | None = None

    @property
    def dry_run(self) -> bool:
        return self.runtime.dry_run

    def phases(self) -> list[Phase]:
        return [
            Phase(STEP_NAMES[0], self.validate, f"Validating environment '{self.env.name}'"),
            Phase(STEP_NAMES[1], self.preflight, "Running production pre-flight checks"),
            Phase(STEP_NAMES[2], self.create_cluster, f"Creating {self.provider.name} cluster"),
            Phase(STEP_NAMES[3], self.install_core_services, "Installing core platform services"),
            Phase(STEP_NAMES[4], self.install_addons, "Installing addons", non_fatal=True),
            Phase(STEP_NAMES[5], self.setup_gitops, "Setting up GitOps repositories"),
        ]

    async def run(self) -> PipelineResult:
        pipeline = Pipeline(
            f"production:{self.env.name}", self.phases(), token=self.token, progress=self.progress
        )
        return await pipeline.run()

    def _kubectl(self) -> Kubectl:
        kubeconfig = str(self.kubeconfig_path) if self.kubeconfig_path else None
        return Kubectl(kubeconfig=kubeconfig, runner=self.runner)

    def _helm(self) -> HelmInstaller:
        kubeconfig = str(self.kubeconfig_path) if self.kubeconfig_path else None
        return HelmInstaller(kubeconfig=kubeconfig, runner=self.runner)

    # -- phases -------------------------------------------------------------------

    async def validate(self) -> None:
        validate_environment(self.env)
        self.provider.check_spec(self.spec)
        logger.info("environment validated", environment=self.env.name, provider=self.env.provider)

    async def preflight(self) -> None:
        """Credentials, permissions, quotas and network reachability.

        Raises:
            AuthenticationError: Credentials rejected or insufficient.
            QuotaExceededError: The provider cannot fit the cluster.
            NetworkError: The provider endpoint is unreachable.
        """
        if self.dry_run:
            raise PhaseSkipped(f"dry run: would verify {self.provider.name} credentials and quotas")

        await self.provider.authenticate()
        await self.provider.validate_permissions()
        logger.info("provider credentials valid", provider=self.provider.name)

        if supports_quota_check(self.provider):
            await self.provider.check_resource_quotas(self.spec)  # type: ignore
            logger.info("resource quotas sufficient", provider=self.provider.name)
        else:
            logger.info(
                "no quota check for provider, checked cluster config only",
                provider=self.provider.name,
                control_plane=self.spec.control_plane.replicas,
                workers=self.spec.worker_count,
            )

        await self.check_network()

    async def check_network(self) -> None:
        """Resolve and reach the provider's public API endpoint."""
        endpoint = self.provider.endpoint_url
        if not endpoint:
            logger.debug("provider has no public endpoint to probe", provider=self.provider.name)
            return

        parsed = urlparse(endpoint)
        host = parsed.hostname or endpoint
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        try:
            await self.resolver(host, port)
        except (socket.gaierror, OSError) as e:
            raise NetworkError(
                message=f"DNS resolution failed for {host}: {e}", endpoint=endpoint
            ) from e

        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
                response = await client.get(endpoint)
        except httpx.HTTPError as e:
            raise NetworkError(message=f"cannot reach {endpoint}: {e}", endpoint=endpoint) from e
        logger.info("provider endpoint reachable", endpoint=endpoint, status=response.status_code)

    async def create_cluster(self) -> None:
        """Create the cluster and write its kubeconfig for the later phases."""
        if self.dry_run:
            raise PhaseSkipped(
                f"dry run: would create cluster '{self.spec.name}' on {self.provider.name} "
                f"in {self.env.region}"
            )

        self.cluster = await self.provider.create_cluster(self.spec)
        kubeconfig = await self.provider.get_kubeconfig(self.cluster.id)
        self.kubeconfig_dir.mkdir(parents=True, exist_ok=True)
        path = self.kubeconfig_dir / f"{self.cluster.id}.kubeconfig"
        path.write_text(kubeconfig)
        os.chmod(path, 0o600)
        self.kubeconfig_path = path
        logger.info(
            "cloud cluster created",
            cluster_id=self.cluster.id,
            status=self.cluster.status.value,
            kubeconfig=str(path),
        )

    async def install_core_services(self) -> None:
        services = self.env.core_services
        if self.dry_run:
            names = ", ".join(services) or "no core services"
            raise PhaseSkipped(f"dry run: would install {names}")
        if not services:
            raise PhaseSkipped("no core services configured")

        helm = self._helm()
        for name, service in services.items():
            logger.info("installing core service", service=name)
            await helm.install(name, service.chart, ADHAR_NAMESPACE, service.values)

    async def _install_addon(self, helm: HelmInstaller, addon: AddonConfig) -> None:
        await helm.install(
            addon.name,
            addon.chart,
            addon.target_namespace or addon.name,
            addon.values,
            create_namespace=True,
        )

    async def install_addons(self) -> None:
        """Install each addon; one failing addon does not stop the others."""
        addons = self.env.addons
        if self.dry_run:
            names = ", ".join(addon.name for addon in addons) or "no addons"
            raise PhaseSkipped(f"dry run: would install {names}")
        if not addons:
            raise PhaseSkipped("no addons configured")

        helm = self._helm()
        failed = []
        for addon in addons:
            try:
                await self._install_addon(helm, addon)
            except AdharError as e:
                failed.append(addon.name)
                logger.warning("addon installation failed", addon=addon.name, error=str(e))
                self.progress.warning(f"addon {addon.name} not installed: {e}")
        if failed:
            logger.warning("some addons failed", failed=failed, total=len(addons))

    async def setup_gitops(self) -> None:
        """Wait for ArgoCD, create the GitOps repositories, apply ApplicationSets.

        Raises:
            OperationTimeoutError: ArgoCD never became available.
        """
        if self.dry_run:
            raise PhaseSkipped("dry run: would configure GitOps repositories and ApplicationSets")

        kubectl = self._kubectl()
        ok, message = await kubectl.wait_for(
            ARGOCD_SERVER, ADHAR_NAMESPACE, "available", ARGOCD_TIMEOUT_SECONDS
        )
        if not ok:
            raise OperationTimeoutError(
                operation=ARGOCD_SERVER,
                timeout_seconds=ARGOCD_TIMEOUT_SECONDS,
                message=f"ArgoCD not ready for GitOps setup: {message}",
            )

        if "gitea" in self.env.core_services:
            gitea = GiteaServer(kubectl, namespace=ADHAR_NAMESPACE)
            for repository in GITOPS_REPOSITORIES:
                try:
                    await gitea.create_repository(repository)
                except AdharError as e:
                    logger.warning(
                        "failed to create repository", repository=repository, error=str(e)
                    )

        for path in self.layout.appset_files():
            await kubectl.apply_file(path)
            logger.info("applicationset applied", path=str(path))
        logger.info("gitops configured", environment=self.env.name)
