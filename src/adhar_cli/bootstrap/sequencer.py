"""Two-phase platform bootstrap.

Bootstrap phase (imperative): verify the CNI, create namespaces, install
ArgoCD and Gitea and wait for them. Nothing declarative can run before these
exist.

GitOps phase (declarative hand-off): populate the bootstrap, packages and
environments repositories, point an ArgoCD Application at the bootstrap
repository, apply the platform ApplicationSets and wait for the first sync.

Every step checks for its target first and skips work already done, so the
whole sequence can be re-run safely.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import AdharError, OperationTimeoutError, ResourceError
from ..pipeline.phases import Phase, PhaseSkipped, Pipeline, PipelineResult, ProgressSink
from ..shared.cancel import CancelToken
from ..shared.logging import get_logger
from .gitea import GiteaServer
from .kubectl import ADHAR_NAMESPACE, Kubectl
from .manifests import BOOTSTRAP_APP_NAME, PlatformLayout, build_bootstrap_application
from .readiness import ReadinessPoller
from .repos import RepositoryPopulator, platform_repositories

logger = get_logger(__name__)

# Components waited on after the ArgoCD install
ARGOCD_WORKLOADS = ("deployment/argocd-server", "statefulset/argocd-application-controller")

STEP_NAMES = (
    "Bootstrap: Install Cilium CNI",
    "Bootstrap: Create Namespaces",
    "Bootstrap: Install ArgoCD",
    "Bootstrap: Install Gitea",
    "GitOps: Setup Repositories",
    "GitOps: Create Bootstrap App",
    "GitOps: Apply Platform Stack",
    "GitOps: Wait for Sync",
)


@dataclass
class SequencerOptions:
    """Tunables for a bootstrap run."""

    namespace: str = ADHAR_NAMESPACE
    high_availability: bool = False
    argocd_timeout_seconds: int = 300
    sync_timeout_seconds: float = 300.0
    sync_interval_seconds: float = 10.0
    cni: str = "cilium"


class BootstrapSequencer:
    """Install the imperative substrate, then hand control to ArgoCD."""

    def __init__(
        self,
        kubectl: Kubectl,
        layout: PlatformLayout,
        options: SequencerOptions | None = None,
        gitea: GiteaServer | None = None,
        populator: RepositoryPopulator | None = None,
        token: CancelToken | None = None,
        progress: ProgressSink | None = None,
    ):
        """Initialize sequencer.

        Args:
            kubectl: kubectl bound to the target cluster.
            layout: Platform repository checkout.
            options: Timeouts and feature switches.
            gitea: Gitea helper (built from kubectl when omitted).
            populator: Repository populator (built from gitea when omitted).
            token: Cancellation token shared with the caller.
            progress: Sink for step transitions.
        """
        self.kubectl = kubectl
        self.layout = layout
        self.options = options or SequencerOptions()
        self.gitea = gitea or GiteaServer(kubectl, namespace=self.options.namespace)
        self.populator = populator or RepositoryPopulator(self.gitea)
        self.token = token or CancelToken()
        self.progress = progress

    def phases(self) -> list[Phase]:
        steps = (
            (self.verify_cni, "Verifying CNI for container networking"),
            (self.create_namespaces, "Creating adhar-system and required namespaces"),
            (self.install_argocd, "Bootstrapping ArgoCD GitOps controller"),
            (self.install_gitea, "Bootstrapping Gitea Git server"),
            (self.setup_repositories, "Creating and populating Git repositories"),
            (self.create_bootstrap_app, "Creating ArgoCD Application for the bootstrap repository"),
            (self.apply_platform_stack, "Applying platform ApplicationSets"),
            (self.wait_for_sync, "Waiting for ArgoCD to sync platform components"),
        )
        return [
            Phase(name=name, run=run, description=description)
            for name, (run, description) in zip(STEP_NAMES, steps)
        ]

    async def run(self) -> PipelineResult:
        """Run all eight steps in order.

        Returns:
            PipelineResult of the bootstrap steps.
        """
        pipeline = Pipeline("bootstrap", self.phases(), token=self.token, progress=self.progress)
        result = await pipeline.run()
        if result.success:
            logger.info("platform bootstrap complete", summary=result.summary)
        return result

    # -- Bootstrap phase ----------------------------------------------------------

    async def verify_cni(self) -> None:
        """The cluster provider installs the CNI; confirm its agents are up."""
        ok, message = await self.kubectl.wait_for_pods(
            "k8s-app=cilium", namespace="kube-system", timeout_seconds=120
        )
        if not ok:
            raise PhaseSkipped(f"{self.options.cni} agents not confirmed ready ({message})")
        logger.info("cni ready", cni=self.options.cni)

    async def create_namespaces(self) -> None:
        created = await self.kubectl.create_namespace(self.options.namespace)
        if not created:
            raise PhaseSkipped(f"namespace {self.options.namespace} already exists")

    async def _component_installed(self, resource: str) -> bool:
        kind, name = resource.split("/", 1)
        return await self.kubectl.exists(kind, name, self.options.namespace)

    async def _apply_component(self, component: str) -> None:
        path = self.layout.component_install_file(component, self.options.high_availability)
        logger.info("applying component manifest", component=component, path=str(path))
        await self.kubectl.apply_file(path, namespace=self.options.namespace)

    async def install_argocd(self) -> None:
        """Apply ArgoCD and wait for its server and application controller.

        Raises:
            OperationTimeoutError: A workload did not become available in time.
        """
        if await self._component_installed(ARGOCD_WORKLOADS[0]):
            logger.info("argocd already installed")
        else:
            await self._apply_component("argocd")

        for resource in ARGOCD_WORKLOADS:
            ok, message = await self.kubectl.wait_for(
                resource,
                self.options.namespace,
                "available",
                self.options.argocd_timeout_seconds,
            )
            if not ok:
                raise OperationTimeoutError(
                    operation=resource,
                    timeout_seconds=self.options.argocd_timeout_seconds,
                    message=f"ArgoCD not ready: {message}",
                )
        logger.info("argocd ready")

    async def install_gitea(self) -> None:
        """Apply Gitea and run its five-step readiness sequence."""
        if await self._component_installed("deployment/gitea"):
            logger.info("gitea already installed")
        else:
            await self._apply_component("gitea")

        try:
            await self.gitea.wait_ready()
        except AdharError:
            diagnostics = await self.gitea.diagnostics()
            logger.warning("gitea failed to become ready", diagnostics=diagnostics)
            raise

    # -- GitOps phase -------------------------------------------------------------

    async def setup_repositories(self) -> None:
        """Create and populate the three repositories, then apply repo auth."""
        ok, message = await self.gitea.verify_api()
        if not ok:
            raise ResourceError(
                operation="reach",
                resource_type="service",
                resource_id="gitea",
                message=f"Gitea API not accessible: {message}",
            )

        results = await self.populator.populate_all(platform_repositories(self.layout))
        for result in results:
            logger.info("repository ready", repository=result.name, pushed=result.pushed)

        # Repository credentials for ArgoCD are optional
        auth_file = self.layout.argocd_auth_file
        if not auth_file.is_file():
            logger.warning("argocd auth file not found", path=str(auth_file))
            return
        try:
            await self.kubectl.apply_file(auth_file)
        except AdharError as e:
            logger.warning("argocd repository authentication not applied", error=str(e))

    async def create_bootstrap_app(self) -> None:
        application = build_bootstrap_application(namespace=self.options.namespace)
        await self.kubectl.apply_manifests([application])
        logger.info("bootstrap application applied", application=BOOTSTRAP_APP_NAME)

    async def apply_platform_stack(self) -> None:
        files = self.layout.appset_files()
        if not files:
            raise PhaseSkipped("no platform ApplicationSets found")
        for path in files:
            await self.kubectl.apply_file(path)
            logger.info("applicationset applied", path=str(path))

    async def _synced(self) -> tuple[bool, str]:
        status = await self.kubectl.get_jsonpath(
            "application", BOOTSTRAP_APP_NAME, "{.status.sync.status}", self.options.namespace
        )
        return status == "Synced", status or "unknown"

    async def wait_for_sync(self) -> None:
        """Poll the bootstrap Application; a timeout only means ArgoCD is still converging."""
        poller = ReadinessPoller(
            timeout_seconds=self.options.sync_timeout_seconds,
            interval_seconds=self.options.sync_interval_seconds,
        )

        def on_attempt(attempt: int, error: str | None) -> None:
            logger.info("platform still syncing", attempt=attempt, status=error)

        result = await poller.wait_until(
            self._synced, "bootstrap application sync", token=self.token, on_attempt=on_attempt
        )
        if not result.ready:
            logger.warning(
                "platform still syncing",
                hint=f"kubectl get app {BOOTSTRAP_APP_NAME} -n {self.options.namespace}",
            )
            raise PhaseSkipped("Platform components syncing (may take a few minutes)")
        logger.info("platform components synced")
