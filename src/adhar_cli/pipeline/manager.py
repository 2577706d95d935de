"""Fan a platform configuration out to per-environment production pipelines.

Each environment is resolved, handed its own provider instance and
provisioned independently. A failing environment is recorded and the next
one starts; the run fails only if any environment failed.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from ..config import PlatformConfig, ResolvedEnvironment, RuntimeOptions
from ..errors import AdharError, CancellationError, ConfigurationError
from ..providers.base import Provider
from ..providers.registry import ProviderRegistry, default_registry
from ..shared.cancel import CancelReason, CancelToken
from ..shared.logging import get_logger
from .phases import EchoProgress, PipelineResult, ProgressSink
from .production import ProductionPipeline

logger = get_logger(__name__)

PipelineFactory = Callable[[ResolvedEnvironment, Provider], ProductionPipeline]


@dataclass
class EnvironmentResult:
    name: str
    success: bool
    error: AdharError | None = None
    result: PipelineResult | None = None


@dataclass
class ProvisionSummary:
    """Outcome of a multi-environment run."""

    results: list[EnvironmentResult] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> list[EnvironmentResult]:
        return [result for result in self.results if not result.success]

    @property
    def success(self) -> bool:
        return self.succeeded == self.attempted

    @property
    def summary(self) -> str:
        return "Environments Provisioned: %d/%d" % (self.succeeded, self.attempted)

    def raise_for_status(self) -> None:
        if self.success:
            return
        raise AdharError(
            message="failed to provision %d out of %d environments"
            % (self.attempted - self.succeeded, self.attempted),
            data={"failed": [result.name for result in self.failed]},
        )


class ProviderManager:
    """Provision environments of one configuration through their providers."""

    def __init__(
        self,
        config: PlatformConfig,
        registry: ProviderRegistry | None = None,
        runtime: RuntimeOptions | None = None,
        token: CancelToken | None = None,
        progress: ProgressSink | None = None,
        pipeline_factory: PipelineFactory | None = None,
    ):
        """Initialize manager.

        Args:
            config: Parsed platform configuration.
            registry: Provider registry (the default registry when omitted).
            runtime: Per-invocation switches.
            token: Run-wide cancellation token.
            progress: Sink for environment and phase transitions.
            pipeline_factory: Builds the pipeline for an environment.
        """
        self.config = config
        self.registry = registry or default_registry
        self.runtime = runtime or RuntimeOptions()
        self.token = token or CancelToken()
        self.progress: ProgressSink = progress or EchoProgress(
            suppress_output=self.runtime.suppress_output
        )
        self.pipeline_factory = pipeline_factory or self._default_pipeline

    def _default_pipeline(self, env: ResolvedEnvironment, provider: Provider) -> ProductionPipeline:
        return ProductionPipeline(
            env, provider, runtime=self.runtime, token=self.token, progress=self.progress
        )

    def provider_for(self, env: ResolvedEnvironment) -> Provider:
        """Build the provider an environment points at.

        Raises:
            ConfigurationError: The environment names an unconfigured provider.
            ProviderNotFoundError: The provider type is not registered.
        """
        provider_config = self.config.providers.get(env.provider)
        if provider_config is None:
            raise ConfigurationError(
                message=f"provider '{env.provider}' for environment '{env.name}' is not configured"
            )
        return self.registry.create(provider_config.type, provider_config.to_provider_map())

    async def provision_environment(self, name: str) -> PipelineResult:
        """Provision a single environment.

        Raises:
            ConfigurationError: Providers or the environment are invalid.
            PhaseError: A fatal phase failed.
        """
        self.config.validate_providers()
        env = self.config.resolve_environment(name)
        pipeline = self.pipeline_factory(env, self.provider_for(env))
        result = await pipeline.run()
        result.raise_for_status()
        return result

    async def _provision(self, name: str) -> EnvironmentResult:
        try:
            env = self.config.resolve_environment(name)
            pipeline = self.pipeline_factory(env, self.provider_for(env))
            result = await pipeline.run()
        except AdharError as e:
            return EnvironmentResult(name=name, success=False, error=e)
        return EnvironmentResult(
            name=name, success=result.success, error=result.error, result=result
        )

    async def provision_all(self, names: list[str] | None = None) -> ProvisionSummary:
        """Provision every environment (or the given subset), best effort.

        Returns:
            ProvisionSummary with one result per attempted environment.

        Raises:
            ConfigurationError: The provider set is invalid or no environments are defined.
        """
        self.config.validate_providers()
        targets = names if names is not None else list(self.config.environments)
        if not targets:
            raise ConfigurationError(message="no environments defined in configuration file")

        summary = ProvisionSummary()
        for name in targets:
            if self.token.reason is CancelReason.INTERRUPTED:
                summary.results.append(
                    EnvironmentResult(name=name, success=False, error=CancellationError())
                )
                continue

            self.progress.info(f"Provisioning environment: {name}...")
            outcome = await self._provision(name)
            summary.results.append(outcome)
            if outcome.success:
                self.progress.info(f"✓ Environment {name} provisioned successfully")
                logger.info("environment provisioned", environment=name)
            else:
                self.progress.warning(f"Failed to provision {name}: {outcome.error}")
                logger.error(
                    "environment provisioning failed", environment=name, error=str(outcome.error)
                )

        self.progress.info(summary.summary)
        logger.info(
            "provisioning finished", succeeded=summary.succeeded, attempted=summary.attempted
        )
        return summary
