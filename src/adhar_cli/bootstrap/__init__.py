"""Bootstrap package for installing the platform on a cluster.

This package provides the pieces the provisioning pipelines drive:
1. kubectl wrapper and readiness polling
2. Platform manifest locations and generated GitOps resources
3. Gitea readiness and repository creation
4. GitOps repository population
5. The two-phase bootstrap sequencer (imperative substrate, then GitOps)
"""

from .gitea import GiteaServer
from .kubectl import ADHAR_NAMESPACE, Kubectl
from .manifests import (
    BOOTSTRAP_APP_NAME,
    CLI_START_TIME_ANNOTATION,
    PLATFORM_API_VERSION,
    PLATFORM_KIND,
    BuildCustomization,
    PlatformLayout,
    build_bootstrap_application,
    build_namespace,
    build_platform_resource,
)
from .readiness import ReadinessPoller, ReadinessResult
from .repos import (
    PopulateResult,
    RepositoryPopulator,
    RepositorySource,
    RepositorySpec,
    platform_repositories,
)
from .sequencer import STEP_NAMES, BootstrapSequencer, SequencerOptions

__all__ = [
    # kubectl
    "ADHAR_NAMESPACE",
    "Kubectl",
    # Readiness
    "ReadinessPoller",
    "ReadinessResult",
    # Manifests
    "BOOTSTRAP_APP_NAME",
    "CLI_START_TIME_ANNOTATION",
    "PLATFORM_API_VERSION",
    "PLATFORM_KIND",
    "BuildCustomization",
    "PlatformLayout",
    "build_bootstrap_application",
    "build_namespace",
    "build_platform_resource",
    # Gitea
    "GiteaServer",
    # Repositories
    "PopulateResult",
    "RepositoryPopulator",
    "RepositorySource",
    "RepositorySpec",
    "platform_repositories",
    # Sequencer
    "STEP_NAMES",
    "BootstrapSequencer",
    "SequencerOptions",
]
