"""Platform manifest locations and generated GitOps resources.

The platform tree (component install files, CRDs, GitOps stack content) is
read from a checkout of the platform repository; `ADHAR_PLATFORM_DIR` points
at it, defaulting to the working directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import ConfigurationError
from .kubectl import ADHAR_NAMESPACE

# API group of the platform custom resources
PLATFORM_API_VERSION = "platform.adhar.io/v1alpha1"
PLATFORM_KIND = "AdharPlatform"

# Annotation carrying the time the CLI started provisioning
CLI_START_TIME_ANNOTATION = "adhar.io/cli-start-time"

# Bootstrap Application handed to ArgoCD
BOOTSTRAP_APP_NAME = "adhar-bootstrap"
GITEA_IN_CLUSTER_URL = f"http://gitea-argocd.{ADHAR_NAMESPACE}.svc.cluster.local:3000"
GITEA_ADMIN_USER = "gitea_admin"

# ApplicationSets applied once the bootstrap Application exists
PLATFORM_APPSETS = ("adhar-appset-manifests.yaml", "adhar-appset-charts.yaml")


@dataclass
class PlatformLayout:
    """Paths inside a platform repository checkout."""

    root: Path

    @classmethod
    def discover(cls, root: str | Path | None = None) -> PlatformLayout:
        """Layout rooted at `root`, ADHAR_PLATFORM_DIR, or the working directory."""
        base = root or os.environ.get("ADHAR_PLATFORM_DIR") or Path.cwd()
        return cls(root=Path(base).expanduser())

    @property
    def resources_dir(self) -> Path:
        return self.root / "platform" / "controllers" / "adharplatform" / "resources"

    @property
    def crds_dir(self) -> Path:
        return self.root / "platform" / "controllers" / "resources"

    @property
    def control_plane_dir(self) -> Path:
        return self.root / "platform" / "controlplane" / "configuration"

    @property
    def stack_dir(self) -> Path:
        return self.root / "platform" / "stack"

    @property
    def argocd_auth_file(self) -> Path:
        return self.stack_dir / "argocd-auth.yaml"

    def component_install_file(self, component: str, high_availability: bool = False) -> Path:
        """Install manifest for a platform component.

        Prefers install-ha.yaml when HA is requested and present.

        Raises:
            ConfigurationError: The component directory or its install file is missing.
        """
        component_dir = self.resources_dir / component
        if not component_dir.is_dir():
            raise ConfigurationError(
                message=f"manifest path for {component} does not exist: {component_dir}"
            )
        candidates = ["install.yaml", "install-ha.yaml"]
        if high_availability:
            candidates.reverse()
        for name in candidates:
            path = component_dir / name
            if path.is_file():
                return path
        raise ConfigurationError(
            message=f"no install file found for {component} in {component_dir}"
        )

    def appset_files(self) -> list[Path]:
        """ApplicationSet files that exist in the stack directory."""
        paths = [self.stack_dir / name for name in PLATFORM_APPSETS]
        return [path for path in paths if path.is_file()]


def build_namespace(name: str) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def build_bootstrap_application(
    repo_name: str = "bootstrap",
    namespace: str = ADHAR_NAMESPACE,
    revision: str = "main",
) -> dict[str, Any]:
    """ArgoCD Application syncing the bootstrap repository.

    Automated prune/self-heal with exponential backoff: 30 retries, 5s
    initial delay, factor 2, capped at 3 minutes.
    """
    return {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {
            "name": BOOTSTRAP_APP_NAME,
            "namespace": namespace,
            "labels": {
                "app.kubernetes.io/name": BOOTSTRAP_APP_NAME,
                "app.kubernetes.io/part-of": "adhar-platform",
            },
            "finalizers": ["resources-finalizer.argoproj.io"],
        },
        "spec": {
            "destination": {"namespace": namespace, "server": "https://kubernetes.default.svc"},
            "project": "default",
            "sources": [
                {
                    "path": ".",
                    "repoURL": f"{GITEA_IN_CLUSTER_URL}/{GITEA_ADMIN_USER}/{repo_name}",
                    "targetRevision": revision,
                    "directory": {"recurse": True},
                }
            ],
            "syncPolicy": {
                "automated": {"prune": True, "selfHeal": True},
                "retry": {
                    "backoff": {"duration": "5s", "factor": 2, "maxDuration": "3m0s"},
                    "limit": 30,
                },
                "syncOptions": ["CreateNamespace=true", "ServerSideApply=true"],
            },
        },
    }


@dataclass
class BuildCustomization:
    """How the local platform is exposed."""

    protocol: str = "https"
    host: str = "adhar.localtest.me"
    ingress_host: str = ""
    port: str = "8443"
    use_path_routing: bool = False
    static_password: bool = False
    self_signed_cert: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "protocol": self.protocol,
            "host": self.host,
            "port": self.port,
            "usePathRouting": self.use_path_routing,
            "staticPassword": self.static_password,
        }
        if self.ingress_host:
            data["ingressHost"] = self.ingress_host
        if self.self_signed_cert:
            data["selfSignedCert"] = self.self_signed_cert
        return data


def build_platform_resource(
    name: str,
    customization: BuildCustomization,
    start_time: str,
    namespace: str = ADHAR_NAMESPACE,
) -> dict[str, Any]:
    """AdharPlatform resource consumed by the controller manager."""
    return {
        "apiVersion": PLATFORM_API_VERSION,
        "kind": PLATFORM_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "annotations": {CLI_START_TIME_ANNOTATION: start_time},
        },
        "spec": {
            "buildCustomization": customization.to_dict(),
            "packageConfigs": {
                "argo": {"enabled": True},
                "embeddedArgoApplications": {"enabled": True},
            },
        },
    }
