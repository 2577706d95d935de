"""Shared test fixtures for adhar-cli tests.

This module provides fixtures used across the suite:
- isolated_env: keeps every test away from ~/.adhar and the shared cluster store
- fake_runner: scripted external commands
- layout: a minimal platform repository checkout
- config_file: a two-provider platform configuration
"""

import logging
from pathlib import Path

import pytest
from mocks import FakeRunner

from adhar_cli.bootstrap.manifests import PlatformLayout
from adhar_cli.shared.cancel import CancelToken
from adhar_cli.shared.logging import configure_logging

SAMPLE_CONFIG = """\
globalSettings:
  adharContext: adhar-mgmt
  defaultHost: platform.example.com
  email: ops@example.com
providers:
  aws:
    type: aws
    region: us-west-2
    primary: true
    accessKeyId: AKIAEXAMPLE
    secretAccessKey: not-a-secret
  do:
    type: digitalocean
    region: nyc3
    token: do-token
environmentTemplates:
  cloud-defaults:
    clusterConfig:
      - key: kubeVersion
        value: "1.29"
      - key: nodeInstanceType
        value: m5.large
    coreServices:
      argocd:
        chart:
          repoURL: https://argoproj.github.io/argo-helm
          name: argo-cd
          version: 5.51.0
    addons:
      - name: monitoring
        targetNamespace: observability
        chart:
          repoURL: https://prometheus-community.github.io/helm-charts
          name: kube-prometheus-stack
          version: 55.0.0
environments:
  staging:
    type: non-production
    provider: do
    template: cloud-defaults
    clusterConfig:
      - key: workerReplicas
        value: "2"
  production:
    type: production
    provider: aws
    template: cloud-defaults
    clusterConfig:
      - key: name
        value: prod-main
      - key: nodeInstanceType
        value: m5.xlarge
    coreServices:
      gitea:
        chart:
          repoURL: https://dl.gitea.com/charts
          name: gitea
          version: 10.1.0
"""


@pytest.fixture(autouse=True, scope="session")
def quiet_logging():
    """Route structlog through standard logging so events never reach stdout."""
    configure_logging("warning")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point config, cluster store and platform checkout at the test's temp dir."""
    monkeypatch.setenv("ADHAR_CONFIG", str(tmp_path / "no-config.yaml"))
    monkeypatch.setenv("ADHAR_CLUSTER_STORE", str(tmp_path / "clusters.json"))
    monkeypatch.setenv("ADHAR_PLATFORM_DIR", str(tmp_path / "platform-repo"))
    for name in ("ADHAR_DEFAULT_HOST", "ADHAR_EMAIL", "ADHAR_ENABLE_HA"):
        monkeypatch.delenv(name, raising=False)
    yield
    # CLI invocations bind log handlers to streams that are closed afterwards
    logging.basicConfig(handlers=[logging.NullHandler()], force=True)


@pytest.fixture
def fake_runner():
    """Command runner with no scripted replies (every command succeeds)."""
    return FakeRunner()


@pytest.fixture
def token():
    """Fresh cancellation token."""
    return CancelToken()


def make_layout(root: Path) -> PlatformLayout:
    """Create a minimal platform checkout under root."""
    layout = PlatformLayout(root=root)
    layout.crds_dir.mkdir(parents=True)
    (layout.crds_dir / "adharplatform-crd.yaml").write_text("kind: CustomResourceDefinition\n")
    for component in ("argocd", "gitea"):
        component_dir = layout.resources_dir / component
        component_dir.mkdir(parents=True)
        (component_dir / "install.yaml").write_text(f"# {component}\n")
    (layout.stack_dir / "packages").mkdir(parents=True)
    (layout.stack_dir / "environments").mkdir(parents=True)
    (layout.stack_dir / "adhar-appset-manifests.yaml").write_text("kind: ApplicationSet\n")
    return layout


@pytest.fixture
def layout(tmp_path):
    """Minimal platform repository checkout."""
    return make_layout(tmp_path / "platform-repo")


@pytest.fixture
def config_file(tmp_path):
    """Platform configuration with an AWS (primary) and a DigitalOcean provider."""
    path = tmp_path / "platform.yaml"
    path.write_text(SAMPLE_CONFIG)
    return path
