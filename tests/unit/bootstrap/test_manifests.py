"""Unit tests for platform layout and generated resources."""

from __future__ import annotations

import pytest

from adhar_cli.bootstrap.manifests import (
    BOOTSTRAP_APP_NAME,
    CLI_START_TIME_ANNOTATION,
    BuildCustomization,
    PlatformLayout,
    build_bootstrap_application,
    build_platform_resource,
)
from adhar_cli.errors import ConfigurationError


class TestPlatformLayout:
    """Tests for PlatformLayout."""

    def test_discover_from_environment(self, layout):
        """Test ADHAR_PLATFORM_DIR is the default root."""
        assert PlatformLayout.discover().root == layout.root

    def test_component_install_file(self, layout):
        """Test install.yaml is found for a component."""
        path = layout.component_install_file("argocd")
        assert path.name == "install.yaml"

    def test_component_install_file_prefers_ha(self, layout):
        """Test install-ha.yaml wins when high availability is requested."""
        ha = layout.resources_dir / "argocd" / "install-ha.yaml"
        ha.write_text("kind: List\n")
        assert layout.component_install_file("argocd", high_availability=True) == ha
        assert layout.component_install_file("argocd").name == "install.yaml"

    def test_missing_component(self, layout):
        """Test a missing component directory is a configuration error."""
        with pytest.raises(ConfigurationError, match="manifest path for crossplane does not exist"):
            layout.component_install_file("crossplane")

    def test_missing_install_file(self, layout):
        """Test a component directory without install files is a configuration error."""
        (layout.resources_dir / "nginx").mkdir()
        with pytest.raises(ConfigurationError, match="no install file found for nginx"):
            layout.component_install_file("nginx")

    def test_appset_files(self, layout):
        """Test only existing ApplicationSet files are returned."""
        assert [path.name for path in layout.appset_files()] == ["adhar-appset-manifests.yaml"]


class TestGeneratedResources:
    """Tests for resource builders."""

    def test_bootstrap_application(self):
        """Test the bootstrap Application points at the in-cluster Gitea repository."""
        app = build_bootstrap_application()
        assert app["metadata"]["name"] == BOOTSTRAP_APP_NAME
        source = app["spec"]["sources"][0]
        assert source["repoURL"].endswith("/gitea_admin/bootstrap")
        assert source["directory"] == {"recurse": True}
        retry = app["spec"]["syncPolicy"]["retry"]
        assert retry["limit"] == 30
        assert retry["backoff"] == {"duration": "5s", "factor": 2, "maxDuration": "3m0s"}

    def test_platform_resource(self):
        """Test the platform resource carries customization and start time."""
        customization = BuildCustomization(protocol="http", port="8080", static_password=True)
        resource = build_platform_resource("localdev", customization, "2026-01-01T00:00:00Z")
        assert resource["kind"] == "AdharPlatform"
        annotations = resource["metadata"]["annotations"]
        assert annotations[CLI_START_TIME_ANNOTATION] == "2026-01-01T00:00:00Z"
        spec = resource["spec"]["buildCustomization"]
        assert spec["protocol"] == "http"
        assert spec["staticPassword"] is True
        assert "ingressHost" not in spec
