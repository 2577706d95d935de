"""Unit tests for the local (kind) provisioning pipeline."""

from __future__ import annotations

import pytest
from mocks import FakeControllerManager, FakePlatformClient, FakeProvider

from adhar_cli.config import RuntimeOptions
from adhar_cli.errors import ResourceError
from adhar_cli.pipeline.local import STEP_NAMES, LocalOptions, LocalPipeline, argocd_url
from adhar_cli.pipeline.phases import PhaseStatus


class FailingUpsertClient(FakePlatformClient):
    """Platform client whose resource apply fails."""

    async def upsert_platform(self, resource):
        self.calls.append("upsert_platform")
        raise ResourceError(message="admission webhook denied the request")


def _pipeline(layout, token, options=None, runtime=None, **kwargs) -> LocalPipeline:
    collaborators = {
        "provider": FakeProvider(name="kind"),
        "platform": FakePlatformClient(),
        "manager": FakeControllerManager("sync", delay=0.01),
        **kwargs,
    }
    return LocalPipeline(
        options=options or LocalOptions(),
        runtime=runtime,
        layout=layout,
        token=token,
        poll_interval_seconds=0.01,
        grace_seconds=0.5,
        start_delay_seconds=0,
        create_delay_seconds=0,
        **collaborators,
    )


class TestLocalOptions:
    """Tests for LocalOptions."""

    def test_https_port_mapping(self):
        """Test the platform port becomes the gateway's HTTPS host port."""
        spec = LocalOptions().cluster_spec()
        assert spec.provider == "kind"
        assert spec.version == "v1.34.0"
        assert spec.networking.https_port == 8443
        assert spec.networking.http_port is None

    def test_http_port_mapping(self):
        """Test plain HTTP maps the port to the HTTP host port."""
        spec = LocalOptions(protocol="http", port="8080", extra_ports=["9000:30900"]).cluster_spec()
        assert spec.networking.http_port == 8080
        assert spec.networking.extra_port_mappings == ["9000:30900"]

    def test_argocd_url(self):
        """Test subdomain and path routing URLs."""
        assert argocd_url(LocalOptions()) == "https://argocd.adhar.localtest.me:8443"
        options = LocalOptions(use_path_routing=True, protocol="http", port="8080")
        assert argocd_url(options) == "http://adhar.localtest.me:8080/argocd"


class TestLocalPipeline:
    """Tests for LocalPipeline."""

    def test_six_phases(self, layout, token):
        """Test the phase order."""
        phases = _pipeline(layout, token).phases()
        assert [phase.name for phase in phases] == list(STEP_NAMES)
        assert not phases[-1].cancellable

    @pytest.mark.asyncio
    async def test_wait_requires_started_manager(self, layout, token):
        """Test the readiness step refuses to run before the manager starts."""
        with pytest.raises(RuntimeError, match="controller manager has not been started"):
            await _pipeline(layout, token).wait_for_readiness()

    @pytest.mark.asyncio
    async def test_happy_path(self, layout, token, capsys):
        """Test a full run creates the cluster, the platform resource and waits for sync."""
        provider = FakeProvider(name="kind")
        platform = FakePlatformClient()
        manager = FakeControllerManager("sync", delay=0.01)

        result = await _pipeline(
            layout, token, provider=provider, platform=platform, manager=manager
        ).run()

        assert result.success
        assert result.summary == "6 of 6 steps completed"
        assert {outcome.status for outcome in result.outcomes} == {PhaseStatus.COMPLETED}
        assert provider.operations() == ["create_cluster"]
        assert provider.specs[0].networking.https_port == 8443
        assert platform.calls == [
            "install_crds",
            "configure_coredns",
            "ensure_certificate",
            "upsert_platform",
        ]
        assert platform.resources["adhar"]["kind"] == "AdharPlatform"
        assert manager.started

        out = capsys.readouterr().out
        assert "→ [1/6] Creating kind cluster 'adhar'" in out
        assert "✓ Platform is ready" in out
        assert "https://argocd.adhar.localtest.me:8443" in out

    @pytest.mark.asyncio
    async def test_suppressed_output(self, layout, token, capsys):
        """Test suppressed output prints neither progress nor banner."""
        result = await _pipeline(layout, token, runtime=RuntimeOptions(suppress_output=True)).run()
        assert result.success
        assert capsys.readouterr().out == ""

    @pytest.mark.asyncio
    async def test_dry_run(self, layout, token, capsys):
        """Test dry run previews without touching the provider or cluster."""
        provider = FakeProvider(name="kind")
        platform = FakePlatformClient()
        manager = FakeControllerManager()

        result = await _pipeline(
            layout,
            token,
            runtime=RuntimeOptions(dry_run=True),
            provider=provider,
            platform=platform,
            manager=manager,
        ).run()

        assert result.success
        assert all(outcome.status is PhaseStatus.SKIPPED for outcome in result.outcomes)
        assert provider.calls == []
        assert platform.calls == []
        assert not manager.started
        out = capsys.readouterr().out
        assert "Dry run: no changes will be made" in out
        assert "Cluster:      adhar" in out

    @pytest.mark.asyncio
    async def test_recreate_deletes_first(self, layout, token):
        """Test --recreate deletes the cluster before creating it."""
        provider = FakeProvider(name="kind")
        options = LocalOptions(recreate=True)

        await _pipeline(layout, token, options=options, provider=provider).run()

        assert provider.calls[:2] == [("delete_cluster", "kind-adhar"), ("create_cluster", "adhar")]

    @pytest.mark.asyncio
    async def test_coredns_failure_only_warns(self, layout, token, capsys):
        """Test DNS customization failures do not stop the run."""
        platform = FakePlatformClient(coredns_error=ResourceError(message="configmap missing"))

        result = await _pipeline(layout, token, platform=platform).run()

        assert result.success
        assert "ensure_certificate" in platform.calls
        assert "⚠ CoreDNS not configured: configmap missing" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_cluster_creation_failure(self, layout, token, capsys):
        """Test a provider failure stops the run before anything else happens."""
        provider = FakeProvider(
            name="kind", errors={"create_cluster": ResourceError(message="port 443 in use")}
        )
        platform = FakePlatformClient()
        manager = FakeControllerManager()

        result = await _pipeline(
            layout, token, provider=provider, platform=platform, manager=manager
        ).run()

        assert result.failed_index == 0
        assert result.summary == "0 of 6 steps completed"
        assert platform.calls == []
        assert not manager.started
        captured = capsys.readouterr()
        assert "✗ Create Kind cluster: port 443 in use" in captured.err
        assert "Platform is ready" not in captured.out

    @pytest.mark.asyncio
    async def test_failure_stops_manager(self, layout, token):
        """Test the running controller manager is stopped when a later phase fails."""
        manager = FakeControllerManager("idle")
        pipeline = _pipeline(layout, token, platform=FailingUpsertClient(), manager=manager)

        result = await pipeline.run()

        assert result.failed_index == 4
        assert pipeline.manager_task is not None
        assert pipeline.manager_task.cancelled()
        assert manager.stopped

    @pytest.mark.asyncio
    async def test_manager_failure_fails_wait(self, layout, token):
        """Test a failing controller manager fails the readiness step."""
        manager = FakeControllerManager("fail", error=ResourceError(message="gitea broke"))
        platform = FakePlatformClient(ready_after=None)

        result = await _pipeline(layout, token, platform=platform, manager=manager).run()

        assert result.failed_index == 5
        assert "gitea broke" in str(result.error)
