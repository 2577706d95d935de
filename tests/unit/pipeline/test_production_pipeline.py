"""Unit tests for the production provisioning pipeline."""

from __future__ import annotations

import socket
import stat

import httpx
import pytest
from mocks import FakeProvider, QuotaAwareProvider, fail

from adhar_cli.config import (
    AddonConfig,
    ChartConfig,
    GlobalSettings,
    KeyValue,
    ResolvedEnvironment,
    RuntimeOptions,
    ServiceConfig,
)
from adhar_cli.errors import NetworkError, OperationTimeoutError, ValidationError
from adhar_cli.pipeline.phases import EchoProgress, NullProgress, PhaseStatus
from adhar_cli.pipeline.production import (
    STEP_NAMES,
    HelmInstaller,
    ProductionPipeline,
    build_cluster_spec,
    validate_environment,
)

ARGOCD_CHART = ChartConfig(
    repo_url="https://argoproj.github.io/argo-helm", name="argo-cd", version="5.51.0"
)


def _env(**overrides) -> ResolvedEnvironment:
    fields = {
        "name": "production",
        "provider": "aws",
        "region": "us-west-2",
        "type": "production",
        "cluster_config": [
            KeyValue(key="name", value="prod-main"),
            KeyValue(key="kubeVersion", value="1.29"),
            KeyValue(key="nodeInstanceType", value="m5.xlarge"),
        ],
        "core_services": {"argocd": ServiceConfig(chart=ARGOCD_CHART)},
        **overrides,
    }
    return ResolvedEnvironment(**fields)


async def _resolves(host: str, port: int) -> object:
    return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("203.0.113.10", port))]


def _pipeline(env, provider, runner, tmp_path, **kwargs) -> ProductionPipeline:
    options = {"progress": NullProgress(), "resolver": _resolves, **kwargs}
    return ProductionPipeline(
        env, provider, runner=runner, kubeconfig_dir=tmp_path / "kubeconfigs", **options
    )


class TestValidateEnvironment:
    """Tests for validate_environment."""

    def test_valid(self):
        """Test a complete environment passes."""
        validate_environment(_env())

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"region": ""}, "region not specified for environment 'production'"),
            ({"provider": ""}, "provider not specified"),
            ({"cluster_config": []}, "cluster configuration not specified"),
            (
                {"cluster_config": [KeyValue(key="name", value="")]},
                "cluster config value cannot be empty for key 'name'",
            ),
        ],
    )
    def test_missing_fields(self, overrides, message):
        """Test each required field is reported."""
        with pytest.raises(ValidationError, match=message):
            validate_environment(_env(**overrides))

    def test_versioned_service_without_version(self):
        """Test Gitea needs a chart version when enabled."""
        services = {"gitea": ServiceConfig(chart=ChartConfig(name="gitea"))}
        with pytest.raises(ValidationError, match="Gitea version must be specified when enabled"):
            validate_environment(_env(core_services=services))


class TestBuildClusterSpec:
    """Tests for build_cluster_spec."""

    def test_production_topology(self):
        """Test production environments get an HA control plane and workers."""
        spec = build_cluster_spec(_env())
        assert spec.name == "prod-main"
        assert spec.version == "1.29"
        assert spec.control_plane.replicas == 3
        assert spec.control_plane.high_availability
        assert spec.worker_count == 3
        assert spec.node_groups[0].instance_type == "m5.xlarge"
        assert spec.addons.monitoring
        assert spec.tags["adhar.io/environment-type"] == "production"

    def test_non_production_topology(self):
        """Test non-production environments default to a single node."""
        env = _env(name="staging", type="non-production", cluster_config=[])
        spec = build_cluster_spec(env, provider_name="digitalocean")
        assert spec.name == "staging"
        assert spec.provider == "digitalocean"
        assert spec.control_plane.replicas == 1
        assert not spec.control_plane.high_availability
        assert spec.node_groups == []

    def test_ha_mode_from_global_settings(self):
        """Test enableHAMode turns on HA outside production."""
        env = _env(type="non-production", global_settings=GlobalSettings(enable_ha_mode=True))
        assert build_cluster_spec(env).control_plane.high_availability

    def test_domain_defaults(self):
        """Test the domain falls back to the local defaults."""
        settings = GlobalSettings(default_host="", email="")
        domain = build_cluster_spec(_env(global_settings=settings)).domain
        assert domain.base_domain == "adhar.localtest.me"
        assert domain.email == "admin@adhar.localtest.me"

    def test_invalid_replica_count(self):
        """Test non-numeric replica counts are rejected."""
        env = _env(cluster_config=[KeyValue(key="workerReplicas", value="many")])
        with pytest.raises(ValidationError, match="'workerReplicas' must be an integer"):
            build_cluster_spec(env)


class TestHelmInstaller:
    """Tests for HelmInstaller."""

    def test_chart_args(self):
        """Test OCI charts are referenced by URL, others through --repo."""
        oci = ChartConfig(repo_url="oci://ghcr.io/charts/", name="gitea")
        assert HelmInstaller.chart_args(oci) == ["oci://ghcr.io/charts/gitea"]
        assert HelmInstaller.chart_args(ARGOCD_CHART) == [
            "argo-cd",
            "--repo",
            "https://argoproj.github.io/argo-helm",
        ]
        assert HelmInstaller.chart_args(ChartConfig(name="local-chart")) == ["local-chart"]

    @pytest.mark.asyncio
    async def test_install(self, fake_runner):
        """Test install passes version, namespace and values."""
        fake_runner.add("helm status", fail("release: not found"))
        helm = HelmInstaller(kubeconfig="/tmp/kc", runner=fake_runner)

        installed = await helm.install(
            "argocd", ARGOCD_CHART, "adhar-system", [KeyValue(key="server.replicas", value="2")]
        )

        assert installed
        call = fake_runner.commands_matching("helm install argocd")[0]
        assert call[call.index("--version") + 1] == "5.51.0"
        assert "--create-namespace" in call
        assert call[call.index("--set") + 1] == "server.replicas=2"
        assert call[-2:] == ["--kubeconfig", "/tmp/kc"]

    @pytest.mark.asyncio
    async def test_existing_release_skipped(self, fake_runner):
        """Test an installed release is left alone."""
        helm = HelmInstaller(runner=fake_runner)
        assert await helm.install("argocd", ARGOCD_CHART) is False
        assert not fake_runner.called("helm install")


class TestProductionPipeline:
    """Tests for ProductionPipeline."""

    def test_phases(self, fake_runner, tmp_path, layout):
        """Test the phase order; only addons are non-fatal."""
        pipeline = _pipeline(_env(), FakeProvider(name="aws"), fake_runner, tmp_path, layout=layout)
        phases = pipeline.phases()
        assert [phase.name for phase in phases] == list(STEP_NAMES)
        assert [phase.name for phase in phases if phase.non_fatal] == ["Install addons"]

    @pytest.mark.asyncio
    async def test_full_run(self, fake_runner, tmp_path, layout):
        """Test a run creates the cluster, installs services and applies ApplicationSets."""
        fake_runner.add("helm status", fail("release: not found"))
        provider = FakeProvider(name="aws")

        pipeline = _pipeline(_env(), provider, fake_runner, tmp_path, layout=layout)
        result = await pipeline.run()

        assert result.success
        assert result.summary == "6 of 6 steps completed"
        assert provider.operations() == [
            "authenticate",
            "validate_permissions",
            "create_cluster",
            "get_kubeconfig",
        ]
        kubeconfig = tmp_path / "kubeconfigs" / "aws-prod-main.kubeconfig"
        assert kubeconfig.read_text().startswith("apiVersion: v1")
        assert stat.S_IMODE(kubeconfig.stat().st_mode) == 0o600
        assert fake_runner.called("helm install argocd")
        kubectl = f"kubectl --kubeconfig {kubeconfig}"
        assert fake_runner.called(f"{kubectl} wait --for=condition=available")
        appset = layout.stack_dir / "adhar-appset-manifests.yaml"
        assert fake_runner.called(f"{kubectl} apply -f {appset}")
        assert result.outcomes[4].status is PhaseStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_dry_run(self, fake_runner, tmp_path, layout):
        """Test dry run validates and skips every other phase."""
        provider = FakeProvider(name="aws")
        pipeline = _pipeline(
            _env(),
            provider,
            fake_runner,
            tmp_path,
            layout=layout,
            runtime=RuntimeOptions(dry_run=True),
        )

        result = await pipeline.run()

        assert result.success
        assert result.outcomes[0].status is PhaseStatus.COMPLETED
        assert {outcome.status for outcome in result.outcomes[1:]} == {PhaseStatus.SKIPPED}
        assert "would create cluster 'prod-main' on aws in us-west-2" in result.outcomes[2].message
        assert provider.calls == []
        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_validation_failure(self, fake_runner, tmp_path, layout):
        """Test an invalid environment fails the first step."""
        pipeline = _pipeline(_env(region=""), FakeProvider(name="aws"), fake_runner, tmp_path)
        result = await pipeline.run()
        assert result.failed_index == 0
        assert isinstance(result.error.cause, ValidationError)

    @pytest.mark.asyncio
    async def test_quota_check_when_supported(self, fake_runner, tmp_path, layout):
        """Test providers with a quota check get it called during pre-flight."""
        fake_runner.add("helm status", fail("release: not found"))
        provider = QuotaAwareProvider(name="aws")
        await _pipeline(_env(), provider, fake_runner, tmp_path, layout=layout).run()
        assert ("check_resource_quotas", "prod-main") in provider.calls

    @pytest.mark.asyncio
    async def test_endpoint_reachable(self, fake_runner, tmp_path, layout):
        """Test the provider endpoint is probed over HTTPS."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(403)

        provider = FakeProvider(name="aws", endpoint_url="https://eks.us-west-2.amazonaws.com")
        pipeline = _pipeline(
            _env(),
            provider,
            fake_runner,
            tmp_path,
            layout=layout,
            transport=httpx.MockTransport(handler),
        )

        await pipeline.check_network()
        assert requests[0].url.host == "eks.us-west-2.amazonaws.com"

    @pytest.mark.asyncio
    async def test_dns_failure_fails_preflight(self, fake_runner, tmp_path, layout):
        """Test an unresolvable endpoint fails pre-flight with NetworkError."""

        async def broken(host, port):
            raise socket.gaierror(-2, "Name or service not known")

        provider = FakeProvider(name="aws", endpoint_url="https://eks.us-west-2.amazonaws.com")
        result = await _pipeline(
            _env(), provider, fake_runner, tmp_path, layout=layout, resolver=broken
        ).run()

        assert result.failed_index == 1
        assert isinstance(result.error.cause, NetworkError)
        assert "DNS resolution failed for eks.us-west-2.amazonaws.com" in str(result.error)
        assert "create_cluster" not in provider.operations()

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self, fake_runner, tmp_path):
        """Test connection errors become NetworkError."""

        def handler(request):
            raise httpx.ConnectError("connection refused")

        provider = FakeProvider(name="aws", endpoint_url="https://eks.us-west-2.amazonaws.com")
        pipeline = _pipeline(
            _env(), provider, fake_runner, tmp_path, transport=httpx.MockTransport(handler)
        )
        with pytest.raises(NetworkError, match="cannot reach"):
            await pipeline.check_network()

    @pytest.mark.asyncio
    async def test_addon_failure_warns(self, fake_runner, tmp_path, layout, capsys):
        """Test one failing addon is reported and the run continues."""
        fake_runner.add("helm status", fail("release: not found"))
        fake_runner.add("helm install monitoring", fail("chart not found"))
        addons = [
            AddonConfig(name="monitoring", chart=ChartConfig(name="kube-prometheus-stack")),
            AddonConfig(name="logging", chart=ChartConfig(name="loki"), target_namespace="logs"),
        ]

        pipeline = _pipeline(
            _env(addons=addons),
            FakeProvider(name="aws"),
            fake_runner,
            tmp_path,
            layout=layout,
            progress=EchoProgress(),
        )
        result = await pipeline.run()

        assert result.success
        assert "⚠ addon monitoring not installed" in capsys.readouterr().out
        logging_install = fake_runner.commands_matching("helm install logging")[0]
        assert logging_install[logging_install.index("--namespace") + 1] == "logs"

    @pytest.mark.asyncio
    async def test_argocd_timeout(self, fake_runner, tmp_path, layout):
        """Test GitOps setup fails when ArgoCD never becomes available."""
        fake_runner.add("helm status", fail("release: not found"))
        fake_runner.add("kubectl wait", fail("timed out waiting for the condition"))

        result = await _pipeline(
            _env(), FakeProvider(name="aws"), fake_runner, tmp_path, layout=layout
        ).run()

        assert result.failed_index == 5
        assert isinstance(result.error.cause, OperationTimeoutError)
        assert "ArgoCD not ready for GitOps setup" in str(result.error)
