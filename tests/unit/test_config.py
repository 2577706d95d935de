"""Unit tests for platform configuration loading and environment resolution."""

from __future__ import annotations

import pytest
import yaml

from adhar_cli.config import (
    NON_PRODUCTION,
    PlatformConfig,
    ProviderConfig,
    default_config,
    load_config,
    parse_config,
)
from adhar_cli.errors import ConfigurationError


def _providers(*entries: tuple[str, bool]) -> dict[str, ProviderConfig]:
    return {
        name: ProviderConfig(name=name, type=name, primary=primary) for name, primary in entries
    }


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_file(self, config_file):
        """Test loading an explicit file."""
        config = load_config(config_file)
        assert config.path == config_file
        assert set(config.providers) == {"aws", "do"}
        assert config.providers["do"].type == "digitalocean"
        assert config.global_settings.default_host == "platform.example.com"
        assert config.get_source("defaultHost") == "config file"
        assert config.get_source("defaultHttpPort") == "default"

    def test_missing_explicit_file(self, tmp_path):
        """Test an explicit path must exist."""
        with pytest.raises(ConfigurationError, match="config file not found"):
            load_config(tmp_path / "absent.yaml")

    def test_defaults_without_file(self):
        """Test built-in defaults when no file exists (ADHAR_CONFIG points nowhere)."""
        config = load_config()
        assert config.path is None
        assert list(config.providers) == ["kind"]
        assert "local" in config.environments

    def test_config_env_var(self, config_file, monkeypatch):
        """Test ADHAR_CONFIG selects the file."""
        monkeypatch.setenv("ADHAR_CONFIG", str(config_file))
        assert load_config().path == config_file

    def test_invalid_yaml(self, tmp_path):
        """Test broken YAML is a configuration error."""
        path = tmp_path / "broken.yaml"
        path.write_text("providers: [unclosed\n")
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            load_config(path)

    def test_env_overrides(self, config_file, monkeypatch):
        """Test environment variables override global settings and record their source."""
        monkeypatch.setenv("ADHAR_DEFAULT_HOST", "override.example.com")
        monkeypatch.setenv("ADHAR_ENABLE_HA", "yes")
        config = load_config(config_file)
        assert config.global_settings.default_host == "override.example.com"
        assert config.global_settings.enable_ha_mode is True
        assert config.get_source("defaultHost") == "environment"
        assert config.get_source("enableHAMode") == "environment"


class TestParseConfig:
    """Tests for parse_config."""

    def test_provider_auth_and_config(self):
        """Test auth fields are collected and flattened into the provider map."""
        config = parse_config(
            {
                "providers": {
                    "aws": {
                        "type": "aws",
                        "region": "eu-west-1",
                        "accessKeyId": "AKIA",
                        "secretAccessKey": "",
                        "config": {"clusterRole": "eks-role", "region": "ignored"},
                    }
                }
            }
        )
        provider_map = config.providers["aws"].to_provider_map()
        assert provider_map["region"] == "eu-west-1"
        assert provider_map["accessKeyId"] == "AKIA"
        assert provider_map["clusterRole"] == "eks-role"
        # Empty credentials are dropped
        assert "secretAccessKey" not in provider_map

    def test_provider_type_defaults_to_name(self):
        """Test a provider without type uses its key."""
        config = parse_config({"providers": {"civo": {"apiKey": "k"}}})
        assert config.providers["civo"].type == "civo"

    def test_bad_global_setting(self):
        """Test a non-integer port is rejected."""
        with pytest.raises(ConfigurationError, match="defaultHttpPort"):
            parse_config({"globalSettings": {"defaultHttpPort": "eighty"}})

    def test_section_must_be_mapping(self):
        """Test sections with the wrong shape are rejected."""
        with pytest.raises(ConfigurationError, match="providers must be a mapping"):
            parse_config({"providers": ["aws"]})

    def test_key_value_entries_need_key(self):
        """Test cluster config entries without key are rejected."""
        with pytest.raises(ConfigurationError, match="clusterConfig"):
            parse_config({"environments": {"dev": {"clusterConfig": [{"value": "1"}]}}})

    def test_addons_need_name(self):
        """Test addons without a name are rejected."""
        with pytest.raises(ConfigurationError, match="name"):
            parse_config({"environments": {"dev": {"addons": [{"chart": {}}]}}})


class TestValidateProviders:
    """Tests for provider count and primary rules."""

    def test_no_providers(self):
        """Test at least one provider is required."""
        with pytest.raises(ConfigurationError, match="at least one provider"):
            PlatformConfig().validate_providers()

    def test_single_provider_needs_no_primary(self):
        """Test one provider is valid without primary."""
        PlatformConfig(providers=_providers(("aws", False))).validate_providers()

    def test_two_providers_need_primary(self):
        """Test two providers require a primary."""
        config = PlatformConfig(providers=_providers(("aws", False), ("gcp", False)))
        with pytest.raises(ConfigurationError, match="primary: true"):
            config.validate_providers()

    def test_two_primaries(self):
        """Test only one primary is allowed."""
        config = PlatformConfig(providers=_providers(("aws", True), ("gcp", True)))
        with pytest.raises(ConfigurationError, match="only one provider can be marked as primary"):
            config.validate_providers()

    def test_too_many_providers(self):
        """Test the provider limit."""
        providers = _providers(("aws", True), ("gcp", False), ("azure", False))
        config = PlatformConfig(providers=providers)
        with pytest.raises(ConfigurationError, match="maximum of 2 providers"):
            config.validate_providers()

    def test_primary_and_workload(self):
        """Test the management and workload provider split."""
        config = PlatformConfig(providers=_providers(("aws", False), ("gcp", True)))
        assert config.get_primary_provider() == "gcp"
        assert config.get_workload_provider() == "aws"
        assert config.is_management_provider("gcp")
        assert not config.is_management_provider("aws")

    def test_single_provider_is_both(self):
        """Test a single provider hosts management and workloads."""
        config = PlatformConfig(providers=_providers(("aws", False)))
        assert config.get_primary_provider() == "aws"
        assert config.get_workload_provider() == "aws"


class TestResolveEnvironment:
    """Tests for merging environments over templates."""

    def test_template_merge(self, config_file):
        """Test cluster config, core services and addons merge rules."""
        config = load_config(config_file)
        env = config.resolve_environment("production")

        values = {item.key: item.value for item in env.cluster_config}
        assert values == {
            "kubeVersion": "1.29",
            "nodeInstanceType": "m5.xlarge",
            "name": "prod-main",
        }
        assert set(env.core_services) == {"gitea", "argocd"}
        assert [addon.name for addon in env.addons] == ["monitoring"]
        assert env.region == "us-west-2"
        assert env.is_production

    def test_defaults(self, config_file):
        """Test region comes from the provider."""
        env = load_config(config_file).resolve_environment("staging")
        assert env.provider == "do"
        assert env.region == "nyc3"
        assert env.type == NON_PRODUCTION
        assert env.cluster_value("workerReplicas") == "2"
        assert env.global_settings.email == "ops@example.com"

    def test_provider_defaults_to_first(self):
        """Test an environment without provider uses the first configured one."""
        config = parse_config(
            {
                "providers": {"gcp": {"region": "us-central1"}},
                "environments": {"dev": {}},
            }
        )
        env = config.resolve_environment("dev")
        assert env.provider == "gcp"
        assert env.region == "us-central1"

    def test_missing_template_is_tolerated(self):
        """Test a reference to an unknown template resolves without it."""
        config = parse_config(
            {"providers": {"kind": {}}, "environments": {"dev": {"template": "missing"}}}
        )
        assert config.resolve_environment("dev").cluster_config == []

    def test_unknown_environment(self, config_file):
        """Test unknown environments list the available ones."""
        with pytest.raises(ConfigurationError, match="available: staging, production"):
            load_config(config_file).resolve_environment("qa")

    def test_cluster_value_fallback(self, config_file):
        """Test cluster_value tries keys in order and falls back to the default."""
        env = load_config(config_file).resolve_environment("production")
        assert env.cluster_value("instanceType", "nodeInstanceType") == "m5.xlarge"
        assert env.cluster_value("region", default="none") == "none"


class TestDefaultConfig:
    """Tests for the built-in configuration."""

    def test_local_environment(self):
        """Test the default local environment resolves to kind."""
        env = default_config().resolve_environment("local")
        assert env.provider == "kind"
        assert env.region == "local"
        assert env.cluster_value("name") == "adhar"
        assert env.cluster_value("maxNodes") == "3"

    def test_serializable(self):
        """Test defaults can be written back as YAML."""
        assert yaml.safe_dump({"providers": list(default_config().providers)})
