"""Tests for configuration loading, overrides and validation."""

import json

import pytest

from args import parse_args
from cli_config import AnalyzerConfig, apply_cli_overrides, collect_overrides, discover_config_file, load_config
from common.errors import ConfigError
from constants import Constants


class TestDefaults:
    def test_defaults(self):
        config = AnalyzerConfig.from_dict({})

        assert config.registry == Constants.REGISTRY_URL_NPM
        assert config.max_concurrent_requests == 8
        assert config.max_concurrent_units == 3
        assert config.analysis.depth == 1
        assert config.cache.persist_to_disk is False
        assert config.network.offline is False

    def test_registry_gets_trailing_slash(self):
        assert AnalyzerConfig.from_dict({"registry": "https://npm.example.com"}).registry == "https://npm.example.com/"


class TestValidation:
    @pytest.mark.parametrize("data", [
        {"registry": "ftp://example.com"},
        {"max_concurrent_requests": 0},
        {"max_concurrent_units": "many"},
        {"network": {"timeout": -1}},
        {"network": {"offline": "yes"}},
        {"analysis": {"depth": 11}},
        {"analysis": {"exclude_packages": [1, 2]}},
        {"analysis": {"allowed_licenses": [{"id": "MIT"}]}},
        {"analysis": {"check_licenses": "no"}},
        {"cache": "on"},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(ConfigError):
            AnalyzerConfig.from_dict(data)

    def test_unknown_keys_are_ignored(self, caplog):
        config = AnalyzerConfig.from_dict({"colour": "blue", "network": {"speed": 3}})

        assert config.network.retries == Constants.HTTP_RETRY_MAX
        messages = [r.getMessage() for r in caplog.records]
        assert any("'colour'" in m for m in messages)
        assert any("'network.speed'" in m for m in messages)

    def test_single_exclude_string_becomes_list(self):
        assert AnalyzerConfig.from_dict({"analysis": {"exclude_packages": "@types/*"}}).analysis.exclude_packages == ["@types/*"]

    def test_license_options(self):
        config = AnalyzerConfig.from_dict({"analysis": {"checkLicenses": False, "allowedLicenses": "MPL-2.0"}})

        assert config.analysis.check_licenses is False
        assert config.analysis.allowed_licenses == ["MPL-2.0"]


class TestFiles:
    """YAML and JSON configuration files."""

    def test_yaml_with_camel_case_keys(self, tmp_path):
        (tmp_path / ".depcompat.yml").write_text(
            "registry: https://mirror.example.com/\n"
            "maxConcurrentRequests: 4\n"
            "analysis:\n"
            "  includeDevDependencies: false\n"
            "  excludePackages: ['@types/*']\n"
        )
        config = load_config(str(tmp_path))

        assert config.registry == "https://mirror.example.com/"
        assert config.max_concurrent_requests == 4
        assert config.analysis.include_dev_dependencies is False
        assert config.analysis.exclude_packages == ["@types/*"]

    def test_explicit_json_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"cache": {"ttl": 60, "persistToDisk": True}}))
        config = load_config(str(tmp_path), str(path))

        assert config.cache.ttl == 60
        assert config.cache.persist_to_disk is True

    def test_discovery_order(self, tmp_path):
        assert discover_config_file(str(tmp_path)) is None
        (tmp_path / ".depcompat.json").write_text("{}")
        (tmp_path / ".depcompat.yaml").write_text("{}")

        assert discover_config_file(str(tmp_path)).endswith(".depcompat.yaml")

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path), str(tmp_path / "missing.yml"))

    def test_non_mapping_file(self, tmp_path):
        (tmp_path / ".depcompat.yml").write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(str(tmp_path))

    def test_empty_file(self, tmp_path):
        (tmp_path / ".depcompat.yml").write_text("")

        assert load_config(str(tmp_path)).analysis.depth == 1


class TestOverrides:
    def test_collect_overrides(self):
        assert collect_overrides(["network.retries=5", "analysis.excludePackages=[\"a\"]", "bad"]) == {
            "network": {"retries": 5},
            "analysis": {"exclude_packages": ["a"]},
        }

    def test_set_overrides_file(self, tmp_path):
        (tmp_path / ".depcompat.yml").write_text("network:\n  retries: 1\n  timeout: 10\n")
        config = load_config(str(tmp_path), overrides=["network.retries=5", "network.offline=true"])

        assert config.network.retries == 5
        assert config.network.timeout == 10
        assert config.network.offline is True

    def test_cli_flags_win(self, tmp_path):
        (tmp_path / ".depcompat.yml").write_text("analysis:\n  depth: 3\n  excludePackages: [a]\n")
        args = parse_args([str(tmp_path), "--depth", "0", "--exclude", "b", "--no-dev", "--offline", "--max-concurrency", "2"])
        config = apply_cli_overrides(load_config(str(tmp_path)), args)

        assert config.analysis.depth == 0
        assert config.analysis.exclude_packages == ["a", "b"]
        assert config.analysis.include_dev_dependencies is False
        assert config.network.offline is True
        assert config.max_concurrent_requests == 2

    def test_invalid_cli_flag(self, tmp_path):
        args = parse_args([str(tmp_path), "--retries", "50"])
        with pytest.raises(ConfigError):
            apply_cli_overrides(load_config(str(tmp_path)), args)
