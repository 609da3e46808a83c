"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from statewright.config import load_config
from statewright.exceptions import ConfigError


def _write_config(tmp_path, data: dict) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(data))
    return str(path)


class TestLoadConfig:
    def test_minimal_valid_config(self, tmp_path):
        data = {"declarations": ["infra.yaml"]}
        config = load_config(_write_config(tmp_path, data))
        assert config.declarations == [str(tmp_path / "infra.yaml")]
        assert config.state.backend == "file"
        assert config.executor.parallelism == 10
        assert config.reconcile.mode == "dry-run"
        assert config.reconcile.interval_seconds == 300

    def test_missing_file_raises(self):
        with pytest.raises(ConfigError, match="not found"):
            load_config("/nonexistent/file.yaml")

    def test_missing_declarations_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="declarations"):
            load_config(_write_config(tmp_path, {"state": {"backend": "memory"}}))

    def test_single_declarations_string(self, tmp_path):
        config = load_config(_write_config(tmp_path, {"declarations": "infra.yaml"}))
        assert config.declarations == [str(tmp_path / "infra.yaml")]

    def test_absolute_paths_untouched(self, tmp_path):
        data = {
            "declarations": ["/etc/statewright/infra.yaml"],
            "state": {"path": "/var/lib/statewright/state.json"},
        }
        config = load_config(_write_config(tmp_path, data))
        assert config.declarations == ["/etc/statewright/infra.yaml"]
        assert config.state.path == "/var/lib/statewright/state.json"

    def test_relative_state_path_anchored(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "state": {"path": "state/current.json"}}
        config = load_config(_write_config(tmp_path, data))
        assert Path(config.state.path) == tmp_path / "state" / "current.json"

    def test_invalid_backend(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "state": {"backend": "consul"}}
        with pytest.raises(ConfigError, match="state.backend"):
            load_config(_write_config(tmp_path, data))

    def test_s3_backend_requires_bucket(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "state": {"backend": "s3"}}
        with pytest.raises(ConfigError, match="bucket"):
            load_config(_write_config(tmp_path, data))

    def test_parallelism_too_low(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "executor": {"parallelism": 0}}
        with pytest.raises(ConfigError, match="parallelism"):
            load_config(_write_config(tmp_path, data))

    def test_max_attempts_too_low(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "executor": {"max_attempts": 0}}
        with pytest.raises(ConfigError, match="max_attempts"):
            load_config(_write_config(tmp_path, data))

    def test_invalid_mode(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "reconcile": {"mode": "yolo"}}
        with pytest.raises(ConfigError, match="reconcile.mode"):
            load_config(_write_config(tmp_path, data))

    def test_interval_too_low(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "reconcile": {"interval_seconds": 2}}
        with pytest.raises(ConfigError, match="interval_seconds"):
            load_config(_write_config(tmp_path, data))

    def test_invalid_logging_format(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "logging": {"format": "xml"}}
        with pytest.raises(ConfigError, match="logging.format"):
            load_config(_write_config(tmp_path, data))

    def test_section_must_be_mapping(self, tmp_path):
        data = {"declarations": ["infra.yaml"], "executor": "fast"}
        with pytest.raises(ConfigError, match="mapping"):
            load_config(_write_config(tmp_path, data))

    def test_env_var_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_API_TOKEN", "secret-456")
        data = {"declarations": ["infra.yaml"], "provider": {"token": "${TEST_API_TOKEN}"}}
        config = load_config(_write_config(tmp_path, data))
        assert config.provider.token == "secret-456"

    def test_env_var_missing_raises(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SURELY_MISSING_VAR", raising=False)
        data = {"declarations": ["infra.yaml"], "provider": {"token": "${SURELY_MISSING_VAR}"}}
        with pytest.raises(ConfigError, match="SURELY_MISSING_VAR"):
            load_config(_write_config(tmp_path, data))

    def test_full_config(self, tmp_path):
        data = {
            "declarations": ["network.yaml", "services.yaml"],
            "state": {
                "backend": "s3",
                "bucket": "infra-state",
                "key": "prod/state.json",
                "region": "eu-west-1",
            },
            "provider": {
                "base_url": "https://cloud.example.com",
                "api_version": "v2",
                "collections": {"network": "networks", "subnet": "subnets"},
                "force_new": {"network": ["cidr_block"]},
            },
            "executor": {"parallelism": 4, "max_attempts": 8},
            "reconcile": {"mode": "apply-automatically", "interval_seconds": 60, "refresh": False},
            "logging": {"level": "DEBUG", "format": "text"},
        }
        config = load_config(_write_config(tmp_path, data))
        assert len(config.declarations) == 2
        assert config.state.bucket == "infra-state"
        assert config.state.region == "eu-west-1"
        assert config.provider.collections == {"network": "networks", "subnet": "subnets"}
        assert config.provider.force_new == {"network": ["cidr_block"]}
        assert config.executor.parallelism == 4
        assert config.reconcile.mode == "apply-automatically"
        assert config.reconcile.refresh is False
        assert config.logging.format == "text"

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("just a string")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(str(path))
