"""Frozen dataclasses for configuration and YAML loader with env-var interpolation."""

from __future__ import annotations

import os
import re
import types
import typing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

RECONCILE_MODES = ("apply-automatically", "require-confirmation", "dry-run")
STATE_BACKENDS = ("memory", "file", "s3")


def _interpolate_env(value: str) -> str:
    """Replace ${ENV_VAR} placeholders with environment variable values."""

    def _replace(match: re.Match) -> str:
        env_key = match.group(1)
        env_val = os.environ.get(env_key)
        if env_val is None:
            raise ConfigError(f"Environment variable '{env_key}' is not set")
        return env_val

    return _ENV_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj: Any) -> Any:
    """Recursively interpolate env vars in strings throughout a nested structure."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(v) for v in obj]
    return obj


@dataclass(frozen=True)
class StateConfig:
    backend: str = "file"  # "memory", "file" or "s3"
    path: str = "statewright.state.json"
    bucket: str = ""
    key: str = "statewright/state.json"
    region: str = ""
    credential_profile: str = ""  # empty = use default boto3 credential chain


@dataclass(frozen=True)
class ProviderConfig:
    base_url: str = "http://localhost:8080"
    api_version: str = "v1"
    token: str = ""
    timeout: int = 30
    verify_ssl: bool = True
    collections: dict[str, str] = field(default_factory=dict)  # resource type -> collection path
    force_new: dict[str, list[str]] = field(default_factory=dict)  # resource type -> immutable fields


@dataclass(frozen=True)
class ExecutorConfig:
    parallelism: int = 10
    max_attempts: int = 5
    backoff_base_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    call_timeout_seconds: int = 60


@dataclass(frozen=True)
class ReconcileConfig:
    mode: str = "dry-run"
    interval_seconds: int = 300
    jitter_seconds: int = 10
    refresh: bool = True
    max_backoff_seconds: int = 900
    backoff_base_seconds: int = 10


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    declarations: list[str] = field(default_factory=list)
    state: StateConfig = field(default_factory=StateConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_dataclass_type(ft: Any) -> type | None:
    """Return the underlying dataclass type from a type annotation (handles Optional/X|None)."""
    if isinstance(ft, type) and hasattr(ft, "__dataclass_fields__"):
        return ft
    if isinstance(ft, types.UnionType):
        args = [a for a in ft.__args__ if a is not type(None)]
        if len(args) == 1 and isinstance(args[0], type) and hasattr(args[0], "__dataclass_fields__"):
            return args[0]
    origin = getattr(ft, "__origin__", None)
    if origin is typing.Union:
        args = [a for a in ft.__args__ if a is not type(None)]
        if len(args) == 1 and isinstance(args[0], type) and hasattr(args[0], "__dataclass_fields__"):
            return args[0]
    return None


def _build_nested(cls: type, data: dict[str, Any]) -> Any:
    """Construct a frozen dataclass, recursively building nested dataclass fields."""
    if not isinstance(data, dict):
        return data
    field_types = typing.get_type_hints(cls)
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in field_types:
            continue
        dc_type = _get_dataclass_type(field_types[key])
        if dc_type is not None:
            if not isinstance(value, dict):
                raise ConfigError(f"'{key}' must be a mapping")
            kwargs[key] = _build_nested(dc_type, value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


def load_config(path: str | Path) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Relative declaration and file-state paths are resolved against the
    directory holding the configuration file.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must be a YAML mapping")

    raw = _walk_and_interpolate(raw)
    raw = _anchor_paths(raw, path.parent)
    config = _build_nested(AppConfig, raw)
    _validate(config)
    return config


def _anchor_paths(raw: dict[str, Any], base: Path) -> dict[str, Any]:
    decls = raw.get("declarations")
    if isinstance(decls, str):
        decls = [decls]
    if isinstance(decls, list):
        raw["declarations"] = [str(base / d) if not Path(d).is_absolute() else d for d in decls]
    state = raw.get("state")
    if isinstance(state, dict) and isinstance(state.get("path"), str) and not Path(state["path"]).is_absolute():
        state["path"] = str(base / state["path"])
    return raw


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    if not config.declarations:
        raise ConfigError("At least one declarations file must be listed under 'declarations'")

    if config.state.backend not in STATE_BACKENDS:
        raise ConfigError(f"state.backend must be one of {', '.join(STATE_BACKENDS)}")
    if config.state.backend == "s3" and not config.state.bucket:
        raise ConfigError("state.bucket is required when state.backend is 's3'")
    if config.state.backend == "file" and not config.state.path:
        raise ConfigError("state.path is required when state.backend is 'file'")

    if config.executor.parallelism < 1:
        raise ConfigError("executor.parallelism must be >= 1")
    if config.executor.max_attempts < 1:
        raise ConfigError("executor.max_attempts must be >= 1")
    if config.executor.backoff_base_seconds < 0:
        raise ConfigError("executor.backoff_base_seconds must be >= 0")

    if config.reconcile.mode not in RECONCILE_MODES:
        raise ConfigError(f"reconcile.mode must be one of {', '.join(RECONCILE_MODES)}")
    if config.reconcile.interval_seconds < 5:
        raise ConfigError("reconcile.interval_seconds must be >= 5")

    if config.logging.format not in ("json", "text"):
        raise ConfigError("logging.format must be 'json' or 'text'")
