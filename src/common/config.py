from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import yaml

from .errors import ConfigError
from .identifiers import (
    ENV_LOGS_HOST_PATH,
    ENV_MAPPING_DRY_RUN,
    ENV_MIGRATION_DRY_RUN,
    LEGACY_HOST_PATH_MARKER,
    WORKLOAD_KINDS,
    parse_bool,
)

DISCOVERY_ENV = "env"
DISCOVERY_CANDIDATES = "candidates"
DISCOVERY_STRATEGIES = (DISCOVERY_ENV, DISCOVERY_CANDIDATES)

PATCH_FORMAT_STRATEGIC = "strategic"
PATCH_FORMAT_JSON = "json"
PATCH_FORMATS = (PATCH_FORMAT_STRATEGIC, PATCH_FORMAT_JSON)

MODE_MAPPING = "mapping"
MODE_MIGRATION = "migration"

# Ordered; the probe reports the first one that exists as a directory.
DEFAULT_CANDIDATE_PATHS: Tuple[str, ...] = (
    "/var/log/app",
    "/app/logs",
    "/opt/app/logs",
    "/usr/local/tomcat/logs",
    "/var/log/nginx",
    "/var/log/httpd",
    "/data/logs",
)


@dataclass(frozen=True)
class AutoMappingConfig:
    dry_run: bool = False
    host_path_root: str = ""
    discovery: str = DISCOVERY_ENV
    patch_format: str = PATCH_FORMAT_STRATEGIC
    candidate_paths: Tuple[str, ...] = DEFAULT_CANDIDATE_PATHS
    kinds: Tuple[str, ...] = WORKLOAD_KINDS
    namespaces: Tuple[str, ...] = ()
    kubectl: str = "kubectl"
    exec_timeout_seconds: float = 30.0
    chunk_size: int = 500
    jobs: int = 1
    probe_all_containers: bool = True
    legacy_marker: str = LEGACY_HOST_PATH_MARKER

    def with_overrides(self, **overrides: Any) -> "AutoMappingConfig":
        """Return a copy with every non-None override applied."""

        values = {key: value for key, value in overrides.items() if value is not None}
        for key in ("candidate_paths", "kinds", "namespaces"):
            if key in values:
                values[key] = tuple(values[key])
        return replace(self, **values)

    def validate(self, mode: str = MODE_MAPPING) -> "AutoMappingConfig":
        if mode == MODE_MAPPING:
            if not self.host_path_root:
                raise ConfigError(f"missing environment variable: {ENV_LOGS_HOST_PATH}")
            if not posixpath.isabs(self.host_path_root):
                raise ConfigError(f"host path root must be absolute: {self.host_path_root}")
        if self.discovery not in DISCOVERY_STRATEGIES:
            raise ConfigError(
                f"unknown discovery strategy {self.discovery!r}; expected one of {', '.join(DISCOVERY_STRATEGIES)}"
            )
        if self.patch_format not in PATCH_FORMATS:
            raise ConfigError(
                f"unknown patch format {self.patch_format!r}; expected one of {', '.join(PATCH_FORMATS)}"
            )
        unknown_kinds = [kind for kind in self.kinds if kind not in WORKLOAD_KINDS]
        if unknown_kinds or not self.kinds:
            raise ConfigError(f"workload kinds must be a non-empty subset of {', '.join(WORKLOAD_KINDS)}")
        if self.discovery == DISCOVERY_CANDIDATES:
            if not self.candidate_paths:
                raise ConfigError("candidate probe requires at least one candidate path")
            relative = [path for path in self.candidate_paths if not posixpath.isabs(path)]
            if relative:
                raise ConfigError(f"candidate paths must be absolute: {', '.join(relative)}")
        if self.exec_timeout_seconds <= 0:
            raise ConfigError("exec timeout must be positive")
        if self.chunk_size <= 0:
            raise ConfigError("chunk size must be positive")
        if self.jobs < 1:
            raise ConfigError("jobs must be at least 1")
        if not self.legacy_marker:
            raise ConfigError("legacy marker must not be empty")
        return self


def load_config(
    path: Optional[Path] = None,
    *,
    mode: str = MODE_MAPPING,
    environ: Optional[Mapping[str, str]] = None,
) -> AutoMappingConfig:
    """Build the run configuration from defaults, an optional YAML file and the environment."""

    env = os.environ if environ is None else environ
    config = AutoMappingConfig()
    if path is not None:
        config = config.with_overrides(**_config_values(_load_yaml(path)))

    dry_run_var = ENV_MIGRATION_DRY_RUN if mode == MODE_MIGRATION else ENV_MAPPING_DRY_RUN
    raw_dry_run = env.get(dry_run_var)
    if raw_dry_run:
        try:
            config = config.with_overrides(dry_run=parse_bool(raw_dry_run))
        except ValueError as exc:
            raise ConfigError(f"{dry_run_var}: {exc}") from exc
    host_path = env.get(ENV_LOGS_HOST_PATH)
    if host_path:
        config = config.with_overrides(host_path_root=host_path)
    return config


_KNOWN_KEYS = {
    "dry_run": bool,
    "host_path_root": str,
    "discovery": str,
    "patch_format": str,
    "candidate_paths": list,
    "kinds": list,
    "namespaces": list,
    "kubectl": str,
    "exec_timeout_seconds": (int, float),
    "chunk_size": int,
    "jobs": int,
    "probe_all_containers": bool,
    "legacy_marker": str,
}


def _config_values(data: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key, value in data.items():
        expected = _KNOWN_KEYS.get(key)
        if expected is None:
            raise ConfigError(f"unknown config key: {key!r}")
        if value is None:
            continue
        if expected is not bool and isinstance(value, bool):
            raise ConfigError(f"config key {key!r} must be a number, not a boolean")
        if not isinstance(value, expected):
            raise ConfigError(f"config key {key!r} has invalid type {type(value).__name__}")
        if isinstance(value, list):
            value = _string_tuple(key, value)
        values[key] = value
    return values


def _string_tuple(key: str, items: Sequence[Any]) -> Tuple[str, ...]:
    if not all(isinstance(item, str) for item in items):
        raise ConfigError(f"config key {key!r} must be a list of strings")
    return tuple(items)


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping")
    return data


__all__ = [
    "AutoMappingConfig",
    "DEFAULT_CANDIDATE_PATHS",
    "DISCOVERY_CANDIDATES",
    "DISCOVERY_ENV",
    "DISCOVERY_STRATEGIES",
    "MODE_MAPPING",
    "MODE_MIGRATION",
    "PATCH_FORMAT_JSON",
    "PATCH_FORMAT_STRATEGIC",
    "PATCH_FORMATS",
    "load_config",
]
