"""Identifiers agreed with workload authors and the log shipper."""

from __future__ import annotations

from typing import Optional

ANNOTATION_AUTO_MAPPING_ENABLED = "io.github.logtube.auto-mapping/enabled"

VOLUME_NAME_AUTO_MAPPING = "vol-logtube-auto-mapping"

ENV_AUTO_MAPPING = "LOGTUBE_K8S_AUTO_MAPPING"
ENV_LOGS_HOST_PATH = "LOGTUBE_LOGS_HOST_PATH"

ENV_MAPPING_DRY_RUN = "AUTOMAPPING_DRY_RUN"
ENV_MIGRATION_DRY_RUN = "MIGRATE_LOGTUBE_MAPPING_DRY_RUN"

LEGACY_HOST_PATH_MARKER = "filebeat-collect-logs"

HOST_PATH_DIRECTORY_OR_CREATE = "DirectoryOrCreate"

KIND_DEPLOYMENT = "Deployment"
KIND_STATEFULSET = "StatefulSet"
WORKLOAD_KINDS = (KIND_DEPLOYMENT, KIND_STATEFULSET)

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


def parse_bool(text: Optional[str]) -> bool:
    """Parse a strict boolean literal, raising ValueError for anything else."""

    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean literal: {text!r}")


def is_truthy(text: Optional[str]) -> bool:
    try:
        return parse_bool(text)
    except ValueError:
        return False


__all__ = [
    "ANNOTATION_AUTO_MAPPING_ENABLED",
    "VOLUME_NAME_AUTO_MAPPING",
    "ENV_AUTO_MAPPING",
    "ENV_LOGS_HOST_PATH",
    "ENV_MAPPING_DRY_RUN",
    "ENV_MIGRATION_DRY_RUN",
    "LEGACY_HOST_PATH_MARKER",
    "HOST_PATH_DIRECTORY_OR_CREATE",
    "KIND_DEPLOYMENT",
    "KIND_STATEFULSET",
    "WORKLOAD_KINDS",
    "parse_bool",
    "is_truthy",
]
