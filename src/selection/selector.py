"""Label-selector strings for listing the pods of a workload."""

from __future__ import annotations

from typing import Dict, Mapping


def build_selector(labels: Mapping[str, str]) -> str:
    """Join ``labels`` into the ``k1=v1,k2=v2`` equality conjunction kubectl accepts."""

    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def parse_selector(text: str) -> Dict[str, str]:
    labels: Dict[str, str] = {}
    for clause in text.split(","):
        clause = clause.strip()
        if not clause:
            continue
        key, sep, value = clause.partition("=")
        if not sep or not key or value.startswith("="):
            raise ValueError(f"not an equality clause: {clause!r}")
        labels[key.strip()] = value.strip()
    return labels


__all__ = ["build_selector", "parse_selector"]
