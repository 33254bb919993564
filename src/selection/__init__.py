"""Workload eligibility, selectors and representative pod/container policies."""

from .policy import (
    container_policy,
    containers_to_probe,
    eligibility_skip_reason,
    first_pod,
    preferred_container,
    workload_selector,
)
from .selector import build_selector, parse_selector

__all__ = [
    "build_selector",
    "container_policy",
    "containers_to_probe",
    "eligibility_skip_reason",
    "first_pod",
    "parse_selector",
    "preferred_container",
    "workload_selector",
]
