from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from src.cluster.models import Pod, Workload
from src.common.errors import SelectorError
from src.common.identifiers import ANNOTATION_AUTO_MAPPING_ENABLED, is_truthy

from .selector import build_selector

PodPolicy = Callable[[Sequence[Pod]], Optional[Pod]]
ContainerPolicy = Callable[[Pod, str], List[str]]


def eligibility_skip_reason(workload: Workload) -> Optional[str]:
    """Return why ``workload`` is not opted in, or None when it should be processed."""

    if workload.annotations is None:
        return "no annotations"
    raw = workload.annotations.get(ANNOTATION_AUTO_MAPPING_ENABLED)
    if raw is None:
        return f"annotation {ANNOTATION_AUTO_MAPPING_ENABLED} missing"
    if not is_truthy(raw):
        return f"annotation {ANNOTATION_AUTO_MAPPING_ENABLED}={raw!r} is not true"
    if workload.ready_replicas <= 0:
        return "status.readyReplicas == 0"
    return None


def workload_selector(workload: Workload) -> str:
    # An empty selector would match every pod in the namespace.
    if not workload.selector:
        raise SelectorError(f"{workload.namespace}/{workload.name}: no selector labels")
    return build_selector(workload.selector)


def first_pod(pods: Sequence[Pod]) -> Optional[Pod]:
    """Pick the first listed pod; replicas are assumed to share one filesystem layout."""

    return pods[0] if pods else None


def preferred_container(pod: Pod, workload_name: str) -> str:
    if not pod.containers:
        raise ValueError(f"pod {pod.namespace}/{pod.name} declares no containers")
    if workload_name in pod.containers:
        return workload_name
    return pod.containers[0]


def containers_to_probe(pod: Pod, workload_name: str, probe_all: bool = True) -> List[str]:
    """Order the pod's containers for discovery, the one named after the workload first."""

    preferred = preferred_container(pod, workload_name)
    if not probe_all:
        return [preferred]
    return [preferred] + [name for name in pod.containers if name != preferred]


def container_policy(probe_all: bool) -> ContainerPolicy:
    def policy(pod: Pod, workload_name: str) -> List[str]:
        return containers_to_probe(pod, workload_name, probe_all)

    return policy


__all__ = [
    "ContainerPolicy",
    "PodPolicy",
    "container_policy",
    "containers_to_probe",
    "eligibility_skip_reason",
    "first_pod",
    "preferred_container",
    "workload_selector",
]
