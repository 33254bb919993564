"""Cluster access: kubectl adapter and typed workload views."""

from .kubectl import ExecResult, KubectlClient
from .models import ContainerSpec, EnvVar, Pod, VolumeMountSpec, VolumeSpec, Workload

__all__ = [
    "ContainerSpec",
    "EnvVar",
    "ExecResult",
    "KubectlClient",
    "Pod",
    "VolumeMountSpec",
    "VolumeSpec",
    "Workload",
]
