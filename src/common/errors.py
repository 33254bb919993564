from __future__ import annotations


class AutoMappingError(Exception):
    """Base class for every failure raised by the mapping engine."""


class ConfigError(AutoMappingError):
    """Raised when the run configuration is missing or invalid."""


class ClusterError(AutoMappingError):
    """Raised when the cluster cannot be reached or enumerated; aborts the run."""


class WorkloadError(AutoMappingError):
    """Raised for failures scoped to a single workload; the batch continues."""


class ExecTransportError(WorkloadError):
    """Raised when an exec session cannot be set up, streamed or times out."""


class ProbeResponseError(WorkloadError):
    """Raised when a probe answers with a path that cannot be trusted as a mount target."""


class SelectorError(WorkloadError):
    """Raised when a workload has no pod selector labels."""


class NoMountsUpdatedError(WorkloadError):
    """Raised when discovery produced no path for any container."""

    def __init__(self, message: str = "no volume mounts updated") -> None:
        super().__init__(message)


class PatchBuildError(WorkloadError):
    """Raised when a plan cannot be rendered against the workload snapshot."""


class PatchApplyError(WorkloadError):
    """Raised when the orchestration API rejects a patch."""


__all__ = [
    "AutoMappingError",
    "ConfigError",
    "ClusterError",
    "WorkloadError",
    "ExecTransportError",
    "ProbeResponseError",
    "SelectorError",
    "NoMountsUpdatedError",
    "PatchBuildError",
    "PatchApplyError",
]
