"""Run driver: namespace/workload iteration, outcome reporting and the CLI."""

from .runner import Runner, RunReport, WorkloadOutcome

__all__ = ["Runner", "RunReport", "WorkloadOutcome"]
