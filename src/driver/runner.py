from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from src.cluster.models import Pod, Workload
from src.common.config import MODE_MAPPING, MODE_MIGRATION, AutoMappingConfig
from src.common.errors import ClusterError, ConfigError, WorkloadError
from src.discovery.probe import Discovery, build_discovery
from src.patcher.builder import build_mapping_plan, build_migration_plan
from src.patcher.operations import PatchPlan
from src.patcher.render import RenderedPatch, render
from src.selection.policy import (
    ContainerPolicy,
    PodPolicy,
    container_policy,
    eligibility_skip_reason,
    first_pod,
    workload_selector,
)

logger = logging.getLogger(__name__)

DISPOSITION_SKIPPED = "skipped"
DISPOSITION_PATCHED = "patched"
DISPOSITION_ERROR = "error"


class ClusterAPI(Protocol):
    def list_namespaces(self) -> List[str]:
        ...

    def list_workloads(self, namespace: str, kind: str) -> List[Workload]:
        ...

    def list_pods(self, namespace: str, selector: str) -> List[Pod]:
        ...

    def patch_workload(self, kind: str, namespace: str, name: str, patch_type: str, document: str) -> None:
        ...


@dataclass
class WorkloadOutcome:
    kind: str
    namespace: str
    name: str
    disposition: str
    reason: Optional[str] = None
    patch: Optional[RenderedPatch] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "disposition": self.disposition,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        if self.patch is not None:
            data["patch_type"] = self.patch.patch_type
            data["patch"] = self.patch.document
        return data


@dataclass
class RunReport:
    mode: str
    dry_run: bool
    namespaces: List[str] = field(default_factory=list)
    outcomes: List[WorkloadOutcome] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        totals = {DISPOSITION_PATCHED: 0, DISPOSITION_SKIPPED: 0, DISPOSITION_ERROR: 0}
        for outcome in self.outcomes:
            totals[outcome.disposition] = totals.get(outcome.disposition, 0) + 1
        return totals

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "dry_run": self.dry_run,
            "namespaces": list(self.namespaces),
            "counts": self.counts(),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }

    def write(self, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")


def scope_prefix(kind: str, namespace: str, name: str) -> str:
    label = f"{namespace}/{name}"
    if len(label) < 24:
        padding = "-" * (24 - len(label))
    elif len(label) < 48:
        padding = "-" * (48 - len(label))
    else:
        padding = ""
    return f"└ {kind.lower()}: [{label}] {padding}".rstrip()


class Runner:
    """Walk namespaces, then workload kinds, then workloads, patching each eligible one.

    Enumeration failures raise ClusterError and end the run. Anything that goes
    wrong inside one workload is recorded as that workload's outcome and the
    walk continues.
    """

    def __init__(
        self,
        config: AutoMappingConfig,
        cluster: ClusterAPI,
        *,
        mode: str = MODE_MAPPING,
        discovery: Optional[Discovery] = None,
        pod_policy: PodPolicy = first_pod,
        containers: Optional[ContainerPolicy] = None,
    ) -> None:
        if mode not in (MODE_MAPPING, MODE_MIGRATION):
            raise ConfigError(f"unknown mode: {mode!r}")
        self.config = config
        self.cluster = cluster
        self.mode = mode
        if discovery is None and mode == MODE_MAPPING:
            discovery = build_discovery(config, cluster)  # type: ignore[arg-type]
        self.discovery = discovery
        self.pod_policy = pod_policy
        self.containers = containers or container_policy(config.probe_all_containers)
        self._aborted = threading.Event()
        self._fatal_lock = threading.Lock()
        self._fatal: Optional[BaseException] = None

    def run(self) -> RunReport:
        self._aborted.clear()
        self._fatal = None
        report = RunReport(mode=self.mode, dry_run=self.config.dry_run)
        for namespace in self._namespaces():
            logger.info("namespace: [%s]", namespace)
            report.namespaces.append(namespace)
            for kind in self.config.kinds:
                workloads = self.cluster.list_workloads(namespace, kind)
                report.outcomes.extend(self._process_batch(workloads))
        return report

    def _namespaces(self) -> List[str]:
        listed = self.cluster.list_namespaces()
        if not self.config.namespaces:
            return listed
        allowed = set(self.config.namespaces)
        return [namespace for namespace in listed if namespace in allowed]

    def _process_batch(self, workloads: Sequence[Workload]) -> List[WorkloadOutcome]:
        if self.config.jobs <= 1 or len(workloads) <= 1:
            return [self.process_workload(workload) for workload in workloads]
        jobs = min(self.config.jobs, len(workloads))
        outcomes: Dict[int, WorkloadOutcome] = {}
        executor = ThreadPoolExecutor(max_workers=jobs)
        try:
            futures = {executor.submit(self._process_pooled, workload): index for index, workload in enumerate(workloads)}
            for future in as_completed(futures):
                outcomes[futures[future]] = future.result()
        except BaseException as exc:
            # Queued workloads never start and in-flight ones stop before patching.
            self._aborted.set()
            executor.shutdown(wait=True, cancel_futures=True)
            fatal = self._fatal or exc
            if fatal is exc:
                raise
            raise fatal from None
        executor.shutdown(wait=True)
        return [outcomes[index] for index in range(len(workloads))]

    def _process_pooled(self, workload: Workload) -> WorkloadOutcome:
        if self._aborted.is_set():
            raise ClusterError("run aborted")
        try:
            return self.process_workload(workload)
        except Exception as exc:
            with self._fatal_lock:
                if self._fatal is None:
                    self._fatal = exc
            self._aborted.set()
            raise

    def process_workload(self, workload: Workload) -> WorkloadOutcome:
        try:
            outcome = self._evaluate(workload)
        except WorkloadError as exc:
            outcome = self._outcome(workload, DISPOSITION_ERROR, str(exc))
        self._log_outcome(outcome)
        return outcome

    def _evaluate(self, workload: Workload) -> WorkloadOutcome:
        if self.mode == MODE_MIGRATION:
            plan = build_migration_plan(workload, self.config.legacy_marker)
            if plan.is_empty:
                return self._outcome(workload, DISPOSITION_SKIPPED, "no legacy volumes")
        else:
            reason = eligibility_skip_reason(workload)
            if reason is not None:
                return self._outcome(workload, DISPOSITION_SKIPPED, reason)
            selector = workload_selector(workload)
            pod = self.pod_policy(self.cluster.list_pods(workload.namespace, selector))
            if pod is None:
                return self._outcome(workload, DISPOSITION_SKIPPED, f"no pods match {selector}")
            if not pod.containers:
                return self._outcome(workload, DISPOSITION_SKIPPED, f"pod {pod.name} declares no containers")
            plan = build_mapping_plan(workload, self._discover(workload, pod), self.config.host_path_root)

        return self._apply(workload, plan)

    def _discover(self, workload: Workload, pod: Pod) -> Dict[str, Optional[str]]:
        if self.discovery is None:
            raise ConfigError("mapping mode requires a discovery strategy")
        paths: Dict[str, Optional[str]] = {}
        for container in self.containers(pod, workload.name):
            path = self.discovery.discover(pod, container)
            if path is None:
                logger.debug("%s/%s: no log path in container %s", workload.namespace, workload.name, container)
            paths[container] = path
        return paths

    def _apply(self, workload: Workload, plan: PatchPlan) -> WorkloadOutcome:
        scope = scope_prefix(workload.kind, workload.namespace, workload.name)
        for warning in plan.warnings:
            logger.warning("%s %s", scope, warning)
        rendered = render(plan, workload, self.config.patch_format)
        wire = rendered.to_wire()
        if self.config.dry_run:
            logger.info("%s %s patch: %s", scope, rendered.patch_type, wire)
        else:
            logger.debug("%s %s patch: %s", scope, rendered.patch_type, wire)
            if self._aborted.is_set():
                raise ClusterError("run aborted")
            self.cluster.patch_workload(workload.kind, workload.namespace, workload.name, rendered.patch_type, wire)
        return self._outcome(workload, DISPOSITION_PATCHED, patch=rendered)

    @staticmethod
    def _outcome(
        workload: Workload,
        disposition: str,
        reason: Optional[str] = None,
        patch: Optional[RenderedPatch] = None,
    ) -> WorkloadOutcome:
        return WorkloadOutcome(
            kind=workload.kind,
            namespace=workload.namespace,
            name=workload.name,
            disposition=disposition,
            reason=reason,
            patch=patch,
        )

    @staticmethod
    def _log_outcome(outcome: WorkloadOutcome) -> None:
        scope = scope_prefix(outcome.kind, outcome.namespace, outcome.name)
        if outcome.disposition == DISPOSITION_ERROR:
            logger.warning("%s failed: %s", scope, outcome.reason)
        elif outcome.disposition == DISPOSITION_SKIPPED:
            logger.info("%s skipped: %s", scope, outcome.reason)
        else:
            logger.info("%s %s", scope, outcome.disposition)


__all__ = [
    "DISPOSITION_ERROR",
    "DISPOSITION_PATCHED",
    "DISPOSITION_SKIPPED",
    "Runner",
    "RunReport",
    "WorkloadOutcome",
    "scope_prefix",
]
