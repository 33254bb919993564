import json
import logging
import tempfile
import time
import unittest
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import yaml

from src.cluster.kubectl import ExecResult
from src.cluster.models import Pod, Workload
from src.common.config import AutoMappingConfig
from src.common.errors import ClusterError, ExecTransportError, PatchApplyError
from src.driver.runner import Runner, scope_prefix
from src.patcher.preview import preview

ENABLED = {"io.github.logtube.auto-mapping/enabled": "true"}


def _deployment(
    name: str,
    namespace: str = "prod",
    annotations: Optional[Dict[str, str]] = None,
    ready: int = 2,
    selector: Optional[Dict[str, str]] = None,
    containers: Tuple[str, ...] = (),
    kind: str = "Deployment",
) -> Workload:
    manifest = {
        "apiVersion": "apps/v1",
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "selector": {"matchLabels": {"app": name} if selector is None else selector},
            "template": {
                "spec": {"containers": [{"name": c, "image": f"{c}:1.0"} for c in (containers or (name,))]}
            },
        },
        "status": {"readyReplicas": ready},
    }
    if annotations is not None:
        manifest["metadata"]["annotations"] = annotations
    return Workload.from_manifest(manifest, kind=kind)


class FakeCluster:
    def __init__(self) -> None:
        self.namespaces: List[str] = ["prod"]
        self.workloads: Dict[Tuple[str, str], List[Workload]] = {}
        self.pods: Dict[Tuple[str, str], List[Pod]] = {}
        self.env: Dict[Tuple[str, str], str] = {}
        self.exec_errors: Dict[str, Exception] = {}
        self.patch_errors: Dict[str, Exception] = {}
        self.fail_list: Optional[str] = None
        self.forbidden_selectors: Set[str] = set()
        self.list_pods_delay = 0.0
        self.pod_queries: List[Tuple[str, str]] = []
        self.exec_calls: List[Tuple[str, str]] = []
        self.patches: List[Tuple[str, str, str, str, str]] = []

    def list_namespaces(self) -> List[str]:
        if self.fail_list == "namespaces":
            raise ClusterError("namespaces is forbidden")
        return list(self.namespaces)

    def list_workloads(self, namespace: str, kind: str) -> List[Workload]:
        if self.fail_list == "workloads":
            raise ClusterError("deployments.apps is forbidden")
        return list(self.workloads.get((namespace, kind), []))

    def list_pods(self, namespace: str, selector: str) -> List[Pod]:
        if self.fail_list == "pods":
            raise ClusterError("pods is forbidden")
        if selector in self.forbidden_selectors:
            raise ClusterError(f"pods is forbidden for {selector}")
        if self.list_pods_delay:
            time.sleep(self.list_pods_delay)
        self.pod_queries.append((namespace, selector))
        return list(self.pods.get((namespace, selector), []))

    def exec_in_container(self, namespace, pod, container, script, *, timeout=None) -> ExecResult:
        self.exec_calls.append((pod, container))
        if pod in self.exec_errors:
            raise self.exec_errors[pod]
        value = self.env.get((pod, container), "")
        return ExecResult(stdout=(value + "\n").encode("utf-8"), stderr=b"", returncode=0)

    def patch_workload(self, kind, namespace, name, patch_type, document) -> None:
        if name in self.patch_errors:
            raise self.patch_errors[name]
        self.patches.append((kind, namespace, name, patch_type, document))


class RunnerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cluster = FakeCluster()
        self.config = AutoMappingConfig(host_path_root="/data/logtube")

    def _add(self, workload: Workload, pods: List[Pod]) -> None:
        key = (workload.namespace, workload.kind)
        self.cluster.workloads.setdefault(key, []).append(workload)
        selector = ",".join(f"{k}={v}" for k, v in sorted(workload.selector.items()))
        self.cluster.pods[(workload.namespace, selector)] = pods

    def test_scenario_patches_opted_in_workload(self) -> None:
        web = _deployment("web", annotations=ENABLED)
        self._add(web, [Pod("prod", "web-7f9c", ("web",)), Pod("prod", "web-2b1d", ("web",))])
        self.cluster.env[("web-7f9c", "web")] = "/var/log/web"

        with self.assertLogs("src.driver.runner", level="INFO") as logs:
            report = Runner(self.config, self.cluster).run()

        self.assertEqual(self.cluster.pod_queries, [("prod", "app=web")])
        self.assertEqual(self.cluster.exec_calls, [("web-7f9c", "web")])
        self.assertEqual(len(self.cluster.patches), 1)
        kind, namespace, name, patch_type, document = self.cluster.patches[0]
        self.assertEqual((kind, namespace, name, patch_type), ("Deployment", "prod", "web", "strategic"))
        pod_spec = json.loads(document)["spec"]["template"]["spec"]
        self.assertEqual(
            pod_spec["volumes"],
            [
                {
                    "name": "vol-logtube-auto-mapping",
                    "hostPath": {"path": "/data/logtube/prod-web", "type": "DirectoryOrCreate"},
                }
            ],
        )
        self.assertEqual(
            pod_spec["containers"],
            [{"name": "web", "volumeMounts": [{"mountPath": "/var/log/web", "name": "vol-logtube-auto-mapping"}]}],
        )
        self.assertEqual(report.counts(), {"patched": 1, "skipped": 0, "error": 0})
        self.assertIn("INFO:src.driver.runner:namespace: [prod]", logs.output)
        self.assertTrue(any("deployment: [prod/web]" in line and line.endswith("patched") for line in logs.output))

    def test_scenario_missing_annotation_is_skipped(self) -> None:
        web = _deployment("web", annotations={})
        self._add(web, [Pod("prod", "web-7f9c", ("web",))])

        with self.assertLogs("src.driver.runner", level="INFO") as logs:
            report = Runner(self.config, self.cluster).run()

        self.assertEqual(self.cluster.patches, [])
        self.assertEqual(self.cluster.exec_calls, [])
        self.assertEqual(report.outcomes[0].disposition, "skipped")
        self.assertTrue(any("skipped" in line and "prod/web" in line for line in logs.output))

    def test_false_annotation_never_builds_patch(self) -> None:
        for value in ("false", "0", "nope"):
            cluster = FakeCluster()
            web = _deployment("web", annotations={"io.github.logtube.auto-mapping/enabled": value})
            cluster.workloads[("prod", "Deployment")] = [web]
            report = Runner(self.config, cluster).run()
            self.assertEqual(cluster.patches, [], value)
            self.assertIsNone(report.outcomes[0].patch)

    def test_zero_ready_replicas_and_zero_pods_are_skips(self) -> None:
        idle = _deployment("idle", annotations=ENABLED, ready=0)
        ghost = _deployment("ghost", annotations=ENABLED)
        self._add(idle, [Pod("prod", "idle-1", ("idle",))])
        self._add(ghost, [])

        report = Runner(self.config, self.cluster).run()

        self.assertEqual([o.disposition for o in report.outcomes], ["skipped", "skipped"])
        self.assertEqual(report.outcomes[0].reason, "status.readyReplicas == 0")
        self.assertIn("no pods", report.outcomes[1].reason)
        self.assertEqual(self.cluster.pod_queries, [("prod", "app=ghost")])
        self.assertEqual(self.cluster.patches, [])

    def test_empty_selector_is_workload_error(self) -> None:
        broad = _deployment("broad", annotations=ENABLED, selector={})
        self.cluster.workloads[("prod", "Deployment")] = [broad]

        report = Runner(self.config, self.cluster).run()

        self.assertEqual(report.outcomes[0].disposition, "error")
        self.assertIn("no selector labels", report.outcomes[0].reason)
        self.assertEqual(self.cluster.pod_queries, [])

    def test_no_paths_reports_no_mounts_updated(self) -> None:
        web = _deployment("web", annotations=ENABLED, containers=("web", "sidecar"))
        self._add(web, [Pod("prod", "web-1", ("sidecar", "web"))])

        report = Runner(self.config, self.cluster).run()

        self.assertEqual(self.cluster.exec_calls, [("web-1", "web"), ("web-1", "sidecar")])
        self.assertEqual(report.outcomes[0].disposition, "error")
        self.assertEqual(report.outcomes[0].reason, "no volume mounts updated")
        self.assertEqual(self.cluster.patches, [])

    def test_failures_are_isolated_per_workload(self) -> None:
        broken = _deployment("broken", annotations=ENABLED)
        rejected = _deployment("rejected", annotations=ENABLED)
        healthy = _deployment("healthy", annotations=ENABLED)
        self._add(broken, [Pod("prod", "broken-1", ("broken",))])
        self._add(rejected, [Pod("prod", "rejected-1", ("rejected",))])
        self._add(healthy, [Pod("prod", "healthy-1", ("healthy",))])
        self.cluster.exec_errors["broken-1"] = ExecTransportError("upgrade request failed")
        self.cluster.env[("rejected-1", "rejected")] = "/var/log/rejected"
        self.cluster.patch_errors["rejected"] = PatchApplyError("admission webhook denied the request")
        self.cluster.env[("healthy-1", "healthy")] = "/var/log/healthy"

        report = Runner(self.config, self.cluster).run()

        self.assertEqual([o.disposition for o in report.outcomes], ["error", "error", "patched"])
        self.assertIn("upgrade request failed", report.outcomes[0].reason)
        self.assertIn("admission webhook", report.outcomes[1].reason)
        self.assertEqual([p[2] for p in self.cluster.patches], ["healthy"])

    def test_enumeration_failures_are_fatal(self) -> None:
        web = _deployment("web", annotations=ENABLED)
        self._add(web, [Pod("prod", "web-1", ("web",))])
        for stage in ("namespaces", "workloads", "pods"):
            self.cluster.fail_list = stage
            with self.assertRaises(ClusterError):
                Runner(self.config, self.cluster).run()

    def test_dry_run_logs_identical_patch_without_applying(self) -> None:
        web = _deployment("web", annotations=ENABLED)
        self._add(web, [Pod("prod", "web-1", ("web",))])
        self.cluster.env[("web-1", "web")] = "/var/log/web"

        live = Runner(self.config, self.cluster).run()
        applied = self.cluster.patches[0][4]
        self.cluster.patches.clear()

        dry_config = self.config.with_overrides(dry_run=True)
        with self.assertLogs("src.driver.runner", level="INFO") as logs:
            dry = Runner(dry_config, self.cluster).run()

        self.assertEqual(self.cluster.patches, [])
        self.assertEqual(dry.outcomes[0].patch.to_wire(), applied)
        self.assertEqual(live.outcomes[0].patch, dry.outcomes[0].patch)
        self.assertTrue(any(applied in line for line in logs.output))

    def test_statefulsets_are_processed_after_deployments(self) -> None:
        web = _deployment("web", annotations=ENABLED)
        db = _deployment("db", annotations=ENABLED, kind="StatefulSet")
        self._add(web, [Pod("prod", "web-1", ("web",))])
        self._add(db, [Pod("prod", "db-0", ("db",))])
        self.cluster.env[("web-1", "web")] = "/var/log/web"
        self.cluster.env[("db-0", "db")] = "/var/lib/db/log"

        report = Runner(self.config, self.cluster).run()

        self.assertEqual([(o.kind, o.name) for o in report.outcomes], [("Deployment", "web"), ("StatefulSet", "db")])
        self.assertEqual([p[0] for p in self.cluster.patches], ["Deployment", "StatefulSet"])

    def test_namespace_allow_list(self) -> None:
        self.cluster.namespaces = ["kube-system", "prod", "staging"]
        config = self.config.with_overrides(namespaces=["staging", "prod"])
        report = Runner(config, self.cluster).run()
        self.assertEqual(report.namespaces, ["prod", "staging"])

    def test_worker_pool_preserves_isolation_and_order(self) -> None:
        names = [f"svc{i}" for i in range(6)]
        for name in names:
            self._add(_deployment(name, annotations=ENABLED), [Pod("prod", f"{name}-1", (name,))])
            self.cluster.env[(f"{name}-1", name)] = f"/var/log/{name}"
        self.cluster.exec_errors["svc2-1"] = ExecTransportError("timed out")

        report = Runner(self.config.with_overrides(jobs=3), self.cluster).run()

        self.assertEqual([o.name for o in report.outcomes], names)
        self.assertEqual([o.disposition for o in report.outcomes].count("patched"), 5)
        self.assertEqual(report.outcomes[2].disposition, "error")
        self.assertEqual(sorted(p[2] for p in self.cluster.patches), sorted(n for n in names if n != "svc2"))

    def test_fatal_error_in_pool_stops_remaining_workloads(self) -> None:
        names = ["bad"] + [f"svc{i}" for i in range(5)]
        for name in names:
            self._add(_deployment(name, annotations=ENABLED), [Pod("prod", f"{name}-1", (name,))])
            self.cluster.env[(f"{name}-1", name)] = f"/var/log/{name}"
        self.cluster.forbidden_selectors.add("app=bad")
        self.cluster.list_pods_delay = 0.2

        for jobs in (1, 2):
            self.cluster.patches.clear()
            with self.assertRaises(ClusterError) as ctx:
                Runner(self.config.with_overrides(jobs=jobs), self.cluster).run()
            self.assertIn("app=bad", str(ctx.exception))
            self.assertEqual(self.cluster.patches, [], f"jobs={jobs}")

    def test_unlisted_candidate_answer_fails_without_patching(self) -> None:
        web = _deployment("web", annotations=ENABLED)
        self._add(web, [Pod("prod", "web-1", ("web",))])
        self.cluster.env[("web-1", "web")] = "/etc"

        report = Runner(self.config.with_overrides(discovery="candidates"), self.cluster).run()

        self.assertEqual(report.outcomes[0].disposition, "error")
        self.assertIn("/etc", report.outcomes[0].reason)
        self.assertIsNone(report.outcomes[0].patch)
        self.assertEqual(self.cluster.patches, [])

    def test_json_patch_format(self) -> None:
        web = _deployment("web", annotations=ENABLED)
        self._add(web, [Pod("prod", "web-1", ("web",))])
        self.cluster.env[("web-1", "web")] = "/var/log/web"

        Runner(self.config.with_overrides(patch_format="json"), self.cluster).run()

        _, _, _, patch_type, document = self.cluster.patches[0]
        self.assertEqual(patch_type, "json")
        ops = json.loads(document)
        self.assertEqual(ops[0]["path"], "/spec/template/spec/volumes")
        self.assertEqual(ops[1]["path"], "/spec/template/spec/containers/0/volumeMounts")

    def test_report_is_written_as_json(self) -> None:
        web = _deployment("web", annotations=ENABLED)
        self._add(web, [Pod("prod", "web-1", ("web",))])
        self.cluster.env[("web-1", "web")] = "/var/log/web"
        report = Runner(self.config, self.cluster).run()
        with tempfile.TemporaryDirectory() as tmp_dir:
            out = Path(tmp_dir) / "reports" / "run.json"
            report.write(out)
            data = json.loads(out.read_text(encoding="utf-8"))
        self.assertEqual(data["mode"], "mapping")
        self.assertEqual(data["counts"]["patched"], 1)
        self.assertEqual(data["outcomes"][0]["patch_type"], "strategic")


LEGACY_WEB = """
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
  namespace: prod
spec:
  selector:
    matchLabels:
      app: web
  template:
    spec:
      containers:
        - name: web
          image: web:3.2
          volumeMounts:
            - name: legacy-vol
              mountPath: /data/logs
      volumes:
        - name: legacy-vol
          hostPath:
            path: /var/lib/filebeat-collect-logs/prod-web
"""


class MigrationRunnerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cluster = FakeCluster()
        self.cluster.namespaces = ["prod", "staging"]
        self.config = AutoMappingConfig()

    def test_scenario_migrates_every_legacy_workload(self) -> None:
        web = Workload.from_manifest(yaml.safe_load(LEGACY_WEB), kind="Deployment")
        api_manifest = yaml.safe_load(LEGACY_WEB)
        api_manifest["metadata"].update({"name": "api", "namespace": "staging"})
        api = Workload.from_manifest(api_manifest, kind="Deployment")
        self.cluster.workloads[("prod", "Deployment")] = [web]
        self.cluster.workloads[("staging", "Deployment")] = [api]

        report = Runner(self.config, self.cluster, mode="migration").run()

        self.assertEqual([(p[1], p[2]) for p in self.cluster.patches], [("prod", "web"), ("staging", "api")])
        self.assertEqual(self.cluster.pod_queries, [])
        self.assertEqual(self.cluster.exec_calls, [])
        pod_spec = json.loads(self.cluster.patches[0][4])["spec"]["template"]["spec"]
        self.assertEqual(pod_spec["volumes"], [{"name": "legacy-vol", "$patch": "delete"}])
        self.assertEqual(
            pod_spec["containers"],
            [
                {
                    "name": "web",
                    "volumeMounts": [{"mountPath": "/data/logs", "$patch": "delete"}],
                    "env": [{"name": "LOGTUBE_K8S_AUTO_MAPPING", "value": "/data/logs"}],
                }
            ],
        )
        self.assertEqual(report.counts()["patched"], 2)

    def test_second_migration_run_applies_nothing(self) -> None:
        web = Workload.from_manifest(yaml.safe_load(LEGACY_WEB), kind="Deployment")
        self.cluster.workloads[("prod", "Deployment")] = [web]
        Runner(self.config, self.cluster, mode="migration").run()
        rendered = Runner(self.config.with_overrides(dry_run=True), self.cluster, mode="migration").run().outcomes[0].patch

        migrated = Workload.from_manifest(preview(web.manifest, rendered), kind="Deployment")
        self.cluster.workloads[("prod", "Deployment")] = [migrated]
        self.cluster.patches.clear()
        report = Runner(self.config, self.cluster, mode="migration").run()

        self.assertEqual(self.cluster.patches, [])
        self.assertEqual(report.outcomes[0].disposition, "skipped")
        self.assertIsNone(report.outcomes[0].patch)


class ScopePrefixTests(unittest.TestCase):
    def test_short_labels_are_padded(self) -> None:
        self.assertEqual(scope_prefix("Deployment", "prod", "web"), "└ deployment: [prod/web] " + "-" * 16)

    def test_long_labels_are_not_padded(self) -> None:
        name = "x" * 60
        self.assertEqual(scope_prefix("StatefulSet", "prod", name), f"└ statefulset: [prod/{name}]")


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
