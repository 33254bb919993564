from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from src.common.errors import ClusterError, ExecTransportError, PatchApplyError
from src.common.identifiers import KIND_DEPLOYMENT, KIND_STATEFULSET

from .models import Pod, Workload

logger = logging.getLogger(__name__)

RESOURCE_NAMES = {
    KIND_DEPLOYMENT: "deployments.apps",
    KIND_STATEFULSET: "statefulsets.apps",
}

# kubectl reports its own failures this way; the remote command's stderr never carries them.
_TRANSPORT_ERROR_PREFIXES = ("error:", "Error from server", "Unable to connect to the server")
# Exit codes kubectl itself uses when it cannot start the remote process.
_TRANSPORT_EXIT_CODES = {126, 127}


@dataclass(frozen=True)
class ExecResult:
    stdout: bytes
    stderr: bytes
    returncode: int

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


class KubectlClient:
    """Cluster access through the kubectl binary and the active kubeconfig context."""

    def __init__(self, kubectl_cmd: str = "kubectl", *, chunk_size: int = 500) -> None:
        self.kubectl_cmd = kubectl_cmd
        self.chunk_size = chunk_size

    def list_namespaces(self) -> List[str]:
        items = self._get_items(["get", "namespaces"])
        return [str(item.get("metadata", {}).get("name")) for item in items if item.get("metadata")]

    def list_workloads(self, namespace: str, kind: str) -> List[Workload]:
        resource = RESOURCE_NAMES.get(kind)
        if resource is None:
            raise ClusterError(f"unsupported workload kind: {kind}")
        items = self._get_items(["get", resource, "-n", namespace])
        return [Workload.from_manifest(item, kind=kind) for item in items]

    def list_pods(self, namespace: str, selector: str) -> List[Pod]:
        items = self._get_items(["get", "pods", "-n", namespace, "-l", selector])
        return [Pod.from_manifest(item) for item in items]

    def exec_in_container(
        self,
        namespace: str,
        pod: str,
        container: str,
        script: str,
        *,
        timeout: Optional[float] = None,
    ) -> ExecResult:
        """Feed ``script`` to ``sh`` inside the container and capture both streams."""

        cmd = [self.kubectl_cmd, "exec", "-i", "-n", namespace, pod, "-c", container, "--", "sh"]
        try:
            completed = subprocess.run(
                cmd,
                input=script.encode("utf-8"),
                capture_output=True,
                check=False,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise ExecTransportError(f"kubectl executable not found: {self.kubectl_cmd}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ExecTransportError(
                f"exec into {namespace}/{pod}/{container} timed out after {timeout}s"
            ) from exc
        except OSError as exc:
            raise ExecTransportError(f"exec into {namespace}/{pod}/{container} failed: {exc}") from exc

        stderr = (completed.stderr or b"").decode("utf-8", errors="ignore").strip()
        if completed.returncode != 0 and (
            completed.returncode in _TRANSPORT_EXIT_CODES or stderr.startswith(_TRANSPORT_ERROR_PREFIXES)
        ):
            raise ExecTransportError(
                f"exec into {namespace}/{pod}/{container} failed: {stderr or f'exit status {completed.returncode}'}"
            )
        return ExecResult(stdout=completed.stdout or b"", stderr=completed.stderr or b"", returncode=completed.returncode)

    def patch_workload(
        self,
        kind: str,
        namespace: str,
        name: str,
        patch_type: str,
        document: str,
    ) -> None:
        resource = RESOURCE_NAMES.get(kind)
        if resource is None:
            raise PatchApplyError(f"unsupported workload kind: {kind}")
        cmd = [self.kubectl_cmd, "patch", resource, name, "-n", namespace, "--type", patch_type, "-p", document]
        try:
            subprocess.run(cmd, capture_output=True, check=True)
        except FileNotFoundError as exc:
            raise PatchApplyError(f"kubectl executable not found: {self.kubectl_cmd}") from exc
        except subprocess.CalledProcessError as exc:
            raise PatchApplyError(_describe_failure(exc)) from exc

    def _get_items(self, args: Sequence[str]) -> List[Dict[str, Any]]:
        cmd = [self.kubectl_cmd, *args, "-o", "json", f"--chunk-size={self.chunk_size}"]
        logger.debug("running %s", " ".join(cmd))
        try:
            completed = subprocess.run(cmd, capture_output=True, check=True)
        except FileNotFoundError as exc:
            raise ClusterError(f"kubectl executable not found: {self.kubectl_cmd}") from exc
        except subprocess.CalledProcessError as exc:
            raise ClusterError(f"{' '.join(args)}: {_describe_failure(exc)}") from exc
        try:
            data = json.loads(completed.stdout.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ClusterError(f"{' '.join(args)}: invalid JSON from kubectl: {exc}") from exc
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ClusterError(f"{' '.join(args)}: kubectl output has no items list")
        return [item for item in items if isinstance(item, dict)]


def _describe_failure(exc: subprocess.CalledProcessError) -> str:
    stderr = (exc.stderr or b"").decode("utf-8", errors="ignore").strip()
    stdout = (exc.stdout or b"").decode("utf-8", errors="ignore").strip()
    return stderr or stdout or str(exc)


__all__ = ["ExecResult", "KubectlClient", "RESOURCE_NAMES"]
