"""Log-path discovery by executing a probe inside a running container.

Two strategies share the same round trip: feed a short script to ``sh`` in the
target container, drain stdout, and turn it into a single path.

* ``EnvironmentDiscovery`` trusts the image to export its log directory through
  ``LOGTUBE_K8S_AUTO_MAPPING``; an empty value means the container has no
  separable logs.
* ``CandidateProbeDiscovery`` asks the container which of a fixed, ordered list
  of well-known log directories exists. Anything it answers that is not on the
  list is rejected, because the answer becomes a host mount target.
"""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
from typing import Optional, Protocol, Sequence, Tuple

from src.cluster.kubectl import ExecResult
from src.cluster.models import Pod
from src.common.config import DISCOVERY_CANDIDATES, DISCOVERY_ENV, AutoMappingConfig
from src.common.errors import ConfigError, ProbeResponseError
from src.common.identifiers import ENV_AUTO_MAPPING

logger = logging.getLogger(__name__)

_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ExecCapable(Protocol):
    def exec_in_container(
        self,
        namespace: str,
        pod: str,
        container: str,
        script: str,
        *,
        timeout: Optional[float] = None,
    ) -> ExecResult:
        ...


class Discovery:
    name = "base"

    def __init__(self, cluster: ExecCapable, *, timeout: Optional[float] = None) -> None:
        self.cluster = cluster
        self.timeout = timeout

    def discover(self, pod: Pod, container: str) -> Optional[str]:
        raise NotImplementedError

    def _run(self, pod: Pod, container: str, script: str) -> ExecResult:
        result = self.cluster.exec_in_container(
            pod.namespace, pod.name, container, script, timeout=self.timeout
        )
        if result.returncode != 0:
            logger.debug(
                "probe in %s/%s/%s exited %d: %s",
                pod.namespace,
                pod.name,
                container,
                result.returncode,
                result.stderr.decode("utf-8", errors="ignore").strip(),
            )
        return result


class EnvironmentDiscovery(Discovery):
    name = DISCOVERY_ENV

    def __init__(
        self,
        cluster: ExecCapable,
        *,
        timeout: Optional[float] = None,
        variable: str = ENV_AUTO_MAPPING,
    ) -> None:
        super().__init__(cluster, timeout=timeout)
        if not _ENV_NAME_PATTERN.match(variable):
            raise ConfigError(f"invalid environment variable name: {variable!r}")
        self.variable = variable

    @property
    def script(self) -> str:
        return f"echo ${{{self.variable}}}"

    def discover(self, pod: Pod, container: str) -> Optional[str]:
        result = self._run(pod, container, self.script)
        path = result.text.strip()
        if not path:
            return None
        if not posixpath.isabs(path):
            raise ProbeResponseError(
                f"{container}: {self.variable}={path!r} is not an absolute path"
            )
        return path


class CandidateProbeDiscovery(Discovery):
    name = DISCOVERY_CANDIDATES

    def __init__(
        self,
        cluster: ExecCapable,
        candidates: Sequence[str],
        *,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(cluster, timeout=timeout)
        if not candidates:
            raise ConfigError("candidate probe requires at least one candidate path")
        self.candidates: Tuple[str, ...] = tuple(candidates)

    @property
    def script(self) -> str:
        return build_candidate_script(self.candidates)

    def discover(self, pod: Pod, container: str) -> Optional[str]:
        result = self._run(pod, container, self.script)
        lines = result.text.splitlines()
        first = lines[0].strip() if lines else ""
        if not first:
            return None
        if first not in self.candidates:
            raise ProbeResponseError(f"{container}: unexpected probe response {first!r}")
        return first


def build_candidate_script(candidates: Sequence[str]) -> str:
    quoted = " ".join(shlex.quote(path) for path in candidates)
    return f'for d in {quoted}; do if [ -d "$d" ]; then echo "$d"; exit 0; fi; done'


def build_discovery(config: AutoMappingConfig, cluster: ExecCapable) -> Discovery:
    if config.discovery == DISCOVERY_ENV:
        return EnvironmentDiscovery(cluster, timeout=config.exec_timeout_seconds)
    if config.discovery == DISCOVERY_CANDIDATES:
        return CandidateProbeDiscovery(
            cluster, config.candidate_paths, timeout=config.exec_timeout_seconds
        )
    raise ConfigError(f"unknown discovery strategy: {config.discovery!r}")


__all__ = [
    "CandidateProbeDiscovery",
    "Discovery",
    "EnvironmentDiscovery",
    "ExecCapable",
    "build_candidate_script",
    "build_discovery",
]
