from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class VolumeMountSpec:
    name: str
    mount_path: str


@dataclass(frozen=True)
class EnvVar:
    name: str
    value: Optional[str] = None


@dataclass(frozen=True)
class ContainerSpec:
    name: str
    volume_mounts: Tuple[VolumeMountSpec, ...] = ()
    env: Tuple[EnvVar, ...] = ()


@dataclass(frozen=True)
class VolumeSpec:
    name: str
    host_path: Optional[str] = None


@dataclass(frozen=True)
class Workload:
    kind: str
    namespace: str
    name: str
    annotations: Optional[Dict[str, str]]
    ready_replicas: int
    selector: Dict[str, str]
    containers: Tuple[ContainerSpec, ...]
    volumes: Tuple[VolumeSpec, ...]
    init_containers: Tuple[ContainerSpec, ...] = ()
    manifest: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def identity(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"

    def container(self, name: str) -> Optional[ContainerSpec]:
        for container in self.containers:
            if container.name == name:
                return container
        return None

    @classmethod
    def from_manifest(cls, obj: Dict[str, Any], kind: Optional[str] = None) -> "Workload":
        metadata = _mapping(obj.get("metadata"))
        spec = _mapping(obj.get("spec"))
        status = _mapping(obj.get("status"))
        selector = _mapping(spec.get("selector"))
        pod_spec = _mapping(_mapping(spec.get("template")).get("spec"))

        annotations = metadata.get("annotations")
        return cls(
            kind=kind or str(obj.get("kind") or ""),
            namespace=str(metadata.get("namespace") or "default"),
            name=str(metadata.get("name") or ""),
            annotations=dict(annotations) if isinstance(annotations, dict) else None,
            ready_replicas=_int(status.get("readyReplicas")),
            selector={str(k): str(v) for k, v in _mapping(selector.get("matchLabels")).items()},
            containers=tuple(_parse_container(c) for c in _list(pod_spec.get("containers"))),
            volumes=tuple(_parse_volume(v) for v in _list(pod_spec.get("volumes"))),
            init_containers=tuple(_parse_container(c) for c in _list(pod_spec.get("initContainers"))),
            manifest=obj,
        )


@dataclass(frozen=True)
class Pod:
    namespace: str
    name: str
    containers: Tuple[str, ...]

    @classmethod
    def from_manifest(cls, obj: Dict[str, Any]) -> "Pod":
        metadata = _mapping(obj.get("metadata"))
        spec = _mapping(obj.get("spec"))
        return cls(
            namespace=str(metadata.get("namespace") or "default"),
            name=str(metadata.get("name") or ""),
            containers=tuple(
                str(c["name"]) for c in _list(spec.get("containers")) if isinstance(c.get("name"), str)
            ),
        )


def _parse_container(obj: Dict[str, Any]) -> ContainerSpec:
    mounts = [
        VolumeMountSpec(name=str(m.get("name") or ""), mount_path=str(m.get("mountPath") or ""))
        for m in _list(obj.get("volumeMounts"))
    ]
    env = [
        EnvVar(name=str(e.get("name") or ""), value=e.get("value") if isinstance(e.get("value"), str) else None)
        for e in _list(obj.get("env"))
    ]
    return ContainerSpec(name=str(obj.get("name") or ""), volume_mounts=tuple(mounts), env=tuple(env))


def _parse_volume(obj: Dict[str, Any]) -> VolumeSpec:
    host_path = obj.get("hostPath")
    path = host_path.get("path") if isinstance(host_path, dict) else None
    return VolumeSpec(name=str(obj.get("name") or ""), host_path=path if isinstance(path, str) else None)


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    return 0


__all__ = ["ContainerSpec", "EnvVar", "Pod", "VolumeMountSpec", "VolumeSpec", "Workload"]
