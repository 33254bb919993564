from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

from src.common.identifiers import HOST_PATH_DIRECTORY_OR_CREATE


@dataclass(frozen=True)
class AddVolume:
    name: str
    host_path: str
    host_path_type: str = HOST_PATH_DIRECTORY_OR_CREATE

    def to_volume(self) -> dict:
        return {"name": self.name, "hostPath": {"path": self.host_path, "type": self.host_path_type}}


@dataclass(frozen=True)
class RemoveVolumeByName:
    name: str


@dataclass(frozen=True)
class AddContainerMount:
    container: str
    volume: str
    mount_path: str

    def to_mount(self) -> dict:
        return {"mountPath": self.mount_path, "name": self.volume}


@dataclass(frozen=True)
class RemoveContainerMountByPath:
    container: str
    mount_path: str
    init: bool = False


@dataclass(frozen=True)
class AddContainerEnv:
    container: str
    name: str
    value: str

    def to_env(self) -> dict:
        return {"name": self.name, "value": self.value}


Operation = Union[AddVolume, RemoveVolumeByName, AddContainerMount, RemoveContainerMountByPath, AddContainerEnv]
ContainerOperation = Union[AddContainerMount, RemoveContainerMountByPath, AddContainerEnv]


@dataclass(frozen=True)
class PatchPlan:
    """Everything one workload needs changed, before it is rendered to a wire format."""

    kind: str
    namespace: str
    name: str
    operations: Tuple[Operation, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.operations

    @property
    def mounts(self) -> Tuple[AddContainerMount, ...]:
        return tuple(op for op in self.operations if isinstance(op, AddContainerMount))


__all__ = [
    "AddContainerEnv",
    "AddContainerMount",
    "AddVolume",
    "ContainerOperation",
    "Operation",
    "PatchPlan",
    "RemoveContainerMountByPath",
    "RemoveVolumeByName",
]
