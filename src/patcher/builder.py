from __future__ import annotations

import posixpath
from typing import Dict, List, Mapping, Optional

from src.cluster.models import Workload
from src.common.errors import NoMountsUpdatedError
from src.common.identifiers import ENV_AUTO_MAPPING, LEGACY_HOST_PATH_MARKER, VOLUME_NAME_AUTO_MAPPING

from .operations import (
    AddContainerEnv,
    AddContainerMount,
    AddVolume,
    Operation,
    PatchPlan,
    RemoveContainerMountByPath,
    RemoveVolumeByName,
)


def mapping_host_path(host_path_root: str, namespace: str, name: str) -> str:
    return posixpath.join(host_path_root, f"{namespace}-{name}")


def build_mapping_plan(
    workload: Workload,
    paths: Mapping[str, Optional[str]],
    host_path_root: str,
) -> PatchPlan:
    """Mount the mapping volume at every discovered log path.

    ``paths`` maps container names to the discovered directory; containers with an
    empty or missing path are left untouched. Raises NoMountsUpdatedError when no
    container produced a path.
    """

    mounts: List[AddContainerMount] = []
    warnings: List[str] = []
    for container, path in paths.items():
        if not path:
            continue
        if workload.container(container) is None:
            warnings.append(f"{container}: not declared in the pod template, mount at {path} skipped")
            continue
        mounts.append(AddContainerMount(container=container, volume=VOLUME_NAME_AUTO_MAPPING, mount_path=path))
    if not mounts:
        raise NoMountsUpdatedError()
    volume = AddVolume(
        name=VOLUME_NAME_AUTO_MAPPING,
        host_path=mapping_host_path(host_path_root, workload.namespace, workload.name),
    )
    operations: List[Operation] = [volume, *mounts]
    return PatchPlan(
        kind=workload.kind,
        namespace=workload.namespace,
        name=workload.name,
        operations=tuple(operations),
        warnings=tuple(warnings),
    )


def build_migration_plan(workload: Workload, legacy_marker: str = LEGACY_HOST_PATH_MARKER) -> PatchPlan:
    """Replace legacy host-path log volumes with the environment-variable contract.

    Every volume whose host path contains ``legacy_marker`` is deleted; every mount
    of such a volume is deleted and its path handed to the container through
    ``LOGTUBE_K8S_AUTO_MAPPING``. Init containers only lose their legacy mounts.
    An already migrated workload yields an empty plan.
    """

    legacy = [v.name for v in workload.volumes if v.host_path is not None and legacy_marker in v.host_path]
    operations: List[Operation] = [RemoveVolumeByName(name=name) for name in legacy]
    warnings: List[str] = []

    for container in workload.containers:
        transcribed: Dict[str, str] = {}
        for mount in container.volume_mounts:
            if mount.name not in legacy:
                continue
            operations.append(RemoveContainerMountByPath(container=container.name, mount_path=mount.mount_path))
            if ENV_AUTO_MAPPING in transcribed:
                warnings.append(
                    f"{container.name}: legacy mount {mount.mount_path} dropped, "
                    f"{ENV_AUTO_MAPPING} already set to {transcribed[ENV_AUTO_MAPPING]}"
                )
                continue
            transcribed[ENV_AUTO_MAPPING] = mount.mount_path
            operations.append(AddContainerEnv(container=container.name, name=ENV_AUTO_MAPPING, value=mount.mount_path))

    for container in workload.init_containers:
        for mount in container.volume_mounts:
            if mount.name in legacy:
                operations.append(
                    RemoveContainerMountByPath(container=container.name, mount_path=mount.mount_path, init=True)
                )

    return PatchPlan(
        kind=workload.kind,
        namespace=workload.namespace,
        name=workload.name,
        operations=tuple(operations),
        warnings=tuple(warnings),
    )


__all__ = ["build_mapping_plan", "build_migration_plan", "mapping_host_path"]
