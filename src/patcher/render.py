"""Serialize a PatchPlan into one of the two wire formats kubectl patch accepts.

``strategic`` renders a partial pod template whose list elements are keyed by
``name`` (volumes, containers, env) or ``mountPath`` (volume mounts), with
``$patch: delete`` directives for removals. Reapplying it is a no-op.

``json`` renders an RFC 6902 operation list whose array indices are computed
against the workload snapshot that was listed. The server applies the indices
as given, so the document is only correct while the object is unchanged since
that snapshot: re-read the workload before reapplying it.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import jsonpatch

from src.cluster.models import Workload
from src.common.config import PATCH_FORMAT_JSON, PATCH_FORMAT_STRATEGIC
from src.common.errors import PatchBuildError

from .operations import (
    AddContainerEnv,
    AddContainerMount,
    AddVolume,
    Operation,
    PatchPlan,
    RemoveContainerMountByPath,
    RemoveVolumeByName,
)

POD_SPEC_POINTER = "/spec/template/spec"
DELETE_DIRECTIVE = "$patch"


@dataclass(frozen=True)
class RenderedPatch:
    patch_type: str
    document: Union[Dict[str, Any], List[Dict[str, Any]]]

    def to_wire(self) -> str:
        return json.dumps(self.document, separators=(",", ":"))


def render(plan: PatchPlan, workload: Workload, patch_format: str = PATCH_FORMAT_STRATEGIC) -> RenderedPatch:
    if patch_format == PATCH_FORMAT_STRATEGIC:
        return RenderedPatch(PATCH_FORMAT_STRATEGIC, render_strategic(plan))
    if patch_format == PATCH_FORMAT_JSON:
        return RenderedPatch(PATCH_FORMAT_JSON, render_json_patch(plan, workload))
    raise PatchBuildError(f"unknown patch format: {patch_format!r}")


def render_strategic(plan: PatchPlan) -> Dict[str, Any]:
    volumes: List[Dict[str, Any]] = []
    containers: Dict[str, Dict[str, Dict[str, Any]]] = {"containers": {}, "initContainers": {}}

    for op in plan.operations:
        if isinstance(op, AddVolume):
            volumes.append(op.to_volume())
        elif isinstance(op, RemoveVolumeByName):
            volumes.append({"name": op.name, DELETE_DIRECTIVE: "delete"})
        else:
            body = containers[_container_field(op)].setdefault(op.container, {"name": op.container})
            if isinstance(op, AddContainerMount):
                body.setdefault("volumeMounts", []).append(op.to_mount())
            elif isinstance(op, RemoveContainerMountByPath):
                body.setdefault("volumeMounts", []).append({"mountPath": op.mount_path, DELETE_DIRECTIVE: "delete"})
            elif isinstance(op, AddContainerEnv):
                body.setdefault("env", []).append(op.to_env())

    pod_spec: Dict[str, Any] = {}
    if volumes:
        pod_spec["volumes"] = volumes
    for field, bodies in containers.items():
        if bodies:
            pod_spec[field] = list(bodies.values())
    return {"spec": {"template": {"spec": pod_spec}}}


def render_json_patch(plan: PatchPlan, workload: Workload) -> List[Dict[str, Any]]:
    working = copy.deepcopy(workload.manifest)
    if not isinstance(_pod_spec(working), dict):
        raise PatchBuildError(f"{workload.identity}: snapshot has no pod template")

    ops: List[Dict[str, Any]] = []
    for operation in plan.operations:
        patch_op = _json_op(_pod_spec(working), operation)
        if patch_op is None:
            continue
        try:
            jsonpatch.apply_patch(working, [patch_op], in_place=True)
        except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException) as exc:
            raise PatchBuildError(f"{workload.identity}: {exc}") from exc
        ops.append(patch_op)
    return ops


def _json_op(pod_spec: Dict[str, Any], op: Operation) -> Optional[Dict[str, Any]]:
    if isinstance(op, AddVolume):
        return _upsert(pod_spec, POD_SPEC_POINTER, "volumes", "name", op.to_volume())
    if isinstance(op, RemoveVolumeByName):
        return _remove(pod_spec, POD_SPEC_POINTER, "volumes", "name", op.name)

    field = _container_field(op)
    index = _index_of(pod_spec.get(field), "name", op.container)
    if index is None:
        raise PatchBuildError(f"container {op.container} not found in pod template {field}")
    container = pod_spec[field][index]
    base = f"{POD_SPEC_POINTER}/{field}/{index}"
    if isinstance(op, AddContainerMount):
        return _upsert(container, base, "volumeMounts", "mountPath", op.to_mount())
    if isinstance(op, RemoveContainerMountByPath):
        return _remove(container, base, "volumeMounts", "mountPath", op.mount_path)
    if isinstance(op, AddContainerEnv):
        return _upsert(container, base, "env", "name", op.to_env())
    raise PatchBuildError(f"unsupported operation: {op!r}")


def _container_field(op: Operation) -> str:
    if isinstance(op, RemoveContainerMountByPath) and op.init:
        return "initContainers"
    return "containers"


def _upsert(parent: Dict[str, Any], base: str, field: str, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
    items = parent.get(field)
    if not isinstance(items, list):
        return {"op": "add", "path": f"{base}/{field}", "value": [value]}
    index = _index_of(items, key, value[key])
    if index is not None:
        return {"op": "replace", "path": f"{base}/{field}/{index}", "value": value}
    return {"op": "add", "path": f"{base}/{field}/-", "value": value}


def _remove(parent: Dict[str, Any], base: str, field: str, key: str, value: str) -> Optional[Dict[str, Any]]:
    index = _index_of(parent.get(field), key, value)
    if index is None:
        return None
    return {"op": "remove", "path": f"{base}/{field}/{index}"}


def _index_of(items: Any, key: str, value: str) -> Optional[int]:
    if not isinstance(items, list):
        return None
    for idx, item in enumerate(items):
        if isinstance(item, dict) and item.get(key) == value:
            return idx
    return None


def _pod_spec(manifest: Dict[str, Any]) -> Any:
    spec = manifest.get("spec")
    template = spec.get("template") if isinstance(spec, dict) else None
    return template.get("spec") if isinstance(template, dict) else None


__all__ = ["RenderedPatch", "render", "render_json_patch", "render_strategic"]
