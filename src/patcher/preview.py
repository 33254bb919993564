from __future__ import annotations

import copy
from typing import Any, Dict, List

import jsonpatch

from src.common.config import PATCH_FORMAT_JSON, PATCH_FORMAT_STRATEGIC
from src.common.errors import PatchBuildError

from .render import DELETE_DIRECTIVE, RenderedPatch

# Merge keys of the pod template lists this engine touches.
MERGE_KEYS = {
    "containers": "name",
    "initContainers": "name",
    "volumes": "name",
    "env": "name",
    "volumeMounts": "mountPath",
}


def apply_strategic_merge(manifest: Dict[str, Any], document: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a strategic merge patch locally, without mutating ``manifest``.

    Only the list semantics needed for pod templates are modelled: lists named in
    MERGE_KEYS merge element-wise by key and honour ``$patch: delete``; any other
    list is replaced. A None value deletes the key.
    """

    return _merge_mapping(copy.deepcopy(manifest), document)


def preview(manifest: Dict[str, Any], rendered: RenderedPatch) -> Dict[str, Any]:
    if rendered.patch_type == PATCH_FORMAT_STRATEGIC:
        if not isinstance(rendered.document, dict):
            raise PatchBuildError("strategic merge patch must be a mapping")
        return apply_strategic_merge(manifest, rendered.document)
    if rendered.patch_type == PATCH_FORMAT_JSON:
        try:
            return jsonpatch.apply_patch(copy.deepcopy(manifest), rendered.document, in_place=False)
        except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException) as exc:
            raise PatchBuildError(f"bad path or conflict: {exc}") from exc
    raise PatchBuildError(f"unknown patch type: {rendered.patch_type!r}")


def _merge_mapping(target: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            target[key] = _merge_mapping(target[key], value)
        elif isinstance(value, list) and key in MERGE_KEYS:
            current = target.get(key)
            target[key] = _merge_list(current if isinstance(current, list) else [], value, MERGE_KEYS[key])
        elif isinstance(value, (dict, list)):
            target[key] = _strip_directives(copy.deepcopy(value))
        else:
            target[key] = value
    return target


def _merge_list(current: List[Any], patch: List[Any], merge_key: str) -> List[Any]:
    merged = list(current)
    for element in patch:
        if not isinstance(element, dict) or merge_key not in element:
            merged.append(copy.deepcopy(element))
            continue
        index = next(
            (i for i, item in enumerate(merged) if isinstance(item, dict) and item.get(merge_key) == element[merge_key]),
            None,
        )
        if element.get(DELETE_DIRECTIVE) == "delete":
            if index is not None:
                del merged[index]
            continue
        if index is None:
            merged.append(_merge_mapping({}, element))
        else:
            merged[index] = _merge_mapping(merged[index], element)
    return merged


def _strip_directives(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_directives(v) for k, v in value.items() if k != DELETE_DIRECTIVE}
    if isinstance(value, list):
        return [_strip_directives(v) for v in value]
    return value


__all__ = ["MERGE_KEYS", "apply_strategic_merge", "preview"]
