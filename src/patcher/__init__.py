"""Patch construction: tagged operations, plan builders and wire renderers."""

from .builder import build_mapping_plan, build_migration_plan, mapping_host_path
from .operations import (
    AddContainerEnv,
    AddContainerMount,
    AddVolume,
    PatchPlan,
    RemoveContainerMountByPath,
    RemoveVolumeByName,
)
from .preview import apply_strategic_merge, preview
from .render import RenderedPatch, render, render_json_patch, render_strategic

__all__ = [
    "AddContainerEnv",
    "AddContainerMount",
    "AddVolume",
    "PatchPlan",
    "RemoveContainerMountByPath",
    "RemoveVolumeByName",
    "RenderedPatch",
    "apply_strategic_merge",
    "build_mapping_plan",
    "build_migration_plan",
    "mapping_host_path",
    "preview",
    "render",
    "render_json_patch",
    "render_strategic",
]
