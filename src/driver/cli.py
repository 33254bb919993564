from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from src.cluster.kubectl import KubectlClient
from src.cluster.models import Workload
from src.common.config import (
    MODE_MAPPING,
    MODE_MIGRATION,
    PATCH_FORMAT_STRATEGIC,
    load_config,
)
from src.common.errors import AutoMappingError, WorkloadError
from src.common.identifiers import LEGACY_HOST_PATH_MARKER
from src.patcher.builder import build_mapping_plan, build_migration_plan
from src.patcher.preview import preview as preview_patch
from src.patcher.render import render

from .runner import Runner

app = typer.Typer(help="Map container log directories onto host paths for the log shipper.")

logger = logging.getLogger("logtube_automap")

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"


def configure_logging(dry_run: bool, verbose: bool = False) -> None:
    prefix = "(dry) " if dry_run else ""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=prefix + LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )


@app.command("map")
def map_logs(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML run configuration."),
    dry_run: Optional[bool] = typer.Option(
        None,
        "--dry-run/--no-dry-run",
        help="Compute and log patches without submitting them (env: AUTOMAPPING_DRY_RUN).",
    ),
    host_path: Optional[str] = typer.Option(
        None,
        "--host-path",
        help="Host directory under which per-workload log directories are created (env: LOGTUBE_LOGS_HOST_PATH).",
    ),
    discovery: Optional[str] = typer.Option(None, "--discovery", help="Discovery strategy: env or candidates."),
    patch_format: Optional[str] = typer.Option(None, "--patch-format", help="Patch format: strategic or json."),
    namespace: Optional[List[str]] = typer.Option(None, "--namespace", "-n", help="Restrict to namespace(s)."),
    kind: Optional[List[str]] = typer.Option(None, "--kind", help="Workload kind(s): Deployment, StatefulSet."),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", min=1, help="Workers per namespace (default: 1)."),
    exec_timeout: Optional[float] = typer.Option(None, "--exec-timeout", help="Seconds allowed per exec probe."),
    kubectl: Optional[str] = typer.Option(None, "--kubectl", help="Kubectl binary used for cluster access."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Optional path to write the run report JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output."),
) -> None:
    _execute(
        MODE_MAPPING,
        config,
        {
            "dry_run": dry_run,
            "host_path_root": host_path,
            "discovery": discovery,
            "patch_format": patch_format,
            "namespaces": namespace or None,
            "kinds": kind or None,
            "jobs": jobs,
            "exec_timeout_seconds": exec_timeout,
            "kubectl": kubectl,
        },
        out,
        verbose,
    )


@app.command("migrate")
def migrate(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML run configuration."),
    dry_run: Optional[bool] = typer.Option(
        None,
        "--dry-run/--no-dry-run",
        help="Compute and log patches without submitting them (env: MIGRATE_LOGTUBE_MAPPING_DRY_RUN).",
    ),
    patch_format: Optional[str] = typer.Option(None, "--patch-format", help="Patch format: strategic or json."),
    legacy_marker: Optional[str] = typer.Option(
        None, "--legacy-marker", help="Substring identifying legacy host-path log volumes."
    ),
    namespace: Optional[List[str]] = typer.Option(None, "--namespace", "-n", help="Restrict to namespace(s)."),
    kind: Optional[List[str]] = typer.Option(None, "--kind", help="Workload kind(s): Deployment, StatefulSet."),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", min=1, help="Workers per namespace (default: 1)."),
    kubectl: Optional[str] = typer.Option(None, "--kubectl", help="Kubectl binary used for cluster access."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Optional path to write the run report JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output."),
) -> None:
    _execute(
        MODE_MIGRATION,
        config,
        {
            "dry_run": dry_run,
            "patch_format": patch_format,
            "legacy_marker": legacy_marker,
            "namespaces": namespace or None,
            "kinds": kind or None,
            "jobs": jobs,
            "kubectl": kubectl,
        },
        out,
        verbose,
    )


@app.command("preview")
def preview(
    manifest: Path = typer.Option(..., "--manifest", "-m", help="Deployment or StatefulSet manifest (YAML or JSON)."),
    path: Optional[List[str]] = typer.Option(
        None,
        "--path",
        "-p",
        help="Discovered log directory as container=/path; repeatable.",
    ),
    migrate_legacy: bool = typer.Option(False, "--migrate", help="Preview the legacy-volume migration instead."),
    host_path: str = typer.Option("/var/log/logtube", "--host-path", help="Host path root for the mapping volume."),
    legacy_marker: str = typer.Option(LEGACY_HOST_PATH_MARKER, "--legacy-marker"),
    patch_format: str = typer.Option(PATCH_FORMAT_STRATEGIC, "--patch-format", help="strategic or json."),
    show_result: bool = typer.Option(False, "--show-result", help="Also print the locally patched manifest."),
) -> None:
    """Render the patch for a manifest on disk, without touching a cluster."""

    workload = Workload.from_manifest(_load_manifest(manifest))
    try:
        if migrate_legacy:
            plan = build_migration_plan(workload, legacy_marker)
        else:
            plan = build_mapping_plan(workload, _parse_paths(path or []), host_path)
        rendered = render(plan, workload, patch_format)
        patched = preview_patch(workload.manifest, rendered) if show_result else None
    except WorkloadError as exc:
        typer.echo(f"{workload.identity}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    for warning in plan.warnings:
        typer.echo(f"warning: {warning}", err=True)
    typer.echo(json.dumps(rendered.document, indent=2))
    if patched is not None:
        typer.echo(yaml.safe_dump(patched, sort_keys=False))


def _execute(
    mode: str,
    config_path: Optional[Path],
    overrides: Dict[str, Any],
    out: Optional[Path],
    verbose: bool,
) -> None:
    try:
        settings = load_config(config_path, mode=mode).with_overrides(**overrides).validate(mode)
    except AutoMappingError as exc:
        configure_logging(bool(overrides.get("dry_run")), verbose)
        logger.error("exited with error: %s", exc)
        raise typer.Exit(code=1) from exc

    configure_logging(settings.dry_run, verbose)
    client = KubectlClient(settings.kubectl, chunk_size=settings.chunk_size)
    try:
        report = Runner(settings, client, mode=mode).run()
    except AutoMappingError as exc:
        logger.error("exited with error: %s", exc)
        raise typer.Exit(code=1) from exc

    if out is not None:
        report.write(out)
    counts = report.counts()
    logger.info(
        "%d workload(s) in %d namespace(s): %s",
        len(report.outcomes),
        len(report.namespaces),
        ", ".join(f"{key}={value}" for key, value in counts.items()),
    )
    logger.info("exited")


def _load_manifest(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise typer.BadParameter(f"Manifest not readable: {path}: {exc}") from exc
    try:
        documents = [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as exc:
        raise typer.BadParameter(f"Manifest is not valid YAML: {exc}") from exc
    if not documents or not isinstance(documents[0], dict):
        raise typer.BadParameter("Manifest must contain a mapping")
    return documents[0]


def _parse_paths(values: List[str]) -> Dict[str, str]:
    paths: Dict[str, str] = {}
    for value in values:
        container, sep, log_dir = value.partition("=")
        if not sep or not container or not log_dir:
            raise typer.BadParameter(f"Expected container=/path, got {value!r}")
        paths[container.strip()] = log_dir.strip()
    return paths


if __name__ == "__main__":  # pragma: no cover
    app()
