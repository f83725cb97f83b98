"""Project model loader: package.json plus the selected lock artifact."""

from __future__ import annotations

import json
import logging
import os
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

from constants import Constants
from common.errors import ManifestError, ValidationError
from common.logging_utils import extra_context, is_debug_enabled, log_selection, warn_multiple_lockfiles

from .lockfile_parser import parse_package_lock, parse_pnpm_lock, parse_yarn_lock
from .models import LockEntry, Manifest, ProjectModel

logger = logging.getLogger(__name__)

# Discovery order; the first present lockfile is used.
_LOCKFILES: List[Tuple[str, str, str]] = [
    (Constants.PNPM_LOCK_FILE, "pnpm", "pnpm"),
    (Constants.PACKAGE_LOCK_FILE, "package-lock", "npm"),
    (Constants.YARN_LOCK_FILE, "yarn", "yarn"),
]

_SECTIONS = {
    "dependencies": "dependencies",
    "devDependencies": "dev_dependencies",
    "optionalDependencies": "optional_dependencies",
    "peerDependencies": "peer_dependencies",
}


def _discover_lockfiles(dir_path: str) -> List[Tuple[str, str, str]]:
    """Lockfiles present in ``dir_path`` as (path, format, package manager), in precedence order."""
    found = []
    for filename, fmt, manager in _LOCKFILES:
        path = os.path.join(dir_path, filename)
        if os.path.isfile(path):
            found.append((path, fmt, manager))
    return found


def _read_manifest(manifest_path: str) -> Manifest:
    """Parse and validate package.json.

    Raises:
        ManifestError: File missing, unreadable, not JSON, or not an object.
        ValidationError: Missing name or a dependency section that isn't an object.
    """
    if not os.path.isfile(manifest_path):
        raise ManifestError(f"{Constants.PACKAGE_JSON_FILE} not found", file_path=manifest_path)
    try:
        with open(manifest_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid JSON in {manifest_path}: {e}", file_path=manifest_path) from e
    except OSError as e:
        raise ManifestError(f"Couldn't read {manifest_path}: {e}", file_path=manifest_path) from e
    if not isinstance(data, dict):
        raise ManifestError(f"{manifest_path} must contain a JSON object", file_path=manifest_path)

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("package.json is missing a valid 'name' field", field="name")

    sections: Dict[str, Any] = {}
    for key, attr in _SECTIONS.items():
        section = data.get(key)
        if section is None:
            section = {}
        if not isinstance(section, dict):
            raise ValidationError(f"'{key}' must be an object", field=key)
        sections[attr] = MappingProxyType({str(k): str(v) for k, v in section.items()})

    version = data.get("version")
    return Manifest(name=name.strip(), version=version if isinstance(version, str) else None, **sections)


def _parse_lockfile(path: str, fmt: str, manifest: Manifest) -> Optional[Dict[str, LockEntry]]:
    if fmt == "pnpm":
        return parse_pnpm_lock(path)
    if fmt == "package-lock":
        return parse_package_lock(path)
    direct = dict(manifest.dependencies)
    direct.update({k: v for k, v in manifest.dev_dependencies.items() if k not in direct})
    direct.update({k: v for k, v in manifest.optional_dependencies.items() if k not in direct})
    return parse_yarn_lock(path, direct_specs=direct)


def load_project(project_path: str, include_dev: bool = True) -> ProjectModel:
    """Load the manifest and lock data of a project directory.

    Args:
        project_path: Directory holding package.json.
        include_dev: Keep development dependencies in the declared set.

    Returns:
        ProjectModel. When no lockfile is usable the model is degraded:
        nothing counts as installed and declared ranges stand in for versions.

    Raises:
        ManifestError: package.json missing or malformed.
        ValidationError: package.json lacks required fields.
    """
    root = os.path.abspath(project_path)
    manifest_path = os.path.join(root, Constants.PACKAGE_JSON_FILE)
    manifest = _read_manifest(manifest_path)

    for dep_name, (runtime_range, dev_range) in manifest.overlapping().items():
        logger.debug(
            "%s declared as runtime (%s) and development (%s); using runtime range",
            dep_name,
            runtime_range,
            dev_range,
            extra=extra_context(event="manifest_overlap", component="loader", package=dep_name),
        )
    declared = manifest.declared(include_dev=include_dev)

    lockfiles = _discover_lockfiles(root)
    lock_entries: Dict[str, LockEntry] = {}
    lockfile_path: Optional[str] = None
    lockfile_format: Optional[str] = None
    package_manager = "npm"

    if lockfiles:
        path, fmt, manager = lockfiles[0]
        package_manager = manager
        if len(lockfiles) > 1:
            warn_multiple_lockfiles(logger, "npm", path, [alt for alt, _, _ in lockfiles[1:]])
        entries = _parse_lockfile(path, fmt, manifest)
        if entries is None:
            logger.warning(
                "Couldn't use lockfile %s; continuing without installed versions",
                path,
                extra=extra_context(event="lockfile_unusable", component="loader", lockfile=path),
            )
            log_selection(logger, "npm", manifest_path, None, "lockfile unparseable")
        else:
            lock_entries = entries
            lockfile_path = path
            lockfile_format = fmt
            log_selection(logger, "npm", manifest_path, path, f"{fmt} lockfile by precedence")
    else:
        log_selection(logger, "npm", manifest_path, None, "no lockfile found")

    if is_debug_enabled(logger):
        logger.debug(
            "Project loaded",
            extra=extra_context(
                event="project_loaded",
                component="loader",
                package=manifest.name,
                count=len(declared),
                lock_entries=len(lock_entries),
            ),
        )
    return ProjectModel(
        root=root,
        manifest=manifest,
        declared=MappingProxyType(declared),
        lock_entries=MappingProxyType(lock_entries),
        lockfile_path=lockfile_path,
        lockfile_format=lockfile_format,
        package_manager=package_manager,
    )
