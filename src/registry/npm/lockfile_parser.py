"""Lockfile parsers for the npm ecosystem (package-lock.json, pnpm-lock.yaml, yarn.lock).

Each parser maps a lock artifact onto ``{package name: LockEntry}`` holding the
version installed at the top of the tree. Parsers log and return None when the
file cannot be read, so the loader can continue with a degraded model.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from registry.npm.models import LockEntry, _frozen_map, _optional_peers

logger = logging.getLogger(__name__)

_NODE_MODULES = "node_modules/"
_PNPM_PEER_SUFFIX = re.compile(r"\(.*$")


def package_name_from_path(pkg_path: str) -> Optional[str]:
    """Extract the package name from a v2/v3 install path.

    ``node_modules/a/node_modules/@s/b`` -> ``@s/b``. Paths outside
    node_modules (workspace folders) return None.
    """
    idx = pkg_path.rfind(_NODE_MODULES)
    if idx < 0:
        return None
    name = pkg_path[idx + len(_NODE_MODULES):]
    if not name:
        return None
    parts = name.split("/")
    if parts[0].startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        return f"{parts[0]}/{parts[1]}"
    return parts[0]


def _nesting_depth(pkg_path: str) -> int:
    return pkg_path.count(_NODE_MODULES)


def _entry_from_doc(name: str, version: str, doc: Mapping[str, Any], path: Optional[str], deps_key: str) -> LockEntry:
    return LockEntry(
        name=name,
        version=version,
        path=path,
        dev=bool(doc.get("dev", False)),
        optional=bool(doc.get("optional", False)),
        dependencies=_frozen_map(doc.get(deps_key)),
        peer_dependencies=_frozen_map(doc.get("peerDependencies")),
        peer_optional=_optional_peers(doc.get("peerDependenciesMeta")),
    )


def _parse_packages_section(packages: Dict[str, Any]) -> Dict[str, LockEntry]:
    """lockfileVersion 2/3: flat map keyed by install path."""
    entries: Dict[str, LockEntry] = {}
    depth_of: Dict[str, int] = {}
    for pkg_path, pkg_info in packages.items():
        # Skip root package (empty path)
        if not pkg_path or not isinstance(pkg_info, dict):
            continue
        name = package_name_from_path(pkg_path)
        version = pkg_info.get("version")
        if not name or not isinstance(version, str) or not version:
            continue
        depth = _nesting_depth(pkg_path)
        # The hoisted copy (shallowest path) is what the project itself resolves
        if name in entries and depth_of[name] <= depth:
            continue
        entries[name] = _entry_from_doc(name, version, pkg_info, pkg_path, "dependencies")
        depth_of[name] = depth
    return entries


def _parse_dependencies_section(deps: Dict[str, Any]) -> Dict[str, LockEntry]:
    """lockfileVersion 1 (or a flat name->version map).

    Only the top level of the nested tree is taken; nested copies are
    private to their parent and never what the project resolves.
    """
    entries: Dict[str, LockEntry] = {}
    for pkg_name, pkg_info in deps.items():
        if isinstance(pkg_info, str):
            entries[pkg_name] = LockEntry(name=pkg_name, version=pkg_info)
        elif isinstance(pkg_info, dict) and isinstance(pkg_info.get("version"), str):
            entries[pkg_name] = _entry_from_doc(pkg_name, pkg_info["version"], pkg_info, pkg_name, "requires")
    return entries


def parse_package_lock_data(data: Any) -> Optional[Dict[str, LockEntry]]:
    """Extract lock entries from an already decoded package-lock document.

    Accepts lockfileVersion 1, 2 and 3 as well as a bare name->version map.
    """
    if not isinstance(data, dict):
        return None

    if isinstance(data.get("packages"), dict):
        entries = _parse_packages_section(data["packages"])
        # v2 carries both shapes; fill gaps from the legacy section
        if isinstance(data.get("dependencies"), dict):
            for name, entry in _parse_dependencies_section(data["dependencies"]).items():
                entries.setdefault(name, entry)
        return entries

    if isinstance(data.get("dependencies"), dict):
        return _parse_dependencies_section(data["dependencies"])

    if "lockfileVersion" not in data and data and all(isinstance(v, str) for v in data.values()):
        return _parse_dependencies_section(data)

    return {}


def parse_package_lock(lockfile_path: str) -> Optional[Dict[str, LockEntry]]:
    """Parse package-lock.json (or npm-shrinkwrap.json).

    Args:
        lockfile_path: Path to the lockfile.

    Returns:
        Map of package name to LockEntry, or None when the file can't be parsed.
    """
    try:
        with open(lockfile_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (FileNotFoundError, IOError, json.JSONDecodeError) as e:
        logger.warning("Failed to parse package-lock.json: %s", e)
        return None
    entries = parse_package_lock_data(data)
    if entries is None:
        logger.warning("Failed to parse package-lock.json: top level is not an object")
    return entries


def _split_pnpm_key(key: str) -> Optional[Tuple[str, str]]:
    """Split a pnpm packages key into (name, version).

    Handles v5 (``/name/1.0.0_peer@1``), v6 (``/name@1.0.0(peer@1)``) and v9
    (``name@1.0.0``) keys, scoped or not.
    """
    key = _PNPM_PEER_SUFFIX.sub("", key.strip().lstrip("/"))
    if not key:
        return None
    parts = key.split("/")
    name_parts = 2 if parts[0].startswith("@") else 1
    if len(parts) > name_parts and parts[name_parts][:1].isdigit():
        # v5: /name/1.0.0 or /@scope/name/1.0.0_peer@1
        name = "/".join(parts[:name_parts])
        version = parts[name_parts].split("_", 1)[0]
    else:
        at = key.rfind("@")
        if at <= 0:
            return None
        name, version = key[:at], key[at + 1:]
    if not name or not version:
        return None
    return name, version


def _clean_pnpm_version(value: Any) -> Optional[str]:
    """Version from an importer entry: ``1.0.0(peer@2)`` / ``1.0.0_peer@2`` / ``{version: ...}``."""
    if isinstance(value, dict):
        value = value.get("version")
    if not isinstance(value, str) or not value:
        return None
    if value.startswith(("link:", "file:")):
        return None
    value = _PNPM_PEER_SUFFIX.sub("", value)
    return value.split("_", 1)[0]


def parse_pnpm_lock(lockfile_path: str) -> Optional[Dict[str, LockEntry]]:
    """Parse pnpm-lock.yaml (lockfileVersion 5.x, 6.x and 9.x).

    Args:
        lockfile_path: Path to pnpm-lock.yaml.

    Returns:
        Map of package name to LockEntry, or None when the file can't be parsed.
    """
    try:
        with open(lockfile_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (FileNotFoundError, IOError, yaml.YAMLError) as e:
        logger.warning("Failed to parse pnpm-lock.yaml: %s", e)
        return None
    if not isinstance(data, dict):
        logger.warning("Failed to parse pnpm-lock.yaml: top level is not a mapping")
        return None

    # Versions the project itself resolved to
    direct: Dict[str, Tuple[str, bool]] = {}
    importer = (data.get("importers") or {}).get(".") if isinstance(data.get("importers"), dict) else None
    source = importer if isinstance(importer, dict) else data
    for section, is_dev in (("dependencies", False), ("optionalDependencies", False), ("devDependencies", True)):
        block = source.get(section)
        if not isinstance(block, dict):
            continue
        for name, value in block.items():
            version = _clean_pnpm_version(value)
            if version and name not in direct:
                direct[name] = (version, is_dev)

    by_name: Dict[str, Dict[str, Tuple[str, Dict[str, Any]]]] = {}
    packages = data.get("packages")
    if isinstance(packages, dict):
        for key, info in packages.items():
            split = _split_pnpm_key(str(key))
            if split is None:
                continue
            name, version = split
            by_name.setdefault(name, {}).setdefault(version, (str(key), info if isinstance(info, dict) else {}))

    entries: Dict[str, LockEntry] = {}
    for name, versions in by_name.items():
        wanted = direct.get(name, (None, False))[0]
        chosen = wanted if wanted in versions else next(iter(versions))
        key, info = versions[chosen]
        entries[name] = _entry_from_doc(name, chosen, info, key, "dependencies")
    for name, (version, is_dev) in direct.items():
        if name not in entries:
            entries[name] = LockEntry(name=name, version=version, dev=is_dev)
    return entries


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _yarn_spec_name(spec: str) -> Optional[str]:
    """``@scope/pkg@^1.0.0`` -> ``@scope/pkg``; ``pkg@npm:^1`` -> ``pkg``."""
    spec = _strip_quotes(spec)
    at = spec.find("@", 1)
    if at <= 0:
        return None
    return spec[:at]


def _yarn_key_value(line: str) -> Tuple[str, str]:
    """Split an indented yarn line in either v1 (``key "value"``) or berry (``key: value``) form."""
    line = line.strip()
    if line.startswith('"'):
        end = line.find('"', 1)
        key, rest = line[1:end], line[end + 1:]
    else:
        match = re.match(r"^([^\s:]+):?\s*(.*)$", line)
        if not match:
            return line, ""
        key, rest = match.group(1), match.group(2)
    rest = rest.lstrip(":").strip()
    return key, _strip_quotes(rest)


def _strip_protocol(value: str) -> str:
    return value[4:] if value.startswith("npm:") else value


def parse_yarn_lock(lockfile_path: str, direct_specs: Optional[Mapping[str, str]] = None) -> Optional[Dict[str, LockEntry]]:
    """Parse yarn.lock (classic v1 and berry formats).

    Args:
        lockfile_path: Path to yarn.lock.
        direct_specs: Optional manifest name->range map; when several locked
            versions exist for a name, the one locked for the manifest range wins.

    Returns:
        Map of package name to LockEntry, or None when the file can't be read.
    """
    try:
        with open(lockfile_path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except (FileNotFoundError, IOError) as e:
        logger.warning("Failed to parse yarn.lock: %s", e)
        return None

    blocks = []
    current: Optional[Dict[str, Any]] = None
    section: Optional[str] = None
    for raw in lines:
        if not raw.strip() or raw.lstrip().startswith("#"):
            continue
        indent = len(raw) - len(raw.lstrip(" "))
        if indent == 0:
            section = None
            current = None
            if not raw.rstrip().endswith(":"):
                continue
            header = raw.rstrip()[:-1]
            specs = [s.strip().strip("\"'") for s in header.split(",") if s.strip().strip("\"'")]
            names = {_yarn_spec_name(s) for s in specs} - {None}
            if len(names) != 1:
                continue
            current = {"name": names.pop(), "specs": specs, "version": None, "dependencies": {}, "peerDependencies": {}}
            blocks.append(current)
            continue
        if current is None:
            continue
        if indent <= 2:
            key, value = _yarn_key_value(raw)
            if key == "version":
                current["version"] = value
                section = None
            elif key in ("dependencies", "optionalDependencies", "peerDependencies") and not value:
                section = "peerDependencies" if key == "peerDependencies" else "dependencies"
            else:
                section = None
        elif section is not None:
            key, value = _yarn_key_value(raw)
            current[section][key] = _strip_protocol(value)

    entries: Dict[str, LockEntry] = {}
    direct_specs = direct_specs or {}
    for block in blocks:
        name, version = block["name"], block["version"]
        if not version:
            continue
        wanted = direct_specs.get(name)
        matches_direct = wanted is not None and any(
            s in (f"{name}@{wanted}", f"{name}@npm:{wanted}") for s in block["specs"]
        )
        if name in entries and not matches_direct:
            continue
        entries[name] = LockEntry(
            name=name,
            version=version,
            path=", ".join(block["specs"]),
            dependencies=_frozen_map(block["dependencies"]),
            peer_dependencies=_frozen_map(block["peerDependencies"]),
        )
    return entries
