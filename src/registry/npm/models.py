"""Data models for npm registry metadata and the local project."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional


def _frozen_map(value: Any) -> Mapping[str, str]:
    """Return a read-only name->string mapping, dropping non-string entries."""
    if not isinstance(value, dict):
        return MappingProxyType({})
    return MappingProxyType({str(k): str(v) for k, v in value.items() if isinstance(v, (str, int, float))})


def _optional_peers(meta: Any) -> FrozenSet[str]:
    """Names flagged ``optional: true`` in a peerDependenciesMeta object."""
    if not isinstance(meta, dict):
        return frozenset()
    return frozenset(name for name, info in meta.items() if isinstance(info, dict) and info.get("optional") is True)


def _license_of(doc: Dict[str, Any]) -> Optional[str]:
    lic = doc.get("license")
    if lic is None and isinstance(doc.get("licenses"), list):
        # legacy form: [{"type": "MIT", "url": ...}, ...]
        types = [entry.get("type") for entry in doc["licenses"] if isinstance(entry, dict) and isinstance(entry.get("type"), str)]
        lic = " OR ".join(types) if types else None
    if isinstance(lic, dict):
        lic = lic.get("type")
    if isinstance(lic, str) and lic.strip():
        return lic.strip()
    return None


@dataclass(frozen=True)
class VersionMetadata:
    """One published version of a package as the registry describes it."""

    name: str
    version: str
    dependencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    peer_dependencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    peer_optional: FrozenSet[str] = frozenset()
    deprecated: Optional[str] = None
    published_at: Optional[str] = None
    license: Optional[str] = None

    @classmethod
    def from_dict(cls, name: str, version: str, doc: Dict[str, Any], published_at: Optional[str] = None) -> "VersionMetadata":
        """Build from a packument ``versions[version]`` document."""
        deprecated = doc.get("deprecated")
        if deprecated is True:
            deprecated = "deprecated"
        elif not isinstance(deprecated, str) or not deprecated.strip():
            deprecated = None
        return cls(
            name=name,
            version=version,
            dependencies=_frozen_map(doc.get("dependencies")),
            peer_dependencies=_frozen_map(doc.get("peerDependencies")),
            peer_optional=_optional_peers(doc.get("peerDependenciesMeta")),
            deprecated=deprecated,
            published_at=published_at,
            license=_license_of(doc),
        )

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "dependencies": dict(self.dependencies),
            "peerDependencies": dict(self.peer_dependencies),
            "peerDependenciesMeta": {peer: {"optional": True} for peer in sorted(self.peer_optional)},
        }
        if self.deprecated:
            doc["deprecated"] = self.deprecated
        if self.license:
            doc["license"] = self.license
        return doc


@dataclass(frozen=True)
class RegistryPackage:
    """Package metadata (packument) trimmed to what the analysis uses."""

    name: str
    versions: Mapping[str, VersionMetadata]
    dist_tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    time: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_packument(cls, data: Dict[str, Any], name: Optional[str] = None) -> "RegistryPackage":
        """Build from a registry packument (or the output of to_dict)."""
        pkg_name = str(data.get("name") or name or "")
        times = _frozen_map(data.get("time"))
        versions: Dict[str, VersionMetadata] = {}
        raw_versions = data.get("versions")
        if isinstance(raw_versions, dict):
            for version, doc in raw_versions.items():
                if not isinstance(doc, dict):
                    doc = {}
                versions[version] = VersionMetadata.from_dict(pkg_name, version, doc, times.get(version))
        return cls(
            name=pkg_name,
            versions=MappingProxyType(versions),
            dist_tags=_frozen_map(data.get("dist-tags")),
            time=times,
        )

    @property
    def latest(self) -> Optional[str]:
        return self.dist_tags.get("latest")

    @property
    def modified(self) -> Optional[str]:
        return self.time.get("modified")

    @property
    def version_list(self) -> List[str]:
        return list(self.versions.keys())

    def get_version(self, version: str) -> Optional[VersionMetadata]:
        return self.versions.get(version)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "dist-tags": dict(self.dist_tags),
            "time": dict(self.time),
            "versions": {v: meta.to_dict() for v, meta in self.versions.items()},
        }


class DependencyKind(Enum):
    """Manifest section a dependency is declared in."""

    RUNTIME = "runtime"
    DEVELOPMENT = "development"
    OPTIONAL = "optional"


@dataclass(frozen=True)
class DeclaredDependency:
    """A manifest entry after precedence between sections was applied."""

    name: str
    range: str
    kind: DependencyKind

    @property
    def optional(self) -> bool:
        return self.kind == DependencyKind.OPTIONAL


@dataclass(frozen=True)
class Manifest:
    """Contents of package.json relevant to dependency analysis."""

    name: str
    version: Optional[str] = None
    dependencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    dev_dependencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    optional_dependencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    peer_dependencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def declared(self, include_dev: bool = True) -> Dict[str, DeclaredDependency]:
        """Merge the dependency sections into one name -> DeclaredDependency map.

        Precedence when a name appears in several sections: runtime, then
        optional, then development.
        """
        merged: Dict[str, DeclaredDependency] = {}
        sections = [
            (self.dependencies, DependencyKind.RUNTIME),
            (self.optional_dependencies, DependencyKind.OPTIONAL),
        ]
        if include_dev:
            sections.append((self.dev_dependencies, DependencyKind.DEVELOPMENT))
        for section, kind in sections:
            for dep_name, dep_range in section.items():
                if dep_name not in merged:
                    merged[dep_name] = DeclaredDependency(dep_name, dep_range, kind)
        return merged

    def overlapping(self) -> Dict[str, tuple]:
        """Names declared in both runtime and development sections with different ranges."""
        return {
            dep_name: (self.dependencies[dep_name], dev_range)
            for dep_name, dev_range in self.dev_dependencies.items()
            if dep_name in self.dependencies and self.dependencies[dep_name] != dev_range
        }


@dataclass(frozen=True)
class LockEntry:
    """The version of a package materialized on disk, per the lock artifact."""

    name: str
    version: str
    path: Optional[str] = None
    dev: bool = False
    optional: bool = False
    dependencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    peer_dependencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    peer_optional: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ProjectModel:
    """Manifest plus lock data for one analysis run. Read-only after load."""

    root: str
    manifest: Manifest
    declared: Mapping[str, DeclaredDependency]
    lock_entries: Mapping[str, LockEntry] = field(default_factory=lambda: MappingProxyType({}))
    lockfile_path: Optional[str] = None
    lockfile_format: Optional[str] = None
    package_manager: str = "npm"

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def has_lockfile(self) -> bool:
        return self.lockfile_path is not None

    def lock_entry(self, package_name: str) -> Optional[LockEntry]:
        """Lock entry for exactly ``package_name`` (no suffix/substring matching)."""
        return self.lock_entries.get(package_name)

    def concrete_version_of(self, package_name: str) -> Optional[str]:
        """Installed version from lock data, or None when not installed / no lockfile."""
        entry = self.lock_entry(package_name)
        return entry.version if entry else None

    def installed_version_of(self, package_name: str) -> Optional[str]:
        """Concrete version when locked, else the declared range text (degraded model)."""
        concrete = self.concrete_version_of(package_name)
        if concrete is not None:
            return concrete
        if not self.has_lockfile:
            declared = self.declared.get(package_name)
            if declared is not None:
                return declared.range
        return None
