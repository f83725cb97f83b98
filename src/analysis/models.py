"""Typed results exchanged between the collector, classifier, units and merge step."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from constants import Severity, Verdicts


class RequirementKind(Enum):
    """How a Requirement was discovered."""

    DIRECT = "direct"
    DEPENDENCY = "dependency"
    PEER = "peer"


@dataclass(frozen=True)
class Requirement:
    """One edge of the constraint graph: ``required_by`` needs ``package@version_range``."""

    package: str
    version_range: str
    required_by: str
    kind: RequirementKind
    optional: bool = False
    depth: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package": self.package,
            "version_range": self.version_range,
            "required_by": self.required_by,
            "kind": self.kind.value,
            "optional": self.optional,
            "depth": self.depth,
        }


@dataclass
class RequirementTable:
    """Requirements grouped by target package, in discovery order."""

    requirements: Dict[str, List[Requirement]] = field(default_factory=dict)
    expanded: Set[str] = field(default_factory=set)
    unknown: Set[str] = field(default_factory=set)

    def add(self, requirement: Requirement) -> None:
        self.requirements.setdefault(requirement.package, []).append(requirement)

    def for_package(self, package: str) -> List[Requirement]:
        return list(self.requirements.get(package, ()))

    def packages(self) -> List[str]:
        return sorted(self.requirements)

    def __iter__(self) -> Iterator[Requirement]:
        for package in self.packages():
            yield from self.requirements[package]

    def __len__(self) -> int:
        return sum(len(reqs) for reqs in self.requirements.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requirements": {pkg: [r.to_dict() for r in self.requirements[pkg]] for pkg in self.packages()},
            "expanded": sorted(self.expanded),
            "unknown": sorted(self.unknown),
        }


@dataclass(frozen=True)
class Resolution:
    """Verdict for one package across every Requirement that targets it."""

    package: str
    installed_version: Optional[str]
    requirements: Tuple[Requirement, ...]
    verdict: Verdicts
    severity: Severity
    # selected version -> origins whose range resolves to it
    conflict_groups: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    unmet: Tuple[Requirement, ...] = ()
    notes: Tuple[str, ...] = ()

    @property
    def required_by(self) -> List[str]:
        return sorted({r.required_by for r in self.requirements})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package": self.package,
            "installed_version": self.installed_version,
            "verdict": self.verdict.value,
            "severity": self.severity.value,
            "requirements": [r.to_dict() for r in self.requirements],
            "conflict_groups": {v: list(origins) for v, origins in self.conflict_groups.items()},
            "unmet": [r.to_dict() for r in self.unmet],
            "notes": list(self.notes),
        }


class Priority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_PRIORITY_ORDER = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


@dataclass(frozen=True)
class Recommendation:
    """An actionable suggestion derived from a finding."""

    type: Severity
    category: str
    message: str
    package: Optional[str] = None
    action: Optional[str] = None
    command: Optional[str] = None
    priority: Priority = Priority.MEDIUM

    @property
    def key(self) -> Tuple[str, str]:
        """De-duplication key."""
        return self.message, self.package or ""

    @property
    def sort_key(self) -> Tuple[int, str, str]:
        return _PRIORITY_ORDER[self.priority], self.package or "", self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "category": self.category,
            "message": self.message,
            "package": self.package,
            "action": self.action,
            "command": self.command,
            "priority": self.priority.value,
        }


@dataclass(frozen=True)
class DeprecatedPackage:
    """A dependency whose installed version is deprecated or that looks unmaintained."""

    name: str
    version: str
    message: str
    last_update: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "message": self.message,
            "last_update": self.last_update,
        }


@dataclass(frozen=True)
class LicenseIssue:
    """A dependency whose license needs a manual look."""

    name: str
    version: str
    license: str
    concerns: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "license": self.license,
            "concerns": list(self.concerns),
        }


@dataclass
class UnitResult:
    """Partial result contributed by one analyzer unit."""

    resolutions: List[Resolution] = field(default_factory=list)
    requirements: List[Requirement] = field(default_factory=list)
    deprecated: List[DeprecatedPackage] = field(default_factory=list)
    license_issues: List[LicenseIssue] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    unknown: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class HealthSummary:
    total_packages: int
    satisfied: int
    missing: int
    conflicting: int
    unknown: int
    errors: int
    warnings: int
    deprecated: int
    recommendations: int
    health_score: int

    @property
    def total_issues(self) -> int:
        return self.errors + self.warnings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_packages": self.total_packages,
            "satisfied": self.satisfied,
            "missing": self.missing,
            "conflicting": self.conflicting,
            "unknown": self.unknown,
            "errors": self.errors,
            "warnings": self.warnings,
            "deprecated": self.deprecated,
            "recommendations": self.recommendations,
            "total_issues": self.total_issues,
            "health_score": self.health_score,
        }


@dataclass(frozen=True)
class RunMetadata:
    project_name: str
    project_path: str
    package_manager: str
    lockfile: Optional[str]
    registry: str
    started_at: str
    duration_ms: int
    tool_version: str
    python_version: str
    platform: str
    requests_made: int = 0
    cache_hits: int = 0
    offline: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class MergedResult:
    """Combined output of every analyzer unit in a run."""

    resolutions: List[Resolution] = field(default_factory=list)
    requirements: List[Requirement] = field(default_factory=list)
    deprecated: List[DeprecatedPackage] = field(default_factory=list)
    license_issues: List[LicenseIssue] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)
    failed_units: List[str] = field(default_factory=list)
    summary: Optional[HealthSummary] = None
    metadata: Optional[RunMetadata] = None

    def resolution_for(self, package: str) -> Optional[Resolution]:
        for resolution in self.resolutions:
            if resolution.package == package:
                return resolution
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict() if self.summary else None,
            "resolutions": [r.to_dict() for r in self.resolutions],
            "requirements": [r.to_dict() for r in self.requirements],
            "deprecated_packages": [d.to_dict() for d in self.deprecated],
            "license_issues": [i.to_dict() for i in self.license_issues],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "unknown": list(self.unknown),
            "failed_units": list(self.failed_units),
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


@dataclass(frozen=True)
class AnalysisProgress:
    completed: int
    total: int
    current_task: str
    percentage: int
