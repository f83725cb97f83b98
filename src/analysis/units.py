"""Analyzer units scheduled by the orchestrator."""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from constants import Constants, Severity, Verdicts
from registry.npm.models import ProjectModel, RegistryPackage, VersionMetadata
from versioning.parser import parse_spec

from .classifier import ConflictClassifier
from .collector import RequirementCollector
from .models import DeprecatedPackage, LicenseIssue, Priority, Recommendation, Resolution, UnitResult

logger = logging.getLogger(__name__)

_INSTALL_COMMANDS = {
    "npm": "npm install",
    "pnpm": "pnpm add",
    "yarn": "yarn add",
}

# SPDX ids (upper-cased) accepted without a finding
_PERMISSIVE_LICENSES = frozenset({
    "0BSD", "APACHE 2.0", "APACHE-2.0", "BLUEOAK-1.0.0", "BSD", "BSD-2-CLAUSE",
    "BSD-3-CLAUSE", "CC0-1.0", "ISC", "MIT", "UNLICENSE", "ZLIB",
})


class AnalyzerUnit:
    """Base class for an independent analysis task."""

    label = "unit"

    async def analyze(self) -> UnitResult:
        raise NotImplementedError


def install_command(package_manager: str, package: str, version_range: str) -> str:
    base = _INSTALL_COMMANDS.get(package_manager, _INSTALL_COMMANDS["npm"])
    return f'{base} {package}@"{version_range}"'


def recommendations_for(resolutions: Sequence[Resolution], package_manager: str = "npm") -> List[Recommendation]:
    """Derive recommendations from classifier output."""
    recs: List[Recommendation] = []
    for res in resolutions:
        origins = ", ".join(res.required_by)
        if res.verdict == Verdicts.MISSING:
            wanted = res.unmet[0].version_range if res.unmet else res.requirements[0].version_range
            if res.installed_version is None:
                message = f"{res.package} is required by {origins} but not installed"
            else:
                message = f"{res.package}@{res.installed_version} does not satisfy the range required by {origins}"
            recs.append(Recommendation(
                type=Severity.ERROR,
                category="compatibility",
                message=message,
                package=res.package,
                action=f"Install a version matching {wanted}",
                command=install_command(package_manager, res.package, wanted),
                priority=Priority.HIGH,
            ))
        elif res.verdict == Verdicts.CONFLICTING:
            groups = "; ".join(f"{v} for {', '.join(o)}" for v, o in res.conflict_groups.items())
            recs.append(Recommendation(
                type=res.severity,
                category="compatibility",
                message=f"Conflicting version requirements for {res.package}",
                package=res.package,
                action=f"Align the packages requiring {res.package} ({groups})",
                priority=Priority.HIGH if res.severity == Severity.ERROR else Priority.MEDIUM,
            ))
        elif res.verdict == Verdicts.UNKNOWN:
            recs.append(Recommendation(
                type=Severity.INFO,
                category="compatibility",
                message=f"Compatibility of {res.package} could not be verified",
                package=res.package,
                action="Re-run with registry access",
                priority=Priority.LOW,
            ))
        elif res.severity == Severity.WARNING:
            recs.append(Recommendation(
                type=Severity.WARNING,
                category="compatibility",
                message=f"Optional requirement on {res.package} is not satisfied",
                package=res.package,
                action=f"Install {res.package} if the features of {origins} that need it are used",
                priority=Priority.LOW,
            ))
    return recs


class CompatibilityUnit(AnalyzerUnit):
    """Collect requirements and classify them."""

    label = "compatibility"

    def __init__(self, model: ProjectModel, collector: RequirementCollector, classifier: ConflictClassifier):
        self.model = model
        self.collector = collector
        self.classifier = classifier

    async def analyze(self) -> UnitResult:
        table = await self.collector.collect(self.model)
        resolutions = await self.classifier.resolve(table, self.model)
        return UnitResult(
            resolutions=resolutions,
            requirements=list(table),
            recommendations=recommendations_for(resolutions, self.model.package_manager),
            unknown=set(table.unknown),
        )


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _installed_metadata(client, model: ProjectModel, name: str) -> Optional[VersionMetadata]:
    """Registry metadata of the installed version of a declared dependency, or of its best match."""
    declared = model.declared[name]
    version = model.concrete_version_of(name)
    if version is not None:
        return await client.fetch_version(parse_spec(declared.range).alias_of or name, version)
    return await client.fetch_version(name, declared.range)


class DeprecationUnit(AnalyzerUnit):
    """Flag declared dependencies that are deprecated or have gone without a release for too long."""

    label = "deprecation"

    def __init__(
        self,
        model: ProjectModel,
        client,
        *,
        stale_after_days: int = Constants.STALE_AFTER_DAYS,
        exclude: Optional[Callable[[str], bool]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.model = model
        self.client = client
        self.stale_after = timedelta(days=stale_after_days)
        self.exclude = exclude or (lambda name: False)
        self.now = now or (lambda: datetime.now(timezone.utc))

    async def analyze(self) -> UnitResult:
        names = sorted(n for n in self.model.declared if not self.exclude(n))
        findings = await asyncio.gather(*(self._check(n) for n in names))
        deprecated = [f for f in findings if f is not None]
        recs = [
            Recommendation(
                type=Severity.WARNING,
                category="maintenance",
                message=f"{pkg.name} is deprecated: {pkg.message}",
                package=pkg.name,
                action="Look for a maintained alternative",
                priority=Priority.MEDIUM,
            )
            for pkg in deprecated
        ]
        if deprecated:
            logger.info("%s %d deprecated or unmaintained packages", Constants.ANALYSIS, len(deprecated))
        return UnitResult(deprecated=deprecated, recommendations=recs)

    async def _check(self, name: str) -> Optional[DeprecatedPackage]:
        meta = await _installed_metadata(self.client, self.model, name)
        if meta is None:
            return None
        if meta.deprecated:
            return DeprecatedPackage(name, meta.version, meta.deprecated, meta.published_at)
        package: Optional[RegistryPackage] = await self.client.fetch_package(meta.name)
        if package is None or not package.latest:
            return None
        last_release = _parse_time(package.time.get(package.latest)) or _parse_time(package.modified)
        if last_release is not None and self.now() - last_release > self.stale_after:
            return DeprecatedPackage(
                name,
                meta.version,
                f"no release since {last_release.date().isoformat()}",
                last_release.isoformat(),
            )
        return None


def license_concerns(license: Optional[str], allowed: Iterable[str] = ()) -> List[str]:
    """Reasons a license needs a manual review; empty for a permissive one.

    ``allowed`` extends the permissive list. An SPDX ``OR`` expression is
    accepted when any of its choices is.
    """
    if not license or license.strip().upper() == "UNKNOWN":
        return ["unknown license, check it manually"]
    accepted = _PERMISSIVE_LICENSES | {a.strip().upper() for a in allowed}
    choices = [c.strip(" ()").upper() for c in re.split(r"\s+OR\s+", license.strip(), flags=re.IGNORECASE)]
    if any(c in accepted for c in choices):
        return []
    text = license.upper()
    concerns = []
    if "GPL" in text:
        concerns.append("copyleft license, may affect distribution")
    if "COMMERCIAL" in text or "UNLICENSED" in text or text.startswith("SEE LICENSE"):
        concerns.append("commercial or proprietary license, usage may have costs")
    if not concerns:
        concerns.append(f"{license} is not a known permissive license")
    return concerns


class LicenseUnit(AnalyzerUnit):
    """Flag declared dependencies whose license is unknown, copyleft or commercial."""

    label = "license"

    def __init__(
        self,
        model: ProjectModel,
        client,
        *,
        allowed: Sequence[str] = (),
        exclude: Optional[Callable[[str], bool]] = None,
    ):
        self.model = model
        self.client = client
        self.allowed = tuple(allowed)
        self.exclude = exclude or (lambda name: False)

    async def analyze(self) -> UnitResult:
        names = sorted(n for n in self.model.declared if not self.exclude(n))
        findings = await asyncio.gather(*(self._check(n) for n in names))
        issues = [f for f in findings if f is not None]
        recs = [
            Recommendation(
                type=Severity.WARNING,
                category="license",
                message=f"{issue.name}@{issue.version} is licensed under {issue.license}: {'; '.join(issue.concerns)}",
                package=issue.name,
                action="Review the license terms before distributing",
                priority=Priority.LOW,
            )
            for issue in issues
        ]
        if issues:
            logger.info("%s %d packages with license concerns", Constants.ANALYSIS, len(issues))
        return UnitResult(license_issues=issues, recommendations=recs)

    async def _check(self, name: str) -> Optional[LicenseIssue]:
        meta = await _installed_metadata(self.client, self.model, name)
        if meta is None:
            return None
        concerns = license_concerns(meta.license, self.allowed)
        if not concerns:
            return None
        return LicenseIssue(name, meta.version, meta.license or "UNKNOWN", tuple(concerns))
