"""Resolve each package's Requirements against what is installed and classify the outcome."""

from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Dict, List, Optional, Sequence, Tuple

from constants import Constants, Severity, Verdicts
from common.logging_utils import extra_context, is_debug_enabled
from registry.npm.models import ProjectModel, RegistryPackage
from versioning.models import ResolutionMode
from versioning.parser import parse_spec
from versioning.resolvers.npm import NpmVersionResolver, parse_version

from .models import Requirement, RequirementKind, RequirementTable, Resolution

logger = logging.getLogger(__name__)


class ConflictClassifier:
    """Turns a RequirementTable into one Resolution per required package.

    Verdicts:
      * ``unknown``: the registry could not be reached and the local data
        doesn't prove the package satisfied, or a dist-tag can't be read.
      * ``conflicting``: requirements select different published versions and
        the installed version doesn't satisfy all of them. Disagreements that
        involve only ``dependency`` edges or optional peers are warnings.
      * ``missing``: a non-optional direct/peer requirement is unmet, either
        because nothing is installed or the installed version is out of range.
      * ``satisfied``: everything else; unmet optional peers and dependencies
        served by nested copies are reported as notes.
    """

    def __init__(self, client, resolver: Optional[NpmVersionResolver] = None):
        self.client = client
        self.resolver = resolver or NpmVersionResolver()

    async def resolve(self, table: RequirementTable, model: ProjectModel) -> List[Resolution]:
        """Classify every package in ``table``; the result is sorted by package name."""
        packages = table.packages()
        resolutions = await asyncio.gather(
            *(self._resolve_package(package, table.for_package(package), model) for package in packages)
        )
        result = sorted(resolutions, key=lambda r: r.package)
        logger.info(
            "%s %d packages classified: %s",
            Constants.ANALYSIS,
            len(result),
            _verdict_counts(result),
        )
        return result

    async def _resolve_package(self, package: str, requirements: List[Requirement], model: ProjectModel) -> Resolution:
        registry_reqs = [r for r in requirements if parse_spec(r.version_range).is_registry_spec]
        local_only = [r for r in requirements if r not in registry_reqs]
        notes: List[str] = [f"non-registry specifier '{r.version_range}' from {r.required_by}" for r in local_only]
        concrete = model.concrete_version_of(package)

        if not registry_reqs:
            if concrete is not None or (not model.has_lockfile and package in model.declared):
                return self._build(package, concrete, requirements, Verdicts.SATISFIED, Severity.INFO, notes=notes)
            notes.append("not installed; non-registry source can't be verified")
            return self._build(package, None, requirements, Verdicts.UNKNOWN, Severity.INFO, notes=notes)

        target = _registry_target(package, requirements)
        packument = await self.client.fetch_package(target)
        unreachable = packument is None and target in self.client.failed

        installed = concrete
        if installed is None and not model.has_lockfile and package in model.declared:
            installed = self._assume_installed(model.declared[package].range, packument)
            if installed is not None:
                notes.append(f"no lockfile; assuming {installed} from declared range '{model.declared[package].range}'")

        satisfied = {r: self._satisfied_by(r, installed, packument) for r in registry_reqs}
        unverified = [r for r, ok in satisfied.items() if ok is None and not r.optional]

        if unreachable or unverified:
            if not unverified and installed is not None and all(ok for r, ok in satisfied.items() if not r.optional):
                notes.append("registry unreachable; verified against local data only")
                return self._build(package, installed, requirements, Verdicts.SATISFIED, Severity.INFO, notes=notes)
            if unreachable:
                notes.append("registry unreachable; satisfaction could not be verified")
            else:
                notes.append("no registry data to resolve " + ", ".join(
                    f"'{r.version_range}' ({r.required_by})" for r in unverified
                ))
            return self._build(package, installed, requirements, Verdicts.UNKNOWN, Severity.INFO, notes=notes)

        unmet = [r for r in registry_reqs if not satisfied[r]]
        blocking = [r for r in unmet if not r.optional and (
            r.kind != RequirementKind.DEPENDENCY or (installed is None and model.has_lockfile)
        )]

        groups = self._conflict_groups(registry_reqs, packument)
        if len(groups) >= 2 and unmet:
            shared = [r for r in registry_reqs if r.kind != RequirementKind.DEPENDENCY]
            shared_groups = self._conflict_groups(shared, packument)
            involved = [r for r in shared if r.required_by in {o for origins in shared_groups.values() for o in origins}]
            # only direct and peer disagreements are hard conflicts
            hard = len(shared_groups) >= 2 and any(not r.optional for r in involved)
            severity = Severity.ERROR if hard or blocking else Severity.WARNING
            notes.append("requirements select different versions: " + "; ".join(
                f"{version} <- {', '.join(origins)}" for version, origins in groups.items()
            ))
            for req in unmet:
                if req.kind == RequirementKind.DEPENDENCY and req not in blocking:
                    notes.append(f"{req.required_by} needs {req.version_range}; expected as a nested install")
            return self._build(
                package, installed, requirements, Verdicts.CONFLICTING, severity,
                groups=groups, unmet=unmet, notes=notes,
            )

        if blocking:
            if installed is None:
                notes.append("not installed")
            else:
                notes.append(f"installed {installed} does not satisfy " + ", ".join(
                    f"{r.version_range} ({r.required_by})" for r in blocking
                ))
            return self._build(package, installed, requirements, Verdicts.MISSING, Severity.ERROR, unmet=unmet, notes=notes)

        severity = Severity.INFO
        for req in unmet:
            if req.optional:
                severity = Severity.WARNING
                notes.append(f"optional {req.kind.value} {req.version_range} from {req.required_by} not satisfied")
            else:
                notes.append(f"{req.required_by} needs {req.version_range}; expected as a nested install")
        return self._build(package, installed, requirements, Verdicts.SATISFIED, severity, unmet=unmet, notes=notes)

    def _assume_installed(self, declared_range: str, packument: Optional[RegistryPackage]) -> Optional[str]:
        """Best-guess install for a project without a lockfile: what the range would pick today."""
        if packument is None:
            return None
        return self.resolver.max_satisfying(packument.version_list, declared_range, packument.dist_tags)

    def _satisfied_by(
        self, requirement: Requirement, version: Optional[str], packument: Optional[RegistryPackage]
    ) -> Optional[bool]:
        """True or False when decidable; None for a dist-tag with no packument to read it from."""
        if version is None or parse_version(version) is None:
            return False
        spec = parse_spec(requirement.version_range)
        if spec.mode == ResolutionMode.TAG:
            if packument is None:
                return None
            tagged = packument.dist_tags.get(spec.expression)
            # a tag the registry doesn't publish says nothing about the installed version
            return tagged is None or parse_version(tagged) == parse_version(version)
        return self.resolver.satisfies(version, spec)

    def _conflict_groups(self, requirements: Sequence[Requirement], packument: Optional[RegistryPackage]) -> Dict[str, Tuple[str, ...]]:
        """Map each selected published version to the origins whose range picks it."""
        if packument is None:
            return {}
        grouped: Dict[str, set] = {}
        for req in requirements:
            picked = self.resolver.pick(parse_spec(req.version_range), packument.version_list, packument.dist_tags)
            if picked.version is not None:
                grouped.setdefault(picked.version, set()).add(req.required_by)
        ordered = self.resolver.sort_versions(grouped.keys(), reverse=False)
        return {version: tuple(sorted(grouped[version])) for version in ordered}

    def _build(
        self,
        package: str,
        installed: Optional[str],
        requirements: Sequence[Requirement],
        verdict: Verdicts,
        severity: Severity,
        *,
        groups: Optional[Dict[str, Tuple[str, ...]]] = None,
        unmet: Sequence[Requirement] = (),
        notes: Sequence[str] = (),
    ) -> Resolution:
        if is_debug_enabled(logger):
            logger.debug(
                "Package classified",
                extra=extra_context(
                    event="classify",
                    component="classifier",
                    package=package,
                    outcome=verdict.value,
                    severity=severity.value,
                    installed=installed,
                ),
            )
        return Resolution(
            package=package,
            installed_version=installed,
            requirements=tuple(requirements),
            verdict=verdict,
            severity=severity,
            conflict_groups=MappingProxyType(dict(groups or {})),
            unmet=tuple(unmet),
            notes=tuple(notes),
        )


def _registry_target(package: str, requirements: Sequence[Requirement]) -> str:
    """Registry name behind ``package``, following an ``npm:`` alias if one was declared."""
    for req in requirements:
        alias = parse_spec(req.version_range).alias_of
        if alias:
            return alias
    return package


def _verdict_counts(resolutions: Sequence[Resolution]) -> str:
    counts: Dict[str, int] = {}
    for r in resolutions:
        counts[r.verdict.value] = counts.get(r.verdict.value, 0) + 1
    return ", ".join(f"{k}={counts[k]}" for k in sorted(counts)) or "none"
