"""Merging of unit results and the health summary.

Merging is commutative and idempotent: the output depends only on the set of
findings, not on the order units finished in or on repeated contributions.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from constants import DefaultScores, Severity, Verdicts

from .models import HealthSummary, MergedResult, Recommendation, Resolution, UnitResult

_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2}


def _resolution_rank(res: Resolution):
    return _SEVERITY_RANK[res.severity], res.verdict.value, res.installed_version or "", res.notes


def dedupe_recommendations(recommendations: Iterable[Recommendation]) -> List[Recommendation]:
    """Keep one recommendation per (message, package), ordered by priority."""
    ordered = sorted(
        recommendations,
        key=lambda r: (r.sort_key, r.type.value, r.category, r.action or "", r.command or ""),
    )
    seen = set()
    unique = []
    for rec in ordered:
        if rec.key in seen:
            continue
        seen.add(rec.key)
        unique.append(rec)
    return unique


def compute_summary(result: MergedResult) -> HealthSummary:
    """Count findings and derive the 0-100 health score."""
    counts = {verdict: 0 for verdict in Verdicts}
    errors = warnings = 0
    for res in result.resolutions:
        counts[res.verdict] += 1
        if res.severity == Severity.ERROR:
            errors += 1
        elif res.severity == Severity.WARNING:
            warnings += 1
    deprecated = len(result.deprecated)
    score = 100
    score -= errors * DefaultScores.ERROR_PENALTY.value
    score -= warnings * DefaultScores.WARNING_PENALTY.value
    score -= deprecated * DefaultScores.DEPRECATED_PENALTY.value
    return HealthSummary(
        total_packages=len(result.resolutions),
        satisfied=counts[Verdicts.SATISFIED],
        missing=counts[Verdicts.MISSING],
        conflicting=counts[Verdicts.CONFLICTING],
        unknown=counts[Verdicts.UNKNOWN],
        errors=errors,
        warnings=warnings,
        deprecated=deprecated,
        recommendations=len(result.recommendations),
        health_score=max(0, min(100, score)),
    )


def merge_results(partials: Sequence[UnitResult]) -> MergedResult:
    """Combine unit results into one MergedResult with a computed summary."""
    resolutions: Dict[str, Resolution] = {}
    requirements = set()
    deprecated = {}
    licenses = {}
    recommendations: List[Recommendation] = []
    unknown = set()
    for partial in partials:
        for res in partial.resolutions:
            current = resolutions.get(res.package)
            if current is None or _resolution_rank(res) > _resolution_rank(current):
                resolutions[res.package] = res
        requirements.update(partial.requirements)
        for pkg in partial.deprecated:
            key = (pkg.name, pkg.version)
            if key not in deprecated or (pkg.message, pkg.last_update or "") < (deprecated[key].message, deprecated[key].last_update or ""):
                deprecated[key] = pkg
        for issue in partial.license_issues:
            key = (issue.name, issue.version)
            if key not in licenses or (issue.license, issue.concerns) < (licenses[key].license, licenses[key].concerns):
                licenses[key] = issue
        recommendations.extend(partial.recommendations)
        unknown.update(partial.unknown)

    merged = MergedResult(
        resolutions=[resolutions[name] for name in sorted(resolutions)],
        requirements=sorted(
            requirements,
            key=lambda r: (r.package, r.depth, r.required_by, r.kind.value, r.version_range, r.optional),
        ),
        deprecated=[deprecated[key] for key in sorted(deprecated)],
        license_issues=[licenses[key] for key in sorted(licenses)],
        recommendations=dedupe_recommendations(recommendations),
        unknown=sorted(unknown),
    )
    merged.summary = compute_summary(merged)
    return merged
