"""NPM version resolver using semantic versioning."""

import logging
import re
from functools import lru_cache
from typing import Iterable, List, Mapping, Optional, Union

import semantic_version

from ..models import PickResult, ResolutionMode, VersionSpec
from ..parser import parse_spec

logger = logging.getLogger(__name__)


SpecLike = Union[str, VersionSpec]


def parse_version(value: str) -> Optional[semantic_version.Version]:
    """Parse a concrete version, tolerating a leading ``v`` or ``=``.

    Returns None for anything that is not a full semantic version.
    """
    if not isinstance(value, str):
        return None
    text = value.strip().lstrip("=v").strip()
    try:
        return semantic_version.Version(text)
    except ValueError:
        return None


def _normalize_spec(spec_str: str) -> str:
    """Normalize npm range syntax (hyphen, x-ranges) into SimpleSpec-compatible form."""
    s = spec_str.strip()

    # Hyphen ranges: "1.2.3 - 1.4.5" => ">=1.2.3, <=1.4.5"
    m = re.match(r'^\s*([0-9A-Za-z\.\-\+]+)\s+-\s+([0-9A-Za-z\.\-\+]+)\s*$', s)
    if m:
        left, right = m.group(1), m.group(2)
        return f">={left},<={right}"

    # x-ranges: 1.2.x or 1.x or 1.* -> convert to comparator pairs
    s2 = s.replace('*', 'x').lower()
    m = re.match(r'^\s*(\d+)\.(\d+)\.x\s*$', s2)
    if m:
        major, minor = int(m.group(1)), int(m.group(2))
        return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

    m = re.match(r'^\s*(\d+)(\.x)?\s*$', s2)
    if m:
        major = int(m.group(1))
        return f">={major}.0.0,<{major + 1}.0.0"

    # Space separated comparator sets: ">=1.0.0 <2.0.0" => ">=1.0.0,<2.0.0"
    return re.sub(r"\s+", ",", s)


@lru_cache(maxsize=4096)
def _compile(expression: str):
    """Compile an npm range into a semantic_version spec, or None when invalid."""
    if expression in ("*", ""):
        expression = ">=0.0.0"
    try:
        return semantic_version.NpmSpec(expression)
    except ValueError:
        pass
    # Fallback to normalized SimpleSpec if NpmSpec cannot parse
    try:
        return semantic_version.SimpleSpec(_normalize_spec(expression))
    except ValueError as e:
        logger.debug("Invalid semver spec %r: %s", expression, e)
        return None


def _as_spec(spec: SpecLike) -> VersionSpec:
    return spec if isinstance(spec, VersionSpec) else parse_spec(spec)


class NpmVersionResolver:
    """Range semantics for npm packages.

    Prereleases are excluded unless the range itself names one, in which case
    npm's same-major.minor.patch rule (enforced by NpmSpec) applies.
    """

    def satisfies(self, version: str, spec: SpecLike) -> bool:
        """Check whether the concrete ``version`` satisfies ``spec``.

        Tags and unsupported specifiers never match here; resolve tags with
        max_satisfying() against registry dist-tags instead.
        """
        ver = parse_version(version)
        if ver is None:
            return False
        vs = _as_spec(spec)
        if vs.mode == ResolutionMode.EXACT:
            target = parse_version(vs.expression)
            return target is not None and ver == target
        if vs.mode != ResolutionMode.RANGE:
            return False
        # Skip pre-releases unless explicitly allowed
        if ver.prerelease and not vs.include_prerelease:
            return False
        compiled = _compile(vs.expression)
        if compiled is None:
            return False
        try:
            return bool(compiled.match(ver))
        except (TypeError, ValueError):
            return False

    def sort_versions(self, candidates: Iterable[str], reverse: bool = True) -> List[str]:
        """Return the valid semantic versions from ``candidates``, highest first by default."""
        parsed = []
        for v in candidates:
            ver = parse_version(v)
            if ver is not None:
                parsed.append((ver, v))
        parsed.sort(key=lambda item: item[0], reverse=reverse)
        return [original for _, original in parsed]

    def max_satisfying(
        self,
        candidates: Iterable[str],
        spec: SpecLike,
        dist_tags: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        """Highest candidate satisfying ``spec`` (most-permissive-wins tie-break)."""
        return self.pick(spec, list(candidates), dist_tags).version

    def pick(
        self,
        spec: SpecLike,
        candidates: List[str],
        dist_tags: Optional[Mapping[str, str]] = None,
    ) -> PickResult:
        """Apply NPM semver rules to select a version.

        Args:
            spec: Requested range, exact version, or dist-tag.
            candidates: Available version strings.
            dist_tags: Registry dist-tags used to resolve tag specs.

        Returns:
            PickResult with the selected version or an error message.
        """
        vs = _as_spec(spec)
        if not candidates:
            return PickResult(None, 0, "No versions available")

        if vs.mode == ResolutionMode.UNSUPPORTED:
            return PickResult(None, len(candidates), f"Non-registry spec '{vs.raw}'")

        if vs.mode == ResolutionMode.TAG:
            tagged = (dist_tags or {}).get(vs.expression)
            if tagged and tagged in candidates:
                return PickResult(tagged, len(candidates))
            if vs.expression == "latest":
                return self._pick_latest(candidates)
            return PickResult(None, len(candidates), f"Unknown dist-tag '{vs.expression}'")

        if vs.mode == ResolutionMode.EXACT:
            target = parse_version(vs.expression)
            for v in candidates:
                ver = parse_version(v)
                if ver is not None and ver == target:
                    return PickResult(v, len(candidates))
            return PickResult(None, len(candidates), f"Version {vs.expression} not found")

        if _compile(vs.expression) is None:
            return PickResult(None, len(candidates), f"Invalid semver spec '{vs.raw}'")
        for v in self.sort_versions(candidates):
            if self.satisfies(v, vs):
                return PickResult(v, len(candidates))
        return PickResult(None, len(candidates), f"No versions match spec '{vs.raw}'")

    def _pick_latest(self, candidates: List[str]) -> PickResult:
        """Pick the highest non-prerelease version, falling back to the highest overall."""
        ordered = self.sort_versions(candidates)
        if not ordered:
            return PickResult(None, len(candidates), "No valid semantic versions found")
        for v in ordered:
            ver = parse_version(v)
            if ver is not None and not ver.prerelease:
                return PickResult(v, len(candidates))
        return PickResult(ordered[0], len(candidates))
