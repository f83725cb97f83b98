"""Parsing of npm dependency specifiers into VersionSpec values."""

import re
from functools import lru_cache

from .models import ResolutionMode, VersionSpec

_UNSUPPORTED_PREFIXES = (
    "git+", "git:", "git@", "github:", "gitlab:", "bitbucket:", "gist:",
    "http:", "https:", "file:", "link:", "portal:", "workspace:", "patch:",
)
_EXACT_RE = re.compile(r"^\s*[=v]*\s*\d+\.\d+\.\d+(-[0-9A-Za-z.\-]+)?(\+[0-9A-Za-z.\-]+)?\s*$")
_TAG_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._\-]*$")
_PRERELEASE_RE = re.compile(r"\d+\.\d+\.\d+-[0-9A-Za-z]")
_ANY_RANGES = {"", "*", "x", "X"}


def _looks_like_repo_shorthand(spec: str) -> bool:
    """``user/repo`` or ``user/repo#ref`` GitHub shorthand."""
    return bool(re.match(r"^[A-Za-z0-9_.\-]+/[A-Za-z0-9_.\-]+(#.*)?$", spec)) and not spec.startswith("@")


def unwrap_alias(spec: str):
    """Split ``npm:real-name@^1.0.0`` into (``real-name``, ``^1.0.0``).

    Returns (None, spec) for non-alias specs.
    """
    if not spec.startswith("npm:"):
        return None, spec
    target = spec[4:]
    at = target.find("@", 1)
    if at < 0:
        return target, ""
    return target[:at], target[at + 1:]


@lru_cache(maxsize=4096)
def parse_spec(raw_spec: str) -> VersionSpec:
    """Classify a manifest/registry dependency specifier.

    Args:
        raw_spec: The range text exactly as declared (``^1.2.0``, ``latest``,
            ``npm:other@~2``, ``github:user/repo``...).

    Returns:
        VersionSpec carrying the resolution mode and the range expression to
        evaluate.
    """
    raw = raw_spec if isinstance(raw_spec, str) else str(raw_spec)
    spec = raw.strip()
    alias_of, spec = unwrap_alias(spec)
    spec = spec.strip()

    if spec.lower().startswith(_UNSUPPORTED_PREFIXES) or _looks_like_repo_shorthand(spec):
        return VersionSpec(raw=raw, mode=ResolutionMode.UNSUPPORTED, include_prerelease=False,
                           expression=spec, alias_of=alias_of)

    if spec in _ANY_RANGES:
        return VersionSpec(raw=raw, mode=ResolutionMode.RANGE, include_prerelease=False,
                           expression="*", alias_of=alias_of)

    if _EXACT_RE.match(spec):
        exact = spec.lstrip("=v ").strip()
        return VersionSpec(raw=raw, mode=ResolutionMode.EXACT,
                           include_prerelease=bool(_PRERELEASE_RE.search(exact)),
                           expression=exact, alias_of=alias_of)

    if _TAG_RE.match(spec) and spec.lower() not in ("x",):
        return VersionSpec(raw=raw, mode=ResolutionMode.TAG, include_prerelease=True,
                           expression=spec, alias_of=alias_of)

    # npm tolerates whitespace between an operator and its version
    expression = re.sub(r"([<>=~^]+)\s+(?=[\dvxX*])", r"\1", spec)
    return VersionSpec(raw=raw, mode=ResolutionMode.RANGE,
                       include_prerelease=bool(_PRERELEASE_RE.search(expression)),
                       expression=expression, alias_of=alias_of)
