"""Data models for version specs and range resolution."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ResolutionMode(Enum):
    """Resolution strategy derived from the spec."""
    EXACT = "exact"
    RANGE = "range"
    TAG = "tag"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class VersionSpec:
    """Normalized representation of a version spec and derived behavior flags."""
    raw: str
    mode: ResolutionMode
    include_prerelease: bool
    # Range text after alias unwrapping/normalization; equals raw for plain ranges
    expression: str = ""
    # Registry package behind an ``npm:other@range`` alias
    alias_of: Optional[str] = None

    @property
    def is_registry_spec(self) -> bool:
        """False for git/file/link/url/workspace specifiers the registry can't answer."""
        return self.mode != ResolutionMode.UNSUPPORTED


@dataclass(frozen=True)
class PickResult:
    """Outcome of selecting one version from a candidate list."""
    version: Optional[str]
    candidate_count: int
    error: Optional[str] = None
