"""Version resolvers."""

from .npm import NpmVersionResolver, parse_version

__all__ = [
    "NpmVersionResolver",
    "parse_version",
]
