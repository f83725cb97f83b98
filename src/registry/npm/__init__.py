"""NPM registry package.

This package provides npm ecosystem support:
- models.py: registry metadata, manifest, lock entries and the project model
- client.py: async packument client with caching and a request limiter
- lockfile_parser.py: package-lock.json, pnpm-lock.yaml and yarn.lock parsers
- project.py: project loading and lockfile selection
"""

from .client import NpmRegistryClient, build_cache, package_url  # noqa: F401
from .lockfile_parser import (  # noqa: F401
    parse_package_lock,
    parse_pnpm_lock,
    parse_yarn_lock,
)
from .models import (  # noqa: F401
    DeclaredDependency,
    DependencyKind,
    LockEntry,
    Manifest,
    ProjectModel,
    RegistryPackage,
    VersionMetadata,
)
from .project import load_project  # noqa: F401

__all__ = [
    # Client
    "NpmRegistryClient",
    "build_cache",
    "package_url",
    # Loader
    "load_project",
    "parse_package_lock",
    "parse_pnpm_lock",
    "parse_yarn_lock",
    # Models
    "DeclaredDependency",
    "DependencyKind",
    "LockEntry",
    "Manifest",
    "ProjectModel",
    "RegistryPackage",
    "VersionMetadata",
]
