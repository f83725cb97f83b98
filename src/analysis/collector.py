"""Requirement collection: walk the declared graph breadth-first through registry metadata."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from typing import Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer
from registry.npm.models import ProjectModel
from versioning.parser import parse_spec

from .models import Requirement, RequirementKind, RequirementTable

logger = logging.getLogger(__name__)

# (dependencies, peerDependencies, optional peer names) of one expanded package
_Edges = Tuple[Mapping[str, str], Mapping[str, str], Set[str]]


class RequirementCollector:
    """Builds a RequirementTable from a ProjectModel.

    Every manifest entry is a ``direct`` Requirement at depth 0. Packages at
    a depth below ``max_depth`` are expanded once: the dependencies and peer
    dependencies of their installed (or best-guess) version become new
    Requirements one level deeper.
    """

    def __init__(
        self,
        client,
        *,
        max_depth: int = Constants.DEFAULT_DEPTH,
        exclude: Optional[Sequence[str]] = None,
        skip_optional_peers: bool = False,
    ):
        self.client = client
        self.max_depth = max(0, int(max_depth))
        self.exclude = [p for p in (exclude or []) if p]
        self.skip_optional_peers = skip_optional_peers

    def is_excluded(self, package: str) -> bool:
        """Match exact names and ``*`` globs (``@types/*``, ``eslint-*``)."""
        for pattern in self.exclude:
            if pattern == package:
                return True
            if "*" in pattern and fnmatch.fnmatchcase(package, pattern):
                return True
        return False

    async def collect(self, model: ProjectModel) -> RequirementTable:
        """Collect every Requirement reachable within ``max_depth`` hops."""
        table = RequirementTable()
        visited: Set[Tuple[str, str]] = set()
        frontier: List[Tuple[str, str]] = []

        with Timer() as timer:
            for dep in sorted(model.declared.values(), key=lambda d: d.name):
                if self.is_excluded(dep.name):
                    logger.debug("Excluded from analysis: %s", dep.name)
                    continue
                requirement = Requirement(
                    package=dep.name,
                    version_range=dep.range,
                    required_by=model.name,
                    kind=RequirementKind.DIRECT,
                    optional=dep.optional,
                    depth=0,
                )
                if self._record(table, visited, requirement):
                    frontier.append((dep.name, dep.range))

            depth = 0
            while frontier and depth < self.max_depth:
                batch = []
                for package, version_range in frontier:
                    if package in table.expanded:
                        continue
                    table.expanded.add(package)
                    batch.append((package, version_range))
                edges = await asyncio.gather(*(self._edges_of(model, table, p, r) for p, r in batch))

                next_frontier: List[Tuple[str, str]] = []
                for (origin, _), found in zip(batch, edges):
                    if found is None:
                        continue
                    next_frontier.extend(self._requirements_from(table, visited, origin, found, depth + 1))
                frontier = next_frontier
                depth += 1

        if is_debug_enabled(logger):
            logger.debug(
                "Requirements collected",
                extra=extra_context(
                    event="collect_done",
                    component="collector",
                    count=len(table),
                    packages=len(table.requirements),
                    expanded=len(table.expanded),
                    unknown=len(table.unknown),
                    duration_ms=timer.duration_ms(),
                ),
            )
        return table

    @staticmethod
    def _record(table: RequirementTable, visited: Set[Tuple[str, str]], requirement: Requirement) -> bool:
        edge = (requirement.package, requirement.required_by)
        if edge in visited:
            return False
        visited.add(edge)
        table.add(requirement)
        return True

    def _requirements_from(
        self,
        table: RequirementTable,
        visited: Set[Tuple[str, str]],
        origin: str,
        found: _Edges,
        depth: int,
    ) -> Iterable[Tuple[str, str]]:
        dependencies, peers, optional_peers = found
        added = []
        for name, version_range in sorted(dependencies.items()):
            if self.is_excluded(name):
                continue
            req = Requirement(name, version_range, origin, RequirementKind.DEPENDENCY, False, depth)
            if self._record(table, visited, req):
                added.append((name, version_range))
        for name, version_range in sorted(peers.items()):
            optional = name in optional_peers
            if (optional and self.skip_optional_peers) or self.is_excluded(name):
                continue
            req = Requirement(name, version_range, origin, RequirementKind.PEER, optional, depth)
            if self._record(table, visited, req):
                added.append((name, version_range))
        return added

    async def _edges_of(self, model: ProjectModel, table: RequirementTable, package: str, version_range: str) -> Optional[_Edges]:
        """Dependencies and peers of the version of ``package`` that is (or would be) installed.

        Lock-recorded peers take precedence over registry peers. When the
        registry can't be reached the lock data is used alone and the package
        is recorded as unknown.
        """
        entry = model.lock_entry(package)
        spec = parse_spec(version_range)
        target = spec.alias_of or package
        if entry is not None:
            meta = await self.client.fetch_version(target, entry.version)
        else:
            meta = await self.client.fetch_version(package, version_range)

        if meta is None and target in self.client.failed:
            table.unknown.add(package)
            logger.debug(
                "Couldn't expand %s: registry unavailable",
                package,
                extra=extra_context(event="expand_failed", component="collector", package=package),
            )
        if meta is None and entry is None:
            return None

        dependencies = meta.dependencies if meta is not None else entry.dependencies
        if entry is not None and entry.peer_dependencies:
            return dependencies, entry.peer_dependencies, set(entry.peer_optional)
        if meta is not None:
            return dependencies, meta.peer_dependencies, set(meta.peer_optional)
        return dependencies, {}, set()
