"""NPM registry client: package metadata with caching and bounded concurrency."""

from __future__ import annotations

import asyncio
import logging
import os
import urllib.parse
from typing import Dict, Iterable, Optional, Set

from constants import Constants
from common.errors import NetworkError
from common.http_client import AsyncHttpClient
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from registry.cache import RegistryCache
from versioning.parser import parse_spec
from versioning.resolvers.npm import NpmVersionResolver

from .models import RegistryPackage, VersionMetadata

logger = logging.getLogger(__name__)

_PACKUMENT_HEADERS = {"Accept": "application/json"}


def package_url(registry_url: str, name: str) -> str:
    """Registry URL for ``name``; scoped names are sent as ``@scope%2Fname``."""
    base = registry_url if registry_url.endswith("/") else registry_url + "/"
    return base + urllib.parse.quote(name, safe="@")


def build_cache(config, project_root: Optional[str] = None) -> RegistryCache:
    """Create the packument cache described by an AnalyzerConfig."""
    path = None
    if config.cache.persist_to_disk:
        path = config.cache.path
        if project_root and not os.path.isabs(path):
            path = os.path.join(project_root, path)
    return RegistryCache(
        config.cache.ttl,
        registry=config.registry,
        path=path,
        encode=RegistryPackage.to_dict,
        decode=RegistryPackage.from_packument,
    )


class NpmRegistryClient:
    """Fetches packuments from an npm-compatible registry.

    One instance is shared by every analyzer unit in a run: cache hits are
    answered without waiting on the request semaphore, and concurrent misses
    for the same package share a single HTTP request.
    """

    def __init__(
        self,
        *,
        registry_url: str = Constants.REGISTRY_URL_NPM,
        http: Optional[AsyncHttpClient] = None,
        cache: Optional[RegistryCache] = None,
        max_concurrent_requests: int = Constants.MAX_CONCURRENT_REQUESTS,
        offline: bool = False,
        resolver: Optional[NpmVersionResolver] = None,
    ):
        self.registry_url = registry_url
        self._http = http if http is not None else AsyncHttpClient()
        self._cache = cache if cache is not None else RegistryCache(
            registry=registry_url,
            encode=RegistryPackage.to_dict,
            decode=RegistryPackage.from_packument,
        )
        self._semaphore = asyncio.Semaphore(max(1, int(max_concurrent_requests)))
        self._inflight: Dict[str, asyncio.Future] = {}
        self._resolver = resolver or NpmVersionResolver()
        self.offline = offline
        self.failed: Set[str] = set()
        self.not_found: Set[str] = set()
        self.request_count = 0
        if self._cache.path:
            self._cache.load()

    @classmethod
    def from_config(cls, config, project_root: Optional[str] = None) -> "NpmRegistryClient":
        """Build a client, transport and cache from an AnalyzerConfig."""
        net = config.network
        http = AsyncHttpClient(
            timeout=net.timeout,
            retries=net.retries,
            base_delay=net.retry_base_delay,
            proxy=net.proxy,
            strict_ssl=net.strict_ssl,
        )
        return cls(
            registry_url=config.registry,
            http=http,
            cache=build_cache(config, project_root),
            max_concurrent_requests=config.max_concurrent_requests,
            offline=net.offline,
        )

    @property
    def cache(self) -> RegistryCache:
        return self._cache

    async def __aenter__(self) -> "NpmRegistryClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Abandon pending requests, persist the cache and close the transport."""
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        if self._cache.path:
            self._cache.save()
        await self._http.close()

    async def fetch_package(self, name: str) -> Optional[RegistryPackage]:
        """Return package metadata for ``name``, or None when unavailable.

        Args:
            name: Registry package name, scoped or not.

        Returns:
            RegistryPackage, or None when the package does not exist, the
            registry could not be reached, or the client is offline and the
            cache has nothing.

        Raises:
            ValueError: When ``name`` is empty.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValueError("package name must be a non-empty string")
        name = name.strip()
        key = f"npm:{name}"

        cached = self._cache.get(key)
        if cached is not None:
            if is_debug_enabled(logger):
                logger.debug(
                    "Registry cache hit",
                    extra=extra_context(event="cache_hit", component="client", target=key),
                )
            return cached
        if name in self.not_found:
            return None
        if self.offline:
            logger.debug("Offline and not cached: %s", name)
            self.failed.add(name)
            return None

        task = self._inflight.get(name)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(name, key))
            self._inflight[name] = task
            task.add_done_callback(lambda _t, n=name: self._inflight.pop(n, None))
        return await asyncio.shield(task)

    async def _fetch_and_store(self, name: str, key: str) -> Optional[RegistryPackage]:
        url = package_url(self.registry_url, name)
        async with self._semaphore:
            self.request_count += 1
            if is_debug_enabled(logger):
                logger.debug(
                    "Fetching package metadata",
                    extra=extra_context(
                        event="http_request",
                        component="client",
                        action="GET",
                        target=safe_url(url),
                        package_manager="npm",
                    ),
                )
            with Timer() as timer:
                try:
                    status, _, data = await self._http.get_json(url, headers=_PACKUMENT_HEADERS)
                except NetworkError as exc:
                    logger.warning(
                        "Registry unreachable for %s: %s",
                        name,
                        exc,
                        extra=extra_context(
                            event="http_error",
                            component="client",
                            outcome="unreachable",
                            target=safe_url(url),
                            package_manager="npm",
                        ),
                    )
                    self.failed.add(name)
                    return None

        if status == 404:
            logger.warning(
                "Package not found in registry: %s",
                name,
                extra=extra_context(
                    event="http_response",
                    component="client",
                    outcome="not_found",
                    status_code=404,
                    target=safe_url(url),
                    package_manager="npm",
                ),
            )
            self.not_found.add(name)
            return None
        if status != 200 or not isinstance(data, dict):
            logger.warning(
                "Unusable registry response for %s (HTTP %s)",
                name,
                status,
                extra=extra_context(
                    event="http_response",
                    component="client",
                    outcome="unusable",
                    status_code=status,
                    target=safe_url(url),
                    package_manager="npm",
                ),
            )
            self.failed.add(name)
            return None

        package = RegistryPackage.from_packument(data, name=name)
        self._cache.set(key, package)
        if is_debug_enabled(logger):
            logger.debug(
                "Fetched package metadata",
                extra=extra_context(
                    event="http_response",
                    component="client",
                    outcome="success",
                    status_code=status,
                    duration_ms=timer.duration_ms(),
                    count=len(package.versions),
                    package_manager="npm",
                ),
            )
        return package

    async def fetch_version(self, name: str, version_range: str) -> Optional[VersionMetadata]:
        """Metadata for the highest version of ``name`` matching ``version_range``.

        ``npm:`` aliases are followed to the real package. Non-registry
        specifiers (git, file, url...) return None without a request.
        """
        spec = parse_spec(version_range)
        if not spec.is_registry_spec:
            return None
        package = await self.fetch_package(spec.alias_of or name)
        if package is None:
            return None
        picked = self._resolver.pick(spec, package.version_list, package.dist_tags)
        if picked.version is None:
            logger.debug("No version of %s matches %s: %s", name, version_range, picked.error)
            return None
        return package.get_version(picked.version)

    async def fetch_packages(self, names: Iterable[str]) -> Dict[str, RegistryPackage]:
        """Fetch several packages concurrently; unavailable ones are omitted."""
        unique = sorted({n for n in names if isinstance(n, str) and n.strip()})
        results = await asyncio.gather(*(self.fetch_package(n) for n in unique))
        return {n: pkg for n, pkg in zip(unique, results) if pkg is not None}
