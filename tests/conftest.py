"""Shared fixtures: an in-memory registry transport and project builders."""

import asyncio
import json
import urllib.parse

import pytest

from common.errors import NetworkError
from registry.npm.client import NpmRegistryClient


class FakeTransport:
    """Stands in for AsyncHttpClient and serves packuments from a dict.

    Names listed in ``fail`` (or ``"*"`` for everything) raise NetworkError as
    the real transport does once retries are exhausted.
    """

    def __init__(self, packuments=None, fail=(), delay=0.0):
        self.packuments = dict(packuments or {})
        self.fail = set(fail)
        self.delay = delay
        self.requests = []
        self.closed = False

    async def get_json(self, url, *, headers=None):
        name = urllib.parse.unquote(url.rsplit("/", 1)[-1])
        self.requests.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if "*" in self.fail or name in self.fail:
            raise NetworkError("connection refused")
        doc = self.packuments.get(name)
        if doc is None:
            return 404, {}, None
        return 200, {}, json.loads(json.dumps(doc))

    async def close(self):
        self.closed = True


def build_packument(name, versions, latest=None, times=None):
    """Packument for ``name``; ``versions`` maps version -> extra version fields."""
    docs = {}
    for version, extra in versions.items():
        doc = {"name": name, "version": version}
        doc.update(extra or {})
        docs[version] = doc
    if latest is None and docs:
        latest = list(docs)[-1]
    return {
        "name": name,
        "dist-tags": {"latest": latest} if latest else {},
        "versions": docs,
        "time": dict(times or {}),
    }


@pytest.fixture
def packument():
    """Factory building packuments: packument("left-pad", {"1.0.0": {}, ...})."""
    return build_packument


@pytest.fixture
def make_client():
    """Factory returning (client, transport) wired to a FakeTransport.

    Must be called inside a running event loop.
    """
    def _make(packuments=None, fail=(), **kwargs):
        transport = FakeTransport(packuments, fail=fail, delay=kwargs.pop("delay", 0.0))
        client = NpmRegistryClient(http=transport, **kwargs)
        return client, transport
    return _make


@pytest.fixture
def write_project(tmp_path):
    """Write package.json (and optionally a lockfile) into tmp_path and return the path."""
    def _write(manifest, lock=None, lock_name="package-lock.json"):
        (tmp_path / "package.json").write_text(json.dumps(manifest, indent=2))
        if lock is not None:
            content = lock if isinstance(lock, str) else json.dumps(lock, indent=2)
            (tmp_path / lock_name).write_text(content)
        return str(tmp_path)
    return _write
