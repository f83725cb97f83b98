"""Tests for the npm registry client."""

import asyncio

import pytest

from registry.cache import RegistryCache
from registry.npm.client import NpmRegistryClient, package_url
from registry.npm.models import RegistryPackage


class TestPackageUrl:
    def test_scoped_name_is_encoded(self):
        assert package_url("https://registry.npmjs.org/", "@types/node") == "https://registry.npmjs.org/@types%2Fnode"

    def test_missing_trailing_slash(self):
        assert package_url("https://r.example.com", "left-pad") == "https://r.example.com/left-pad"


class TestFetchPackage:
    """Cache-first fetching with degrade-to-None."""

    def test_fetch_and_cache(self, make_client, packument):
        async def scenario():
            client, transport = make_client({"left-pad": packument("left-pad", {"1.0.0": {}, "1.3.0": {}})})
            first = await client.fetch_package("left-pad")
            second = await client.fetch_package("left-pad")
            return first, second, transport

        first, second, transport = asyncio.run(scenario())
        assert first.version_list == ["1.0.0", "1.3.0"]
        assert second is first
        assert transport.requests == ["left-pad"]

    def test_empty_name_rejected(self, make_client):
        async def scenario():
            client, _ = make_client()
            await client.fetch_package("  ")

        with pytest.raises(ValueError):
            asyncio.run(scenario())

    def test_not_found(self, make_client):
        async def scenario():
            client, transport = make_client({})
            results = [await client.fetch_package("nope"), await client.fetch_package("nope")]
            return client, transport, results

        client, transport, results = asyncio.run(scenario())
        assert results == [None, None]
        assert transport.requests == ["nope"]
        assert "nope" in client.not_found
        assert "nope" not in client.failed

    def test_unreachable_registry_degrades(self, make_client):
        async def scenario():
            client, _ = make_client({}, fail=["*"])
            return client, await client.fetch_package("left-pad")

        client, result = asyncio.run(scenario())
        assert result is None
        assert client.failed == {"left-pad"}

    def test_concurrent_misses_share_one_request(self, make_client, packument):
        async def scenario():
            client, transport = make_client({"react": packument("react", {"18.2.0": {}})}, delay=0.01)
            results = await asyncio.gather(*(client.fetch_package("react") for _ in range(5)))
            return results, transport

        results, transport = asyncio.run(scenario())
        assert all(r is results[0] for r in results)
        assert transport.requests == ["react"]

    def test_request_concurrency_is_bounded(self, make_client, packument):
        in_flight = {"now": 0, "max": 0}

        async def scenario():
            client, transport = make_client(
                {f"p{i}": packument(f"p{i}", {"1.0.0": {}}) for i in range(10)},
                max_concurrent_requests=3,
            )
            original = transport.get_json

            async def counting(url, *, headers=None):
                in_flight["now"] += 1
                in_flight["max"] = max(in_flight["max"], in_flight["now"])
                await asyncio.sleep(0.01)
                try:
                    return await original(url, headers=headers)
                finally:
                    in_flight["now"] -= 1

            transport.get_json = counting
            return await client.fetch_packages([f"p{i}" for i in range(10)])

        results = asyncio.run(scenario())
        assert len(results) == 10
        assert in_flight["max"] == 3

    def test_offline_never_touches_network(self, make_client):
        async def scenario():
            client, transport = make_client({}, offline=True)
            return await client.fetch_package("left-pad"), transport

        result, transport = asyncio.run(scenario())
        assert result is None
        assert transport.requests == []

    def test_offline_serves_cache(self, make_client, packument):
        cache = RegistryCache(300)
        cache.set("npm:left-pad", RegistryPackage.from_packument(packument("left-pad", {"1.3.0": {}})))

        async def scenario():
            client, transport = make_client({}, offline=True, cache=cache)
            return await client.fetch_package("left-pad"), transport

        result, transport = asyncio.run(scenario())
        assert result.version_list == ["1.3.0"]
        assert transport.requests == []


class TestFetchVersion:
    """Range resolution against published versions."""

    def _registry(self, packument):
        return {
            "left-pad": packument(
                "left-pad",
                {"1.0.0": {}, "1.3.0": {"peerDependencies": {"core": "^2.0.0"}}, "2.0.0": {}},
                latest="1.3.0",
            ),
            "string-width": packument("string-width", {"4.2.3": {}, "5.1.2": {}}),
        }

    def test_highest_satisfying(self, make_client, packument):
        async def scenario():
            client, _ = make_client(self._registry(packument))
            return await client.fetch_version("left-pad", "^1.0.0")

        meta = asyncio.run(scenario())
        assert meta.version == "1.3.0"
        assert dict(meta.peer_dependencies) == {"core": "^2.0.0"}

    def test_dist_tag(self, make_client, packument):
        async def scenario():
            client, _ = make_client(self._registry(packument))
            return await client.fetch_version("left-pad", "latest")

        assert asyncio.run(scenario()).version == "1.3.0"

    def test_alias_follows_target(self, make_client, packument):
        async def scenario():
            client, transport = make_client(self._registry(packument))
            meta = await client.fetch_version("string-width-cjs", "npm:string-width@^4.2.0")
            return meta, transport

        meta, transport = asyncio.run(scenario())
        assert meta.version == "4.2.3"
        assert transport.requests == ["string-width"]

    def test_non_registry_spec_makes_no_request(self, make_client, packument):
        async def scenario():
            client, transport = make_client(self._registry(packument))
            return await client.fetch_version("left-pad", "github:user/left-pad"), transport

        meta, transport = asyncio.run(scenario())
        assert meta is None
        assert transport.requests == []

    def test_no_matching_version(self, make_client, packument):
        async def scenario():
            client, _ = make_client(self._registry(packument))
            return await client.fetch_version("left-pad", "^9.0.0")

        assert asyncio.run(scenario()) is None


class TestPersistence:
    """The cache file lets a second run work without the network."""

    def test_second_run_needs_no_requests(self, tmp_path, make_client, packument):
        path = str(tmp_path / ".depcompat-cache.json")

        def cache():
            return RegistryCache(300, path=path, encode=RegistryPackage.to_dict, decode=RegistryPackage.from_packument)

        async def first_run():
            client, transport = make_client({"left-pad": packument("left-pad", {"1.3.0": {}})}, cache=cache())
            async with client:
                await client.fetch_package("left-pad")
            return transport

        async def second_run():
            client, transport = make_client({}, cache=cache())
            async with client:
                result = await client.fetch_package("left-pad")
            return result, transport

        first_transport = asyncio.run(first_run())
        assert first_transport.closed is True
        result, transport = asyncio.run(second_run())
        assert result.version_list == ["1.3.0"]
        assert transport.requests == []


class TestFromConfig:
    def test_builds_persistent_cache_in_project(self, tmp_path):
        from cli_config import AnalyzerConfig

        config = AnalyzerConfig.from_dict({"cache": {"persist_to_disk": True}, "network": {"offline": True}})

        async def scenario():
            client = NpmRegistryClient.from_config(config, str(tmp_path))
            await client.close()
            return client

        client = asyncio.run(scenario())
        assert client.offline is True
        assert client.cache.path == str(tmp_path / ".depcompat-cache.json")
