"""
Source adapter tests - one class per tier.
"""

import json

import httpx
import pytest
import respx

from ..errors import ErrorKind, QuotaExceededError, SyncError
from ..models import Collection, SettingsAggregate, SettingsSnapshot
from ..sources import (
    CHANGES_CHANNEL,
    BundledSnapshotSource,
    DocumentStoreSource,
    HttpApiSource,
    LocalCacheSource,
    LocalStore,
    Tier,
)
from ..sources.document_source import document_key
from ..sources.local_source import LOCAL_KEYS
from .conftest import catalog, make_test, ts
from .fakes import FakeRedis

API = "http://catalog-api.test"


class TestBundledSnapshotSource:

    @pytest.mark.asyncio
    async def test_packaged_snapshot_serves_catalog(self, logger):
        result = await BundledSnapshotSource(Collection.CATALOG, logger).read()

        assert result.ok
        assert result.tier == Tier.BUNDLED
        ids = [t.id for t in result.snapshot.test_definitions]
        assert "marquis-test" in ids
        assert all(t.name.en and t.name.ar for t in result.snapshot.test_definitions)

    @pytest.mark.asyncio
    async def test_packaged_snapshot_has_no_settings(self, logger):
        result = await BundledSnapshotSource(Collection.SETTINGS, logger).read()
        assert result.error == ErrorKind.EMPTY

    @pytest.mark.asyncio
    async def test_missing_file_is_unreachable(self, logger, tmp_path):
        result = await BundledSnapshotSource(Collection.CATALOG, logger, tmp_path / "nope.json").read()
        assert result.error == ErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    async def test_bad_json_is_malformed(self, logger, tmp_path):
        path = tmp_path / "snap.json"
        path.write_text("{not json", encoding="utf-8")

        result = await BundledSnapshotSource(Collection.CATALOG, logger, path).read()
        assert result.error == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_malformed(self, logger, tmp_path):
        path = tmp_path / "snap.json"
        path.write_bytes(b'{"testDefinitions": [\xff\xfe]}')

        result = await BundledSnapshotSource(Collection.CATALOG, logger, path).read()
        assert result.error == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_bad_shape_is_malformed(self, logger, tmp_path):
        path = tmp_path / "snap.json"
        path.write_text(json.dumps({"testDefinitions": [{"id": "x"}]}), encoding="utf-8")

        result = await BundledSnapshotSource(Collection.CATALOG, logger, path).read()
        assert result.error == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_read_only(self, logger):
        source = BundledSnapshotSource(Collection.CATALOG, logger)
        assert not source.writable
        with pytest.raises(NotImplementedError):
            await source.write(catalog("a"))


class TestDocumentStoreSource:

    @pytest.mark.asyncio
    async def test_reads_collection_document(self, logger):
        redis = FakeRedis()
        redis.data[document_key(Collection.CATALOG)] = catalog("marquis-test", day=4).to_json()

        result = await DocumentStoreSource(Collection.CATALOG, redis, logger).read()

        assert result.ok
        assert result.snapshot.last_updated == ts(4)

    @pytest.mark.asyncio
    async def test_missing_document_is_empty(self, logger):
        result = await DocumentStoreSource(Collection.SETTINGS, FakeRedis(), logger).read()
        assert result.error == ErrorKind.EMPTY

    @pytest.mark.asyncio
    async def test_outage_is_unreachable(self, logger):
        redis = FakeRedis()
        redis.down = True

        result = await DocumentStoreSource(Collection.CATALOG, redis, logger).read()

        assert result.error == ErrorKind.UNREACHABLE
        assert "refused" in result.detail

    @pytest.mark.asyncio
    async def test_no_client_is_unreachable(self, logger):
        result = await DocumentStoreSource(Collection.CATALOG, None, logger).read()
        assert result.error == ErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    async def test_garbage_document_is_malformed(self, logger):
        redis = FakeRedis()
        redis.data[document_key(Collection.CATALOG)] = "<html>"

        result = await DocumentStoreSource(Collection.CATALOG, redis, logger).read()
        assert result.error == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_write_stores_and_publishes_notice(self, logger):
        redis = FakeRedis()
        source = DocumentStoreSource(Collection.SETTINGS, redis, logger, origin="proc-1")
        snap = SettingsSnapshot(settings=SettingsAggregate(global_free_access=True), last_updated=ts(2))

        await source.write(snap)

        stored = json.loads(redis.data["colortest:doc:settings"])
        assert stored["settings"]["globalFreeAccess"] is True
        channel, message = redis.published[0]
        assert channel == CHANGES_CHANNEL
        assert json.loads(message)["origin"] == "proc-1"
        assert json.loads(message)["collection"] == "settings"

    @pytest.mark.asyncio
    async def test_write_during_outage_raises_unreachable(self, logger):
        redis = FakeRedis()
        redis.down = True

        with pytest.raises(SyncError) as exc:
            await DocumentStoreSource(Collection.CATALOG, redis, logger).write(catalog("a"))
        assert exc.value.kind == ErrorKind.UNREACHABLE


class TestHttpApiSource:

    @pytest.mark.asyncio
    @respx.mock
    async def test_reads_json_catalog(self, logger):
        respx.get(f"{API}/api/tests").mock(
            return_value=httpx.Response(200, json={"chemical_tests": [make_test()]})
        )

        result = await HttpApiSource(Collection.CATALOG, API, logger).read()

        assert result.ok
        assert result.tier == Tier.HTTP_API
        assert result.snapshot.test_definitions[0].id == "marquis-test"

    @pytest.mark.asyncio
    @respx.mock
    async def test_html_page_is_unreachable_not_malformed(self, logger):
        respx.get(f"{API}/api/tests").mock(
            return_value=httpx.Response(
                200, text="<!DOCTYPE html><html></html>", headers={"content-type": "text/html"},
            )
        )

        result = await HttpApiSource(Collection.CATALOG, API, logger).read()

        assert result.error == ErrorKind.UNREACHABLE
        assert "unstructured" in result.detail

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_is_unreachable(self, logger):
        respx.get(f"{API}/api/settings").mock(return_value=httpx.Response(500, json={"error": "boom"}))

        result = await HttpApiSource(Collection.SETTINGS, API, logger).read()
        assert result.error == ErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error_is_unreachable(self, logger):
        respx.get(f"{API}/api/tests").mock(side_effect=httpx.ConnectError("refused"))

        result = await HttpApiSource(Collection.CATALOG, API, logger).read()
        assert result.error == ErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    @respx.mock
    async def test_wrong_shape_is_malformed(self, logger):
        respx.get(f"{API}/api/tests").mock(return_value=httpx.Response(200, json={"testDefinitions": "x"}))

        result = await HttpApiSource(Collection.CATALOG, API, logger).read()
        assert result.error == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_list_is_empty(self, logger):
        respx.get(f"{API}/api/tests").mock(return_value=httpx.Response(200, json={"testDefinitions": []}))

        result = await HttpApiSource(Collection.CATALOG, API, logger).read()
        assert result.error == ErrorKind.EMPTY

    @pytest.mark.asyncio
    async def test_unconfigured_is_unreachable(self, logger):
        result = await HttpApiSource(Collection.CATALOG, None, logger).read()
        assert result.error == ErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    @respx.mock
    async def test_write_posts_wire_snapshot(self, logger):
        route = respx.post(f"{API}/api/tests").mock(return_value=httpx.Response(200, json={"success": True}))

        await HttpApiSource(Collection.CATALOG, API, logger).write(catalog("marquis-test", day=5))

        body = json.loads(route.calls.last.request.content)
        assert body["testDefinitions"][0]["id"] == "marquis-test"
        assert body["lastUpdated"].startswith("2025-01-05")

    @pytest.mark.asyncio
    @respx.mock
    async def test_write_to_static_host_is_unreachable(self, logger):
        respx.post(f"{API}/api/tests").mock(
            return_value=httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"})
        )

        with pytest.raises(SyncError) as exc:
            await HttpApiSource(Collection.CATALOG, API, logger).write(catalog("a"))
        assert exc.value.kind == ErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    @respx.mock
    async def test_write_rejected_payload_is_malformed(self, logger):
        respx.post(f"{API}/api/tests").mock(return_value=httpx.Response(422, json={"detail": "bad"}))

        with pytest.raises(SyncError) as exc:
            await HttpApiSource(Collection.CATALOG, API, logger).write(catalog("a"))
        assert exc.value.kind == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    @respx.mock
    async def test_shared_client_is_used(self, logger):
        respx.get(f"{API}/api/tests").mock(return_value=httpx.Response(200, json=[make_test()]))

        async with httpx.AsyncClient() as client:
            result = await HttpApiSource(Collection.CATALOG, API, logger, client=client).read()

        assert result.ok


class TestLocalCacheSource:

    @pytest.mark.asyncio
    async def test_nothing_cached_is_empty(self, local_catalog):
        result = await local_catalog.read()
        assert result.error == ErrorKind.EMPTY

    @pytest.mark.asyncio
    async def test_write_fans_out_to_every_key(self, store, local_catalog):
        snap = catalog("marquis-test", day=2)

        keys = local_catalog.write_sync(snap)

        assert keys == LOCAL_KEYS[Collection.CATALOG]
        values = {store.get(k) for k in keys}
        assert values == {snap.to_json()}

    @pytest.mark.asyncio
    async def test_reads_first_present_key(self, store, logger):
        store.write_many({"chemical_tests_local": catalog("older", day=1).to_json()})

        result = await LocalCacheSource(Collection.CATALOG, store, logger).read()

        assert result.ok
        assert result.snapshot.test_definitions[0].id == "older"

    @pytest.mark.asyncio
    async def test_corrupt_value_is_malformed(self, store, local_catalog):
        store.write_many({"chemical_tests_admin": "{oops"})

        result = await local_catalog.read()
        assert result.error == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_non_string_value_is_malformed(self, tmp_path, logger):
        path = tmp_path / "local.json"
        path.write_text(json.dumps({"chemical_tests_admin": {"testDefinitions": []}}), encoding="utf-8")

        result = await LocalCacheSource(Collection.CATALOG, LocalStore(path), logger).read()
        assert result.error == ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_undecodable_file_is_malformed(self, tmp_path, logger):
        path = tmp_path / "local.json"
        path.write_bytes(b'{"chemical_tests_admin": "\xff"}')

        result = await LocalCacheSource(Collection.CATALOG, LocalStore(path), logger).read()
        assert result.error == ErrorKind.MALFORMED

    def test_quota_exceeded(self, logger):
        store = LocalStore(quota_bytes=200)
        source = LocalCacheSource(Collection.CATALOG, store, logger)

        with pytest.raises(QuotaExceededError):
            source.write_sync(catalog("marquis-test"))
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_file_store_survives_reopen(self, tmp_path, logger):
        path = tmp_path / "cache" / "local.json"
        LocalCacheSource(Collection.SETTINGS, LocalStore(path), logger).write_sync(
            SettingsSnapshot(settings=SettingsAggregate(free_tests_count=9), last_updated=ts(1))
        )

        result = await LocalCacheSource(Collection.SETTINGS, LocalStore(path), logger).read()

        assert result.ok
        assert result.snapshot.settings.free_tests_count == 9
        assert not list(path.parent.glob(".localstore-*"))

    @pytest.mark.asyncio
    async def test_corrupt_file_is_malformed_then_overwritten(self, tmp_path, logger):
        path = tmp_path / "local.json"
        path.write_text("garbage", encoding="utf-8")
        source = LocalCacheSource(Collection.CATALOG, LocalStore(path), logger)

        assert (await source.read()).error == ErrorKind.MALFORMED

        source.write_sync(catalog("a"))
        assert (await source.read()).ok

    def test_clear_removes_all_keys(self, store, local_catalog):
        local_catalog.write_sync(catalog("a"))
        store.write_many({"unrelated": "1"})

        local_catalog.clear()

        assert store.keys() == ["unrelated"]
