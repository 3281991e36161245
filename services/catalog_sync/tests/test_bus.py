"""
Change bus tests - ordering, isolation, no replay, live views.
"""

import asyncio

import pytest

from ..events import ChangeEvent, EventKind, updated_kind
from ..models import Collection
from ..views import LiveView
from .conftest import catalog, settings_snapshot


def event(kind=EventKind.CATALOG_UPDATED, payload=None, collection=Collection.CATALOG, **kw):
    return ChangeEvent(kind=kind, collection=collection, payload=payload, **kw)


class TestChangeBus:

    @pytest.mark.asyncio
    async def test_delivers_in_publish_order_to_all_subscribers(self, bus):
        seen_a, seen_b = [], []
        bus.subscribe(lambda e: seen_a.append(e.detail))

        async def async_handler(e):
            seen_b.append(e.detail)

        bus.subscribe(async_handler)

        await bus.publish(event(detail="A"))
        await bus.publish(event(detail="B"))

        assert seen_a == ["A", "B"]
        assert seen_b == ["A", "B"]

    @pytest.mark.asyncio
    async def test_nested_publish_is_queued_behind_current_event(self, bus):
        seen = []

        async def first(e):
            seen.append(("first", e.detail))
            if e.detail == "A":
                await bus.publish(event(detail="C"))

        bus.subscribe(first)
        bus.subscribe(lambda e: seen.append(("second", e.detail)))

        await bus.publish(event(detail="A"))

        assert seen == [
            ("first", "A"),
            ("second", "A"),
            ("first", "C"),
            ("second", "C"),
        ]

    @pytest.mark.asyncio
    async def test_cancelled_dispatcher_does_not_strand_other_publishers(self, bus):
        delivered = []
        started = asyncio.Event()

        async def slow(e):
            delivered.append(e.kind.value)
            if e.kind is EventKind.CATALOG_UPDATED:
                started.set()
                await asyncio.sleep(10)

        bus.subscribe(slow)

        first = asyncio.create_task(bus.publish(event()))
        await started.wait()
        second = asyncio.create_task(bus.publish(
            event(kind=EventKind.SETTINGS_UPDATED, collection=Collection.SETTINGS),
        ))
        await asyncio.sleep(0)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        await asyncio.wait_for(second, timeout=1)

        assert delivered == ["catalogUpdated", "settingsUpdated"]
        assert bus.queued == 0

    @pytest.mark.asyncio
    async def test_publisher_in_other_task_waits_for_its_own_delivery(self, bus):
        seen = []
        gate = asyncio.Event()

        async def handler(e):
            if e.detail == "A":
                await gate.wait()
            seen.append(e.detail)

        bus.subscribe(handler)

        first = asyncio.create_task(bus.publish(event(detail="A")))
        await asyncio.sleep(0)
        second = asyncio.create_task(bus.publish(event(detail="B")))
        await asyncio.sleep(0)

        assert not second.done()
        gate.set()
        await asyncio.gather(first, second)

        assert seen == ["A", "B"]

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, bus, logger):
        seen = []

        def broken(e):
            raise RuntimeError("handler bug")

        bus.subscribe(broken)
        bus.subscribe(lambda e: seen.append(e.detail))

        await bus.publish(event(detail="A"))

        assert seen == ["A"]
        assert any("handler bug" in m for m in logger.messages("ERROR"))

    @pytest.mark.asyncio
    async def test_no_replay_for_late_subscribers(self, bus):
        await bus.publish(event(detail="early"))
        seen = []
        bus.subscribe(lambda e: seen.append(e.detail))

        await bus.publish(event(detail="late"))

        assert seen == ["late"]

    @pytest.mark.asyncio
    async def test_kind_filter_and_unsubscribe(self, bus):
        seen = []
        unsubscribe = bus.subscribe(lambda e: seen.append(e.kind), kinds=[EventKind.SYNC_DEGRADED])

        await bus.publish(event())
        await bus.publish(event(kind=EventKind.SYNC_DEGRADED))
        unsubscribe()
        await bus.publish(event(kind=EventKind.SYNC_DEGRADED))

        assert seen == [EventKind.SYNC_DEGRADED]
        assert bus.subscriber_count == 0
        unsubscribe()  # second call is harmless

    def test_event_to_dict(self):
        data = event(payload=catalog("a", day=2), origin="proc-1").to_dict()

        assert data["type"] == "catalogUpdated"
        assert data["collection"] == "catalog"
        assert data["origin"] == "proc-1"
        assert data["payload"]["testDefinitions"][0]["id"] == "a"

    def test_updated_kind(self):
        assert updated_kind(Collection.SETTINGS) == EventKind.SETTINGS_UPDATED
        assert updated_kind(Collection.CATALOG) == EventKind.CATALOG_UPDATED


class TestLiveView:

    @pytest.mark.asyncio
    async def test_replaces_snapshot_from_payload(self, bus):
        changes = []
        view = LiveView(bus, Collection.CATALOG, catalog("a"), on_change=changes.append)

        await bus.publish(event(payload=catalog("a", "b")))
        await bus.publish(event(kind=EventKind.CATALOG_RELOADED, payload=catalog("c")))

        assert [t.id for t in view.snapshot.test_definitions] == ["c"]
        assert view.updates == 2
        assert len(changes) == 2

    @pytest.mark.asyncio
    async def test_ignores_other_collection(self, bus):
        view = LiveView(bus, Collection.SETTINGS)

        await bus.publish(event(payload=catalog("a")))

        assert view.snapshot.is_empty()
        assert view.updates == 0

    @pytest.mark.asyncio
    async def test_records_degraded_sync(self, bus):
        view = LiveView(bus, Collection.SETTINGS, settings_snapshot())

        await bus.publish(event(
            kind=EventKind.SYNC_DEGRADED,
            collection=Collection.SETTINGS,
            tier="http_api",
            detail="unreachable: HTTP 503",
        ))

        assert view.degraded == "http_api: unreachable: HTTP 503"

    @pytest.mark.asyncio
    async def test_view_holds_its_own_copy(self, bus):
        published = catalog("a")
        view = LiveView(bus, Collection.CATALOG)

        await bus.publish(event(payload=published))
        published.test_definitions.clear()

        assert [t.id for t in view.snapshot.test_definitions] == ["a"]

    @pytest.mark.asyncio
    async def test_close_stops_updates(self, bus):
        view = LiveView(bus, Collection.CATALOG)
        view.close()

        await bus.publish(event(payload=catalog("a")))

        assert view.updates == 0
