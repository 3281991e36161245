"""
Service loop tests - periodic refresh and background task shutdown.
"""

import asyncio

import pytest

from ..main import refresh_loop, stop_task
from ..models import Collection


class SlowContainer:
    """Reload blocks until cancelled."""

    def __init__(self):
        self.reloads = []
        self.started = asyncio.Event()
        self.unwound = False

    async def reload(self, collection):
        self.reloads.append(collection)
        self.started.set()
        try:
            await asyncio.sleep(10)
        finally:
            self.unwound = True


class FlakyContainer:
    """Catalog reloads fail; settings reloads succeed."""

    def __init__(self):
        self.reloads = []
        self.settings_reloaded = asyncio.Event()

    async def reload(self, collection):
        self.reloads.append(collection)
        if collection.value == Collection.CATALOG.value:
            raise RuntimeError("tier exploded")
        self.settings_reloaded.set()
        return False


class TestRefreshLoop:

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_reload(self, logger):
        container = SlowContainer()
        task = asyncio.create_task(refresh_loop(container, 0, logger))
        await asyncio.wait_for(container.started.wait(), timeout=1)

        await stop_task(task)

        assert task.done()
        assert container.unwound

    @pytest.mark.asyncio
    async def test_failed_reload_is_logged_and_loop_continues(self, logger):
        container = FlakyContainer()
        task = asyncio.create_task(refresh_loop(container, 0, logger))
        await asyncio.wait_for(container.settings_reloaded.wait(), timeout=1)

        await stop_task(task)

        assert [c.value for c in container.reloads[:2]] == ["catalog", "settings"]
        assert any("tier exploded" in m for m in logger.messages("WARN"))

    @pytest.mark.asyncio
    async def test_stop_on_finished_task(self):
        async def quick():
            return None

        task = asyncio.create_task(quick())
        await task

        await stop_task(task)
        assert task.done()
