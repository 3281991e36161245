"""
Reload Triggers - events that should make this process re-run the cascade.

1. Remote change notice (colortest:changes pub/sub on the document store),
   published by every DocumentStoreSource.write()
2. Periodic refresh (driven from main.py)

Notices carrying this process's own origin are ignored: the local snapshot
already holds that content.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import RedisError

from .models import Collection
from .sources.document_source import CHANGES_CHANNEL

OnChange = Callable[[Collection], Awaitable[Any]]


def parse_notice(data: Any) -> Optional[dict]:
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if not isinstance(data, str):
        return None
    try:
        notice = json.loads(data)
    except ValueError:
        return None
    return notice if isinstance(notice, dict) else None


class RemoteChangeListener:
    """Subscribes to colortest:changes and triggers background reloads."""

    def __init__(self, redis: Any, on_change: OnChange, logger: Any, origin: str = ""):
        """
        Args:
            redis: async redis client for the document store
            on_change: awaited with the Collection that changed remotely
            logger: LogUtil instance
            origin: this process's origin tag; its own notices are skipped
        """
        self._redis = redis
        self._on_change = on_change
        self._logger = logger
        self._origin = origin
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.received = 0

    async def start(self):
        if self._redis is None:
            self._logger.warn("No document store client; remote change listener disabled")
            return
        self._running = True
        self._task = asyncio.create_task(self._listen_loop())
        self._logger.info(f"Remote change listener started (channel: {CHANGES_CHANNEL})")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def handle_message(self, msg: Optional[dict]) -> bool:
        """Process one pub/sub message; returns True if a reload was triggered."""
        if not msg or msg.get("type") != "message":
            return False

        notice = parse_notice(msg.get("data"))
        if notice is None:
            self._logger.warning("Unreadable change notice ignored")
            return False

        if self._origin and notice.get("origin") == self._origin:
            return False

        try:
            collection = Collection(notice.get("collection"))
        except ValueError:
            self._logger.warning(f"Change notice for unknown collection: {notice.get('collection')!r}")
            return False

        self.received += 1
        self._logger.debug(f"Remote change on {collection.value} from {notice.get('origin') or 'unknown'}")

        try:
            await self._on_change(collection)
        except Exception as e:
            self._logger.error(f"Reload after remote change failed: {e}")
        return True

    async def _listen_loop(self):
        pubsub = None
        try:
            pubsub = self._redis.pubsub()
            await pubsub.subscribe(CHANGES_CHANNEL)

            while self._running:
                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                await self.handle_message(msg)
                await asyncio.sleep(0.1)  # Yield to event loop

        except asyncio.CancelledError:
            pass
        except (RedisError, OSError) as e:
            self._logger.error(f"Remote change listener stopped: {e}")
        finally:
            if pubsub is not None:
                try:
                    await pubsub.unsubscribe(CHANGES_CHANNEL)
                    await pubsub.aclose()
                except (RedisError, OSError) as e:
                    self._logger.debug(f"pubsub close: {e}")
