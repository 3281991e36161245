"""
Document Store Source: one JSON document per collection in Redis.

Keys:
    colortest:doc:catalog
    colortest:doc:settings

Every successful write also publishes a change notice on colortest:changes so
other processes can reload (see triggers.RemoteChangeListener).
"""

import asyncio
import json
import time
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..errors import ErrorKind, SyncError
from ..models import Collection, Snapshot, parse_snapshot
from .base import SourceAdapter, SourceResult, Tier

KEY_PREFIX = "colortest:doc:"
CHANGES_CHANNEL = "colortest:changes"


def document_key(collection: Collection) -> str:
    return f"{KEY_PREFIX}{collection.value}"


class DocumentStoreSource(SourceAdapter):
    """Reads/writes a collection document on the remote document store."""

    tier = Tier.DOCUMENT_STORE
    writable = True

    def __init__(
        self,
        collection: Collection,
        redis: Optional[Redis],
        logger: Any,
        timeout: float = 2.0,
        origin: str = "",
    ):
        """
        Args:
            collection: Which collection document this adapter serves
            redis: Async Redis client, or None when no store is configured
            logger: LogUtil instance
            timeout: Per-call ceiling in seconds
            origin: Process identity stamped on change notices
        """
        super().__init__(collection, logger)
        self._redis = redis
        self._timeout = timeout
        self._origin = origin
        self._key = document_key(collection)

    async def read(self) -> SourceResult:
        t0 = time.time()

        if self._redis is None:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE,
                "document store client unavailable", t0,
            )

        try:
            raw = await asyncio.wait_for(self._redis.get(self._key), timeout=self._timeout)
        except asyncio.TimeoutError:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE,
                f"timeout after {self._timeout}s", t0,
            )
        except (RedisError, OSError) as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE, str(e), t0,
            )

        if not raw:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.EMPTY, f"{self._key} not set", t0,
            )

        try:
            snapshot = parse_snapshot(self.collection, json.loads(raw))
        except ValueError as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.MALFORMED, str(e)[:300], t0,
            )

        return self._classify(snapshot, t0)

    async def write(self, snapshot: Snapshot) -> None:
        if self._redis is None:
            raise SyncError(ErrorKind.UNREACHABLE, "document store client unavailable")

        notice = json.dumps({
            "collection": self.collection.value,
            "origin": self._origin,
            "lastUpdated": snapshot.last_updated.isoformat() if snapshot.last_updated else None,
        })

        try:
            await asyncio.wait_for(self._redis.set(self._key, snapshot.to_json()), timeout=self._timeout)
            await asyncio.wait_for(self._redis.publish(CHANGES_CHANNEL, notice), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise SyncError(ErrorKind.UNREACHABLE, f"timeout after {self._timeout}s")
        except (RedisError, OSError) as e:
            raise SyncError(ErrorKind.UNREACHABLE, str(e)) from e
