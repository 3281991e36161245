"""
Write-Through Persister: local first, remote best-effort.

commit(snapshot):
1. Write the local cache synchronously. Its success alone makes the commit
   successful; a failure (quota, unwritable store) fails the commit and no
   remote write is issued.
2. Start one task per writable remote tier (document store, HTTP API) and
   return without awaiting them. Writes to the same tier are chained, so a
   tier always ends up holding the newest commit.
3. A remote failure is logged and broadcast as syncDegraded. The local copy
   is never rolled back.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .bus import ChangeBus
from .errors import ErrorKind, SyncError
from .events import ChangeEvent, EventKind
from .models import Snapshot
from .sources.base import SourceAdapter
from .sources.local_source import LocalCacheSource


@dataclass
class RemoteOutcome:
    tier: str
    ok: bool
    error: Optional[ErrorKind] = None
    detail: str = ""
    at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "ok": self.ok,
            "error": self.error.value if self.error else None,
            "detail": self.detail,
            "at": self.at,
        }


@dataclass
class CommitReceipt:
    """Result of the local commit, plus handles on the remote writes it started."""

    ok: bool
    error: Optional[ErrorKind] = None
    detail: str = ""
    local_keys: List[str] = field(default_factory=list)
    tasks: List["asyncio.Task[RemoteOutcome]"] = field(default_factory=list, repr=False)

    async def settled(self) -> List[RemoteOutcome]:
        """Wait for this commit's remote writes and return their outcomes."""
        if not self.tasks:
            return []
        return list(await asyncio.gather(*self.tasks))


class WriteThroughPersister:

    def __init__(
        self,
        local: LocalCacheSource,
        remotes: Sequence[SourceAdapter],
        bus: ChangeBus,
        logger: Any,
        origin: str = "",
    ):
        """
        Args:
            local: the local cache adapter (durability boundary)
            remotes: writable remote adapters for the same collection
            bus: where syncDegraded warnings go
            logger: LogUtil instance
            origin: stamped on emitted events
        """
        for remote in remotes:
            if not remote.writable:
                raise ValueError(f"{remote!r} is read-only")
            if remote.collection is not local.collection:
                raise ValueError(f"{remote!r} does not serve {local.collection.value}")

        self.collection = local.collection
        self._local = local
        self._remotes = list(remotes)
        self._bus = bus
        self._logger = logger
        self._origin = origin
        self._pending: "set[asyncio.Task[RemoteOutcome]]" = set()
        self._tails: Dict[str, "asyncio.Task[RemoteOutcome]"] = {}
        self._last: Dict[str, RemoteOutcome] = {}

    async def commit(self, snapshot: Snapshot) -> CommitReceipt:
        if snapshot.collection is not self.collection:
            raise ValueError(
                f"{snapshot.collection.value} snapshot given to {self.collection.value} persister"
            )

        try:
            keys = self._local.write_sync(snapshot)
        except SyncError as e:
            self._logger.error(
                f"{self.collection.value}: local commit failed ({e.kind.value}): {e.detail}",
            )
            return CommitReceipt(ok=False, error=e.kind, detail=e.detail)

        self._logger.debug(f"{self.collection.value}: committed locally under {len(keys)} key(s)")

        tasks = []
        for remote in self._remotes:
            tier = remote.tier.value
            task = asyncio.create_task(
                self._write_remote(remote, snapshot, after=self._tails.get(tier)),
                name=f"persist:{self.collection.value}:{tier}",
            )
            self._tails[tier] = task
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)

        return CommitReceipt(ok=True, local_keys=keys, tasks=tasks)

    async def _write_remote(
        self,
        remote: SourceAdapter,
        snapshot: Snapshot,
        after: Optional["asyncio.Task[RemoteOutcome]"] = None,
    ) -> RemoteOutcome:
        tier = remote.tier.value
        if after is not None and not after.done():
            # Previous commit to this tier lands first
            await asyncio.wait([after])

        try:
            await remote.write(snapshot)
            outcome = RemoteOutcome(tier=tier, ok=True)
        except SyncError as e:
            outcome = RemoteOutcome(tier=tier, ok=False, error=e.kind, detail=e.detail)
        except Exception as e:
            outcome = RemoteOutcome(
                tier=tier, ok=False, error=ErrorKind.UNREACHABLE,
                detail=f"{type(e).__name__}: {e}",
            )

        self._last[tier] = outcome

        if outcome.ok:
            self._logger.debug(f"{self.collection.value}: synced to {tier}")
            return outcome

        self._logger.warn(
            f"{self.collection.value}: {tier} write failed ({outcome.error.value}): "
            f"{outcome.detail}; local copy kept",
        )
        await self._bus.publish(ChangeEvent(
            kind=EventKind.SYNC_DEGRADED,
            collection=self.collection,
            origin=self._origin,
            tier=tier,
            detail=f"{outcome.error.value}: {outcome.detail}",
        ))
        return outcome

    async def drain(self) -> None:
        """Wait for every remote write still in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def sync_status(self) -> Dict[str, Any]:
        return {
            "collection": self.collection.value,
            "pending": self.pending,
            "tiers": {
                remote.tier.value: (
                    self._last[remote.tier.value].to_dict()
                    if remote.tier.value in self._last else None
                )
                for remote in self._remotes
            },
        }
