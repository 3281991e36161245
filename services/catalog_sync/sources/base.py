"""
Source Port - the uniform contract every storage tier implements.

One adapter wraps exactly one tier. Adapters never fall back to another tier
and never raise for tier faults: read() always returns a SourceResult that
carries either a snapshot or an ErrorKind. Writable tiers also implement
write(), which raises SyncError so the persister can classify the failure.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import ErrorKind
from ..models import Collection, Snapshot


class Tier(str, Enum):
    """Storage tiers, declared in load priority order."""
    DOCUMENT_STORE = "document_store"
    HTTP_API = "http_api"
    BUNDLED = "bundled"
    LOCAL_CACHE = "local_cache"

    @property
    def priority(self) -> int:
        """Lower is tried first / wins ties."""
        return list(Tier).index(self)


@dataclass
class SourceResult:
    """Outcome of one adapter read: a snapshot or an error, never both."""

    tier: Tier
    collection: Collection
    snapshot: Optional[Snapshot] = None
    error: Optional[ErrorKind] = None
    detail: str = ""
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.snapshot is not None

    @classmethod
    def success(cls, tier: Tier, snapshot: Snapshot, t0: float) -> "SourceResult":
        return cls(
            tier=tier,
            collection=snapshot.collection,
            snapshot=snapshot,
            latency_ms=int((time.time() - t0) * 1000),
        )

    @classmethod
    def failure(
        cls,
        tier: Tier,
        collection: Collection,
        error: ErrorKind,
        detail: str,
        t0: float,
    ) -> "SourceResult":
        return cls(
            tier=tier,
            collection=collection,
            error=error,
            detail=detail,
            latency_ms=int((time.time() - t0) * 1000),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "collection": self.collection.value,
            "ok": self.ok,
            "error": self.error.value if self.error else None,
            "detail": self.detail,
            "latency_ms": self.latency_ms,
        }


class SourceAdapter(ABC):
    """Read access to one tier for one collection."""

    tier: Tier
    writable: bool = False

    def __init__(self, collection: Collection, logger: Any):
        self.collection = collection
        self._logger = logger

    @abstractmethod
    async def read(self) -> SourceResult:
        """
        Read the full snapshot for this adapter's collection.

        Returns:
            SourceResult with a snapshot, or with UNREACHABLE / MALFORMED /
            EMPTY and a diagnostic detail. Never raises for tier faults.
        """
        pass

    async def write(self, snapshot: Snapshot) -> None:
        """
        Persist a full snapshot to this tier.

        Raises:
            SyncError: carrying the ErrorKind of the failure
        """
        raise NotImplementedError(f"{self.tier.value} is read-only")

    def _classify(self, snapshot: Snapshot, t0: float) -> SourceResult:
        """Shared tail of every read: a valid but empty snapshot is EMPTY."""
        if snapshot.is_empty():
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.EMPTY, "no records", t0,
            )
        return SourceResult.success(self.tier, snapshot, t0)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.tier.value}/{self.collection.value}>"
