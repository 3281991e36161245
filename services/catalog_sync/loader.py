"""
Cascading Loader: first good snapshot wins, in priority order.

Flow:
1. Read each adapter strictly in the order given
2. Stop at the first non-empty, well-formed snapshot
3. Ask the reconciliation policy whether a newer local copy should win
4. If every tier fails, serve the empty snapshot ("no data yet")

Skipped tiers are recorded on the LoadResult for diagnostics; they never
surface as exceptions.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import ErrorKind
from .models import Collection, Snapshot, empty_snapshot
from .reconcile import ReconciliationPolicy
from .sources.base import SourceAdapter, SourceResult, Tier


@dataclass
class LoadResult:
    """What a load produced and how."""

    collection: Collection
    snapshot: Snapshot
    served_by: Optional[Tier] = None
    failures: List[SourceResult] = field(default_factory=list)
    reconciled: bool = False

    @property
    def empty(self) -> bool:
        return self.served_by is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection.value,
            "served_by": self.served_by.value if self.served_by else None,
            "reconciled": self.reconciled,
            "last_updated": self.snapshot.last_updated.isoformat() if self.snapshot.last_updated else None,
            "failures": [f.to_dict() for f in self.failures],
        }


class CascadingLoader:

    def __init__(self, logger: Any, policy: Optional[ReconciliationPolicy] = None):
        self._logger = logger
        self._policy = policy or ReconciliationPolicy(logger)

    async def load(
        self,
        sources: Sequence[SourceAdapter],
        collection: Optional[Collection] = None,
    ) -> LoadResult:
        """
        Load one collection from the first tier that can serve it.

        Args:
            sources: adapters in priority order, all for the same collection
            collection: required only when sources is empty

        Returns:
            LoadResult; its snapshot is empty (served_by None) when all tiers failed
        """
        collection = self._collection_of(sources, collection)

        attempts: Dict[int, SourceResult] = {}
        failures: List[SourceResult] = []
        winner: Optional[SourceResult] = None

        for source in sources:
            result = await self._read(source)
            attempts[id(source)] = result
            if result.ok:
                winner = result
                break
            failures.append(result)
            self._log_skip(result)

        if winner is None:
            self._logger.warn(
                f"{collection.value}: no tier could serve "
                f"({', '.join(f'{f.tier.value}={f.error.value}' for f in failures) or 'no sources'}); "
                f"starting empty",
            )
            return LoadResult(collection=collection, snapshot=empty_snapshot(collection), failures=failures)

        chosen = winner
        local = next((s for s in sources if s.tier is Tier.LOCAL_CACHE), None)
        if local is not None and winner.tier is not Tier.LOCAL_CACHE:
            local_result = attempts.get(id(local)) or await self._read(local)
            chosen = self._policy.prefer(winner, local_result)

        self._logger.info(
            f"{collection.value}: served by {chosen.tier.value} "
            f"({chosen.latency_ms}ms, {len(failures)} tier(s) skipped)",
        )

        return LoadResult(
            collection=collection,
            snapshot=chosen.snapshot,
            served_by=chosen.tier,
            failures=failures,
            reconciled=chosen is not winner,
        )

    async def _read(self, source: SourceAdapter) -> SourceResult:
        try:
            return await source.read()
        except Exception as e:
            # Adapters report faults as values; anything escaping is a tier bug
            self._logger.error(f"{source!r} raised during read: {e}")
            return SourceResult(
                tier=source.tier,
                collection=source.collection,
                error=ErrorKind.UNREACHABLE,
                detail=f"adapter raised {type(e).__name__}: {e}",
            )

    def _log_skip(self, result: SourceResult) -> None:
        message = f"{result.collection.value}: skipped {result.tier.value} ({result.error.value}: {result.detail})"
        if result.error is ErrorKind.MALFORMED:
            self._logger.warn(message)
        else:
            self._logger.debug(message)

    @staticmethod
    def _collection_of(sources: Sequence[SourceAdapter], collection: Optional[Collection]) -> Collection:
        collections = {s.collection for s in sources}
        if collection is not None:
            collections.add(collection)
        if len(collections) != 1:
            raise ValueError(
                f"loader needs sources for exactly one collection, got {sorted(c.value for c in collections)}"
            )
        return collections.pop()
