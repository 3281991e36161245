"""
Reconciliation Policy: which copy wins when tiers disagree.

Tier priority decides (document store > HTTP API > bundled > local cache),
except that a local copy stamped later than the winning tier's copy wins:
that tab/process has edits the remote tiers have not seen yet. Whole
snapshots only; fields are never merged. Across processes this timestamp
rule is the only conflict resolution, there is no lock.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from .models import Snapshot
from .sources.base import SourceAdapter, SourceResult, Tier

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def snapshot_time(snapshot: Optional[Snapshot]) -> datetime:
    """A snapshot's lastUpdated; missing stamps compare as oldest."""
    if snapshot is None or snapshot.last_updated is None:
        return _OLDEST
    return snapshot.last_updated


def by_priority(sources: Sequence[SourceAdapter]) -> List[SourceAdapter]:
    """Sources in default load order (stable for equal tiers)."""
    return sorted(sources, key=lambda s: s.tier.priority)


class ReconciliationPolicy:

    def __init__(self, logger: Any = None):
        self._logger = logger

    def prefer(self, winner: SourceResult, local: Optional[SourceResult]) -> SourceResult:
        """
        Pick between the highest-priority successful read and the local copy.

        Args:
            winner: first successful read in priority order
            local: local cache read, if the local tier is configured

        Returns:
            whichever result should be served
        """
        if winner.tier is Tier.LOCAL_CACHE or local is None or not local.ok:
            return winner

        local_ts = snapshot_time(local.snapshot)
        winner_ts = snapshot_time(winner.snapshot)

        if local_ts > winner_ts:
            if self._logger:
                self._logger.info(
                    f"{winner.collection.value}: local copy ({local_ts.isoformat()}) newer than "
                    f"{winner.tier.value} ({winner_ts.isoformat() if winner_ts != _OLDEST else 'unstamped'}); "
                    f"serving unsynced local edits",
                    emoji="🧭",
                )
            return local

        return winner
