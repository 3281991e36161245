"""
Change Events - what the bus carries between managers and consumers.

Naming follows the wire names consumers already listen for:
catalogUpdated, catalogReloaded, settingsUpdated, syncDegraded.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .models import Collection, Snapshot, utc_now


class EventKind(str, Enum):
    CATALOG_UPDATED = "catalogUpdated"      # local commit of a catalog edit
    CATALOG_RELOADED = "catalogReloaded"    # background reload found new content
    SETTINGS_UPDATED = "settingsUpdated"    # payload is the full aggregate
    SYNC_DEGRADED = "syncDegraded"          # a remote write failed; local copy stands


@dataclass
class ChangeEvent:
    """One broadcast. payload is a full snapshot, never a diff."""

    kind: EventKind
    collection: Collection
    payload: Optional[Snapshot] = None
    origin: str = ""
    tier: Optional[str] = None
    detail: str = ""
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "collection": self.collection.value,
            "occurred_at": self.occurred_at.isoformat(),
            "origin": self.origin,
            "tier": self.tier,
            "detail": self.detail,
            "payload": self.payload.to_wire() if self.payload is not None else None,
        }


def updated_kind(collection: Collection) -> EventKind:
    """The event a local commit of this collection broadcasts."""
    if collection is Collection.SETTINGS:
        return EventKind.SETTINGS_UPDATED
    return EventKind.CATALOG_UPDATED
