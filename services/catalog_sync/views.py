"""
Live views - consumer-side holders of the last snapshot.

Consumers never share the manager's snapshot; each view keeps its own copy
and replaces it wholesale from the payload of every broadcast for its
collection.
"""

import inspect
from typing import Any, Callable, Optional

from .bus import ChangeBus
from .events import ChangeEvent, EventKind
from .models import Collection, Snapshot, empty_snapshot

_SNAPSHOT_KINDS = {
    Collection.CATALOG: {EventKind.CATALOG_UPDATED, EventKind.CATALOG_RELOADED},
    Collection.SETTINGS: {EventKind.SETTINGS_UPDATED},
}


class LiveView:

    def __init__(
        self,
        bus: ChangeBus,
        collection: Collection,
        initial: Optional[Snapshot] = None,
        on_change: Optional[Callable[[Snapshot], Any]] = None,
    ):
        self.collection = collection
        self.snapshot: Snapshot = (initial or empty_snapshot(collection)).model_copy(deep=True)
        self.degraded: Optional[str] = None
        self.updates = 0
        self._on_change = on_change
        self._unsubscribe = bus.subscribe(
            self._handle,
            kinds=_SNAPSHOT_KINDS[collection] | {EventKind.SYNC_DEGRADED},
        )

    async def _handle(self, event: ChangeEvent) -> None:
        if event.collection is not self.collection:
            return

        if event.kind is EventKind.SYNC_DEGRADED:
            self.degraded = f"{event.tier}: {event.detail}"
            return

        if event.payload is None:
            return

        self.snapshot = event.payload.model_copy(deep=True)
        self.updates += 1
        if self._on_change is not None:
            result = self._on_change(self.snapshot)
            if inspect.isawaitable(result):
                await result

    def close(self) -> None:
        self._unsubscribe()
