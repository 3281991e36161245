"""
Change Broadcast Bus - in-process ordered publish/subscribe.

Delivery rules:
- FIFO in publish order, across all subscribers
- An event published from inside a handler is queued behind the event
  being delivered, not delivered re-entrantly
- A publisher in another task waits for the current dispatch to finish or
  be cancelled, then delivers whatever is still queued
- No replay: a subscriber only sees events published after it subscribed
- A failing handler is logged; other handlers still run

Handlers may be plain functions or coroutine functions.
"""

import asyncio
import inspect
from collections import deque
from typing import Any, Callable, Deque, Iterable, List, Optional, Set, Tuple

from .events import ChangeEvent, EventKind

Handler = Callable[[ChangeEvent], Any]


class ChangeBus:

    def __init__(self, logger: Any):
        self._logger = logger
        self._subscribers: List[Tuple[Handler, Optional[Set[EventKind]]]] = []
        self._queue: Deque[ChangeEvent] = deque()
        self._lock = asyncio.Lock()
        self._dispatcher: Optional["asyncio.Task[Any]"] = None
        self.published = 0

    def subscribe(
        self,
        handler: Handler,
        kinds: Optional[Iterable[EventKind]] = None,
    ) -> Callable[[], None]:
        """
        Register a handler.

        Args:
            handler: called with each ChangeEvent (sync or async)
            kinds: only these event kinds; None means all

        Returns:
            a function that removes this subscription
        """
        entry = (handler, set(kinds) if kinds is not None else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: ChangeEvent) -> None:
        """
        Deliver an event to every current subscriber.

        Re-entrant calls (from a handler) enqueue and return; the outer call
        delivers them after the current event. Any other caller returns only
        once its event has been delivered.
        """
        self._queue.append(event)
        self.published += 1
        if self._dispatcher is not None and self._dispatcher is asyncio.current_task():
            return

        async with self._lock:
            self._dispatcher = asyncio.current_task()
            try:
                while self._queue:
                    await self._deliver(self._queue.popleft())
            finally:
                self._dispatcher = None

    @property
    def queued(self) -> int:
        return len(self._queue)

    async def _deliver(self, event: ChangeEvent) -> None:
        # Snapshot the list: handlers may (un)subscribe while running
        for handler, kinds in list(self._subscribers):
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(
                    f"Event handler {getattr(handler, '__qualname__', handler)!s} failed "
                    f"for {event.kind.value}: {e}",
                    emoji="💥",
                )
