"""
Settings Aggregate Manager.

Holds the one settings aggregate, commits every change through the
write-through persister and broadcasts settingsUpdated with the full
aggregate so every consumer re-derives access state.

globalFreeAccess overrides every other access flag. Every read path here
checks it first; consumers should use is_premium()/check_access() rather
than reading specificPremiumTests directly.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Union

from .bus import ChangeBus
from .events import ChangeEvent, EventKind
from .loader import CascadingLoader, LoadResult
from .models import Collection, SettingsAggregate, SettingsSnapshot, utc_now
from .persister import CommitReceipt, WriteThroughPersister
from .sources.base import SourceAdapter
from .usage import UsageLedger


class AccessReason(str, Enum):
    GLOBAL_FREE = "global_free"
    PREMIUM = "premium"
    FREE_QUOTA = "free_quota"
    BLOCKED = "blocked"


@dataclass
class AccessDecision:
    has_access: bool
    reason: AccessReason
    message: str = ""
    remaining_free_tests: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "hasAccess": self.has_access,
            "reason": self.reason.value,
            "message": self.message,
        }
        if self.remaining_free_tests is not None:
            out["remainingFreeTests"] = self.remaining_free_tests
        return out


class SettingsManager:

    def __init__(
        self,
        loader: CascadingLoader,
        sources: Sequence[SourceAdapter],
        persister: WriteThroughPersister,
        bus: ChangeBus,
        logger: Any,
        origin: str = "",
        usage: Optional[UsageLedger] = None,
    ):
        if persister.collection is not Collection.SETTINGS:
            raise ValueError("SettingsManager needs a settings persister")
        self._loader = loader
        self._sources = list(sources)
        self._persister = persister
        self._bus = bus
        self._logger = logger
        self._origin = origin
        self._usage = usage
        self._snapshot = SettingsSnapshot()
        self.last_load: Optional[LoadResult] = None

    # -------------------------------------------------
    # Load
    # -------------------------------------------------

    async def load(self) -> LoadResult:
        """Load from the tiers; an empty result leaves the defaults in place."""
        result = await self._loader.load(self._sources, Collection.SETTINGS)
        self.last_load = result
        self._snapshot = result.snapshot
        if result.empty:
            self._logger.info("No stored settings; using defaults", emoji="⚙️")
        return result

    async def reload(self) -> bool:
        """Background reload; broadcasts only when the stored aggregate changed."""
        result = await self._loader.load(self._sources, Collection.SETTINGS)
        self.last_load = result
        if result.empty or result.snapshot.content_equals(self._snapshot):
            return False

        self._snapshot = result.snapshot
        self._logger.info(f"Settings reloaded from {result.served_by.value}", emoji="🔄")
        await self._publish()
        return True

    # -------------------------------------------------
    # Read
    # -------------------------------------------------

    @property
    def current(self) -> SettingsAggregate:
        """A copy of the aggregate; defaults until something was stored."""
        if self._snapshot.settings is None:
            return SettingsAggregate()
        return self._snapshot.settings.model_copy(deep=True)

    @property
    def snapshot(self) -> SettingsSnapshot:
        if self._snapshot.is_empty():
            return SettingsSnapshot(settings=SettingsAggregate(), last_updated=self._snapshot.last_updated)
        return self._snapshot

    def is_premium(self, test_id: str) -> bool:
        """Whether a test is premium-gated right now. False under global free access."""
        settings = self.current
        if settings.global_free_access:
            return False
        return str(test_id) in settings.specific_premium_tests

    def check_access(
        self,
        test_id: str,
        user_has_premium: bool = False,
        free_tests_used: Optional[int] = None,
        user_id: str = "",
    ) -> AccessDecision:
        """
        Decide whether a user may run a test.

        Order: global free access, premium user, premium-only test,
        free quota, blocked. free_tests_used=None reads the usage ledger.
        """
        settings = self.current
        if free_tests_used is None:
            free_tests_used = self._usage.free_tests_used(user_id) if self._usage else 0

        if settings.global_free_access:
            return AccessDecision(True, AccessReason.GLOBAL_FREE, "Global free access enabled")

        if user_has_premium:
            return AccessDecision(True, AccessReason.PREMIUM, "Premium subscription active")

        if str(test_id) in settings.specific_premium_tests:
            return AccessDecision(False, AccessReason.BLOCKED, "This test requires premium subscription")

        if settings.free_tests_enabled:
            remaining = max(0, settings.free_tests_count - max(0, free_tests_used))
            if remaining > 0:
                return AccessDecision(
                    True, AccessReason.FREE_QUOTA,
                    f"{remaining} free tests remaining",
                    remaining_free_tests=remaining - 1,
                )
            return AccessDecision(
                False, AccessReason.BLOCKED,
                "Free test quota exhausted. Upgrade to premium for unlimited access.",
                remaining_free_tests=0,
            )

        return AccessDecision(False, AccessReason.BLOCKED, "Premium subscription required")

    def record_usage(self, test_id: str, user_has_premium: bool = False, user_id: str = "") -> Dict[str, Any]:
        """
        Record one run of a test against the user's free quota.

        Raises:
            RuntimeError: no usage ledger configured
            SyncError: the local store rejected the write
        """
        if self._usage is None:
            raise RuntimeError("usage tracking is not configured")
        entry = self._usage.record(test_id, is_premium=user_has_premium, user_id=user_id)
        return {"recorded": entry, **self._usage.usage(user_id)}

    # -------------------------------------------------
    # Write
    # -------------------------------------------------

    async def update(self, settings: Union[SettingsAggregate, Dict[str, Any]]) -> CommitReceipt:
        """
        Replace the aggregate and commit it.

        Raises:
            pydantic.ValidationError: settings given as a dict with bad values
        """
        if not isinstance(settings, SettingsAggregate):
            settings = SettingsAggregate.model_validate(settings)

        candidate = SettingsSnapshot(settings=settings, last_updated=utc_now())
        receipt = await self._persister.commit(candidate)
        if not receipt.ok:
            return receipt

        self._snapshot = candidate
        self._logger.info(
            f"Settings saved (globalFreeAccess={settings.global_free_access}, "
            f"premium tests={len(settings.specific_premium_tests)})",
            emoji="💾",
        )
        await self._publish()
        return receipt

    async def set_global_free_access(self, enabled: bool) -> CommitReceipt:
        settings = self.current
        settings.global_free_access = bool(enabled)
        return await self.update(settings)

    async def reset(self) -> CommitReceipt:
        """Back to defaults. The aggregate is never deleted."""
        return await self.update(SettingsAggregate())

    async def _publish(self) -> None:
        await self._bus.publish(ChangeEvent(
            kind=EventKind.SETTINGS_UPDATED,
            collection=Collection.SETTINGS,
            payload=self.snapshot,
            origin=self._origin,
        ))
