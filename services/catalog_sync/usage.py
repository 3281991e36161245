"""
Usage Ledger: free-test runs recorded on the local store.

Every test run is appended to a JSON list under ``test_results`` (or
``test_results:<user>`` when a user id is given). Premium runs are kept in
the list but never count against the free quota.
"""

import json
from typing import Any, Dict, List

from .models import utc_now
from .sources.local_source import LocalStore

USAGE_KEY = "test_results"


class UsageLedger:

    def __init__(self, store: LocalStore, logger: Any):
        self._store = store
        self._logger = logger

    @staticmethod
    def key_for(user_id: str = "") -> str:
        return f"{USAGE_KEY}:{user_id}" if user_id else USAGE_KEY

    def entries(self, user_id: str = "") -> List[Dict[str, Any]]:
        """Recorded runs, oldest first. An unreadable record counts as none."""
        try:
            raw = self._store.get(self.key_for(user_id))
            data = json.loads(raw) if raw else []
        except (OSError, TypeError, ValueError) as e:
            self._logger.warn(f"Usage record for {user_id or 'local user'} unreadable: {e}")
            return []

        if not isinstance(data, list):
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def usage(self, user_id: str = "") -> Dict[str, int]:
        entries = self.entries(user_id)
        return {
            "freeTestsUsed": sum(1 for entry in entries if not entry.get("isPremium")),
            "totalTestsUsed": len(entries),
        }

    def free_tests_used(self, user_id: str = "") -> int:
        return self.usage(user_id)["freeTestsUsed"]

    def record(self, test_id: str, is_premium: bool = False, user_id: str = "") -> Dict[str, Any]:
        """
        Append one test run.

        Raises:
            SyncError: the local store rejected the write (quota, I/O)
        """
        now = utc_now()
        entry = {
            "id": f"test-{int(now.timestamp() * 1000)}",
            "testId": str(test_id),
            "timestamp": now.isoformat(),
            "isPremium": bool(is_premium),
        }
        entries = self.entries(user_id)
        entries.append(entry)
        self._store.write_many({self.key_for(user_id): json.dumps(entries, ensure_ascii=False)})

        self._logger.debug(f"Test usage recorded: {entry['testId']} (premium={entry['isPremium']})")
        return entry
