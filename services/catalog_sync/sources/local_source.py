"""
Local Cache Source: the process-local durable tier.

The local cache is a JSON key/value file (string values, like browser
localStorage). It is the only tier the sync layer treats as a durability
boundary: a commit succeeds when, and only when, the local write succeeds.

Each collection is written under several redundant keys so older readers
keep working. One logical write fans out to every key in a single atomic
file replace, so the keys can never disagree.
"""

import errno
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..errors import ErrorKind, QuotaExceededError, SyncError
from ..models import Collection, Snapshot, parse_snapshot
from .base import SourceAdapter, SourceResult, Tier

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024  # same ceiling browsers give localStorage

# First key is the primary one; the rest are kept for older readers
LOCAL_KEYS: Dict[Collection, List[str]] = {
    Collection.CATALOG: [
        "chemical_tests_admin",
        "chemical_tests_data",
        "database_color_tests",
        "chemical_tests_local",
    ],
    Collection.SETTINGS: [
        "subscription_settings_local",
        "subscription_settings",
    ],
}


class LocalStore:
    """
    Quota-bounded key/value file.

    path=None keeps everything in memory (tests, read-only filesystems).
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
    ):
        self._path = Path(path).expanduser() if path else None
        self._quota = quota_bytes
        self._memory: Dict[str, str] = {}

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def quota_bytes(self) -> int:
        return self._quota

    def _read_all(self) -> Dict[str, str]:
        """Raises ValueError on a corrupt file, OSError on I/O failure."""
        if self._path is None:
            return dict(self._memory)
        if not self._path.exists():
            return {}
        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not hold a key/value object")
        return data

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def keys(self) -> List[str]:
        return sorted(self._read_all())

    def write_many(self, values: Dict[str, str]) -> None:
        """
        Set every key in one atomic step.

        Raises:
            QuotaExceededError: the resulting store would exceed the quota
            SyncError(UNREACHABLE): the file cannot be written
        """
        try:
            current = self._read_all()
        except ValueError:
            # Corrupt file: nothing in it is readable, start over
            current = {}
        except OSError as e:
            raise SyncError(ErrorKind.UNREACHABLE, f"local store unreadable: {e}") from e

        merged = {**current, **values}
        encoded = json.dumps(merged, ensure_ascii=False)
        size = len(encoded.encode("utf-8"))
        if size > self._quota:
            raise QuotaExceededError(f"{size} bytes exceeds local quota of {self._quota} bytes")

        if self._path is None:
            self._memory = merged
            return

        self._replace_file(encoded)

    def remove(self, keys: Iterable[str]) -> None:
        try:
            current = self._read_all()
        except ValueError:
            current = {}
        except OSError as e:
            raise SyncError(ErrorKind.UNREACHABLE, f"local store unreadable: {e}") from e

        for key in keys:
            current.pop(key, None)

        if self._path is None:
            self._memory = current
            return

        self._replace_file(json.dumps(current, ensure_ascii=False))

    def _replace_file(self, encoded: str) -> None:
        tmp_name = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".localstore-")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(encoded)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            if e.errno in (errno.ENOSPC, errno.EDQUOT):
                raise QuotaExceededError(f"disk full writing {self._path}: {e}") from e
            raise SyncError(ErrorKind.UNREACHABLE, f"local store unwritable: {e}") from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)


class LocalCacheSource(SourceAdapter):
    """Reads/writes one collection on the local store under its redundant keys."""

    tier = Tier.LOCAL_CACHE
    writable = True

    def __init__(
        self,
        collection: Collection,
        store: LocalStore,
        logger: Any,
        keys: Optional[List[str]] = None,
    ):
        super().__init__(collection, logger)
        self._store = store
        self._keys = list(keys or LOCAL_KEYS[collection])
        if not self._keys:
            raise ValueError(f"no local keys configured for {collection.value}")

    @property
    def keys(self) -> List[str]:
        return list(self._keys)

    async def read(self) -> SourceResult:
        t0 = time.time()

        try:
            raw = None
            for key in self._keys:
                raw = self._store.get(key)
                if raw:
                    break
        except ValueError as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.MALFORMED, f"local store corrupt: {e}", t0,
            )
        except OSError as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE, str(e), t0,
            )

        if not raw:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.EMPTY, "no cached copy", t0,
            )

        try:
            snapshot = parse_snapshot(self.collection, json.loads(raw))
        except (TypeError, ValueError) as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.MALFORMED, str(e)[:300], t0,
            )

        return self._classify(snapshot, t0)

    def write_sync(self, snapshot: Snapshot) -> List[str]:
        """Write the snapshot under every redundant key; returns the keys written."""
        value = snapshot.to_json()
        self._store.write_many({key: value for key in self._keys})
        return self.keys

    async def write(self, snapshot: Snapshot) -> None:
        self.write_sync(snapshot)

    def clear(self) -> None:
        self._store.remove(self._keys)
