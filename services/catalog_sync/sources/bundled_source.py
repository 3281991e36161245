"""
Bundled Source: reads the static JSON snapshot shipped with the package.

Read-only. The file is the last-known-good catalog that every deployment
carries, so it serves whenever the remote tiers cannot.
"""

import json
import time
from pathlib import Path
from typing import Any, Optional, Union

from ..errors import ErrorKind
from ..models import Collection, parse_snapshot
from .base import SourceAdapter, SourceResult, Tier

DEFAULT_SNAPSHOT_PATH = Path(__file__).resolve().parents[1] / "data" / "catalog_snapshot.json"


class BundledSnapshotSource(SourceAdapter):
    """Reads one collection out of the packaged snapshot file."""

    tier = Tier.BUNDLED

    def __init__(
        self,
        collection: Collection,
        logger: Any,
        path: Optional[Union[str, Path]] = None,
    ):
        super().__init__(collection, logger)
        self._path = Path(path) if path else DEFAULT_SNAPSHOT_PATH

    async def read(self) -> SourceResult:
        t0 = time.time()

        try:
            with open(self._path, "rb") as f:
                raw = f.read()
        except OSError as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.UNREACHABLE,
                f"cannot open {self._path}: {e}", t0,
            )

        try:
            snapshot = parse_snapshot(self.collection, json.loads(raw))
        except ValueError as e:
            return SourceResult.failure(
                self.tier, self.collection, ErrorKind.MALFORMED, str(e)[:300], t0,
            )

        return self._classify(snapshot, t0)
