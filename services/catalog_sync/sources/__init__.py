"""
Sources - one adapter per storage tier.

Load priority: document store, HTTP API, bundled snapshot, local cache.
"""

from .base import SourceAdapter, SourceResult, Tier
from .api_source import HttpApiSource
from .bundled_source import BundledSnapshotSource
from .document_source import CHANGES_CHANNEL, DocumentStoreSource
from .local_source import LOCAL_KEYS, LocalCacheSource, LocalStore

__all__ = [
    "SourceAdapter",
    "SourceResult",
    "Tier",
    "HttpApiSource",
    "BundledSnapshotSource",
    "DocumentStoreSource",
    "CHANGES_CHANNEL",
    "LocalCacheSource",
    "LocalStore",
    "LOCAL_KEYS",
]
