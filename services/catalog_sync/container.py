"""
Dependency Injection Container - wires the catalog sync components.

The container is responsible for:
- Creating the tier clients (async Redis, shared httpx client, local store)
- Creating one adapter per tier per collection
- Creating loader, persisters, bus and the two managers
- Providing clean shutdown (drain remote writes, close clients)

Usage:
    container = Container(config, logger)
    await container.wire()
    try:
        await container.catalog.load()
        ...
    finally:
        await container.shutdown()
"""

import asyncio
import os
import socket
import uuid
from typing import Any, Dict, List, Optional

import httpx
from redis.asyncio import Redis
from redis.exceptions import RedisError

from shared.setup_base import SetupBase

from .bus import ChangeBus
from .catalog import CatalogManager
from .loader import CascadingLoader
from .models import Collection
from .persister import WriteThroughPersister
from .reconcile import ReconciliationPolicy
from .settings_manager import SettingsManager
from .sources import (
    BundledSnapshotSource,
    DocumentStoreSource,
    HttpApiSource,
    LocalCacheSource,
    LocalStore,
    SourceAdapter,
)
from .sources.local_source import DEFAULT_QUOTA_BYTES
from .triggers import RemoteChangeListener
from .usage import UsageLedger

DEFAULT_CONFIG: Dict[str, Any] = {
    "DOCUMENT_STORE_URL": "",
    "CATALOG_API_URL": "",
    "API_TIMEOUT_SECONDS": "5",
    "DOCUMENT_STORE_TIMEOUT_SECONDS": "2",
    "LOCAL_CACHE_PATH": "~/.colortest/local_cache.json",
    "LOCAL_CACHE_QUOTA_BYTES": str(DEFAULT_QUOTA_BYTES),
    "BUNDLED_SNAPSHOT_PATH": "",
    "CATALOG_SYNC_PORT": "3010",
    "REFRESH_INTERVAL_SECONDS": "300",
    "SHUTDOWN_DRAIN_SECONDS": "5",
    "LOG_LEVEL": "INFO",
}


class CatalogSyncSetup(SetupBase):
    """SetupBase with this service's built-in defaults."""

    DEFAULTS = DEFAULT_CONFIG

    async def extend_config(self, config: Dict[str, Any]):
        # local_keys in Truth may rename the redundant local keys per collection
        local_keys = config.get("local_keys") or {}
        if local_keys and not isinstance(local_keys, dict):
            self.warn(f"[setup:{self.service_name}] local_keys must be an object; ignored")
            config.pop("local_keys", None)


def _float(config: Dict[str, Any], key: str) -> float:
    try:
        return float(config.get(key) or DEFAULT_CONFIG[key])
    except (TypeError, ValueError):
        return float(DEFAULT_CONFIG[key])


def _int(config: Dict[str, Any], key: str) -> int:
    try:
        return int(config.get(key) or DEFAULT_CONFIG[key])
    except (TypeError, ValueError):
        return int(DEFAULT_CONFIG[key])


def make_origin() -> str:
    """Identity stamped on change notices so a process can skip its own."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:6]}"


class Container:
    """
    Dependency injection container for the catalog sync service.

    Every tier is optional: a missing URL simply leaves that tier out.
    """

    def __init__(self, config: Dict[str, Any], logger: Any):
        """
        Args:
            config: Configuration dict from CatalogSyncSetup
            logger: LogUtil instance
        """
        self.config = config
        self.logger = logger
        self.origin = config.get("ORIGIN") or make_origin()

        # Clients (created during wire())
        self.redis: Optional[Redis] = None
        self.http: Optional[httpx.AsyncClient] = None
        self.store: Optional[LocalStore] = None

        # Core
        self.bus: Optional[ChangeBus] = None
        self.loader: Optional[CascadingLoader] = None
        self.sources: Dict[Collection, List[SourceAdapter]] = {}
        self.persisters: Dict[Collection, WriteThroughPersister] = {}
        self.catalog: Optional[CatalogManager] = None
        self.settings: Optional[SettingsManager] = None
        self.listener: Optional[RemoteChangeListener] = None

        self._initialized = False

    async def wire(self) -> "Container":
        """
        Create every component.

        Raises:
            RuntimeError: If wiring fails
        """
        self.logger.info("Wiring catalog sync dependencies...", emoji="🔌")

        try:
            # 1. Tier clients
            self.redis = await self._create_redis()
            self.http = self._create_http_client()
            self.store = self._create_local_store()

            # 2. Bus + loader
            self.bus = ChangeBus(self.logger.child("bus"))
            self.loader = CascadingLoader(
                self.logger.child("loader"),
                ReconciliationPolicy(self.logger.child("reconcile")),
            )

            # 3. Adapters + persister per collection
            for collection in Collection:
                sources, local, remotes = self._create_sources(collection)
                self.sources[collection] = sources
                self.persisters[collection] = WriteThroughPersister(
                    local, remotes, self.bus, self.logger.child("persister"), origin=self.origin,
                )

            # 4. Managers
            self.catalog = CatalogManager(
                self.loader,
                self.sources[Collection.CATALOG],
                self.persisters[Collection.CATALOG],
                self.bus,
                self.logger.child("catalog"),
                origin=self.origin,
            )
            self.settings = SettingsManager(
                self.loader,
                self.sources[Collection.SETTINGS],
                self.persisters[Collection.SETTINGS],
                self.bus,
                self.logger.child("settings"),
                origin=self.origin,
                usage=UsageLedger(self.store, self.logger.child("usage")),
            )

            # 5. Remote change listener (started by the caller)
            self.listener = RemoteChangeListener(
                self.redis, self.reload, self.logger.child("triggers"), origin=self.origin,
            )

            self._initialized = True
            self.logger.ok(f"Catalog sync wiring complete (origin {self.origin})", emoji="✓")
            return self

        except Exception as e:
            self.logger.error(f"Failed to wire catalog sync: {e}", emoji="❌")
            await self.shutdown()
            raise RuntimeError(f"Catalog sync wiring failed: {e}") from e

    async def _create_redis(self) -> Optional[Redis]:
        url = self.config.get("DOCUMENT_STORE_URL")
        if not url:
            self.logger.warn("DOCUMENT_STORE_URL not set; document store tier disabled")
            return None

        timeout = _float(self.config, "DOCUMENT_STORE_TIMEOUT_SECONDS")
        client = Redis.from_url(url, decode_responses=True, socket_timeout=timeout)
        try:
            await client.ping()
            self.logger.info(f"Connected to document store: {url}", emoji="🔴")
        except (RedisError, OSError) as e:
            # Keep the client: reads fail as unreachable until the store comes back
            self.logger.warn(f"Document store not reachable yet ({e}); continuing degraded")
        return client

    def _create_http_client(self) -> Optional[httpx.AsyncClient]:
        if not self.config.get("CATALOG_API_URL"):
            self.logger.warn("CATALOG_API_URL not set; HTTP API tier disabled")
            return None
        timeout = _float(self.config, "API_TIMEOUT_SECONDS")
        return httpx.AsyncClient(timeout=timeout)

    def _create_local_store(self) -> LocalStore:
        path = self.config.get("LOCAL_CACHE_PATH") or None
        store = LocalStore(path, quota_bytes=_int(self.config, "LOCAL_CACHE_QUOTA_BYTES"))
        self.logger.info(f"Local cache: {store.path or 'in-memory'}", emoji="💽")
        return store

    def _create_sources(self, collection: Collection):
        """Adapters in load priority order, plus the local and writable remote ones."""
        local_keys = (self.config.get("local_keys") or {}).get(collection.value)
        local = LocalCacheSource(collection, self.store, self.logger.child("local"), keys=local_keys)
        bundled = BundledSnapshotSource(
            collection,
            self.logger.child("bundled"),
            path=self.config.get("BUNDLED_SNAPSHOT_PATH") or None,
        )

        remotes: List[SourceAdapter] = []
        if self.redis is not None:
            remotes.append(DocumentStoreSource(
                collection,
                self.redis,
                self.logger.child("document_store"),
                timeout=_float(self.config, "DOCUMENT_STORE_TIMEOUT_SECONDS"),
                origin=self.origin,
            ))
        if self.http is not None:
            remotes.append(HttpApiSource(
                collection,
                self.config.get("CATALOG_API_URL"),
                self.logger.child("http_api"),
                client=self.http,
            ))

        return [*remotes, bundled, local], local, remotes

    async def reload(self, collection: Collection) -> bool:
        """Background reload of one collection (remote notice or refresh loop)."""
        if collection is Collection.CATALOG:
            return await self.catalog.reload()
        return await self.settings.reload()

    async def shutdown(self) -> None:
        """Drain outstanding remote writes and close clients."""
        self.logger.info("Shutting down catalog sync...", emoji="🛑")

        if self.listener is not None:
            await self.listener.stop()

        drain_timeout = _float(self.config, "SHUTDOWN_DRAIN_SECONDS")
        for collection, persister in self.persisters.items():
            if not persister.pending:
                continue
            try:
                await asyncio.wait_for(persister.drain(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                self.logger.warn(
                    f"{collection.value}: {persister.pending} remote write(s) abandoned at shutdown",
                )

        if self.http is not None:
            await self.http.aclose()
            self.http = None

        if self.redis is not None:
            try:
                await self.redis.aclose()
            except (RedisError, OSError) as e:
                self.logger.debug(f"redis close: {e}")
            self.redis = None

        self._initialized = False
        self.logger.info("Catalog sync shutdown complete", emoji="✓")
