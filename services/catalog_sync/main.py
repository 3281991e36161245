#!/usr/bin/env python3
"""
Catalog Sync - catalog & settings synchronization service.

Loads the chemical test catalog and the settings aggregate from whichever
storage tiers are up, serves them over HTTP, and keeps every tier in step
with write-through commits.

Bootstrap pattern: LogUtil → SetupBase → Container → initial load → run
"""

import asyncio
import sys
from pathlib import Path

# Ensure repo root is on sys.path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import uvicorn
from fastapi import FastAPI

from shared.logutil import LogUtil

SERVICE_NAME = "catalog_sync"


def create_app(container) -> FastAPI:
    """FastAPI app bound to a wired container."""
    from services.catalog_sync.routes import create_router

    app = FastAPI(title="ColorTest Catalog Sync", version="1.0")
    app.include_router(create_router(
        container.catalog,
        container.settings,
        container.persisters,
        container.logger.child("routes"),
    ))
    return app


async def refresh_loop(container, interval: float, logger) -> None:
    """Periodically re-run the cascade for both collections."""
    from services.catalog_sync.models import Collection

    while True:
        await asyncio.sleep(interval)
        for collection in Collection:
            try:
                await container.reload(collection)
            except Exception as e:
                logger.warning(f"Periodic refresh of {collection.value} failed: {e}")


async def stop_task(task: asyncio.Task) -> None:
    """Cancel a background task and wait until it has actually stopped."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def main():
    """Bootstrap and run the catalog sync service."""

    # Phase 1: Logger
    logger = LogUtil(SERVICE_NAME)
    logger.info("Starting Catalog Sync...", emoji="🧪")

    # Phase 2: Configuration (Truth may be down; defaults still boot)
    from services.catalog_sync.container import CatalogSyncSetup, Container

    setup = CatalogSyncSetup(SERVICE_NAME, logger)
    config = await setup.load()
    logger.configure_from_config(config)
    logger.ok("Configuration loaded", emoji="📄")

    # Phase 3: Wire tiers, bus and managers
    container = Container(config, logger)
    try:
        await container.wire()
    except RuntimeError as e:
        logger.error(f"Startup aborted: {e}", emoji="❌")
        return

    # Phase 4: Initial load
    catalog_load = await container.catalog.load()
    settings_load = await container.settings.load()
    logger.ok(
        f"Catalog: {len(container.catalog.tests)} tests "
        f"(from {catalog_load.served_by.value if catalog_load.served_by else 'nowhere'}); "
        f"settings from {settings_load.served_by.value if settings_load.served_by else 'defaults'}",
        emoji="📚",
    )

    # Phase 5: HTTP app
    app = create_app(container)

    # Phase 6: Reload triggers
    await container.listener.start()

    refresh_interval = float(config.get("REFRESH_INTERVAL_SECONDS") or 300)
    refresh_task = asyncio.create_task(refresh_loop(container, refresh_interval, logger))

    # Phase 7: Run HTTP server
    http_port = int(config.get("CATALOG_SYNC_PORT") or 3010)
    logger.ok(f"Catalog Sync ready on port {http_port}", emoji="🧪")

    server_config = uvicorn.Config(
        app=app,
        host="0.0.0.0",
        port=http_port,
        log_level="warning",
    )
    server = uvicorn.Server(server_config)

    try:
        await server.serve()
    except asyncio.CancelledError:
        logger.info("Shutdown signal received", emoji="🛑")
    finally:
        await stop_task(refresh_task)
        await container.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Shutting down gracefully...")
