"""
HTTP routes for the Catalog Sync service.

Endpoints:
- GET    /api/tests                Catalog snapshot (wire format)
- POST   /api/tests                Replace the whole catalog (validated import)
- POST   /api/tests/validate       Validation report, nothing stored
- GET    /api/tests/search         ?q=&lang=
- GET    /api/tests/statistics     Catalog statistics
- GET    /api/tests/{test_id}      One test
- PUT    /api/tests/{test_id}      Create/replace one test
- DELETE /api/tests/{test_id}      Remove one test
- GET    /api/settings             Settings snapshot (wire format)
- POST   /api/settings             Replace the settings aggregate
- GET    /api/access/{test_id}     ?premium=&used=&user= access decision
- POST   /api/access/{test_id}/usage  ?premium=&user= record one test run
- GET    /health                   Health check
- GET    /status                   Serving tiers and remote sync state

/api/tests and /api/settings speak the same schema HttpApiSource reads, so
one instance can serve as another instance's HTTP API tier.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from .catalog import CatalogManager
from .errors import ErrorKind, SyncError, TestNotFoundError
from .models import Collection, parse_snapshot
from .persister import CommitReceipt, WriteThroughPersister
from .settings_manager import SettingsManager
from .validation import validate_catalog

SERVICE_NAME = "catalog_sync"


def _raise_for_receipt(receipt: CommitReceipt) -> None:
    if receipt.ok:
        return
    status = 507 if receipt.error is ErrorKind.QUOTA_EXCEEDED else 503
    raise HTTPException(status_code=status, detail=f"{receipt.error.value}: {receipt.detail}")


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="body must be JSON")


def create_router(
    catalog: CatalogManager,
    settings: SettingsManager,
    persisters: Dict[Collection, WriteThroughPersister],
    logger: Any,
) -> APIRouter:
    """Create routes bound to the catalog and settings managers."""

    router = APIRouter()

    # -------------------------------------------------
    # Catalog
    # -------------------------------------------------

    @router.get("/api/tests")
    async def get_tests():
        return catalog.snapshot.to_wire()

    @router.post("/api/tests")
    async def save_tests(request: Request):
        body = await _json_body(request)
        report, receipt = await catalog.replace_all(body)
        if receipt is None:
            raise HTTPException(status_code=422, detail=report.to_dict())
        _raise_for_receipt(receipt)
        return {
            "success": True,
            "count": report.total_tests,
            "warnings": len(report.warnings),
            "lastUpdated": catalog.snapshot.to_wire().get("lastUpdated"),
        }

    @router.post("/api/tests/validate")
    async def validate_tests(request: Request):
        body = await _json_body(request)
        return validate_catalog(body).to_dict()

    @router.get("/api/tests/search")
    async def search_tests(q: str = "", lang: Optional[str] = None):
        results = catalog.search(q, lang)
        return {"count": len(results), "testDefinitions": [t.to_wire() for t in results]}

    @router.get("/api/tests/statistics")
    async def test_statistics():
        return catalog.statistics()

    @router.get("/api/tests/{test_id}")
    async def get_test(test_id: str):
        try:
            return catalog.get(test_id).to_wire()
        except TestNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @router.put("/api/tests/{test_id}")
    async def put_test(test_id: str, request: Request):
        body = await _json_body(request)
        if not isinstance(body, dict):
            raise HTTPException(status_code=422, detail="test definition must be an object")
        try:
            saved, receipt = await catalog.save({**body, "id": test_id})
        except ValidationError as e:
            raise HTTPException(
                status_code=422,
                detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
            )
        _raise_for_receipt(receipt)
        return saved.to_wire()

    @router.delete("/api/tests/{test_id}")
    async def delete_test(test_id: str):
        try:
            receipt = await catalog.delete(test_id)
        except TestNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        _raise_for_receipt(receipt)
        return {"success": True, "deleted": test_id}

    # -------------------------------------------------
    # Settings & access
    # -------------------------------------------------

    @router.get("/api/settings")
    async def get_settings():
        return settings.snapshot.to_wire()

    @router.post("/api/settings")
    async def save_settings(request: Request):
        body = await _json_body(request)
        try:
            incoming = parse_snapshot(Collection.SETTINGS, body)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)[:300])
        if incoming.settings is None:
            raise HTTPException(status_code=422, detail="missing 'settings' object")

        receipt = await settings.update(incoming.settings)
        _raise_for_receipt(receipt)
        return {"success": True, **settings.snapshot.to_wire()}

    @router.get("/api/access/{test_id}")
    async def check_access(test_id: str, premium: bool = False, used: Optional[int] = None, user: str = ""):
        return settings.check_access(
            test_id, user_has_premium=premium, free_tests_used=used, user_id=user,
        ).to_dict()

    @router.post("/api/access/{test_id}/usage")
    async def record_usage(test_id: str, premium: bool = False, user: str = ""):
        try:
            return settings.record_usage(test_id, user_has_premium=premium, user_id=user)
        except RuntimeError as e:
            raise HTTPException(status_code=501, detail=str(e))
        except SyncError as e:
            status = 507 if e.kind is ErrorKind.QUOTA_EXCEEDED else 503
            raise HTTPException(status_code=status, detail=f"{e.kind.value}: {e.detail}")

    # -------------------------------------------------
    # Service
    # -------------------------------------------------

    @router.get("/health")
    async def health():
        return {"status": "healthy", "service": SERVICE_NAME}

    @router.get("/status")
    async def status():
        loads = {
            Collection.CATALOG.value: catalog.last_load.to_dict() if catalog.last_load else None,
            Collection.SETTINGS.value: settings.last_load.to_dict() if settings.last_load else None,
        }
        return {
            "service": SERVICE_NAME,
            "status": "running",
            "tests": len(catalog.tests),
            "loads": loads,
            "sync": {c.value: p.sync_status() for c, p in persisters.items()},
        }

    return router
