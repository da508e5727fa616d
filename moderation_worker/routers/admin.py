from typing import Optional

from fastapi import APIRouter, Depends

from moderation_worker.clients.storage_client import StorageClient
from moderation_worker.core.dependencies import get_object_store
from moderation_worker.db.session import SessionFactory, get_session_factory
from moderation_worker.schemas.outcomes import ReconciliationReport
from moderation_worker.services.reconciliation_service import ReconciliationService

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/reconcile", response_model=ReconciliationReport, status_code=200)
def reconcile_references(
    bucket: Optional[str] = None,
    store: StorageClient = Depends(get_object_store),
    session_factory: SessionFactory = Depends(get_session_factory)
):
    """Settle sale and profile references still pointing at pending paths."""
    db = session_factory()
    try:
        return ReconciliationService(store, db).reconcile(bucket)
    finally:
        db.close()
