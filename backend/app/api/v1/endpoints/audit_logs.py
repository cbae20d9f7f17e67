from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from backend.app.api.deps import get_store
from backend.app.db.store import DocumentStore
from backend.services.audit import list_audit_logs

router = APIRouter(prefix="/audit-logs")


@router.get("")
async def list_audit_logs_endpoint(
    resource_id: str | None = None,
    action_type: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: DocumentStore = Depends(get_store),
):
    """Entrées d'audit, plus récentes d'abord."""
    return await list_audit_logs(
        store,
        resource_id=resource_id,
        action_type=action_type,
        limit=limit,
        offset=offset,
    )
