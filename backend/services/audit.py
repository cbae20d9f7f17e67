from __future__ import annotations

import json
import logging
from typing import Any

from backend.app.db.models.core_types import AUDIT_LOGS, AuditStatus
from backend.app.db.models.models_v1 import utcnow
from backend.app.db.store import DocumentStore, Where

logger = logging.getLogger(__name__)


async def record_audit(
    store: DocumentStore,
    *,
    user_id: str,
    action_type: str,
    resource_type: str,
    resource_id: str | None,
    details: dict[str, Any],
    status: AuditStatus = AuditStatus.success,
    error_message: str | None = None,
    user_email: str | None = None,
    session_id: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """
    Une entrée d'audit par opération, en best-effort.

    Un échec d'écriture est journalisé puis ignoré : il ne fait jamais
    échouer (ni annuler) l'opération auditée.
    """
    try:
        await store.create_row(
            AUDIT_LOGS,
            {
                "user_id": user_id,
                "user_email": user_email,
                "action_type": action_type,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "action_details": json.dumps(details, default=str),
                "status": AuditStatus(status).value,
                "error_message": error_message,
                "user_agent": user_agent,
                "session_id": session_id,
                "timestamp": utcnow(),
            },
        )
    except Exception:
        logger.exception("Failed to create audit log (%s, resource %s)", action_type, resource_id)
        return False

    logger.debug("Created audit log entry %s for %s", action_type, resource_id)
    return True


async def list_audit_logs(
    store: DocumentStore,
    *,
    resource_id: str | None = None,
    action_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    where = []
    if resource_id is not None:
        where.append(Where("resource_id", resource_id))
    if action_type is not None:
        where.append(Where("action_type", action_type))

    result = await store.list_rows(
        AUDIT_LOGS,
        where,
        order_by="timestamp",
        descending=True,
        limit=limit,
        offset=offset,
    )
    rows = []
    for row in result.rows:
        row = dict(row)
        if row.get("action_details"):
            row["action_details"] = json.loads(row["action_details"])
        rows.append(row)
    return rows
