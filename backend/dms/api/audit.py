from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.audit import AuditLogListResponse
from dms.schemas.common import PageMeta
from dms.services import audit_service

"""
API Audit.

Rôle (fonctionnel) :
- Consultation du journal d’audit (coordination / administration), filtres par utilisateur,
  action, ressource et période.
"""

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    user_id: uuid.UUID | None = None,
    action: str | None = Query(None, max_length=60),
    resource: str | None = Query(None, max_length=60),
    resource_id: str | None = Query(None, max_length=64),
    since: datetime | None = None,
    until: datetime | None = None,
):
    rows, total = await audit_service.list_logs(
        db,
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        since=since,
        until=until,
        page=page,
        page_size=page_size,
    )
    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}
