from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Tuple

from fastapi import Request
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.request_id import get_request_id
from dms.models.audit_log import AuditLog

"""
Audit Log Service.

Rôle (fonctionnel) :
- Ajoute une entrée d’audit à la session courante (le commit reste à la charge de l’appelant,
  l’audit partage donc la transaction de l’action auditée).
- Renseigne automatiquement le contexte HTTP (IP, user agent) et le request_id.
- Liste / filtre les entrées pour les coordinateurs.
"""

log = logging.getLogger("dms.audit")


def _client_context(request: Optional[Request]) -> Tuple[Optional[str], Optional[str]]:
    if request is None:
        return None, None
    ip = request.headers.get("x-forwarded-for", "").split(",")[0].strip() or (
        request.client.host if request.client else None
    )
    return ip or None, request.headers.get("user-agent")


def record(
    db: AsyncSession,
    *,
    action: str,
    resource: str,
    resource_id: Any = None,
    user_id: Optional[uuid.UUID] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    ip, user_agent = _client_context(request)
    rid = getattr(getattr(request, "state", None), "request_id", None) or get_request_id()

    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        old_values=old_values,
        new_values=new_values,
        ip_address=ip,
        user_agent=user_agent,
        request_id=rid,
    )
    db.add(entry)

    log.info(
        action.lower(),
        extra={
            "actor": str(user_id) if user_id else None,
            "resource": resource,
            "resource_id": entry.resource_id,
        },
    )
    return entry


async def list_logs(
    db: AsyncSession,
    *,
    user_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 50,
) -> Tuple[Sequence[AuditLog], int]:
    conditions = []
    if user_id is not None:
        conditions.append(AuditLog.user_id == user_id)
    if action:
        conditions.append(AuditLog.action == action)
    if resource:
        conditions.append(AuditLog.resource == resource)
    if resource_id:
        conditions.append(AuditLog.resource_id == resource_id)
    if since is not None:
        conditions.append(AuditLog.timestamp >= since)
    if until is not None:
        conditions.append(AuditLog.timestamp <= until)

    total = (await db.execute(select(func.count()).select_from(AuditLog).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(desc(AuditLog.timestamp))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return rows, total
