from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.settings import settings
from dms.db.session import get_db
from dms.models.assessment import RapidAssessment
from dms.models.audit_log import AuditLog
from dms.models.incident import Incident
from dms.models.response import RapidResponse
from dms.models.sync_conflict import SyncConflict

"""
API System Status.

Rôle (fonctionnel) :
- Expose un endpoint de statut “healthcheck” pour la plateforme.
- Vérifie la disponibilité de la base (requête simple).
- Quelques volumes utiles à l’exploitation (incidents actifs, évaluations, réponses,
  conflits non résolus) et la fraîcheur de la synchro terrain (dernier lot reçu).
"""

router = APIRouter(prefix="/system", tags=["system"])


async def _scalar(db: AsyncSession, stmt):
    return (await db.execute(stmt)).scalar()


@router.get("/status")
async def system_status(request: Request, db: AsyncSession = Depends(get_db)):
    # 1) DB check (requête minimale)
    db_ok = True
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db_ok = False

    # 2) Volumes + dernière synchro
    counts = None
    last_sync = None
    if db_ok:
        counts = {
            "active_incidents": await _scalar(
                db, select(func.count()).select_from(Incident).where(Incident.status == "ACTIVE")
            ),
            "assessments": await _scalar(db, select(func.count()).select_from(RapidAssessment)),
            "responses": await _scalar(db, select(func.count()).select_from(RapidResponse)),
            "unresolved_conflicts": await _scalar(
                db, select(func.count()).select_from(SyncConflict).where(SyncConflict.is_resolved.is_(False))
            ),
        }
        last = await _scalar(db, select(func.max(AuditLog.timestamp)).where(AuditLog.action == "SYNC_BATCH"))
        last_sync = last.isoformat() if last else None

    manager = getattr(request.app.state, "ws_manager", None)

    # Réponse (format constant) pour monitoring / UI
    return {
        "ok": db_ok,
        "db": {"ok": db_ok},
        "env": settings.ENV,
        "counts": counts,
        "last_sync": last_sync,
        "ws_connections": manager.count() if manager is not None else 0,
        "ts": datetime.now(timezone.utc).isoformat(),
    }
