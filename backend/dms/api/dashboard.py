from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CurrentUser
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.dashboard import IncidentSummaryOut, SituationOverviewOut
from dms.services.dashboard_service import get_incident_summary, get_situation_overview

"""
API Dashboard (situation).

Rôle (fonctionnel) :
- Vue situation de la coordination : KPI, incidents par statut / sévérité, entités touchées.
- Synthèse d’un incident : entités, dernières évaluations vérifiées, population, engagements.
"""

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/situation", response_model=SituationOverviewOut)
async def situation_overview(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=500),
):
    return await get_situation_overview(db, limit=limit)


@router.get("/incidents/{incident_id}", response_model=IncidentSummaryOut)
async def incident_summary(incident_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    return await get_incident_summary(db, incident_id)
