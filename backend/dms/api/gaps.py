from __future__ import annotations

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser, CurrentUser
from dms.core.errors import NotFoundError
from dms.db.session import get_db
from dms.models.entity import Entity
from dms.models.user import User
from dms.schemas.common import AssessmentType, Priority
from dms.schemas.dashboard import DonorRecommendationsOut, EntityGapsOut, GapDashboardOut, GapFieldSeverityOut
from dms.schemas.gaps import GapAnalyzeOut, GapAnalyzeRequest, GapFieldSeverityBulkUpdate, GapFieldSeverityUpdate
from dms.services import audit_service, gap_service

"""
API Analyse d’écarts.

Rôle (fonctionnel) :
- Tableau de bord des écarts de ressources (entités x ressources, synthèse), filtrable
  par sévérité, entité, incident.
- Écarts d’une entité et recommandations de donateurs (score de compatibilité).
- Analyse à la volée de données d’évaluation.
- Administration des sévérités par champ d’écart (coordination).
"""

router = APIRouter(prefix="/gap-analysis", tags=["gap-analysis"])
log = logging.getLogger("dms.gaps")


async def _ensure_entity(db: AsyncSession, entity_id: uuid.UUID) -> None:
    if not (await db.execute(select(Entity.id).where(Entity.id == entity_id))).first():
        raise NotFoundError("Entité introuvable")


@router.get("/dashboard", response_model=GapDashboardOut)
async def gap_dashboard(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    severity: Priority | None = None,
    entity_id: uuid.UUID | None = None,
    incident_id: uuid.UUID | None = None,
):
    return await gap_service.gap_dashboard(
        db,
        severity=severity.value if severity else None,
        entity_id=entity_id,
        incident_id=incident_id,
    )


@router.get("/entities/{entity_id}", response_model=EntityGapsOut)
async def entity_gaps(entity_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    await _ensure_entity(db, entity_id)
    gaps = await gap_service.entity_resource_gaps(db, entity_id)
    return {"entity_id": str(entity_id), "gaps": [g.to_dict() for g in gaps]}


@router.get("/entities/{entity_id}/donor-recommendations", response_model=DonorRecommendationsOut)
async def donor_recommendations(
    entity_id: uuid.UUID,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    limit: int = Query(10, ge=1, le=50),
):
    await _ensure_entity(db, entity_id)
    return await gap_service.donor_recommendations(db, entity_id, limit=limit)


@router.post("/analyze", response_model=GapAnalyzeOut)
async def analyze(payload: GapAnalyzeRequest, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    result = await gap_service.analyze_assessment(db, payload.assessment_type.value, payload.data)
    return result.to_dict()


@router.get("/field-severities", response_model=List[GapFieldSeverityOut])
async def list_field_severities(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    assessment_type: AssessmentType | None = None,
):
    return await gap_service.list_field_severities(db, assessment_type.value if assessment_type else None)


@router.put("/field-severities", response_model=GapFieldSeverityOut)
async def set_field_severity(
    payload: GapFieldSeverityUpdate,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    await _apply(db, user, payload, request)
    await db.commit()
    return await _effective(db, payload.assessment_type.value, payload.field_name)


@router.put("/field-severities/bulk", response_model=List[GapFieldSeverityOut])
async def bulk_field_severities(
    payload: GapFieldSeverityBulkUpdate,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    for update in payload.updates:
        await _apply(db, user, update, request)
    await db.commit()

    touched = {(u.assessment_type.value, u.field_name) for u in payload.updates}
    rows = []
    for atype in sorted({t for t, _ in touched}):
        rows.extend(r for r in await gap_service.list_field_severities(db, atype) if (atype, r["field_name"]) in touched)
    return rows


async def _apply(db: AsyncSession, user: User, payload: GapFieldSeverityUpdate, request: Request) -> None:
    row = await gap_service.set_field_severity(
        db,
        assessment_type=payload.assessment_type.value,
        field_name=payload.field_name,
        severity=payload.severity.value,
        user_id=user.id,
        display_name=payload.display_name,
    )
    audit_service.record(
        db,
        action="GAP_FIELD_SEVERITY_UPDATED",
        resource="gap_field_severity",
        resource_id=row.id,
        user_id=user.id,
        new_values={
            "assessment_type": row.assessment_type,
            "field_name": row.field_name,
            "severity": row.severity,
        },
        request=request,
    )


async def _effective(db: AsyncSession, assessment_type: str, field_name: str):
    rows = await gap_service.list_field_severities(db, assessment_type)
    return next(r for r in rows if r["field_name"] == field_name)
