from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CurrentUser, publish_event, require_roles
from dms.core.errors import NotFoundError
from dms.db.session import get_db
from dms.models.assessment import PreliminaryAssessment
from dms.models.incident import Incident
from dms.models.user import User
from dms.schemas.assessments import PreliminaryAssessmentCreate, PreliminaryAssessmentOut
from dms.schemas.common import PageMeta
from dms.services import audit_service

"""
API Évaluations préliminaires.

Rôle (fonctionnel) :
- Premier rapport de terrain après un événement (LGA, quartier, bilan humain et matériel).
- Peut être rattaché à un incident existant, ou en créer un (create_incident=true).
- Consultation : liste paginée (filtre LGA / incident) et détail.
"""

router = APIRouter(prefix="/preliminary-assessments", tags=["assessments"])
log = logging.getLogger("dms.assessments")

ReporterUser = Depends(require_roles("ASSESSOR", "COORDINATOR"))


@router.post("", response_model=PreliminaryAssessmentOut, status_code=201)
async def create_preliminary(
    payload: PreliminaryAssessmentCreate,
    request: Request,
    user: User = ReporterUser,
    db: AsyncSession = Depends(get_db),
):
    incident_id = payload.incident_id
    created_incident = None

    if incident_id is not None:
        if not (await db.execute(select(Incident.id).where(Incident.id == incident_id))).first():
            raise NotFoundError("Incident introuvable")
    elif payload.create_incident:
        created_incident = Incident(
            type=payload.incident_type,
            severity=payload.incident_severity.value,
            status="ACTIVE",
            description=payload.additional_details,
            location=f"{payload.reporting_lga}, {payload.reporting_ward}",
            coordinates=(
                {"latitude": payload.reporting_latitude, "longitude": payload.reporting_longitude}
                if payload.reporting_latitude is not None and payload.reporting_longitude is not None
                else None
            ),
            created_by=user.id,
        )
        db.add(created_incident)
        await db.flush()
        incident_id = created_incident.id

    report = PreliminaryAssessment(
        **payload.model_dump(exclude={"incident_id", "create_incident", "incident_type", "incident_severity"}),
        incident_id=incident_id,
        created_by=user.id,
    )
    db.add(report)
    await db.flush()

    audit_service.record(
        db,
        action="PRELIMINARY_ASSESSMENT_CREATED",
        resource="preliminary_assessment",
        resource_id=report.id,
        user_id=user.id,
        new_values={
            "reporting_lga": report.reporting_lga,
            "incident_id": str(incident_id) if incident_id else None,
            "incident_created": created_incident is not None,
        },
        request=request,
    )
    await db.commit()
    await db.refresh(report)

    if created_incident is not None:
        await publish_event(
            request,
            "incidents",
            "INCIDENT_CREATED",
            {"incident_id": str(created_incident.id), "type": created_incident.type, "source": "preliminary_assessment"},
        )
    return report


@router.get("")
async def list_preliminary(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    lga: str | None = Query(None, max_length=120),
    incident_id: uuid.UUID | None = None,
):
    conditions = []
    if lga:
        conditions.append(PreliminaryAssessment.reporting_lga.ilike(lga))
    if incident_id is not None:
        conditions.append(PreliminaryAssessment.incident_id == incident_id)

    total = (await db.execute(select(func.count()).select_from(PreliminaryAssessment).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(PreliminaryAssessment)
            .where(*conditions)
            .order_by(desc(PreliminaryAssessment.reporting_date))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()

    return {
        "data": [PreliminaryAssessmentOut.model_validate(r) for r in rows],
        "meta": PageMeta(page=page, page_size=page_size, total=total),
    }


@router.get("/{report_id}", response_model=PreliminaryAssessmentOut)
async def get_preliminary(report_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    report = (
        await db.execute(select(PreliminaryAssessment).where(PreliminaryAssessment.id == report_id))
    ).scalars().first()
    if not report:
        raise NotFoundError("Évaluation préliminaire introuvable")
    return report
