from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CurrentUser, publish_event, require_roles
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.assessments import AssessmentCreate, AssessmentListResponse, AssessmentOut, AssessmentUpdate
from dms.schemas.common import AssessmentStatus, AssessmentType, PageMeta, Priority, VerificationStatus
from dms.services import assessment_service, audit_service

"""
API Évaluations rapides.

Rôle (fonctionnel) :
- Création (évaluateur affecté à l’entité), mise à jour et suppression par l’auteur.
- Soumission pour vérification, avec auto-approbation éventuelle selon la configuration
  de l’entité.
- Listing filtré (type, statut, vérification, entité, incident, priorité) avec visibilité
  par rôle ; détail avec l’analyse d’écarts.

Notes :
- Une soumission est poussée sur le topic WS "verification" (nouvel élément dans la file,
  ou décision automatique).
"""

router = APIRouter(prefix="/assessments", tags=["assessments"])
log = logging.getLogger("dms.assessments")

AssessorUser = Depends(require_roles("ASSESSOR", "COORDINATOR"))


@router.post("", response_model=AssessmentOut, status_code=201)
async def create_assessment(
    payload: AssessmentCreate,
    request: Request,
    user: User = AssessorUser,
    db: AsyncSession = Depends(get_db),
):
    a = await assessment_service.create_assessment(db, user, payload)
    audit_service.record(
        db,
        action="ASSESSMENT_CREATED",
        resource="assessment",
        resource_id=a.id,
        user_id=user.id,
        new_values={"assessment_type": a.assessment_type, "entity_id": str(a.entity_id), "priority": a.priority},
        request=request,
    )
    await db.commit()
    await db.refresh(a)
    return a


@router.get("", response_model=AssessmentListResponse)
async def list_assessments(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    assessment_type: AssessmentType | None = None,
    status: AssessmentStatus | None = None,
    verification_status: VerificationStatus | None = None,
    entity_id: uuid.UUID | None = None,
    incident_id: uuid.UUID | None = None,
    priority: Priority | None = None,
):
    rows, total = await assessment_service.list_assessments(
        db,
        user,
        assessment_type=assessment_type.value if assessment_type else None,
        status=status.value if status else None,
        verification_status=verification_status.value if verification_status else None,
        entity_id=entity_id,
        incident_id=incident_id,
        priority=priority.value if priority else None,
        page=page,
        page_size=page_size,
    )
    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}


@router.get("/{assessment_id}", response_model=AssessmentOut)
async def get_assessment(assessment_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    a = await assessment_service.get_assessment(db, assessment_id)
    await assessment_service.ensure_can_view(db, user, a)
    return a


@router.patch("/{assessment_id}", response_model=AssessmentOut)
async def update_assessment(
    assessment_id: uuid.UUID,
    payload: AssessmentUpdate,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    a = await assessment_service.get_assessment(db, assessment_id)
    old_version = a.version_number
    await assessment_service.update_assessment(db, user, a, payload)

    audit_service.record(
        db,
        action="ASSESSMENT_UPDATED",
        resource="assessment",
        resource_id=a.id,
        user_id=user.id,
        old_values={"version_number": old_version},
        new_values={"version_number": a.version_number, "fields": sorted(payload.model_fields_set)},
        request=request,
    )
    await db.commit()
    await db.refresh(a)
    return a


@router.delete("/{assessment_id}", status_code=204)
async def delete_assessment(
    assessment_id: uuid.UUID,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    a = await assessment_service.get_assessment(db, assessment_id)
    await assessment_service.delete_assessment(db, user, a)
    audit_service.record(
        db,
        action="ASSESSMENT_DELETED",
        resource="assessment",
        resource_id=assessment_id,
        user_id=user.id,
        old_values={"assessment_type": a.assessment_type, "entity_id": str(a.entity_id)},
        request=request,
    )
    await db.commit()


@router.post("/{assessment_id}/submit", response_model=AssessmentOut)
async def submit_assessment(
    assessment_id: uuid.UUID,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    a = await assessment_service.get_assessment(db, assessment_id)
    a, auto = await assessment_service.submit_assessment(db, user, a)

    audit_service.record(
        db,
        action="ASSESSMENT_AUTO_VERIFIED" if auto else "ASSESSMENT_SUBMITTED",
        resource="assessment",
        resource_id=a.id,
        user_id=user.id,
        old_values={"status": "DRAFT"},
        new_values={"status": a.status, "verification_status": a.verification_status},
        request=request,
    )
    await db.commit()
    await db.refresh(a)

    await publish_event(
        request,
        "verification",
        "ASSESSMENT_AUTO_VERIFIED" if auto else "ASSESSMENT_SUBMITTED",
        {
            "assessment_id": str(a.id),
            "entity_id": str(a.entity_id),
            "assessment_type": a.assessment_type,
            "priority": a.priority,
            "verification_status": a.verification_status,
        },
    )
    return a
