from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser, publish_event
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.assessments import AssessmentListResponse, AssessmentOut
from dms.schemas.common import AssessmentType, PageMeta, Priority, ResponseType
from dms.schemas.responses import ResponseListResponse, ResponseOut
from dms.schemas.verification import RejectPayload, VerifyPayload
from dms.services import assessment_service, response_service, verification_service

"""
API Vérification (coordination).

Rôle (fonctionnel) :
- Files des évaluations soumises et des livraisons à vérifier (priorité puis date).
- Décisions : approbation / rejet, auditées par le service, commit ici, puis diffusion
  sur le topic WS "verification" (et "commitments" quand un engagement est impacté).
- Indicateurs de vérification (volumes par statut, taux d’approbation).
"""

router = APIRouter(prefix="/verification", tags=["verification"])
log = logging.getLogger("dms.verification")


@router.get("/assessments", response_model=AssessmentListResponse)
async def assessment_queue(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    assessment_type: AssessmentType | None = None,
    entity_id: uuid.UUID | None = None,
    priority: Priority | None = None,
):
    rows, total = await verification_service.assessment_queue(
        db,
        assessment_type=assessment_type.value if assessment_type else None,
        entity_id=entity_id,
        priority=priority.value if priority else None,
        page=page,
        page_size=page_size,
    )
    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}


@router.get("/deliveries", response_model=ResponseListResponse)
async def delivery_queue(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    type: ResponseType | None = None,
    entity_id: uuid.UUID | None = None,
    priority: Priority | None = None,
):
    rows, total = await verification_service.delivery_queue(
        db,
        response_type=type.value if type else None,
        entity_id=entity_id,
        priority=priority.value if priority else None,
        page=page,
        page_size=page_size,
    )
    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}


@router.get("/metrics")
async def verification_metrics(user: User = CoordinatorUser, db: AsyncSession = Depends(get_db)):
    return await verification_service.verification_metrics(db)


@router.post("/assessments/{assessment_id}/verify", response_model=AssessmentOut)
async def verify_assessment(
    assessment_id: uuid.UUID,
    request: Request,
    payload: VerifyPayload | None = None,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    a = await assessment_service.get_assessment(db, assessment_id)
    await verification_service.verify_assessment(db, user, a, notes=payload.notes if payload else None, request=request)
    await db.commit()
    await db.refresh(a)

    await publish_event(
        request,
        "verification",
        "ASSESSMENT_VERIFIED",
        {"assessment_id": str(a.id), "entity_id": str(a.entity_id), "assessor_id": str(a.assessor_id)},
    )
    return a


@router.post("/assessments/{assessment_id}/reject", response_model=AssessmentOut)
async def reject_assessment(
    assessment_id: uuid.UUID,
    payload: RejectPayload,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    a = await assessment_service.get_assessment(db, assessment_id)
    await verification_service.reject_assessment(
        db, user, a, reason=payload.reason, feedback=payload.feedback, request=request
    )
    await db.commit()
    await db.refresh(a)

    await publish_event(
        request,
        "verification",
        "ASSESSMENT_REJECTED",
        {
            "assessment_id": str(a.id),
            "entity_id": str(a.entity_id),
            "assessor_id": str(a.assessor_id),
            "reason": payload.reason,
        },
    )
    return a


@router.post("/deliveries/{response_id}/verify", response_model=ResponseOut)
async def verify_delivery(
    response_id: uuid.UUID,
    request: Request,
    payload: VerifyPayload | None = None,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    r = await response_service.get_response(db, response_id)
    await verification_service.verify_delivery(db, user, r, notes=payload.notes if payload else None, request=request)
    await db.commit()
    await db.refresh(r)

    event = {
        "response_id": str(r.id),
        "entity_id": str(r.entity_id),
        "responder_id": str(r.responder_id),
        "commitment_id": str(r.commitment_id) if r.commitment_id else None,
    }
    await publish_event(request, "verification", "DELIVERY_VERIFIED", event)
    if r.commitment_id:
        await publish_event(request, "commitments", "COMMITMENT_VERIFIED", event)
    return r


@router.post("/deliveries/{response_id}/reject", response_model=ResponseOut)
async def reject_delivery(
    response_id: uuid.UUID,
    payload: RejectPayload,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    r = await response_service.get_response(db, response_id)
    await verification_service.reject_delivery(db, user, r, reason=payload.reason, feedback=payload.feedback, request=request)
    await db.commit()
    await db.refresh(r)

    await publish_event(
        request,
        "verification",
        "DELIVERY_REJECTED",
        {
            "response_id": str(r.id),
            "entity_id": str(r.entity_id),
            "responder_id": str(r.responder_id),
            "reason": payload.reason,
        },
    )
    return r
