from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CurrentUser, publish_event, require_roles
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.common import PageMeta, ResponseStatus, ResponseType, VerificationStatus
from dms.schemas.responses import (
    DeliveryConfirm,
    ResponseFromCommitment,
    ResponseListResponse,
    ResponseOut,
    ResponsePlanCreate,
    ResponseUpdate,
)
from dms.services import audit_service, response_service

"""
API Réponses (interventions).

Rôle (fonctionnel) :
- Planifier une réponse sur une évaluation vérifiée (intervenant affecté à l’entité),
  directement ou à partir d’un engagement donateur disponible.
- Modifier / supprimer tant que la réponse est planifiée (auteur uniquement).
- Confirmer la livraison : consommation de l’engagement lié, audit, auto-approbation.
- Listing filtré avec visibilité par rôle ; détail.

Temps réel :
- "deliveries" : livraison confirmée ; "verification" : livraison à vérifier ou auto-vérifiée ;
  "commitments" : engagement consommé.
"""

router = APIRouter(prefix="/responses", tags=["responses"])
log = logging.getLogger("dms.responses")

ResponderUser = Depends(require_roles("RESPONDER", "COORDINATOR"))


@router.post("", response_model=ResponseOut, status_code=201)
async def plan_response(
    payload: ResponsePlanCreate,
    request: Request,
    user: User = ResponderUser,
    db: AsyncSession = Depends(get_db),
):
    r = await response_service.plan_response(db, user, payload)
    audit_service.record(
        db,
        action="RESPONSE_PLANNED",
        resource="response",
        resource_id=r.id,
        user_id=user.id,
        new_values={"assessment_id": str(r.assessment_id), "entity_id": str(r.entity_id), "type": r.type},
        request=request,
    )
    await db.commit()
    await db.refresh(r)
    return r


@router.post("/from-commitment", response_model=ResponseOut, status_code=201)
async def plan_from_commitment(
    payload: ResponseFromCommitment,
    request: Request,
    user: User = ResponderUser,
    db: AsyncSession = Depends(get_db),
):
    r = await response_service.plan_from_commitment(db, user, payload)
    audit_service.record(
        db,
        action="RESPONSE_PLANNED",
        resource="response",
        resource_id=r.id,
        user_id=user.id,
        new_values={
            "assessment_id": str(r.assessment_id),
            "entity_id": str(r.entity_id),
            "commitment_id": str(r.commitment_id),
        },
        request=request,
    )
    await db.commit()
    await db.refresh(r)
    return r


@router.get("", response_model=ResponseListResponse)
async def list_responses(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    status: ResponseStatus | None = None,
    verification_status: VerificationStatus | None = None,
    type: ResponseType | None = None,
    entity_id: uuid.UUID | None = None,
    assessment_id: uuid.UUID | None = None,
    donor_id: uuid.UUID | None = None,
):
    rows, total = await response_service.list_responses(
        db,
        user,
        status=status.value if status else None,
        verification_status=verification_status.value if verification_status else None,
        response_type=type.value if type else None,
        entity_id=entity_id,
        assessment_id=assessment_id,
        donor_id=donor_id,
        page=page,
        page_size=page_size,
    )
    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}


@router.get("/{response_id}", response_model=ResponseOut)
async def get_response(response_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    r = await response_service.get_response(db, response_id)
    await response_service.ensure_can_view(db, user, r)
    return r


@router.patch("/{response_id}", response_model=ResponseOut)
async def update_response(
    response_id: uuid.UUID,
    payload: ResponseUpdate,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    r = await response_service.get_response(db, response_id)
    old_version = r.version_number
    await response_service.update_response(db, user, r, payload)

    audit_service.record(
        db,
        action="RESPONSE_UPDATED",
        resource="response",
        resource_id=r.id,
        user_id=user.id,
        old_values={"version_number": old_version},
        new_values={"version_number": r.version_number, "fields": sorted(payload.model_fields_set)},
        request=request,
    )
    await db.commit()
    await db.refresh(r)
    return r


@router.delete("/{response_id}", status_code=204)
async def delete_response(
    response_id: uuid.UUID,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    r = await response_service.get_response(db, response_id)
    await response_service.delete_response(db, user, r)
    audit_service.record(
        db,
        action="RESPONSE_DELETED",
        resource="response",
        resource_id=response_id,
        user_id=user.id,
        old_values={"assessment_id": str(r.assessment_id), "entity_id": str(r.entity_id)},
        request=request,
    )
    await db.commit()


@router.post("/{response_id}/deliver", response_model=ResponseOut)
async def confirm_delivery(
    response_id: uuid.UUID,
    payload: DeliveryConfirm,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    r = await response_service.get_response(db, response_id)
    r, auto = await response_service.confirm_delivery(db, user, r, payload, request=request)
    await db.commit()
    await db.refresh(r)

    log.info(
        "delivery_confirmed",
        extra={
            "actor": str(user.id),
            "resource_id": str(r.id),
            "entity_id": str(r.entity_id),
            "new_status": r.verification_status,
        },
    )

    event = {
        "response_id": str(r.id),
        "entity_id": str(r.entity_id),
        "commitment_id": str(r.commitment_id) if r.commitment_id else None,
        "verification_status": r.verification_status,
    }
    await publish_event(request, "deliveries", "DELIVERY_CONFIRMED", event)
    await publish_event(request, "verification", "DELIVERY_AUTO_VERIFIED" if auto else "DELIVERY_SUBMITTED", event)
    if r.commitment_id:
        await publish_event(request, "commitments", "COMMITMENT_USED", event)
    return r
