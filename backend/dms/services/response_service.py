from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import Request
from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import BusinessValidationError, ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from dms.db.base import utcnow
from dms.models.assessment import RapidAssessment
from dms.models.donor import DonorCommitment
from dms.models.entity import Entity
from dms.models.response import RapidResponse
from dms.models.user import User
from dms.schemas.common import VERIFIED_STATUSES
from dms.schemas.responses import DeliveryConfirm, ResponseFromCommitment, ResponseOut, ResponsePlanCreate, ResponseUpdate
from dms.services import audit_service, auto_approval, commitment_service, entity_assignment_service
from dms.services.assessment_service import active_entity

"""
Response Service.

Rôle (fonctionnel) :
- Planification d’une réponse sur une évaluation vérifiée (directe ou depuis un engagement).
- Mise à jour d’une réponse planifiée (intervenant auteur uniquement).
- Confirmation de livraison : consommation de l’engagement lié, audit, auto-approbation.

Règles :
- l’intervenant doit être affecté à l’entité (sauf coordinateur)
- l’évaluation appartient à l’entité et est VERIFIED / AUTO_VERIFIED
- une seule réponse PLANNED par évaluation
"""

log = logging.getLogger("dms.responses")


def serialize(r: RapidResponse) -> Dict[str, Any]:
    return ResponseOut.model_validate(r).model_dump(mode="json")


async def get_response(db: AsyncSession, response_id: uuid.UUID) -> RapidResponse:
    r = (await db.execute(select(RapidResponse).where(RapidResponse.id == response_id))).scalars().first()
    if not r:
        raise NotFoundError("Réponse introuvable")
    return r


async def get_by_offline_id(db: AsyncSession, offline_id: str) -> Optional[RapidResponse]:
    return (
        await db.execute(select(RapidResponse).where(RapidResponse.offline_id == offline_id))
    ).scalars().first()


async def _check_plannable(db: AsyncSession, user: User, entity_id: uuid.UUID, assessment_id: uuid.UUID) -> Entity:
    entity = await active_entity(db, entity_id)
    if not await entity_assignment_service.can_access_entity(db, user, entity.id):
        raise ForbiddenError("Vous n’êtes pas affecté à cette entité", details={"entity_id": str(entity.id)})

    a = (await db.execute(select(RapidAssessment).where(RapidAssessment.id == assessment_id))).scalars().first()
    if not a:
        raise NotFoundError("Évaluation introuvable")
    if a.entity_id != entity.id:
        raise BusinessValidationError("L’évaluation ne concerne pas cette entité")
    if a.verification_status not in VERIFIED_STATUSES:
        raise InvalidStateError(
            "L’évaluation doit être vérifiée avant de planifier une réponse",
            details={"verification_status": a.verification_status},
        )

    planned = (
        await db.execute(
            select(RapidResponse.id).where(
                RapidResponse.assessment_id == assessment_id,
                RapidResponse.status == "PLANNED",
            )
        )
    ).first()
    if planned:
        raise ConflictError("Une réponse est déjà planifiée pour cette évaluation", details={"response_id": str(planned[0])})
    return entity


async def plan_response(
    db: AsyncSession,
    user: User,
    payload: ResponsePlanCreate,
    *,
    sync_status: str = "SYNCED",
) -> RapidResponse:
    entity = await _check_plannable(db, user, payload.entity_id, payload.assessment_id)

    if payload.offline_id and await get_by_offline_id(db, payload.offline_id):
        raise ConflictError("offline_id déjà utilisé", details={"offline_id": payload.offline_id})

    r = RapidResponse(
        responder_id=user.id,
        entity_id=entity.id,
        assessment_id=payload.assessment_id,
        donor_id=payload.donor_id,
        type=payload.type.value,
        priority=payload.priority.value,
        status="PLANNED",
        description=payload.description,
        items=[i.model_dump(mode="json") for i in payload.items],
        planned_date=payload.planned_date,
        version_number=1,
        is_offline_created=payload.is_offline_created,
        offline_id=payload.offline_id,
        sync_status=sync_status,
        verification_status="DRAFT",
    )
    db.add(r)
    await db.flush()
    log.info("response_planned", extra={"actor": str(user.id), "resource_id": str(r.id), "entity_id": str(entity.id)})
    return r


async def plan_from_commitment(db: AsyncSession, user: User, payload: ResponseFromCommitment) -> RapidResponse:
    c = await commitment_service.get_commitment(db, payload.commitment_id)
    available = await commitment_service.available_for_responder(db, user, entity_id=c.entity_id)
    if c.id not in {x.id for x in available}:
        raise InvalidStateError("Engagement indisponible pour cet intervenant", details={"status": c.status})

    entity = await _check_plannable(db, user, c.entity_id, payload.assessment_id)

    if payload.items:
        items = [i.model_dump(mode="json") for i in payload.items]
        if sum(int(i["quantity"]) for i in items) > c.remaining_quantity:
            raise BusinessValidationError(
                "Quantité supérieure au reliquat de l’engagement",
                details={"remaining": c.remaining_quantity},
            )
    else:
        items = [dict(i) for i in c.items]

    r = RapidResponse(
        responder_id=user.id,
        entity_id=entity.id,
        assessment_id=payload.assessment_id,
        donor_id=c.donor_id,
        commitment_id=c.id,
        type=payload.type.value,
        priority=payload.priority.value,
        status="PLANNED",
        description=payload.description,
        items=items,
        planned_date=payload.planned_date,
        version_number=1,
        verification_status="DRAFT",
    )
    db.add(r)
    await db.flush()
    log.info(
        "response_planned",
        extra={"actor": str(user.id), "resource_id": str(r.id), "entity_id": str(entity.id), "resource": "commitment"},
    )
    return r


def _ensure_owner(r: RapidResponse, user: User) -> None:
    if r.responder_id != user.id:
        raise ForbiddenError("Seul l’intervenant auteur peut modifier cette réponse")


async def update_response(db: AsyncSession, user: User, r: RapidResponse, payload: ResponseUpdate) -> RapidResponse:
    _ensure_owner(r, user)
    if r.status != "PLANNED":
        raise InvalidStateError("Seules les réponses planifiées sont modifiables", details={"status": r.status})

    apply_changes(r, payload)
    r.version_number = (r.version_number or 1) + 1
    r.updated_at = utcnow()
    await db.flush()
    return r


def apply_changes(r: RapidResponse, payload: ResponseUpdate) -> None:
    """Applique les champs fournis (sans contrôle d’état ni de version)."""
    fields = payload.model_dump(exclude_unset=True)
    if payload.type is not None:
        r.type = payload.type.value
    if payload.priority is not None:
        r.priority = payload.priority.value
    if "description" in fields:
        r.description = payload.description
    if payload.items is not None:
        r.items = [i.model_dump(mode="json") for i in payload.items]
    if "planned_date" in fields:
        r.planned_date = payload.planned_date


async def delete_response(db: AsyncSession, user: User, r: RapidResponse) -> None:
    _ensure_owner(r, user)
    if r.status != "PLANNED":
        raise InvalidStateError("Seules les réponses planifiées peuvent être supprimées", details={"status": r.status})
    await db.delete(r)
    await db.flush()


def _quantity(items: List[Dict[str, Any]]) -> int:
    return sum(int(i.get("quantity") or 0) for i in items or [])


async def confirm_delivery(
    db: AsyncSession,
    user: User,
    r: RapidResponse,
    payload: DeliveryConfirm,
    *,
    request: Optional[Request] = None,
) -> Tuple[RapidResponse, bool]:
    """Confirme la livraison ; renvoie (réponse, auto_approuvée)."""
    _ensure_owner(r, user)
    if r.status != "PLANNED":
        raise InvalidStateError("Seules les réponses planifiées peuvent être livrées", details={"status": r.status})

    delivered = (
        [i.model_dump(mode="json") for i in payload.delivered_items]
        if payload.delivered_items is not None
        else [dict(i) for i in r.items]
    )

    old_status = r.status
    now = utcnow()
    r.status = "DELIVERED"
    r.delivered_items = delivered
    r.delivery_notes = payload.delivery_notes
    r.delivery_location = payload.delivery_location.model_dump() if payload.delivery_location else None
    r.response_date = payload.delivered_at or now
    if payload.media_attachments:
        r.media_attachments = list(r.media_attachments or []) + list(payload.media_attachments)
    r.verification_status = "SUBMITTED"
    r.version_number = (r.version_number or 1) + 1
    r.updated_at = now

    c: Optional[DonorCommitment] = None
    if r.commitment_id is not None:
        c = (
            await db.execute(select(DonorCommitment).where(DonorCommitment.id == r.commitment_id))
        ).scalars().first()
        if c is not None:
            qty = min(_quantity(delivered), c.remaining_quantity)
            if qty > 0:
                commitment_service.apply_usage(c, qty)

    entity = (await db.execute(select(Entity).where(Entity.id == r.entity_id))).scalars().first()
    auto = auto_approval.qualifies(
        entity,
        kind="responses",
        item_type=r.type,
        priority=r.priority,
        attachments=r.media_attachments or [],
    )
    if auto:
        r.verification_status = "AUTO_VERIFIED"
        r.verified_at = now
        r.verified_by = "system"
        if c is not None:
            commitment_service.add_verified(c, _quantity(delivered))

    audit_service.record(
        db,
        action="DELIVERY_CONFIRMED",
        resource="response",
        resource_id=r.id,
        user_id=user.id,
        old_values={"status": old_status},
        new_values={
            "status": r.status,
            "verification_status": r.verification_status,
            "delivered_quantity": _quantity(delivered),
        },
        request=request,
    )
    await db.flush()
    return r, auto


async def ensure_can_view(db: AsyncSession, user: User, r: RapidResponse) -> None:
    if user.has_role(*entity_assignment_service.UNRESTRICTED_ROLES) or r.responder_id == user.id:
        return
    if user.has_role("DONOR"):
        own = await commitment_service.donor_for_user(db, user.id)
        if own is not None and r.donor_id == own.id:
            return
    if await entity_assignment_service.is_assigned(db, user.id, r.entity_id):
        return
    raise ForbiddenError("Accès refusé à cette réponse")


async def list_responses(
    db: AsyncSession,
    user: User,
    *,
    status: Optional[str] = None,
    verification_status: Optional[str] = None,
    response_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    assessment_id: Optional[uuid.UUID] = None,
    donor_id: Optional[uuid.UUID] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[Sequence[RapidResponse], int]:
    conditions = []
    if not user.has_role(*entity_assignment_service.UNRESTRICTED_ROLES):
        visible = [RapidResponse.responder_id == user.id]
        entity_ids = await entity_assignment_service.assigned_entity_ids(db, user.id)
        if entity_ids:
            visible.append(RapidResponse.entity_id.in_(entity_ids))
        own = await commitment_service.donor_for_user(db, user.id)
        if own is not None:
            visible.append(RapidResponse.donor_id == own.id)
        conditions.append(or_(*visible))

    if status:
        conditions.append(RapidResponse.status == status)
    if verification_status:
        conditions.append(RapidResponse.verification_status == verification_status)
    if response_type:
        conditions.append(RapidResponse.type == response_type)
    if entity_id is not None:
        conditions.append(RapidResponse.entity_id == entity_id)
    if assessment_id is not None:
        conditions.append(RapidResponse.assessment_id == assessment_id)
    if donor_id is not None:
        conditions.append(RapidResponse.donor_id == donor_id)

    total = (await db.execute(select(func.count()).select_from(RapidResponse).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(RapidResponse)
            .where(*conditions)
            .order_by(desc(RapidResponse.created_at))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return rows, total
