from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Sequence, Tuple

from fastapi import Request
from sqlalchemy import case, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import InvalidStateError
from dms.db.base import utcnow
from dms.models.assessment import RapidAssessment
from dms.models.donor import DonorCommitment
from dms.models.response import RapidResponse
from dms.models.user import User
from dms.schemas.common import PRIORITY_RANK
from dms.services import audit_service, commitment_service
from dms.services.assessment_service import priority_order

"""
Verification Service.

Rôle (fonctionnel) :
- Files de vérification : évaluations soumises et livraisons confirmées (priorité puis date).
- Décisions coordinateur : approbation / rejet d’une évaluation ou d’une livraison.
- Indicateurs : volumes par statut, taux d’approbation.

Règles :
- seuls les éléments SUBMITTED sont décidables (409 INVALID_STATE sinon)
- un rejet renvoie l’évaluation en DRAFT (motif + commentaire) pour correction
- une livraison approuvée alimente la quantité vérifiée de l’engagement lié
- chaque décision est auditée (l’appelant commit et diffuse l’événement)
"""

log = logging.getLogger("dms.verification")


def _ensure_submitted(status: str) -> None:
    if status != "SUBMITTED":
        raise InvalidStateError("Seuls les éléments soumis peuvent être vérifiés", details={"verification_status": status})


async def assessment_queue(
    db: AsyncSession,
    *,
    assessment_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    priority: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[Sequence[RapidAssessment], int]:
    conditions = [RapidAssessment.verification_status == "SUBMITTED"]
    if assessment_type:
        conditions.append(RapidAssessment.assessment_type == assessment_type)
    if entity_id is not None:
        conditions.append(RapidAssessment.entity_id == entity_id)
    if priority:
        conditions.append(RapidAssessment.priority == priority)

    total = (await db.execute(select(func.count()).select_from(RapidAssessment).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(RapidAssessment)
            .where(*conditions)
            .order_by(*priority_order())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return rows, total


async def delivery_queue(
    db: AsyncSession,
    *,
    response_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    priority: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[Sequence[RapidResponse], int]:
    conditions = [RapidResponse.status == "DELIVERED", RapidResponse.verification_status == "SUBMITTED"]
    if response_type:
        conditions.append(RapidResponse.type == response_type)
    if entity_id is not None:
        conditions.append(RapidResponse.entity_id == entity_id)
    if priority:
        conditions.append(RapidResponse.priority == priority)

    total = (await db.execute(select(func.count()).select_from(RapidResponse).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(RapidResponse)
            .where(*conditions)
            .order_by(desc(case(PRIORITY_RANK, value=RapidResponse.priority, else_=0)), RapidResponse.response_date)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return rows, total


async def verify_assessment(
    db: AsyncSession,
    user: User,
    a: RapidAssessment,
    *,
    notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> RapidAssessment:
    _ensure_submitted(a.verification_status)

    old = a.verification_status
    a.verification_status = "VERIFIED"
    a.status = "VERIFIED"
    a.verified_at = utcnow()
    a.verified_by = str(user.id)
    a.rejection_reason = None
    a.rejection_feedback = None

    audit_service.record(
        db,
        action="ASSESSMENT_VERIFIED",
        resource="assessment",
        resource_id=a.id,
        user_id=user.id,
        old_values={"verification_status": old},
        new_values={"verification_status": a.verification_status, "notes": notes},
        request=request,
    )
    await db.flush()
    log.info(
        "assessment_verified",
        extra={"actor": str(user.id), "resource_id": str(a.id), "old_status": old, "new_status": a.verification_status},
    )
    return a


async def reject_assessment(
    db: AsyncSession,
    user: User,
    a: RapidAssessment,
    *,
    reason: str,
    feedback: str,
    request: Optional[Request] = None,
) -> RapidAssessment:
    _ensure_submitted(a.verification_status)

    old = a.verification_status
    a.verification_status = "REJECTED"
    a.status = "DRAFT"
    a.rejection_reason = reason
    a.rejection_feedback = feedback
    a.verified_at = None
    a.verified_by = str(user.id)

    audit_service.record(
        db,
        action="ASSESSMENT_REJECTED",
        resource="assessment",
        resource_id=a.id,
        user_id=user.id,
        old_values={"verification_status": old},
        new_values={"verification_status": a.verification_status, "reason": reason, "feedback": feedback},
        request=request,
    )
    await db.flush()
    log.info(
        "assessment_rejected",
        extra={"actor": str(user.id), "resource_id": str(a.id), "old_status": old, "new_status": a.verification_status},
    )
    return a


async def _linked_commitment(db: AsyncSession, r: RapidResponse) -> Optional[DonorCommitment]:
    if r.commitment_id is None:
        return None
    return (await db.execute(select(DonorCommitment).where(DonorCommitment.id == r.commitment_id))).scalars().first()


async def verify_delivery(
    db: AsyncSession,
    user: User,
    r: RapidResponse,
    *,
    notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> RapidResponse:
    _ensure_submitted(r.verification_status)
    if r.status != "DELIVERED":
        raise InvalidStateError("La réponse n’est pas livrée", details={"status": r.status})

    old = r.verification_status
    r.verification_status = "VERIFIED"
    r.verified_at = utcnow()
    r.verified_by = str(user.id)

    c = await _linked_commitment(db, r)
    if c is not None:
        commitment_service.add_verified(c, sum(int(i.get("quantity") or 0) for i in r.delivered_items or r.items))

    audit_service.record(
        db,
        action="DELIVERY_VERIFIED",
        resource="response",
        resource_id=r.id,
        user_id=user.id,
        old_values={"verification_status": old},
        new_values={"verification_status": r.verification_status, "notes": notes},
        request=request,
    )
    await db.flush()
    log.info(
        "delivery_verified",
        extra={"actor": str(user.id), "resource_id": str(r.id), "old_status": old, "new_status": r.verification_status},
    )
    return r


async def reject_delivery(
    db: AsyncSession,
    user: User,
    r: RapidResponse,
    *,
    reason: str,
    feedback: str,
    request: Optional[Request] = None,
) -> RapidResponse:
    _ensure_submitted(r.verification_status)

    old = r.verification_status
    r.verification_status = "REJECTED"
    r.rejection_reason = reason
    r.rejection_feedback = feedback
    r.verified_by = str(user.id)

    audit_service.record(
        db,
        action="DELIVERY_REJECTED",
        resource="response",
        resource_id=r.id,
        user_id=user.id,
        old_values={"verification_status": old},
        new_values={"verification_status": r.verification_status, "reason": reason, "feedback": feedback},
        request=request,
    )
    await db.flush()
    log.info(
        "delivery_rejected",
        extra={"actor": str(user.id), "resource_id": str(r.id), "old_status": old, "new_status": r.verification_status},
    )
    return r


def _rates(counts: Dict[str, int]) -> Dict[str, Any]:
    verified = counts.get("VERIFIED", 0)
    auto = counts.get("AUTO_VERIFIED", 0)
    rejected = counts.get("REJECTED", 0)
    decided = verified + auto + rejected
    return {
        "by_status": counts,
        "pending": counts.get("SUBMITTED", 0),
        "approval_rate": round((verified + auto) / decided * 100.0, 2) if decided else 0.0,
        "auto_approval_rate": round(auto / decided * 100.0, 2) if decided else 0.0,
        "rejection_rate": round(rejected / decided * 100.0, 2) if decided else 0.0,
    }


async def verification_metrics(db: AsyncSession) -> Dict[str, Any]:
    a_counts = {
        status: n
        for status, n in (
            await db.execute(
                select(RapidAssessment.verification_status, func.count()).group_by(RapidAssessment.verification_status)
            )
        ).all()
    }
    r_counts = {
        status: n
        for status, n in (
            await db.execute(
                select(RapidResponse.verification_status, func.count())
                .where(RapidResponse.status == "DELIVERED")
                .group_by(RapidResponse.verification_status)
            )
        ).all()
    }
    return {"assessments": _rates(a_counts), "deliveries": _rates(r_counts)}
