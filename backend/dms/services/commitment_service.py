from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import BusinessValidationError, ForbiddenError, InvalidStateError, NotFoundError
from dms.db.base import utcnow
from dms.models.donor import Donor, DonorCommitment
from dms.models.user import User
from dms.schemas.common import OPEN_COMMITMENT_STATUSES, ItemLine
from dms.schemas.donors import CommitmentCreate, CommitmentUpdate
from dms.services import entity_assignment_service, gap_analysis
from dms.services.assessment_service import active_entity, ensure_incident

"""
Commitment Service.

Rôle (fonctionnel) :
- Engagements des donateurs : création, mise à jour, annulation, consommation (livraison).
- Statistiques (par statut, quantités, taux d’utilisation).
- Engagements disponibles pour un intervenant (entités affectées, reliquat > 0).

Transitions :
- PLANNED -> PARTIAL (livré > 0) -> COMPLETE (livré >= total)
- PLANNED / PARTIAL -> CANCELLED
"""

log = logging.getLogger("dms.commitments")


def items_totals(items: Sequence[ItemLine]) -> Tuple[List[Dict[str, Any]], int, float]:
    """(items JSON, quantité totale, valeur estimée) ; valeur unitaire par défaut selon la ressource."""
    rows: List[Dict[str, Any]] = []
    quantity = 0
    value = 0.0
    for item in items:
        unit_value = item.value_per_unit if item.value_per_unit is not None else gap_analysis.value_per_unit(item.name)
        rows.append(item.model_dump(mode="json"))
        quantity += int(item.quantity)
        value += item.quantity * unit_value
    return rows, quantity, round(value, 2)


async def get_commitment(db: AsyncSession, commitment_id: uuid.UUID) -> DonorCommitment:
    c = (await db.execute(select(DonorCommitment).where(DonorCommitment.id == commitment_id))).scalars().first()
    if not c:
        raise NotFoundError("Engagement introuvable")
    return c


async def donor_for_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[Donor]:
    return (await db.execute(select(Donor).where(Donor.user_id == user_id))).scalars().first()


async def ensure_can_manage(db: AsyncSession, user: User, donor_id: uuid.UUID) -> None:
    """Coordinateur, ou compte DONOR propriétaire du profil."""
    if user.has_role("COORDINATOR"):
        return
    own = await donor_for_user(db, user.id)
    if own is None or own.id != donor_id:
        raise ForbiddenError("Engagement d’un autre donateur")


async def create_commitment(db: AsyncSession, user: User, payload: CommitmentCreate) -> DonorCommitment:
    donor_id = payload.donor_id
    if donor_id is None:
        own = await donor_for_user(db, user.id)
        if own is None:
            raise BusinessValidationError("donor_id requis (aucun profil donateur associé au compte)")
        donor_id = own.id
    await ensure_can_manage(db, user, donor_id)

    donor = (await db.execute(select(Donor).where(Donor.id == donor_id))).scalars().first()
    if not donor:
        raise NotFoundError("Donateur introuvable")
    if not donor.is_active:
        raise InvalidStateError("Donateur inactif", details={"donor_id": str(donor_id)})

    entity = await active_entity(db, payload.entity_id)
    await ensure_incident(db, payload.incident_id)

    items, quantity, value = items_totals(payload.items)
    c = DonorCommitment(
        donor_id=donor.id,
        entity_id=entity.id,
        incident_id=payload.incident_id,
        status="PLANNED",
        items=items,
        total_committed_quantity=quantity,
        delivered_quantity=0,
        verified_delivered_quantity=0,
        total_value_estimated=value,
        notes=payload.notes,
    )
    db.add(c)
    await db.flush()

    log.info(
        "commitment_created",
        extra={"actor": str(user.id), "resource_id": str(c.id), "entity_id": str(entity.id), "new_status": c.status},
    )
    return c


async def update_commitment(db: AsyncSession, user: User, c: DonorCommitment, payload: CommitmentUpdate) -> DonorCommitment:
    await ensure_can_manage(db, user, c.donor_id)
    if c.status != "PLANNED":
        raise InvalidStateError("Seuls les engagements PLANNED sont modifiables", details={"status": c.status})

    if payload.items is not None:
        c.items, c.total_committed_quantity, c.total_value_estimated = items_totals(payload.items)
    if payload.notes is not None:
        c.notes = payload.notes
    c.last_updated = utcnow()
    await db.flush()
    return c


async def cancel_commitment(db: AsyncSession, user: User, c: DonorCommitment) -> DonorCommitment:
    await ensure_can_manage(db, user, c.donor_id)
    if c.status not in OPEN_COMMITMENT_STATUSES:
        raise InvalidStateError("Engagement non annulable dans cet état", details={"status": c.status})
    old = c.status
    c.status = "CANCELLED"
    c.last_updated = utcnow()
    await db.flush()
    log.info("commitment_cancelled", extra={"actor": str(user.id), "resource_id": str(c.id), "old_status": old, "new_status": c.status})
    return c


def apply_usage(c: DonorCommitment, quantity: int) -> str:
    """Consomme `quantity` sur l’engagement ; renvoie l’ancien statut."""
    if c.status not in OPEN_COMMITMENT_STATUSES:
        raise InvalidStateError("Engagement non utilisable dans cet état", details={"status": c.status})
    if quantity <= 0:
        raise BusinessValidationError("La quantité doit être positive")
    if quantity > c.remaining_quantity:
        raise BusinessValidationError(
            "Quantité supérieure au reliquat de l’engagement",
            details={"requested": quantity, "remaining": c.remaining_quantity},
        )

    old = c.status
    c.delivered_quantity = int(c.delivered_quantity or 0) + int(quantity)
    if c.delivered_quantity >= c.total_committed_quantity:
        c.status = "COMPLETE"
    elif c.delivered_quantity > 0:
        c.status = "PARTIAL"
    c.last_updated = utcnow()
    return old


def add_verified(c: DonorCommitment, quantity: int) -> None:
    c.verified_delivered_quantity = min(
        int(c.total_committed_quantity or 0),
        int(c.verified_delivered_quantity or 0) + int(quantity),
    )
    c.last_updated = utcnow()


async def list_commitments(
    db: AsyncSession,
    user: User,
    *,
    donor_id: Optional[uuid.UUID] = None,
    entity_id: Optional[uuid.UUID] = None,
    incident_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[Sequence[DonorCommitment], int]:
    conditions = []
    if not user.has_role("COORDINATOR", "RESPONDER"):
        # Compte DONOR : ses engagements uniquement
        own = await donor_for_user(db, user.id)
        conditions.append(DonorCommitment.donor_id == (own.id if own else None))
    if donor_id is not None:
        conditions.append(DonorCommitment.donor_id == donor_id)
    if entity_id is not None:
        conditions.append(DonorCommitment.entity_id == entity_id)
    if incident_id is not None:
        conditions.append(DonorCommitment.incident_id == incident_id)
    if status:
        conditions.append(DonorCommitment.status == status)

    total = (await db.execute(select(func.count()).select_from(DonorCommitment).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(DonorCommitment)
            .where(*conditions)
            .order_by(desc(DonorCommitment.commitment_date))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return rows, total


async def commitment_stats(
    db: AsyncSession,
    *,
    donor_id: Optional[uuid.UUID] = None,
    entity_id: Optional[uuid.UUID] = None,
    incident_id: Optional[uuid.UUID] = None,
) -> Dict[str, Any]:
    stmt = select(DonorCommitment)
    if donor_id is not None:
        stmt = stmt.where(DonorCommitment.donor_id == donor_id)
    if entity_id is not None:
        stmt = stmt.where(DonorCommitment.entity_id == entity_id)
    if incident_id is not None:
        stmt = stmt.where(DonorCommitment.incident_id == incident_id)
    rows = (await db.execute(stmt)).scalars().all()

    committed = sum(int(c.total_committed_quantity or 0) for c in rows)
    delivered = sum(int(c.delivered_quantity or 0) for c in rows)
    return {
        "total": len(rows),
        "by_status": dict(Counter(c.status for c in rows)),
        "total_committed_quantity": committed,
        "delivered_quantity": delivered,
        "verified_delivered_quantity": sum(int(c.verified_delivered_quantity or 0) for c in rows),
        "total_value_estimated": round(sum(float(c.total_value_estimated or 0) for c in rows), 2),
        "utilization_rate": round(delivered / committed * 100.0, 2) if committed > 0 else 0.0,
    }


async def available_for_responder(
    db: AsyncSession,
    user: User,
    *,
    entity_id: Optional[uuid.UUID] = None,
) -> List[DonorCommitment]:
    entity_ids = await entity_assignment_service.accessible_entity_ids(db, user)

    stmt = select(DonorCommitment).where(DonorCommitment.status.in_(OPEN_COMMITMENT_STATUSES))
    if entity_ids is not None:
        if not entity_ids:
            return []
        stmt = stmt.where(DonorCommitment.entity_id.in_(entity_ids))
    if entity_id is not None:
        stmt = stmt.where(DonorCommitment.entity_id == entity_id)

    rows = (await db.execute(stmt.order_by(DonorCommitment.commitment_date))).scalars().all()
    return [c for c in rows if c.remaining_quantity > 0]
