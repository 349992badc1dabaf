from __future__ import annotations

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CurrentUser, publish_event, require_roles
from dms.db.session import get_db
from dms.models.donor import DonorCommitment
from dms.models.user import User
from dms.schemas.common import CommitmentStatus, PageMeta
from dms.schemas.donors import (
    CommitmentCreate,
    CommitmentListResponse,
    CommitmentOut,
    CommitmentStats,
    CommitmentUpdate,
    CommitmentUsage,
)
from dms.services import audit_service, commitment_service

"""
API Engagements donateurs.

Rôle (fonctionnel) :
- Création / mise à jour / annulation d’un engagement (donateur propriétaire ou coordination).
- Consommation (usage) : quantité livrée, transitions PLANNED -> PARTIAL -> COMPLETE.
- Statistiques et engagements disponibles pour l’intervenant courant.
- Chaque changement est audité et poussé sur le topic WS "commitments".
"""

router = APIRouter(prefix="/commitments", tags=["commitments"])
log = logging.getLogger("dms.commitments")

DonorOrCoordinator = Depends(require_roles("DONOR", "COORDINATOR"))


def _event(c: DonorCommitment) -> dict:
    return {
        "commitment_id": str(c.id),
        "donor_id": str(c.donor_id),
        "entity_id": str(c.entity_id),
        "status": c.status,
        "delivered_quantity": c.delivered_quantity,
        "remaining_quantity": c.remaining_quantity,
    }


@router.post("", response_model=CommitmentOut, status_code=201)
async def create_commitment(
    payload: CommitmentCreate,
    request: Request,
    user: User = DonorOrCoordinator,
    db: AsyncSession = Depends(get_db),
):
    c = await commitment_service.create_commitment(db, user, payload)
    audit_service.record(
        db,
        action="COMMITMENT_CREATED",
        resource="commitment",
        resource_id=c.id,
        user_id=user.id,
        new_values={"donor_id": str(c.donor_id), "entity_id": str(c.entity_id), "quantity": c.total_committed_quantity},
        request=request,
    )
    await db.commit()
    await db.refresh(c)

    await publish_event(request, "commitments", "COMMITMENT_CREATED", _event(c))
    return c


@router.get("", response_model=CommitmentListResponse)
async def list_commitments(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    donor_id: uuid.UUID | None = None,
    entity_id: uuid.UUID | None = None,
    incident_id: uuid.UUID | None = None,
    status: CommitmentStatus | None = None,
):
    rows, total = await commitment_service.list_commitments(
        db,
        user,
        donor_id=donor_id,
        entity_id=entity_id,
        incident_id=incident_id,
        status=status.value if status else None,
        page=page,
        page_size=page_size,
    )
    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}


@router.get("/stats", response_model=CommitmentStats)
async def commitment_stats(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    donor_id: uuid.UUID | None = None,
    entity_id: uuid.UUID | None = None,
    incident_id: uuid.UUID | None = None,
):
    if not user.has_role("COORDINATOR", "RESPONDER"):
        # Compte DONOR : ses propres statistiques
        own = await commitment_service.donor_for_user(db, user.id)
        donor_id = own.id if own else uuid.UUID(int=0)
    return await commitment_service.commitment_stats(db, donor_id=donor_id, entity_id=entity_id, incident_id=incident_id)


@router.get("/available", response_model=List[CommitmentOut])
async def available_commitments(
    user: User = Depends(require_roles("RESPONDER", "COORDINATOR")),
    db: AsyncSession = Depends(get_db),
    entity_id: uuid.UUID | None = None,
):
    return await commitment_service.available_for_responder(db, user, entity_id=entity_id)


@router.get("/{commitment_id}", response_model=CommitmentOut)
async def get_commitment(commitment_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    c = await commitment_service.get_commitment(db, commitment_id)
    if not user.has_role("COORDINATOR", "RESPONDER"):
        await commitment_service.ensure_can_manage(db, user, c.donor_id)
    return c


@router.patch("/{commitment_id}", response_model=CommitmentOut)
async def update_commitment(
    commitment_id: uuid.UUID,
    payload: CommitmentUpdate,
    request: Request,
    user: User = DonorOrCoordinator,
    db: AsyncSession = Depends(get_db),
):
    c = await commitment_service.get_commitment(db, commitment_id)
    old_quantity = c.total_committed_quantity
    await commitment_service.update_commitment(db, user, c, payload)

    audit_service.record(
        db,
        action="COMMITMENT_UPDATED",
        resource="commitment",
        resource_id=c.id,
        user_id=user.id,
        old_values={"quantity": old_quantity},
        new_values={"quantity": c.total_committed_quantity},
        request=request,
    )
    await db.commit()
    await db.refresh(c)

    await publish_event(request, "commitments", "COMMITMENT_UPDATED", _event(c))
    return c


@router.post("/{commitment_id}/cancel", response_model=CommitmentOut)
async def cancel_commitment(
    commitment_id: uuid.UUID,
    request: Request,
    user: User = DonorOrCoordinator,
    db: AsyncSession = Depends(get_db),
):
    c = await commitment_service.get_commitment(db, commitment_id)
    old_status = c.status
    await commitment_service.cancel_commitment(db, user, c)

    audit_service.record(
        db,
        action="COMMITMENT_CANCELLED",
        resource="commitment",
        resource_id=c.id,
        user_id=user.id,
        old_values={"status": old_status},
        new_values={"status": c.status},
        request=request,
    )
    await db.commit()
    await db.refresh(c)

    await publish_event(request, "commitments", "COMMITMENT_CANCELLED", _event(c))
    return c


@router.post("/{commitment_id}/usage", response_model=CommitmentOut)
async def use_commitment(
    commitment_id: uuid.UUID,
    payload: CommitmentUsage,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    c = await commitment_service.get_commitment(db, commitment_id)
    if not user.has_role("COORDINATOR", "RESPONDER"):
        await commitment_service.ensure_can_manage(db, user, c.donor_id)

    old_status = commitment_service.apply_usage(c, payload.quantity)
    if payload.notes:
        c.notes = f"{c.notes}\n{payload.notes}" if c.notes else payload.notes

    audit_service.record(
        db,
        action="COMMITMENT_USED",
        resource="commitment",
        resource_id=c.id,
        user_id=user.id,
        old_values={"status": old_status},
        new_values={"status": c.status, "quantity": payload.quantity, "delivered_quantity": c.delivered_quantity},
        request=request,
    )
    await db.commit()
    await db.refresh(c)

    log.info(
        "commitment_used",
        extra={"actor": str(user.id), "resource_id": str(c.id), "old_status": old_status, "new_status": c.status},
    )
    await publish_event(request, "commitments", "COMMITMENT_USED", _event(c))
    return c
