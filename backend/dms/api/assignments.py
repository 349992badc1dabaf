from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.entities import AssignmentCreate, AssignmentOut, EntityOut
from dms.services import audit_service, entity_assignment_service

"""
API Affectations (utilisateur <-> entité).

Rôle (fonctionnel) :
- Affecter / désaffecter un utilisateur à une entité (coordination).
- Consulter les entités d’un utilisateur et ses statistiques d’affectation.
- Vérifier une affectation (utilisé par les outils de terrain).
"""

router = APIRouter(prefix="/entity-assignments", tags=["entity-assignments"])
log = logging.getLogger("dms.assignments")


@router.post("", response_model=AssignmentOut, status_code=201)
async def assign(
    payload: AssignmentCreate,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    assignment = await entity_assignment_service.assign(
        db, user_id=payload.user_id, entity_id=payload.entity_id, assigned_by=user.id
    )
    audit_service.record(
        db,
        action="ENTITY_ASSIGNED",
        resource="entity_assignment",
        resource_id=assignment.id,
        user_id=user.id,
        new_values={"user_id": str(payload.user_id), "entity_id": str(payload.entity_id)},
        request=request,
    )
    await db.commit()
    await db.refresh(assignment)
    return assignment


@router.delete("", status_code=204)
async def unassign(
    user_id: uuid.UUID,
    entity_id: uuid.UUID,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    await entity_assignment_service.unassign(db, user_id=user_id, entity_id=entity_id)
    audit_service.record(
        db,
        action="ENTITY_UNASSIGNED",
        resource="entity_assignment",
        user_id=user.id,
        old_values={"user_id": str(user_id), "entity_id": str(entity_id)},
        request=request,
    )
    await db.commit()


@router.get("/check")
async def check_assignment(
    user_id: uuid.UUID,
    entity_id: uuid.UUID,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    return {
        "user_id": str(user_id),
        "entity_id": str(entity_id),
        "assigned": await entity_assignment_service.is_assigned(db, user_id, entity_id),
    }


@router.get("/users/{user_id}", response_model=List[EntityOut])
async def user_entities(user_id: uuid.UUID, user: User = CoordinatorUser, db: AsyncSession = Depends(get_db)):
    return await entity_assignment_service.assigned_entities(db, user_id)


@router.get("/users/{user_id}/stats")
async def user_stats(user_id: uuid.UUID, user: User = CoordinatorUser, db: AsyncSession = Depends(get_db)):
    return await entity_assignment_service.user_assignment_stats(db, user_id)
