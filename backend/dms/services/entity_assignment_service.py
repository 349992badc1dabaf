from __future__ import annotations

import uuid
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import ConflictError, NotFoundError
from dms.models.entity import Entity, EntityAssignment
from dms.models.user import User

"""
Entity Assignment Service.

Rôle (fonctionnel) :
- Rattache / détache un utilisateur d’une entité (une paire n’existe qu’une fois).
- Répond aux questions d’accès utilisées partout ailleurs :
  - l’utilisateur est-il affecté à l’entité ?
  - quelles entités lui sont affectées ?
- Statistiques d’affectation par utilisateur (nombre d’entités, répartition par type).

Les coordinateurs et administrateurs ne sont pas limités à leurs entités affectées :
`accessible_entity_ids` renvoie None pour eux (pas de filtre).
"""

UNRESTRICTED_ROLES = ("COORDINATOR",)


async def is_assigned(db: AsyncSession, user_id: uuid.UUID, entity_id: uuid.UUID) -> bool:
    row = (
        await db.execute(
            select(EntityAssignment.id).where(
                EntityAssignment.user_id == user_id,
                EntityAssignment.entity_id == entity_id,
            )
        )
    ).first()
    return row is not None


async def assigned_entity_ids(db: AsyncSession, user_id: uuid.UUID) -> List[uuid.UUID]:
    rows = (await db.execute(select(EntityAssignment.entity_id).where(EntityAssignment.user_id == user_id))).all()
    return [r[0] for r in rows]


async def accessible_entity_ids(db: AsyncSession, user: User) -> Optional[List[uuid.UUID]]:
    """Entités visibles par l’utilisateur (None = toutes)."""
    if user.has_role(*UNRESTRICTED_ROLES):
        return None
    return await assigned_entity_ids(db, user.id)


async def can_access_entity(db: AsyncSession, user: User, entity_id: uuid.UUID) -> bool:
    if user.has_role(*UNRESTRICTED_ROLES):
        return True
    return await is_assigned(db, user.id, entity_id)


async def assigned_entities(db: AsyncSession, user_id: uuid.UUID) -> Sequence[Entity]:
    return (
        await db.execute(
            select(Entity)
            .join(EntityAssignment, EntityAssignment.entity_id == Entity.id)
            .where(EntityAssignment.user_id == user_id)
            .order_by(Entity.name)
        )
    ).scalars().all()


async def assigned_users(db: AsyncSession, entity_id: uuid.UUID) -> Sequence[User]:
    return (
        await db.execute(
            select(User)
            .join(EntityAssignment, EntityAssignment.user_id == User.id)
            .where(EntityAssignment.entity_id == entity_id)
            .order_by(User.name)
        )
    ).scalars().all()


async def assign(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    entity_id: uuid.UUID,
    assigned_by: Optional[uuid.UUID] = None,
) -> EntityAssignment:
    user = (await db.execute(select(User).where(User.id == user_id))).scalars().first()
    if not user:
        raise NotFoundError("Utilisateur introuvable")
    entity = (await db.execute(select(Entity).where(Entity.id == entity_id))).scalars().first()
    if not entity:
        raise NotFoundError("Entité introuvable")

    if await is_assigned(db, user_id, entity_id):
        raise ConflictError(
            "Utilisateur déjà affecté à cette entité",
            details={"user_id": str(user_id), "entity_id": str(entity_id)},
        )

    assignment = EntityAssignment(user_id=user_id, entity_id=entity_id, assigned_by=assigned_by)
    db.add(assignment)
    await db.flush()
    return assignment


async def unassign(db: AsyncSession, *, user_id: uuid.UUID, entity_id: uuid.UUID) -> None:
    assignment = (
        await db.execute(
            select(EntityAssignment).where(
                EntityAssignment.user_id == user_id,
                EntityAssignment.entity_id == entity_id,
            )
        )
    ).scalars().first()
    if not assignment:
        raise NotFoundError("Affectation introuvable")
    await db.delete(assignment)
    await db.flush()


async def user_assignment_stats(db: AsyncSession, user_id: uuid.UUID) -> Dict[str, Any]:
    entities = await assigned_entities(db, user_id)
    return {
        "user_id": str(user_id),
        "total_entities": len(entities),
        "active_entities": sum(1 for e in entities if e.is_active),
        "by_type": dict(Counter(e.type for e in entities)),
    }
