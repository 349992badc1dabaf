from __future__ import annotations

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser, CurrentUser
from dms.core.errors import ConflictError, NotFoundError
from dms.db.session import get_db
from dms.models.entity import Entity
from dms.models.user import User
from dms.schemas.common import EntityType, PageMeta
from dms.schemas.entities import (
    AutoApprovalConfig,
    AutoApprovalOut,
    BulkAutoApprovalUpdate,
    EntityCreate,
    EntityListResponse,
    EntityOut,
    EntityUpdate,
)
from dms.schemas.users import UserOut
from dms.services import audit_service, auto_approval, entity_assignment_service

"""
API Entités.

Rôle (fonctionnel) :
- Référentiel des lieux suivis (communautés, quartiers, LGA, structures, camps).
- Création / mise à jour réservées à la coordination, (name, type) unique.
- /entities/assigned : entités affectées à l’utilisateur courant.
- Configuration d’auto-approbation par entité ou en masse.
"""

router = APIRouter(prefix="/entities", tags=["entities"])
log = logging.getLogger("dms.entities")


async def _get_entity(db: AsyncSession, entity_id: uuid.UUID) -> Entity:
    entity = (await db.execute(select(Entity).where(Entity.id == entity_id))).scalars().first()
    if not entity:
        raise NotFoundError("Entité introuvable")
    return entity


async def _ensure_unique(db: AsyncSession, name: str, type_: str, exclude_id: uuid.UUID | None = None) -> None:
    stmt = select(Entity.id).where(Entity.name == name, Entity.type == type_)
    if exclude_id is not None:
        stmt = stmt.where(Entity.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise ConflictError("Une entité de ce nom et de ce type existe déjà", details={"name": name, "type": type_})


def _auto_approval_out(entity: Entity) -> AutoApprovalOut:
    cfg = auto_approval.get_config(entity)
    return AutoApprovalOut(**cfg.model_dump(), entity_id=entity.id, entity_name=entity.name)


@router.get("", response_model=EntityListResponse)
async def list_entities(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    type: EntityType | None = None,
    is_active: bool | None = None,
    search: str | None = Query(None, max_length=100),
):
    conditions = []
    if type is not None:
        conditions.append(Entity.type == type.value)
    if is_active is not None:
        conditions.append(Entity.is_active.is_(is_active))
    if search:
        like = f"%{search.strip()}%"
        conditions.append(or_(Entity.name.ilike(like), Entity.location.ilike(like)))

    total = (await db.execute(select(func.count()).select_from(Entity).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(Entity)
            .where(*conditions)
            .order_by(Entity.name)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()

    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}


@router.get("/assigned", response_model=List[EntityOut])
async def my_entities(user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    return await entity_assignment_service.assigned_entities(db, user.id)


@router.post("", response_model=EntityOut, status_code=201)
async def create_entity(
    payload: EntityCreate,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    await _ensure_unique(db, payload.name, payload.type.value)

    entity = Entity(
        name=payload.name,
        type=payload.type.value,
        location=payload.location,
        coordinates=payload.coordinates.model_dump() if payload.coordinates else None,
        meta=dict(payload.metadata),
    )
    db.add(entity)
    await db.flush()

    audit_service.record(
        db,
        action="ENTITY_CREATED",
        resource="entity",
        resource_id=entity.id,
        user_id=user.id,
        new_values={"name": entity.name, "type": entity.type},
        request=request,
    )
    await db.commit()
    await db.refresh(entity)
    return entity


@router.put("/auto-approval/bulk", response_model=List[AutoApprovalOut])
async def bulk_auto_approval(
    payload: BulkAutoApprovalUpdate,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    ids = list(dict.fromkeys(payload.entity_ids))
    entities = (await db.execute(select(Entity).where(Entity.id.in_(ids)))).scalars().all()

    missing = sorted({str(i) for i in ids} - {str(e.id) for e in entities})
    if missing:
        raise NotFoundError("Entités introuvables", details={"entity_ids": missing})

    for entity in entities:
        auto_approval.set_config(entity, payload.config)

    audit_service.record(
        db,
        action="AUTO_APPROVAL_BULK_UPDATED",
        resource="entity",
        user_id=user.id,
        new_values={"entity_ids": [str(e.id) for e in entities], "config": payload.config.model_dump(mode="json")},
        request=request,
    )
    await db.commit()
    return [_auto_approval_out(e) for e in entities]


@router.get("/{entity_id}", response_model=EntityOut)
async def get_entity(entity_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    return await _get_entity(db, entity_id)


@router.patch("/{entity_id}", response_model=EntityOut)
async def update_entity(
    entity_id: uuid.UUID,
    payload: EntityUpdate,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    entity = await _get_entity(db, entity_id)
    changes = payload.model_dump(exclude_unset=True, mode="json")

    if "name" in changes and changes["name"] != entity.name:
        await _ensure_unique(db, changes["name"], entity.type, exclude_id=entity.id)

    old_values = {k: getattr(entity, "meta" if k == "metadata" else k) for k in changes}
    for field, value in changes.items():
        if field == "metadata":
            # La configuration d’auto-approbation n’est pas écrasée par une mise à jour libre
            meta = dict(value or {})
            if auto_approval.META_KEY in (entity.meta or {}):
                meta[auto_approval.META_KEY] = entity.meta[auto_approval.META_KEY]
            entity.meta = meta
        else:
            setattr(entity, field, value)

    audit_service.record(
        db,
        action="ENTITY_UPDATED",
        resource="entity",
        resource_id=entity.id,
        user_id=user.id,
        old_values=old_values,
        new_values=changes,
        request=request,
    )
    await db.commit()
    await db.refresh(entity)
    return entity


@router.get("/{entity_id}/users", response_model=List[UserOut])
async def entity_users(entity_id: uuid.UUID, user: User = CoordinatorUser, db: AsyncSession = Depends(get_db)):
    await _get_entity(db, entity_id)
    return await entity_assignment_service.assigned_users(db, entity_id)


@router.get("/{entity_id}/auto-approval", response_model=AutoApprovalOut)
async def get_auto_approval(entity_id: uuid.UUID, user: User = CoordinatorUser, db: AsyncSession = Depends(get_db)):
    return _auto_approval_out(await _get_entity(db, entity_id))


@router.put("/{entity_id}/auto-approval", response_model=AutoApprovalOut)
async def set_auto_approval(
    entity_id: uuid.UUID,
    payload: AutoApprovalConfig,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    entity = await _get_entity(db, entity_id)
    old = auto_approval.get_config(entity).model_dump(mode="json")
    auto_approval.set_config(entity, payload)

    audit_service.record(
        db,
        action="AUTO_APPROVAL_UPDATED",
        resource="entity",
        resource_id=entity.id,
        user_id=user.id,
        old_values=old,
        new_values=payload.model_dump(mode="json"),
        request=request,
    )
    await db.commit()

    log.info(
        "auto_approval_updated",
        extra={"actor": str(user.id), "entity_id": str(entity.id), "new_status": payload.enabled},
    )
    return _auto_approval_out(entity)
