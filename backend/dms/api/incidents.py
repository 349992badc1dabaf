from __future__ import annotations

import logging
import uuid
from typing import List, Sequence

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser, CurrentUser, publish_event
from dms.core.errors import NotFoundError
from dms.db.session import get_db
from dms.models.entity import Entity
from dms.models.incident import Incident, IncidentEntity
from dms.models.user import User
from dms.schemas.common import IncidentStatus, PageMeta, Priority
from dms.schemas.entities import EntityOut
from dms.schemas.incidents import (
    IncidentCreate,
    IncidentDetail,
    IncidentEntityLink,
    IncidentListResponse,
    IncidentOut,
    IncidentUpdate,
)
from dms.services import audit_service

"""
API Incidents.

Rôle (fonctionnel) :
- Déclarer un incident (coordination) et le rattacher aux entités touchées.
- Lister / filtrer (statut, sévérité, type), consulter le détail avec les entités touchées.
- Faire évoluer statut et sévérité (ACTIVE -> CONTAINED -> RESOLVED).
- Chaque changement est audité et poussé sur le topic WS "incidents".
"""

router = APIRouter(prefix="/incidents", tags=["incidents"])
log = logging.getLogger("dms.incidents")


async def get_incident(db: AsyncSession, incident_id: uuid.UUID) -> Incident:
    incident = (await db.execute(select(Incident).where(Incident.id == incident_id))).scalars().first()
    if not incident:
        raise NotFoundError("Incident introuvable")
    return incident


async def _entities(db: AsyncSession, entity_ids: Sequence[uuid.UUID]) -> List[Entity]:
    ids = list(dict.fromkeys(entity_ids))
    if not ids:
        return []
    found = (await db.execute(select(Entity).where(Entity.id.in_(ids)))).scalars().all()
    missing = sorted({str(i) for i in ids} - {str(e.id) for e in found})
    if missing:
        raise NotFoundError("Entités introuvables", details={"entity_ids": missing})
    return list(found)


async def _linked_ids(db: AsyncSession, incident_id: uuid.UUID) -> set:
    rows = (await db.execute(select(IncidentEntity.entity_id).where(IncidentEntity.incident_id == incident_id))).all()
    return {r[0] for r in rows}


async def link_entities(db: AsyncSession, incident: Incident, entity_ids: Sequence[uuid.UUID]) -> List[str]:
    """Rattache les entités non encore liées ; retourne les ids ajoutés."""
    entities = await _entities(db, entity_ids)
    already = await _linked_ids(db, incident.id)
    added = []
    for e in entities:
        if e.id in already:
            continue
        db.add(IncidentEntity(incident_id=incident.id, entity_id=e.id))
        added.append(str(e.id))
    await db.flush()
    return added


async def _detail(db: AsyncSession, incident: Incident) -> IncidentDetail:
    entities = (
        await db.execute(
            select(Entity)
            .join(IncidentEntity, IncidentEntity.entity_id == Entity.id)
            .where(IncidentEntity.incident_id == incident.id)
            .order_by(Entity.name)
        )
    ).scalars().all()
    detail = IncidentDetail.model_validate(incident)
    detail.affected_entities = [EntityOut.model_validate(e) for e in entities]
    return detail


@router.get("", response_model=IncidentListResponse)
async def list_incidents(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    status: IncidentStatus | None = None,
    severity: Priority | None = None,
    type: str | None = Query(None, max_length=100),
):
    conditions = []
    if status is not None:
        conditions.append(Incident.status == status.value)
    if severity is not None:
        conditions.append(Incident.severity == severity.value)
    if type:
        conditions.append(Incident.type == type)

    total = (await db.execute(select(func.count()).select_from(Incident).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(Incident)
            .where(*conditions)
            .order_by(desc(Incident.created_at))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()

    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}


@router.post("", response_model=IncidentDetail, status_code=201)
async def create_incident(
    payload: IncidentCreate,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    incident = Incident(
        type=payload.type,
        sub_type=payload.sub_type,
        severity=payload.severity.value,
        status=payload.status.value,
        description=payload.description,
        location=payload.location,
        coordinates=payload.coordinates.model_dump() if payload.coordinates else None,
        created_by=user.id,
    )
    db.add(incident)
    await db.flush()
    linked = await link_entities(db, incident, payload.entity_ids)

    audit_service.record(
        db,
        action="INCIDENT_CREATED",
        resource="incident",
        resource_id=incident.id,
        user_id=user.id,
        new_values={"type": incident.type, "severity": incident.severity, "entity_ids": linked},
        request=request,
    )
    await db.commit()
    await db.refresh(incident)

    await publish_event(
        request,
        "incidents",
        "INCIDENT_CREATED",
        {"incident_id": str(incident.id), "type": incident.type, "severity": incident.severity},
    )
    return await _detail(db, incident)


@router.get("/{incident_id}", response_model=IncidentDetail)
async def incident_detail(incident_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    return await _detail(db, await get_incident(db, incident_id))


@router.patch("/{incident_id}", response_model=IncidentOut)
async def update_incident(
    incident_id: uuid.UUID,
    payload: IncidentUpdate,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    incident = await get_incident(db, incident_id)
    changes = payload.model_dump(exclude_unset=True, mode="json")
    old_values = {k: getattr(incident, k) for k in changes}
    old_status = incident.status

    for field, value in changes.items():
        setattr(incident, field, value)

    audit_service.record(
        db,
        action="INCIDENT_UPDATED",
        resource="incident",
        resource_id=incident.id,
        user_id=user.id,
        old_values=old_values,
        new_values=changes,
        request=request,
    )
    await db.commit()
    await db.refresh(incident)

    log.info(
        "incident_updated",
        extra={
            "actor": str(user.id),
            "resource_id": str(incident.id),
            "old_status": old_status,
            "new_status": incident.status,
        },
    )
    await publish_event(
        request,
        "incidents",
        "INCIDENT_UPDATED",
        {"incident_id": str(incident.id), "status": incident.status, "severity": incident.severity},
    )
    return incident


@router.post("/{incident_id}/entities", response_model=IncidentDetail)
async def link_incident_entities(
    incident_id: uuid.UUID,
    payload: IncidentEntityLink,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    incident = await get_incident(db, incident_id)
    added = await link_entities(db, incident, payload.entity_ids)

    if added:
        audit_service.record(
            db,
            action="INCIDENT_ENTITIES_LINKED",
            resource="incident",
            resource_id=incident.id,
            user_id=user.id,
            new_values={"entity_ids": added},
            request=request,
        )
    await db.commit()
    return await _detail(db, incident)


@router.delete("/{incident_id}/entities/{entity_id}", status_code=204)
async def unlink_incident_entity(
    incident_id: uuid.UUID,
    entity_id: uuid.UUID,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    incident = await get_incident(db, incident_id)
    link = (
        await db.execute(
            select(IncidentEntity).where(IncidentEntity.incident_id == incident.id, IncidentEntity.entity_id == entity_id)
        )
    ).scalars().first()
    if not link:
        raise NotFoundError("Entité non rattachée à cet incident")

    await db.delete(link)
    audit_service.record(
        db,
        action="INCIDENT_ENTITY_UNLINKED",
        resource="incident",
        resource_id=incident.id,
        user_id=user.id,
        old_values={"entity_id": str(entity_id)},
        request=request,
    )
    await db.commit()
