from __future__ import annotations

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser, CurrentUser, publish_event
from dms.db.base import utcnow
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.common import PageMeta
from dms.schemas.sync import (
    ChangeType,
    ConflictOut,
    ConflictResolve,
    SyncBatchRequest,
    SyncBatchResponse,
    SyncPullResponse,
)
from dms.services import audit_service, sync_service

"""
API Synchro terrain.

Rôle (fonctionnel) :
- /sync/batch : application d’un lot de changements hors-ligne (un savepoint par changement,
  idempotence par offline_id, conflits résolus en last-write-wins et enregistrés).
- /sync/pull : changements serveur depuis une date pour les entités de l’utilisateur.
- /sync/conflicts : liste, résolution (stratégie) et accusé de notification (coordination).

Notes :
- Endpoint rate-limité (middleware, préfixe /sync).
- Les conflits détectés sont poussés sur le topic WS "sync".
"""

router = APIRouter(prefix="/sync", tags=["sync"])
log = logging.getLogger("dms.sync")


@router.post("/batch", response_model=SyncBatchResponse)
async def sync_batch(
    payload: SyncBatchRequest,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    results, conflicts = await sync_service.process_batch(db, user, payload)
    summary = sync_service.summarize(results)

    audit_service.record(
        db,
        action="SYNC_BATCH",
        resource="sync",
        user_id=user.id,
        new_values=summary,
        request=request,
    )
    await db.commit()

    for c in conflicts:
        await publish_event(
            request,
            "sync",
            "SYNC_CONFLICT",
            {
                "conflict_id": str(c.id),
                "entity_type": c.entity_type,
                "entity_id": c.entity_id,
                "resolution_method": c.resolution_method,
                "detected_by": str(user.id),
            },
        )

    return {"results": results, "summary": summary, "server_time": utcnow()}


@router.get("/pull", response_model=SyncPullResponse)
async def sync_pull(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    since: datetime | None = None,
):
    return await sync_service.pull_changes(db, user, since)


@router.get("/conflicts")
async def list_conflicts(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    is_resolved: bool | None = None,
    entity_type: ChangeType | None = None,
):
    rows, total = await sync_service.list_conflicts(
        db,
        is_resolved=is_resolved,
        entity_type=entity_type.value if entity_type else None,
        page=page,
        page_size=page_size,
    )
    return {
        "data": [ConflictOut.model_validate(c) for c in rows],
        "meta": PageMeta(page=page, page_size=page_size, total=total),
    }


@router.get("/conflicts/{conflict_id}", response_model=ConflictOut)
async def get_conflict(conflict_id: uuid.UUID, user: User = CoordinatorUser, db: AsyncSession = Depends(get_db)):
    return await sync_service.get_conflict(db, conflict_id)


@router.post("/conflicts/{conflict_id}/resolve")
async def resolve_conflict(
    conflict_id: uuid.UUID,
    payload: ConflictResolve,
    request: Request,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    conflict = await sync_service.get_conflict(db, conflict_id)
    conflict, resolution = await sync_service.resolve_conflict(
        db, user, conflict, strategy=payload.strategy, resolved_data=payload.resolved_data
    )

    audit_service.record(
        db,
        action="SYNC_CONFLICT_RESOLVED",
        resource=conflict.entity_type,
        resource_id=conflict.entity_id,
        user_id=user.id,
        new_values={"strategy": resolution.strategy, "winner": resolution.winner, "version": resolution.version},
        request=request,
    )
    await db.commit()
    await db.refresh(conflict)

    await publish_event(
        request,
        "sync",
        "SYNC_CONFLICT_RESOLVED",
        {"conflict_id": str(conflict.id), "entity_id": conflict.entity_id, "winner": resolution.winner},
    )
    return {
        "conflict": ConflictOut.model_validate(conflict),
        "resolution": {
            "strategy": resolution.strategy,
            "winner": resolution.winner,
            "version": resolution.version,
            "data": resolution.data,
            "last_modified": resolution.last_modified,
        },
    }


@router.post("/conflicts/{conflict_id}/notify", response_model=ConflictOut)
async def mark_conflict_notified(
    conflict_id: uuid.UUID,
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
):
    conflict = await sync_service.mark_notified(db, await sync_service.get_conflict(db, conflict_id))
    await db.commit()
    await db.refresh(conflict)
    return conflict
