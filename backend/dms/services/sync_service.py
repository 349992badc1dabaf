from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy import desc, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import AppHTTPException, BusinessValidationError, ForbiddenError, InvalidStateError, NotFoundError
from dms.db.base import as_utc, utcnow
from dms.models.assessment import RapidAssessment
from dms.models.entity import Entity
from dms.models.response import RapidResponse
from dms.models.sync_conflict import SyncConflict
from dms.models.user import User
from dms.schemas.assessments import AssessmentCreate, AssessmentUpdate
from dms.schemas.entities import EntityCreate, EntityOut, EntityUpdate
from dms.schemas.responses import ResponsePlanCreate, ResponseUpdate
from dms.schemas.sync import ChangeAction, ChangeResult, ChangeType, SyncBatchRequest, SyncChange
from dms.services import assessment_service, conflict_resolution, entity_assignment_service, response_service
from dms.services.conflict_resolution import Resolution, ResolutionStrategy

"""
Sync Service (serveur).

Rôle (fonctionnel) :
- Applique un lot de changements terrain (évaluations, réponses, entités).
- Contrôle d’accès préalable : toutes les entités ciblées doivent être affectées à l’utilisateur
  (sinon 403 avec la liste des entités refusées, rien n’est appliqué).
- Chaque changement est appliqué dans son propre savepoint : un échec n’annule pas les autres.
- Création idempotente sur offline_id.
- Mise à jour : versions égales -> application + version +1 ;
  versions différentes -> conflit résolu en last-write-wins, tracé dans sync_conflicts.
- Pull des changements serveur depuis une date, conflits (liste, résolution, notification).

Les versions conservées dans sync_conflicts ont la forme :
{"source": "local" | "server", "version": n, "last_modified": iso, "data": {...}}
"""

log = logging.getLogger("dms.sync")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fields(model: Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """Ne garde que les champs connus du schéma (le terrain renvoie aussi des champs serveur)."""
    return {k: v for k, v in (data or {}).items() if k in model.model_fields}


def _error_message(exc: Exception) -> str:
    if isinstance(exc, AppHTTPException) and isinstance(exc.detail, dict):
        return str(exc.detail.get("message"))
    if isinstance(exc, ValidationError):
        return "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
    if isinstance(exc, IntegrityError):
        return "Contrainte d’intégrité violée"
    return str(exc)


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _snapshot(source: str, version: int, last_modified: Optional[datetime], data: Dict[str, Any]) -> Dict[str, Any]:
    lm = as_utc(last_modified)
    return {
        "source": source,
        "version": int(version),
        "last_modified": lm.isoformat() if lm else None,
        "data": data,
    }


async def _find_target(db: AsyncSession, change: SyncChange):
    model = RapidAssessment if change.type == ChangeType.ASSESSMENT else RapidResponse
    if change.entity_uuid is not None:
        return (await db.execute(select(model).where(model.id == change.entity_uuid))).scalars().first()
    return (await db.execute(select(model).where(model.offline_id == change.offline_id))).scalars().first()


# ---------------------------------------------------------------------------
# Contrôle d’accès du lot
# ---------------------------------------------------------------------------


async def unauthorized_entities(db: AsyncSession, user: User, changes: Sequence[SyncChange]) -> List[str]:
    allowed = await entity_assignment_service.accessible_entity_ids(db, user)
    if allowed is None:
        return []
    allowed_set: Set[uuid.UUID] = set(allowed)

    targeted: Set[uuid.UUID] = set()
    for change in changes:
        if change.type == ChangeType.ENTITY:
            continue
        eid = _as_uuid(change.data.get("entity_id"))
        if eid is not None:
            targeted.add(eid)
        if change.action != ChangeAction.CREATE:
            target = await _find_target(db, change)
            if target is not None:
                targeted.add(target.entity_id)

    return sorted(str(e) for e in targeted - allowed_set)


# ---------------------------------------------------------------------------
# Application d’un changement
# ---------------------------------------------------------------------------


async def _record_conflict(
    db: AsyncSession,
    user: User,
    *,
    entity_type: str,
    entity_id: uuid.UUID,
    resolution: Resolution,
    local: Dict[str, Any],
    server: Dict[str, Any],
) -> SyncConflict:
    winning, losing = (local, server) if resolution.winner == "local" else (server, local)
    conflict = SyncConflict(
        entity_type=entity_type,
        entity_id=str(entity_id),
        resolution_method=resolution.strategy,
        winning_version=winning,
        losing_version=losing,
        is_resolved=False,
        detected_by=user.id,
    )
    db.add(conflict)
    await db.flush()
    log.warning(
        "sync_conflict",
        extra={"actor": str(user.id), "resource": entity_type, "resource_id": str(entity_id), "new_status": resolution.winner},
    )
    return conflict


def _is_modifiable(target, change_type: ChangeType) -> bool:
    if change_type == ChangeType.ASSESSMENT:
        return assessment_service.is_editable(target)
    return target.status == "PLANNED"


def _server_wins(server_state: Dict[str, Any], version: int, modified: Optional[datetime]) -> Resolution:
    return Resolution(
        strategy=ResolutionStrategy.LAST_WRITE_WINS.value,
        winner="server",
        data=dict(server_state),
        version=version,
        last_modified=as_utc(modified),
    )


async def _apply_local(db: AsyncSession, target, change_type: ChangeType, data: Dict[str, Any]) -> None:
    if change_type == ChangeType.ASSESSMENT:
        await assessment_service.apply_changes(db, target, AssessmentUpdate.model_validate(_fields(AssessmentUpdate, data)))
    else:
        response_service.apply_changes(target, ResponseUpdate.model_validate(_fields(ResponseUpdate, data)))


async def _apply_assessment_or_response(
    db: AsyncSession,
    user: User,
    change: SyncChange,
    conflicts: List[SyncConflict],
) -> Dict[str, Any]:
    is_assessment = change.type == ChangeType.ASSESSMENT
    service = assessment_service if is_assessment else response_service

    if change.action == ChangeAction.CREATE:
        existing = await service.get_by_offline_id(db, change.offline_id)
        if existing is not None:
            return {
                "status": ChangeResult.SUCCESS,
                "server_id": str(existing.id),
                "version_number": existing.version_number,
                "message": "Déjà synchronisé",
            }

        data = {**change.data, "offline_id": change.offline_id, "is_offline_created": True}
        if is_assessment:
            created = await assessment_service.create_assessment(
                db, user, AssessmentCreate.model_validate(_fields(AssessmentCreate, data))
            )
            if str(change.data.get("status") or "").upper() == "SUBMITTED":
                await assessment_service.submit_assessment(db, user, created)
        else:
            created = await response_service.plan_response(
                db, user, ResponsePlanCreate.model_validate(_fields(ResponsePlanCreate, data))
            )
        return {"status": ChangeResult.SUCCESS, "server_id": str(created.id), "version_number": created.version_number}

    target = await _find_target(db, change)
    if target is None:
        raise NotFoundError("Élément introuvable côté serveur", details={"offline_id": change.offline_id})

    if change.action == ChangeAction.DELETE:
        if is_assessment:
            await assessment_service.delete_assessment(db, user, target)
        else:
            await response_service.delete_response(db, user, target)
        return {"status": ChangeResult.SUCCESS, "server_id": str(target.id), "message": "Supprimé"}

    # Mise à jour
    owner_id = target.assessor_id if is_assessment else target.responder_id
    if owner_id != user.id:
        raise ForbiddenError("Seul l’auteur peut modifier cet élément")

    if not conflict_resolution.has_conflict(change.version_number, target.version_number):
        if not _is_modifiable(target, change.type):
            label = "Évaluation" if is_assessment else "Réponse"
            raise InvalidStateError(f"{label} non modifiable dans cet état", details={"status": target.status})

        await _apply_local(db, target, change.type, change.data)
        target.version_number = (target.version_number or 1) + 1
        target.updated_at = utcnow()
        await db.flush()
        if is_assessment and str(change.data.get("status") or "").upper() == "SUBMITTED":
            await assessment_service.submit_assessment(db, user, target)
        return {"status": ChangeResult.SUCCESS, "server_id": str(target.id), "version_number": target.version_number}

    server_state = service.serialize(target)
    server_version = int(target.version_number)
    server_modified = target.updated_at
    resolution = conflict_resolution.resolve_last_write_wins(
        change.data,
        server_state,
        local_modified=change.last_modified,
        server_modified=server_modified,
        local_version=change.version_number,
        server_version=server_version,
    )
    # Élément verrouillé par le workflow (soumis, vérifié, livré) : le serveur l’emporte
    if resolution.winner == "local" and not _is_modifiable(target, change.type):
        resolution = _server_wins(server_state, server_version, server_modified)

    if resolution.winner == "local":
        await _apply_local(db, target, change.type, change.data)
        target.version_number = resolution.version
        target.updated_at = utcnow()
        await db.flush()

    conflict = await _record_conflict(
        db,
        user,
        entity_type=change.type.value,
        entity_id=target.id,
        resolution=resolution,
        local=_snapshot("local", change.version_number, change.last_modified, dict(change.data)),
        server=_snapshot("server", server_version, server_modified, server_state),
    )
    conflicts.append(conflict)

    return {
        "status": ChangeResult.CONFLICT,
        "server_id": str(target.id),
        "version_number": target.version_number,
        "message": f"Conflit de version résolu ({resolution.winner})",
        "conflict_data": {
            "conflict_id": str(conflict.id),
            "winner": resolution.winner,
            "server": service.serialize(target),
        },
    }


async def _apply_entity(db: AsyncSession, user: User, change: SyncChange) -> Dict[str, Any]:
    if not user.has_role("COORDINATOR"):
        raise ForbiddenError("Les changements d’entités sont réservés aux coordinateurs")

    if change.action == ChangeAction.CREATE:
        payload = EntityCreate.model_validate(_fields(EntityCreate, change.data))
        entity = Entity(
            name=payload.name,
            type=payload.type.value,
            location=payload.location,
            coordinates=payload.coordinates.model_dump() if payload.coordinates else None,
            meta=payload.metadata,
        )
        db.add(entity)
        await db.flush()
        return {"status": ChangeResult.SUCCESS, "server_id": str(entity.id)}

    entity_id = change.entity_uuid or _as_uuid(change.data.get("id"))
    entity = (await db.execute(select(Entity).where(Entity.id == entity_id))).scalars().first() if entity_id else None
    if entity is None:
        raise NotFoundError("Entité introuvable", details={"offline_id": change.offline_id})

    if change.action == ChangeAction.DELETE:
        # Désactivation : les évaluations et réponses restent rattachées
        entity.is_active = False
    else:
        payload = EntityUpdate.model_validate(_fields(EntityUpdate, change.data))
        fields = payload.model_dump(exclude_unset=True)
        if payload.name is not None:
            entity.name = payload.name
        if "location" in fields:
            entity.location = payload.location
        if "coordinates" in fields:
            entity.coordinates = payload.coordinates.model_dump() if payload.coordinates else None
        if payload.metadata is not None:
            entity.meta = payload.metadata
        if payload.is_active is not None:
            entity.is_active = payload.is_active
    entity.updated_at = utcnow()
    await db.flush()
    return {"status": ChangeResult.SUCCESS, "server_id": str(entity.id)}


async def process_batch(
    db: AsyncSession,
    user: User,
    batch: SyncBatchRequest,
) -> Tuple[List[Dict[str, Any]], List[SyncConflict]]:
    """
    Applique le lot ; renvoie (résultats par changement, conflits créés).

    Le commit reste à la charge de l’appelant.
    """
    refused = await unauthorized_entities(db, user, batch.changes)
    if refused:
        raise ForbiddenError(
            "Entités non affectées à l’utilisateur",
            details={"unauthorized_entities": refused},
        )

    results: List[Dict[str, Any]] = []
    conflicts: List[SyncConflict] = []

    for change in batch.changes:
        try:
            async with db.begin_nested():
                if change.type == ChangeType.ENTITY:
                    outcome = await _apply_entity(db, user, change)
                else:
                    outcome = await _apply_assessment_or_response(db, user, change, conflicts)
        except (AppHTTPException, ValidationError, IntegrityError, ValueError) as exc:
            outcome = {"status": ChangeResult.FAILED, "message": _error_message(exc)}
            log.info(
                "sync_change_failed",
                extra={"actor": str(user.id), "resource": change.type.value, "offline_id": change.offline_id},
            )

        results.append({"offline_id": change.offline_id, **outcome})

    summary = Counter(r["status"].value for r in results)
    log.info(
        "sync_batch_processed",
        extra={
            "actor": str(user.id),
            "batch_size": len(results),
            "new_status": ",".join(f"{k}={v}" for k, v in sorted(summary.items())),
        },
    )
    return results, conflicts


def summarize(results: Sequence[Dict[str, Any]]) -> Dict[str, int]:
    counts = Counter(r["status"].value for r in results)
    return {
        "total": len(results),
        "success": counts.get(ChangeResult.SUCCESS.value, 0),
        "conflict": counts.get(ChangeResult.CONFLICT.value, 0),
        "failed": counts.get(ChangeResult.FAILED.value, 0),
    }


# ---------------------------------------------------------------------------
# Pull
# ---------------------------------------------------------------------------


async def pull_changes(db: AsyncSession, user: User, since: Optional[datetime]) -> Dict[str, Any]:
    entity_ids = await entity_assignment_service.accessible_entity_ids(db, user)

    a_stmt = select(RapidAssessment)
    r_stmt = select(RapidResponse)
    e_stmt = select(Entity)
    if entity_ids is not None:
        a_stmt = a_stmt.where(or_(RapidAssessment.entity_id.in_(entity_ids), RapidAssessment.assessor_id == user.id))
        r_stmt = r_stmt.where(or_(RapidResponse.entity_id.in_(entity_ids), RapidResponse.responder_id == user.id))
        e_stmt = e_stmt.where(Entity.id.in_(entity_ids))
    if since is not None:
        a_stmt = a_stmt.where(RapidAssessment.updated_at > since)
        r_stmt = r_stmt.where(RapidResponse.updated_at > since)
        e_stmt = e_stmt.where(Entity.updated_at > since)

    assessments = (await db.execute(a_stmt.order_by(RapidAssessment.updated_at))).scalars().all()
    responses = (await db.execute(r_stmt.order_by(RapidResponse.updated_at))).scalars().all()
    entities = (await db.execute(e_stmt.order_by(Entity.updated_at))).scalars().all()

    return {
        "assessments": [assessment_service.serialize(a) for a in assessments],
        "responses": [response_service.serialize(r) for r in responses],
        "entities": [EntityOut.model_validate(e).model_dump(mode="json") for e in entities],
        "server_time": utcnow(),
    }


# ---------------------------------------------------------------------------
# Conflits
# ---------------------------------------------------------------------------


async def list_conflicts(
    db: AsyncSession,
    *,
    is_resolved: Optional[bool] = None,
    entity_type: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[Sequence[SyncConflict], int]:
    conditions = []
    if is_resolved is not None:
        conditions.append(SyncConflict.is_resolved.is_(is_resolved))
    if entity_type:
        conditions.append(SyncConflict.entity_type == entity_type)

    total = (await db.execute(select(func.count()).select_from(SyncConflict).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(SyncConflict)
            .where(*conditions)
            .order_by(desc(SyncConflict.conflict_date))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return rows, total


async def get_conflict(db: AsyncSession, conflict_id: uuid.UUID) -> SyncConflict:
    c = (await db.execute(select(SyncConflict).where(SyncConflict.id == conflict_id))).scalars().first()
    if not c:
        raise NotFoundError("Conflit introuvable")
    return c


def _parse_snapshot_date(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


async def resolve_conflict(
    db: AsyncSession,
    user: User,
    conflict: SyncConflict,
    *,
    strategy: ResolutionStrategy,
    resolved_data: Optional[Dict[str, Any]] = None,
) -> Tuple[SyncConflict, Resolution]:
    if conflict.is_resolved:
        raise InvalidStateError("Conflit déjà résolu")

    snapshots = {s.get("source"): s for s in (conflict.winning_version, conflict.losing_version)}
    local, server = snapshots.get("local") or {}, snapshots.get("server") or {}
    local_version = int(local.get("version") or 1)
    server_version = int(server.get("version") or 1)

    if strategy == ResolutionStrategy.MANUAL:
        try:
            resolution = conflict_resolution.resolve_manual(
                resolved_data or {},
                local_version=local_version,
                server_version=server_version,
                resolved_at=utcnow(),
            )
        except ValueError as exc:
            raise BusinessValidationError(str(exc)) from exc
    else:
        resolve = (
            conflict_resolution.resolve_merge
            if strategy == ResolutionStrategy.MERGE
            else conflict_resolution.resolve_last_write_wins
        )
        resolution = resolve(
            local.get("data") or {},
            server.get("data") or {},
            local_modified=_parse_snapshot_date(local.get("last_modified")),
            server_modified=_parse_snapshot_date(server.get("last_modified")),
            local_version=local_version,
            server_version=server_version,
        )

    # Applique le résultat sur l’élément si la résolution change les données serveur
    if resolution.winner != "server" and conflict.entity_type in (ChangeType.ASSESSMENT.value, ChangeType.RESPONSE.value):
        model = RapidAssessment if conflict.entity_type == ChangeType.ASSESSMENT.value else RapidResponse
        target = (await db.execute(select(model).where(model.id == _as_uuid(conflict.entity_id)))).scalars().first()
        if target is not None:
            if not _is_modifiable(target, ChangeType(conflict.entity_type)):
                raise InvalidStateError(
                    "Élément verrouillé par le workflow : seule la version serveur peut être retenue",
                    details={"status": target.status},
                )
            await _apply_local(db, target, ChangeType(conflict.entity_type), resolution.data)
            target.version_number = max(int(target.version_number or 1) + 1, resolution.version)
            target.updated_at = utcnow()

    conflict.is_resolved = True
    conflict.resolved_at = utcnow()
    conflict.resolved_by = user.id
    conflict.resolution_method = resolution.strategy
    await db.flush()

    log.info(
        "sync_conflict_resolved",
        extra={"actor": str(user.id), "resource": conflict.entity_type, "resource_id": conflict.entity_id, "new_status": resolution.winner},
    )
    return conflict, resolution


async def mark_notified(db: AsyncSession, conflict: SyncConflict) -> SyncConflict:
    conflict.coordinator_notified = True
    conflict.coordinator_notified_at = utcnow()
    await db.flush()
    return conflict
