from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlalchemy import case, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from dms.db.base import utcnow
from dms.models.assessment import RapidAssessment
from dms.models.entity import Entity
from dms.models.incident import Incident
from dms.models.user import User
from dms.schemas.assessments import AssessmentCreate, AssessmentOut, AssessmentUpdate, validate_typed_data
from dms.schemas.common import PRIORITY_RANK
from dms.services import auto_approval, entity_assignment_service, gap_service

"""
Assessment Service.

Rôle (fonctionnel) :
- Cycle de vie des évaluations rapides : création, mise à jour, suppression, soumission.
- Calcul (et stockage) de l’analyse d’écarts à chaque écriture des données typées.
- Visibilité par rôle pour le listing et le détail.

Règles :
- création : l’auteur doit être affecté à l’entité (sauf coordinateur), entité active,
  incident existant si fourni ; statut DRAFT ; priorité par défaut = sévérité des écarts.
- mise à jour : auteur uniquement, en DRAFT ou après rejet ; version +1.
- suppression : auteur uniquement, en DRAFT.
- soumission : auteur uniquement, depuis DRAFT ; puis évaluation de l’auto-approbation.
- listing : un évaluateur voit ses évaluations, un intervenant celles de ses entités,
  un coordinateur toutes.
"""

log = logging.getLogger("dms.assessments")


def serialize(a: RapidAssessment) -> Dict[str, Any]:
    return AssessmentOut.model_validate(a).model_dump(mode="json")


def priority_order():
    # Priorité desc puis date asc (files de vérification)
    return [desc(case(PRIORITY_RANK, value=RapidAssessment.priority, else_=0)), RapidAssessment.created_at]


async def active_entity(db: AsyncSession, entity_id: uuid.UUID) -> Entity:
    entity = (await db.execute(select(Entity).where(Entity.id == entity_id))).scalars().first()
    if not entity:
        raise NotFoundError("Entité introuvable", details={"entity_id": str(entity_id)})
    if not entity.is_active:
        raise InvalidStateError("Entité inactive", details={"entity_id": str(entity_id)})
    return entity


async def ensure_incident(db: AsyncSession, incident_id: Optional[uuid.UUID]) -> None:
    if incident_id is None:
        return
    found = (await db.execute(select(Incident.id).where(Incident.id == incident_id))).first()
    if not found:
        raise NotFoundError("Incident introuvable", details={"incident_id": str(incident_id)})


async def get_assessment(db: AsyncSession, assessment_id: uuid.UUID) -> RapidAssessment:
    a = (await db.execute(select(RapidAssessment).where(RapidAssessment.id == assessment_id))).scalars().first()
    if not a:
        raise NotFoundError("Évaluation introuvable")
    return a


async def get_by_offline_id(db: AsyncSession, offline_id: str) -> Optional[RapidAssessment]:
    return (
        await db.execute(select(RapidAssessment).where(RapidAssessment.offline_id == offline_id))
    ).scalars().first()


def _ensure_owner(a: RapidAssessment, user: User) -> None:
    if a.assessor_id != user.id:
        raise ForbiddenError("Seul l’auteur de l’évaluation peut la modifier")


def is_editable(a: RapidAssessment) -> bool:
    return a.status == "DRAFT" or a.verification_status == "REJECTED"


async def create_assessment(
    db: AsyncSession,
    user: User,
    payload: AssessmentCreate,
    *,
    sync_status: str = "SYNCED",
) -> RapidAssessment:
    entity = await active_entity(db, payload.entity_id)
    if not await entity_assignment_service.can_access_entity(db, user, entity.id):
        raise ForbiddenError("Vous n’êtes pas affecté à cette entité", details={"entity_id": str(entity.id)})
    await ensure_incident(db, payload.incident_id)

    if payload.offline_id and await get_by_offline_id(db, payload.offline_id):
        raise ConflictError("offline_id déjà utilisé", details={"offline_id": payload.offline_id})

    gaps = await gap_service.analyze_assessment(db, payload.assessment_type.value, payload.data)

    a = RapidAssessment(
        assessment_type=payload.assessment_type.value,
        assessment_date=payload.assessment_date or utcnow(),
        assessor_id=user.id,
        assessor_name=user.name,
        entity_id=entity.id,
        incident_id=payload.incident_id,
        location=payload.location or entity.location,
        coordinates=payload.coordinates.model_dump() if payload.coordinates else entity.coordinates,
        status="DRAFT",
        priority=payload.priority.value if payload.priority else gaps.severity,
        version_number=1,
        data=payload.data,
        resource_needs=[n.model_dump(mode="json") for n in payload.resource_needs],
        gap_analysis=gaps.to_dict(),
        media_attachments=list(payload.media_attachments),
        is_offline_created=payload.is_offline_created,
        offline_id=payload.offline_id,
        sync_status=sync_status,
        verification_status="DRAFT",
    )
    db.add(a)
    await db.flush()

    log.info(
        "assessment_created",
        extra={"actor": str(user.id), "resource_id": str(a.id), "entity_id": str(entity.id), "offline_id": a.offline_id},
    )
    return a


async def update_assessment(
    db: AsyncSession,
    user: User,
    a: RapidAssessment,
    payload: AssessmentUpdate,
) -> RapidAssessment:
    _ensure_owner(a, user)
    if not is_editable(a):
        raise InvalidStateError(
            "Évaluation non modifiable dans cet état",
            details={"status": a.status, "verification_status": a.verification_status},
        )
    if payload.version_number is not None and payload.version_number != a.version_number:
        raise ConflictError(
            "Version obsolète",
            details={"current_version": a.version_number, "client_version": payload.version_number},
        )

    await apply_changes(db, a, payload)
    a.version_number = (a.version_number or 1) + 1
    a.updated_at = utcnow()
    await db.flush()
    return a


async def apply_changes(db: AsyncSession, a: RapidAssessment, payload: AssessmentUpdate) -> None:
    """Applique les champs fournis (sans contrôle d’état ni de version)."""
    fields = payload.model_dump(exclude_unset=True, exclude={"version_number"})

    if "incident_id" in fields:
        await ensure_incident(db, payload.incident_id)
        a.incident_id = payload.incident_id
    if "assessment_date" in fields and payload.assessment_date is not None:
        a.assessment_date = payload.assessment_date
    if "location" in fields:
        a.location = payload.location
    if "coordinates" in fields:
        a.coordinates = payload.coordinates.model_dump() if payload.coordinates else None
    if "resource_needs" in fields and payload.resource_needs is not None:
        a.resource_needs = [n.model_dump(mode="json") for n in payload.resource_needs]
    if "media_attachments" in fields and payload.media_attachments is not None:
        a.media_attachments = list(payload.media_attachments)

    if "data" in fields and payload.data is not None:
        a.data = validate_typed_data(a.assessment_type, payload.data)
        gaps = await gap_service.analyze_assessment(db, a.assessment_type, a.data)
        a.gap_analysis = gaps.to_dict()
        if payload.priority is None:
            a.priority = gaps.severity
    if payload.priority is not None:
        a.priority = payload.priority.value


async def delete_assessment(db: AsyncSession, user: User, a: RapidAssessment) -> None:
    _ensure_owner(a, user)
    if a.status != "DRAFT":
        raise InvalidStateError("Seules les évaluations en brouillon peuvent être supprimées", details={"status": a.status})
    await db.delete(a)
    await db.flush()


async def submit_assessment(db: AsyncSession, user: User, a: RapidAssessment) -> Tuple[RapidAssessment, bool]:
    """Soumet l’évaluation ; renvoie (évaluation, auto_approuvée)."""
    _ensure_owner(a, user)
    if a.status != "DRAFT":
        raise InvalidStateError("Seules les évaluations en brouillon peuvent être soumises", details={"status": a.status})

    now = utcnow()
    a.status = "SUBMITTED"
    a.verification_status = "SUBMITTED"
    a.submitted_at = now
    a.rejection_reason = None
    a.rejection_feedback = None

    entity = (await db.execute(select(Entity).where(Entity.id == a.entity_id))).scalars().first()
    auto = auto_approval.qualifies(
        entity,
        kind="assessments",
        item_type=a.assessment_type,
        priority=a.priority,
        attachments=a.media_attachments or [],
    )
    if auto:
        a.status = "VERIFIED"
        a.verification_status = "AUTO_VERIFIED"
        a.verified_at = now
        a.verified_by = "system"

    await db.flush()
    log.info(
        "assessment_submitted",
        extra={
            "actor": str(user.id),
            "resource_id": str(a.id),
            "entity_id": str(a.entity_id),
            "new_status": a.verification_status,
        },
    )
    return a, auto


async def ensure_can_view(db: AsyncSession, user: User, a: RapidAssessment) -> None:
    if user.has_role(*entity_assignment_service.UNRESTRICTED_ROLES):
        return
    if a.assessor_id == user.id:
        return
    if user.has_role("RESPONDER", "DONOR") and await entity_assignment_service.is_assigned(db, user.id, a.entity_id):
        return
    raise ForbiddenError("Accès refusé à cette évaluation")


async def _visibility_condition(db: AsyncSession, user: User):
    if user.has_role(*entity_assignment_service.UNRESTRICTED_ROLES):
        return None
    own = RapidAssessment.assessor_id == user.id
    if user.has_role("RESPONDER", "DONOR"):
        entity_ids = await entity_assignment_service.assigned_entity_ids(db, user.id)
        if entity_ids:
            return or_(own, RapidAssessment.entity_id.in_(entity_ids))
    return own


async def list_assessments(
    db: AsyncSession,
    user: User,
    *,
    assessment_type: Optional[str] = None,
    status: Optional[str] = None,
    verification_status: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    incident_id: Optional[uuid.UUID] = None,
    priority: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[Sequence[RapidAssessment], int]:
    conditions = []
    visibility = await _visibility_condition(db, user)
    if visibility is not None:
        conditions.append(visibility)
    if assessment_type:
        conditions.append(RapidAssessment.assessment_type == assessment_type)
    if status:
        conditions.append(RapidAssessment.status == status)
    if verification_status:
        conditions.append(RapidAssessment.verification_status == verification_status)
    if entity_id is not None:
        conditions.append(RapidAssessment.entity_id == entity_id)
    if incident_id is not None:
        conditions.append(RapidAssessment.incident_id == incident_id)
    if priority:
        conditions.append(RapidAssessment.priority == priority)

    total = (await db.execute(select(func.count()).select_from(RapidAssessment).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(RapidAssessment)
            .where(*conditions)
            .order_by(desc(RapidAssessment.assessment_date))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()
    return rows, total
