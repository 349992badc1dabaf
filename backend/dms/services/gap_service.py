from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import NotFoundError
from dms.models.assessment import RapidAssessment
from dms.models.donor import Donor, DonorCommitment
from dms.models.entity import Entity
from dms.models.gap_field_severity import GapFieldSeverity
from dms.models.incident import IncidentEntity
from dms.models.response import RapidResponse
from dms.schemas.common import OPEN_COMMITMENT_STATUSES, VERIFIED_STATUSES
from dms.services import donor_matching, gap_analysis
from dms.services.gap_analysis import AssessmentGapResult, ResourceGap

"""
Gap Service (accès DB autour de services.gap_analysis / services.donor_matching).

Rôle (fonctionnel) :
- Sévérités configurées des champs d’écart (lecture, mise à jour unitaire / en masse).
- Analyse d’écarts d’une évaluation avec les sévérités configurées.
- Écarts de ressources d’une entité (besoins vérifiés vs engagements vs livraisons).
- Dashboard des écarts (toutes entités, filtres sévérité / entité / incident).
- Recommandations de donateurs pour une entité.
"""


# ---------------------------------------------------------------------------
# Sévérités des champs d’écart
# ---------------------------------------------------------------------------


async def severity_overrides(db: AsyncSession, assessment_type: str) -> Dict[str, str]:
    rows = (
        await db.execute(select(GapFieldSeverity).where(GapFieldSeverity.assessment_type == assessment_type))
    ).scalars().all()
    return {r.field_name: r.severity for r in rows}


async def list_field_severities(db: AsyncSession, assessment_type: Optional[str] = None) -> List[Dict[str, Any]]:
    """Champs d’écart avec leur sévérité effective (configurée sinon par défaut)."""
    types = [assessment_type] if assessment_type else list(gap_analysis.GAP_FIELDS)
    out: List[Dict[str, Any]] = []
    for atype in types:
        configured = {
            r.field_name: r
            for r in (
                await db.execute(select(GapFieldSeverity).where(GapFieldSeverity.assessment_type == atype))
            ).scalars().all()
        }
        for rule in gap_analysis.gap_fields_for(atype):
            row = configured.get(rule.field)
            out.append(
                {
                    "id": str(row.id) if row else None,
                    "assessment_type": atype,
                    "field_name": rule.field,
                    "display_name": (row.display_name if row and row.display_name else rule.label),
                    "severity": row.severity if row else rule.severity,
                    "default_severity": rule.severity,
                    "gap_when": rule.gap_when,
                    "recommendation": rule.recommendation,
                    "updated_at": row.updated_at if row else None,
                }
            )
    return out


async def set_field_severity(
    db: AsyncSession,
    *,
    assessment_type: str,
    field_name: str,
    severity: str,
    user_id: Optional[uuid.UUID] = None,
    display_name: Optional[str] = None,
) -> GapFieldSeverity:
    known = {r.field for r in gap_analysis.gap_fields_for(assessment_type)}
    if field_name not in known:
        raise NotFoundError("Champ d’écart inconnu", details={"assessment_type": assessment_type, "field_name": field_name})

    row = (
        await db.execute(
            select(GapFieldSeverity).where(
                GapFieldSeverity.assessment_type == assessment_type,
                GapFieldSeverity.field_name == field_name,
            )
        )
    ).scalars().first()
    if row is None:
        row = GapFieldSeverity(assessment_type=assessment_type, field_name=field_name)
        db.add(row)

    row.severity = severity
    row.updated_by = user_id
    if display_name is not None:
        row.display_name = display_name
    await db.flush()
    return row


async def analyze_assessment(db: AsyncSession, assessment_type: str, data: Dict[str, Any]) -> AssessmentGapResult:
    overrides = await severity_overrides(db, assessment_type)
    return gap_analysis.analyze_assessment(assessment_type, data, overrides)


# ---------------------------------------------------------------------------
# Écarts de ressources
# ---------------------------------------------------------------------------


def latest_per_type(assessments: Sequence[RapidAssessment]) -> List[RapidAssessment]:
    latest: Dict[Tuple[uuid.UUID, str], RapidAssessment] = {}
    for a in assessments:
        key = (a.entity_id, a.assessment_type)
        current = latest.get(key)
        if current is None or a.assessment_date > current.assessment_date:
            latest[key] = a
    return list(latest.values())


async def _gap_inputs(
    db: AsyncSession,
    entity_ids: Optional[Sequence[uuid.UUID]],
) -> Dict[uuid.UUID, Tuple[List[Dict[str, Any]], Dict[str, float], Dict[str, float]]]:
    """Pour chaque entité : (besoins, engagé non livré, livré)."""
    a_stmt = select(RapidAssessment).where(RapidAssessment.verification_status.in_(VERIFIED_STATUSES))
    c_stmt = select(DonorCommitment).where(DonorCommitment.status.in_(OPEN_COMMITMENT_STATUSES))
    r_stmt = select(RapidResponse).where(RapidResponse.status == "DELIVERED")
    if entity_ids is not None:
        a_stmt = a_stmt.where(RapidAssessment.entity_id.in_(entity_ids))
        c_stmt = c_stmt.where(DonorCommitment.entity_id.in_(entity_ids))
        r_stmt = r_stmt.where(RapidResponse.entity_id.in_(entity_ids))

    needs: Dict[uuid.UUID, List[Dict[str, Any]]] = {}
    for a in latest_per_type((await db.execute(a_stmt)).scalars().all()):
        needs.setdefault(a.entity_id, []).extend(a.resource_needs or [])

    committed: Dict[uuid.UUID, Dict[str, float]] = {}
    for c in (await db.execute(c_stmt)).scalars().all():
        total = float(c.total_committed_quantity or 0)
        # Reliquat non livré, réparti au prorata des articles
        ratio = (c.remaining_quantity / total) if total > 0 else 0.0
        bucket = committed.setdefault(c.entity_id, {})
        for key, qty in gap_analysis.sum_items(c.items, ratio).items():
            bucket[key] = bucket.get(key, 0.0) + qty

    delivered: Dict[uuid.UUID, Dict[str, float]] = {}
    for r in (await db.execute(r_stmt)).scalars().all():
        bucket = delivered.setdefault(r.entity_id, {})
        for key, qty in gap_analysis.sum_items(r.delivered_items or r.items).items():
            bucket[key] = bucket.get(key, 0.0) + qty

    return {eid: (n, committed.get(eid, {}), delivered.get(eid, {})) for eid, n in needs.items()}


async def entity_resource_gaps(db: AsyncSession, entity_id: uuid.UUID) -> List[ResourceGap]:
    entity = (await db.execute(select(Entity).where(Entity.id == entity_id))).scalars().first()
    if not entity:
        raise NotFoundError("Entité introuvable")

    inputs = await _gap_inputs(db, [entity_id])
    if entity_id not in inputs:
        return []
    needs, committed, delivered = inputs[entity_id]
    return gap_analysis.compute_resource_gaps(needs, committed, delivered)


async def gap_dashboard(
    db: AsyncSession,
    *,
    severity: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    incident_id: Optional[uuid.UUID] = None,
) -> Dict[str, Any]:
    entity_ids: Optional[List[uuid.UUID]] = None
    if entity_id is not None:
        entity_ids = [entity_id]
    if incident_id is not None:
        linked = [
            r[0]
            for r in (
                await db.execute(select(IncidentEntity.entity_id).where(IncidentEntity.incident_id == incident_id))
            ).all()
        ]
        entity_ids = [e for e in linked if entity_ids is None or e in entity_ids]

    inputs = await _gap_inputs(db, entity_ids)
    if not inputs:
        return gap_analysis.summarize_entities({})

    entities = {
        e.id: e
        for e in (await db.execute(select(Entity).where(Entity.id.in_(list(inputs))))).scalars().all()
    }

    per_entity = {}
    for eid, (needs, committed, delivered) in inputs.items():
        e = entities.get(eid)
        if e is None:
            continue
        info = {"id": str(e.id), "name": e.name, "type": e.type, "location": e.location}
        per_entity[str(eid)] = (info, gap_analysis.compute_resource_gaps(needs, committed, delivered))

    return gap_analysis.summarize_entities(per_entity, severity=severity)


async def donor_recommendations(db: AsyncSession, entity_id: uuid.UUID, *, limit: int = 10) -> Dict[str, Any]:
    gaps = await entity_resource_gaps(db, entity_id)
    open_gaps = donor_matching.sort_gaps(gaps)

    if not open_gaps:
        return {"entity_id": str(entity_id), "gaps": [], "recommendations": []}

    donors = (await db.execute(select(Donor).where(Donor.is_active.is_(True)))).scalars().all()
    history = (
        await db.execute(select(DonorCommitment).where(DonorCommitment.status != "CANCELLED"))
    ).scalars().all()

    capabilities = donor_matching.donor_capabilities(
        {"donor_id": c.donor_id, "items": c.items} for c in history
    )
    ranked = donor_matching.rank_donors(
        open_gaps,
        [{"id": d.id, "name": d.name, "type": d.type, "is_active": d.is_active} for d in donors],
        capabilities,
        limit=limit,
    )
    return {
        "entity_id": str(entity_id),
        "gaps": [g.to_dict() for g in open_gaps],
        "recommendations": [r.to_dict() for r in ranked],
    }
