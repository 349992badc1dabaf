from __future__ import annotations

import uuid
from collections import Counter
from typing import Dict, List

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import NotFoundError
from dms.models.assessment import RapidAssessment
from dms.models.donor import DonorCommitment
from dms.models.entity import Entity
from dms.models.incident import Incident, IncidentEntity
from dms.models.response import RapidResponse
from dms.models.sync_conflict import SyncConflict
from dms.schemas.common import OPEN_COMMITMENT_STATUSES, VERIFIED_STATUSES
from dms.schemas.dashboard import (
    EntityAssessmentSnapshot,
    IncidentEntitySummary,
    IncidentOverviewItem,
    IncidentSummaryOut,
    SituationKpis,
    SituationOverviewOut,
)
from dms.services import gap_service
from dms.services.gap_service import latest_per_type

"""
Dashboard Service (situation).

Rôle (fonctionnel) :
- Calcule la “vue situation” de la coordination (1 endpoint = 1 payload complet) :
  - KPI (incidents actifs, vérifications en attente, écarts, livraisons, conflits)
  - répartition des incidents par statut / sévérité
  - liste des incidents avec le nombre d’entités touchées
- Synthèse d’un incident : entités touchées avec leur dernière évaluation vérifiée par type,
  population (évaluations POPULATION), engagements actifs, réponses.

Notes :
- L’objectif est que le front consomme un objet stable sans assembler plusieurs endpoints.
"""

POPULATION_FIELDS = (
    "totalHouseholds",
    "totalPopulation",
    "populationMale",
    "populationFemale",
    "populationUnder5",
    "pregnantWomen",
    "lactatingMothers",
    "personWithDisability",
    "elderlyPersons",
    "separatedChildren",
    "numberLivesLost",
    "numberInjured",
)


async def _count(db: AsyncSession, model, *conditions) -> int:
    return int((await db.execute(select(func.count()).select_from(model).where(*conditions))).scalar() or 0)


async def get_situation_overview(db: AsyncSession, *, limit: int = 50) -> SituationOverviewOut:
    incidents = (await db.execute(select(Incident).order_by(desc(Incident.created_at)))).scalars().all()

    links = (
        await db.execute(
            select(IncidentEntity.incident_id, func.count(IncidentEntity.entity_id)).group_by(IncidentEntity.incident_id)
        )
    ).all()
    affected_by_incident: Dict[uuid.UUID, int] = {i: int(n) for i, n in links}

    active_ids = [i.id for i in incidents if i.status == "ACTIVE"]
    affected_entities = 0
    if active_ids:
        affected_entities = int(
            (
                await db.execute(
                    select(func.count(func.distinct(IncidentEntity.entity_id))).where(
                        IncidentEntity.incident_id.in_(active_ids)
                    )
                )
            ).scalar()
            or 0
        )

    gaps = (await gap_service.gap_dashboard(db))["summary"]

    kpis = SituationKpis(
        active_incidents=len(active_ids),
        affected_entities=affected_entities,
        pending_assessment_verifications=await _count(db, RapidAssessment, RapidAssessment.verification_status == "SUBMITTED"),
        pending_delivery_verifications=await _count(
            db,
            RapidResponse,
            RapidResponse.status == "DELIVERED",
            RapidResponse.verification_status == "SUBMITTED",
        ),
        planned_responses=await _count(db, RapidResponse, RapidResponse.status == "PLANNED"),
        delivered_responses=await _count(db, RapidResponse, RapidResponse.status == "DELIVERED"),
        open_commitments=await _count(db, DonorCommitment, DonorCommitment.status.in_(OPEN_COMMITMENT_STATUSES)),
        open_gaps=int(gaps["total_gaps"]),
        critical_gaps=int(gaps["critical_gaps"]),
        unresolved_conflicts=await _count(db, SyncConflict, SyncConflict.is_resolved.is_(False)),
    )

    items = [
        IncidentOverviewItem(
            id=str(i.id),
            type=i.type,
            sub_type=i.sub_type,
            severity=i.severity,
            status=i.status,
            location=i.location,
            affected_entities=affected_by_incident.get(i.id, 0),
            created_at=i.created_at,
        )
        for i in incidents[:limit]
    ]

    return SituationOverviewOut(
        kpis=kpis,
        incidents_by_status=dict(Counter(i.status for i in incidents)),
        incidents_by_severity=dict(Counter(i.severity for i in incidents)),
        incidents=items,
    )


def _population(a: RapidAssessment) -> Dict[str, int]:
    data = a.data or {}
    return {f: int(data.get(f) or 0) for f in POPULATION_FIELDS}


async def get_incident_summary(db: AsyncSession, incident_id: uuid.UUID) -> IncidentSummaryOut:
    incident = (await db.execute(select(Incident).where(Incident.id == incident_id))).scalars().first()
    if not incident:
        raise NotFoundError("Incident introuvable")

    entities = (
        await db.execute(
            select(Entity)
            .join(IncidentEntity, IncidentEntity.entity_id == Entity.id)
            .where(IncidentEntity.incident_id == incident_id)
            .order_by(Entity.name)
        )
    ).scalars().all()
    entity_ids = [e.id for e in entities]

    latest: Dict[uuid.UUID, List[RapidAssessment]] = {}
    commitments: List[DonorCommitment] = []
    responses: List[RapidResponse] = []
    if entity_ids:
        verified = (
            await db.execute(
                select(RapidAssessment).where(
                    RapidAssessment.entity_id.in_(entity_ids),
                    RapidAssessment.verification_status.in_(VERIFIED_STATUSES),
                )
            )
        ).scalars().all()
        for a in latest_per_type(verified):
            latest.setdefault(a.entity_id, []).append(a)

        commitments = (
            await db.execute(select(DonorCommitment).where(DonorCommitment.incident_id == incident_id))
        ).scalars().all()
        responses = (
            await db.execute(select(RapidResponse).where(RapidResponse.entity_id.in_(entity_ids)))
        ).scalars().all()

    population_totals = {f: 0 for f in POPULATION_FIELDS}
    summaries: List[IncidentEntitySummary] = []
    for e in entities:
        snapshots = []
        population = {f: 0 for f in POPULATION_FIELDS}
        for a in sorted(latest.get(e.id, []), key=lambda x: x.assessment_type):
            gap = a.gap_analysis or {}
            snapshots.append(
                EntityAssessmentSnapshot(
                    assessment_id=str(a.id),
                    assessment_type=a.assessment_type,
                    assessment_date=a.assessment_date,
                    verification_status=a.verification_status,
                    gap_severity=gap.get("severity", "LOW"),
                    has_gap=bool(gap.get("has_gap")),
                    gap_fields=list(gap.get("gap_fields") or []),
                )
            )
            if a.assessment_type == "POPULATION":
                population = _population(a)

        for f, v in population.items():
            population_totals[f] += v

        entity_responses = [r for r in responses if r.entity_id == e.id]
        summaries.append(
            IncidentEntitySummary(
                id=str(e.id),
                name=e.name,
                type=e.type,
                location=e.location,
                latest_assessments=snapshots,
                population=population,
                active_commitments=sum(
                    1 for c in commitments if c.entity_id == e.id and c.status in OPEN_COMMITMENT_STATUSES
                ),
                responses=dict(Counter(r.status for r in entity_responses)),
            )
        )

    return IncidentSummaryOut(
        incident={
            "id": str(incident.id),
            "type": incident.type,
            "sub_type": incident.sub_type,
            "severity": incident.severity,
            "status": incident.status,
            "location": incident.location,
            "created_at": incident.created_at.isoformat(),
        },
        entities=summaries,
        population_totals=population_totals,
        commitments={
            "total": len(commitments),
            "by_status": dict(Counter(c.status for c in commitments)),
            "total_committed_quantity": sum(int(c.total_committed_quantity or 0) for c in commitments),
            "delivered_quantity": sum(int(c.delivered_quantity or 0) for c in commitments),
        },
        responses=dict(Counter(r.status for r in responses)),
    )
