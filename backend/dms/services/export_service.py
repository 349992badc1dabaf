from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.models.assessment import RapidAssessment
from dms.models.donor import Donor, DonorCommitment
from dms.models.entity import Entity
from dms.services import gap_service

"""
Export Service (CSV via pandas).

Rôle (fonctionnel) :
- Exports tabulaires pour les partenaires / rapports :
  - évaluations (une ligne par évaluation, écarts aplatis)
  - engagements (une ligne par engagement, donateur + entité)
  - table des écarts de ressources (une ligne par entité x ressource)
- Un DataFrame vide garde ses colonnes (en-tête CSV toujours présent).
"""

ASSESSMENT_COLUMNS = [
    "id",
    "assessment_type",
    "assessment_date",
    "entity_id",
    "entity_name",
    "incident_id",
    "assessor_name",
    "status",
    "verification_status",
    "priority",
    "gap_severity",
    "gap_fields",
    "resource_needs",
    "version_number",
]

COMMITMENT_COLUMNS = [
    "id",
    "donor_id",
    "donor_name",
    "entity_id",
    "entity_name",
    "incident_id",
    "status",
    "items",
    "total_committed_quantity",
    "delivered_quantity",
    "verified_delivered_quantity",
    "remaining_quantity",
    "total_value_estimated",
    "commitment_date",
]

GAP_COLUMNS = [
    "entity_id",
    "entity_name",
    "entity_type",
    "location",
    "resource_type",
    "unit",
    "required",
    "committed",
    "delivered",
    "gap",
    "percentage_met",
    "severity",
    "estimated_value",
]


def to_csv_bytes(df: pd.DataFrame) -> bytes:
    return df.to_csv(index=False).encode("utf-8")


def _frame(rows: List[Dict[str, Any]], columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=columns)


async def _entity_names(db: AsyncSession) -> Dict[uuid.UUID, str]:
    return {eid: name for eid, name in (await db.execute(select(Entity.id, Entity.name))).all()}


async def assessments_frame(
    db: AsyncSession,
    *,
    assessment_type: Optional[str] = None,
    verification_status: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
) -> pd.DataFrame:
    stmt = select(RapidAssessment).order_by(desc(RapidAssessment.assessment_date))
    if assessment_type:
        stmt = stmt.where(RapidAssessment.assessment_type == assessment_type)
    if verification_status:
        stmt = stmt.where(RapidAssessment.verification_status == verification_status)
    if entity_id is not None:
        stmt = stmt.where(RapidAssessment.entity_id == entity_id)

    names = await _entity_names(db)
    rows = []
    for a in (await db.execute(stmt)).scalars().all():
        gap = a.gap_analysis or {}
        rows.append(
            {
                "id": str(a.id),
                "assessment_type": a.assessment_type,
                "assessment_date": a.assessment_date.isoformat(),
                "entity_id": str(a.entity_id),
                "entity_name": names.get(a.entity_id),
                "incident_id": str(a.incident_id) if a.incident_id else None,
                "assessor_name": a.assessor_name,
                "status": a.status,
                "verification_status": a.verification_status,
                "priority": a.priority,
                "gap_severity": gap.get("severity"),
                "gap_fields": ";".join(gap.get("gap_fields") or []),
                "resource_needs": ";".join(
                    f"{n.get('resource_type')}:{n.get('required_quantity')} {n.get('unit')}" for n in a.resource_needs or []
                ),
                "version_number": a.version_number,
            }
        )
    return _frame(rows, ASSESSMENT_COLUMNS)


async def commitments_frame(
    db: AsyncSession,
    *,
    donor_id: Optional[uuid.UUID] = None,
    incident_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
) -> pd.DataFrame:
    stmt = select(DonorCommitment).order_by(desc(DonorCommitment.commitment_date))
    if donor_id is not None:
        stmt = stmt.where(DonorCommitment.donor_id == donor_id)
    if incident_id is not None:
        stmt = stmt.where(DonorCommitment.incident_id == incident_id)
    if status:
        stmt = stmt.where(DonorCommitment.status == status)

    names = await _entity_names(db)
    donors = {did: name for did, name in (await db.execute(select(Donor.id, Donor.name))).all()}

    rows = []
    for c in (await db.execute(stmt)).scalars().all():
        rows.append(
            {
                "id": str(c.id),
                "donor_id": str(c.donor_id),
                "donor_name": donors.get(c.donor_id),
                "entity_id": str(c.entity_id),
                "entity_name": names.get(c.entity_id),
                "incident_id": str(c.incident_id),
                "status": c.status,
                "items": ";".join(f"{i.get('name')}:{i.get('quantity')} {i.get('unit')}" for i in c.items or []),
                "total_committed_quantity": c.total_committed_quantity,
                "delivered_quantity": c.delivered_quantity,
                "verified_delivered_quantity": c.verified_delivered_quantity,
                "remaining_quantity": c.remaining_quantity,
                "total_value_estimated": c.total_value_estimated,
                "commitment_date": c.commitment_date.isoformat(),
            }
        )
    return _frame(rows, COMMITMENT_COLUMNS)


async def gaps_frame(
    db: AsyncSession,
    *,
    severity: Optional[str] = None,
    incident_id: Optional[uuid.UUID] = None,
) -> pd.DataFrame:
    dashboard = await gap_service.gap_dashboard(db, severity=severity, incident_id=incident_id)

    rows = []
    for e in dashboard["entities"]:
        info = e["entity"]
        for g in e["gaps"]:
            rows.append(
                {
                    "entity_id": e["entity_id"],
                    "entity_name": info.get("name"),
                    "entity_type": info.get("type"),
                    "location": info.get("location"),
                    **{k: g[k] for k in GAP_COLUMNS[4:]},
                }
            )

    df = _frame(rows, GAP_COLUMNS)
    if not df.empty:
        df = df.sort_values(["estimated_value", "gap"], ascending=False, kind="stable")
    return df
