from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import NotFoundError
from dms.db.base import utcnow
from dms.models.donor import Donor, DonorCommitment
from dms.models.response import RapidResponse
from dms.schemas.common import VERIFIED_STATUSES

"""
Performance Trends (pandas).

Rôle (fonctionnel) :
- Séries temporelles de performance d’un donateur (ou de l’ensemble des donateurs) :
  engagements, engagements complétés, taux de livraison, valeur engagée, réponses, réponses vérifiées.
- Agrégation par semaine / mois / trimestre sur 3 mois, 6 mois, 1 an ou 2 ans.
- Les périodes sans activité sont présentes avec des zéros (courbes continues côté UI).
"""

TREND_TIMEFRAMES = {"3m": 91, "6m": 182, "1y": 365, "2y": 730}
GRANULARITY_FREQ = {"week": "W-SUN", "month": "M", "quarter": "Q"}


def naive_utc(value: datetime) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    return ts.tz_convert("UTC").tz_localize(None) if ts.tzinfo is not None else ts


def period_label(period: pd.Period, granularity: str) -> str:
    if granularity == "week":
        start = period.start_time
        iso = start.isocalendar()
        return f"{iso[0]}-W{iso[1]:02d}"
    if granularity == "quarter":
        return f"{period.year}-Q{period.quarter}"
    return f"{period.year}-{period.month:02d}"


def build_trends(
    commitments: Sequence[Mapping[str, Any]],
    responses: Sequence[Mapping[str, Any]],
    *,
    start: datetime,
    end: datetime,
    granularity: str = "month",
) -> List[Dict[str, Any]]:
    """
    Construit la série agrégée.

    - commitments : {commitment_date, status, total_committed_quantity, delivered_quantity, total_value_estimated}
    - responses : {created_at, verification_status}
    """
    freq = GRANULARITY_FREQ.get(granularity)
    if freq is None:
        raise ValueError(f"granularité inconnue: {granularity}")

    periods = pd.period_range(start=naive_utc(start), end=naive_utc(end), freq=freq)
    frame = pd.DataFrame(index=periods)

    if commitments:
        c = pd.DataFrame(list(commitments))
        c["period"] = pd.to_datetime(c["commitment_date"], utc=True).dt.tz_localize(None).dt.to_period(freq)
        c["completed"] = (c["status"] == "COMPLETE").astype(int)
        c["total_value_estimated"] = c["total_value_estimated"].fillna(0.0)
        grouped = c.groupby("period").agg(
            commitments=("status", "size"),
            completed=("completed", "sum"),
            committed_items=("total_committed_quantity", "sum"),
            delivered_items=("delivered_quantity", "sum"),
            value=("total_value_estimated", "sum"),
        )
        frame = frame.join(grouped)

    if responses:
        r = pd.DataFrame(list(responses))
        r["period"] = pd.to_datetime(r["created_at"], utc=True).dt.tz_localize(None).dt.to_period(freq)
        r["verified"] = r["verification_status"].isin(VERIFIED_STATUSES).astype(int)
        grouped = r.groupby("period").agg(responses=("verified", "size"), verified_responses=("verified", "sum"))
        frame = frame.join(grouped)

    for col in ("commitments", "completed", "committed_items", "delivered_items", "value", "responses", "verified_responses"):
        if col not in frame.columns:
            frame[col] = 0
    frame = frame.fillna(0)

    committed = frame["committed_items"].astype(float)
    frame["delivery_rate"] = (frame["delivered_items"].astype(float) / committed.where(committed > 0) * 100.0).fillna(0.0)

    points: List[Dict[str, Any]] = []
    for period, row in frame.iterrows():
        points.append(
            {
                "period": period_label(period, granularity),
                "start": period.start_time.date().isoformat(),
                "commitments": int(row["commitments"]),
                "completed_commitments": int(row["completed"]),
                "committed_items": int(row["committed_items"]),
                "delivered_items": int(row["delivered_items"]),
                "delivery_rate": round(float(row["delivery_rate"]), 2),
                "value": round(float(row["value"]), 2),
                "responses": int(row["responses"]),
                "verified_responses": int(row["verified_responses"]),
            }
        )
    return points


async def donor_trends(
    db: AsyncSession,
    *,
    donor_id: Optional[uuid.UUID] = None,
    timeframe: str = "6m",
    granularity: str = "month",
) -> Dict[str, Any]:
    days = TREND_TIMEFRAMES.get(timeframe)
    if days is None:
        raise ValueError(f"timeframe inconnu: {timeframe}")

    end = utcnow()
    start = end - timedelta(days=days)

    c_stmt = select(DonorCommitment).where(DonorCommitment.commitment_date >= start)
    r_stmt = select(RapidResponse).where(RapidResponse.donor_id.is_not(None), RapidResponse.created_at >= start)

    if donor_id is not None:
        exists = (await db.execute(select(Donor.id).where(Donor.id == donor_id))).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Donateur introuvable")
        c_stmt = c_stmt.where(DonorCommitment.donor_id == donor_id)
        r_stmt = r_stmt.where(RapidResponse.donor_id == donor_id)

    commitments = [
        {
            "commitment_date": c.commitment_date,
            "status": c.status,
            "total_committed_quantity": c.total_committed_quantity,
            "delivered_quantity": c.delivered_quantity,
            "total_value_estimated": c.total_value_estimated,
        }
        for c in (await db.execute(c_stmt)).scalars().all()
    ]
    responses = [
        {"created_at": r.created_at, "verification_status": r.verification_status}
        for r in (await db.execute(r_stmt)).scalars().all()
    ]

    points = build_trends(commitments, responses, start=start, end=end, granularity=granularity)

    totals = {
        "commitments": sum(p["commitments"] for p in points),
        "value": round(sum(p["value"] for p in points), 2),
        "responses": sum(p["responses"] for p in points),
    }
    return {
        "donor_id": str(donor_id) if donor_id else None,
        "timeframe": timeframe,
        "granularity": granularity,
        "points": points,
        "totals": totals,
    }
