from __future__ import annotations

import logging
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import NotFoundError
from dms.db.base import as_utc, utcnow
from dms.models.donor import Donor, DonorCommitment
from dms.models.entity import Entity
from dms.models.response import RapidResponse
from dms.schemas.common import VERIFIED_STATUSES

"""
Gamification Service.

Rôle (fonctionnel) :
- Calcule les indicateurs de performance d’un donateur sur une période
  (taux de livraison déclaré / vérifié, volume, fréquence d’activité, délai de réponse).
- Produit un score global pondéré et des badges (or / argent / bronze).
- Construit le classement (leaderboard) et, sur demande, persiste rangs et taux sur les donateurs.

Score global :
- 40% taux de livraison vérifié (plafonné à 100)
- 30% valeur engagée (10 000 = 100)
- 20% régularité (fréquence d’activité × 1000, plafonnée à 100)
- 10% rapidité (100 - heures moyennes / 24 × 20, plancher 0)
"""

log = logging.getLogger("dms.gamification")

RANKING_WEIGHTS = {
    "verified_delivery_rate": 0.4,
    "commitment_value": 0.3,
    "consistency": 0.2,
    "response_speed": 0.1,
}

BADGE_THRESHOLDS = {
    "delivery_rate": {"Gold": 95, "Silver": 85, "Bronze": 70},
    "volume": {"Gold": 50, "Silver": 25, "Bronze": 10},
    "response_time": {"Gold": 6, "Silver": 12, "Bronze": 24},  # heures (plus bas = mieux)
    "consistency": {"Gold": 12, "Silver": 6, "Bronze": 3},  # mois d’activité
}

TIMEFRAME_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365, "all": None}

SORT_KEYS = {
    "overall": "overall_score",
    "delivery_rate": "verified_delivery_rate",
    "commitment_value": "total_commitment_value",
    "consistency": "activity_frequency",
}

DEFAULT_RESPONSE_HOURS = 24.0
MAX_RESPONSE_HOURS = 168.0


@dataclass
class DonorMetrics:
    donor_id: str
    total_commitments: int = 0
    completed_commitments: int = 0
    total_committed_items: int = 0
    total_delivered_items: int = 0
    total_verified_items: int = 0
    total_commitment_value: float = 0.0
    self_reported_delivery_rate: float = 0.0
    verified_delivery_rate: float = 0.0
    total_responses: int = 0
    verified_responses: int = 0
    response_verification_rate: float = 0.0
    activity_frequency: float = 0.0
    avg_response_time_hours: float = DEFAULT_RESPONSE_HOURS
    months_active: int = 0
    overall_score: float = 0.0
    badges: List[str] = field(default_factory=list)
    last_activity_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def timeframe_start(timeframe: str, now: Optional[datetime] = None) -> Optional[datetime]:
    if timeframe not in TIMEFRAME_DAYS:
        raise ValueError(f"timeframe inconnu: {timeframe}")
    days = TIMEFRAME_DAYS[timeframe]
    if days is None:
        return None
    return (now or utcnow()) - timedelta(days=days)


def overall_score(
    *,
    verified_delivery_rate: float,
    total_commitment_value: float,
    activity_frequency: float,
    avg_response_time_hours: float,
) -> float:
    delivery = min(100.0, verified_delivery_rate)
    value = min(100.0, total_commitment_value / 10000.0 * 100.0)
    consistency = min(100.0, activity_frequency * 1000.0)
    speed = max(0.0, 100.0 - (avg_response_time_hours / 24.0) * 20.0)

    score = (
        delivery * RANKING_WEIGHTS["verified_delivery_rate"]
        + value * RANKING_WEIGHTS["commitment_value"]
        + consistency * RANKING_WEIGHTS["consistency"]
        + speed * RANKING_WEIGHTS["response_speed"]
    )
    return round(score, 2)


def achievement_badges(
    *,
    verified_delivery_rate: float,
    completed_commitments: int,
    avg_response_time_hours: float,
    months_active: int,
) -> List[str]:
    badges: List[str] = []

    def _at_least(label: str, value: float, thresholds: Mapping[str, float]) -> None:
        for tier in ("Gold", "Silver", "Bronze"):
            if value >= thresholds[tier]:
                badges.append(f"{label} {tier}")
                return

    _at_least("Reliable Delivery", verified_delivery_rate, BADGE_THRESHOLDS["delivery_rate"])
    _at_least("High Volume", completed_commitments, BADGE_THRESHOLDS["volume"])

    # Délai de réponse : seuil maximal
    for tier in ("Gold", "Silver", "Bronze"):
        if avg_response_time_hours <= BADGE_THRESHOLDS["response_time"][tier]:
            badges.append(f"Quick Response {tier}")
            break

    _at_least("Consistency", months_active, BADGE_THRESHOLDS["consistency"])
    return badges


def compute_metrics(
    donor_id: str,
    donor_created_at: datetime,
    commitments: Sequence[Mapping[str, Any]],
    responses: Sequence[Mapping[str, Any]],
    *,
    now: Optional[datetime] = None,
) -> DonorMetrics:
    """
    Indicateurs d’un donateur à partir de ses engagements et réponses (déjà filtrés sur la période).

    - commitments : {id, status, total_committed_quantity, delivered_quantity,
      verified_delivered_quantity, total_value_estimated, commitment_date, last_updated}
    - responses : {verification_status, response_date, commitment_id}
    """
    now = as_utc(now) or utcnow()
    m = DonorMetrics(donor_id=str(donor_id))

    m.total_commitments = len(commitments)
    m.completed_commitments = sum(1 for c in commitments if c.get("status") == "COMPLETE")
    m.total_committed_items = sum(int(c.get("total_committed_quantity") or 0) for c in commitments)
    m.total_delivered_items = sum(int(c.get("delivered_quantity") or 0) for c in commitments)
    m.total_verified_items = sum(int(c.get("verified_delivered_quantity") or 0) for c in commitments)
    m.total_commitment_value = round(sum(float(c.get("total_value_estimated") or 0) for c in commitments), 2)

    if m.total_committed_items > 0:
        m.self_reported_delivery_rate = round(m.total_delivered_items / m.total_committed_items * 100.0, 2)
        m.verified_delivery_rate = round(m.total_verified_items / m.total_committed_items * 100.0, 2)

    m.total_responses = len(responses)
    m.verified_responses = sum(1 for r in responses if r.get("verification_status") in VERIFIED_STATUSES)
    if m.total_responses > 0:
        m.response_verification_rate = round(m.verified_responses / m.total_responses * 100.0, 2)

    days_active = 1
    if commitments:
        created = as_utc(donor_created_at) or now
        days_active = max(1, math.ceil((now - created).total_seconds() / 86400))
    m.activity_frequency = round((m.total_commitments + m.total_responses) / days_active, 3)
    m.months_active = math.ceil(days_active / 30)

    # Délai de réponse : date d’engagement -> date de livraison (plafonné à une semaine)
    commitment_dates = {str(c.get("id")): as_utc(c.get("commitment_date")) for c in commitments}
    delays: List[float] = []
    for r in responses:
        start = commitment_dates.get(str(r.get("commitment_id")))
        delivered_at = as_utc(r.get("response_date"))
        if start is None or delivered_at is None:
            continue
        hours = max(0.0, (delivered_at - start).total_seconds() / 3600.0)
        delays.append(min(hours, MAX_RESPONSE_HOURS))
    m.avg_response_time_hours = round(sum(delays) / len(delays), 2) if delays else DEFAULT_RESPONSE_HOURS

    m.overall_score = overall_score(
        verified_delivery_rate=m.verified_delivery_rate,
        total_commitment_value=m.total_commitment_value,
        activity_frequency=m.activity_frequency,
        avg_response_time_hours=m.avg_response_time_hours,
    )
    m.badges = achievement_badges(
        verified_delivery_rate=m.verified_delivery_rate,
        completed_commitments=m.completed_commitments,
        avg_response_time_hours=m.avg_response_time_hours,
        months_active=m.months_active,
    )

    dates = [as_utc(c.get("last_updated")) for c in commitments if c.get("last_updated")]
    m.last_activity_date = max(dates) if dates else as_utc(donor_created_at)
    return m


def _commitment_row(c: DonorCommitment) -> Dict[str, Any]:
    return {
        "id": str(c.id),
        "status": c.status,
        "total_committed_quantity": c.total_committed_quantity,
        "delivered_quantity": c.delivered_quantity,
        "verified_delivered_quantity": c.verified_delivered_quantity,
        "total_value_estimated": c.total_value_estimated,
        "commitment_date": c.commitment_date,
        "last_updated": c.last_updated,
    }


def _response_row(r: RapidResponse) -> Dict[str, Any]:
    return {
        "verification_status": r.verification_status,
        "response_date": r.response_date,
        "commitment_id": str(r.commitment_id) if r.commitment_id else None,
    }


async def _load_activity(
    db: AsyncSession,
    donor_ids: Sequence[uuid.UUID],
    start: Optional[datetime],
    region: Optional[str] = None,
    entity_type: Optional[str] = None,
) -> tuple[Dict[uuid.UUID, List[DonorCommitment]], Dict[uuid.UUID, List[RapidResponse]]]:
    c_stmt = select(DonorCommitment).where(DonorCommitment.donor_id.in_(donor_ids))
    if start is not None:
        c_stmt = c_stmt.where(DonorCommitment.commitment_date >= start)
    if region or entity_type:
        c_stmt = c_stmt.join(Entity, Entity.id == DonorCommitment.entity_id)
    if region:
        c_stmt = c_stmt.where(Entity.location.ilike(f"%{region}%"))
    if entity_type:
        c_stmt = c_stmt.where(Entity.type == entity_type)

    r_stmt = select(RapidResponse).where(RapidResponse.donor_id.in_(donor_ids))
    if start is not None:
        r_stmt = r_stmt.where(RapidResponse.created_at >= start)

    commitments: Dict[uuid.UUID, List[DonorCommitment]] = {}
    for c in (await db.execute(c_stmt)).scalars().all():
        commitments.setdefault(c.donor_id, []).append(c)

    responses: Dict[uuid.UUID, List[RapidResponse]] = {}
    for r in (await db.execute(r_stmt)).scalars().all():
        responses.setdefault(r.donor_id, []).append(r)

    return commitments, responses


async def donor_metrics(db: AsyncSession, donor_id: uuid.UUID, timeframe: str = "all") -> DonorMetrics:
    donor = (await db.execute(select(Donor).where(Donor.id == donor_id))).scalars().first()
    if not donor:
        raise NotFoundError("Donateur introuvable")

    commitments, responses = await _load_activity(db, [donor.id], timeframe_start(timeframe))
    return compute_metrics(
        str(donor.id),
        donor.created_at,
        [_commitment_row(c) for c in commitments.get(donor.id, [])],
        [_response_row(r) for r in responses.get(donor.id, [])],
    )


async def leaderboard(
    db: AsyncSession,
    *,
    timeframe: str = "30d",
    region: Optional[str] = None,
    entity_type: Optional[str] = None,
    sort_by: str = "overall",
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """
    Classement des donateurs actifs ayant au moins un engagement sur la période.

    `region` : filtre (insensible à la casse) sur la localisation des entités bénéficiaires.
    `entity_type` : filtre sur le type des entités bénéficiaires.
    """
    sort_attr = SORT_KEYS.get(sort_by)
    if sort_attr is None:
        raise ValueError(f"sort_by inconnu: {sort_by}")

    donors = (await db.execute(select(Donor).where(Donor.is_active.is_(True)))).scalars().all()
    if not donors:
        return []

    commitments, responses = await _load_activity(db, [d.id for d in donors], timeframe_start(timeframe), region, entity_type)

    rows: List[Dict[str, Any]] = []
    for d in donors:
        dc = commitments.get(d.id, [])
        if not dc:
            continue
        metrics = compute_metrics(
            str(d.id),
            d.created_at,
            [_commitment_row(c) for c in dc],
            [_response_row(r) for r in responses.get(d.id, [])],
        )
        rows.append(
            {
                "donor": {"id": str(d.id), "name": d.name, "type": d.type, "organization": d.organization},
                "metrics": metrics.to_dict(),
                "previous_rank": d.leaderboard_rank,
            }
        )

    rows.sort(key=lambda r: -float(r["metrics"][sort_attr]))
    for i, row in enumerate(rows, start=1):
        row["rank"] = i
        prev = row["previous_rank"]
        row["trend"] = "new" if prev is None else ("up" if i < prev else "down" if i > prev else "stable")

    return rows[:limit]


async def recompute_rankings(db: AsyncSession, *, timeframe: str = "all") -> int:
    """
    Recalcule le classement global et persiste rang + taux de livraison sur les donateurs.

    Les donateurs sans activité sur la période perdent leur rang.
    """
    rows = await leaderboard(db, timeframe=timeframe, limit=10_000)
    ranked = {r["donor"]["id"]: r for r in rows}

    donors = (await db.execute(select(Donor))).scalars().all()
    for d in donors:
        row = ranked.get(str(d.id))
        if row is None:
            d.leaderboard_rank = None
            continue
        d.leaderboard_rank = row["rank"]
        d.self_reported_delivery_rate = row["metrics"]["self_reported_delivery_rate"]
        d.verified_delivery_rate = row["metrics"]["verified_delivery_rate"]

    await db.flush()
    log.info("leaderboard_recomputed", extra={"batch_size": len(rows)})
    return len(rows)
