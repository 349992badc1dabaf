from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import NotFoundError
from dms.db.base import utcnow
from dms.models.assessment import RapidAssessment
from dms.models.donor import DonorCommitment
from dms.models.entity import Entity
from dms.models.response import RapidResponse
from dms.models.user import User
from dms.schemas.common import VERIFIED_STATUSES, AssessmentType, PageMeta, Priority
from dms.schemas.entities import EntityOut
from dms.services import assessment_service, entity_assignment_service, gap_analysis, gap_service
from dms.services.trends_service import GRANULARITY_FREQ, TREND_TIMEFRAMES, naive_utc, period_label

"""
Entity Insights (vue donateur des entités affectées).

Rôle (fonctionnel) :
- Évaluations d’une entité (hors brouillons), paginées, avec synthèse par type.
- Dernière évaluation par type, accompagnée d’un score de couverture et des écarts constatés.
- Démographie : dernière évaluation POPULATION vérifiée, à défaut les métadonnées de l’entité.
- Tendances des évaluations vérifiées par période (pandas) et enseignements tirés.
- Écarts d’une entité (analyse par type + écarts de ressources).
- Impact consolidé sur l’ensemble des entités affectées au donateur.

Accès :
- Un donateur ne voit que les entités qui lui sont affectées (404 sinon, l’existence n’est pas révélée).
- La coordination voit toutes les entités.

Score de couverture d’une évaluation :
- part des champs d’écart renseignés qui ne sont pas en défaut, en pourcentage ;
- None pour POPULATION (collecte de données, pas de champ d’écart).
"""

TREND_THRESHOLD = 5.0
STRONG_TREND_THRESHOLD = 10.0
GAP_SHIFT_THRESHOLD = 2
HIGH_VULNERABILITY_RATIO = 0.3

# Profil démographique <- champs des évaluations POPULATION
POPULATION_FIELDS = {
    "total_population": "totalPopulation",
    "total_households": "totalHouseholds",
    "male": "populationMale",
    "female": "populationFemale",
    "under_5": "populationUnder5",
    "pregnant_women": "pregnantWomen",
    "lactating_mothers": "lactatingMothers",
    "persons_with_disability": "personWithDisability",
    "elderly": "elderlyPersons",
    "separated_children": "separatedChildren",
    "lives_lost": "numberLivesLost",
    "injured": "numberInjured",
}
VULNERABLE_FIELDS = ("populationUnder5", "pregnantWomen", "personWithDisability", "elderlyPersons")

# Métadonnées d’entité acceptées en repli (clés historiques des imports)
METADATA_ALIASES = {
    "totalPopulation": ("totalPopulation", "population"),
    "totalHouseholds": ("totalHouseholds", "householdCount"),
    "populationMale": ("populationMale", "malePopulation"),
    "populationFemale": ("populationFemale", "femalePopulation"),
    "populationUnder5": ("populationUnder5", "childrenUnder5"),
    "elderlyPersons": ("elderlyPersons", "elderlyCount"),
    "personWithDisability": ("personWithDisability", "disabilityCount"),
}


# ---------------------------------------------------------------------------
# Calculs purs
# ---------------------------------------------------------------------------


def _count(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def assessment_score(assessment_type: str, data: Mapping[str, Any]) -> Optional[float]:
    evaluated = [r for r in gap_analysis.gap_fields_for(assessment_type) if data.get(r.field) is not None]
    if not evaluated:
        return None
    gaps = set(gap_analysis.find_gap_fields(assessment_type, data))
    met = sum(1 for r in evaluated if r.field not in gaps)
    return round(met / len(evaluated) * 100.0, 2)


def population_profile(data: Mapping[str, Any]) -> Dict[str, Any]:
    profile: Dict[str, Any] = {key: _count(data.get(field)) for key, field in POPULATION_FIELDS.items()}
    vulnerable = sum(_count(data.get(f)) for f in VULNERABLE_FIELDS)
    total, households = profile["total_population"], profile["total_households"]

    profile["vulnerable_count"] = vulnerable
    profile["vulnerability_rate"] = round(vulnerable / total * 100.0, 2) if total else 0.0
    profile["average_household_size"] = round(total / households, 2) if households else 0.0
    return profile


def assessment_summary(assessment_type: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    atype = str(assessment_type).upper()

    if atype == AssessmentType.POPULATION.value:
        profile = population_profile(data)
        flags: List[str] = []
        if profile["lives_lost"]:
            flags.append(f"{profile['lives_lost']} lives lost")
        if profile["injured"]:
            flags.append(f"{profile['injured']} injured persons")
        if profile["total_population"] and profile["vulnerable_count"] > profile["total_population"] * HIGH_VULNERABILITY_RATIO:
            flags.append("High vulnerable population ratio")
        return {"overall_score": None, "gaps": flags, "key_metrics": profile}

    gap_fields = set(gap_analysis.find_gap_fields(atype, data))
    return {
        "overall_score": assessment_score(atype, data),
        "gaps": [r.label for r in gap_analysis.gap_fields_for(atype) if r.field in gap_fields],
        "key_metrics": {
            k: v for k, v in data.items() if isinstance(v, (int, float)) and not isinstance(v, bool)
        },
    }


def trend_direction(score_change: float, gap_change: int) -> str:
    if score_change > TREND_THRESHOLD and gap_change <= 0:
        return "improving"
    if score_change < -TREND_THRESHOLD and gap_change > 0:
        return "declining"
    return "stable"


def build_assessment_trends(
    rows: Sequence[Mapping[str, Any]],
    *,
    start: datetime,
    end: datetime,
    granularity: str = "month",
) -> List[Dict[str, Any]]:
    """
    Série par période pour un type d’évaluation.

    - rows : {assessment_date, score, gap_count}
    - période sans évaluation : score None, compteurs à 0, tendance "stable".
    - la tendance compare la période à la précédente période évaluée.
    """
    freq = GRANULARITY_FREQ.get(granularity)
    if freq is None:
        raise ValueError(f"granularité inconnue: {granularity}")

    periods = pd.period_range(start=naive_utc(start), end=naive_utc(end), freq=freq)
    frame = pd.DataFrame(index=periods)

    if rows:
        df = pd.DataFrame(list(rows))
        df["period"] = pd.to_datetime(df["assessment_date"], utc=True).dt.tz_localize(None).dt.to_period(freq)
        df["score"] = pd.to_numeric(df["score"], errors="coerce")
        grouped = df.groupby("period").agg(
            score=("score", "mean"),
            gap_count=("gap_count", "sum"),
            assessment_count=("gap_count", "size"),
        )
        frame = frame.join(grouped)

    for col in ("score", "gap_count", "assessment_count"):
        if col not in frame.columns:
            frame[col] = float("nan")

    points: List[Dict[str, Any]] = []
    previous: Optional[Dict[str, Any]] = None
    for period, row in frame.iterrows():
        count = int(row["assessment_count"]) if pd.notna(row["assessment_count"]) else 0
        score = round(float(row["score"]), 2) if count and pd.notna(row["score"]) else None
        point = {
            "period": period_label(period, granularity),
            "start": period.start_time.date().isoformat(),
            "score": score,
            "gap_count": int(row["gap_count"]) if count else 0,
            "assessment_count": count,
            "trend": "stable",
        }
        if count:
            if previous is not None and previous["score"] is not None and score is not None:
                point["trend"] = trend_direction(score - previous["score"], point["gap_count"] - previous["gap_count"])
            previous = point
        points.append(point)
    return points


def trend_insight(assessment_type: str, points: Sequence[Mapping[str, Any]]) -> Optional[Dict[str, str]]:
    measured = [p for p in points if p["assessment_count"] and p["score"] is not None]
    if len(measured) < 2:
        return None

    latest, previous = measured[-1], measured[-2]
    score_change = latest["score"] - previous["score"]
    gap_change = latest["gap_count"] - previous["gap_count"]
    label = str(assessment_type).lower()

    if score_change > STRONG_TREND_THRESHOLD:
        trend, recommendation = "improving significantly", f"Positive trend in {label}. Maintain current interventions."
    elif score_change > TREND_THRESHOLD:
        trend, recommendation = "improving", f"Good progress in {label}. Consider scaling successful interventions."
    elif score_change < -STRONG_TREND_THRESHOLD:
        trend = "declining significantly"
        recommendation = f"Urgent attention needed for {label}. Immediate intervention required."
    elif score_change < -TREND_THRESHOLD:
        trend, recommendation = "declining", f"Declining trend in {label}. Review and adjust current strategies."
    else:
        trend, recommendation = "stable", "Continue monitoring current conditions."

    if gap_change > GAP_SHIFT_THRESHOLD:
        recommendation += " Increasing gaps require immediate attention."
    elif gap_change < -GAP_SHIFT_THRESHOLD:
        recommendation += " Gaps are decreasing, showing positive impact."

    return {"category": str(assessment_type).upper(), "trend": trend, "recommendation": recommendation}


def _type_order(assessment_type: str) -> int:
    names = [t.value for t in AssessmentType]
    return names.index(assessment_type) if assessment_type in names else len(names)


def _metadata_population(meta: Mapping[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for field, aliases in METADATA_ALIASES.items():
        for alias in aliases:
            if meta.get(alias) is not None:
                data[field] = meta[alias]
                break
    return data


# ---------------------------------------------------------------------------
# Accès
# ---------------------------------------------------------------------------


async def accessible_entity(db: AsyncSession, user: User, entity_id: uuid.UUID) -> Entity:
    entity = (await db.execute(select(Entity).where(Entity.id == entity_id))).scalars().first()
    if entity is None or not await entity_assignment_service.can_access_entity(db, user, entity_id):
        raise NotFoundError("Entité introuvable ou non affectée", details={"entity_id": str(entity_id)})
    return entity


def _visible():
    return RapidAssessment.verification_status != "DRAFT"


def _verified():
    return RapidAssessment.verification_status.in_(VERIFIED_STATUSES)


# ---------------------------------------------------------------------------
# Évaluations d’une entité
# ---------------------------------------------------------------------------


async def entity_assessments(
    db: AsyncSession,
    entity: Entity,
    *,
    assessment_type: Optional[str] = None,
    verification_status: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 50,
) -> Dict[str, Any]:
    base = [RapidAssessment.entity_id == entity.id, _visible()]
    conditions = list(base)
    if assessment_type:
        conditions.append(RapidAssessment.assessment_type == assessment_type)
    if verification_status:
        conditions.append(RapidAssessment.verification_status == verification_status)
    if since is not None:
        conditions.append(RapidAssessment.assessment_date >= since)
    if until is not None:
        conditions.append(RapidAssessment.assessment_date <= until)

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

    per_type = {
        atype: (count, latest)
        for atype, count, latest in (
            await db.execute(
                select(
                    RapidAssessment.assessment_type,
                    func.count(),
                    func.max(RapidAssessment.assessment_date),
                )
                .where(*base)
                .group_by(RapidAssessment.assessment_type)
            )
        ).all()
    }
    verified = (
        await db.execute(select(func.count()).select_from(RapidAssessment).where(*base, _verified()))
    ).scalar_one()

    return {
        "entity": EntityOut.model_validate(entity),
        "data": [assessment_service.serialize(a) for a in rows],
        "meta": PageMeta(page=page, page_size=page_size, total=total),
        "summary": {
            "total_assessments": sum(count for count, _ in per_type.values()),
            "verified_assessments": verified,
            "categories": [
                {
                    "type": t.value,
                    "count": per_type.get(t.value, (0, None))[0],
                    "latest_date": per_type.get(t.value, (0, None))[1],
                }
                for t in AssessmentType
            ],
        },
    }


async def latest_assessments(
    db: AsyncSession,
    entity: Entity,
    *,
    categories: Optional[Sequence[str]] = None,
    include_unverified: bool = False,
) -> Dict[str, Any]:
    stmt = select(RapidAssessment).where(
        RapidAssessment.entity_id == entity.id,
        _visible() if include_unverified else _verified(),
    )
    if categories:
        stmt = stmt.where(RapidAssessment.assessment_type.in_(list(categories)))

    latest = sorted(
        gap_service.latest_per_type((await db.execute(stmt)).scalars().all()),
        key=lambda a: _type_order(a.assessment_type),
    )
    return {
        "entity_id": str(entity.id),
        "data": [
            {
                "type": a.assessment_type,
                "assessment": assessment_service.serialize(a),
                "summary": assessment_summary(a.assessment_type, a.data or {}),
            }
            for a in latest
        ],
        "generated_at": utcnow(),
    }


async def assessment_trends(
    db: AsyncSession,
    entity: Entity,
    *,
    timeframe: str = "1y",
    granularity: str = "month",
    categories: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    days = TREND_TIMEFRAMES.get(timeframe)
    if days is None:
        raise ValueError(f"timeframe inconnu: {timeframe}")

    end = utcnow()
    start = end - timedelta(days=days)
    types = list(categories) if categories else [t.value for t in AssessmentType]

    rows = (
        await db.execute(
            select(RapidAssessment).where(
                RapidAssessment.entity_id == entity.id,
                _verified(),
                RapidAssessment.assessment_date >= start,
                RapidAssessment.assessment_type.in_(types),
            )
        )
    ).scalars().all()

    by_type: Dict[str, List[Dict[str, Any]]] = {t: [] for t in types}
    for a in rows:
        data = a.data or {}
        by_type[a.assessment_type].append(
            {
                "assessment_date": a.assessment_date,
                "score": assessment_score(a.assessment_type, data),
                "gap_count": len(gap_analysis.find_gap_fields(a.assessment_type, data)),
            }
        )

    trends: List[Dict[str, Any]] = []
    insights: List[Dict[str, str]] = []
    for atype in sorted(types, key=_type_order):
        points = build_assessment_trends(by_type[atype], start=start, end=end, granularity=granularity)
        trends.append({"type": atype, "points": points})
        insight = trend_insight(atype, points)
        if insight is not None:
            insights.append(insight)

    return {
        "entity_id": str(entity.id),
        "timeframe": timeframe,
        "granularity": granularity,
        "start": start,
        "end": end,
        "trends": trends,
        "insights": insights,
    }


# ---------------------------------------------------------------------------
# Démographie et écarts
# ---------------------------------------------------------------------------


async def _entity_counts(db: AsyncSession, entity_ids: Sequence[uuid.UUID]) -> Dict[str, Dict[uuid.UUID, int]]:
    async def _grouped(stmt) -> Dict[uuid.UUID, int]:
        return {eid: int(n) for eid, n in (await db.execute(stmt)).all()}

    return {
        "verified_assessments": await _grouped(
            select(RapidAssessment.entity_id, func.count())
            .where(RapidAssessment.entity_id.in_(entity_ids), _verified())
            .group_by(RapidAssessment.entity_id)
        ),
        "commitments": await _grouped(
            select(DonorCommitment.entity_id, func.count())
            .where(DonorCommitment.entity_id.in_(entity_ids))
            .group_by(DonorCommitment.entity_id)
        ),
        "open_commitments": await _grouped(
            select(DonorCommitment.entity_id, func.count())
            .where(DonorCommitment.entity_id.in_(entity_ids), DonorCommitment.status.in_(("PLANNED", "PARTIAL")))
            .group_by(DonorCommitment.entity_id)
        ),
        "planned_responses": await _grouped(
            select(RapidResponse.entity_id, func.count())
            .where(RapidResponse.entity_id.in_(entity_ids), RapidResponse.status == "PLANNED")
            .group_by(RapidResponse.entity_id)
        ),
        "delivered_responses": await _grouped(
            select(RapidResponse.entity_id, func.count())
            .where(RapidResponse.entity_id.in_(entity_ids), RapidResponse.status == "DELIVERED")
            .group_by(RapidResponse.entity_id)
        ),
    }


async def _latest_verified(db: AsyncSession, entity_ids: Sequence[uuid.UUID]) -> List[RapidAssessment]:
    rows = (
        await db.execute(select(RapidAssessment).where(RapidAssessment.entity_id.in_(entity_ids), _verified()))
    ).scalars().all()
    return gap_service.latest_per_type(rows)


def _demographics_source(entity: Entity, population: Optional[RapidAssessment]) -> Dict[str, Any]:
    if population is not None:
        return {
            "raw": dict(population.data or {}),
            "source": "assessment",
            "as_of": population.assessment_date,
        }
    fallback = _metadata_population(entity.meta or {})
    return {"raw": fallback, "source": "metadata" if fallback else None, "as_of": None}


async def entity_demographics(db: AsyncSession, entity: Entity) -> Dict[str, Any]:
    latest = await _latest_verified(db, [entity.id])
    population = next((a for a in latest if a.assessment_type == AssessmentType.POPULATION.value), None)
    last = max(latest, key=lambda a: a.assessment_date, default=None)
    counts = await _entity_counts(db, [entity.id])
    meta = entity.meta or {}
    src = _demographics_source(entity, population)

    return {
        "entity": EntityOut.model_validate(entity),
        "demographics": population_profile(src["raw"]),
        "source": src["source"],
        "as_of": src["as_of"],
        "administrative": {key: meta.get(key) for key in ("state", "lga", "ward")},
        "stats": {key: by_entity.get(entity.id, 0) for key, by_entity in counts.items()},
        "latest_activity": {
            "last_assessment_date": last.assessment_date if last else None,
            "last_assessment_type": last.assessment_type if last else None,
        },
    }


async def entity_gap_overview(
    db: AsyncSession,
    entity: Entity,
    *,
    severity: Optional[str] = None,
    categories: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    latest = sorted(await _latest_verified(db, [entity.id]), key=lambda a: _type_order(a.assessment_type))

    assessment_gaps: List[Dict[str, Any]] = []
    for a in latest:
        if categories and a.assessment_type not in categories:
            continue
        analysis = a.gap_analysis or {}
        if not analysis.get("has_gap"):
            continue
        if severity and analysis.get("severity") != severity:
            continue
        assessment_gaps.append(
            {
                "assessment_type": a.assessment_type,
                "assessment_id": str(a.id),
                "assessment_date": a.assessment_date,
                "severity": analysis.get("severity", Priority.LOW.value),
                "gap_fields": list(analysis.get("gap_fields") or []),
                "recommendations": list(analysis.get("recommendations") or []),
            }
        )

    resource_gaps = [g for g in await gap_service.entity_resource_gaps(db, entity.id) if g.gap > 0]
    if severity:
        resource_gaps = [g for g in resource_gaps if g.severity == severity]

    by_severity = {p.value: 0 for p in Priority}
    for item in assessment_gaps:
        by_severity[item["severity"]] = by_severity.get(item["severity"], 0) + 1

    return {
        "entity_id": str(entity.id),
        "assessment_gaps": assessment_gaps,
        "resource_gaps": [g.to_dict() for g in resource_gaps],
        "summary": {
            "assessment_gaps_by_severity": by_severity,
            "resource_gap_count": len(resource_gaps),
            "total_gap_value": round(sum(g.estimated_value for g in resource_gaps), 2),
        },
    }


# ---------------------------------------------------------------------------
# Impact consolidé
# ---------------------------------------------------------------------------


async def donor_impact(db: AsyncSession, user: User) -> Dict[str, Any]:
    entity_ids = await entity_assignment_service.accessible_entity_ids(db, user)
    stmt = select(Entity).order_by(Entity.name)
    if entity_ids is not None:
        stmt = stmt.where(Entity.id.in_(entity_ids))
    entities = (await db.execute(stmt)).scalars().all()
    ids = [e.id for e in entities]

    latest = await _latest_verified(db, ids) if ids else []
    counts = await _entity_counts(db, ids) if ids else {}

    latest_by_entity: Dict[uuid.UUID, List[RapidAssessment]] = {}
    for a in latest:
        latest_by_entity.setdefault(a.entity_id, []).append(a)

    totals: Dict[str, int] = {}
    by_type: Dict[str, int] = {}
    by_lga: Dict[str, int] = {}
    rows: List[Dict[str, Any]] = []

    for entity in entities:
        assessed = latest_by_entity.get(entity.id, [])
        population = next((a for a in assessed if a.assessment_type == AssessmentType.POPULATION.value), None)
        src = _demographics_source(entity, population)
        for field in POPULATION_FIELDS.values():
            totals[field] = totals.get(field, 0) + _count(src["raw"].get(field))

        by_type[entity.type] = by_type.get(entity.type, 0) + 1
        lga = (entity.meta or {}).get("lga")
        if lga:
            by_lga[lga] = by_lga.get(lga, 0) + 1

        rows.append(
            {
                "entity_id": str(entity.id),
                "name": entity.name,
                "type": entity.type,
                "location": entity.location,
                "is_active": entity.is_active,
                "demographics": population_profile(src["raw"]),
                "assessed_types": sorted((a.assessment_type for a in assessed), key=_type_order),
                "critical_assessment_gaps": sum(
                    1 for a in assessed if (a.gap_analysis or {}).get("severity") == Priority.CRITICAL.value
                    and (a.gap_analysis or {}).get("has_gap")
                ),
                "stats": {key: by_entity.get(entity.id, 0) for key, by_entity in counts.items()},
            }
        )

    total = len(entities)
    assessed_count = sum(1 for r in rows if r["stats"].get("verified_assessments"))

    coverage: List[Dict[str, Any]] = []
    for t in AssessmentType:
        covered = sum(1 for r in rows if t.value in r["assessed_types"])
        coverage.append(
            {
                "type": t.value,
                "entities_covered": covered,
                "coverage": round(covered / total * 100.0, 2) if total else 0.0,
            }
        )

    return {
        "total_entities": total,
        "active_entities": sum(1 for e in entities if e.is_active),
        "aggregated_demographics": population_profile(totals),
        "distribution": {"by_type": by_type, "by_lga": by_lga},
        "overall_stats": {
            "verified_assessments": sum(r["stats"].get("verified_assessments", 0) for r in rows),
            "commitments": sum(r["stats"].get("commitments", 0) for r in rows),
            "planned_responses": sum(r["stats"].get("planned_responses", 0) for r in rows),
            "assessment_coverage": round(assessed_count / total * 100.0, 2) if total else 0.0,
        },
        "category_coverage": coverage,
        "entities": rows,
    }
