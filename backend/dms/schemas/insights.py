from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from dms.schemas.assessments import AssessmentOut
from dms.schemas.common import PageMeta
from dms.schemas.entities import EntityOut

"""
Schemas Entity Insights (vue donateur).

Rôle (fonctionnel) :
- Contrats de réponse des endpoints /donors/entities/... :
  évaluations d’une entité, dernières évaluations commentées, tendances,
  démographie, écarts, impact consolidé.

Notes :
- Les blocs calculés (profil démographique, écarts de ressources) restent des dictionnaires :
  leur contenu suit les calculs du service.
"""


class CategorySummary(BaseModel):
    type: str
    count: int
    latest_date: Optional[datetime] = None


class EntityAssessmentsSummary(BaseModel):
    total_assessments: int
    verified_assessments: int
    categories: List[CategorySummary]


class EntityAssessmentsOut(BaseModel):
    entity: EntityOut
    data: List[AssessmentOut]
    meta: PageMeta
    summary: EntityAssessmentsSummary

    model_config = ConfigDict(extra="forbid")


class AssessmentSummary(BaseModel):
    overall_score: Optional[float] = None
    gaps: List[str]
    key_metrics: Dict[str, Any]


class LatestAssessment(BaseModel):
    type: str
    assessment: AssessmentOut
    summary: AssessmentSummary


class LatestAssessmentsOut(BaseModel):
    entity_id: str
    data: List[LatestAssessment]
    generated_at: datetime

    model_config = ConfigDict(extra="forbid")


class TrendPoint(BaseModel):
    period: str
    start: str
    score: Optional[float] = None
    gap_count: int
    assessment_count: int
    trend: str


class CategoryTrend(BaseModel):
    type: str
    points: List[TrendPoint]


class TrendInsight(BaseModel):
    category: str
    trend: str
    recommendation: str


class AssessmentTrendsOut(BaseModel):
    entity_id: str
    timeframe: str
    granularity: str
    start: datetime
    end: datetime
    trends: List[CategoryTrend]
    insights: List[TrendInsight]

    model_config = ConfigDict(extra="forbid")


class DemographicsOut(BaseModel):
    entity: EntityOut
    demographics: Dict[str, Any]
    source: Optional[str] = None
    as_of: Optional[datetime] = None
    administrative: Dict[str, Any]
    stats: Dict[str, int]
    latest_activity: Dict[str, Any]

    model_config = ConfigDict(extra="forbid")


class AssessmentGapItem(BaseModel):
    assessment_type: str
    assessment_id: str
    assessment_date: datetime
    severity: str
    gap_fields: List[str]
    recommendations: List[str]


class EntityGapOverviewOut(BaseModel):
    entity_id: str
    assessment_gaps: List[AssessmentGapItem]
    resource_gaps: List[Dict[str, Any]]
    summary: Dict[str, Any]

    model_config = ConfigDict(extra="forbid")


class CategoryCoverage(BaseModel):
    type: str
    entities_covered: int
    coverage: float


class DonorImpactOut(BaseModel):
    total_entities: int
    active_entities: int
    aggregated_demographics: Dict[str, Any]
    distribution: Dict[str, Dict[str, int]]
    overall_stats: Dict[str, float]
    category_coverage: List[CategoryCoverage]
    entities: List[Dict[str, Any]]

    model_config = ConfigDict(extra="forbid")
