from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

"""
Schemas Dashboard (Pydantic).

Rôle (fonctionnel) :
- Contrats de réponse des vues agrégées :
  - situation (incidents, entités touchées, KPI de coordination),
  - écarts de ressources (par entité + synthèse),
  - recommandations de donateurs,
  - classement et tendances des donateurs.

Notes :
- Ces schémas sont des “DTO” de lecture : ils agrègent des données calculées (pas des lignes DB).
- extra="forbid" sur les réponses de premier niveau impose un contrat strict côté API.
"""


# ---------------- Situation ----------------


class SituationKpis(BaseModel):
    """Indicateurs clés de coordination."""
    active_incidents: int
    affected_entities: int
    pending_assessment_verifications: int
    pending_delivery_verifications: int
    planned_responses: int
    delivered_responses: int
    open_commitments: int
    open_gaps: int
    critical_gaps: int
    unresolved_conflicts: int


class IncidentOverviewItem(BaseModel):
    id: str
    type: str
    sub_type: Optional[str] = None
    severity: str
    status: str
    location: Optional[str] = None
    affected_entities: int
    created_at: datetime


class SituationOverviewOut(BaseModel):
    kpis: SituationKpis
    incidents_by_status: Dict[str, int]
    incidents_by_severity: Dict[str, int]
    incidents: List[IncidentOverviewItem]

    model_config = ConfigDict(extra="forbid")


class EntityAssessmentSnapshot(BaseModel):
    """Dernière évaluation vérifiée d’un type pour une entité."""
    assessment_id: str
    assessment_type: str
    assessment_date: datetime
    verification_status: str
    gap_severity: str
    has_gap: bool
    gap_fields: List[str]


class IncidentEntitySummary(BaseModel):
    id: str
    name: str
    type: str
    location: Optional[str] = None
    latest_assessments: List[EntityAssessmentSnapshot]
    population: Dict[str, int]
    active_commitments: int
    responses: Dict[str, int]


class IncidentSummaryOut(BaseModel):
    incident: Dict[str, Any]
    entities: List[IncidentEntitySummary]
    population_totals: Dict[str, int]
    commitments: Dict[str, Any]
    responses: Dict[str, int]

    model_config = ConfigDict(extra="forbid")


# ---------------- Écarts ----------------


class ResourceGapOut(BaseModel):
    resource_type: str
    unit: str
    required: float
    committed: float
    delivered: float
    severity: str
    priority: str
    gap: float
    percentage_met: float
    estimated_value: float


class EntityGapsOut(BaseModel):
    entity_id: str
    gaps: List[ResourceGapOut]


class GapDashboardEntity(BaseModel):
    entity_id: str
    entity: Dict[str, Any]
    gaps: List[ResourceGapOut]
    total_gaps: int
    critical_gaps: int
    total_gap_value: float


class GapDashboardSummary(BaseModel):
    total_entities: int
    total_gaps: int
    critical_gaps: int
    total_gap_value: float
    by_severity: Dict[str, int]


class GapDashboardOut(BaseModel):
    entities: List[GapDashboardEntity]
    summary: GapDashboardSummary

    model_config = ConfigDict(extra="forbid")


class RecommendedItemOut(BaseModel):
    resource_type: str
    max_quantity: float
    unit: str
    reason: str


class DonorRecommendationOut(BaseModel):
    donor_id: str
    donor_name: str
    donor_type: str
    compatibility_score: int
    recommended_items: List[RecommendedItemOut]
    capabilities: Dict[str, float]


class DonorRecommendationsOut(BaseModel):
    entity_id: str
    gaps: List[ResourceGapOut]
    recommendations: List[DonorRecommendationOut]

    model_config = ConfigDict(extra="forbid")


class GapFieldSeverityOut(BaseModel):
    id: Optional[str] = None
    assessment_type: str
    field_name: str
    display_name: str
    severity: str
    default_severity: str
    gap_when: bool
    recommendation: str
    updated_at: Optional[datetime] = None


# ---------------- Donateurs ----------------


class DonorMetricsOut(BaseModel):
    donor_id: str
    total_commitments: int
    completed_commitments: int
    total_committed_items: int
    total_delivered_items: int
    total_verified_items: int
    total_commitment_value: float
    self_reported_delivery_rate: float
    verified_delivery_rate: float
    total_responses: int
    verified_responses: int
    response_verification_rate: float
    activity_frequency: float
    avg_response_time_hours: float
    months_active: int
    overall_score: float
    badges: List[str]
    last_activity_date: Optional[datetime] = None


class LeaderboardEntry(BaseModel):
    rank: int
    previous_rank: Optional[int] = None
    trend: str  # up / down / stable / new
    donor: Dict[str, Any]
    metrics: DonorMetricsOut


class LeaderboardOut(BaseModel):
    timeframe: str
    sort_by: str
    data: List[LeaderboardEntry]

    model_config = ConfigDict(extra="forbid")


class TrendPoint(BaseModel):
    """Point de la série de tendances (une période)."""
    period: str
    start: str  # "YYYY-MM-DD"
    commitments: int
    completed_commitments: int
    committed_items: int
    delivered_items: int
    delivery_rate: float
    value: float
    responses: int
    verified_responses: int


class TrendsOut(BaseModel):
    donor_id: Optional[str] = None
    timeframe: str
    granularity: str
    points: List[TrendPoint]
    totals: Dict[str, float]

    model_config = ConfigDict(extra="forbid")
