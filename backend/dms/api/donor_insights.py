from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import require_roles
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.common import AssessmentType, Priority, VerificationStatus
from dms.schemas.insights import (
    AssessmentTrendsOut,
    DemographicsOut,
    DonorImpactOut,
    EntityAssessmentsOut,
    EntityGapOverviewOut,
    LatestAssessmentsOut,
)
from dms.services import entity_insights_service

"""
API Donateurs : vue des entités affectées.

Rôle (fonctionnel) :
- Permet à un compte DONOR de suivre les entités qui lui sont affectées :
  évaluations, dernières évaluations commentées, tendances, démographie, écarts.
- Impact consolidé sur l’ensemble de ses entités.

Sécurité :
- Rôle DONOR requis (ADMIN inclus), la coordination garde aussi l’accès.
- Entité non affectée : 404 (l’existence n’est pas révélée).
"""

router = APIRouter(prefix="/donors/entities", tags=["donor-insights"])

DonorViewer = Depends(require_roles("DONOR", "COORDINATOR"))


def _categories(values: Optional[List[AssessmentType]]) -> Optional[List[str]]:
    return [v.value for v in values] if values else None


@router.get("/impact", response_model=DonorImpactOut)
async def donor_impact(user: User = DonorViewer, db: AsyncSession = Depends(get_db)):
    return await entity_insights_service.donor_impact(db, user)


@router.get("/{entity_id}/assessments", response_model=EntityAssessmentsOut)
async def entity_assessments(
    entity_id: uuid.UUID,
    user: User = DonorViewer,
    db: AsyncSession = Depends(get_db),
    assessment_type: AssessmentType | None = None,
    verification_status: VerificationStatus | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    entity = await entity_insights_service.accessible_entity(db, user, entity_id)
    return await entity_insights_service.entity_assessments(
        db,
        entity,
        assessment_type=assessment_type.value if assessment_type else None,
        verification_status=verification_status.value if verification_status else None,
        since=since,
        until=until,
        page=page,
        page_size=page_size,
    )


@router.get("/{entity_id}/assessments/latest", response_model=LatestAssessmentsOut)
async def latest_assessments(
    entity_id: uuid.UUID,
    user: User = DonorViewer,
    db: AsyncSession = Depends(get_db),
    categories: List[AssessmentType] | None = Query(None),
    include_unverified: bool = False,
):
    entity = await entity_insights_service.accessible_entity(db, user, entity_id)
    return await entity_insights_service.latest_assessments(
        db, entity, categories=_categories(categories), include_unverified=include_unverified
    )


@router.get("/{entity_id}/assessments/trends", response_model=AssessmentTrendsOut)
async def assessment_trends(
    entity_id: uuid.UUID,
    user: User = DonorViewer,
    db: AsyncSession = Depends(get_db),
    timeframe: str = Query("1y", pattern="^(3m|6m|1y|2y)$"),
    granularity: str = Query("month", pattern="^(week|month|quarter)$"),
    categories: List[AssessmentType] | None = Query(None),
):
    entity = await entity_insights_service.accessible_entity(db, user, entity_id)
    return await entity_insights_service.assessment_trends(
        db, entity, timeframe=timeframe, granularity=granularity, categories=_categories(categories)
    )


@router.get("/{entity_id}/demographics", response_model=DemographicsOut)
async def entity_demographics(entity_id: uuid.UUID, user: User = DonorViewer, db: AsyncSession = Depends(get_db)):
    entity = await entity_insights_service.accessible_entity(db, user, entity_id)
    return await entity_insights_service.entity_demographics(db, entity)


@router.get("/{entity_id}/gap-analysis", response_model=EntityGapOverviewOut)
async def entity_gap_analysis(
    entity_id: uuid.UUID,
    user: User = DonorViewer,
    db: AsyncSession = Depends(get_db),
    severity: Priority | None = None,
    categories: List[AssessmentType] | None = Query(None),
):
    entity = await entity_insights_service.accessible_entity(db, user, entity_id)
    return await entity_insights_service.entity_gap_overview(
        db, entity, severity=severity.value if severity else None, categories=_categories(categories)
    )
