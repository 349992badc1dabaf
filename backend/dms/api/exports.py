from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser
from dms.db.session import get_db
from dms.models.user import User
from dms.schemas.common import AssessmentType, CommitmentStatus, Priority, VerificationStatus
from dms.services import export_service

"""
API Exports (CSV).

Rôle (fonctionnel) :
- Téléchargement CSV des évaluations, des engagements et de la table des écarts
  (coordination), construit avec pandas.
"""

router = APIRouter(prefix="/exports", tags=["exports"])
log = logging.getLogger("dms.exports")


def _csv_response(df, name: str, user: User) -> Response:
    filename = f"{name}_{datetime.now(timezone.utc):%Y%m%d_%H%M%S}.csv"
    log.info("csv_export", extra={"actor": str(user.id), "resource": name, "batch_size": len(df)})
    return Response(
        content=export_service.to_csv_bytes(df),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/assessments.csv")
async def export_assessments(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    assessment_type: AssessmentType | None = None,
    verification_status: VerificationStatus | None = None,
    entity_id: uuid.UUID | None = None,
):
    df = await export_service.assessments_frame(
        db,
        assessment_type=assessment_type.value if assessment_type else None,
        verification_status=verification_status.value if verification_status else None,
        entity_id=entity_id,
    )
    return _csv_response(df, "assessments", user)


@router.get("/commitments.csv")
async def export_commitments(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    donor_id: uuid.UUID | None = None,
    incident_id: uuid.UUID | None = None,
    status: CommitmentStatus | None = None,
):
    df = await export_service.commitments_frame(
        db,
        donor_id=donor_id,
        incident_id=incident_id,
        status=status.value if status else None,
    )
    return _csv_response(df, "commitments", user)


@router.get("/gaps.csv")
async def export_gaps(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    severity: Priority | None = None,
    incident_id: uuid.UUID | None = None,
):
    df = await export_service.gaps_frame(db, severity=severity.value if severity else None, incident_id=incident_id)
    return _csv_response(df, "resource_gaps", user)
