from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import CoordinatorUser, CurrentUser
from dms.core.errors import ConflictError, ForbiddenError, NotFoundError
from dms.db.session import get_db
from dms.models.donor import Donor
from dms.models.user import User
from dms.schemas.common import DonorType, EntityType, PageMeta
from dms.schemas.dashboard import DonorMetricsOut, LeaderboardOut, TrendsOut
from dms.schemas.donors import DonorCreate, DonorOut, DonorUpdate
from dms.services import audit_service, gamification_service, trends_service
from dms.services.commitment_service import donor_for_user, ensure_can_manage

"""
API Donateurs.

Rôle (fonctionnel) :
- Profils donateurs : création / mise à jour par la coordination ou par le compte DONOR
  propriétaire, liste filtrée, détail.
- Analytique : métriques de performance par période, classement (leaderboard) avec
  tendance de rang, séries temporelles (pandas).
- Recalcul du classement persisté (coordination).
"""

router = APIRouter(prefix="/donors", tags=["donors"])
log = logging.getLogger("dms.donors")

TIMEFRAME_PATTERN = "^(7d|30d|90d|1y|all)$"


async def _get_donor(db: AsyncSession, donor_id: uuid.UUID) -> Donor:
    donor = (await db.execute(select(Donor).where(Donor.id == donor_id))).scalars().first()
    if not donor:
        raise NotFoundError("Donateur introuvable")
    return donor


@router.get("")
async def list_donors(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    type: DonorType | None = None,
    is_active: bool | None = None,
    search: str | None = Query(None, max_length=100),
):
    conditions = []
    if type is not None:
        conditions.append(Donor.type == type.value)
    if is_active is not None:
        conditions.append(Donor.is_active.is_(is_active))
    if search:
        like = f"%{search.strip()}%"
        conditions.append(or_(Donor.name.ilike(like), Donor.organization.ilike(like)))

    total = (await db.execute(select(func.count()).select_from(Donor).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(Donor)
            .where(*conditions)
            .order_by(Donor.leaderboard_rank.is_(None), Donor.leaderboard_rank, Donor.name)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()

    return {
        "data": [DonorOut.model_validate(d) for d in rows],
        "meta": PageMeta(page=page, page_size=page_size, total=total),
    }


@router.post("", response_model=DonorOut, status_code=201)
async def create_donor(
    payload: DonorCreate,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    user_id = payload.user_id
    if not user.has_role("COORDINATOR"):
        # Un compte DONOR ne crée que son propre profil
        if not user.has_role("DONOR") or (user_id is not None and user_id != user.id):
            raise ForbiddenError("Création de profil donateur non autorisée")
        user_id = user.id

    if user_id is not None and await donor_for_user(db, user_id):
        raise ConflictError("Ce compte a déjà un profil donateur", details={"user_id": str(user_id)})

    donor = Donor(
        user_id=user_id,
        name=payload.name,
        type=payload.type.value,
        contact_email=payload.contact_email,
        contact_phone=payload.contact_phone,
        organization=payload.organization,
    )
    db.add(donor)
    await db.flush()

    audit_service.record(
        db,
        action="DONOR_CREATED",
        resource="donor",
        resource_id=donor.id,
        user_id=user.id,
        new_values={"name": donor.name, "type": donor.type},
        request=request,
    )
    await db.commit()
    await db.refresh(donor)
    return donor


@router.get("/leaderboard", response_model=LeaderboardOut)
async def leaderboard(
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    timeframe: str = Query("30d", pattern=TIMEFRAME_PATTERN),
    sort_by: str = Query("overall", pattern="^(overall|delivery_rate|commitment_value|consistency)$"),
    region: str | None = Query(None, max_length=120),
    entity_type: EntityType | None = None,
    limit: int = Query(50, ge=1, le=500),
):
    rows = await gamification_service.leaderboard(
        db,
        timeframe=timeframe,
        region=region,
        entity_type=entity_type.value if entity_type else None,
        sort_by=sort_by,
        limit=limit,
    )
    return {"timeframe": timeframe, "sort_by": sort_by, "data": rows}


@router.post("/leaderboard/recompute")
async def recompute_leaderboard(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    timeframe: str = Query("all", pattern=TIMEFRAME_PATTERN),
):
    ranked = await gamification_service.recompute_rankings(db, timeframe=timeframe)
    await db.commit()
    log.info("leaderboard_recompute_requested", extra={"actor": str(user.id), "batch_size": ranked})
    return {"timeframe": timeframe, "ranked_donors": ranked}


@router.get("/trends", response_model=TrendsOut)
async def global_trends(
    user: User = CoordinatorUser,
    db: AsyncSession = Depends(get_db),
    timeframe: str = Query("6m", pattern="^(3m|6m|1y|2y)$"),
    granularity: str = Query("month", pattern="^(week|month|quarter)$"),
):
    return await trends_service.donor_trends(db, timeframe=timeframe, granularity=granularity)


@router.get("/{donor_id}", response_model=DonorOut)
async def get_donor(donor_id: uuid.UUID, user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    return await _get_donor(db, donor_id)


@router.patch("/{donor_id}", response_model=DonorOut)
async def update_donor(
    donor_id: uuid.UUID,
    payload: DonorUpdate,
    request: Request,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
):
    donor = await _get_donor(db, donor_id)
    await ensure_can_manage(db, user, donor.id)

    changes = payload.model_dump(exclude_unset=True, mode="json")
    if "is_active" in changes and not user.has_role("COORDINATOR"):
        raise ForbiddenError("Seule la coordination peut activer / désactiver un donateur")

    old_values = {k: getattr(donor, k) for k in changes}
    for field, value in changes.items():
        setattr(donor, field, value)

    audit_service.record(
        db,
        action="DONOR_UPDATED",
        resource="donor",
        resource_id=donor.id,
        user_id=user.id,
        old_values=old_values,
        new_values=changes,
        request=request,
    )
    await db.commit()
    await db.refresh(donor)
    return donor


@router.get("/{donor_id}/metrics", response_model=DonorMetricsOut)
async def donor_metrics(
    donor_id: uuid.UUID,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    timeframe: str = Query("all", pattern=TIMEFRAME_PATTERN),
):
    metrics = await gamification_service.donor_metrics(db, donor_id, timeframe)
    return metrics.to_dict()


@router.get("/{donor_id}/trends", response_model=TrendsOut)
async def donor_trends(
    donor_id: uuid.UUID,
    user: User = CurrentUser,
    db: AsyncSession = Depends(get_db),
    timeframe: str = Query("6m", pattern="^(3m|6m|1y|2y)$"),
    granularity: str = Query("month", pattern="^(week|month|quarter)$"),
):
    return await trends_service.donor_trends(db, donor_id=donor_id, timeframe=timeframe, granularity=granularity)
