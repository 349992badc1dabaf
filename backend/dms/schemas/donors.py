from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from dms.schemas.common import EMAIL_PATTERN, DonorType, ItemLine, PageMeta

"""
Schemas Donors / Commitments (Pydantic).

Rôle (fonctionnel) :
- Profil donateur (création, mise à jour, sortie).
- Engagements : création, mise à jour, utilisation (livraison), annulation, statistiques.
"""


class DonorCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    type: DonorType
    contact_email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    contact_phone: Optional[str] = Field(default=None, max_length=40)
    organization: Optional[str] = Field(default=None, max_length=200)
    user_id: Optional[uuid.UUID] = None


class DonorUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[DonorType] = None
    contact_email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    contact_phone: Optional[str] = Field(default=None, max_length=40)
    organization: Optional[str] = Field(default=None, max_length=200)
    is_active: Optional[bool] = None


class DonorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    name: str
    type: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    organization: Optional[str] = None
    is_active: bool
    leaderboard_rank: Optional[int] = None
    self_reported_delivery_rate: Optional[float] = None
    verified_delivery_rate: Optional[float] = None
    created_at: datetime
    updated_at: datetime


class CommitmentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    donor_id: Optional[uuid.UUID] = None  # déduit du profil pour un compte DONOR
    entity_id: uuid.UUID
    incident_id: uuid.UUID
    items: List[ItemLine] = Field(..., min_length=1)
    notes: Optional[str] = Field(default=None, max_length=4000)


class CommitmentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: Optional[List[ItemLine]] = Field(default=None, min_length=1)
    notes: Optional[str] = Field(default=None, max_length=4000)


class CommitmentUsage(BaseModel):
    """Consommation d’une partie de l’engagement (livraison)."""
    model_config = ConfigDict(extra="forbid")

    quantity: int = Field(..., gt=0)
    notes: Optional[str] = Field(default=None, max_length=2000)


class CommitmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    donor_id: uuid.UUID
    entity_id: uuid.UUID
    incident_id: uuid.UUID
    status: str
    items: List[Dict[str, Any]]
    total_committed_quantity: int
    delivered_quantity: int
    verified_delivered_quantity: int
    remaining_quantity: int
    total_value_estimated: Optional[float] = None
    commitment_date: datetime
    last_updated: datetime
    notes: Optional[str] = None


class CommitmentListResponse(BaseModel):
    data: List[CommitmentOut]
    meta: PageMeta


class CommitmentStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    total_committed_quantity: int
    delivered_quantity: int
    verified_delivered_quantity: int
    total_value_estimated: float
    utilization_rate: float
