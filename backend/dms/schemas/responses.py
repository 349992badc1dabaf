from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dms.schemas.common import Coordinates, ItemLine, PageMeta, Priority, ResponseType, parse_iso_datetime

"""
Schemas Responses (Pydantic).

Rôle (fonctionnel) :
- Planification d’une réponse (directe ou à partir d’un engagement donateur).
- Mise à jour d’une réponse planifiée, confirmation de livraison.
- Sortie API (détail + liste paginée).
"""


class ResponsePlanCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assessment_id: uuid.UUID
    entity_id: uuid.UUID
    type: ResponseType
    priority: Priority = Priority.MEDIUM
    description: Optional[str] = Field(default=None, max_length=4000)
    items: List[ItemLine] = Field(..., min_length=1)
    planned_date: Optional[datetime] = None
    donor_id: Optional[uuid.UUID] = None

    offline_id: Optional[str] = Field(default=None, max_length=64)
    is_offline_created: bool = False

    @field_validator("planned_date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_iso_datetime(v)
        return v


class ResponseFromCommitment(BaseModel):
    """Réponse planifiée à partir d’un engagement disponible sur l’entité."""
    model_config = ConfigDict(extra="forbid")

    commitment_id: uuid.UUID
    assessment_id: uuid.UUID
    type: ResponseType
    priority: Priority = Priority.MEDIUM
    description: Optional[str] = Field(default=None, max_length=4000)
    planned_date: Optional[datetime] = None

    # Sous-ensemble des articles de l’engagement (par défaut : le reliquat complet)
    items: Optional[List[ItemLine]] = None


class ResponseUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[ResponseType] = None
    priority: Optional[Priority] = None
    description: Optional[str] = Field(default=None, max_length=4000)
    items: Optional[List[ItemLine]] = Field(default=None, min_length=1)
    planned_date: Optional[datetime] = None


class DeliveryConfirm(BaseModel):
    model_config = ConfigDict(extra="forbid")

    delivered_items: Optional[List[ItemLine]] = None  # par défaut : les articles planifiés
    delivery_notes: Optional[str] = Field(default=None, max_length=4000)
    delivery_location: Optional[Coordinates] = None
    delivered_at: Optional[datetime] = None
    media_attachments: List[str] = Field(default_factory=list, max_length=50)

    @field_validator("delivered_at", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_iso_datetime(v)
        return v


class ResponseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    responder_id: uuid.UUID
    entity_id: uuid.UUID
    assessment_id: uuid.UUID
    donor_id: Optional[uuid.UUID] = None
    commitment_id: Optional[uuid.UUID] = None
    type: str
    priority: str
    status: str
    description: Optional[str] = None
    items: List[Dict[str, Any]]
    delivered_items: Optional[List[Dict[str, Any]]] = None
    delivery_notes: Optional[str] = None
    delivery_location: Optional[Dict[str, Any]] = None
    media_attachments: List[str] = Field(default_factory=list)
    planned_date: Optional[datetime] = None
    response_date: Optional[datetime] = None
    version_number: int
    is_offline_created: bool
    offline_id: Optional[str] = None
    sync_status: str
    verification_status: str
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_feedback: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ResponseListResponse(BaseModel):
    data: List[ResponseOut]
    meta: PageMeta
