from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from dms.schemas.common import Coordinates, IncidentStatus, PageMeta, Priority
from dms.schemas.entities import EntityOut

"""
Schemas Incidents (Pydantic).

Rôle (fonctionnel) :
- Création / mise à jour d’incident (statut, sévérité).
- Association des entités affectées.
- Détail d’incident avec ses entités.
"""


class IncidentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str = Field(..., min_length=1, max_length=100)
    sub_type: Optional[str] = Field(default=None, max_length=100)
    severity: Priority = Priority.MEDIUM
    status: IncidentStatus = IncidentStatus.ACTIVE
    description: Optional[str] = Field(default=None, max_length=4000)
    location: Optional[str] = Field(default=None, max_length=255)
    coordinates: Optional[Coordinates] = None
    entity_ids: List[uuid.UUID] = Field(default_factory=list)


class IncidentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sub_type: Optional[str] = Field(default=None, max_length=100)
    severity: Optional[Priority] = None
    status: Optional[IncidentStatus] = None
    description: Optional[str] = Field(default=None, max_length=4000)
    location: Optional[str] = Field(default=None, max_length=255)


class IncidentEntityLink(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_ids: List[uuid.UUID] = Field(..., min_length=1)


class IncidentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str
    sub_type: Optional[str] = None
    severity: str
    status: str
    description: Optional[str] = None
    location: Optional[str] = None
    coordinates: Optional[Dict[str, Any]] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime


class IncidentDetail(IncidentOut):
    affected_entities: List[EntityOut] = Field(default_factory=list)


class IncidentListResponse(BaseModel):
    data: List[IncidentOut]
    meta: PageMeta
