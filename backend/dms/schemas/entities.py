from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from dms.schemas.common import AssessmentType, Coordinates, EntityType, PageMeta, Priority, ResponseType

"""
Schemas Entities / Assignments / Auto-approval (Pydantic).

Rôle (fonctionnel) :
- Entités (création, mise à jour, sortie) et affectations utilisateur <-> entité.
- Configuration d’auto-approbation stockée dans les métadonnées de l’entité (clé "autoApproval").
"""


class EntityCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    type: EntityType
    location: Optional[str] = Field(default=None, max_length=255)
    coordinates: Optional[Coordinates] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EntityUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    location: Optional[str] = Field(default=None, max_length=255)
    coordinates: Optional[Coordinates] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class EntityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    type: str
    location: Optional[str] = None
    coordinates: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")
    is_active: bool
    auto_approve_enabled: bool
    created_at: datetime
    updated_at: datetime


class EntityListResponse(BaseModel):
    data: List[EntityOut]
    meta: PageMeta


class AssignmentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: uuid.UUID
    entity_id: uuid.UUID


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    entity_id: uuid.UUID
    assigned_at: datetime
    assigned_by: Optional[uuid.UUID] = None


class AutoApprovalConfig(BaseModel):
    """
    Règles d’auto-approbation d’une entité.

    - scope : assessments / responses / both
    - assessment_types / response_types : vides = tous les types
    - max_priority : priorité maximale auto-approuvable (ex : MEDIUM -> LOW et MEDIUM)
    - requires_documentation : pièces jointes obligatoires
    """
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    scope: str = Field(default="both", pattern="^(assessments|responses|both)$")
    assessment_types: List[AssessmentType] = Field(default_factory=list)
    response_types: List[ResponseType] = Field(default_factory=list)
    max_priority: Priority = Priority.MEDIUM
    requires_documentation: bool = False


class AutoApprovalOut(AutoApprovalConfig):
    entity_id: uuid.UUID
    entity_name: str


class BulkAutoApprovalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)
    config: AutoApprovalConfig
