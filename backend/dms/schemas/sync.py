from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dms.core.settings import settings
from dms.schemas.common import parse_iso_datetime
from dms.services.conflict_resolution import ResolutionStrategy

"""
Schemas Sync (Pydantic).

Rôle (fonctionnel) :
- Contrat de la synchro terrain -> serveur (lot de changements) et du retour par changement.
- Pull des changements serveur depuis une date.
- Liste et résolution des conflits.
"""


class ChangeType(str, Enum):
    ASSESSMENT = "assessment"
    RESPONSE = "response"
    ENTITY = "entity"


class ChangeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ChangeResult(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    FAILED = "failed"


class SyncChange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: ChangeType
    action: ChangeAction
    data: Dict[str, Any] = Field(default_factory=dict)
    offline_id: str = Field(..., min_length=1, max_length=64)
    version_number: int = Field(default=1, ge=1)
    entity_uuid: Optional[uuid.UUID] = None  # id serveur (update / delete)
    last_modified: Optional[datetime] = None

    @field_validator("last_modified", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_iso_datetime(v)
        return v


class SyncBatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    changes: List[SyncChange] = Field(..., min_length=1)

    @field_validator("changes")
    @classmethod
    def _max_batch(cls, v: List[SyncChange]) -> List[SyncChange]:
        if len(v) > settings.SYNC_MAX_BATCH_SIZE:
            raise ValueError(f"Lot trop volumineux (max {settings.SYNC_MAX_BATCH_SIZE} changements)")
        return v


class SyncResultItem(BaseModel):
    offline_id: str
    server_id: Optional[str] = None
    status: ChangeResult
    message: Optional[str] = None
    version_number: Optional[int] = None
    conflict_data: Optional[Dict[str, Any]] = None


class SyncBatchResponse(BaseModel):
    results: List[SyncResultItem]
    summary: Dict[str, int]
    server_time: datetime


class SyncPullResponse(BaseModel):
    assessments: List[Dict[str, Any]]
    responses: List[Dict[str, Any]]
    entities: List[Dict[str, Any]]
    server_time: datetime


class ConflictOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entity_type: str
    entity_id: str
    conflict_date: datetime
    resolution_method: str
    winning_version: Dict[str, Any]
    losing_version: Dict[str, Any]
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[uuid.UUID] = None
    detected_by: Optional[uuid.UUID] = None
    coordinator_notified: bool
    coordinator_notified_at: Optional[datetime] = None


class ConflictResolve(BaseModel):
    model_config = ConfigDict(extra="forbid")

    strategy: ResolutionStrategy
    resolved_data: Optional[Dict[str, Any]] = None
