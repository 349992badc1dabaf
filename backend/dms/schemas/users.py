from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dms.schemas.common import EMAIL_PATTERN, PageMeta, Role

"""
Schemas Users (Pydantic).

Rôle (fonctionnel) :
- Administration des comptes (création avec rôles, mise à jour, remplacement des rôles).
- Sortie API : les rôles ORM (UserRole) sont aplatis en liste de noms.
"""


class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)
    organization: Optional[str] = Field(default=None, max_length=200)
    roles: List[Role] = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def _email_lower(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class UserUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)
    organization: Optional[str] = Field(default=None, max_length=200)
    is_active: Optional[bool] = None
    is_locked: Optional[bool] = None


class UserRolesUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    roles: List[Role] = Field(..., min_length=1)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    username: str
    name: str
    phone: Optional[str] = None
    organization: Optional[str] = None
    is_active: bool
    is_locked: bool
    roles: List[str] = Field(default_factory=list)
    last_login: Optional[datetime] = None
    created_at: datetime

    @field_validator("roles", mode="before")
    @classmethod
    def _flatten_roles(cls, v: Any) -> Any:
        # Relation ORM -> ["ASSESSOR", ...]
        if isinstance(v, (list, tuple, set)):
            return sorted(getattr(r, "role", r) for r in v)
        return v


class UserListResponse(BaseModel):
    data: List[UserOut]
    meta: PageMeta


class MeOut(BaseModel):
    user: UserOut
    assigned_entity_ids: List[uuid.UUID]
