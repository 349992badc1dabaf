from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from dms.schemas.common import PageMeta

"""
Schemas Audit (Pydantic).

Rôle (fonctionnel) :
- Lecture du journal d’audit (qui, quoi, sur quelle ressource, depuis où).
"""


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime


class AuditLogListResponse(BaseModel):
    data: List[AuditLogOut]
    meta: PageMeta
