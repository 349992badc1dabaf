from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dms.db.base import Base, JSONType, UUIDType, utcnow

"""
Model AuditLog.

Rôle (fonctionnel) :
- Trace toute action sensible (vérification, livraison, affectation, résolution de conflit...).
- Conserve l’état avant/après (old_values / new_values) et le contexte technique
  (IP, user agent, request_id) pour corréler avec les logs applicatifs.
"""


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Action métier (ex : ASSESSMENT_VERIFIED, DELIVERY_CONFIRMED)
    action: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(60), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    old_values: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    __table_args__ = (Index("ix_audit_logs_resource", "resource", "resource_id"),)
