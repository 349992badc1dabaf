from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dms.db.base import Base, JSONType, UUIDType, utcnow

"""
Models Incident / IncidentEntity.

Rôle (fonctionnel) :
- Incident : événement catastrophe (inondation, conflit, épidémie...) avec une sévérité
  (CRITICAL / HIGH / MEDIUM / LOW) et un statut (ACTIVE / CONTAINED / RESOLVED).
- IncidentEntity : entités affectées par l’incident (table d’association).
"""


class Incident(Base):
    __tablename__ = "incidents"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    type: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="MEDIUM", index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE", index=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    coordinates: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(UUIDType, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class IncidentEntity(Base):
    __tablename__ = "incident_entities"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    incident_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    linked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("incident_id", "entity_id", name="uq_incident_entities_pair"),
        Index("ix_incident_entities_incident", "incident_id"),
    )
