from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dms.db.base import Base, JSONType, UUIDType, utcnow

"""
Models Entity / EntityAssignment.

Rôle (fonctionnel) :
- Entity : lieu physique ou administratif suivi (communauté, quartier, LGA, État, structure, camp).
  Porte des coordonnées {latitude, longitude} et des métadonnées libres, dont la configuration
  d’auto-approbation (clé "autoApproval").
- EntityAssignment : rattachement d’un utilisateur à une entité. Conditionne la création
  d’évaluations, de réponses et l’accès aux engagements disponibles.

Index :
- (name, type) unique.
- (user_id, entity_id) unique : une affectation n’existe qu’une fois.
"""


class Entity(Base):
    __tablename__ = "entities"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # COMMUNITY / WARD / ...
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    coordinates: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # "metadata" est réservé par SQLAlchemy côté classe : attribut `meta`
    meta: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    auto_approve_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("name", "type", name="uq_entities_name_type"),)


class EntityAssignment(Base):
    __tablename__ = "entity_assignments"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(UUIDType, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "entity_id", name="uq_entity_assignments_user_entity"),
        Index("ix_entity_assignments_user", "user_id"),
    )
