from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dms.db.base import Base, JSONType, UUIDType, utcnow

"""
Models Donor / DonorCommitment.

Rôle (fonctionnel) :
- Donor : organisation ou personne qui s’engage à fournir des ressources.
  Porte les indicateurs de classement recalculés (leaderboard_rank, taux de livraison).
- DonorCommitment : promesse de ressources d’un donateur vers une entité, dans le cadre
  d’un incident. Les quantités livrées / vérifiées progressent au fil des livraisons.

Cycle de vie d’un engagement :
- PLANNED -> PARTIAL (livraison partielle) -> COMPLETE ; CANCELLED possible avant complétion.
"""


class Donor(Base):
    __tablename__ = "donors"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    # Compte DONOR propriétaire du profil (optionnel)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # INDIVIDUAL / ORGANIZATION / ...
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    organization: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # Indicateurs recalculés (voir services.gamification_service)
    leaderboard_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    self_reported_delivery_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    verified_delivery_rate: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class DonorCommitment(Base):
    __tablename__ = "donor_commitments"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    donor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("donors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    incident_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PLANNED", index=True)

    # [{name, unit, quantity, value_per_unit?}]
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    total_committed_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivered_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_delivered_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_value_estimated: Mapped[float | None] = mapped_column(Float, nullable=True)

    commitment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_donor_commitments_entity_status", "entity_id", "status"),
    )

    @property
    def remaining_quantity(self) -> int:
        return max(0, int(self.total_committed_quantity or 0) - int(self.delivered_quantity or 0))
