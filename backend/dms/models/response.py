from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dms.db.base import Base, JSONType, UUIDType, utcnow

"""
Model RapidResponse.

Rôle (fonctionnel) :
- Intervention planifiée puis livrée par un intervenant (RESPONDER) sur une entité,
  en réponse à une évaluation vérifiée.
- Peut être adossée à un engagement donateur (commitment_id / donor_id) : la livraison
  consomme alors la quantité engagée.

Cycle de vie :
- status : PLANNED -> DELIVERED
- verification_status : DRAFT -> SUBMITTED (à la livraison) -> VERIFIED / AUTO_VERIFIED / REJECTED
- items : [{name, unit, quantity}] planifiés ; delivered_items : quantités réellement livrées.
"""


class RapidResponse(Base):
    __tablename__ = "rapid_responses"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    responder_id: Mapped[uuid.UUID] = mapped_column(UUIDType, ForeignKey("users.id"), nullable=False, index=True)
    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("rapid_assessments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    donor_id: Mapped[uuid.UUID | None] = mapped_column(UUIDType, ForeignKey("donors.id"), nullable=True, index=True)
    commitment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUIDType,
        ForeignKey("donor_commitments.id"),
        nullable=True,
        index=True,
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="MEDIUM")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PLANNED", index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    delivered_items: Mapped[List[Dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    delivery_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivery_location: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    media_attachments: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    planned_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    response_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # date de livraison

    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_offline_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offline_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    sync_status: Mapped[str] = mapped_column(String(20), nullable=False, default="SYNCED")

    verification_status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT", index=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejection_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_rapid_responses_assessment_status", "assessment_id", "status"),
    )
