from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dms.db.base import Base, UUIDType, utcnow

"""
Model GapFieldSeverity.

Rôle (fonctionnel) :
- Sévérité configurée (par les coordinateurs) d’un champ d’écart d’un type d’évaluation.
  Ex : HEALTH / hasFunctionalClinic -> CRITICAL.
- En l’absence de ligne, la sévérité par défaut de services.gap_analysis s’applique.
"""


class GapFieldSeverity(Base):
    __tablename__ = "gap_field_severities"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    assessment_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    field_name: Mapped[str] = mapped_column(String(80), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="MEDIUM")

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(UUIDType, nullable=True)

    __table_args__ = (UniqueConstraint("assessment_type", "field_name", name="uq_gap_field_severities_type_field"),)
