from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from dms.db.base import Base, JSONType, UUIDType, utcnow

"""
Model SyncConflict.

Rôle (fonctionnel) :
- Enregistre chaque conflit détecté lors d’une synchro terrain (versions divergentes).
- Conserve la version retenue et la version écartée, la méthode de résolution
  et l’état de notification du coordinateur.
"""


class SyncConflict(Base):
    __tablename__ = "sync_conflicts"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)  # assessment / response / entity
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    conflict_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolution_method: Mapped[str] = mapped_column(String(30), nullable=False, default="last_write_wins")

    winning_version: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    losing_version: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)

    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(UUIDType, ForeignKey("users.id"), nullable=True)

    detected_by: Mapped[uuid.UUID | None] = mapped_column(UUIDType, ForeignKey("users.id"), nullable=True)
    coordinator_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    coordinator_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
