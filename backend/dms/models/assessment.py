from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dms.db.base import Base, JSONType, UUIDType, utcnow

"""
Models PreliminaryAssessment / RapidAssessment.

Rôle (fonctionnel) :
- PreliminaryAssessment : premier rapport d’impact (victimes, déplacés, infrastructures touchées)
  qui précède ou déclenche la création d’un incident.
- RapidAssessment : enquête de terrain typée (HEALTH, WASH, SHELTER, FOOD, SECURITY, POPULATION)
  rattachée à une entité et, éventuellement, à un incident.

Contenu d’une évaluation rapide :
- `data` : réponses spécifiques au type (booléens / compteurs), validées par dms.schemas.assessments.
- `resource_needs` : besoins chiffrés [{resource_type, required_quantity, unit, priority}].
- `gap_analysis` : snapshot de l’analyse d’écarts calculée à l’enregistrement.

Cycle de vie :
- status : DRAFT -> SUBMITTED -> VERIFIED (-> PUBLISHED)
- verification_status : DRAFT / SUBMITTED / VERIFIED / AUTO_VERIFIED / REJECTED
- version_number : incrémenté à chaque mise à jour (détection de conflits de synchro)
- offline_id : identifiant généré côté terrain (idempotence de la synchro)
"""


class PreliminaryAssessment(Base):
    __tablename__ = "preliminary_assessments"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    reporting_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reporting_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    reporting_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    reporting_lga: Mapped[str] = mapped_column(String(120), nullable=False)
    reporting_ward: Mapped[str] = mapped_column(String(120), nullable=False)

    # Bilan chiffré
    number_lives_lost: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    number_injured: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    number_displaced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    number_houses_affected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    number_schools_affected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    number_medical_facilities_affected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_agricultural_lands_affected: Mapped[str | None] = mapped_column(String(255), nullable=True)

    reporting_agent: Mapped[str] = mapped_column(String(200), nullable=False)
    additional_details: Mapped[str | None] = mapped_column(Text, nullable=True)

    incident_id: Mapped[uuid.UUID | None] = mapped_column(
        UUIDType,
        ForeignKey("incidents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(UUIDType, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class RapidAssessment(Base):
    __tablename__ = "rapid_assessments"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    assessment_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    assessment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    assessor_id: Mapped[uuid.UUID] = mapped_column(UUIDType, ForeignKey("users.id"), nullable=False, index=True)
    assessor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    entity_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    incident_id: Mapped[uuid.UUID | None] = mapped_column(
        UUIDType,
        ForeignKey("incidents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    coordinates: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT", index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="MEDIUM")
    version_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Données métier
    data: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    resource_needs: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    gap_analysis: Mapped[Dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    media_attachments: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    # Offline / synchro
    is_offline_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offline_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    sync_status: Mapped[str] = mapped_column(String(20), nullable=False, default="SYNCED")

    # Vérification
    verification_status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT", index=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)  # user id ou "system"
    rejection_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejection_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_rapid_assessments_entity_type_date", "entity_id", "assessment_type", "assessment_date"),
        Index("ix_rapid_assessments_verif_priority", "verification_status", "priority"),
    )
