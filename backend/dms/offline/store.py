from __future__ import annotations

import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from dms.core.settings import settings
from dms.db.base import utcnow

"""
Store local (SQLite, SQLAlchemy sync).

Rôle (fonctionnel) :
- Persiste sur l’appareil les brouillons d’évaluation et la file de synchro,
  indépendamment de la base serveur (metadata séparée).
- Fournit une factory de sessions pour les modules drafts / queue / engine.

Notes :
- Les horodatages sont stockés en UTC ; SQLite les relit naïfs (normaliser via as_utc).
- Les identifiants locaux sont des UUID sous forme de chaîne.
"""


def _new_id() -> str:
    return str(uuid.uuid4())


class OfflineBase(DeclarativeBase):
    """Metadata propre au client terrain."""
    pass


class AssessmentDraft(OfflineBase):
    __tablename__ = "assessment_drafts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    # Clé d’idempotence côté serveur (offline_id)
    offline_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, default=_new_id)
    server_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    assessment_type: Mapped[str] = mapped_column(String(20), index=True)
    entity_id: Mapped[str] = mapped_column(String(36), index=True)
    incident_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    priority: Mapped[str] = mapped_column(String(10), default="MEDIUM")

    # data typée, resource_needs, location, coordinates, assessment_date...
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    version_number: Mapped[int] = mapped_column(Integer, default=1)
    sync_status: Mapped[str] = mapped_column(String(10), default="LOCAL", index=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class SyncQueueItem(OfflineBase):
    __tablename__ = "sync_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    type: Mapped[str] = mapped_column(String(20), index=True)  # assessment | response | entity
    action: Mapped[str] = mapped_column(String(10))  # create | update | delete
    # Élément local concerné (id du brouillon)
    target_id: Mapped[str] = mapped_column(String(36), index=True)
    offline_id: Mapped[str] = mapped_column(String(64))
    entity_uuid: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)  # id serveur
    version_number: Mapped[int] = mapped_column(Integer, default=1)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    priority: Mapped[int] = mapped_column(Integer, default=5, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


def _sqlite_url(path: str) -> str:
    if path == ":memory:":
        return "sqlite://"
    Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{Path(path).expanduser()}"


def create_store(path: Optional[str] = None) -> sessionmaker[Session]:
    """Crée (si besoin) la base locale et renvoie une factory de sessions."""
    url = _sqlite_url(path or settings.OFFLINE_DB_PATH)
    kwargs: Dict[str, Any] = {}
    if url == "sqlite://":
        # Une seule connexion partagée, sinon chaque session verrait une base vide
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}

    engine = create_engine(url, echo=False, **kwargs)
    OfflineBase.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
