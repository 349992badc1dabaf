from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

"""
DB Base.

Rôle (fonctionnel) :
- Définit la classe Base SQLAlchemy commune à tous les modèles ORM.
- Fournit les types/horodatages partagés :
  - UUIDType : UUID natif sous PostgreSQL, CHAR(32) ailleurs (SQLite côté tests / terrain).
  - JSONType : JSONB sous PostgreSQL, JSON générique ailleurs.
  - utcnow() : horodatage UTC “aware” utilisé par défaut sur les colonnes DateTime.

Note :
- Tous les modèles doivent hériter de Base pour être enregistrés dans la metadata
  (création du schéma via scripts/bootstrap_db.py).
"""

UUIDType = Uuid(as_uuid=True)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise un datetime lu en base (SQLite renvoie des valeurs naïves)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Classe racine ORM (SQLAlchemy Declarative)."""
    pass
