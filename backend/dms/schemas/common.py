from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

"""
Schemas communs (Pydantic).

Rôle (fonctionnel) :
- Enumérations métier partagées par les schémas, les services et le client terrain.
- Briques réutilisables : pagination, coordonnées, lignes d’articles (items), parse de dates ISO.

Notes :
- Les colonnes ORM stockent la valeur texte des enums (String), les schémas valident l’appartenance.
"""


class Role(str, Enum):
    ASSESSOR = "ASSESSOR"
    COORDINATOR = "COORDINATOR"
    RESPONDER = "RESPONDER"
    DONOR = "DONOR"
    ADMIN = "ADMIN"


class EntityType(str, Enum):
    COMMUNITY = "COMMUNITY"
    WARD = "WARD"
    LGA = "LGA"
    STATE = "STATE"
    FACILITY = "FACILITY"
    CAMP = "CAMP"


class AssessmentType(str, Enum):
    HEALTH = "HEALTH"
    WASH = "WASH"
    SHELTER = "SHELTER"
    FOOD = "FOOD"
    SECURITY = "SECURITY"
    POPULATION = "POPULATION"


class ResponseType(str, Enum):
    HEALTH = "HEALTH"
    WASH = "WASH"
    SHELTER = "SHELTER"
    FOOD = "FOOD"
    SECURITY = "SECURITY"
    POPULATION = "POPULATION"
    LOGISTICS = "LOGISTICS"


class Priority(str, Enum):
    """Priorité / sévérité (CRITICAL > HIGH > MEDIUM > LOW)."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# Rang numérique pour comparer / trier les priorités
PRIORITY_RANK = {"LOW": 1, "MEDIUM": 2, "HIGH": 3, "CRITICAL": 4}


def priority_rank(value: str | Priority | None) -> int:
    if value is None:
        return 0
    return PRIORITY_RANK.get(value.value if isinstance(value, Priority) else str(value).upper(), 0)


def max_priority(*values: str | None) -> str:
    ranked = [v for v in values if v]
    if not ranked:
        return Priority.LOW.value
    return max(ranked, key=priority_rank)


class IncidentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONTAINED = "CONTAINED"
    RESOLVED = "RESOLVED"


class AssessmentStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    PUBLISHED = "PUBLISHED"


class VerificationStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    AUTO_VERIFIED = "AUTO_VERIFIED"
    REJECTED = "REJECTED"


VERIFIED_STATUSES = (VerificationStatus.VERIFIED.value, VerificationStatus.AUTO_VERIFIED.value)


class ResponseStatus(str, Enum):
    PLANNED = "PLANNED"
    DELIVERED = "DELIVERED"


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"
    LOCAL = "LOCAL"


class DonorType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    ORGANIZATION = "ORGANIZATION"
    GOVERNMENT = "GOVERNMENT"
    NGO = "NGO"
    CORPORATE = "CORPORATE"


class CommitmentStatus(str, Enum):
    PLANNED = "PLANNED"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"


OPEN_COMMITMENT_STATUSES = (CommitmentStatus.PLANNED.value, CommitmentStatus.PARTIAL.value)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def parse_iso_datetime(value: str) -> datetime:
    """
    Parse robuste de datetime ISO (horodatages produits par les appareils terrain).

    - "Z" est converti en "+00:00"
    - la fraction de secondes est tronquée à 6 digits
    - sans tzinfo : UTC
    """
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    if "." in s:
        head, rest = s.split(".", 1)
        frac, tz = rest, ""
        for sign in ("+", "-"):
            if sign in rest:
                frac, tz = rest.split(sign, 1)
                tz = sign + tz
                break
        frac_digits = "".join(ch for ch in frac if ch.isdigit())[:6]
        s = f"{head}.{frac_digits}{tz}" if frac_digits else f"{head}{tz}"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class PageMeta(BaseModel):
    """Métadonnées de pagination (page, taille, total)."""
    page: int
    page_size: int
    total: int


class Coordinates(BaseModel):
    model_config = ConfigDict(extra="forbid")

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ItemLine(BaseModel):
    """Ligne d’articles (engagement, réponse) : {name, unit, quantity}."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=120)
    unit: str = Field(default="units", min_length=1, max_length=40)
    quantity: int = Field(..., ge=0)
    value_per_unit: Optional[float] = Field(default=None, ge=0)

    @field_validator("name", "unit", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v
