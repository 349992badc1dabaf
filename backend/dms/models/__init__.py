"""
dms.models

Package ORM (SQLAlchemy) : définition des entités persistées en base.

Rôle (fonctionnel) :
- Centralise les modèles de l’application (utilisateurs, entités, incidents, évaluations,
  réponses, donateurs, engagements, audit, conflits de synchro).
- Importer ce package enregistre toutes les tables dans Base.metadata.
"""

from dms.models.user import User, UserRole
from dms.models.entity import Entity, EntityAssignment
from dms.models.incident import Incident, IncidentEntity
from dms.models.assessment import PreliminaryAssessment, RapidAssessment
from dms.models.donor import Donor, DonorCommitment
from dms.models.response import RapidResponse
from dms.models.gap_field_severity import GapFieldSeverity
from dms.models.sync_conflict import SyncConflict
from dms.models.audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "Entity",
    "EntityAssignment",
    "Incident",
    "IncidentEntity",
    "PreliminaryAssessment",
    "RapidAssessment",
    "Donor",
    "DonorCommitment",
    "RapidResponse",
    "GapFieldSeverity",
    "SyncConflict",
    "AuditLog",
]
