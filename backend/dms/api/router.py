from fastapi import APIRouter

from .health import router as health_router

from dms.api.assessments import router as assessments_router
from dms.api.assignments import router as assignments_router
from dms.api.audit import router as audit_router
from dms.api.commitments import router as commitments_router
from dms.api.dashboard import router as dashboard_router
from dms.api.donor_insights import router as donor_insights_router
from dms.api.donors import router as donors_router
from dms.api.entities import router as entities_router
from dms.api.exports import router as exports_router
from dms.api.gaps import router as gaps_router
from dms.api.incidents import router as incidents_router
from dms.api.preliminary import router as preliminary_router
from dms.api.responses import router as responses_router
from dms.api.status import router as status_router
from dms.api.sync import router as sync_router
from dms.api.users import router as users_router
from dms.api.verification import router as verification_router

"""
Router principal de l’API.

Rôle (fonctionnel) :
- Regroupe les routeurs par domaine (utilisateurs, entités, incidents, évaluations, réponses,
  donateurs, vérification, synchro, analyses, exports, système).
- Sert de point d’entrée unique pour l’inclusion dans l’application FastAPI.
"""

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(status_router)
api_router.include_router(users_router)
api_router.include_router(entities_router)
api_router.include_router(assignments_router)
api_router.include_router(incidents_router)
api_router.include_router(preliminary_router)
api_router.include_router(assessments_router)
api_router.include_router(responses_router)
api_router.include_router(donor_insights_router)
api_router.include_router(donors_router)
api_router.include_router(commitments_router)
api_router.include_router(verification_router)
api_router.include_router(gaps_router)
api_router.include_router(sync_router)
api_router.include_router(dashboard_router)
api_router.include_router(audit_router)
api_router.include_router(exports_router)
