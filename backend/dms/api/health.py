from fastapi import APIRouter

from dms.core.settings import settings

"""
API Health.

Rôle (fonctionnel) :
- Endpoint simple pour vérifier que l’API répond (liveness).
- Utilisé par le client terrain comme test de connectivité avant chaque cycle de synchro.
"""

router = APIRouter()


@router.get("/health")
def health():
    return {
        "status": "ok",
        "env": settings.ENV,
        "app": settings.APP_NAME,
    }
