from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import ForbiddenError, UnauthorizedError
from dms.core.security import token_subject
from dms.db.session import get_db
from dms.models.user import User

"""
Dépendances API.

Rôle (fonctionnel) :
- Centralise les dépendances réutilisables sur les routes :
  - utilisateur courant (JWT -> utilisateur chargé en base, rôles compris)
  - contrôle de rôles (ADMIN satisfait tous les contrôles)
- Diffusion WebSocket best-effort des événements métier.
"""

log = logging.getLogger("dms.api")


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    user_id = token_subject(request)
    user = (await db.execute(select(User).where(User.id == user_id))).scalars().first()
    if not user:
        raise UnauthorizedError("Utilisateur inconnu")
    if not user.is_active or user.is_locked:
        raise UnauthorizedError("Compte inactif ou verrouillé")

    # Acteur disponible pour les logs de la requête
    request.state.actor = str(user.id)
    return user


def require_roles(*roles: str) -> Callable[..., Any]:
    """Dépendance : l’utilisateur doit avoir au moins un des rôles (403 sinon)."""

    async def _checker(user: User = Depends(get_current_user)) -> User:
        if not user.has_role(*roles):
            raise ForbiddenError("Rôle insuffisant", details={"required_roles": list(roles)})
        return user

    return _checker


# Dépendances prêtes à l’emploi
CurrentUser = Depends(get_current_user)
CoordinatorUser = Depends(require_roles("COORDINATOR"))
AdminUser = Depends(require_roles("ADMIN"))


async def publish_event(request: Request, topic: str, event_type: str, data: Dict[str, Any]) -> None:
    """Envoie un event WS sans faire échouer l’endpoint si le WS n’est pas disponible."""
    manager = getattr(request.app.state, "ws_manager", None)
    if manager is None:
        return
    try:
        await manager.publish(topic, event_type, data)
    except Exception:
        log.warning("ws_publish_failed", extra={"resource": topic}, exc_info=True)
