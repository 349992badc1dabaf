from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt

from dms.core.errors import AppHTTPException, UnauthorizedError
from dms.core.settings import settings

"""
Core Security (JWT).

Rôle (fonctionnel) :
- Vérifie les jetons Bearer (JWT HS256) présentés par les clients.
- Le sujet (`sub`) du jeton est l’identifiant utilisateur ; les rôles font foi en base
  (chargés par api.deps), les rôles éventuellement présents dans le jeton sont indicatifs.
- L’émission des jetons relève du fournisseur d’identité : `create_access_token` ne sert
  qu’aux scripts de dev et aux tests.

Comportement :
- Jeton absent / mal formé / expiré / signature invalide : 401 UNAUTHORIZED.
- JWT_SECRET vide en prod : 500 SERVER_MISCONFIG.
"""


def _extract_token(request: Request) -> Optional[str]:
    """Extrait un token depuis Authorization: Bearer <token>."""
    auth = request.headers.get("authorization")
    if auth:
        parts = auth.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1].strip()
    return None


def _secret() -> str:
    secret = settings.JWT_SECRET or ""
    if not secret:
        raise AppHTTPException(500, "SERVER_MISCONFIG", "JWT_SECRET manquant côté serveur")
    return secret


def create_access_token(
    user_id: uuid.UUID | str,
    *,
    roles: Iterable[str] = (),
    expires_minutes: int | None = None,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """Génère un JWT signé (dev / tests)."""
    now = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "roles": sorted(set(roles)),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes or settings.JWT_EXPIRE_MINUTES)).timestamp()),
        "type": "access",
    }
    if extra_claims:
        claims.update(extra_claims)
    return jwt.encode(claims, _secret(), algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Décode et valide un JWT. Lève UnauthorizedError si invalide."""
    try:
        claims = jwt.decode(token, _secret(), algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise UnauthorizedError("Jeton expiré")
    except JWTError:
        raise UnauthorizedError("Jeton invalide")

    if claims.get("type", "access") != "access" or not claims.get("sub"):
        raise UnauthorizedError("Jeton invalide")
    return claims


def token_subject(request: Request) -> uuid.UUID:
    """Retourne l’identifiant utilisateur porté par le jeton de la requête."""
    token = _extract_token(request)
    if not token:
        raise UnauthorizedError("Jeton d’authentification manquant")

    claims = decode_access_token(token)
    try:
        return uuid.UUID(str(claims["sub"]))
    except ValueError:
        raise UnauthorizedError("Jeton invalide")
