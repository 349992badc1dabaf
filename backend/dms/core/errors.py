from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException

"""
Core Errors.

Rôle (fonctionnel) :
- Format unique des erreurs API : {"error": {code, message, status, request_id, timestamp, details}}.
- Exceptions métier levées par les services et routes, converties en réponse par main.py :
  NOT_FOUND 404, UNAUTHORIZED 401, FORBIDDEN 403, CONFLICT / INVALID_STATE 409,
  VALIDATION_ERROR 400 (règle métier) ou 422 (schéma).

Exemple (synchro refusée) :
{
  "error": {
    "code": "FORBIDDEN",
    "message": "Entités non assignées",
    "status": 403,
    "request_id": "...",
    "timestamp": "2025-03-01T10:00:00+00:00",
    "details": {"unauthorized_entities": ["..."]}
  }
}
"""


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_payload(
    *,
    code: str,
    message: str,
    status: int,
    request_id: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "code": code,
        "message": message,
        "status": status,
        "request_id": request_id,
        "timestamp": utc_timestamp(),
    }
    if details is not None:
        body["details"] = details
    return {"error": body}


class AppHTTPException(HTTPException):
    """
    Erreur applicative : code stable + message lisible + détails optionnels.

        raise AppHTTPException(409, "CONFLICT", "Réponse déjà planifiée", {"response_id": "..."})
    """

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        super().__init__(status_code=status_code, detail={"code": code, "message": message, "details": details})

    @property
    def code(self) -> str:
        return str(self.detail.get("code")) if isinstance(self.detail, dict) else "HTTP_ERROR"


class NotFoundError(AppHTTPException):
    def __init__(self, message: str, details: Any = None):
        super().__init__(404, "NOT_FOUND", message, details)


class UnauthorizedError(AppHTTPException):
    def __init__(self, message: str = "Authentification requise", details: Any = None):
        super().__init__(401, "UNAUTHORIZED", message, details)


class ForbiddenError(AppHTTPException):
    def __init__(self, message: str = "Accès refusé", details: Any = None):
        super().__init__(403, "FORBIDDEN", message, details)


class ConflictError(AppHTTPException):
    def __init__(self, message: str, details: Any = None):
        super().__init__(409, "CONFLICT", message, details)


class InvalidStateError(AppHTTPException):
    """Transition de workflow refusée (statut courant incompatible)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(409, "INVALID_STATE", message, details)


class BusinessValidationError(AppHTTPException):
    """Règle métier non respectée (au-delà de la validation de schéma)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(400, "VALIDATION_ERROR", message, details)
