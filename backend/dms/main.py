from __future__ import annotations

import time
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from starlette.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dms.api.router import api_router
from dms.core.settings import settings
from dms.core.logging import setup_logging
from dms.core.errors import error_payload, AppHTTPException
from dms.core.request_id import set_request_id, get_request_id, ensure_request_id
from dms.core.rate_limit import rate_limiter

from dms.core.realtime import ConnectionManager
from dms.api.ws import router as ws_router

"""
Application FastAPI (entrypoint).

Rôle (fonctionnel) :
- Configure l’application (settings, CORS, middlewares, routers).
- Centralise l’observabilité :
  - request_id propagé (X-Request-Id)
  - logs structurés JSON (timing, status, client_ip, acteur)
  - seuil de “slow request”
- Applique un rate-limit (optionnel) sur la synchro terrain et les écritures sensibles.
- Uniformise les erreurs côté client (format error_payload).
- Initialise le manager WebSocket (push temps réel des événements métier).

Ce fichier ne contient pas de logique métier :
- La logique métier est dans dms.services
- Les routes sont dans dms.api
- Les composants transverses sont dans dms.core
"""


# --- Force UTF-8 in Content-Type for JSON responses ---
class UTF8JSONResponse(JSONResponse):
    """Réponse JSON avec charset UTF-8 explicite (cohérent sur tous les endpoints)."""
    media_type = "application/json; charset=utf-8"


# --- Logging (niveau depuis .env si dispo) ---
setup_logging(settings.LOG_LEVEL)

# logger principal projet
log = logging.getLogger("dms")

# logger dédié observabilité HTTP (séparé du métier)
http_log = logging.getLogger("dms.http")

# seuil slow request (ms)
SLOW_MS = int(settings.SLOW_REQUEST_MS)


def _split_origins(value: str) -> list[str]:
    """Parse une liste d’origines CORS depuis une string 'a,b,c'."""
    if not value:
        return []
    return [o.strip() for o in value.split(",") if o.strip()]


def _rid(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid.uuid4())


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup", extra={"resource": settings.APP_NAME})
    yield
    # Ferme proprement les WS encore ouverts
    await app.state.ws_manager.close_all()


app = FastAPI(
    title=settings.APP_NAME,
    debug=settings.DEBUG,
    default_response_class=UTF8JSONResponse,
    lifespan=lifespan,
)

# WebSocket manager partagé (accessible via request.app.state.ws_manager)
app.state.ws_manager = ConnectionManager()

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=_split_origins(settings.CORS_ORIGINS),
    allow_credentials=False,  # pas de cookies (API stateless, Bearer)
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-Request-Id",
    ],
)

# --- Routers ---
app.include_router(api_router)
app.include_router(ws_router)


def _error_response(
    request: Request,
    status: int,
    code: str,
    message: str,
    details=None,
) -> UTF8JSONResponse:
    return UTF8JSONResponse(
        status_code=status,
        content=error_payload(code=code, message=message, status=status, request_id=_rid(request), details=details),
    )


def _detail_parts(exc: StarletteHTTPException) -> tuple[str, str, object]:
    """(code, message, details) depuis exc.detail (dict applicatif ou texte brut)."""
    if isinstance(exc.detail, dict):
        return (
            str(exc.detail.get("code", "HTTP_ERROR")),
            str(exc.detail.get("message", "Erreur HTTP")),
            exc.detail.get("details"),
        )
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return code, str(exc.detail), None


# --- Middleware observabilité : request_id + durée + acteur ---
@app.middleware("http")
async def request_observability(request: Request, call_next):
    rid = ensure_request_id(request.headers.get("X-Request-Id"))
    request.state.request_id = rid

    start = time.perf_counter()
    status_code = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = rid
        return response
    finally:
        duration_ms = int((time.perf_counter() - start) * 1000)
        http_log.log(
            logging.WARNING if duration_ms >= SLOW_MS else logging.INFO,
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "client_ip": request.client.host if request.client else None,
                "actor": getattr(request.state, "actor", None),
            },
        )
        set_request_id(None)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Limite la synchro terrain et les écritures sensibles (jamais les préflights CORS)."""
    if request.method != "OPTIONS" and rate_limiter.applies_to(request):
        try:
            rate_limiter.check(request)
        except AppHTTPException as exc:
            code, message, details = _detail_parts(exc)
            return _error_response(request, exc.status_code, code, message, details)

    return await call_next(request)


# --- Error handlers ---
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """AppHTTPException (NotFound, Forbidden, Conflict...) et HTTP natives (404, 405) -> payload standard."""
    code, message, details = _detail_parts(exc)
    return _error_response(request, exc.status_code, code, message, details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error_response(request, 422, "VALIDATION_ERROR", "Requête invalide", jsonable_encoder(exc.errors()))


@app.exception_handler(ValidationError)
async def model_validation_exception_handler(request: Request, exc: ValidationError):
    """Données typées d’une évaluation invalides (validation côté service ou synchro)."""
    errors = exc.errors(include_url=False, include_context=False)
    return _error_response(request, 422, "VALIDATION_ERROR", "Données invalides", jsonable_encoder(errors))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception("unhandled_error", extra={"path": request.url.path})
    return _error_response(request, 500, "INTERNAL_ERROR", "Erreur interne du serveur")
