from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Tuple

from fastapi import Request

from dms.core.errors import AppHTTPException
from dms.core.settings import settings

"""
Core Rate Limit.

Rôle (fonctionnel) :
- Protège l’API contre les rafales (notamment les lots de synchro envoyés par le terrain
  quand la connectivité revient d’un coup).
- Implémentation “in-memory” par IP + route (method + path), fenêtre fixe de 60 secondes (RPM).
- L’IP est celle de la connexion (request.client.host) ; les en-têtes type X-Forwarded-For
  sont ignorés, ils sont fournis par le client.

Activation via settings :
- RATE_LIMIT_ENABLED : active/désactive le rate limiting.
- RATE_LIMIT_RPM : limite de requêtes par minute (par IP + route).
"""

# Préfixes concernés (écritures terrain + synchro)
LIMITED_PREFIXES: Tuple[str, ...] = ("/sync", "/assessments", "/responses", "/commitments")


@dataclass
class _Bucket:
    window_start: float
    count: int


class InMemoryRateLimiter:
    """
    Rate limiter en mémoire (best-effort, mono-process).

    - Un compteur par clé (IP, "METHOD /path") sur une fenêtre de 60s.
    - Les fenêtres expirées sont purgées au plus une fois par fenêtre.
    - AppHTTPException(429) si la limite est dépassée.
    """

    def __init__(self, window_s: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = Lock()
        self._window = window_s
        self._clock = clock
        self._buckets: Dict[Tuple[str, str], _Bucket] = {}
        self._last_sweep = clock()

    def _client_ip(self, request: Request) -> str:
        return request.client.host if request.client else "unknown"

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self._window:
            return
        expired = [k for k, b in self._buckets.items() if now - b.window_start >= self._window]
        for key in expired:
            del self._buckets[key]
        self._last_sweep = now

    def applies_to(self, request: Request) -> bool:
        return request.method != "GET" and request.url.path.startswith(LIMITED_PREFIXES)

    def check(self, request: Request, *, limit: int | None = None) -> None:
        """Vérifie la limite pour (IP + route). Lève 429 si dépassement."""
        if not settings.RATE_LIMIT_ENABLED:
            return

        limit = int(limit or settings.RATE_LIMIT_RPM or 0)
        if limit <= 0:
            return

        key = (self._client_ip(request), f"{request.method} {request.url.path}")
        now = self._clock()

        with self._lock:
            self._sweep(now)
            bucket = self._buckets.get(key)

            if bucket is None or (now - bucket.window_start) >= self._window:
                self._buckets[key] = _Bucket(window_start=now, count=1)
                return

            bucket.count += 1

            if bucket.count > limit:
                retry_after = max(1, int(self._window - (now - bucket.window_start)))
                raise AppHTTPException(
                    429,
                    "RATE_LIMITED",
                    f"Trop de requêtes (limite: {limit}/min).",
                    details={"limit_rpm": limit, "retry_after_s": retry_after},
                )

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


rate_limiter = InMemoryRateLimiter()
