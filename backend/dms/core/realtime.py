from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import WebSocket

"""
Core Realtime (WebSocket Manager).

Rôle (fonctionnel) :
- Centralise les connexions WebSocket des tableaux de bord (coordination, donateurs).
- Chaque connexion s’abonne à des “topics” (verification, deliveries, commitments, sync).
  Sans abonnement explicite, une connexion reçoit tout.
- Diffusion best-effort : une erreur d’envoi ne casse jamais le flux métier,
  les connexions mortes sont purgées.
"""

logger = logging.getLogger("dms.realtime")

TOPICS = ("verification", "deliveries", "commitments", "sync", "incidents")


class ConnectionManager:
    def __init__(self) -> None:
        self._connections: Dict[WebSocket, Set[str]] = {}
        self._lock = asyncio.Lock()

    def count(self) -> int:
        """Nombre de connexions WS actives."""
        return len(self._connections)

    async def connect(self, ws: WebSocket, topics: Optional[Iterable[str]] = None) -> None:
        """Accepte et enregistre une nouvelle connexion (abonnée à `topics`, ou à tout)."""
        await ws.accept()
        wanted = {t for t in (topics or []) if t in TOPICS} or set(TOPICS)
        async with self._lock:
            self._connections[ws] = wanted
        logger.info("WS connected (%s total)", self.count())

    async def subscribe(self, ws: WebSocket, topics: Iterable[str]) -> Set[str]:
        wanted = {t for t in topics if t in TOPICS}
        async with self._lock:
            if ws in self._connections and wanted:
                self._connections[ws] = wanted
            return set(self._connections.get(ws, set()))

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._connections.pop(ws, None)
        logger.info("WS disconnected (%s total)", self.count())

    async def send_json(self, ws: WebSocket, payload: Dict[str, Any]) -> None:
        """Envoi vers une seule connexion (best-effort)."""
        try:
            await ws.send_json(payload)
        except Exception:
            logger.debug("WS send failed", exc_info=True)

    async def publish(self, topic: str, event_type: str, data: Dict[str, Any]) -> int:
        """
        Diffuse un événement métier aux abonnés du topic.

        Retourne le nombre de connexions effectivement servies.
        """
        payload = {
            "type": event_type,
            "topic": topic,
            "ts": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }

        async with self._lock:
            conns = [ws for ws, topics in self._connections.items() if topic in topics]

        if not conns:
            return 0

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._connections.pop(ws, None)
            logger.info("WS purged %s dead conns (%s remaining)", len(dead), self.count())

        return len(conns) - len(dead)

    async def close_all(self) -> None:
        async with self._lock:
            conns = list(self._connections)
            self._connections.clear()

        for ws in conns:
            try:
                await ws.close()
            except Exception:
                logger.debug("WS close failed", exc_info=True)
