from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from dms.core.settings import settings
from dms.db.base import as_utc
from dms.offline.drafts import DraftStore
from dms.offline.queue import MAX_BATCH_SIZE, MAX_RETRIES, SyncQueue
from dms.offline.store import SyncQueueItem, create_store
from dms.schemas.common import SyncStatus

"""
Moteur de synchro (client terrain).

Rôle (fonctionnel) :
- Vérifie la connectivité (GET /health) avant chaque cycle.
- Pousse le lot prêt de la file vers POST /sync/batch (httpx).
- Traite chaque résultat :
  - success  : brouillon SYNCED (+ id serveur, version), élément retiré de la file
  - conflict : brouillon réaligné sur l’état serveur gagnant, élément retiré
  - failed   : tentative + 1 et retry planifié ; brouillon FAILED au-delà de MAX_RETRIES
- Une erreur de transport (réseau, 4xx/5xx sur le lot) compte comme un échec pour tout le lot.
- run_forever : boucle de cycles à intervalle fixe jusqu’à l’arrêt demandé.
"""

log = logging.getLogger("dms.offline.sync")


@dataclass
class SyncCycleResult:
    successful: List[Dict[str, Any]] = field(default_factory=list)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.conflicts) + len(self.failed)

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "success": len(self.successful),
            "conflict": len(self.conflicts),
            "failed": len(self.failed),
        }


def _to_change(item: SyncQueueItem) -> Dict[str, Any]:
    ts = as_utc(item.timestamp)
    return {
        "type": item.type,
        "action": item.action,
        "data": item.data or {},
        "offline_id": item.offline_id,
        "version_number": item.version_number or 1,
        "entity_uuid": item.entity_uuid,
        "last_modified": ts.isoformat() if ts else None,
    }


def _error_message(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return f"{exc.response.status_code} {body['error'].get('message')}"
        return f"HTTP {exc.response.status_code}"
    return f"{type(exc).__name__}: {exc}"


class SyncEngine:
    def __init__(self, client: httpx.Client, queue: SyncQueue, drafts: DraftStore):
        self.client = client
        self.queue = queue
        self.drafts = drafts
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, token: str, *, db_path: Optional[str] = None) -> "SyncEngine":
        sessions = create_store(db_path)
        queue = SyncQueue(sessions)
        client = httpx.Client(
            base_url=settings.OFFLINE_API_URL,
            timeout=settings.OFFLINE_HTTP_TIMEOUT_S,
            headers={"Authorization": f"Bearer {token}"},
        )
        return cls(client, queue, DraftStore(sessions, queue))

    def close(self) -> None:
        self.client.close()

    # --- Connectivité ---

    def is_online(self) -> bool:
        try:
            res = self.client.get("/health")
        except httpx.HTTPError:
            return False
        return res.status_code == 200

    # --- Cycle ---

    def run_cycle(self, limit: int = MAX_BATCH_SIZE) -> Optional[SyncCycleResult]:
        """Un cycle complet ; None si hors-ligne ou si un cycle est déjà en cours."""
        if not self._lock.acquire(blocking=False):
            log.info("sync_cycle_skipped", extra={"new_status": "in_progress"})
            return None
        try:
            if not self.is_online():
                log.info("sync_cycle_skipped", extra={"new_status": "offline"})
                return None
            return self.push_batch(limit)
        finally:
            self._lock.release()

    def push_batch(self, limit: int = MAX_BATCH_SIZE) -> SyncCycleResult:
        result = SyncCycleResult()
        items = self.queue.ready_batch(limit)
        if not items:
            return result

        for item in items:
            if item.type == "assessment":
                self.drafts.mark(item.target_id, SyncStatus.SYNCING)

        try:
            res = self.client.post("/sync/batch", json={"changes": [_to_change(i) for i in items]})
            res.raise_for_status()
            outcomes = {r.get("offline_id"): r for r in res.json().get("results", [])}
        except httpx.HTTPError as exc:
            message = _error_message(exc)
            log.warning("sync_batch_failed", extra={"batch_size": len(items), "new_status": message})
            for item in items:
                self._handle_failure(item, message)
                result.failed.append({"offline_id": item.offline_id, "status": "failed", "message": message})
            return result

        for item in items:
            outcome = outcomes.get(item.offline_id) or {
                "offline_id": item.offline_id,
                "status": "failed",
                "message": "Aucun résultat serveur pour ce changement",
            }
            status = outcome.get("status")
            if status == "success":
                self._handle_success(item, outcome)
                result.successful.append(outcome)
            elif status == "conflict":
                self._handle_conflict(item, outcome)
                result.conflicts.append(outcome)
            else:
                self._handle_failure(item, outcome.get("message") or "Échec serveur")
                result.failed.append(outcome)

        log.info("sync_cycle_done", extra={"batch_size": result.total, "new_status": str(result.to_dict())})
        return result

    def run_forever(self, stop: threading.Event, interval_s: Optional[float] = None) -> None:
        interval = float(interval_s if interval_s is not None else settings.OFFLINE_SYNC_INTERVAL_S)
        log.info("sync_loop_started", extra={"duration_ms": int(interval * 1000)})
        while not stop.is_set():
            try:
                self.run_cycle()
            except Exception:
                # La boucle survit à une erreur locale (base verrouillée, réponse illisible...)
                log.exception("sync_cycle_error")
            stop.wait(interval)
        log.info("sync_loop_stopped")

    # --- Traitement des résultats ---

    def _handle_success(self, item: SyncQueueItem, outcome: Dict[str, Any]) -> None:
        if item.type == "assessment":
            self.drafts.apply_server_state(
                item.target_id,
                server_id=outcome.get("server_id"),
                version_number=outcome.get("version_number"),
            )
        self.queue.remove(item.id)
        log.info(
            "sync_item_synced",
            extra={"resource": item.type, "resource_id": outcome.get("server_id"), "offline_id": item.offline_id},
        )

    def _handle_conflict(self, item: SyncQueueItem, outcome: Dict[str, Any]) -> None:
        conflict = outcome.get("conflict_data") or {}
        if item.type == "assessment":
            self.drafts.apply_server_state(
                item.target_id,
                server_id=outcome.get("server_id"),
                version_number=outcome.get("version_number"),
                server_state=conflict.get("server"),
                note=outcome.get("message"),
            )
        self.queue.remove(item.id)
        log.warning(
            "sync_item_conflict",
            extra={"resource": item.type, "resource_id": outcome.get("server_id"), "offline_id": item.offline_id},
        )

    def _handle_failure(self, item: SyncQueueItem, message: str) -> None:
        updated = self.queue.mark_failure(item.id, message)
        if updated is None or item.type != "assessment":
            return
        status = SyncStatus.FAILED if updated.attempts >= MAX_RETRIES else SyncStatus.PENDING
        self.drafts.mark(item.target_id, status, error=message)
