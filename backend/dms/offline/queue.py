from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from dms.db.base import as_utc, utcnow
from dms.offline.store import SyncQueueItem

"""
File de synchro (client terrain).

Rôle (fonctionnel) :
- Empile les changements locaux (create / update / delete) à pousser vers /sync/batch.
- Gère priorités, tentatives et délais de retry (2 s, 5 s, 10 s), 3 tentatives max.
- Expose un état lisible par élément (pending / retrying / failed / max_retries),
  des métriques et des opérations de maintenance (reset, purge, priorité).

Règles d’état :
- max_retries : attempts >= MAX_RETRIES (l’élément reste dans la file jusqu’à reset / purge)
- retrying    : attempts > 0, erreur présente, prochain essai dans le futur
- failed      : attempts > 0, erreur présente, prochain essai passé ou absent
- pending     : sinon
"""

log = logging.getLogger("dms.offline.queue")

MAX_RETRIES = 3
RETRY_DELAYS_S = (2, 5, 10)
MAX_BATCH_SIZE = 100

ITEM_STATUSES = ("pending", "retrying", "failed", "max_retries")
SORT_KEYS = ("priority", "timestamp", "attempts")


def retry_delay(attempts: int) -> int:
    """Délai avant l’essai suivant, après `attempts` échecs."""
    idx = max(attempts, 1) - 1
    return RETRY_DELAYS_S[idx] if idx < len(RETRY_DELAYS_S) else RETRY_DELAYS_S[-1]


def item_status(item: SyncQueueItem, now: Optional[datetime] = None) -> str:
    if item.attempts >= MAX_RETRIES:
        return "max_retries"
    if item.attempts > 0 and item.error:
        now = now or utcnow()
        next_retry = as_utc(item.next_retry)
        if next_retry is not None and next_retry > now:
            return "retrying"
        return "failed"
    return "pending"


@dataclass
class QueueItemStatus:
    id: str
    type: str
    action: str
    target_id: str
    offline_id: str
    priority: int
    attempts: int
    status: str
    timestamp: datetime
    last_attempt: Optional[datetime] = None
    next_retry: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class QueueMetrics:
    total: int = 0
    pending: int = 0
    retrying: int = 0
    failed: int = 0
    max_retries: int = 0
    oldest_pending: Optional[datetime] = None
    avg_retry_attempts: float = 0.0
    by_type: Dict[str, int] = field(default_factory=lambda: {"assessment": 0, "response": 0, "entity": 0})
    by_action: Dict[str, int] = field(default_factory=lambda: {"create": 0, "update": 0, "delete": 0})

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["oldest_pending"] = self.oldest_pending.isoformat() if self.oldest_pending else None
        return out


def _to_status(item: SyncQueueItem, now: datetime) -> QueueItemStatus:
    return QueueItemStatus(
        id=item.id,
        type=item.type,
        action=item.action,
        target_id=item.target_id,
        offline_id=item.offline_id,
        priority=item.priority,
        attempts=item.attempts,
        status=item_status(item, now),
        timestamp=as_utc(item.timestamp),
        last_attempt=as_utc(item.last_attempt),
        next_retry=as_utc(item.next_retry),
        error=item.error,
    )


class SyncQueue:
    """Accès à la file de synchro locale."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._sessions = session_factory

    # --- Écriture ---

    def add(
        self,
        type: str,
        action: str,
        target_id: str,
        offline_id: str,
        data: Dict[str, Any],
        *,
        entity_uuid: Optional[str] = None,
        version_number: int = 1,
        priority: int = 5,
    ) -> SyncQueueItem:
        item = SyncQueueItem(
            type=type,
            action=action,
            target_id=target_id,
            offline_id=offline_id,
            entity_uuid=entity_uuid,
            version_number=version_number,
            data=data,
            priority=priority,
            attempts=0,
            timestamp=utcnow(),
        )
        with self._sessions() as db:
            db.add(item)
            db.commit()

        log.info(
            "queue_item_added",
            extra={"resource": type, "resource_id": item.id, "offline_id": offline_id, "new_status": action},
        )
        return item

    def remove(self, item_id: str) -> bool:
        with self._sessions() as db:
            res = db.execute(delete(SyncQueueItem).where(SyncQueueItem.id == item_id))
            db.commit()
        return res.rowcount > 0

    def remove_for_target(self, target_id: str) -> int:
        """Retire les changements en attente d’un élément local (brouillon supprimé ou remplacé)."""
        with self._sessions() as db:
            res = db.execute(delete(SyncQueueItem).where(SyncQueueItem.target_id == target_id))
            db.commit()
        return res.rowcount

    def mark_failure(self, item_id: str, error: str, now: Optional[datetime] = None) -> Optional[SyncQueueItem]:
        """
        Enregistre un échec : attempts + 1, prochain essai planifié.

        Au-delà de MAX_RETRIES, plus de prochain essai : l’élément passe en max_retries.
        """
        now = now or utcnow()
        with self._sessions() as db:
            item = db.get(SyncQueueItem, item_id)
            if item is None:
                return None
            item.attempts = (item.attempts or 0) + 1
            item.last_attempt = now
            item.error = error
            item.next_retry = now + timedelta(seconds=retry_delay(item.attempts)) if item.attempts < MAX_RETRIES else None
            db.commit()

        log.warning(
            "queue_item_failed",
            extra={"resource": item.type, "resource_id": item.id, "offline_id": item.offline_id, "attempts": item.attempts},
        )
        return item

    def prioritize(self, item_id: str, priority: int) -> bool:
        with self._sessions() as db:
            item = db.get(SyncQueueItem, item_id)
            if item is None:
                return False
            item.priority = int(priority)
            db.commit()
        return True

    def reprioritize_type(self, type: str, priority: int) -> int:
        with self._sessions() as db:
            items = db.execute(select(SyncQueueItem).where(SyncQueueItem.type == type)).scalars().all()
            for item in items:
                item.priority = int(priority)
            db.commit()
        return len(items)

    def reset_failed(self, item_id: Optional[str] = None) -> int:
        """Remet à zéro un élément, ou tous les éléments en max_retries."""
        with self._sessions() as db:
            if item_id is not None:
                item = db.get(SyncQueueItem, item_id)
                items = [item] if item is not None else []
            else:
                items = db.execute(
                    select(SyncQueueItem).where(SyncQueueItem.attempts >= MAX_RETRIES)
                ).scalars().all()
            for item in items:
                item.attempts = 0
                item.last_attempt = None
                item.next_retry = None
                item.error = None
            db.commit()

        log.info("queue_reset", extra={"batch_size": len(items)})
        return len(items)

    def clear_failed(self) -> int:
        with self._sessions() as db:
            res = db.execute(delete(SyncQueueItem).where(SyncQueueItem.attempts >= MAX_RETRIES))
            db.commit()

        log.info("queue_cleared", extra={"batch_size": res.rowcount})
        return res.rowcount

    # --- Lecture ---

    def get(self, item_id: str) -> Optional[SyncQueueItem]:
        with self._sessions() as db:
            return db.get(SyncQueueItem, item_id)

    def count(self) -> int:
        with self._sessions() as db:
            return int(db.execute(select(func.count()).select_from(SyncQueueItem)).scalar_one())

    def ready_batch(self, limit: int = MAX_BATCH_SIZE, now: Optional[datetime] = None) -> List[SyncQueueItem]:
        """Éléments à envoyer : pas de retry planifié (ou échu), priorité desc puis ancienneté."""
        now = now or utcnow()
        limit = max(1, min(int(limit), MAX_BATCH_SIZE))
        with self._sessions() as db:
            rows = db.execute(
                select(SyncQueueItem)
                .where(SyncQueueItem.attempts < MAX_RETRIES)
                .order_by(SyncQueueItem.priority.desc(), SyncQueueItem.timestamp.asc())
            ).scalars().all()

        ready = [r for r in rows if r.next_retry is None or as_utc(r.next_retry) <= now]
        return ready[:limit]

    def items(
        self,
        *,
        type: Optional[str] = None,
        status: Optional[str] = None,
        sort_by: str = "priority",
        sort_order: str = "desc",
        limit: Optional[int] = None,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> List[QueueItemStatus]:
        if sort_by not in SORT_KEYS:
            raise ValueError(f"sort_by doit être parmi {SORT_KEYS}")
        if status is not None and status not in ITEM_STATUSES:
            raise ValueError(f"status doit être parmi {ITEM_STATUSES}")

        now = now or utcnow()
        stmt = select(SyncQueueItem)
        if type:
            stmt = stmt.where(SyncQueueItem.type == type)
        col = getattr(SyncQueueItem, sort_by)
        stmt = stmt.order_by(col.desc() if sort_order == "desc" else col.asc())

        with self._sessions() as db:
            rows = db.execute(stmt).scalars().all()

        out = [_to_status(r, now) for r in rows]
        if status is not None:
            out = [s for s in out if s.status == status]

        end = offset + limit if limit is not None else None
        return out[offset:end]

    def metrics(self, now: Optional[datetime] = None) -> QueueMetrics:
        now = now or utcnow()
        with self._sessions() as db:
            rows = db.execute(select(SyncQueueItem)).scalars().all()

        m = QueueMetrics(total=len(rows))
        if not rows:
            return m

        for item in rows:
            status = item_status(item, now)
            setattr(m, status, getattr(m, status) + 1)
            if status == "pending":
                ts = as_utc(item.timestamp)
                if m.oldest_pending is None or ts < m.oldest_pending:
                    m.oldest_pending = ts
            m.by_type[item.type] = m.by_type.get(item.type, 0) + 1
            m.by_action[item.action] = m.by_action.get(item.action, 0) + 1

        m.avg_retry_attempts = round(sum(r.attempts for r in rows) / len(rows), 2)
        return m
