from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from dms.db.base import utcnow
from dms.offline.queue import SyncQueue
from dms.offline.store import AssessmentDraft
from dms.schemas.assessments import validate_typed_data
from dms.schemas.common import AssessmentType, Priority, SyncStatus

"""
Brouillons d’évaluation (client terrain).

Rôle (fonctionnel) :
- save   : création ou mise à jour (auto-save) d’un brouillon local.
- load / list / delete.
- submit : valide les données typées puis empile un create (jamais synchronisé)
  ou un update (déjà connu du serveur) dans la file, priorité dérivée de la priorité
  de l’évaluation.
- apply_server_state : réaligne un brouillon sur l’état serveur (succès ou conflit).
"""

log = logging.getLogger("dms.offline.drafts")

# Priorité de file selon la priorité de l’évaluation
QUEUE_PRIORITY = {"CRITICAL": 10, "HIGH": 8, "MEDIUM": 5, "LOW": 3}

# Champs du brouillon repris depuis l’état serveur
SERVER_FIELDS = ("assessment_date", "location", "coordinates", "data", "resource_needs", "media_attachments")


class DraftNotFoundError(LookupError):
    pass


class DraftStore:
    def __init__(self, session_factory: sessionmaker[Session], queue: SyncQueue):
        self._sessions = session_factory
        self.queue = queue

    def save(
        self,
        draft_id: Optional[str] = None,
        *,
        assessment_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        incident_id: Optional[str] = None,
        priority: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AssessmentDraft:
        with self._sessions() as db:
            if draft_id is None:
                if assessment_type is None or entity_id is None:
                    raise ValueError("assessment_type et entity_id sont requis pour un nouveau brouillon")
                draft = AssessmentDraft(
                    assessment_type=AssessmentType(str(assessment_type).upper()).value,
                    entity_id=str(entity_id),
                    incident_id=str(incident_id) if incident_id else None,
                    priority=Priority(str(priority or "MEDIUM").upper()).value,
                    payload=dict(payload or {}),
                    sync_status=SyncStatus.LOCAL.value,
                )
                db.add(draft)
            else:
                draft = db.get(AssessmentDraft, draft_id)
                if draft is None:
                    raise DraftNotFoundError(draft_id)
                if entity_id is not None:
                    draft.entity_id = str(entity_id)
                if incident_id is not None:
                    draft.incident_id = str(incident_id)
                if priority is not None:
                    draft.priority = Priority(str(priority).upper()).value
                if payload:
                    # Réassignation : le JSON n’est pas suivi en mutation
                    draft.payload = {**(draft.payload or {}), **payload}
                draft.sync_status = SyncStatus.LOCAL.value
                draft.updated_at = utcnow()
            db.commit()

        log.info("draft_saved", extra={"resource": "assessment_draft", "resource_id": draft.id, "offline_id": draft.offline_id})
        return draft

    def load(self, draft_id: str) -> AssessmentDraft:
        with self._sessions() as db:
            draft = db.get(AssessmentDraft, draft_id)
        if draft is None:
            raise DraftNotFoundError(draft_id)
        return draft

    def list(
        self,
        *,
        entity_id: Optional[str] = None,
        assessment_type: Optional[str] = None,
        sync_status: Optional[str] = None,
    ) -> List[AssessmentDraft]:
        stmt = select(AssessmentDraft)
        if entity_id:
            stmt = stmt.where(AssessmentDraft.entity_id == str(entity_id))
        if assessment_type:
            stmt = stmt.where(AssessmentDraft.assessment_type == str(assessment_type).upper())
        if sync_status:
            stmt = stmt.where(AssessmentDraft.sync_status == str(sync_status).upper())
        stmt = stmt.order_by(AssessmentDraft.updated_at.desc())
        with self._sessions() as db:
            return list(db.execute(stmt).scalars().all())

    def delete(self, draft_id: str) -> bool:
        with self._sessions() as db:
            draft = db.get(AssessmentDraft, draft_id)
            if draft is None:
                return False
            db.delete(draft)
            db.commit()
        self.queue.remove_for_target(draft_id)

        log.info("draft_deleted", extra={"resource": "assessment_draft", "resource_id": draft_id})
        return True

    def submit(self, draft_id: str):
        """Valide le brouillon et empile le changement ; lève ValidationError si les données sont invalides."""
        draft = self.load(draft_id)
        data = validate_typed_data(draft.assessment_type, (draft.payload or {}).get("data") or {})

        change: Dict[str, Any] = {
            **(draft.payload or {}),
            "data": data,
            "assessment_type": draft.assessment_type,
            "entity_id": draft.entity_id,
            "incident_id": draft.incident_id,
            "priority": draft.priority,
            "status": "SUBMITTED",
        }

        # Un seul changement en attente par brouillon
        self.queue.remove_for_target(draft.id)
        item = self.queue.add(
            "assessment",
            "update" if draft.server_id else "create",
            draft.id,
            draft.offline_id,
            change,
            entity_uuid=draft.server_id,
            version_number=draft.version_number,
            priority=QUEUE_PRIORITY.get(draft.priority, 5),
        )

        with self._sessions() as db:
            d = db.get(AssessmentDraft, draft.id)
            d.payload = {**(d.payload or {}), "data": data}
            d.sync_status = SyncStatus.PENDING.value
            d.last_error = None
            d.updated_at = utcnow()
            db.commit()

        log.info(
            "draft_submitted",
            extra={"resource": "assessment_draft", "resource_id": draft.id, "offline_id": draft.offline_id, "new_status": item.action},
        )
        return item

    def mark(self, draft_id: str, status: SyncStatus, *, error: Optional[str] = None) -> None:
        with self._sessions() as db:
            draft = db.get(AssessmentDraft, draft_id)
            if draft is None:
                return
            draft.sync_status = status.value
            draft.last_error = error
            db.commit()

    def apply_server_state(
        self,
        draft_id: str,
        *,
        server_id: Optional[str],
        version_number: Optional[int] = None,
        server_state: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
    ) -> None:
        with self._sessions() as db:
            draft = db.get(AssessmentDraft, draft_id)
            if draft is None:
                return
            if server_id:
                draft.server_id = server_id
            if server_state:
                fields = {k: server_state[k] for k in SERVER_FIELDS if k in server_state}
                draft.payload = {**(draft.payload or {}), **fields}
                if server_state.get("priority"):
                    draft.priority = str(server_state["priority"])
                version_number = server_state.get("version_number", version_number)
            if version_number:
                draft.version_number = int(version_number)
            draft.sync_status = SyncStatus.SYNCED.value
            draft.last_error = note
            draft.updated_at = utcnow()
            db.commit()
