"""
Tests du client terrain : brouillons, file de synchro et moteur (httpx.MockTransport).
"""
from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pydantic
import pytest

from dms.db.base import utcnow
from dms.offline.drafts import DraftNotFoundError, DraftStore
from dms.offline.engine import SyncEngine
from dms.offline.queue import MAX_RETRIES, SyncQueue, item_status
from dms.offline.store import create_store

ENTITY_ID = "9b0c6a52-5f43-4a8b-9d7e-0f2b6c1d3e41"


@pytest.fixture
def store():
    return create_store(":memory:")


@pytest.fixture
def queue(store):
    return SyncQueue(store)


@pytest.fixture
def drafts(store, queue):
    return DraftStore(store, queue)


def _draft(drafts, priority="MEDIUM", **data):
    return drafts.save(
        assessment_type="HEALTH",
        entity_id=ENTITY_ID,
        priority=priority,
        payload={"location": "Gwange", "data": {"hasFunctionalClinic": False, **data}},
    )


def _engine(queue, drafts, handler):
    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://test")
    return SyncEngine(client, queue, drafts)


def _batch_handler(status="success", **extra):
    """Serveur factice : /health OK, chaque changement reçoit le même statut."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        body = json.loads(request.content)
        seen.append(body)
        results = [
            {"offline_id": c["offline_id"], "status": status, "server_id": "srv-1", "version_number": 2, **extra}
            for c in body["changes"]
        ]
        return httpx.Response(200, json={"results": results, "summary": {}, "server_time": utcnow().isoformat()})

    handler.seen = seen
    return handler


# --- Brouillons ---


def test_new_draft_requires_type_and_entity(drafts) -> None:
    with pytest.raises(ValueError):
        drafts.save(payload={"data": {}})


def test_autosave_merges_payload(drafts) -> None:
    draft = _draft(drafts)
    drafts.save(draft.id, payload={"notes": "route coupée"})

    loaded = drafts.load(draft.id)
    assert loaded.payload["location"] == "Gwange"
    assert loaded.payload["notes"] == "route coupée"
    assert loaded.sync_status == "LOCAL"


def test_submit_rejects_invalid_typed_data(drafts, queue) -> None:
    draft = _draft(drafts, numberHealthFacilities=-1)
    with pytest.raises(pydantic.ValidationError):
        drafts.submit(draft.id)
    assert queue.count() == 0


def test_submit_enqueues_single_create_with_priority(drafts, queue) -> None:
    draft = _draft(drafts, priority="CRITICAL")

    drafts.submit(draft.id)
    item = drafts.submit(draft.id)

    assert queue.count() == 1
    assert item.action == "create"
    assert item.priority == 10
    assert item.offline_id == draft.offline_id
    assert item.data["status"] == "SUBMITTED"
    assert drafts.load(draft.id).sync_status == "PENDING"


def test_delete_draft_drops_pending_change(drafts, queue) -> None:
    draft = _draft(drafts)
    drafts.submit(draft.id)

    assert drafts.delete(draft.id) is True
    assert queue.count() == 0
    with pytest.raises(DraftNotFoundError):
        drafts.load(draft.id)


# --- File ---


def test_ready_batch_orders_by_priority_then_age(queue) -> None:
    low = queue.add("entity", "update", "t1", "o1", {}, priority=3)
    high = queue.add("assessment", "create", "t2", "o2", {}, priority=10)
    mid = queue.add("response", "create", "t3", "o3", {}, priority=5)

    assert [i.id for i in queue.ready_batch()] == [high.id, mid.id, low.id]
    assert len(queue.ready_batch(limit=2)) == 2


def test_failure_schedules_retry_then_max_retries(queue) -> None:
    item = queue.add("assessment", "create", "t1", "o1", {})
    now = utcnow()

    failed = queue.mark_failure(item.id, "timeout", now=now)
    assert failed.attempts == 1
    assert item_status(failed, now) == "retrying"
    assert queue.ready_batch(now=now) == []
    assert [i.id for i in queue.ready_batch(now=now + timedelta(seconds=3))] == [item.id]

    for _ in range(MAX_RETRIES - 1):
        failed = queue.mark_failure(item.id, "timeout", now=now)
    assert failed.attempts == MAX_RETRIES
    assert failed.next_retry is None
    assert item_status(failed, now) == "max_retries"
    assert queue.ready_batch(now=now + timedelta(hours=1)) == []

    assert [s.id for s in queue.items(status="max_retries")] == [item.id]
    assert queue.metrics(now).max_retries == 1

    assert queue.reset_failed() == 1
    assert queue.get(item.id).attempts == 0
    assert item_status(queue.get(item.id)) == "pending"


def test_clear_failed_only_removes_exhausted_items(queue) -> None:
    keep = queue.add("assessment", "create", "t1", "o1", {})
    drop = queue.add("assessment", "create", "t2", "o2", {})
    for _ in range(MAX_RETRIES):
        queue.mark_failure(drop.id, "boom")

    assert queue.clear_failed() == 1
    assert queue.get(keep.id) is not None
    assert queue.get(drop.id) is None


def test_items_rejects_unknown_sort_key(queue) -> None:
    with pytest.raises(ValueError):
        queue.items(sort_by="name")


def test_metrics_count_by_type_and_action(queue) -> None:
    queue.add("assessment", "create", "t1", "o1", {})
    queue.add("assessment", "update", "t2", "o2", {})
    queue.add("entity", "update", "t3", "o3", {})

    m = queue.metrics()
    assert m.total == 3
    assert m.pending == 3
    assert m.by_type["assessment"] == 2
    assert m.by_action["update"] == 2
    assert m.oldest_pending is not None


def test_reprioritize_type(queue) -> None:
    queue.add("response", "create", "t1", "o1", {}, priority=3)
    queue.add("response", "create", "t2", "o2", {}, priority=3)

    assert queue.reprioritize_type("response", 9) == 2
    assert {i.priority for i in queue.ready_batch()} == {9}


# --- Moteur ---


def test_cycle_success_marks_draft_synced(drafts, queue) -> None:
    draft = _draft(drafts)
    drafts.submit(draft.id)
    handler = _batch_handler("success")
    engine = _engine(queue, drafts, handler)

    result = engine.run_cycle()

    assert result.to_dict() == {"total": 1, "success": 1, "conflict": 0, "failed": 0}
    change = handler.seen[0]["changes"][0]
    assert change["offline_id"] == draft.offline_id
    assert change["action"] == "create"

    synced = drafts.load(draft.id)
    assert synced.sync_status == "SYNCED"
    assert synced.server_id == "srv-1"
    assert synced.version_number == 2
    assert queue.count() == 0


def test_resubmit_after_sync_enqueues_update(drafts, queue) -> None:
    draft = _draft(drafts)
    drafts.submit(draft.id)
    _engine(queue, drafts, _batch_handler("success")).run_cycle()

    item = drafts.submit(draft.id)
    assert item.action == "update"
    assert item.entity_uuid == "srv-1"
    assert item.version_number == 2


def test_conflict_realigns_draft_on_server_state(drafts, queue) -> None:
    draft = _draft(drafts)
    drafts.submit(draft.id)
    server = {"location": "Maiduguri", "data": {"hasFunctionalClinic": True}, "version_number": 4}
    handler = _batch_handler(
        "conflict",
        message="Conflit résolu : version serveur conservée",
        conflict_data={"conflict_id": "c-1", "winner": "server", "server": server},
    )

    result = _engine(queue, drafts, handler).run_cycle()

    assert len(result.conflicts) == 1
    d = drafts.load(draft.id)
    assert d.sync_status == "SYNCED"
    assert d.payload["location"] == "Maiduguri"
    assert d.version_number == 4
    assert d.last_error == "Conflit résolu : version serveur conservée"
    assert queue.count() == 0


def test_server_failure_keeps_item_for_retry(drafts, queue) -> None:
    draft = _draft(drafts)
    drafts.submit(draft.id)
    handler = _batch_handler("failed", message="Entité non assignée")

    result = _engine(queue, drafts, handler).run_cycle()

    assert len(result.failed) == 1
    (item,) = queue.items()
    assert item.attempts == 1
    assert item.status == "retrying"
    d = drafts.load(draft.id)
    assert d.sync_status == "PENDING"
    assert d.last_error == "Entité non assignée"


def test_draft_fails_after_max_retries(drafts, queue) -> None:
    draft = _draft(drafts)
    item = drafts.submit(draft.id)
    past = utcnow() - timedelta(minutes=5)
    for _ in range(MAX_RETRIES - 1):
        queue.mark_failure(item.id, "timeout", now=past)

    _engine(queue, drafts, _batch_handler("failed", message="boom")).run_cycle()

    assert queue.get(item.id).attempts == MAX_RETRIES
    assert drafts.load(draft.id).sync_status == "FAILED"


def test_http_error_fails_whole_batch(drafts, queue) -> None:
    for _ in range(2):
        drafts.submit(_draft(drafts).id)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200)
        return httpx.Response(500, json={"error": {"code": "INTERNAL_ERROR", "message": "Erreur interne"}})

    result = _engine(queue, drafts, handler).run_cycle()

    assert len(result.failed) == 2
    assert result.failed[0]["message"] == "500 Erreur interne"
    assert all(i.attempts == 1 for i in queue.items())


def test_offline_skips_cycle(drafts, queue) -> None:
    drafts.submit(_draft(drafts).id)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("réseau indisponible", request=request)

    engine = _engine(queue, drafts, handler)

    assert engine.is_online() is False
    assert engine.run_cycle() is None
    assert queue.items()[0].attempts == 0
