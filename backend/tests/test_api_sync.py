"""
Tests API : synchro terrain (lot de changements, idempotence, conflits, contrôle d’accès).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from .conftest import auth


def _create_change(entity_id, offline_id="off-1", **data):
    return {
        "type": "assessment",
        "action": "create",
        "offline_id": offline_id,
        "data": {
            "assessment_type": "HEALTH",
            "entity_id": str(entity_id),
            "data": {"hasFunctionalClinic": False},
            "status": "SUBMITTED",
            **data,
        },
    }


async def _sync(client, user, *changes):
    return await client.post("/sync/batch", json={"changes": list(changes)}, headers=auth(user))


async def test_batch_create_is_idempotent(client, assessor, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])

    res = await _sync(client, assessor, _create_change(entity.id))
    assert res.status_code == 200
    body = res.json()
    assert body["summary"] == {"total": 1, "success": 1, "conflict": 0, "failed": 0}
    (result,) = body["results"]
    assert result["status"] == "success"
    server_id = result["server_id"]

    a = (await client.get(f"/assessments/{server_id}", headers=auth(assessor))).json()
    assert a["is_offline_created"] is True
    assert a["offline_id"] == "off-1"
    assert a["verification_status"] == "SUBMITTED"

    replay = (await _sync(client, assessor, _create_change(entity.id))).json()
    assert replay["results"][0]["status"] == "success"
    assert replay["results"][0]["server_id"] == server_id

    listed = (await client.get("/assessments", headers=auth(assessor))).json()
    assert listed["meta"]["total"] == 1


async def test_invalid_change_fails_alone(client, assessor, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])

    res = await _sync(
        client,
        assessor,
        _create_change(entity.id, "ok-1"),
        _create_change(entity.id, "bad-1", data={"numberHealthFacilities": -1}),
    )
    body = res.json()
    statuses = {r["offline_id"]: r["status"] for r in body["results"]}
    assert statuses == {"ok-1": "success", "bad-1": "failed"}
    assert body["summary"]["failed"] == 1
    assert "numberHealthFacilities" in body["results"][1]["message"]


async def test_unassigned_entity_rejects_whole_batch(client, assessor, make_entity) -> None:
    mine = await make_entity(assigned=[assessor])
    other = await make_entity()

    res = await _sync(client, assessor, _create_change(mine.id, "a"), _create_change(other.id, "b"))
    assert res.status_code == 403
    assert res.json()["error"]["details"]["unauthorized_entities"] == [str(other.id)]

    listed = (await client.get("/assessments", headers=auth(assessor))).json()
    assert listed["meta"]["total"] == 0


async def test_entity_changes_need_coordinator(client, assessor, coordinator) -> None:
    change = {
        "type": "entity",
        "action": "create",
        "offline_id": "ent-1",
        "data": {"name": "Dalori Camp", "type": "CAMP", "location": "Konduga"},
    }
    denied = (await _sync(client, assessor, change)).json()
    assert denied["results"][0]["status"] == "failed"

    ok = (await _sync(client, coordinator, change)).json()
    assert ok["results"][0]["status"] == "success"


async def _stale_update(client, assessor, entity, last_modified):
    """Évaluation passée en version 2 côté serveur, puis mise à jour terrain basée sur la version 1."""
    res = await client.post(
        "/assessments",
        json={"assessment_type": "HEALTH", "entity_id": str(entity.id), "data": {}},
        headers=auth(assessor),
    )
    a = res.json()
    await client.patch(f"/assessments/{a['id']}", json={"location": "Serveur"}, headers=auth(assessor))

    change = {
        "type": "assessment",
        "action": "update",
        "offline_id": "upd-1",
        "entity_uuid": a["id"],
        "version_number": 1,
        "last_modified": last_modified.isoformat(),
        "data": {"location": "Terrain"},
    }
    return a, (await _sync(client, assessor, change)).json()


async def test_stale_update_keeps_newer_server_state(client, assessor, coordinator, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    a, body = await _stale_update(client, assessor, entity, datetime(2020, 1, 1, tzinfo=timezone.utc))

    (result,) = body["results"]
    assert result["status"] == "conflict"
    assert result["conflict_data"]["winner"] == "server"
    assert result["conflict_data"]["server"]["location"] == "Serveur"
    assert result["version_number"] == 2

    conflicts = (await client.get("/sync/conflicts", headers=auth(coordinator))).json()
    assert conflicts["meta"]["total"] == 1
    conflict = conflicts["data"][0]
    assert conflict["entity_id"] == a["id"]
    assert conflict["winning_version"]["source"] == "server"
    assert conflict["losing_version"]["data"] == {"location": "Terrain"}


async def test_newer_field_update_wins_conflict(client, assessor, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    a, body = await _stale_update(client, assessor, entity, datetime.now(timezone.utc) + timedelta(minutes=5))

    (result,) = body["results"]
    assert result["status"] == "conflict"
    assert result["conflict_data"]["winner"] == "local"
    assert result["version_number"] == 3

    fresh = (await client.get(f"/assessments/{a['id']}", headers=auth(assessor))).json()
    assert fresh["location"] == "Terrain"


async def test_manual_conflict_resolution(client, assessor, coordinator, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    a, body = await _stale_update(client, assessor, entity, datetime(2020, 1, 1, tzinfo=timezone.utc))
    conflict_id = body["results"][0]["conflict_data"]["conflict_id"]

    empty = await client.post(
        f"/sync/conflicts/{conflict_id}/resolve", json={"strategy": "manual"}, headers=auth(coordinator)
    )
    assert empty.status_code == 400

    res = await client.post(
        f"/sync/conflicts/{conflict_id}/resolve",
        json={"strategy": "manual", "resolved_data": {"location": "Arbitrage"}},
        headers=auth(coordinator),
    )
    assert res.status_code == 200
    assert res.json()["conflict"]["is_resolved"] is True
    assert res.json()["resolution"]["winner"] == "manual"

    fresh = (await client.get(f"/assessments/{a['id']}", headers=auth(assessor))).json()
    assert fresh["location"] == "Arbitrage"

    again = await client.post(
        f"/sync/conflicts/{conflict_id}/resolve", json={"strategy": "merge"}, headers=auth(coordinator)
    )
    assert again.status_code == 409


async def _verified_assessment(client, assessor, coordinator, entity):
    res = await client.post(
        "/assessments",
        json={"assessment_type": "HEALTH", "entity_id": str(entity.id), "data": {}},
        headers=auth(assessor),
    )
    a = res.json()
    await client.patch(f"/assessments/{a['id']}", json={"location": "Serveur"}, headers=auth(assessor))
    await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))
    await client.post(f"/verification/assessments/{a['id']}/verify", json={}, headers=auth(coordinator))
    return a


async def test_newer_field_update_cannot_overwrite_verified_assessment(
    client, assessor, coordinator, make_entity
) -> None:
    entity = await make_entity(assigned=[assessor])
    a = await _verified_assessment(client, assessor, coordinator, entity)

    change = {
        "type": "assessment",
        "action": "update",
        "offline_id": "upd-locked",
        "entity_uuid": a["id"],
        "version_number": 1,
        "last_modified": (datetime.now(timezone.utc) + timedelta(minutes=5)).isoformat(),
        "data": {"location": "Terrain"},
    }
    (result,) = (await _sync(client, assessor, change)).json()["results"]
    assert result["status"] == "conflict"
    assert result["conflict_data"]["winner"] == "server"

    fresh = (await client.get(f"/assessments/{a['id']}", headers=auth(assessor))).json()
    assert fresh["status"] == "VERIFIED"
    assert fresh["location"] == "Serveur"

    conflicts = (await client.get("/sync/conflicts", headers=auth(coordinator))).json()
    assert conflicts["data"][0]["winning_version"]["source"] == "server"


async def test_conflict_resolution_refused_once_assessment_is_verified(
    client, assessor, coordinator, make_entity
) -> None:
    entity = await make_entity(assigned=[assessor])
    a, body = await _stale_update(client, assessor, entity, datetime(2020, 1, 1, tzinfo=timezone.utc))
    conflict_id = body["results"][0]["conflict_data"]["conflict_id"]

    await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))
    await client.post(f"/verification/assessments/{a['id']}/verify", json={}, headers=auth(coordinator))

    res = await client.post(
        f"/sync/conflicts/{conflict_id}/resolve",
        json={"strategy": "manual", "resolved_data": {"location": "Arbitrage"}},
        headers=auth(coordinator),
    )
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "INVALID_STATE"

    fresh = (await client.get(f"/assessments/{a['id']}", headers=auth(assessor))).json()
    assert fresh["location"] == "Serveur"


async def test_pull_returns_assigned_scope(client, assessor, make_entity) -> None:
    mine = await make_entity("Gwange", assigned=[assessor])
    await make_entity("Bulumkutu")
    await _sync(client, assessor, _create_change(mine.id))

    res = await client.get("/sync/pull", headers=auth(assessor))
    body = res.json()
    assert [e["name"] for e in body["entities"]] == ["Gwange"]
    assert len(body["assessments"]) == 1

    later = await client.get("/sync/pull", params={"since": body["server_time"]}, headers=auth(assessor))
    assert later.json()["assessments"] == []


async def test_batch_updates_last_sync_status(client, assessor, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    await _sync(client, assessor, _create_change(entity.id))

    status = (await client.get("/system/status")).json()
    assert status["last_sync"] is not None
