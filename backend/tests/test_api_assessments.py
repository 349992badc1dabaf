"""
Tests API : cycle de vie d’une évaluation rapide (création, soumission, vérification, rejet,
auto-approbation).
"""
from __future__ import annotations

from .conftest import auth


def _health(entity_id, **data):
    return {
        "assessment_type": "HEALTH",
        "entity_id": str(entity_id),
        "data": {"hasFunctionalClinic": True, "hasTrainedStaff": True, **data},
    }


async def _create(client, user, entity, **data):
    res = await client.post("/assessments", json=_health(entity.id, **data), headers=auth(user))
    assert res.status_code == 201, res.text
    return res.json()


async def test_create_runs_gap_analysis(client, assessor, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])

    a = await _create(client, assessor, entity, hasFunctionalClinic=False)

    assert a["status"] == "DRAFT"
    assert a["verification_status"] == "DRAFT"
    assert a["priority"] == "CRITICAL"
    assert a["gap_analysis"]["has_gap"] is True
    assert a["gap_analysis"]["gap_fields"] == ["hasFunctionalClinic"]
    assert a["location"] == "Maiduguri"
    assert a["assessor_name"] == assessor.name


async def test_unassigned_entity_is_forbidden(client, assessor, make_entity) -> None:
    entity = await make_entity()
    res = await client.post("/assessments", json=_health(entity.id), headers=auth(assessor))
    assert res.status_code == 403


async def test_invalid_typed_data_is_rejected(client, assessor, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    res = await client.post(
        "/assessments", json=_health(entity.id, numberHealthFacilities=-1), headers=auth(assessor)
    )
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_responder_cannot_create(client, responder, make_entity) -> None:
    entity = await make_entity(assigned=[responder])
    res = await client.post("/assessments", json=_health(entity.id), headers=auth(responder))
    assert res.status_code == 403


async def test_update_bumps_version_and_checks_staleness(client, assessor, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    a = await _create(client, assessor, entity)

    res = await client.patch(
        f"/assessments/{a['id']}",
        json={"data": {"hasFunctionalClinic": False}, "version_number": 1},
        headers=auth(assessor),
    )
    assert res.status_code == 200
    assert res.json()["version_number"] == 2
    assert res.json()["priority"] == "CRITICAL"

    stale = await client.patch(
        f"/assessments/{a['id']}", json={"location": "Gwange", "version_number": 1}, headers=auth(assessor)
    )
    assert stale.status_code == 409


async def test_only_author_can_edit(client, assessor, make_user, make_entity) -> None:
    other = await make_user("ASSESSOR")
    entity = await make_entity(assigned=[assessor, other])
    a = await _create(client, assessor, entity)

    res = await client.patch(f"/assessments/{a['id']}", json={"location": "x"}, headers=auth(other))
    assert res.status_code == 403


async def test_submit_then_verify(client, assessor, coordinator, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    a = await _create(client, assessor, entity)

    res = await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))
    assert res.status_code == 200
    assert res.json()["verification_status"] == "SUBMITTED"

    queue = await client.get("/verification/assessments", headers=auth(coordinator))
    assert [row["id"] for row in queue.json()["data"]] == [a["id"]]

    res = await client.post(
        f"/verification/assessments/{a['id']}/verify", json={"notes": "ok"}, headers=auth(coordinator)
    )
    assert res.status_code == 200
    assert res.json()["status"] == "VERIFIED"
    assert res.json()["verified_by"] == str(coordinator.id)

    again = await client.post(f"/verification/assessments/{a['id']}/verify", headers=auth(coordinator))
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "INVALID_STATE"

    # Plus modifiable une fois vérifiée
    res = await client.patch(f"/assessments/{a['id']}", json={"location": "x"}, headers=auth(assessor))
    assert res.status_code == 409


async def test_rejected_assessment_can_be_fixed_and_resubmitted(client, assessor, coordinator, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    a = await _create(client, assessor, entity)
    await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))

    res = await client.post(
        f"/verification/assessments/{a['id']}/reject",
        json={"reason": "INCOMPLETE_DATA", "feedback": "Préciser le nombre de structures"},
        headers=auth(coordinator),
    )
    assert res.status_code == 200
    assert res.json()["status"] == "DRAFT"
    assert res.json()["verification_status"] == "REJECTED"

    res = await client.patch(
        f"/assessments/{a['id']}", json={"data": {"numberHealthFacilities": 3}}, headers=auth(assessor)
    )
    assert res.status_code == 200

    res = await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))
    assert res.json()["verification_status"] == "SUBMITTED"


async def test_reject_requires_known_reason(client, assessor, coordinator, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    a = await _create(client, assessor, entity)
    await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))

    res = await client.post(
        f"/verification/assessments/{a['id']}/reject",
        json={"reason": "BAD_MOOD", "feedback": "x"},
        headers=auth(coordinator),
    )
    assert res.status_code == 422


async def test_auto_approval_on_submit(client, assessor, make_entity) -> None:
    entity = await make_entity(
        assigned=[assessor],
        auto_approval={"enabled": True, "scope": "assessments", "max_priority": "MEDIUM"},
    )
    low = await _create(client, assessor, entity)
    critical = await _create(client, assessor, entity, hasFunctionalClinic=False)

    res = await client.post(f"/assessments/{low['id']}/submit", headers=auth(assessor))
    assert res.json()["verification_status"] == "AUTO_VERIFIED"
    assert res.json()["status"] == "VERIFIED"
    assert res.json()["verified_by"] == "system"

    res = await client.post(f"/assessments/{critical['id']}/submit", headers=auth(assessor))
    assert res.json()["verification_status"] == "SUBMITTED"


async def test_delete_only_drafts(client, assessor, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    draft = await _create(client, assessor, entity)
    submitted = await _create(client, assessor, entity)
    await client.post(f"/assessments/{submitted['id']}/submit", headers=auth(assessor))

    assert (await client.delete(f"/assessments/{draft['id']}", headers=auth(assessor))).status_code == 204
    assert (await client.delete(f"/assessments/{submitted['id']}", headers=auth(assessor))).status_code == 409
    assert (await client.get(f"/assessments/{draft['id']}", headers=auth(assessor))).status_code == 404


async def test_other_assessor_cannot_view(client, assessor, make_user, make_entity) -> None:
    other = await make_user("ASSESSOR")
    entity = await make_entity(assigned=[assessor])
    a = await _create(client, assessor, entity)

    assert (await client.get(f"/assessments/{a['id']}", headers=auth(other))).status_code == 403


async def test_actions_are_audited(client, assessor, coordinator, make_entity) -> None:
    entity = await make_entity(assigned=[assessor])
    a = await _create(client, assessor, entity)
    await client.post(f"/assessments/{a['id']}/submit", headers=auth(assessor))

    res = await client.get("/audit-logs", params={"resource_id": a["id"]}, headers=auth(coordinator))
    actions = {row["action"] for row in res.json()["data"]}
    assert {"ASSESSMENT_CREATED", "ASSESSMENT_SUBMITTED"} <= actions
