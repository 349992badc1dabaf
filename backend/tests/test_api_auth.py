"""
Tests API : authentification JWT, contrôle de rôles, endpoints système.
"""
from __future__ import annotations

import uuid

from dms.core.security import create_access_token

from .conftest import auth


async def test_health_is_public(client) -> None:
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


async def test_missing_token_is_unauthorized(client) -> None:
    res = await client.get("/users/me")
    assert res.status_code == 401
    body = res.json()
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert body["error"]["request_id"]


async def test_garbage_token_is_unauthorized(client) -> None:
    res = await client.get("/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401


async def test_token_for_unknown_user_is_unauthorized(client) -> None:
    token = create_access_token(uuid.uuid4(), roles=["ADMIN"])
    res = await client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


async def test_inactive_user_is_rejected(client, make_user) -> None:
    user = await make_user("COORDINATOR", is_active=False)
    res = await client.get("/users/me", headers=auth(user))
    assert res.status_code == 401


async def test_me_returns_roles(client, assessor) -> None:
    res = await client.get("/users/me", headers=auth(assessor))
    assert res.status_code == 200
    assert res.json()["user"]["email"] == assessor.email


async def test_wrong_role_is_forbidden(client, assessor) -> None:
    res = await client.get("/audit-logs", headers=auth(assessor))
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "FORBIDDEN"


async def test_admin_satisfies_every_role(client, make_user) -> None:
    admin = await make_user("ADMIN")
    res = await client.get("/audit-logs", headers=auth(admin))
    assert res.status_code == 200
    assert res.json()["meta"]["total"] >= 0


async def test_system_status_reports_counts(client) -> None:
    res = await client.get("/system/status")
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["counts"]["assessments"] == 0
    assert body["last_sync"] is None


async def test_request_id_is_echoed(client) -> None:
    res = await client.get("/health", headers={"X-Request-Id": "req-123"})
    assert res.headers.get("X-Request-Id") == "req-123"
