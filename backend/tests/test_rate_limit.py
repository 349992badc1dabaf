"""
Tests du rate limiter (clé IP de connexion + route, purge des fenêtres expirées).
"""
from __future__ import annotations

import pytest
from starlette.requests import Request

from dms.core.errors import AppHTTPException
from dms.core.rate_limit import InMemoryRateLimiter, rate_limiter
from dms.core.settings import settings


@pytest.fixture
def limited(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(settings, "RATE_LIMIT_RPM", 2)
    rate_limiter.reset()
    yield
    rate_limiter.reset()


def _request(path: str, *, ip: str = "10.1.1.1", headers=None) -> Request:
    return Request(
        {
            "type": "http",
            "method": "POST",
            "scheme": "http",
            "server": ("testserver", 80),
            "path": path,
            "root_path": "",
            "query_string": b"",
            "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
            "client": (ip, 5000),
        }
    )


async def test_forwarded_header_does_not_bypass_limit(client, limited) -> None:
    codes = []
    for i in range(6):
        res = await client.post("/sync/batch", json={}, headers={"X-Forwarded-For": f"10.0.0.{i}"})
        codes.append(res.status_code)

    assert codes[:2] == [422, 422]
    assert codes[2:] == [429] * 4


async def test_rate_limited_payload(client, limited) -> None:
    for _ in range(2):
        await client.post("/sync/batch", json={})
    res = await client.post("/sync/batch", json={})

    assert res.status_code == 429
    error = res.json()["error"]
    assert error["code"] == "RATE_LIMITED"
    assert error["details"]["limit_rpm"] == 2


def test_limit_is_per_connection_ip(limited) -> None:
    limiter = InMemoryRateLimiter()
    for _ in range(2):
        limiter.check(_request("/sync/batch", ip="10.1.1.1"))

    with pytest.raises(AppHTTPException) as exc:
        limiter.check(_request("/sync/batch", ip="10.1.1.1", headers={"X-Forwarded-For": "192.168.0.9"}))
    assert exc.value.status_code == 429

    limiter.check(_request("/sync/batch", ip="10.2.2.2"))


def test_expired_windows_are_purged(limited) -> None:
    now = {"t": 1000.0}
    limiter = InMemoryRateLimiter(window_s=60.0, clock=lambda: now["t"])

    for i in range(50):
        limiter.check(_request(f"/assessments/{i}/submit"))
    assert limiter.tracked_keys() == 50

    now["t"] += 61
    limiter.check(_request("/sync/batch"))
    assert limiter.tracked_keys() == 1


def test_disabled_limiter_never_raises(monkeypatch) -> None:
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", False)
    limiter = InMemoryRateLimiter()
    for _ in range(10):
        limiter.check(_request("/sync/batch"))
    assert limiter.tracked_keys() == 0
