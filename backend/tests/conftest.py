from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dms.core.security import create_access_token
from dms.db.base import Base
from dms.db.session import get_db
from dms.main import app
from dms.models import Entity, EntityAssignment, Incident, User, UserRole

"""
Fixtures de test.

- Base SQLite fichier (aiosqlite) par test, schéma créé depuis la metadata ORM.
- Recette SAVEPOINT SQLAlchemy pour pysqlite/aiosqlite : BEGIN émis explicitement,
  sinon begin_nested() (synchro par changement) ne fonctionne pas.
- L’app FastAPI est pilotée en ASGI via httpx.AsyncClient ; get_db est surchargé.
"""


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(eng.sync_engine, "connect")
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessions(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def client(sessions):
    async def _get_db():
        async with sessions() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# --- Fabriques ---


def auth(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, roles=[r.role for r in user.roles])}"}


@pytest.fixture
def make_user(sessions):
    counter = {"n": 0}

    async def _make(*roles: str, **fields: Any) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=fields.pop("email", f"user{n}@dms.test"),
            username=fields.pop("username", f"user{n}"),
            name=fields.pop("name", f"User {n}"),
            **fields,
        )
        user.roles = [UserRole(role=r) for r in roles]
        async with sessions() as db:
            db.add(user)
            await db.commit()
        return user

    return _make


@pytest.fixture
def make_entity(sessions):
    counter = {"n": 0}

    async def _make(
        name: Optional[str] = None,
        type: str = "COMMUNITY",
        *,
        assigned: Iterable[User] = (),
        auto_approval: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
    ) -> Entity:
        counter["n"] += 1
        entity = Entity(
            name=name or f"Entity {counter['n']}",
            type=type,
            location="Maiduguri",
            coordinates={"latitude": 11.83, "longitude": 13.15},
            is_active=is_active,
            auto_approve_enabled=bool(auto_approval and auto_approval.get("enabled")),
            meta={"autoApproval": auto_approval} if auto_approval else None,
        )
        async with sessions() as db:
            db.add(entity)
            await db.flush()
            for u in assigned:
                db.add(EntityAssignment(user_id=u.id, entity_id=entity.id))
            await db.commit()
        return entity

    return _make


@pytest.fixture
def make_incident(sessions):
    async def _make(**fields: Any) -> Incident:
        incident = Incident(
            type=fields.pop("type", "Flood"),
            severity=fields.pop("severity", "HIGH"),
            status=fields.pop("status", "ACTIVE"),
            **fields,
        )
        async with sessions() as db:
            db.add(incident)
            await db.commit()
        return incident

    return _make


@pytest_asyncio.fixture
async def coordinator(make_user):
    return await make_user("COORDINATOR", name="Aisha Bello")


@pytest_asyncio.fixture
async def assessor(make_user):
    return await make_user("ASSESSOR", name="Musa Ibrahim")


@pytest_asyncio.fixture
async def responder(make_user):
    return await make_user("RESPONDER", name="Usman Ali")
