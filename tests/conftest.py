"""
Shared fixtures: a fresh file-backed SQLite database per test.

A file (not :memory:) is used so several sessions can hold their own
connections and really compete, which the acceptance race test needs.
"""

import asyncio
import os
from datetime import timedelta

# Must be set before any project module reads config
os.environ.setdefault("ENABLE_SWEEPER", "false")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-writify-tests")
# Unused by the tests (each builds its own engine); keeps db.get_engine off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from init_db import init_database
from models import AssignmentRequest, User
from security import encrypt_contact
from services.users import principal_for
from utils import generate_unique_id, utcnow


def _sqlite_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(_sqlite_url(tmp_path / "writify.db"), connect_args={"timeout": 15})
    await init_database(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def insert_user(
    session,
    name: str,
    writer_status: str = "inactive",
    role: str = "client",
    whatsapp: str | None = None,
) -> dict:
    slug = name.lower().replace(" ", ".")
    user = User(
        google_id=f"google-{slug}",
        email=f"{slug}@student.iul.ac.in",
        name=name,
        role=role,
        writer_status=writer_status,
        whatsapp_number=encrypt_contact(whatsapp) if whatsapp else None,
    )
    session.add(user)
    await session.commit()
    return principal_for(user)


async def insert_request(session, client_id: int, age: timedelta = timedelta(0), status: str = "open", **overrides):
    now = utcnow()
    fields = {
        "course_name": "Operating Systems",
        "course_code": "CS301",
        "assignment_type": "lab_files",
        "num_pages": 4,
        "deadline": now + timedelta(days=5),
        "estimated_cost": 150,
    }
    fields.update(overrides)
    req = AssignmentRequest(
        client_id=client_id,
        unique_id=generate_unique_id(),
        status=status,
        created_at=now - age,
        **fields,
    )
    session.add(req)
    await session.commit()
    return req


@pytest.fixture
def make_user():
    return insert_user


@pytest.fixture
def make_request():
    return insert_request


# =============================================================
# HTTP fixtures
# =============================================================

class PrincipalHolder:
    """The signed-in user the overridden get_current_user dependency returns."""

    def __init__(self):
        self.current = None


@pytest.fixture
def api(tmp_path):
    """
    TestClient wired to a private SQLite file.
    NullPool keeps every connection inside the event loop that opened it,
    since TestClient runs the app on its own loop.
    """
    from fastapi.testclient import TestClient

    from db import getDB
    from main import app
    from routes.auth import get_current_user

    engine = create_async_engine(
        _sqlite_url(tmp_path / "api.db"), poolclass=NullPool, connect_args={"timeout": 15}
    )
    asyncio.run(init_database(engine))
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    holder = PrincipalHolder()

    app.dependency_overrides[getDB] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: holder.current

    client = TestClient(app)
    client.principal = holder
    client.factory = factory

    def run(coro_fn, *args, **kwargs):
        async def runner():
            async with factory() as session:
                return await coro_fn(session, *args, **kwargs)
        return asyncio.run(runner())

    client.run = run
    yield client

    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())
