import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app import crud
from app.auth import get_password_hash
from app.config import Settings
from app.database import Database
from app.main import create_app

ADMIN_PASSWORD = "s3cret-admin-pw"


def run(coro):
    """Run a coroutine from a sync test (the TestClient owns its own loop)."""
    return asyncio.run(coro)


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}"


@pytest.fixture()
def settings(db_url) -> Settings:
    return Settings(
        APP_ENV="development",
        DATABASE_URL=db_url,
        SESSION_SECRET="test-secret",
        SESSION_CLEANUP_INTERVAL=0,
        ADMIN_USERNAME="admin",
        ADMIN_EMAIL="admin@example.com",
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        ADMIN_FIRST_NAME="Ada",
        ADMIN_LAST_NAME="",
    )


@pytest.fixture()
def app(settings):
    return create_app(settings)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
async def database(db_url):
    database = Database(db_url)
    await database.run_migrations(auto_migrate=True)
    yield database
    await database.dispose()


@pytest.fixture()
async def db(database):
    async with database.session() as session:
        yield session


@pytest.fixture()
async def make_user(db):
    async def _make(username="alice", password="wonderland", email=None, **kwargs):
        return await crud.create_user(
            db,
            username=username,
            email=email or f"{username}@example.com",
            password_hash=await get_password_hash(password),
            **kwargs,
        )

    return _make


def login(client, username="admin", password=ADMIN_PASSWORD):
    return client.post(
        "/login",
        data={"username": username, "password": password},
        follow_redirects=False,
    )
