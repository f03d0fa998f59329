import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from starlette.requests import Request
from starlette.responses import Response

from app.models import auth as model_auth
from app.main import cleanup_expired_sessions
from app.sessions import IS_AUTH_KEY, SESSION_NAME, SessionStore, SessionStoreError


def make_request(cookie=None):
    headers = []
    if cookie is not None:
        headers.append((b"cookie", f"{SESSION_NAME}={cookie}".encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


def cookie_value(response):
    header = response.headers["set-cookie"]
    return header.split(";", 1)[0].split("=", 1)[1]


async def test_save_then_load(db):
    store = SessionStore("secret")
    session = store.new()
    session.values[IS_AUTH_KEY] = True
    response = Response()

    await store.save(response, db, session)

    assert session.key is not None
    loaded = await store.get(make_request(cookie_value(response)), db)
    assert loaded.key == session.key
    assert loaded.values == {IS_AUTH_KEY: True}


async def test_missing_or_tampered_cookie_yields_new_session(db):
    store = SessionStore("secret")
    other = SessionStore("another-secret")

    assert (await store.get(make_request(), db)).is_new
    assert (await store.get(make_request("garbage"), db)).is_new
    assert (await store.get(make_request(other.serializer.dumps("forged")), db)).is_new


async def test_negative_max_age_deletes_row_and_cookie(db):
    store = SessionStore("secret")
    session = store.new()
    session.values["x"] = 1
    await store.save(Response(), db, session)
    key = session.key

    session.options.max_age = -1
    response = Response()
    await store.save(response, db, session)

    result = await db.execute(select(model_auth.HttpSession).where(model_auth.HttpSession.key == key))
    assert result.scalar_one_or_none() is None
    assert session.key is None
    assert 'Max-Age=0' in response.headers["set-cookie"]


async def test_expired_rows_are_ignored_and_cleaned(db):
    store = SessionStore("secret")
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    db.add(model_auth.HttpSession(
        key="stale",
        data=json.dumps({IS_AUTH_KEY: True}),
        created_on=past,
        modified_on=past,
        expires_on=past,
    ))
    await db.commit()

    loaded = await store.get(make_request(store.serializer.dumps("stale")), db)
    assert loaded.is_new
    assert loaded.values == {}

    assert await store.delete_expired(db) == 1
    assert await store.delete_expired(db) == 0


class BrokenDb:
    """Async session double whose queries always fail."""

    def __init__(self):
        self.rolled_back = False

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    async def rollback(self):
        self.rolled_back = True


async def test_failed_load_rolls_back_the_transaction():
    store = SessionStore("secret")
    db = BrokenDb()

    with pytest.raises(SessionStoreError):
        await store.get(make_request(store.serializer.dumps("some-key")), db)

    assert db.rolled_back


class FlakyStore:
    def __init__(self):
        self.calls = 0

    async def delete_expired(self, db):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("boom")
        return 0


async def test_cleanup_loop_survives_errors(database):
    store = FlakyStore()
    task = asyncio.create_task(cleanup_expired_sessions(database, store, 0))

    for _ in range(200):
        await asyncio.sleep(0.01)
        if store.calls >= 2:
            break

    assert not task.done()
    assert store.calls >= 2

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
