# backend/app/sessions.py
"""Server-side sessions stored in the ``http_sessions`` table.

The browser only ever sees the session key, signed with ``SESSION_SECRET``.
Flags (authenticated, user id, username) live in the row as JSON and are
loaded once per request through the ``get_session`` dependency.
"""
import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Request, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db
from .models import auth as model_auth

logger = logging.getLogger(__name__)

# Session constants
SESSION_NAME = "app-session"
USER_ID_KEY = "user_id"
USERNAME_KEY = "username"
IS_AUTH_KEY = "authenticated"

DEFAULT_MAX_AGE = 86400 * 30
LOGIN_MAX_AGE = 86400 * 7


class SessionStoreError(Exception):
    pass


@dataclass
class SessionOptions:
    path: str = "/"
    max_age: int = DEFAULT_MAX_AGE
    http_only: bool = True
    secure: bool = False
    same_site: str = "lax"


@dataclass
class Session:
    key: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    options: SessionOptions = field(default_factory=SessionOptions)

    @property
    def is_new(self) -> bool:
        return self.key is None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    def __init__(self, secret: str, max_age: int = DEFAULT_MAX_AGE, secure: bool = False):
        self.serializer = URLSafeTimedSerializer(secret_key=secret, salt="app.session")
        self.max_age = max_age
        self.secure = secure

    def new(self) -> Session:
        return Session(options=SessionOptions(max_age=self.max_age, secure=self.secure))

    def _decode_key(self, cookie: Optional[str]) -> Optional[str]:
        if not cookie:
            return None
        try:
            key = self.serializer.loads(cookie, max_age=self.max_age)
        except BadSignature:
            return None
        return key if isinstance(key, str) and key else None

    async def get(self, request: Request, db: AsyncSession) -> Session:
        """Load the session named by the request cookie, or a new empty one."""
        key = self._decode_key(request.cookies.get(SESSION_NAME))
        if key is None:
            return self.new()

        try:
            result = await db.execute(
                select(model_auth.HttpSession).where(
                    model_auth.HttpSession.key == key,
                    model_auth.HttpSession.expires_on > _now(),
                )
            )
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await db.rollback()
            raise SessionStoreError(f"failed to load session: {e}") from e

        if row is None:
            return self.new()

        try:
            values = json.loads(row.data)
        except ValueError:
            logger.warning("Discarding session with undecodable data")
            return self.new()

        session = self.new()
        session.key = key
        session.values = values if isinstance(values, dict) else {}
        return session

    async def save(self, response: Response, db: AsyncSession, session: Session) -> None:
        """Persist the session and set its cookie; max_age <= 0 deletes both."""
        opts = session.options
        try:
            if opts.max_age <= 0:
                if session.key is not None:
                    await db.execute(
                        delete(model_auth.HttpSession).where(model_auth.HttpSession.key == session.key)
                    )
                    await db.commit()
                response.delete_cookie(
                    SESSION_NAME,
                    path=opts.path,
                    secure=opts.secure,
                    httponly=opts.http_only,
                    samesite=opts.same_site,
                )
                session.key = None
                return

            now = _now()
            expires_on = now + timedelta(seconds=opts.max_age)
            data = json.dumps(session.values)

            row = None
            if session.key is not None:
                result = await db.execute(
                    select(model_auth.HttpSession).where(model_auth.HttpSession.key == session.key)
                )
                row = result.scalar_one_or_none()

            if row is None:
                session.key = secrets.token_urlsafe(32)
                row = model_auth.HttpSession(key=session.key, created_on=now)
                db.add(row)

            row.data = data
            row.modified_on = now
            row.expires_on = expires_on
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise SessionStoreError(f"failed to save session: {e}") from e

        response.set_cookie(
            SESSION_NAME,
            self.serializer.dumps(session.key),
            max_age=opts.max_age,
            path=opts.path,
            secure=opts.secure,
            httponly=opts.http_only,
            samesite=opts.same_site,
        )

    async def discard(self, db: AsyncSession, session: Session) -> None:
        """Forget the session row so the next save issues a fresh key."""
        if session.key is None:
            return
        try:
            await db.execute(
                delete(model_auth.HttpSession).where(model_auth.HttpSession.key == session.key)
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise SessionStoreError(f"failed to discard session: {e}") from e
        session.key = None

    async def delete_expired(self, db: AsyncSession) -> int:
        result = await db.execute(
            delete(model_auth.HttpSession).where(model_auth.HttpSession.expires_on <= _now())
        )
        await db.commit()
        return result.rowcount or 0


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


async def get_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
) -> Optional[Session]:
    """Request session, or None when the store could not be read."""
    try:
        return await store.get(request, db)
    except SessionStoreError as e:
        logger.warning(f"⚠️ {e}")
        return None
