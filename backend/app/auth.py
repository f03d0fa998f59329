# backend/app/auth.py
import logging
from typing import Optional

import bcrypt
from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from . import crud
from .models import auth as model_auth
from .sessions import IS_AUTH_KEY, USER_ID_KEY, USERNAME_KEY, Session, get_session

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12

LOGIN_ROUTE = "/login"
DASHBOARD_ROUTE = "/dashboard"


class AuthenticationError(Exception):
    pass


class InvalidCredentialsError(AuthenticationError):
    def __init__(self):
        super().__init__("invalid username or password")


class PasswordComparisonError(AuthenticationError):
    pass


class RedirectRequired(Exception):
    """Raised by a guard; turned into a 302 by the app's exception handler."""

    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


# --- Password Hashing ---
def _hash(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode('utf-8')


def _check(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError as e:
        # Malformed hash in the database, not a wrong password
        raise PasswordComparisonError(f"password comparison failed: {e}") from e


async def get_password_hash(password: str) -> str:
    return await run_in_threadpool(_hash, password)


async def verify_password(plain_password: str, hashed_password: str) -> bool:
    return await run_in_threadpool(_check, plain_password, hashed_password)


class AuthService:
    async def validate_credentials(self, db: AsyncSession, username: str, password: str) -> model_auth.User:
        try:
            user = await crud.get_user_by_username(db, username)
        except SQLAlchemyError as e:
            raise AuthenticationError(f"database error: {e}") from e

        # Don't reveal whether the user exists
        if user is None:
            raise InvalidCredentialsError()

        if not await verify_password(password, user.password_hash):
            raise InvalidCredentialsError()

        return user


# --- Guards ---
async def require_auth(request: Request, session: Optional[Session] = Depends(get_session)) -> Session:
    if session is None or session.values.get(IS_AUTH_KEY) is not True:
        raise RedirectRequired(LOGIN_ROUTE)

    user_id = session.values.get(USER_ID_KEY)
    if isinstance(user_id, int):
        request.state.user_id = user_id
    username = session.values.get(USERNAME_KEY)
    if isinstance(username, str):
        request.state.username = username

    return session


async def guest_only(session: Optional[Session] = Depends(get_session)) -> None:
    if session is not None and session.values.get(IS_AUTH_KEY) is True:
        raise RedirectRequired(DASHBOARD_ROUTE)
