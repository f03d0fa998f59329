# ==============================================================================
# == backend/app/routers/auth.py - login / logout / dashboard
# ==============================================================================

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .. import auth, schemas
from ..database import get_db
from ..sessions import (
    IS_AUTH_KEY,
    LOGIN_MAX_AGE,
    USER_ID_KEY,
    USERNAME_KEY,
    Session,
    SessionStore,
    SessionStoreError,
    get_session,
    get_session_store,
)

logger = logging.getLogger(__name__)

auth_service = auth.AuthService()

LOGIN_FORM = """
<form method="POST" action="/login">
    <input type="text" name="username" placeholder="Username" required>
    <input type="password" name="password" placeholder="Password" required>
    <button type="submit">Login</button>
</form>
"""

# Public routes (guests only)
guest_router = APIRouter(tags=["Auth"], dependencies=[Depends(auth.guest_only)])

# Protected routes
protected_router = APIRouter(tags=["Auth"], dependencies=[Depends(auth.require_auth)])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@guest_router.get("/login", response_class=HTMLResponse)
async def show_login():
    return HTMLResponse(LOGIN_FORM)


@guest_router.post(
    "/login",
    responses={
        400: {"model": schemas.ErrorResponse},
        401: {"model": schemas.ErrorResponse},
        500: {"model": schemas.ErrorResponse},
    },
)
async def login(
    username: str = Form(""),
    password: str = Form(""),
    db: AsyncSession = Depends(get_db),
    session: Optional[Session] = Depends(get_session),
    store: SessionStore = Depends(get_session_store),
):
    if not username or not password:
        return _error(status.HTTP_400_BAD_REQUEST, "Username and password are required")

    try:
        user = await auth_service.validate_credentials(db, username, password)
    except auth.InvalidCredentialsError:
        logger.info(f"Login failed for '{username}'")
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")
    except auth.AuthenticationError as e:
        logger.error(f"❌ Login error for '{username}': {e}")
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")

    if session is None:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create session")

    response = RedirectResponse(auth.DASHBOARD_ROUTE, status_code=status.HTTP_302_FOUND)
    try:
        # New key on every login
        await store.discard(db, session)

        session.values[IS_AUTH_KEY] = True
        session.values[USER_ID_KEY] = user.id
        session.values[USERNAME_KEY] = user.username
        session.options.path = "/"
        session.options.max_age = LOGIN_MAX_AGE
        session.options.http_only = True
        session.options.same_site = "strict"

        await store.save(response, db, session)
    except SessionStoreError as e:
        logger.error(f"❌ {e}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to save session")

    logger.info(f"✅ Login successful: {user.username}")
    return response


@protected_router.post("/logout")
async def logout(
    db: AsyncSession = Depends(get_db),
    session: Optional[Session] = Depends(get_session),
    store: SessionStore = Depends(get_session_store),
):
    response = RedirectResponse(auth.LOGIN_ROUTE, status_code=status.HTTP_302_FOUND)
    if session is None:
        return response

    username = session.values.get(USERNAME_KEY)
    session.values[IS_AUTH_KEY] = False
    session.values.pop(USER_ID_KEY, None)
    session.values.pop(USERNAME_KEY, None)

    # Negative max age deletes the row and expires the cookie
    session.options.max_age = -1
    try:
        await store.save(response, db, session)
    except SessionStoreError as e:
        logger.error(f"❌ {e}")

    logger.info(f"Logged out: {username}")
    return response


@protected_router.get("/dashboard", response_model=schemas.DashboardResponse)
async def dashboard(request: Request):
    username = getattr(request.state, "username", "")
    return schemas.DashboardResponse(
        message=f"Welcome to dashboard, {username}!",
        user_id=getattr(request.state, "user_id", None),
    )
