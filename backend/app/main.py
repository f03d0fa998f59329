# ==============================================================================
# == backend/app/main.py - app factory, startup and middleware              ==
# ==============================================================================

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import auth, crud
from .config import AdminUserConfig, Settings
from .database import Database
from .models import auth as model_auth
from .routers import api as api_router
from .routers import auth as auth_router
from .sessions import SessionStore

logger = logging.getLogger(__name__)


class BootstrapError(Exception):
    pass


def configure_logging(settings: Settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE, encoding='utf-8'))
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format='%(asctime)s - API - %(levelname)s - %(message)s',
        handlers=handlers,
    )


# ============================================================================
# STARTUP HELPERS
# ============================================================================
async def initialize_admin_user(db: AsyncSession, admin: AdminUserConfig) -> Optional[model_auth.User]:
    """Create the configured admin when there are no active users."""
    try:
        user_count = await crud.count_active_users(db)
    except SQLAlchemyError as e:
        raise BootstrapError(f"failed to count existing users: {e}") from e

    if user_count > 0:
        logger.info(f"Users already exist ({user_count} found), skipping initialization")
        return None

    logger.info("No users found, initializing admin user from configuration...")

    if not admin.email:
        logger.warning("⚠️ No admin email configured (ADMIN_EMAIL), skipping")
        return None
    if not admin.password:
        logger.warning("⚠️ No admin password configured (ADMIN_PASSWORD), skipping")
        return None

    try:
        hashed_password = await auth.get_password_hash(admin.password)
    except ValueError as e:
        raise BootstrapError(f"failed to hash initial user password: {e}") from e

    try:
        admin_user = await crud.create_user(
            db,
            username=admin.username,
            email=admin.email,
            password_hash=hashed_password,
            first_name=admin.first_name,
            last_name=admin.last_name,
        )
    except SQLAlchemyError as e:
        await db.rollback()
        raise BootstrapError(f"failed to create user: {e}") from e

    logger.info(f"✓ Created admin user: {admin_user.username} ({admin_user.email})")
    return admin_user


async def cleanup_expired_sessions(database: Database, store: SessionStore, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            async with database.session() as db:
                removed = await store.delete_expired(db)
            if removed:
                logger.info(f"Removed {removed} expired sessions")
        except Exception as e:
            logger.error(f"❌ Session cleanup failed: {e}")


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    database: Database = app.state.database
    logger.info("🚀 Starting...")

    cleanup_task = None
    try:
        # Connection, creation and schema failures abort startup
        await database.ensure_database_exists()
        await database.ping()
        await database.run_migrations(auto_migrate=settings.is_development)
        logger.info("✓ Database initialized")

        try:
            async with database.session() as db:
                await initialize_admin_user(db, settings.admin)
        except BootstrapError as e:
            logger.error(f"❌ Failed to create initial user: {e}")

        if settings.SESSION_CLEANUP_INTERVAL > 0:
            cleanup_task = asyncio.create_task(
                cleanup_expired_sessions(database, app.state.session_store, settings.SESSION_CLEANUP_INTERVAL)
            )

        logger.info("🎉 System ready to serve!")
        yield

    finally:
        logger.info("🛑 Shutting down...")
        if cleanup_task is not None:
            cleanup_task.cancel()
            try:
                await cleanup_task
            except asyncio.CancelledError:
                pass
        await database.dispose()
        logger.info("✅ Shutdown complete")


# ============================================================================
# APP SETUP
# ============================================================================
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings)

    app = FastAPI(title="Portal", lifespan=lifespan, version="1.0.0")
    app.state.settings = settings
    app.state.database = Database(settings.DB_URL)
    app.state.session_store = SessionStore(settings.SESSION_SECRET, secure=settings.is_production)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.error(f"{request.method} {request.url.path} -> 500 ({elapsed_ms:.1f} ms)")
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response

    @app.exception_handler(auth.RedirectRequired)
    async def redirect_handler(request: Request, exc: auth.RedirectRequired):
        return RedirectResponse(exc.location, status_code=status.HTTP_302_FOUND)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    # Public routes (no restrictions)
    @app.get("/", response_class=PlainTextResponse)
    async def index():
        return "Welcome! Go to /login to authenticate."

    app.include_router(auth_router.guest_router)
    app.include_router(auth_router.protected_router)
    app.include_router(api_router.router)

    return app
