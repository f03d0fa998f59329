# backend/app/database.py
import logging

from fastapi import Request
from sqlalchemy import inspect, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

Base = declarative_base()

REQUIRED_TABLES = ("users", "http_sessions")


class DatabaseSetupError(Exception):
    """The database could not be created, reached or prepared."""


# Hàm tạo engine chung
def create_pg_engine(url, **kwargs):
    if url.startswith("sqlite"):
        # aiosqlite connections must not outlive the event loop that opened them
        return create_async_engine(url, echo=False, poolclass=NullPool, **kwargs)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,  # reconnect dropped connections
        **kwargs,
    )


def validate_database_name(name: str) -> None:
    if not name:
        raise DatabaseSetupError("database name cannot be empty")
    if any(c in name for c in "';\"\\-/*"):
        raise DatabaseSetupError("database name contains invalid characters")
    # PostgreSQL identifier limit
    if len(name) > 63:
        raise DatabaseSetupError("database name too long (max 63 characters)")
    if name[0].isdigit():
        raise DatabaseSetupError("database name cannot start with a number")


class Database:
    """Engine and session factory built from the application settings."""

    def __init__(self, url: str):
        self.url = url
        self.engine = create_pg_engine(url)
        self.SessionLocal = sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    @property
    def is_postgres(self) -> bool:
        return make_url(self.url).get_backend_name() == "postgresql"

    def session(self) -> AsyncSession:
        return self.SessionLocal()

    async def ensure_database_exists(self) -> None:
        """Create the target database through the maintenance DB if it is missing."""
        if not self.is_postgres:
            return

        url = make_url(self.url)
        name = url.database or ""
        validate_database_name(name)

        admin_engine = create_pg_engine(
            url.set(database="postgres").render_as_string(hide_password=False),
            isolation_level="AUTOCOMMIT",
        )
        try:
            async with admin_engine.connect() as conn:
                result = await conn.execute(
                    text("SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = :name)"),
                    {"name": name},
                )
                if result.scalar():
                    logger.info(f"Database '{name}' already exists")
                    return

                quoted = conn.dialect.identifier_preparer.quote_identifier(name)
                await conn.execute(text(f"CREATE DATABASE {quoted}"))
                logger.info(f"✓ Database '{name}' created")
        except SQLAlchemyError as e:
            raise DatabaseSetupError(f"failed to ensure database {name} exists: {e}") from e
        finally:
            await admin_engine.dispose()

    async def run_migrations(self, auto_migrate: bool) -> None:
        """Create the schema, or only check it is present when auto_migrate is off."""
        # Register the models on Base.metadata
        from .models import auth as model_auth  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                if auto_migrate:
                    await conn.run_sync(Base.metadata.create_all)
                    logger.info("✓ Schema created/up to date")
                    return
                tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        except SQLAlchemyError as e:
            raise DatabaseSetupError(f"migrations failed: {e}") from e

        missing = [t for t in REQUIRED_TABLES if t not in tables]
        if missing:
            raise DatabaseSetupError(f"missing tables: {', '.join(missing)}")
        logger.info("✓ Schema check passed")

    async def ping(self) -> None:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(select(1))
        except SQLAlchemyError as e:
            raise DatabaseSetupError(f"failed to connect to database: {e}") from e

    async def dispose(self) -> None:
        await self.engine.dispose()


# Dependency Injection cho FastAPI
async def get_db(request: Request):
    async with request.app.state.database.session() as session:
        yield session
