# backend/app/crud.py
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import auth as model_auth


def _none_if_empty(value: Optional[str]) -> Optional[str]:
    # Blank optional text columns are stored as NULL
    if value is None or value == "":
        return None
    return value


def _active_users():
    return select(model_auth.User).where(model_auth.User.is_active.is_(True))


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[model_auth.User]:
    result = await db.execute(_active_users().where(model_auth.User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[model_auth.User]:
    result = await db.execute(_active_users().where(model_auth.User.username == username))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[model_auth.User]:
    result = await db.execute(_active_users().where(model_auth.User.email == email))
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    username: str,
    email: str,
    password_hash: str,
    first_name: str = None,
    last_name: str = None,
) -> model_auth.User:
    db_user = model_auth.User(
        username=username,
        email=email,
        password_hash=password_hash,
        first_name=_none_if_empty(first_name),
        last_name=_none_if_empty(last_name),
        is_active=True,
        is_verified=False,
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user


async def update_user(
    db: AsyncSession,
    user_id: int,
    username: str,
    email: str,
    first_name: str = None,
    last_name: str = None,
) -> Optional[model_auth.User]:
    """Update profile fields of an active user; returns None if there is none."""
    db_user = await get_user_by_id(db, user_id)
    if db_user is None:
        return None
    db_user.username = username
    db_user.email = email
    db_user.first_name = _none_if_empty(first_name)
    db_user.last_name = _none_if_empty(last_name)
    await db.commit()
    await db.refresh(db_user)
    return db_user


async def update_user_password(db: AsyncSession, user_id: int, password_hash: str) -> None:
    await db.execute(
        update(model_auth.User)
        .where(model_auth.User.id == user_id, model_auth.User.is_active.is_(True))
        .values(password_hash=password_hash, updated_at=func.now())
    )
    await db.commit()


async def verify_user(db: AsyncSession, user_id: int) -> None:
    await db.execute(
        update(model_auth.User)
        .where(model_auth.User.id == user_id)
        .values(is_verified=True, updated_at=func.now())
    )
    await db.commit()


async def deactivate_user(db: AsyncSession, user_id: int) -> None:
    # Soft delete: the row stays, lookups and counts stop seeing it
    await db.execute(
        update(model_auth.User)
        .where(model_auth.User.id == user_id)
        .values(is_active=False, updated_at=func.now())
    )
    await db.commit()


async def list_active_users(db: AsyncSession, limit: int = 50, offset: int = 0) -> List[model_auth.User]:
    result = await db.execute(
        _active_users()
        .order_by(model_auth.User.created_at.desc(), model_auth.User.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def count_active_users(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count()).select_from(model_auth.User).where(model_auth.User.is_active.is_(True))
    )
    return result.scalar_one()
