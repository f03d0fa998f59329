# ==============================================================================
# == backend/app/routers/api.py - JSON API (authenticated)
# ==============================================================================

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import auth, crud, schemas
from ..database import get_db
from ..sessions import USER_ID_KEY, Session

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api",
    tags=["API"],
    dependencies=[Depends(auth.require_auth)],
)


async def get_current_user(db: AsyncSession, session: Optional[Session]):
    """Active user named by the session, or None."""
    if session is None:
        return None
    user_id = session.values.get(USER_ID_KEY)
    if not isinstance(user_id, int):
        return None
    return await crud.get_user_by_id(db, user_id)


@router.get(
    "/profile",
    response_model=schemas.UserResponse,
    responses={500: {"model": schemas.ErrorResponse}},
)
async def profile(
    db: AsyncSession = Depends(get_db),
    session: Session = Depends(auth.require_auth),
):
    try:
        user = await get_current_user(db, session)
    except SQLAlchemyError as e:
        logger.error(f"❌ Error loading profile: {e}")
        user = None

    if user is None:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to get user info"},
        )
    return user
