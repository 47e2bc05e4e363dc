"""API dependencies: identity resolution and role gating."""

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import decode_token
from app.crud import user as user_crud
from app.models.user import UserProfile
from app.schemas.token import TokenPayload

bearer_scheme = HTTPBearer(auto_error=False)

__all__ = ["get_db", "get_current_user", "get_current_active_user", "get_current_admin_user"]


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> UserProfile:
    """
    Resolve the caller from the bearer token issued by the auth provider.

    Raises:
        HTTPException: 401 if the token is missing, invalid or unknown
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    try:
        token_data = TokenPayload(**payload)
        user_id = uuid.UUID(token_data.sub or "")
    except (ValidationError, ValueError):
        raise credentials_exception

    user = await user_crud.get_user_by_id(db, user_id)
    if user is None:
        raise credentials_exception

    # Used as the rate limit key
    request.state.user = user
    return user


async def get_current_active_user(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
) -> UserProfile:
    return current_user


async def get_current_admin_user(
    current_user: Annotated[UserProfile, Depends(get_current_user)],
) -> UserProfile:
    """
    Require the admin role.

    Raises:
        HTTPException: 403 for non-admins
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )
    return current_user
