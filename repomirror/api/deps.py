"""Shared API dependencies: DB session, GitHub client, dispatcher, auth."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from repomirror.config import Settings
from repomirror.database import SessionFactory
from repomirror.github.base import RepositoryClient
from repomirror.models.user import User
from repomirror.services.auth_service import (
    authenticate_personal_access_token,
    decode_access_token,
)
from repomirror.services.dispatch_service import SyncDispatcher

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_session_factory(request: Request) -> SessionFactory:
    """Session factory for work that outlives the request session."""
    factory: SessionFactory = request.app.state.session_factory
    return factory


def get_github_client(request: Request) -> RepositoryClient:
    client: RepositoryClient = request.app.state.github_client
    return client


def get_dispatcher(request: Request) -> SyncDispatcher:
    dispatcher: SyncDispatcher = request.app.state.dispatcher
    return dispatcher


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session: AsyncSession = Depends(get_session),
) -> User | None:
    """Get current authenticated user, or None if not authenticated."""
    if credentials is None:
        return None
    token_value = credentials.credentials

    settings: Settings = request.app.state.settings
    payload = decode_access_token(token_value, settings.secret_key)
    if payload is not None:
        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id.isdigit():
            return None
        return await session.get(User, int(user_id))

    return await authenticate_personal_access_token(session, token_value)


async def require_auth(
    user: Annotated[User | None, Depends(get_current_user)],
) -> User:
    """Require authentication. Raises 401 if not authenticated."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_admin(
    user: Annotated[User, Depends(require_auth)],
) -> User:
    """Require admin role. Raises 403 if not admin."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
