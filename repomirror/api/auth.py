"""Authentication API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from repomirror.api.deps import get_session, get_settings, require_auth
from repomirror.config import Settings
from repomirror.models.user import PersonalAccessToken, User
from repomirror.schemas.auth import (
    LoginRequest,
    PersonalAccessTokenCreateRequest,
    PersonalAccessTokenCreateResponse,
    PersonalAccessTokenResponse,
    TokenResponse,
    UserResponse,
)
from repomirror.services.auth_service import (
    authenticate_user,
    create_access_token,
    create_personal_access_token,
    list_personal_access_tokens,
    revoke_personal_access_token,
)
from repomirror.services.rate_limit_service import LoginThrottle

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",", maxsplit=1)[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _too_many_attempts(retry_after: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many failed login attempts",
        headers={"Retry-After": str(retry_after)},
    )


def _pat_response(pat: PersonalAccessToken) -> PersonalAccessTokenResponse:
    return PersonalAccessTokenResponse(
        id=pat.id,
        name=pat.name,
        created_at=pat.created_at,
        expires_at=pat.expires_at,
        last_used_at=pat.last_used_at,
        revoked_at=pat.revoked_at,
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenResponse:
    """Exchange username and password for a short-lived access token."""
    throttle: LoginThrottle = request.app.state.login_throttle
    key = f"{_client_ip(request)}:{body.username.lower()}"
    retry_after = throttle.retry_after(key)
    if retry_after:
        raise _too_many_attempts(retry_after)

    user = await authenticate_user(session, body.username, body.password)
    if user is None:
        throttle.record_failure(key)
        retry_after = throttle.retry_after(key)
        if retry_after:
            raise _too_many_attempts(retry_after)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    throttle.reset(key)
    token = create_access_token(user, settings.secret_key, settings.access_token_expire_minutes)
    return TokenResponse(access_token=token, expires_in=settings.access_token_expire_minutes * 60)


@router.get("/me", response_model=UserResponse)
async def me(
    user: Annotated[User, Depends(require_auth)],
) -> UserResponse:
    """Get current user info."""
    return UserResponse(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        is_admin=user.is_admin,
    )


@router.post("/pats", response_model=PersonalAccessTokenCreateResponse, status_code=201)
async def create_pat(
    body: PersonalAccessTokenCreateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> PersonalAccessTokenCreateResponse:
    """Create a personal access token for the CLI or a cron job."""
    pat, token_value = await create_personal_access_token(
        session=session,
        user_id=user.id,
        name=body.name,
        expires_days=body.expires_days,
    )
    return PersonalAccessTokenCreateResponse(
        **_pat_response(pat).model_dump(),
        token=token_value,
    )


@router.get("/pats", response_model=list[PersonalAccessTokenResponse])
async def list_pats(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> list[PersonalAccessTokenResponse]:
    pats = await list_personal_access_tokens(session, user.id)
    return [_pat_response(pat) for pat in pats]


@router.delete("/pats/{token_id}", status_code=204)
async def revoke_pat(
    token_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> Response:
    """Revoke a personal access token."""
    if not await revoke_personal_access_token(session, user.id, token_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Token not found",
        )
    return Response(status_code=204)
