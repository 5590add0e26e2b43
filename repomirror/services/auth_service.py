"""Authentication service: passwords, JWT access tokens and personal access tokens."""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import select

from repomirror.models.user import PersonalAccessToken, User
from repomirror.services.datetime_service import format_iso, now_utc, parse_iso

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from repomirror.config import Settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
PAT_PREFIX = "rmpat_"
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"repomirror-dummy-password", bcrypt.gensalt()).decode()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def hash_token(token: str) -> str:
    """SHA-256 of a token value, used as its lookup key."""
    return hashlib.sha256(token.encode()).hexdigest()


def create_access_token(user: User, secret_key: str, expires_minutes: int = 15) -> str:
    """Create a short-lived JWT access token for ``user``."""
    claims: dict[str, Any] = {
        "sub": str(user.id),
        "username": user.username,
        "is_admin": user.is_admin,
        "type": "access",
        "exp": datetime.now(UTC) + timedelta(minutes=expires_minutes),
    }
    return str(jwt.encode(claims, secret_key, algorithm=ALGORITHM))


def decode_access_token(token: str, secret_key: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token. Returns None when invalid."""
    try:
        payload: dict[str, Any] = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError:
        logger.debug("Failed to decode access token", exc_info=True)
        return None
    if payload.get("type") != "access":
        return None
    return payload


async def authenticate_user(session: AsyncSession, username: str, password: str) -> User | None:
    """Return the user when the password matches, else None."""
    result = await session.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        # Equalize timing between unknown users and wrong passwords.
        verify_password(password, _DUMMY_PASSWORD_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


async def create_personal_access_token(
    session: AsyncSession,
    user_id: int,
    name: str,
    expires_days: int | None,
) -> tuple[PersonalAccessToken, str]:
    """Create a personal access token. The plaintext value is returned once."""
    now = now_utc()
    token_value = f"{PAT_PREFIX}{secrets.token_urlsafe(48)}"
    pat = PersonalAccessToken(
        user_id=user_id,
        name=name,
        token_hash=hash_token(token_value),
        created_at=format_iso(now),
        expires_at=format_iso(now + timedelta(days=expires_days)) if expires_days else None,
    )
    session.add(pat)
    await session.commit()
    await session.refresh(pat)
    return pat, token_value


async def list_personal_access_tokens(
    session: AsyncSession, user_id: int
) -> list[PersonalAccessToken]:
    stmt = (
        select(PersonalAccessToken)
        .where(PersonalAccessToken.user_id == user_id)
        .order_by(PersonalAccessToken.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def revoke_personal_access_token(session: AsyncSession, user_id: int, token_id: int) -> bool:
    """Revoke a token owned by the user. Returns False when no such token exists."""
    stmt = select(PersonalAccessToken).where(
        PersonalAccessToken.id == token_id,
        PersonalAccessToken.user_id == user_id,
    )
    pat = (await session.execute(stmt)).scalar_one_or_none()
    if pat is None:
        return False
    if pat.revoked_at is None:
        pat.revoked_at = format_iso(now_utc())
    await session.commit()
    return True


async def authenticate_personal_access_token(
    session: AsyncSession, token_value: str
) -> User | None:
    """Resolve a personal access token to its user, enforcing revocation and expiry."""
    stmt = select(PersonalAccessToken).where(
        PersonalAccessToken.token_hash == hash_token(token_value)
    )
    pat = (await session.execute(stmt)).scalar_one_or_none()
    if pat is None or pat.revoked_at is not None:
        return None

    if pat.expires_at is not None:
        expires = parse_iso(pat.expires_at)
        if expires is None or expires <= now_utc():
            pat.revoked_at = format_iso(now_utc())
            await session.commit()
            return None

    user = await session.get(User, pat.user_id)
    if user is None:
        return None
    pat.last_used_at = format_iso(now_utc())
    await session.commit()
    return user


async def ensure_admin_user(session: AsyncSession, settings: Settings) -> None:
    """Create the configured admin user on first start."""
    result = await session.execute(select(User).where(User.username == settings.admin_username))
    if result.scalar_one_or_none() is not None:
        return

    now = format_iso(now_utc())
    session.add(
        User(
            username=settings.admin_username,
            password_hash=hash_password(settings.admin_password),
            display_name="Admin",
            is_admin=True,
            created_at=now,
            updated_at=now,
        )
    )
    await session.commit()
    logger.info("Created admin user %r", settings.admin_username)
