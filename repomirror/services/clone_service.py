"""Clone registry: persistence for clone relationships and their sync history.

The registry is the only shared mutable state of the sync engine. Sync
attempts read an immutable ``CloneSnapshot`` at the start and never keep a
session open across remote calls; the record may be disabled or changed by
another request while an attempt runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from repomirror.exceptions import MissingCredentialError
from repomirror.models.clone import RepositoryClone, SyncRun
from repomirror.services.crypto_service import decrypt_token, encrypt_token
from repomirror.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CloneSnapshot:
    """Read-only view of a clone relationship for the duration of one attempt."""

    id: int
    user_id: int | None
    source_full_name: str
    mirror_full_name: str
    sync_enabled: bool
    webhook_id: str | None
    last_synced_at: str | None
    encrypted_credential: str | None = field(default=None, repr=False)

    @classmethod
    def from_model(cls, clone: RepositoryClone) -> CloneSnapshot:
        return cls(
            id=clone.id,
            user_id=clone.user_id,
            source_full_name=clone.source_full_name,
            mirror_full_name=clone.mirror_full_name,
            sync_enabled=clone.sync_enabled,
            webhook_id=clone.webhook_id,
            last_synced_at=clone.last_synced_at,
            encrypted_credential=clone.encrypted_credential,
        )


@dataclass
class NewClone:
    """Fields needed to register a clone relationship."""

    user_id: int | None
    source_full_name: str
    mirror_full_name: str
    source_url: str
    mirror_url: str
    credential: str
    webhook_id: str | None = None


def load_credential(clone: CloneSnapshot | RepositoryClone, secret_key: str) -> str:
    """Return the decrypted platform token of a relationship.

    Raises MissingCredentialError when no token is stored or it cannot be
    decrypted. This is the only place stored tokens are decrypted.
    """
    if not clone.encrypted_credential:
        msg = f"No stored GitHub credential for clone {clone.id}"
        raise MissingCredentialError(msg)
    try:
        return decrypt_token(clone.encrypted_credential, secret_key)
    except ValueError as exc:
        msg = f"Stored GitHub credential for clone {clone.id} cannot be decrypted"
        raise MissingCredentialError(msg) from exc


async def insert_clone(session: AsyncSession, data: NewClone, secret_key: str) -> RepositoryClone:
    """Persist a new relationship: enabled and never synced."""
    now = format_iso(now_utc())
    clone = RepositoryClone(
        user_id=data.user_id,
        source_full_name=data.source_full_name,
        mirror_full_name=data.mirror_full_name,
        source_url=data.source_url,
        mirror_url=data.mirror_url,
        webhook_id=data.webhook_id,
        encrypted_credential=encrypt_token(data.credential, secret_key),
        sync_enabled=True,
        last_synced_at=None,
        created_at=now,
        updated_at=now,
    )
    session.add(clone)
    await session.commit()
    await session.refresh(clone)
    return clone


async def get_clone(session: AsyncSession, clone_id: int) -> RepositoryClone | None:
    return await session.get(RepositoryClone, clone_id)


async def get_user_clone(
    session: AsyncSession, clone_id: int, user_id: int
) -> RepositoryClone | None:
    """Return the relationship only when ``user_id`` owns it."""
    stmt = select(RepositoryClone).where(
        RepositoryClone.id == clone_id,
        RepositoryClone.user_id == user_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_by_source(
    session: AsyncSession,
    source_full_name: str,
    enabled_only: bool = True,
    user_id: int | None = None,
) -> list[RepositoryClone]:
    """All relationships mirroring ``source_full_name``.

    GitHub treats repository names case-insensitively, and so does this lookup.
    """
    stmt = select(RepositoryClone).where(
        func.lower(RepositoryClone.source_full_name) == source_full_name.lower()
    )
    if enabled_only:
        stmt = stmt.where(RepositoryClone.sync_enabled.is_(True))
    if user_id is not None:
        stmt = stmt.where(RepositoryClone.user_id == user_id)
    result = await session.execute(stmt.order_by(RepositoryClone.id))
    return list(result.scalars().all())


async def find_by_mirror(
    session: AsyncSession,
    mirror_full_name: str,
    enabled_only: bool = True,
    user_id: int | None = None,
) -> list[RepositoryClone]:
    """All relationships whose mirror is ``mirror_full_name``."""
    stmt = select(RepositoryClone).where(
        func.lower(RepositoryClone.mirror_full_name) == mirror_full_name.lower()
    )
    if enabled_only:
        stmt = stmt.where(RepositoryClone.sync_enabled.is_(True))
    if user_id is not None:
        stmt = stmt.where(RepositoryClone.user_id == user_id)
    result = await session.execute(stmt.order_by(RepositoryClone.id))
    return list(result.scalars().all())


async def list_clones(session: AsyncSession, enabled_only: bool = False) -> list[RepositoryClone]:
    stmt = select(RepositoryClone)
    if enabled_only:
        stmt = stmt.where(RepositoryClone.sync_enabled.is_(True))
    result = await session.execute(stmt.order_by(RepositoryClone.id))
    return list(result.scalars().all())


async def list_user_clones(session: AsyncSession, user_id: int) -> list[RepositoryClone]:
    stmt = (
        select(RepositoryClone)
        .where(RepositoryClone.user_id == user_id)
        .order_by(RepositoryClone.created_at.desc(), RepositoryClone.id.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def set_last_synced(session: AsyncSession, clone_id: int, when: datetime) -> bool:
    """Record a completed file walk. Last writer wins. Returns False if the clone is gone."""
    clone = await session.get(RepositoryClone, clone_id)
    if clone is None:
        return False
    stamp = format_iso(when)
    clone.last_synced_at = stamp
    clone.updated_at = stamp
    await session.commit()
    return True


async def set_sync_enabled(
    session: AsyncSession, clone: RepositoryClone, enabled: bool
) -> RepositoryClone:
    clone.sync_enabled = enabled
    clone.updated_at = format_iso(now_utc())
    await session.commit()
    await session.refresh(clone)
    logger.info(
        "Sync %s for clone %d (%s)",
        "enabled" if enabled else "disabled",
        clone.id,
        clone.mirror_full_name,
    )
    return clone


async def record_sync_run(session: AsyncSession, run: SyncRun) -> None:
    session.add(run)
    await session.commit()


async def list_sync_runs(session: AsyncSession, clone_id: int, limit: int = 50) -> list[SyncRun]:
    stmt = (
        select(SyncRun)
        .where(SyncRun.clone_id == clone_id)
        .order_by(SyncRun.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
