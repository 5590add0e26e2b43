"""Mirror bootstrap: create the mirror repository and its clone relationship.

Steps run in order and each has its own failure policy: reading the source
and creating the mirror are fatal; webhook registration, relationship
persistence, the initial copy and the README are not. Nothing is rolled
back: if persisting the relationship fails, the mirror repository and its
webhook stay behind without a registry record.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from repomirror.github.base import GitHubAPIError
from repomirror.services.clone_service import NewClone, insert_clone
from repomirror.services.datetime_service import now_utc
from repomirror.services.reconcile_service import PROTECTED_PATHS
from repomirror.services.webhook_service import ensure_webhook

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from repomirror.config import Settings
    from repomirror.github.base import RepoMetadata, RepositoryClient

logger = logging.getLogger(__name__)

MIRROR_SUFFIX = "-clone"
README_PATH = "README.md"


@dataclass
class BootstrapResult:
    """What ``create_mirror`` produced."""

    mirror: RepoMetadata
    clone_id: int | None
    webhook_enabled: bool
    webhook_id: str | None
    files_copied: int
    readme_written: bool


def mirror_name_for(source: RepoMetadata) -> str:
    return f"{source.name}{MIRROR_SUFFIX}"


def mirror_description_for(source: RepoMetadata) -> str:
    return f"Clone of {source.full_name}. {source.description or ''}".strip()


def render_readme(
    source: RepoMetadata,
    mirror_name: str,
    cloned_at: datetime,
    webhook_enabled: bool,
) -> str:
    """Provenance README placed in every new mirror."""
    auto_sync = "Enabled (via webhook)" if webhook_enabled else "Scheduled checks only"
    return f"""# {mirror_name}

This repository is a mirror of [{source.full_name}]({source.html_url}), kept in sync automatically.

## Source Repository
- **Name**: {source.name}
- **Description**: {source.description or "No description available"}
- **Language**: {source.language or "Not specified"}
- **Stars**: {source.stargazers_count}
- **Forks**: {source.forks_count}

## Mirror Information
- **Cloned on**: {cloned_at.date().isoformat()}
- **Source URL**: {source.html_url}
- **Auto-sync**: {auto_sync}

## Sync Status
Changes pushed to the default branch of the source are copied here. Syncs can
also be triggered manually. This README is maintained separately and is not
overwritten by sync.
"""


def _encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


async def _copy_top_level_files(
    client: RepositoryClient,
    token: str,
    source: RepoMetadata,
    mirror: RepoMetadata,
) -> int:
    """Copy the source's top-level files, except the README, as plain creates."""
    try:
        entries = await client.list_directory(token, source.full_name)
    except GitHubAPIError as exc:
        logger.error("Initial copy skipped: cannot list %s: %s", source.full_name, exc)
        return 0

    copied = 0
    for entry in entries:
        if entry.type != "file" or entry.name in PROTECTED_PATHS:
            continue
        try:
            remote = await client.read_file(token, source.full_name, entry.path)
        except GitHubAPIError as exc:
            logger.error("Failed to read %s from %s: %s", entry.path, source.full_name, exc)
            continue
        if remote is None:
            logger.warning("File %s vanished from %s during copy", entry.path, source.full_name)
            continue
        write = await client.write_file(
            token,
            mirror.full_name,
            entry.path,
            remote.content,
            f"Add {entry.path} from {source.full_name}",
        )
        if write.ok:
            copied += 1
            logger.info("Copied file: %s", entry.path)
        else:
            logger.error("Failed to copy file %s: %s", entry.path, write.error)
    return copied


async def _write_readme(
    client: RepositoryClient,
    token: str,
    mirror: RepoMetadata,
    content: str,
) -> bool:
    """Create or replace the mirror README.

    The mirror is created with an initial commit that already holds a README,
    so its sha is read and passed along.
    """
    try:
        existing = await client.read_file(token, mirror.full_name, README_PATH)
    except GitHubAPIError as exc:
        logger.warning("Could not read README of %s: %s", mirror.full_name, exc)
        existing = None
    write = await client.write_file(
        token,
        mirror.full_name,
        README_PATH,
        _encode(content),
        "Add README for mirrored repository",
        sha=existing.sha if existing is not None else None,
    )
    if not write.ok:
        logger.error("Failed to write README to %s: %s", mirror.full_name, write.error)
    return write.ok


async def create_mirror(
    session: AsyncSession,
    client: RepositoryClient,
    settings: Settings,
    user_id: int | None,
    source_full_name: str,
    token: str,
) -> BootstrapResult:
    """Create ``<source-name>-clone`` and register it for one-way sync.

    Raises GitHubAPIError when the source cannot be read or the mirror
    repository cannot be created (including name collisions).
    """
    logger.info("Starting mirror creation for %s", source_full_name)
    source = await client.get_repository(token, source_full_name)

    mirror_name = mirror_name_for(source)
    mirror = await client.create_repository(token, mirror_name, mirror_description_for(source))
    logger.info("Created mirror repository %s", mirror.full_name)

    webhook_id: str | None = None
    try:
        webhook_id = await ensure_webhook(
            client,
            token,
            source.full_name,
            settings.webhook_callback_url,
            secret=settings.webhook_secret or None,
        )
    except GitHubAPIError as exc:
        logger.warning(
            "Webhook registration on %s failed, mirror will rely on scheduled checks: %s",
            source.full_name,
            exc,
        )

    clone_id: int | None = None
    try:
        clone = await insert_clone(
            session,
            NewClone(
                user_id=user_id,
                source_full_name=source.full_name,
                mirror_full_name=mirror.full_name,
                source_url=source.html_url,
                mirror_url=mirror.html_url,
                credential=token,
                webhook_id=webhook_id,
            ),
            settings.secret_key,
        )
        clone_id = clone.id
        logger.info("Saved clone relationship %d", clone_id)
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "Failed to save clone relationship %s -> %s; mirror and webhook are left in place: %s",
            source.full_name,
            mirror.full_name,
            exc,
        )

    files_copied = await _copy_top_level_files(client, token, source, mirror)

    readme = render_readme(source, mirror.name, now_utc(), webhook_enabled=webhook_id is not None)
    readme_written = await _write_readme(client, token, mirror, readme)

    logger.info("Mirror creation completed: %s (%d files copied)", mirror.html_url, files_copied)
    return BootstrapResult(
        mirror=mirror,
        clone_id=clone_id,
        webhook_enabled=webhook_id is not None,
        webhook_id=webhook_id,
        files_copied=files_copied,
        readme_written=readme_written,
    )
