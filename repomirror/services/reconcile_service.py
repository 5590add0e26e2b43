"""Tree reconciliation: replay the source's file tree onto its mirror.

Files are processed one at a time with a fixed pause between them so the
outbound request rate stays below GitHub's secondary rate limits. Per-file
problems are logged and counted; only a failure to list the source tree
aborts the attempt.

Concurrent attempts for the same relationship are not serialized. Every
replace carries the mirror's current blob sha, so a writer holding a stale
sha is rejected by GitHub and shows up here as a per-file conflict.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from repomirror.github.base import GitHubAPIError, GitHubAuthError, WriteStatus

if TYPE_CHECKING:
    from repomirror.github.base import RepositoryClient, TreeEntry
    from repomirror.services.clone_service import CloneSnapshot

logger = logging.getLogger(__name__)

# The mirror's README is written by the bootstrapper and never synced.
PROTECTED_PATHS = frozenset({"README.md"})


@dataclass
class ReconcileResult:
    """Per-file counters of one reconciliation pass."""

    files_created: int = 0
    files_updated: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    failures: list[str] = field(default_factory=list)

    def fail(self, path: str, reason: str) -> None:
        self.files_failed += 1
        self.failures.append(f"{path}: {reason}")


def select_sync_entries(entries: list[TreeEntry]) -> list[TreeEntry]:
    """Files of a tree listing that ordinary sync may write."""
    return [e for e in entries if e.is_file and e.path not in PROTECTED_PATHS]


def sync_commit_message(path: str, source_full_name: str) -> str:
    return f"Sync: Update {path} from {source_full_name}"


async def _sync_file(
    client: RepositoryClient,
    token: str,
    clone: CloneSnapshot,
    source_head: str,
    entry: TreeEntry,
    result: ReconcileResult,
) -> None:
    path = entry.path

    try:
        existing = await client.read_file(token, clone.mirror_full_name, path)
    except GitHubAuthError:
        raise
    except GitHubAPIError as exc:
        logger.warning("Could not look up %s on %s: %s", path, clone.mirror_full_name, exc)
        result.fail(path, f"lookup failed: {exc}")
        return
    prior_sha = existing.sha if existing is not None else None

    # Blob shas address content, so equal shas mean identical bytes.
    if prior_sha is not None and prior_sha == entry.sha:
        logger.debug("Unchanged: %s", path)
        result.files_skipped += 1
        return

    try:
        source_file = await client.read_file(
            token, clone.source_full_name, path, ref=source_head
        )
    except GitHubAuthError:
        raise
    except GitHubAPIError as exc:
        logger.warning("Skipping %s: cannot read from %s: %s", path, clone.source_full_name, exc)
        result.fail(path, f"read failed: {exc}")
        return
    if source_file is None:
        logger.warning("Skipping %s: not found in %s@%s", path, clone.source_full_name, source_head)
        result.fail(path, "read failed: not found")
        return

    write = await client.write_file(
        token,
        clone.mirror_full_name,
        path,
        source_file.content,
        sync_commit_message(path, clone.source_full_name),
        sha=prior_sha,
    )
    if write.status is WriteStatus.OK:
        if prior_sha is None:
            result.files_created += 1
            logger.info("Created: %s", path)
        else:
            result.files_updated += 1
            logger.info("Updated: %s", path)
    elif write.status is WriteStatus.CONFLICT:
        logger.warning(
            "Conflict writing %s to %s (another writer got there first): %s",
            path,
            clone.mirror_full_name,
            write.error,
        )
        result.fail(path, f"conflict: {write.error}")
    else:
        logger.error("Failed to sync %s to %s: %s", path, clone.mirror_full_name, write.error)
        result.fail(path, f"write failed: {write.error}")


async def reconcile(
    client: RepositoryClient,
    token: str,
    clone: CloneSnapshot,
    source_head: str,
    delay_seconds: float = 0.1,
) -> ReconcileResult:
    """Make the mirror's files match the source tree at ``source_head``.

    Raises GitHubAPIError if the tree of ``source_head`` cannot be listed,
    and GitHubAuthError as soon as any call rejects the token.
    Persisting the last-synced timestamp is left to the caller.
    """
    tree = await client.get_tree(token, clone.source_full_name, source_head)
    if tree.truncated:
        logger.warning(
            "Tree of %s@%s is truncated by GitHub; syncing the %d listed entries only",
            clone.source_full_name,
            source_head,
            len(tree.entries),
        )

    entries = select_sync_entries(tree.entries)
    logger.info(
        "Reconciling %d files %s@%s -> %s",
        len(entries),
        clone.source_full_name,
        source_head[:12],
        clone.mirror_full_name,
    )

    result = ReconcileResult()
    for index, entry in enumerate(entries):
        try:
            await _sync_file(client, token, clone, source_head, entry, result)
        except GitHubAuthError:
            logger.error(
                "Credential rejected while syncing %s; aborting after %d of %d files",
                entry.path,
                index,
                len(entries),
            )
            raise
        except GitHubAPIError as exc:
            logger.error("Error syncing file %s: %s", entry.path, exc)
            result.fail(entry.path, str(exc))
        if delay_seconds and index < len(entries) - 1:
            await asyncio.sleep(delay_seconds)

    logger.info(
        "Reconciled %s: %d created, %d updated, %d unchanged, %d failed",
        clone.mirror_full_name,
        result.files_created,
        result.files_updated,
        result.files_skipped,
        result.files_failed,
    )
    return result
