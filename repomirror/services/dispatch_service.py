"""Sync triggers: push events, scheduled sweeps and manual requests.

All three follow one pattern per relationship: re-read the record, require
sync to be enabled and a credential to be stored, check drift, reconcile if
needed, then persist the last-synced timestamp. They differ in how
relationships are resolved and in whether the caller waits:

- push events and sweeps hand reconciliation to ``SyncDispatcher`` and
  return at once;
- manual requests run inline and report counts or raise.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from repomirror.exceptions import CloneNotFoundError, MissingCredentialError, SyncDisabledError
from repomirror.github.base import GitHubAPIError
from repomirror.models.clone import SyncRun
from repomirror.services.clone_service import (
    CloneSnapshot,
    find_by_mirror,
    find_by_source,
    get_clone,
    list_clones,
    load_credential,
    record_sync_run,
    set_last_synced,
)
from repomirror.services.datetime_service import format_iso, now_utc
from repomirror.services.drift_service import needs_sync
from repomirror.services.reconcile_service import reconcile

if TYPE_CHECKING:
    from datetime import datetime

    from repomirror.config import Settings
    from repomirror.database import SessionFactory
    from repomirror.github.base import RepositoryClient

logger = logging.getLogger(__name__)

TRIGGER_WEBHOOK = "webhook"
TRIGGER_SCHEDULED = "scheduled"
TRIGGER_MANUAL = "manual"

STATUS_SYNCED = "synced"
STATUS_UP_TO_DATE = "up_to_date"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass
class SyncOutcome:
    """Result of one sync attempt for one relationship."""

    clone_id: int
    trigger: str
    status: str
    source_head: str | None = None
    files_created: int = 0
    files_updated: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    error: str | None = None
    finished_at: str = field(default_factory=lambda: format_iso(now_utc()))


@dataclass
class SweepResult:
    """Counters of one scheduled sweep. Each relationship lands in exactly one."""

    checked: int = 0
    sync_triggered: int = 0
    up_to_date: int = 0
    errors: int = 0


@dataclass
class ManualSyncResult:
    """Aggregate of a manual sync over one or more relationships."""

    relationships_attempted: int = 0
    relationships_failed: int = 0
    files_created: int = 0
    files_updated: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    outcomes: list[SyncOutcome] = field(default_factory=list)

    def add(self, outcome: SyncOutcome) -> None:
        self.outcomes.append(outcome)
        self.files_created += outcome.files_created
        self.files_updated += outcome.files_updated
        self.files_skipped += outcome.files_skipped
        self.files_failed += outcome.files_failed


async def _record_run(
    session_factory: SessionFactory,
    outcome: SyncOutcome,
    started_at: datetime,
) -> None:
    """Append the outcome to the sync history. History is best-effort."""
    run = SyncRun(
        clone_id=outcome.clone_id,
        trigger=outcome.trigger,
        status=outcome.status,
        source_head=outcome.source_head,
        files_created=outcome.files_created,
        files_updated=outcome.files_updated,
        files_skipped=outcome.files_skipped,
        files_failed=outcome.files_failed,
        error=outcome.error,
        started_at=format_iso(started_at),
        finished_at=outcome.finished_at,
    )
    try:
        async with session_factory() as session:
            await record_sync_run(session, run)
    except SQLAlchemyError as exc:
        logger.error("Failed to record sync run for clone %d: %s", outcome.clone_id, exc)


async def _load_snapshot(session_factory: SessionFactory, clone_id: int) -> CloneSnapshot:
    async with session_factory() as session:
        clone = await get_clone(session, clone_id)
        if clone is None:
            msg = f"Clone relationship {clone_id} not found"
            raise CloneNotFoundError(msg)
        return CloneSnapshot.from_model(clone)


async def sync_clone(
    session_factory: SessionFactory,
    client: RepositoryClient,
    settings: Settings,
    clone_id: int,
    trigger: str,
    source_head: str | None = None,
) -> SyncOutcome:
    """Run one sync attempt for one relationship.

    When ``source_head`` is given the caller has already found drift and the
    drift check is not repeated. The record is always re-read first, so a
    relationship disabled after it was resolved is not synced.

    Raises CloneNotFoundError, SyncDisabledError, MissingCredentialError, or
    GitHubAPIError when commits or the tree cannot be read. Per-file
    failures never raise; they are counted in the outcome.
    """
    started_at = now_utc()
    clone = await _load_snapshot(session_factory, clone_id)
    if not clone.sync_enabled:
        msg = f"Sync is disabled for clone {clone_id}"
        raise SyncDisabledError(msg)

    logger.info(
        "Starting sync for clone %d %s -> %s (triggered by: %s)",
        clone_id,
        clone.source_full_name,
        clone.mirror_full_name,
        trigger,
    )
    try:
        token = load_credential(clone, settings.secret_key)
        if source_head is None:
            drift = await needs_sync(client, token, clone)
            if not drift.required or drift.source_head is None:
                logger.info("No updates needed for %s", clone.mirror_full_name)
                outcome = SyncOutcome(
                    clone_id=clone_id,
                    trigger=trigger,
                    status=STATUS_UP_TO_DATE,
                    source_head=drift.source_head,
                )
                await _record_run(session_factory, outcome, started_at)
                return outcome
            source_head = drift.source_head
        result = await reconcile(
            client, token, clone, source_head, settings.sync_file_delay_seconds
        )
    except (MissingCredentialError, GitHubAPIError) as exc:
        outcome = SyncOutcome(
            clone_id=clone_id,
            trigger=trigger,
            status=STATUS_FAILED,
            source_head=source_head,
            error=str(exc),
        )
        await _record_run(session_factory, outcome, started_at)
        raise

    synced_at = now_utc()
    try:
        async with session_factory() as session:
            await set_last_synced(session, clone_id, synced_at)
    except SQLAlchemyError as exc:
        # The files are on the mirror already; only the timestamp is lost.
        logger.error("Failed to update sync timestamp for clone %d: %s", clone_id, exc)

    outcome = SyncOutcome(
        clone_id=clone_id,
        trigger=trigger,
        status=STATUS_SYNCED,
        source_head=source_head,
        files_created=result.files_created,
        files_updated=result.files_updated,
        files_skipped=result.files_skipped,
        files_failed=result.files_failed,
        error="; ".join(result.failures[:20]) or None,
        finished_at=format_iso(synced_at),
    )
    await _record_run(session_factory, outcome, started_at)
    logger.info(
        "Sync completed for clone %d: %d files created, %d files updated",
        clone_id,
        outcome.files_created,
        outcome.files_updated,
    )
    return outcome


class SyncDispatcher:
    """Bounded pool for fire-and-forget sync attempts.

    ``submit`` schedules an attempt as an asyncio task and returns at once.
    At most ``max_concurrent_syncs`` attempts run at a time; the rest wait
    for a slot. Every finished attempt is logged and appended to
    ``recent``, so background failures stay inspectable. Attempts cannot be
    cancelled; ``drain`` waits for all of them.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        client: RepositoryClient,
        settings: Settings,
        history_size: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._settings = settings
        self._slots = asyncio.Semaphore(settings.max_concurrent_syncs)
        self._tasks: set[asyncio.Task[SyncOutcome]] = set()
        self.recent: deque[SyncOutcome] = deque(maxlen=history_size)

    @property
    def pending(self) -> int:
        """Number of submitted attempts that have not finished."""
        return len(self._tasks)

    def submit(
        self,
        clone_id: int,
        trigger: str,
        source_head: str | None = None,
    ) -> asyncio.Task[SyncOutcome]:
        task = asyncio.create_task(
            self._run(clone_id, trigger, source_head),
            name=f"sync-clone-{clone_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Queued %s sync for clone %d", trigger, clone_id)
        return task

    async def _run(self, clone_id: int, trigger: str, source_head: str | None) -> SyncOutcome:
        async with self._slots:
            try:
                outcome = await sync_clone(
                    self._session_factory,
                    self._client,
                    self._settings,
                    clone_id,
                    trigger,
                    source_head=source_head,
                )
            except (CloneNotFoundError, SyncDisabledError) as exc:
                logger.info("Skipped %s sync for clone %d: %s", trigger, clone_id, exc)
                outcome = SyncOutcome(clone_id, trigger, STATUS_SKIPPED, error=str(exc))
            except (MissingCredentialError, GitHubAPIError) as exc:
                logger.error("Failed %s sync for clone %d: %s", trigger, clone_id, exc)
                outcome = SyncOutcome(clone_id, trigger, STATUS_FAILED, error=str(exc))
            except Exception as exc:
                logger.exception("Unexpected error in %s sync for clone %d", trigger, clone_id)
                outcome = SyncOutcome(clone_id, trigger, STATUS_FAILED, error=str(exc))
        self.recent.append(outcome)
        return outcome

    async def drain(self) -> None:
        """Wait until every submitted attempt has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def dispatch_push_event(
    session_factory: SessionFactory,
    dispatcher: SyncDispatcher,
    source_full_name: str,
) -> list[int]:
    """Queue a sync for every enabled mirror of ``source_full_name``.

    Returns the ids queued. Does not wait for any of them.
    """
    async with session_factory() as session:
        clones = await find_by_source(session, source_full_name, enabled_only=True)
        clone_ids = [clone.id for clone in clones]

    logger.info("Push event for %s: %d clone(s) to sync", source_full_name, len(clone_ids))
    for clone_id in clone_ids:
        dispatcher.submit(clone_id, TRIGGER_WEBHOOK)
    return clone_ids


async def run_sweep(
    session_factory: SessionFactory,
    client: RepositoryClient,
    dispatcher: SyncDispatcher,
    settings: Settings,
) -> SweepResult:
    """Check every enabled relationship for drift and queue the ones that lag.

    Drift is checked inline; reconciliation is handed to the dispatcher with
    the source head already known.
    """
    async with session_factory() as session:
        records = await list_clones(session, enabled_only=True)
        clones = [CloneSnapshot.from_model(c) for c in records]

    result = SweepResult(checked=len(clones))
    logger.info("Starting scheduled check of %d clone relationship(s)", len(clones))

    for index, clone in enumerate(clones):
        try:
            token = load_credential(clone, settings.secret_key)
            drift = await needs_sync(client, token, clone)
        except MissingCredentialError as exc:
            logger.warning("Skipping clone %d: %s", clone.id, exc)
            result.errors += 1
        except GitHubAPIError as exc:
            logger.warning("Drift check failed for clone %d: %s", clone.id, exc)
            result.errors += 1
        except Exception:
            logger.exception("Error checking clone %d", clone.id)
            result.errors += 1
        else:
            if drift.required:
                logger.info("Updates detected for %s - triggering sync", clone.mirror_full_name)
                dispatcher.submit(clone.id, TRIGGER_SCHEDULED, source_head=drift.source_head)
                result.sync_triggered += 1
            else:
                result.up_to_date += 1

        if settings.sweep_check_delay_seconds and index < len(clones) - 1:
            await asyncio.sleep(settings.sweep_check_delay_seconds)

    logger.info(
        "Scheduled check completed: %d syncs triggered, %d up-to-date, %d errors",
        result.sync_triggered,
        result.up_to_date,
        result.errors,
    )
    return result


async def run_periodic_sweeps(
    session_factory: SessionFactory,
    client: RepositoryClient,
    dispatcher: SyncDispatcher,
    settings: Settings,
) -> None:
    """Run ``run_sweep`` every ``sweep_interval_seconds`` until cancelled."""
    interval = settings.sweep_interval_seconds
    logger.info("Periodic sweep enabled every %d seconds", interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await run_sweep(session_factory, client, dispatcher, settings)
        except SQLAlchemyError as exc:
            logger.error("Periodic sweep could not read clone relationships: %s", exc)
        except Exception:
            logger.exception("Periodic sweep failed; retrying in %d seconds", interval)


async def sync_clone_now(
    session_factory: SessionFactory,
    client: RepositoryClient,
    settings: Settings,
    clone_id: int,
) -> ManualSyncResult:
    """Manual sync of one relationship. Errors propagate to the caller."""
    outcome = await sync_clone(session_factory, client, settings, clone_id, TRIGGER_MANUAL)
    result = ManualSyncResult(relationships_attempted=1)
    result.add(outcome)
    return result


async def sync_repository_now(
    session_factory: SessionFactory,
    client: RepositoryClient,
    settings: Settings,
    repo_full_name: str,
    user_id: int | None = None,
) -> ManualSyncResult:
    """Manual sync addressed by repository name.

    If ``repo_full_name`` is a mirror, its relationship is synced and errors
    propagate, including SyncDisabledError when that mirror is disabled.
    Otherwise it is treated as a source and every enabled mirror of it is
    synced in turn; a failing mirror is logged and counted in
    ``relationships_failed`` while the others still run. ``user_id``
    restricts resolution to relationships that user owns.
    """
    async with session_factory() as session:
        as_mirror = await find_by_mirror(
            session, repo_full_name, enabled_only=False, user_id=user_id
        )
        if as_mirror:
            clone_ids = [as_mirror[0].id]
        else:
            as_source = await find_by_source(
                session, repo_full_name, enabled_only=True, user_id=user_id
            )
            clone_ids = [clone.id for clone in as_source]

    if as_mirror:
        return await sync_clone_now(session_factory, client, settings, clone_ids[0])

    result = ManualSyncResult()
    for clone_id in clone_ids:
        result.relationships_attempted += 1
        try:
            outcome = await sync_clone(
                session_factory, client, settings, clone_id, TRIGGER_MANUAL
            )
        except (
            CloneNotFoundError,
            SyncDisabledError,
            MissingCredentialError,
            GitHubAPIError,
        ) as exc:
            logger.error("Failed to sync clone %d of %s: %s", clone_id, repo_full_name, exc)
            result.relationships_failed += 1
            continue
        result.add(outcome)

    logger.info(
        "Manual sync of %s: %d clone(s), %d files created, %d files updated",
        repo_full_name,
        result.relationships_attempted,
        result.files_created,
        result.files_updated,
    )
    return result
