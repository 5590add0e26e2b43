"""Clone relationship and sync schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

REPO_FULL_NAME_PATTERN = r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$"


class CloneCreateRequest(BaseModel):
    """Request to create a mirror of a source repository."""

    source_full_name: str = Field(
        min_length=3,
        max_length=200,
        pattern=REPO_FULL_NAME_PATTERN,
        description="Source repository as 'owner/name'",
    )
    github_token: str = Field(
        min_length=1,
        max_length=500,
        description="GitHub token used for every call on behalf of this relationship",
    )


class CloneCreateResponse(BaseModel):
    """Result of mirror creation."""

    clone_id: int | None = None
    mirror_full_name: str
    mirror_url: str
    webhook_enabled: bool
    webhook_id: str | None = None
    files_copied: int
    readme_written: bool


class CloneResponse(BaseModel):
    """A clone relationship. The stored credential is never returned."""

    id: int
    source_full_name: str
    mirror_full_name: str
    source_url: str
    mirror_url: str
    webhook_enabled: bool
    sync_enabled: bool
    has_credential: bool
    last_synced_at: str | None = None
    created_at: str
    updated_at: str


class CloneUpdateRequest(BaseModel):
    """Toggle syncing of a relationship."""

    sync_enabled: bool


class RepositorySyncRequest(BaseModel):
    """Manual sync addressed by repository name, source or mirror."""

    repo_full_name: str = Field(min_length=3, max_length=200, pattern=REPO_FULL_NAME_PATTERN)


class ManualSyncResponse(BaseModel):
    """Aggregate counts of a manual sync."""

    relationships_attempted: int
    relationships_failed: int = 0
    files_created: int
    files_updated: int
    files_skipped: int
    files_failed: int


class SyncRunResponse(BaseModel):
    """One entry of a relationship's sync history."""

    id: int
    trigger: str
    status: str
    source_head: str | None = None
    files_created: int
    files_updated: int
    files_skipped: int
    files_failed: int
    error: str | None = None
    started_at: str
    finished_at: str


class SweepResponse(BaseModel):
    """Counters of one scheduled sweep."""

    checked: int
    sync_triggered: int
    up_to_date: int
    errors: int


class SyncOutcomeResponse(BaseModel):
    """A finished background sync attempt."""

    clone_id: int
    trigger: str
    status: str
    source_head: str | None = None
    files_created: int
    files_updated: int
    files_skipped: int
    files_failed: int
    error: str | None = None
    finished_at: str


class SyncStatusResponse(BaseModel):
    """State of the background dispatcher."""

    pending: int
    recent: list[SyncOutcomeResponse]


class WebhookAck(BaseModel):
    """Immediate acknowledgement of a webhook delivery."""

    message: str
    event: str
    delivery: str
    clones_queued: int = 0
