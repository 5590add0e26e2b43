"""Clone relationship API endpoints: mirror creation, listing, toggling and manual sync."""

from __future__ import annotations

import logging
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from repomirror.api.deps import (
    get_github_client,
    get_session,
    get_session_factory,
    get_settings,
    require_auth,
)
from repomirror.config import Settings
from repomirror.database import SessionFactory
from repomirror.exceptions import CloneNotFoundError, MissingCredentialError, SyncDisabledError
from repomirror.github.base import GitHubAPIError, GitHubAuthError, RepositoryClient
from repomirror.models.clone import RepositoryClone
from repomirror.models.user import User
from repomirror.schemas.clone import (
    CloneCreateRequest,
    CloneCreateResponse,
    CloneResponse,
    CloneUpdateRequest,
    ManualSyncResponse,
    RepositorySyncRequest,
    SyncRunResponse,
)
from repomirror.services.bootstrap_service import create_mirror
from repomirror.services.clone_service import (
    get_user_clone,
    list_sync_runs,
    list_user_clones,
    set_sync_enabled,
)
from repomirror.services.dispatch_service import (
    ManualSyncResult,
    sync_clone_now,
    sync_repository_now,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clones", tags=["clones"])


def _clone_response(clone: RepositoryClone) -> CloneResponse:
    return CloneResponse(
        id=clone.id,
        source_full_name=clone.source_full_name,
        mirror_full_name=clone.mirror_full_name,
        source_url=clone.source_url,
        mirror_url=clone.mirror_url,
        webhook_enabled=clone.webhook_id is not None,
        sync_enabled=clone.sync_enabled,
        has_credential=bool(clone.encrypted_credential),
        last_synced_at=clone.last_synced_at,
        created_at=clone.created_at,
        updated_at=clone.updated_at,
    )


def _manual_response(result: ManualSyncResult) -> ManualSyncResponse:
    return ManualSyncResponse(
        relationships_attempted=result.relationships_attempted,
        relationships_failed=result.relationships_failed,
        files_created=result.files_created,
        files_updated=result.files_updated,
        files_skipped=result.files_skipped,
        files_failed=result.files_failed,
    )


def _raise_for_sync_error(exc: Exception) -> NoReturn:
    """Translate a sync failure into the matching HTTP error."""
    if isinstance(exc, CloneNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, SyncDisabledError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, MissingCredentialError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    if isinstance(exc, GitHubAuthError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="GitHub rejected the stored credential",
        ) from exc
    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"GitHub request failed: {exc}",
    ) from exc


async def _owned_clone(session: AsyncSession, clone_id: int, user: User) -> RepositoryClone:
    clone = await get_user_clone(session, clone_id, user.id)
    if clone is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Clone relationship not found",
        )
    return clone


@router.post("", response_model=CloneCreateResponse, status_code=201)
async def create_clone_endpoint(
    body: CloneCreateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    client: Annotated[RepositoryClient, Depends(get_github_client)],
    settings: Annotated[Settings, Depends(get_settings)],
    user: Annotated[User, Depends(require_auth)],
) -> CloneCreateResponse:
    """Create ``<name>-clone`` from a source repository and start mirroring it."""
    try:
        result = await create_mirror(
            session, client, settings, user.id, body.source_full_name, body.github_token
        )
    except GitHubAuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="GitHub rejected the supplied token",
        ) from exc
    except GitHubAPIError as exc:
        if exc.status_code == 404:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Source repository not found",
            ) from exc
        if exc.status_code == 422:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Mirror repository could not be created: {exc}",
            ) from exc
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"GitHub request failed: {exc}",
        ) from exc

    return CloneCreateResponse(
        clone_id=result.clone_id,
        mirror_full_name=result.mirror.full_name,
        mirror_url=result.mirror.html_url,
        webhook_enabled=result.webhook_enabled,
        webhook_id=result.webhook_id,
        files_copied=result.files_copied,
        readme_written=result.readme_written,
    )


@router.get("", response_model=list[CloneResponse])
async def list_clones_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> list[CloneResponse]:
    """List the caller's clone relationships, newest first."""
    return [_clone_response(clone) for clone in await list_user_clones(session, user.id)]


@router.post("/sync-repository", response_model=ManualSyncResponse)
async def sync_repository_endpoint(
    body: RepositorySyncRequest,
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
    client: Annotated[RepositoryClient, Depends(get_github_client)],
    settings: Annotated[Settings, Depends(get_settings)],
    user: Annotated[User, Depends(require_auth)],
) -> ManualSyncResponse:
    """Sync by repository name: a mirror syncs itself, a source syncs all its mirrors."""
    try:
        result = await sync_repository_now(
            session_factory, client, settings, body.repo_full_name, user_id=user.id
        )
    except (CloneNotFoundError, SyncDisabledError, MissingCredentialError, GitHubAPIError) as exc:
        _raise_for_sync_error(exc)
    return _manual_response(result)


@router.get("/{clone_id}", response_model=CloneResponse)
async def get_clone_endpoint(
    clone_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> CloneResponse:
    return _clone_response(await _owned_clone(session, clone_id, user))


@router.patch("/{clone_id}", response_model=CloneResponse)
async def update_clone_endpoint(
    clone_id: int,
    body: CloneUpdateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> CloneResponse:
    """Enable or disable syncing. Names are immutable."""
    clone = await _owned_clone(session, clone_id, user)
    clone = await set_sync_enabled(session, clone, body.sync_enabled)
    return _clone_response(clone)


@router.post("/{clone_id}/sync", response_model=ManualSyncResponse)
async def sync_clone_endpoint(
    clone_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
    client: Annotated[RepositoryClient, Depends(get_github_client)],
    settings: Annotated[Settings, Depends(get_settings)],
    user: Annotated[User, Depends(require_auth)],
) -> ManualSyncResponse:
    """Sync one relationship now and report its file counts."""
    await _owned_clone(session, clone_id, user)
    # The attempt re-reads the record in its own session.
    await session.close()
    try:
        result = await sync_clone_now(session_factory, client, settings, clone_id)
    except (CloneNotFoundError, SyncDisabledError, MissingCredentialError, GitHubAPIError) as exc:
        _raise_for_sync_error(exc)
    return _manual_response(result)


@router.get("/{clone_id}/runs", response_model=list[SyncRunResponse])
async def list_runs_endpoint(
    clone_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[SyncRunResponse]:
    """Recent sync attempts of a relationship, newest first."""
    await _owned_clone(session, clone_id, user)
    runs = await list_sync_runs(session, clone_id, limit=limit)
    return [
        SyncRunResponse(
            id=run.id,
            trigger=run.trigger,
            status=run.status,
            source_head=run.source_head,
            files_created=run.files_created,
            files_updated=run.files_updated,
            files_skipped=run.files_skipped,
            files_failed=run.files_failed,
            error=run.error,
            started_at=run.started_at,
            finished_at=run.finished_at,
        )
        for run in runs
    ]
