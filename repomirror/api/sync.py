"""Scheduled sweep entry point and background dispatcher status."""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends

from repomirror.api.deps import (
    get_dispatcher,
    get_github_client,
    get_session_factory,
    get_settings,
    require_admin,
)
from repomirror.config import Settings
from repomirror.database import SessionFactory
from repomirror.github.base import RepositoryClient
from repomirror.models.user import User
from repomirror.schemas.clone import SweepResponse, SyncOutcomeResponse, SyncStatusResponse
from repomirror.services.dispatch_service import SyncDispatcher, run_sweep

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("/sweep", response_model=SweepResponse)
async def sweep_endpoint(
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
    client: Annotated[RepositoryClient, Depends(get_github_client)],
    dispatcher: Annotated[SyncDispatcher, Depends(get_dispatcher)],
    settings: Annotated[Settings, Depends(get_settings)],
    _admin: Annotated[User, Depends(require_admin)],
) -> SweepResponse:
    """Check every enabled relationship and queue syncs for those that lag.

    Meant to be called by an external timer such as cron.
    """
    result = await run_sweep(session_factory, client, dispatcher, settings)
    return SweepResponse(**asdict(result))


@router.get("/status", response_model=SyncStatusResponse)
async def status_endpoint(
    dispatcher: Annotated[SyncDispatcher, Depends(get_dispatcher)],
    _admin: Annotated[User, Depends(require_admin)],
) -> SyncStatusResponse:
    recent = [SyncOutcomeResponse(**asdict(outcome)) for outcome in reversed(dispatcher.recent)]
    return SyncStatusResponse(pending=dispatcher.pending, recent=recent)
