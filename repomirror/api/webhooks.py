"""Inbound GitHub webhook deliveries."""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from repomirror.api.deps import get_dispatcher, get_session_factory, get_settings
from repomirror.config import Settings
from repomirror.database import SessionFactory
from repomirror.schemas.clone import WebhookAck
from repomirror.services.dispatch_service import SyncDispatcher, dispatch_push_event
from repomirror.services.webhook_service import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _parse_payload(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook payload is not valid JSON",
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook payload must be a JSON object",
        )
    return payload


@router.post("/github", response_model=WebhookAck, status_code=202)
async def github_webhook(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
    dispatcher: Annotated[SyncDispatcher, Depends(get_dispatcher)],
    x_github_event: Annotated[str | None, Header()] = None,
    x_github_delivery: Annotated[str | None, Header()] = None,
    x_hub_signature_256: Annotated[str | None, Header()] = None,
) -> WebhookAck:
    """Acknowledge a delivery at once; push events queue background syncs."""
    if not x_github_event or not x_github_delivery:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required GitHub webhook headers",
        )

    body = await request.body()
    if settings.webhook_secret and not verify_signature(
        body, x_hub_signature_256, settings.webhook_secret
    ):
        logger.warning("Rejected webhook delivery %s: bad signature", x_github_delivery)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    payload = _parse_payload(body)
    logger.info("Received %s webhook, delivery %s", x_github_event, x_github_delivery)

    if x_github_event != "push":
        return WebhookAck(
            message=f"Event {x_github_event} ignored",
            event=x_github_event,
            delivery=x_github_delivery,
        )

    repository = payload.get("repository")
    full_name = repository.get("full_name") if isinstance(repository, dict) else None
    if not isinstance(full_name, str) or not full_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Push payload has no repository.full_name",
        )

    queued = await dispatch_push_event(session_factory, dispatcher, full_name)
    return WebhookAck(
        message="Webhook received",
        event=x_github_event,
        delivery=x_github_delivery,
        clones_queued=len(queued),
    )
