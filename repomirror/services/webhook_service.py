"""Webhook registration on source repositories and inbound delivery verification."""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import TYPE_CHECKING

from repomirror.github.base import GitHubAPIError, WebhookExistsError

if TYPE_CHECKING:
    from repomirror.github.base import RepositoryClient

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = ["push", "pull_request"]
SIGNATURE_PREFIX = "sha256="


async def ensure_webhook(
    client: RepositoryClient,
    token: str,
    repo: str,
    callback_url: str,
    secret: str | None = None,
) -> str:
    """Register the push webhook on ``repo`` and return its id.

    Idempotent: when GitHub reports the hook already exists, the existing
    hook with the same callback URL is looked up and its id returned.
    Raises GitHubAPIError when no hook can be created or found.
    """
    try:
        hook_id = await client.create_webhook(token, repo, callback_url, WEBHOOK_EVENTS, secret)
    except WebhookExistsError:
        logger.info("Webhook already exists on %s, looking it up", repo)
        for hook in await client.list_webhooks(token, repo):
            if hook.url == callback_url:
                return hook.id
        msg = f"GitHub reports an existing webhook on {repo} but none targets {callback_url}"
        raise GitHubAPIError(msg, 422) from None
    logger.info("Webhook %s created on %s", hook_id, repo)
    return hook_id


def sign_payload(body: bytes, secret: str) -> str:
    """Compute the ``X-Hub-Signature-256`` header value for ``body``."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check an inbound delivery signature in constant time."""
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature)
