"""Drift detection: does the mirror lag behind its source?"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from repomirror.github.base import GitHubAPIError

if TYPE_CHECKING:
    from repomirror.github.base import RepositoryClient
    from repomirror.services.clone_service import CloneSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriftResult:
    """Latest-commit comparison of a source and its mirror."""

    required: bool
    source_head: str | None
    mirror_head: str | None


async def needs_sync(
    client: RepositoryClient,
    token: str,
    clone: CloneSnapshot,
) -> DriftResult:
    """Compare the newest commit of source and mirror by identifier.

    A failing source lookup propagates: drift cannot be determined without
    it. A failing mirror lookup degrades to "mirror has no commits", which
    is a valid pre-sync state and forces a sync. A source without commits
    has nothing to mirror.
    """
    source_head = await client.latest_commit(token, clone.source_full_name)
    if source_head is None:
        logger.info("Source %s has no commits; nothing to mirror", clone.source_full_name)
        return DriftResult(required=False, source_head=None, mirror_head=None)

    try:
        mirror_head = await client.latest_commit(token, clone.mirror_full_name)
    except GitHubAPIError as exc:
        logger.warning(
            "Could not read commits of mirror %s, treating as empty: %s",
            clone.mirror_full_name,
            exc,
        )
        mirror_head = None

    required = mirror_head is None or mirror_head != source_head
    logger.debug(
        "Drift check %s -> %s: source=%s mirror=%s required=%s",
        clone.source_full_name,
        clone.mirror_full_name,
        source_head,
        mirror_head,
        required,
    )
    return DriftResult(required=required, source_head=source_head, mirror_head=mirror_head)
