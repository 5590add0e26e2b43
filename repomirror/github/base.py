"""Protocol, data classes and errors for the remote repository client."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


class GitHubAPIError(Exception):
    """A GitHub API call failed at the request level.

    ``status_code`` is ``None`` for transport failures (DNS, timeouts, resets).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubAPIError):
    """GitHub rejected the credential (401 or 403)."""


class WebhookExistsError(GitHubAPIError):
    """GitHub refused to create a hook because an identical one already exists."""


class WriteStatus(enum.Enum):
    OK = "ok"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass(frozen=True)
class TreeEntry:
    """Single entry of a recursive git tree listing."""

    path: str
    type: str  # "blob", "tree" or "commit" (submodule)
    sha: str

    @property
    def is_file(self) -> bool:
        return self.type == "blob"


@dataclass(frozen=True)
class RepoTree:
    """Recursive tree of a commit."""

    sha: str
    entries: list[TreeEntry] = field(default_factory=list)
    truncated: bool = False


@dataclass(frozen=True)
class RemoteFile:
    """File content as served by the contents API.

    ``content`` is base64-encoded, which is also the form the write endpoint
    expects. ``sha`` is the content-addressing token (git blob sha).
    """

    path: str
    sha: str
    content: str


@dataclass(frozen=True)
class ContentEntry:
    """Entry of a (non-recursive) directory listing."""

    name: str
    path: str
    type: str  # "file", "dir", "symlink" or "submodule"
    sha: str


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a create-or-replace file write."""

    status: WriteStatus
    sha: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is WriteStatus.OK


@dataclass(frozen=True)
class RepoMetadata:
    """Repository metadata used by the bootstrapper and the README."""

    name: str
    full_name: str
    html_url: str
    description: str | None = None
    language: str | None = None
    stargazers_count: int = 0
    forks_count: int = 0
    default_branch: str = "main"


@dataclass(frozen=True)
class Webhook:
    """Webhook registered on a repository."""

    id: str
    url: str | None
    events: list[str] = field(default_factory=list)
    active: bool = True


@runtime_checkable
class RepositoryClient(Protocol):
    """Operations the sync engine needs from the hosting platform.

    Every call takes the credential explicitly; implementations hold no
    per-user session state. Read calls raise ``GitHubAPIError`` on failure.
    """

    async def latest_commit(self, token: str, repo: str) -> str | None:
        """Return the sha of the newest commit on the default ref, or None if empty."""
        ...

    async def get_tree(self, token: str, repo: str, commit_sha: str) -> RepoTree:
        """Return the full recursive tree of a commit."""
        ...

    async def read_file(
        self, token: str, repo: str, path: str, ref: str | None = None
    ) -> RemoteFile | None:
        """Return a file's content and token, or None when the path does not exist."""
        ...

    async def write_file(
        self,
        token: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        sha: str | None = None,
    ) -> WriteResult:
        """Create (``sha`` None) or replace exactly version ``sha`` of a file.

        Raises GitHubAuthError when the token is rejected; other failures are
        reported through the returned status.
        """
        ...

    async def list_directory(self, token: str, repo: str, path: str = "") -> list[ContentEntry]:
        """List one directory level of the default branch."""
        ...

    async def get_repository(self, token: str, repo: str) -> RepoMetadata:
        """Return repository metadata."""
        ...

    async def create_repository(
        self, token: str, name: str, description: str, private: bool = False
    ) -> RepoMetadata:
        """Create a repository for the authenticated user with an initial commit."""
        ...

    async def list_webhooks(self, token: str, repo: str) -> list[Webhook]:
        """List webhooks registered on a repository."""
        ...

    async def create_webhook(
        self,
        token: str,
        repo: str,
        callback_url: str,
        events: list[str],
        secret: str | None = None,
    ) -> str:
        """Register a webhook and return its id.

        Raises ``WebhookExistsError`` when GitHub reports a duplicate hook.
        """
        ...
