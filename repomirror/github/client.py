"""GitHub REST API client used by the sync engine."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from repomirror.github.base import (
    ContentEntry,
    GitHubAPIError,
    GitHubAuthError,
    RemoteFile,
    RepoMetadata,
    RepoTree,
    TreeEntry,
    Webhook,
    WebhookExistsError,
    WriteResult,
    WriteStatus,
)

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
_HOOK_EXISTS_MARKER = "Hook already exists"


def _headers(token: str) -> dict[str, str]:
    return {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": API_VERSION,
    }


def _quote_path(path: str) -> str:
    return quote(path.lstrip("/"), safe="/")


def _error_message(resp: httpx.Response) -> str:
    """Extract GitHub's error message, falling back to the reason phrase."""
    try:
        data = resp.json()
    except ValueError:
        return resp.reason_phrase or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def _is_rate_limited(resp: httpx.Response) -> bool:
    """GitHub answers primary and secondary rate limits with 403 (or 429)."""
    if resp.status_code == 429:
        return True
    if resp.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in resp.headers:
        return True
    return "rate limit" in _error_message(resp).lower()


def _is_auth_failure(resp: httpx.Response) -> bool:
    """401, or a 403 that is not a rate limit: the token was rejected."""
    if resp.status_code == 401:
        return True
    return resp.status_code == 403 and not _is_rate_limited(resp)


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    if resp.is_success:
        return
    msg = f"{action} failed: HTTP {resp.status_code}: {_error_message(resp)}"
    if _is_auth_failure(resp):
        raise GitHubAuthError(msg, resp.status_code)
    raise GitHubAPIError(msg, resp.status_code)


def _strip_base64(content: str) -> str:
    """The contents API wraps base64 payloads at 60 columns."""
    return "".join(content.split())


def _repo_from_json(data: dict[str, Any]) -> RepoMetadata:
    return RepoMetadata(
        name=data["name"],
        full_name=data["full_name"],
        html_url=data["html_url"],
        description=data.get("description"),
        language=data.get("language"),
        stargazers_count=int(data.get("stargazers_count") or 0),
        forks_count=int(data.get("forks_count") or 0),
        default_branch=data.get("default_branch") or "main",
    )


class GitHubClient:
    """Thin async wrapper over the endpoints the mirror engine uses.

    One instance is shared by the whole application. It keeps a pooled
    ``httpx.AsyncClient`` but no credentials: every method takes the token.

    Args:
        base_url: API root, ``https://api.github.com`` unless using GHES.
        timeout: Per-request timeout in seconds.
        transport: Optional custom transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            return await self._http.request(
                method, url, headers=_headers(token), params=params, json=json
            )
        except httpx.HTTPError as exc:
            msg = f"{method} {url} failed: {exc.__class__.__name__}: {exc}"
            raise GitHubAPIError(msg) from exc

    async def latest_commit(self, token: str, repo: str) -> str | None:
        """Return the newest commit sha on the default branch, None for an empty repository."""
        resp = await self._request("GET", f"/repos/{repo}/commits", token, params={"per_page": 1})
        # GitHub answers 409 "Git Repository is empty" for repositories without commits.
        if resp.status_code == 409:
            return None
        _raise_for_status(resp, f"List commits of {repo}")
        commits = resp.json()
        if not commits:
            return None
        return str(commits[0]["sha"])

    async def get_tree(self, token: str, repo: str, commit_sha: str) -> RepoTree:
        """Return the recursive tree of ``commit_sha``."""
        resp = await self._request(
            "GET",
            f"/repos/{repo}/git/trees/{commit_sha}",
            token,
            params={"recursive": "1"},
        )
        _raise_for_status(resp, f"Fetch tree {commit_sha} of {repo}")
        data = resp.json()
        entries = [
            TreeEntry(path=item["path"], type=item["type"], sha=item["sha"])
            for item in data.get("tree", [])
        ]
        return RepoTree(
            sha=str(data.get("sha", commit_sha)),
            entries=entries,
            truncated=bool(data.get("truncated", False)),
        )

    async def read_file(
        self, token: str, repo: str, path: str, ref: str | None = None
    ) -> RemoteFile | None:
        """Read a file through the contents API.

        Files over the contents API's inline size limit come back with
        ``encoding == "none"``; those are fetched through the blob endpoint.
        """
        params = {"ref": ref} if ref else None
        resp = await self._request(
            "GET", f"/repos/{repo}/contents/{_quote_path(path)}", token, params=params
        )
        if resp.status_code == 404:
            return None
        _raise_for_status(resp, f"Read {path} from {repo}")
        data = resp.json()
        if isinstance(data, list) or data.get("type") != "file":
            msg = f"Read {path} from {repo} failed: not a file"
            raise GitHubAPIError(msg, resp.status_code)

        sha = str(data["sha"])
        if data.get("encoding") == "base64" and data.get("content") is not None:
            content = _strip_base64(data["content"])
        else:
            content = await self._read_blob(token, repo, sha)
        return RemoteFile(path=path, sha=sha, content=content)

    async def _read_blob(self, token: str, repo: str, sha: str) -> str:
        resp = await self._request("GET", f"/repos/{repo}/git/blobs/{sha}", token)
        _raise_for_status(resp, f"Read blob {sha} from {repo}")
        data = resp.json()
        if data.get("encoding") != "base64":
            encoding = data.get("encoding")
            msg = f"Read blob {sha} from {repo} failed: unexpected encoding {encoding!r}"
            raise GitHubAPIError(msg, resp.status_code)
        return _strip_base64(data["content"])

    async def write_file(
        self,
        token: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        sha: str | None = None,
    ) -> WriteResult:
        """Create or replace a file.

        A stale or missing ``sha`` is reported as ``WriteStatus.CONFLICT``
        and other failures as ``WriteStatus.ERROR``. Raises GitHubAuthError
        when the token is rejected, since no further write can succeed.
        """
        body: dict[str, Any] = {"message": message, "content": content}
        if sha:
            body["sha"] = sha
        try:
            resp = await self._request(
                "PUT", f"/repos/{repo}/contents/{_quote_path(path)}", token, json=body
            )
        except GitHubAPIError as exc:
            return WriteResult(status=WriteStatus.ERROR, error=str(exc))

        if resp.is_success:
            new_sha = resp.json().get("content", {}).get("sha")
            return WriteResult(status=WriteStatus.OK, sha=new_sha)

        error = f"HTTP {resp.status_code}: {_error_message(resp)}"
        if _is_auth_failure(resp):
            raise GitHubAuthError(f"Write {path} to {repo} failed: {error}", resp.status_code)
        # 409: sha does not match the current blob. 422: file exists but no sha was supplied.
        if resp.status_code == 409 or (resp.status_code == 422 and "sha" in error):
            return WriteResult(status=WriteStatus.CONFLICT, error=error)
        return WriteResult(status=WriteStatus.ERROR, error=error)

    async def list_directory(self, token: str, repo: str, path: str = "") -> list[ContentEntry]:
        url = f"/repos/{repo}/contents/{_quote_path(path)}" if path else f"/repos/{repo}/contents"
        resp = await self._request("GET", url, token)
        _raise_for_status(resp, f"List {path or '/'} of {repo}")
        data = resp.json()
        if not isinstance(data, list):
            msg = f"List {path or '/'} of {repo} failed: not a directory"
            raise GitHubAPIError(msg, resp.status_code)
        return [
            ContentEntry(name=item["name"], path=item["path"], type=item["type"], sha=item["sha"])
            for item in data
        ]

    async def get_repository(self, token: str, repo: str) -> RepoMetadata:
        resp = await self._request("GET", f"/repos/{repo}", token)
        _raise_for_status(resp, f"Fetch repository {repo}")
        return _repo_from_json(resp.json())

    async def create_repository(
        self, token: str, name: str, description: str, private: bool = False
    ) -> RepoMetadata:
        resp = await self._request(
            "POST",
            "/user/repos",
            token,
            json={
                "name": name,
                "description": description,
                "private": private,
                "auto_init": True,
            },
        )
        _raise_for_status(resp, f"Create repository {name}")
        return _repo_from_json(resp.json())

    async def list_webhooks(self, token: str, repo: str) -> list[Webhook]:
        resp = await self._request("GET", f"/repos/{repo}/hooks", token)
        _raise_for_status(resp, f"List webhooks of {repo}")
        return [
            Webhook(
                id=str(hook["id"]),
                url=(hook.get("config") or {}).get("url"),
                events=list(hook.get("events", [])),
                active=bool(hook.get("active", True)),
            )
            for hook in resp.json()
        ]

    async def create_webhook(
        self,
        token: str,
        repo: str,
        callback_url: str,
        events: list[str],
        secret: str | None = None,
    ) -> str:
        config: dict[str, str] = {
            "url": callback_url,
            "content_type": "json",
            "insecure_ssl": "0",
        }
        if secret:
            config["secret"] = secret
        resp = await self._request(
            "POST",
            f"/repos/{repo}/hooks",
            token,
            json={"name": "web", "active": True, "events": events, "config": config},
        )
        if resp.status_code == 422:
            try:
                errors = resp.json().get("errors") or []
            except ValueError:
                errors = []
            messages = [
                str(err.get("message", "")) if isinstance(err, dict) else str(err)
                for err in errors
            ]
            if any(_HOOK_EXISTS_MARKER in message for message in messages):
                msg = f"Webhook for {callback_url} already exists on {repo}"
                raise WebhookExistsError(msg, resp.status_code)
        _raise_for_status(resp, f"Create webhook on {repo}")
        return str(resp.json()["id"])
