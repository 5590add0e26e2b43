"""Tests for the GitHub REST client against a mocked transport."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from repomirror.github.base import (
    GitHubAPIError,
    GitHubAuthError,
    WebhookExistsError,
    WriteStatus,
)
from repomirror.github.client import GitHubClient

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler) -> GitHubClient:
    return GitHubClient("https://api.github.test", transport=httpx.MockTransport(handler))


class TestReads:
    async def test_latest_commit_sends_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"sha": "abc"}])

        client = _client(handler)
        assert await client.latest_commit("tok", "octo/widgets") == "abc"
        await client.aclose()

        assert seen[0].url.path == "/repos/octo/widgets/commits"
        assert seen[0].headers["Authorization"] == "Bearer tok"

    async def test_empty_repository_has_no_commit(self) -> None:
        client = _client(
            lambda request: httpx.Response(409, json={"message": "Git Repository is empty."})
        )
        assert await client.latest_commit("tok", "octo/empty") is None

    async def test_unauthorized_raises_auth_error(self) -> None:
        client = _client(lambda request: httpx.Response(401, json={"message": "Bad credentials"}))
        with pytest.raises(GitHubAuthError, match="Bad credentials"):
            await client.latest_commit("tok", "octo/widgets")

    async def test_server_error_raises(self) -> None:
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(GitHubAPIError) as exc_info:
            await client.get_tree("tok", "octo/widgets", "abc")
        assert exc_info.value.status_code == 502

    @pytest.mark.parametrize(
        ("headers", "message"),
        [
            ({"x-ratelimit-remaining": "0"}, "API rate limit exceeded for user ID 1."),
            ({"retry-after": "60"}, "You have exceeded a secondary rate limit."),
            ({}, "API rate limit exceeded for 192.0.2.1."),
        ],
    )
    async def test_rate_limited_403_is_not_an_auth_error(
        self, headers: dict[str, str], message: str
    ) -> None:
        client = _client(
            lambda request: httpx.Response(403, headers=headers, json={"message": message})
        )
        with pytest.raises(GitHubAPIError) as exc_info:
            await client.latest_commit("tok", "octo/widgets")
        assert not isinstance(exc_info.value, GitHubAuthError)
        assert exc_info.value.status_code == 403

    async def test_forbidden_403_is_an_auth_error(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "4999"},
                json={"message": "Resource not accessible by personal access token"},
            )
        )
        with pytest.raises(GitHubAuthError):
            await client.read_file("tok", "octo/widgets", "a.txt")

    async def test_tree_entries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["recursive"] == "1"
            return httpx.Response(
                200,
                json={
                    "sha": "abc",
                    "truncated": False,
                    "tree": [
                        {"path": "README.md", "type": "blob", "sha": "s1"},
                        {"path": "docs", "type": "tree", "sha": "s2"},
                    ],
                },
            )

        tree = await _client(handler).get_tree("tok", "octo/widgets", "abc")
        assert [e.path for e in tree.entries if e.is_file] == ["README.md"]
        assert tree.truncated is False

    async def test_read_missing_file_returns_none(self) -> None:
        client = _client(lambda request: httpx.Response(404, json={"message": "Not Found"}))
        assert await client.read_file("tok", "octo/widgets", "nope.txt") is None

    async def test_read_strips_wrapped_base64(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                200,
                json={"type": "file", "sha": "s1", "encoding": "base64", "content": "aGVs\nbG8=\n"},
            )
        )
        remote = await client.read_file("tok", "octo/widgets", "hello.txt")
        assert remote is not None
        assert remote.content == "aGVsbG8="
        assert remote.sha == "s1"

    async def test_large_file_falls_back_to_blob(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if "/git/blobs/" in request.url.path:
                return httpx.Response(200, json={"encoding": "base64", "content": "YmlnCg=="})
            return httpx.Response(
                200, json={"type": "file", "sha": "s9", "encoding": "none", "content": ""}
            )

        remote = await _client(handler).read_file("tok", "octo/widgets", "big.bin")
        assert remote is not None
        assert remote.content == "YmlnCg=="

    async def test_paths_are_quoted(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.raw_path.decode())
            return httpx.Response(404)

        await _client(handler).read_file("tok", "octo/widgets", "docs/my file.md")
        assert seen == ["/repos/octo/widgets/contents/docs/my%20file.md"]


class TestWrites:
    async def test_write_sends_sha(self) -> None:
        bodies: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"content": {"sha": "new"}})

        result = await _client(handler).write_file("tok", "me/m", "a.txt", "YQ==", "msg", "old")

        assert result.status is WriteStatus.OK
        assert result.sha == "new"
        assert bodies == [{"message": "msg", "content": "YQ==", "sha": "old"}]

    @pytest.mark.parametrize(
        ("status", "message"),
        [
            (409, "a.txt does not match old"),
            (422, 'Invalid request.\n\n"sha" wasn\'t supplied.'),
        ],
    )
    async def test_conflicts(self, status: int, message: str) -> None:
        client = _client(lambda request: httpx.Response(status, json={"message": message}))
        result = await client.write_file("tok", "me/m", "a.txt", "YQ==", "msg")
        assert result.status is WriteStatus.CONFLICT
        assert not result.ok

    async def test_other_failures_are_errors(self) -> None:
        client = _client(lambda request: httpx.Response(422, json={"message": "path is invalid"}))
        result = await client.write_file("tok", "me/m", "a.txt", "YQ==", "msg")
        assert result.status is WriteStatus.ERROR

    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_token_raises(self, status: int) -> None:
        client = _client(
            lambda request: httpx.Response(status, json={"message": "Bad credentials"})
        )
        with pytest.raises(GitHubAuthError) as exc_info:
            await client.write_file("tok", "me/m", "a.txt", "YQ==", "msg")
        assert exc_info.value.status_code == status

    async def test_rate_limited_write_is_an_error(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0"},
                json={"message": "API rate limit exceeded for user ID 1."},
            )
        )
        result = await client.write_file("tok", "me/m", "a.txt", "YQ==", "msg")
        assert result.status is WriteStatus.ERROR
        assert result.error is not None
        assert "rate limit" in result.error

    async def test_transport_failure_is_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        result = await _client(handler).write_file("tok", "me/m", "a.txt", "YQ==", "msg")
        assert result.status is WriteStatus.ERROR
        assert result.error is not None
        assert "ConnectError" in result.error


_HOOK_EXISTS = "Hook already exists on this repository"


class TestWebhooks:
    @pytest.mark.parametrize(
        "errors",
        [
            [{"resource": "Hook", "code": "custom", "message": _HOOK_EXISTS}],
            [_HOOK_EXISTS],
        ],
    )
    async def test_duplicate_hook(self, errors: list[object]) -> None:
        client = _client(
            lambda request: httpx.Response(
                422, json={"message": "Validation Failed", "errors": errors}
            )
        )
        with pytest.raises(WebhookExistsError):
            await client.create_webhook("tok", "octo/widgets", "https://x/hook", ["push"])

    async def test_create_and_list(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                body = json.loads(request.content)
                assert body["config"]["url"] == "https://x/hook"
                assert body["config"]["secret"] == "s3cret"
                return httpx.Response(201, json={"id": 17})
            return httpx.Response(
                200,
                json=[{"id": 17, "events": ["push"], "config": {"url": "https://x/hook"}}],
            )

        client = _client(handler)
        hook_id = await client.create_webhook(
            "tok", "octo/widgets", "https://x/hook", ["push"], secret="s3cret"
        )
        hooks = await client.list_webhooks("tok", "octo/widgets")

        assert hook_id == "17"
        assert hooks[0].id == "17"
        assert hooks[0].url == "https://x/hook"

    async def test_other_validation_error_raises(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                422, json={"message": "Validation Failed", "errors": [{"message": "bad url"}]}
            )
        )
        with pytest.raises(GitHubAPIError) as exc_info:
            await client.create_webhook("tok", "octo/widgets", "nope", ["push"])
        assert not isinstance(exc_info.value, WebhookExistsError)
