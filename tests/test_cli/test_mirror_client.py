"""Tests for the RepoMirror command-line client."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from cli.mirror_client import (
    MirrorClient,
    build_parser,
    main,
    run_command,
    validate_server_url,
)


def _args(*argv: str):
    return build_parser().parse_args(list(argv))


def _mock_client() -> MagicMock:
    return MagicMock(spec=MirrorClient)


class TestValidateServerUrl:
    def test_rejects_insecure_http_for_remote_hosts(self) -> None:
        with pytest.raises(ValueError, match="HTTPS is required"):
            validate_server_url("http://example.com")

    def test_allows_https_and_strips_slash(self) -> None:
        assert validate_server_url("https://example.com/") == "https://example.com"

    def test_allows_http_for_localhost(self) -> None:
        assert validate_server_url("http://localhost:8000") == "http://localhost:8000"

    def test_allows_insecure_http_when_flag_enabled(self) -> None:
        assert (
            validate_server_url("http://example.com:8000", allow_insecure_http=True)
            == "http://example.com:8000"
        )

    def test_rejects_missing_scheme(self) -> None:
        with pytest.raises(ValueError, match="scheme and host"):
            validate_server_url("example.com")


class TestRunCommand:
    def test_sweep_summary(self, capsys: pytest.CaptureFixture[str]) -> None:
        client = _mock_client()
        client.sweep.return_value = {
            "checked": 3,
            "sync_triggered": 1,
            "up_to_date": 1,
            "errors": 1,
        }

        run_command(client, _args("sweep"))

        out = capsys.readouterr().out
        assert "Checked 3: 1 sync(s) triggered, 1 up to date, 1 error(s)" in out

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        client = _mock_client()
        client.status.return_value = {"pending": 2, "recent": []}

        run_command(client, _args("--json", "status"))

        assert json.loads(capsys.readouterr().out) == {"pending": 2, "recent": []}

    def test_sync_by_id(self, capsys: pytest.CaptureFixture[str]) -> None:
        client = _mock_client()
        client.sync.return_value = {
            "relationships_attempted": 1,
            "relationships_failed": 0,
            "files_created": 2,
            "files_updated": 1,
            "files_skipped": 5,
            "files_failed": 0,
        }

        run_command(client, _args("sync", "7"))

        client.sync.assert_called_once_with(7)
        out = capsys.readouterr().out
        assert "Synced clone 7" in out
        assert "Created:       2" in out
        assert "Failed:" not in out

    def test_sync_repo_reports_failed_relationships(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        client = _mock_client()
        client.sync_repository.return_value = {
            "relationships_attempted": 2,
            "relationships_failed": 1,
            "files_created": 0,
            "files_updated": 0,
            "files_skipped": 3,
            "files_failed": 0,
        }

        run_command(client, _args("sync-repo", "octo/widgets"))

        client.sync_repository.assert_called_once_with("octo/widgets")
        assert "Failed:        1" in capsys.readouterr().out

    @pytest.mark.parametrize(("command", "enabled"), [("enable", True), ("disable", False)])
    def test_toggle(self, command: str, enabled: bool) -> None:
        client = _mock_client()
        client.set_sync_enabled.return_value = {}

        run_command(client, _args(command, "4"))

        client.set_sync_enabled.assert_called_once_with(4, enabled)

    def test_create_uses_env_token(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
        client = _mock_client()
        client.create.return_value = {
            "mirror_url": "https://github.com/me/widgets-clone",
            "webhook_enabled": False,
            "files_copied": 2,
        }

        run_command(client, _args("create", "octo/widgets"))

        client.create.assert_called_once_with("octo/widgets", "ghp_env")
        out = capsys.readouterr().out
        assert "Created https://github.com/me/widgets-clone" in out
        assert "scheduled checks only" in out

    def test_create_requires_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with pytest.raises(ValueError, match="--github-token"):
            run_command(_mock_client(), _args("create", "octo/widgets"))


class TestMirrorClient:
    def test_requests_carry_bearer_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"checked": 0, "sync_triggered": 0, "up_to_date": 0, "errors": 0}
            )

        with MirrorClient("https://mirror.example.com", "tok") as client:
            client.client.close()
            client.client = httpx.Client(
                base_url=client.server_url,
                headers={"Authorization": "Bearer tok"},
                transport=httpx.MockTransport(handler),
            )
            assert client.sweep()["checked"] == 0

        assert seen[0].url == "https://mirror.example.com/api/sync/sweep"
        assert seen[0].headers["Authorization"] == "Bearer tok"


class TestMain:
    def test_no_command_exits(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1

    def test_missing_server_exits(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.delenv("REPOMIRROR_SERVER", raising=False)
        with pytest.raises(SystemExit):
            main(["sweep"])
        assert "--server" in capsys.readouterr().out

    def test_insecure_server_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            main(["--server", "http://example.com", "--pat", "tok", "sweep"])
        assert "HTTPS is required" in capsys.readouterr().out

    def test_server_error_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        request = httpx.Request("POST", "https://mirror.example.com/api/sync/sweep")
        response = httpx.Response(403, text="Admin access required", request=request)
        error = httpx.HTTPStatusError("forbidden", request=request, response=response)

        with (
            patch.object(MirrorClient, "sweep", side_effect=error),
            pytest.raises(SystemExit),
        ):
            main(["--server", "https://mirror.example.com", "--pat", "tok", "sweep"])

        assert "server returned 403" in capsys.readouterr().out

    def test_pat_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REPOMIRROR_TOKEN", "env-token")
        with (
            patch("cli.mirror_client.MirrorClient") as client_cls,
            patch("cli.mirror_client.run_command") as run,
        ):
            main(["--server", "https://mirror.example.com", "status"])

        client_cls.assert_called_once_with("https://mirror.example.com", "env-token")
        run.assert_called_once()
