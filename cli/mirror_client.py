"""Command-line client for a RepoMirror server.

Typical cron entry driving the scheduled sweep::

    */15 * * * * repomirror-cli --server https://mirror.example.com sweep
"""

from __future__ import annotations

import argparse
import getpass
import json
import os
import sys
from typing import Any
from urllib.parse import urlparse

import httpx

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}
SERVER_ENV = "REPOMIRROR_SERVER"
TOKEN_ENV = "REPOMIRROR_TOKEN"
GITHUB_TOKEN_ENV = "GITHUB_TOKEN"


class MirrorClient:
    """Thin wrapper over the RepoMirror HTTP API."""

    def __init__(self, server_url: str, token: str, timeout: float = 120.0) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.server_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> MirrorClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _json(self, resp: httpx.Response) -> Any:
        resp.raise_for_status()
        return resp.json()

    def sweep(self) -> dict[str, int]:
        """Run the scheduled drift check over every enabled relationship."""
        result: dict[str, int] = self._json(self.client.post("/api/sync/sweep"))
        return result

    def status(self) -> dict[str, Any]:
        result: dict[str, Any] = self._json(self.client.get("/api/sync/status"))
        return result

    def list_clones(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = self._json(self.client.get("/api/clones"))
        return result

    def create(self, source_full_name: str, github_token: str) -> dict[str, Any]:
        """Create ``<name>-clone`` from a source repository."""
        result: dict[str, Any] = self._json(
            self.client.post(
                "/api/clones",
                json={"source_full_name": source_full_name, "github_token": github_token},
            )
        )
        return result

    def sync(self, clone_id: int) -> dict[str, Any]:
        result: dict[str, Any] = self._json(self.client.post(f"/api/clones/{clone_id}/sync"))
        return result

    def sync_repository(self, repo_full_name: str) -> dict[str, Any]:
        result: dict[str, Any] = self._json(
            self.client.post(
                "/api/clones/sync-repository",
                json={"repo_full_name": repo_full_name},
            )
        )
        return result

    def set_sync_enabled(self, clone_id: int, enabled: bool) -> dict[str, Any]:
        result: dict[str, Any] = self._json(
            self.client.patch(f"/api/clones/{clone_id}", json={"sync_enabled": enabled})
        )
        return result


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    if (
        parsed.scheme == "http"
        and not allow_insecure_http
        and parsed.hostname not in _LOCALHOST_HOSTS
    ):
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )
    return normalized


def login(server_url: str, username: str, password: str) -> str:
    """Exchange a password for an access token."""
    with httpx.Client(base_url=server_url, timeout=30.0) as client:
        resp = client.post(
            "/api/auth/login",
            json={"username": username, "password": password},
        )
    if resp.status_code != 200:
        raise ValueError(f"Login failed ({resp.status_code})")
    token: str = resp.json()["access_token"]
    return token


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2))


def _print_sync_counts(result: dict[str, Any]) -> None:
    print(f"  Relationships: {result['relationships_attempted']}")
    if result.get("relationships_failed"):
        print(f"  Failed:        {result['relationships_failed']}")
    print(f"  Created:       {result['files_created']}")
    print(f"  Updated:       {result['files_updated']}")
    print(f"  Unchanged:     {result['files_skipped']}")
    print(f"  File errors:   {result['files_failed']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repomirror-cli",
        description="Manage and trigger RepoMirror repository mirrors",
    )
    parser.add_argument("--server", "-s", help=f"Server URL (default: ${SERVER_ENV})")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--username", "-u", help="Username for password authentication")
    parser.add_argument("--pat", help=f"Personal access token (default: ${TOKEN_ENV})")
    parser.add_argument("--json", action="store_true", help="Print raw JSON responses")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("sweep", help="Check all mirrors and queue syncs for lagging ones")
    subparsers.add_parser("status", help="Show background sync status")
    subparsers.add_parser("list", help="List your clone relationships")

    create = subparsers.add_parser("create", help="Create a mirror of a source repository")
    create.add_argument("source", help="Source repository as owner/name")
    create.add_argument(
        "--github-token",
        help=f"GitHub token stored for this mirror (default: ${GITHUB_TOKEN_ENV})",
    )

    sync = subparsers.add_parser("sync", help="Sync one relationship now")
    sync.add_argument("clone_id", type=int)

    sync_repo = subparsers.add_parser(
        "sync-repo", help="Sync by repository name (mirror or source)"
    )
    sync_repo.add_argument("repo", help="Repository as owner/name")

    enable = subparsers.add_parser("enable", help="Enable syncing of a relationship")
    enable.add_argument("clone_id", type=int)
    disable = subparsers.add_parser("disable", help="Disable syncing of a relationship")
    disable.add_argument("clone_id", type=int)
    return parser


def _resolve_token(args: argparse.Namespace, server_url: str) -> str:
    token: str | None = args.pat or os.environ.get(TOKEN_ENV)
    if token:
        return token
    username = args.username or input("Username: ")
    password = getpass.getpass("Password: ")
    return login(server_url, username, password)


def run_command(client: MirrorClient, args: argparse.Namespace) -> None:
    """Execute one subcommand and print its result."""
    if args.command == "sweep":
        result: Any = client.sweep()
        if not args.json:
            print(
                f"Checked {result['checked']}: {result['sync_triggered']} sync(s) triggered, "
                f"{result['up_to_date']} up to date, {result['errors']} error(s)"
            )
            return
    elif args.command == "status":
        result = client.status()
        if not args.json:
            print(f"Pending syncs: {result['pending']}")
            for outcome in result["recent"]:
                print(
                    f"  [{outcome['finished_at']}] clone {outcome['clone_id']} "
                    f"{outcome['trigger']}: {outcome['status']}"
                )
            return
    elif args.command == "list":
        result = client.list_clones()
        if not args.json:
            for clone in result:
                state = "enabled" if clone["sync_enabled"] else "disabled"
                synced = clone["last_synced_at"] or "never"
                print(
                    f"{clone['id']:>4}  {clone['source_full_name']} -> "
                    f"{clone['mirror_full_name']}  ({state}, last synced {synced})"
                )
            return
    elif args.command == "create":
        github_token = args.github_token or os.environ.get(GITHUB_TOKEN_ENV)
        if not github_token:
            raise ValueError(f"--github-token or ${GITHUB_TOKEN_ENV} is required")
        result = client.create(args.source, github_token)
        if not args.json:
            print(f"Created {result['mirror_url']}")
            webhook = "enabled" if result["webhook_enabled"] else "disabled (scheduled checks only)"
            print(f"  Webhook:      {webhook}")
            print(f"  Files copied: {result['files_copied']}")
            return
    elif args.command == "sync":
        result = client.sync(args.clone_id)
        if not args.json:
            print(f"Synced clone {args.clone_id}:")
            _print_sync_counts(result)
            return
    elif args.command == "sync-repo":
        result = client.sync_repository(args.repo)
        if not args.json:
            print(f"Synced {args.repo}:")
            _print_sync_counts(result)
            return
    elif args.command in ("enable", "disable"):
        result = client.set_sync_enabled(args.clone_id, args.command == "enable")
        if not args.json:
            print(f"Sync {args.command}d for clone {args.clone_id}")
            return
    else:
        raise ValueError(f"Unknown command: {args.command}")
    _print_json(result)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    configured_server_url = args.server or os.environ.get(SERVER_ENV)
    if not configured_server_url:
        print(f"Error: --server or ${SERVER_ENV} is required")
        sys.exit(1)
    try:
        server_url = validate_server_url(configured_server_url, args.allow_insecure_http)
        token = _resolve_token(args, server_url)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    with MirrorClient(server_url, token) as client:
        try:
            run_command(client, args)
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text
            print(f"Error: server returned {exc.response.status_code}: {detail}")
            sys.exit(1)
        except (httpx.HTTPError, ValueError) as exc:
            print(f"Error: {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
