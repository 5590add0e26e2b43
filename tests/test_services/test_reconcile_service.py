"""Tests for tree reconciliation."""

from __future__ import annotations

import logging
import string

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from repomirror.github.base import GitHubAPIError, GitHubAuthError, TreeEntry, WriteStatus
from repomirror.services.clone_service import CloneSnapshot
from repomirror.services.reconcile_service import (
    reconcile,
    select_sync_entries,
    sync_commit_message,
)
from tests.fake_github import FakeGitHub, blob_sha

SOURCE = "octo/widgets"
MIRROR = "me/widgets-clone"
TOKEN = "ghp_test_token"

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_SEGMENT = st.text(alphabet=string.ascii_lowercase + string.digits + "._-", min_size=1, max_size=8)
_PATH = st.one_of(
    st.just("README.md"),
    st.lists(_SEGMENT, min_size=1, max_size=3).map("/".join),
)
_ENTRY = st.builds(
    TreeEntry,
    path=_PATH,
    type=st.sampled_from(["blob", "tree", "commit"]),
    sha=st.text(alphabet="0123456789abcdef", min_size=40, max_size=40),
)


def _snapshot() -> CloneSnapshot:
    return CloneSnapshot(
        id=1,
        user_id=None,
        source_full_name=SOURCE,
        mirror_full_name=MIRROR,
        sync_enabled=True,
        webhook_id=None,
        last_synced_at=None,
    )


@pytest.fixture
def github() -> FakeGitHub:
    fake = FakeGitHub()
    fake.add_repo(SOURCE, {"README.md": "# widgets\n", "a.txt": "alpha\n", "b.txt": "beta v2\n"})
    fake.add_repo(MIRROR, {"README.md": "# widgets-clone\n", "b.txt": "beta v1\n"})
    return fake


class TestSelectSyncEntries:
    @PROPERTY_SETTINGS
    @given(entries=st.lists(_ENTRY, max_size=30))
    def test_readme_never_selected(self, entries: list[TreeEntry]) -> None:
        selected = select_sync_entries(entries)
        assert all(entry.path != "README.md" for entry in selected)

    @PROPERTY_SETTINGS
    @given(entries=st.lists(_ENTRY, max_size=30))
    def test_only_blobs_selected_and_order_kept(self, entries: list[TreeEntry]) -> None:
        selected = select_sync_entries(entries)
        expected = [e for e in entries if e.type == "blob" and e.path != "README.md"]
        assert selected == expected

    def test_nested_readme_is_synced(self) -> None:
        entries = [TreeEntry("docs/README.md", "blob", "a" * 40)]
        assert select_sync_entries(entries) == entries


class TestReconcile:
    async def test_new_and_changed_files(self, github: FakeGitHub) -> None:
        old_b_sha = blob_sha(b"beta v1\n")
        head = github.repos[SOURCE].commits[-1]

        result = await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert result.files_created == 1
        assert result.files_updated == 1
        assert result.files_failed == 0
        writes = {w.path: w for w in github.writes_to(MIRROR)}
        assert set(writes) == {"a.txt", "b.txt"}
        assert writes["a.txt"].sha is None
        assert writes["b.txt"].sha == old_b_sha
        assert writes["b.txt"].message == sync_commit_message("b.txt", SOURCE)
        assert github.text(MIRROR, "a.txt") == "alpha\n"
        assert github.text(MIRROR, "b.txt") == "beta v2\n"

    async def test_readme_untouched(self, github: FakeGitHub) -> None:
        head = github.repos[SOURCE].commits[-1]
        await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert all(w.path != "README.md" for w in github.writes)
        assert github.text(MIRROR, "README.md") == "# widgets-clone\n"

    async def test_second_run_is_idempotent(self, github: FakeGitHub) -> None:
        head = github.repos[SOURCE].commits[-1]
        await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)
        writes_after_first = len(github.writes)

        result = await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert result.files_created == 0
        assert result.files_updated == 0
        assert result.files_skipped == 2
        assert len(github.writes) == writes_after_first

    async def test_nested_paths_created(self, github: FakeGitHub) -> None:
        head = github.push(SOURCE, {"src/pkg/mod.py": "print('hi')\n"})
        result = await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert result.files_created == 2
        assert github.text(MIRROR, "src/pkg/mod.py") == "print('hi')\n"

    async def test_token_passed_to_every_call(self, github: FakeGitHub) -> None:
        head = github.repos[SOURCE].commits[-1]
        await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)
        assert github.tokens_seen
        assert set(github.tokens_seen) == {TOKEN}

    async def test_unreadable_source_file_is_counted_and_skipped(
        self, github: FakeGitHub, caplog: pytest.LogCaptureFixture
    ) -> None:
        github.fail_reads.add((SOURCE, "a.txt"))
        head = github.repos[SOURCE].commits[-1]

        with caplog.at_level(logging.WARNING):
            result = await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert result.files_failed == 1
        assert result.files_updated == 1
        assert github.text(MIRROR, "a.txt") is None
        assert "a.txt" in caplog.text

    async def test_failing_mirror_lookup_is_per_file(self, github: FakeGitHub) -> None:
        github.fail_reads.add((MIRROR, "b.txt"))
        head = github.repos[SOURCE].commits[-1]

        result = await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert result.files_failed == 1
        assert result.files_created == 1
        assert github.text(MIRROR, "b.txt") == "beta v1\n"

    async def test_write_error_is_per_file(self, github: FakeGitHub) -> None:
        github.fail_writes.add((MIRROR, "a.txt"))
        head = github.repos[SOURCE].commits[-1]

        result = await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert result.files_failed == 1
        assert result.files_updated == 1
        assert any(f.startswith("a.txt: write failed") for f in result.failures)

    async def test_rejected_credential_stops_the_walk(
        self, github: FakeGitHub, caplog: pytest.LogCaptureFixture
    ) -> None:
        head = github.push(SOURCE, {"c.txt": "gamma\n", "d.txt": "delta\n", "e.txt": "eps\n"})
        github.reject_token.add((MIRROR, "c.txt"))
        attempted: list[str] = []
        github.before_write = lambda repo, path: attempted.append(path)

        with caplog.at_level(logging.ERROR), pytest.raises(GitHubAuthError):
            await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert attempted == ["a.txt", "b.txt", "c.txt"]
        assert github.text(MIRROR, "d.txt") is None
        assert github.text(MIRROR, "e.txt") is None
        assert "aborting after 2 of 5 files" in caplog.text

    async def test_rejected_source_read_stops_the_walk(self, github: FakeGitHub) -> None:
        head = github.repos[SOURCE].commits[-1]
        github.reject_token.add((SOURCE, "a.txt"))

        with pytest.raises(GitHubAuthError):
            await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert github.writes == []

    async def test_stale_token_is_a_conflict(self, github: FakeGitHub) -> None:
        """Another writer changes b.txt between the lookup and the write."""
        head = github.repos[SOURCE].commits[-1]

        def _race(repo: str, path: str) -> None:
            if repo == MIRROR and path == "b.txt":
                github.repos[MIRROR].files["b.txt"] = b"written by someone else\n"

        github.before_write = _race
        result = await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert result.files_failed == 1
        assert result.files_created == 1
        conflict = [w for w in github.writes_to(MIRROR) if w.path == "b.txt"]
        assert conflict[0].status is WriteStatus.CONFLICT
        assert github.text(MIRROR, "b.txt") == "written by someone else\n"

    async def test_tree_failure_raises(self, github: FakeGitHub) -> None:
        github.fail_trees.add(SOURCE)
        with pytest.raises(GitHubAPIError):
            await reconcile(github, TOKEN, _snapshot(), "deadbeef", delay_seconds=0)
        assert github.writes == []

    async def test_truncated_tree_still_synced(
        self, github: FakeGitHub, caplog: pytest.LogCaptureFixture
    ) -> None:
        github.repos[SOURCE].truncated = True
        head = github.repos[SOURCE].commits[-1]

        with caplog.at_level(logging.WARNING):
            result = await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0)

        assert result.files_created + result.files_updated == 2
        assert "truncated" in caplog.text

    async def test_sleeps_between_files_only(
        self, github: FakeGitHub, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        delays: list[float] = []

        async def _fake_sleep(seconds: float) -> None:
            delays.append(seconds)

        monkeypatch.setattr("repomirror.services.reconcile_service.asyncio.sleep", _fake_sleep)
        head = github.repos[SOURCE].commits[-1]

        await reconcile(github, TOKEN, _snapshot(), head, delay_seconds=0.1)

        assert delays == [0.1]
