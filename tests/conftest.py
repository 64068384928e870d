"""
Shared pytest fixtures for Content Dates tests.

Provides literal log builders, an in-memory history source and a throwaway
git repository for integration tests.
"""

import os
import shutil
import subprocess
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional, Sequence, Tuple

import pytest

from content_dates.services.history_source import (
    DEFAULT_SENTINEL,
    HistoryKind,
    HistorySource,
)


@contextmanager
def local_temporary_directory(prefix: str = "test_") -> Generator[Path, None, None]:
    """Create a temporary directory that is removed on exit.

    Args:
        prefix: Prefix for the directory name

    Yields:
        Path: Temporary directory path
    """
    test_dir = Path(tempfile.mkdtemp(prefix=f"{prefix}{int(time.time() * 1000)}_"))
    try:
        yield test_dir
    finally:
        if test_dir.exists():
            shutil.rmtree(test_dir, ignore_errors=True)


def make_log(
    records: Iterable[Tuple[int, Sequence[str]]], sentinel: str = DEFAULT_SENTINEL
) -> str:
    """Render (timestamp, file lines) records the way git log prints them."""
    return "".join(
        f"{sentinel}{timestamp}\n\n" + "".join(f"{line}\n" for line in lines) + "\n"
        for timestamp, lines in records
    )


class FakeHistorySource(HistorySource):
    """History source replaying a scripted list of commits.

    ``commits`` is oldest first: (revision, timestamp, {kind: file lines}).
    """

    def __init__(self, commits: Optional[List[Tuple[str, int, Dict[HistoryKind, List[str]]]]] = None):
        self.commits = list(commits or [])
        self.fetch_calls: List[Tuple[HistoryKind, Optional[str]]] = []

    def add_commit(self, revision: str, timestamp: int, mod: List[str], pub: List[str]):
        self.commits.append(
            (
                revision,
                timestamp,
                {HistoryKind.MODIFICATION: mod, HistoryKind.PUBLICATION: pub},
            )
        )

    def _revisions(self) -> List[str]:
        return [revision for revision, _, _ in self.commits]

    def fetch_log(
        self,
        kind: HistoryKind,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> str:
        self.fetch_calls.append((kind, since))
        revisions = self._revisions()
        commits = self.commits
        if until is not None:
            commits = commits[: revisions.index(until) + 1]
        if since is not None:
            commits = commits[revisions.index(since) + 1 :]
        return make_log(
            (timestamp, files.get(kind, [])) for _, timestamp, files in reversed(commits)
        )

    def head_revision(self) -> str:
        return self.commits[-1][0]

    def is_ancestor(self, revision: str, head: str) -> bool:
        revisions = self._revisions()
        if revision not in revisions or head not in revisions:
            return False
        return revisions.index(revision) <= revisions.index(head)


@pytest.fixture
def local_tmp_path() -> Generator[Path, None, None]:
    """Pytest fixture that provides a temporary directory."""
    with local_temporary_directory() as tmp_path:
        yield tmp_path


@pytest.fixture
def fake_source() -> FakeHistorySource:
    source = FakeHistorySource()
    source.add_commit("c1", 100, ["a.md", "b.md"], ["A\ta.md", "A\tb.md"])
    source.add_commit("c2", 200, ["a.md"], [])
    source.add_commit("c3", 300, ["b.md", "c.html"], ["A\tc.html"])
    return source


class GitRepo:
    """A scratch git repository with controllable commit timestamps."""

    def __init__(self, path: Path):
        self.path = path

    def git(self, *args: str, timestamp: Optional[int] = None) -> str:
        env = dict(os.environ)
        env.update(
            {
                "GIT_AUTHOR_NAME": "Test",
                "GIT_AUTHOR_EMAIL": "test@example.com",
                "GIT_COMMITTER_NAME": "Test",
                "GIT_COMMITTER_EMAIL": "test@example.com",
            }
        )
        if timestamp is not None:
            env["GIT_AUTHOR_DATE"] = f"@{timestamp} +0000"
            env["GIT_COMMITTER_DATE"] = f"@{timestamp} +0000"
        result = subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
            env=env,
        )
        return result.stdout

    def write(self, relative: str, content: str) -> None:
        target = self.path / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)

    def commit(self, message: str, timestamp: int) -> str:
        self.git("add", "-A")
        self.git("commit", "-q", "-m", message, timestamp=timestamp)
        return self.git("rev-parse", "HEAD").strip()


@pytest.fixture
def git_repo(local_tmp_path: Path) -> GitRepo:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = GitRepo(local_tmp_path)
    repo.git("init", "-q")
    repo.git("config", "commit.gpgsign", "false")
    return repo
