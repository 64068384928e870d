"""
History source for content date derivation.

Runs the read-only git queries that produce the raw, sentinel-tagged history
log consumed by the log parsers. The invocation sits behind an abstract base
so parsers and fetchers can be exercised against literal text.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_SENTINEL = "GTN_GTN:"


class HistoryKind(Enum):
    """The two kinds of history a content tree is queried for."""

    MODIFICATION = "mod"
    PUBLICATION = "pub"

    @property
    def cache_prefix(self) -> str:
        """Prefix of the cache artifacts holding this kind of history."""
        return f"git-{self.value}"

    @property
    def label(self) -> str:
        return "modification" if self is HistoryKind.MODIFICATION else "publication"


class HistorySource(ABC):
    """Produces raw history log text for a content tree."""

    @abstractmethod
    def fetch_log(
        self,
        kind: HistoryKind,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> str:
        """Return the log text for ``kind``.

        Args:
            kind: Which history query to run
            since: When given, only commits strictly after this revision
            until: Last revision to include; defaults to the current head

        Returns:
            Sentinel-delimited log text, most recent commit first
        """

    @abstractmethod
    def head_revision(self) -> str:
        """Return the revision id the history is currently computed through."""

    @abstractmethod
    def is_ancestor(self, revision: str, head: str) -> bool:
        """Return True when ``revision`` is known and reachable from ``head``."""


class GitHistorySource(HistorySource):
    """History source backed by the ``git`` command line tool.

    Failures are not interpreted: running outside a repository raises
    ``subprocess.CalledProcessError`` and a missing git binary raises
    ``FileNotFoundError``.
    """

    def __init__(
        self,
        repo_dir: Path,
        ref: str = "HEAD",
        sentinel: str = DEFAULT_SENTINEL,
        timeout: Optional[int] = None,
    ):
        """
        Initialize the git history source.

        Args:
            repo_dir: Root directory of the git repository
            ref: Revision whose history is walked
            sentinel: Token tagging the start of every commit record
            timeout: Optional subprocess timeout in seconds
        """
        self.repo_dir = Path(repo_dir)
        self.ref = ref
        self.sentinel = sentinel
        self.timeout = timeout

    def build_log_command(
        self,
        kind: HistoryKind,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> List[str]:
        """Build the git log command line for ``kind``."""
        command = ["git", "-c", "core.quotePath=false", "log"]
        if kind is HistoryKind.PUBLICATION:
            # Only first-parent adds and renames matter for publication dates
            command += [
                "--first-parent",
                "--name-status",
                "--find-renames",
                "--diff-filter=AR",
            ]
        else:
            command.append("--name-only")
        # tformat: git puts a blank line between the tag and the file list
        command.append(f"--pretty=tformat:{self.sentinel}%ct")

        end = until or self.ref
        if since:
            command.append(f"{since}..{end}")
        else:
            command.append(end)
        return command

    def fetch_log(
        self,
        kind: HistoryKind,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> str:
        command = self.build_log_command(kind, since, until)
        output = self._run(command)
        if output and not output.endswith("\n"):
            output += "\n"
        return output

    def head_revision(self) -> str:
        return self._run(["git", "rev-list", "-n", "1", self.ref]).strip()

    def is_ancestor(self, revision: str, head: str) -> bool:
        command = ["git", "merge-base", "--is-ancestor", revision, head]
        logger.debug(f"Running {' '.join(command)} in {self.repo_dir}")
        # Exit status 1 means not an ancestor, 128 means an unknown revision
        result = subprocess.run(
            command,
            cwd=self.repo_dir,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )
        return result.returncode == 0

    def _run(self, command: List[str]) -> str:
        logger.debug(f"Running {' '.join(command)} in {self.repo_dir}")
        result = subprocess.run(
            command,
            cwd=self.repo_dir,
            capture_output=True,
            text=True,
            check=True,
            timeout=self.timeout,
        )
        return result.stdout
