"""
Parsers turning raw history log text into timestamp indices.

The log is a sequence of records, most recent commit first. Each record is
introduced by the sentinel token immediately followed by the commit's epoch
timestamp, then a blank line, then one line per changed file:

    GTN_GTN:1700000300

    A	posts/hello.md
    R100	drafts/old.md	posts/new.md

Modification logs carry bare paths, publication logs carry a git
name-status code and one or two tab-separated paths.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional

from .history_source import DEFAULT_SENTINEL

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "\n\n"
DEFAULT_CONTENT_EXTENSIONS = ("md", "html")


class ChangeKind(Enum):
    """How a file was touched by a commit."""

    ADDED = "A"
    MODIFIED = "M"  # also stands for deletions and any other change
    RENAMED = "R"


@dataclass(frozen=True)
class ChangeEntry:
    """One file line of a log record.

    For renames ``path`` is the new path and ``from_path`` the old one.
    """

    kind: ChangeKind
    path: str
    from_path: Optional[str] = None


@dataclass
class LogRecord:
    """All file changes of one commit."""

    timestamp: int
    entries: List[ChangeEntry] = field(default_factory=list)


@dataclass
class ModificationIndex:
    """Latest modification time and commit count per path."""

    times: Dict[str, int] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)

    def record(self, path: str, timestamp: int) -> None:
        # Records arrive newest first, so the first sighting is the latest change
        if path not in self.times:
            self.times[path] = timestamp
        self.counts[path] = self.counts.get(path, 0) + 1


@dataclass
class PublicationIndex:
    """Original introduction time per current path."""

    times: Dict[str, int] = field(default_factory=dict)

    def record(self, path: str, timestamp: int) -> None:
        existing = self.times.get(path)
        if existing is None or timestamp <= existing:
            self.times[path] = timestamp


class RenameMap:
    """Maps an old path to the path it was renamed to."""

    def __init__(self) -> None:
        self._renames: Dict[str, str] = {}

    def add(self, old_path: str, new_path: str) -> None:
        self._renames[old_path] = new_path

    def chase(self, path: str) -> str:
        """Follow renames from ``path`` to the name it carries today.

        A chain that returns to a path already visited stops at that path.
        """
        visited = {path}
        current = path
        while current in self._renames:
            following = self._renames[current]
            if following in visited:
                logger.warning(
                    f"Rename cycle detected while resolving {path}, stopping at {following}"
                )
                return following
            visited.add(following)
            current = following
        return current

    def __contains__(self, path: object) -> bool:
        return path in self._renames

    def __len__(self) -> int:
        return len(self._renames)


class LogParser:
    """Splits sentinel-delimited log text into records."""

    def __init__(self, sentinel: str = DEFAULT_SENTINEL):
        self.sentinel = sentinel

    def records(self, text: str) -> Iterator[LogRecord]:
        """Yield the well-formed records of ``text`` in log order.

        Blocks without a file list, or whose timestamp is not an integer,
        are skipped.
        """
        for block in text.split(self.sentinel):
            parts = block.split(RECORD_SEPARATOR)
            if len(parts) < 2:
                continue

            raw_timestamp, file_lines = parts[0], parts[1]
            try:
                timestamp = int(raw_timestamp.strip())
            except ValueError:
                logger.debug(f"Skipping record with bad timestamp {raw_timestamp!r}")
                continue

            entries = []
            for line in file_lines.split("\n"):
                entry = self.parse_line(line)
                if entry is not None:
                    entries.append(entry)
            yield LogRecord(timestamp=timestamp, entries=entries)

    def parse_line(self, line: str) -> Optional[ChangeEntry]:
        raise NotImplementedError


class ModificationLogParser(LogParser):
    """Builds a ModificationIndex from a ``--name-only`` log."""

    def parse_line(self, line: str) -> Optional[ChangeEntry]:
        path = line.strip()
        if not path:
            return None
        return ChangeEntry(ChangeKind.MODIFIED, path)

    def parse(self, text: str) -> ModificationIndex:
        index = ModificationIndex()
        for record in self.records(text):
            for entry in record.entries:
                index.record(entry.path, record.timestamp)
        return index


class PublicationLogParser(LogParser):
    """Builds a PublicationIndex from a first-parent ``--name-status`` log."""

    def __init__(
        self,
        sentinel: str = DEFAULT_SENTINEL,
        extensions: Iterable[str] = DEFAULT_CONTENT_EXTENSIONS,
    ):
        super().__init__(sentinel)
        alternatives = "|".join(re.escape(ext.lstrip(".")) for ext in extensions)
        self._content_pattern = re.compile(rf"\.({alternatives})$")

    def is_content(self, path: str) -> bool:
        return self._content_pattern.search(path) is not None

    def parse_line(self, line: str) -> Optional[ChangeEntry]:
        fields = line.rstrip("\r").split("\t")
        status = fields[0].strip()
        if not status or len(fields) < 2:
            return None

        if status.startswith("R"):
            if len(fields) < 3:
                return None
            return ChangeEntry(ChangeKind.RENAMED, fields[2], from_path=fields[1])
        if status == "A":
            return ChangeEntry(ChangeKind.ADDED, fields[1])
        return ChangeEntry(ChangeKind.MODIFIED, fields[-1])

    def parse(self, text: str) -> PublicationIndex:
        index = PublicationIndex()
        renames = RenameMap()

        for record in self.records(text):
            for entry in record.entries:
                if not self.is_content(entry.path):
                    continue
                if entry.kind is ChangeKind.RENAMED and entry.from_path is not None:
                    # Point from the older name to the newer one
                    renames.add(entry.from_path, entry.path)
                elif entry.kind is ChangeKind.ADDED:
                    index.record(renames.chase(entry.path), record.timestamp)

        logger.debug(f"Resolved {len(index.times)} publication times, {len(renames)} renames")
        return index
