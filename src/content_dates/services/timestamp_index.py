"""
Point lookups of content modification and publication times.

``ContentDates`` is the object a rendering pipeline constructs once and hands
to every consumer. It owns one lazily built ``TimestampIndex`` per history
kind; the first lookup of a kind fetches and parses the history, later
lookups are dictionary reads.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..config import Config
from .cache_store import CacheSnapshot, CacheStore
from .history_source import GitHistorySource, HistoryKind, HistorySource
from .incremental_fetcher import IncrementalFetcher
from .log_parser import (
    LogParser,
    ModificationIndex,
    ModificationLogParser,
    PublicationIndex,
    PublicationLogParser,
)

logger = logging.getLogger(__name__)

EPOCH = 0

Timestamp = Union[int, float]


class TimestampIndex:
    """Timestamps for one history kind, built on first use."""

    def __init__(
        self,
        kind: HistoryKind,
        fetcher: Optional[IncrementalFetcher],
        parser: Optional[LogParser],
        repo_dir: Path = Path("."),
    ):
        """
        Initialize the index.

        Args:
            kind: History kind this index answers for
            fetcher: Resolves the log text when the index is first needed
            parser: Parser matching ``kind``
            repo_dir: Directory relative lookup paths are resolved against
                for the filesystem fallback
        """
        self.kind = kind
        self.fetcher = fetcher
        self.parser = parser
        self.repo_dir = Path(repo_dir)
        self._times: Optional[Dict[str, Timestamp]] = None
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_index(
        cls,
        kind: HistoryKind,
        index: Union[ModificationIndex, PublicationIndex],
        repo_dir: Path = Path("."),
    ) -> "TimestampIndex":
        """Wrap an already parsed index; no history is ever fetched."""
        prebuilt = cls(kind, None, None, repo_dir)
        prebuilt._load(index)
        return prebuilt

    @property
    def is_built(self) -> bool:
        return self._times is not None

    def ensure_built(self) -> Dict[str, Timestamp]:
        """Fetch and parse history unless that already happened."""
        if self._times is not None:
            return self._times

        with self._lock:
            if self._times is not None:
                return self._times
            if self.fetcher is None or self.parser is None:
                raise RuntimeError(f"No history available to build {self.kind.label} index")

            logger.info(f"Filling {self.kind.label} time cache")
            text = self.fetcher.resolve(self.kind)
            return self._load(self.parser.parse(text))

    def _load(
        self, index: Union[ModificationIndex, PublicationIndex]
    ) -> Dict[str, Timestamp]:
        times: Dict[str, Timestamp] = dict(index.times)
        self._counts = dict(getattr(index, "counts", {}))
        self._times = times
        return times

    def time_of(self, path: str) -> Timestamp:
        """Return the timestamp for ``path``.

        Paths without history fall back to the file's mtime, which is then
        remembered. Anything that is not a readable file gets the epoch.
        """
        times = self.ensure_built()

        cached = times.get(path)
        if cached is not None:
            return cached
        if not path:
            return EPOCH

        target = self.repo_dir / path
        try:
            if not target.is_file():
                return EPOCH
            mtime = target.stat().st_mtime
        except (OSError, ValueError):
            return EPOCH

        logger.warning(
            f"No git {self.kind.label} time available for {path}, defaulting to checkout time"
        )
        with self._lock:
            times[path] = mtime
        return mtime

    def count_of(self, path: str) -> int:
        self.ensure_built()
        return self._counts.get(path, 0)

    def times(self) -> Dict[str, Timestamp]:
        return dict(self.ensure_built())

    def counts(self) -> Dict[str, int]:
        self.ensure_built()
        return dict(self._counts)


class ContentDates:
    """Modification and publication times for a content tree."""

    def __init__(
        self,
        config: Optional[Config] = None,
        source: Optional[HistorySource] = None,
        store: Optional[CacheStore] = None,
        modification: Optional[TimestampIndex] = None,
        publication: Optional[TimestampIndex] = None,
    ):
        """
        Initialize the lookups. Nothing is fetched until the first query.

        Args:
            config: Settings; defaults to the current directory
            source: History source; defaults to git in ``config.repo_dir``
            store: Snapshot store; defaults to ``config.metadata_dir`` unless
                caching is disabled
            modification: Pre-built modification index to use as is
            publication: Pre-built publication index to use as is
        """
        self.config = config or Config()
        repo_dir = self.config.repo_dir

        # No history access is needed when both indices are supplied
        self.fetcher: Optional[IncrementalFetcher] = None
        if modification is None or publication is None:
            if source is None:
                source = GitHistorySource(
                    repo_dir,
                    ref=self.config.ref,
                    sentinel=self.config.sentinel,
                    timeout=self.config.git_timeout,
                )
            if store is None and self.config.use_cache:
                store = CacheStore(self.config.resolved_metadata_dir())
            self.fetcher = IncrementalFetcher(source, store)

        self.modification = modification or TimestampIndex(
            HistoryKind.MODIFICATION,
            self.fetcher,
            ModificationLogParser(self.config.sentinel),
            repo_dir,
        )
        self.publication = publication or TimestampIndex(
            HistoryKind.PUBLICATION,
            self.fetcher,
            PublicationLogParser(self.config.sentinel, self.config.content_extensions),
            repo_dir,
        )

    @classmethod
    def from_indices(
        cls,
        modification: ModificationIndex,
        publication: PublicationIndex,
        config: Optional[Config] = None,
    ) -> "ContentDates":
        """Build lookups over indices that were parsed elsewhere."""
        config = config or Config()
        return cls(
            config,
            modification=TimestampIndex.from_index(
                HistoryKind.MODIFICATION, modification, config.repo_dir
            ),
            publication=TimestampIndex.from_index(
                HistoryKind.PUBLICATION, publication, config.repo_dir
            ),
        )

    def index(self, kind: HistoryKind) -> TimestampIndex:
        if kind is HistoryKind.MODIFICATION:
            return self.modification
        return self.publication

    def time_of(self, kind: HistoryKind, path: str) -> Timestamp:
        return self.index(kind).time_of(path)

    def modification_time(self, path: str) -> Timestamp:
        return self.modification.time_of(path)

    def publication_time(self, path: str) -> Timestamp:
        return self.publication.time_of(path)

    def modification_count(self, path: str) -> int:
        return self.modification.count_of(path)

    def modification_times(self) -> Dict[str, Timestamp]:
        return self.modification.times()

    def publication_times(self) -> Dict[str, Timestamp]:
        return self.publication.times()

    def modification_counts(self) -> Dict[str, int]:
        return self.modification.counts()

    def recent(self, kind: HistoryKind, since: Timestamp) -> List[Tuple[str, Timestamp]]:
        """Paths whose ``kind`` time is at or after ``since``, newest first."""
        matches = [
            (path, timestamp)
            for path, timestamp in self.index(kind).times().items()
            if timestamp >= since
        ]
        matches.sort(key=lambda item: (-item[1], item[0]))
        return matches

    def refresh(
        self, kinds: Iterable[HistoryKind] = tuple(HistoryKind)
    ) -> Dict[HistoryKind, Optional[CacheSnapshot]]:
        """Bring the snapshots up to date without building any index."""
        if self.fetcher is None:
            raise RuntimeError("Lookups built from parsed indices cannot refresh history")
        return {kind: self.fetcher.refresh(kind) for kind in kinds}
