"""
Incremental history fetching.

Git history older than the last snapshot never changes, so the log for the
commits made since a snapshot can be placed in front of the snapshot text to
reproduce the full, most-recent-first log at a fraction of the cost.
"""

import logging
from typing import Optional, Tuple

from .cache_store import CacheSnapshot, CacheStore
from .history_source import HistoryKind, HistorySource

logger = logging.getLogger(__name__)


def merge_logs(newer: str, older: str) -> str:
    """Prepend ``newer`` log text to ``older`` log text."""
    if newer and older and not newer.endswith("\n"):
        newer += "\n"
    return newer + older


class IncrementalFetcher:
    """Resolves the complete log text for a history kind."""

    def __init__(self, source: HistorySource, store: Optional[CacheStore] = None):
        """
        Initialize the fetcher.

        Args:
            source: Where raw history comes from
            store: Snapshot store; None disables caching entirely
        """
        self.source = source
        self.store = store

    def resolve(self, kind: HistoryKind) -> str:
        """Return the full log text for ``kind``, updating the snapshot."""
        text, _ = self._resolve(kind)
        return text

    def refresh(self, kind: HistoryKind) -> Optional[CacheSnapshot]:
        """Bring the snapshot for ``kind`` up to date and return it."""
        _, snapshot = self._resolve(kind)
        return snapshot

    def _resolve(self, kind: HistoryKind) -> Tuple[str, Optional[CacheSnapshot]]:
        if self.store is None:
            return self.source.fetch_log(kind), None

        with self.store.lock(kind):
            previous = self.store.discover(kind)
            head = self.source.head_revision()

            if (
                previous is not None
                and previous.revision != head
                and not self.source.is_ancestor(previous.revision, head)
            ):
                logger.warning(
                    f"{kind.label.capitalize()} snapshot {previous.path.name} is not "
                    f"in the history of {head}, fetching full history"
                )
                previous = None

            if previous is None:
                logger.info(f"Fetching full {kind.label} history through {head}")
                text = self.source.fetch_log(kind, until=head)
                return text, self.store.save(kind, head, text)

            cached = previous.read_text()
            logger.info(
                f"Using cached {kind.label} history through {previous.revision}"
            )
            if previous.revision == head:
                return cached, previous

            # Bounded by head so the snapshot holds exactly what its name says
            newer = self.source.fetch_log(kind, since=previous.revision, until=head)
            text = merge_logs(newer, cached)
            return text, self.store.save(kind, head, text)
