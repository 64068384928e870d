"""
Cache store for raw history snapshots.

A snapshot is the raw log text for one history kind, persisted under the
metadata directory as ``<prefix>-<revision>.txt`` where ``revision`` is the
commit the log was computed through. At most one snapshot per kind is kept;
writes go through a temporary file and an atomic rename before older
snapshots are removed.
"""

import contextlib
import fcntl
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, List, Optional

from .history_source import HistoryKind

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".txt"


class CacheStoreError(RuntimeError):
    """Raised when a snapshot cannot be written."""

    pass


@dataclass(frozen=True)
class CacheSnapshot:
    """A persisted history snapshot."""

    kind: HistoryKind
    revision: str
    path: Path

    def read_text(self) -> str:
        return self.path.read_text(encoding="utf-8")


class CacheStore:
    """Persists and discovers history snapshots in a metadata directory."""

    def __init__(self, metadata_dir: Path):
        """
        Initialize the cache store.

        Args:
            metadata_dir: Directory holding the snapshot artifacts
        """
        self.metadata_dir = Path(metadata_dir)

    def artifact_path(self, kind: HistoryKind, revision: str) -> Path:
        return self.metadata_dir / f"{kind.cache_prefix}-{revision}{SNAPSHOT_SUFFIX}"

    def list_snapshots(self, kind: HistoryKind) -> List[CacheSnapshot]:
        """List every snapshot of ``kind``, newest first.

        Newest means most recently modified, ties broken by file name so the
        order is deterministic.
        """
        if not self.metadata_dir.is_dir():
            return []

        prefix = f"{kind.cache_prefix}-"
        candidates = []
        for path in self.metadata_dir.glob(f"{prefix}*{SNAPSHOT_SUFFIX}"):
            revision = path.name[len(prefix) : -len(SNAPSHOT_SUFFIX)]
            if not revision or not path.is_file():
                continue
            try:
                mtime = path.stat().st_mtime_ns
            except OSError:
                # Removed by a concurrent rotation
                continue
            candidates.append((mtime, path.name, CacheSnapshot(kind, revision, path)))

        candidates.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [snapshot for _, _, snapshot in candidates]

    def discover(self, kind: HistoryKind) -> Optional[CacheSnapshot]:
        """Return the snapshot for ``kind``, or None when there is none.

        Several snapshots only coexist after an interrupted rotation; the
        newest one is returned.
        """
        snapshots = self.list_snapshots(kind)
        if not snapshots:
            return None
        if len(snapshots) > 1:
            logger.warning(
                f"Found {len(snapshots)} {kind.label} snapshots in "
                f"{self.metadata_dir}, using {snapshots[0].path.name}"
            )
        return snapshots[0]

    def save(self, kind: HistoryKind, revision: str, text: str) -> CacheSnapshot:
        """
        Write a new snapshot and remove the ones it supersedes.

        Uses atomic write pattern:
        1. Write to temporary file
        2. Sync to disk
        3. Atomic rename onto the artifact name
        4. Remove every other snapshot of the same kind

        Args:
            kind: History kind of the snapshot
            revision: Revision id the text was computed through
            text: Raw log text

        Returns:
            The written snapshot

        Raises:
            CacheStoreError: If the snapshot could not be written
        """
        self.metadata_dir.mkdir(parents=True, exist_ok=True)
        target = self.artifact_path(kind, revision)

        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(self.metadata_dir), prefix=f".{kind.cache_prefix}-", suffix=".tmp"
        )
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, str(target))
        except Exception as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise CacheStoreError(f"Failed to save {kind.label} snapshot: {e}")

        snapshot = CacheSnapshot(kind, revision, target)
        logger.info(f"Saved {kind.label} snapshot {target.name}")
        self._remove_superseded(snapshot)
        return snapshot

    def _remove_superseded(self, current: CacheSnapshot) -> None:
        for snapshot in self.list_snapshots(current.kind):
            if snapshot.path == current.path:
                continue
            try:
                snapshot.path.unlink()
                logger.debug(f"Removed superseded snapshot {snapshot.path.name}")
            except FileNotFoundError:
                pass

    @contextlib.contextmanager
    def lock(self, kind: HistoryKind) -> Generator[None, None, None]:
        """Hold an exclusive lock while regenerating ``kind``'s snapshot.

        Uses fcntl.flock() for cross-process coordination. Blocks if another
        process holds the lock.
        """
        self.metadata_dir.mkdir(parents=True, exist_ok=True)
        lock_file = self.metadata_dir / f".{kind.cache_prefix}.lock"
        lock_file.touch(exist_ok=True)

        with open(lock_file, "r") as lock_f:
            try:
                fcntl.flock(lock_f.fileno(), fcntl.LOCK_EX)
                logger.debug(f"Acquired snapshot lock: {lock_file}")
                yield
            finally:
                fcntl.flock(lock_f.fileno(), fcntl.LOCK_UN)
                logger.debug(f"Released snapshot lock: {lock_file}")
