"""
Download Store: Ephemeral Token -> File Registry

Maps opaque download tokens to files produced by the fallback orchestrator.
Entries live in memory only and expire after a TTL; a background sweeper
removes expired entries together with their files.

Concurrency:
- Lookups take a shared read lock and may run in parallel
- Inserts and deletes take the exclusive write lock
- Filesystem cleanup always happens outside the lock

Cleanup contract:
- Removing a file (and its now-empty parent directories) is attempted once,
  never retried, and never raised to the caller. A removed entry whose file
  could not be deleted is an accepted terminal state.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional
import logging
import os
import threading

from ..errors import TokenCollisionError
from .tokens import generate_token

logger = logging.getLogger(__name__)

# Parent directories removed with an entry's file: the per-service dir and
# the per-request work dir.
CLEANUP_PARENT_LEVELS = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DownloadEntry:
    """
    One downloaded file available for redemption.

    Attributes:
        token: Opaque URL-safe token, issued once
        path: Filesystem path of the downloaded file
        service: Provider that produced the file
        spotify_id: Spotify track ID the file corresponds to
        created_at: When the entry was registered (UTC)
        expires_at: created_at + ttl (UTC)
    """
    token: str
    path: str
    service: str
    spotify_id: str
    created_at: datetime
    expires_at: datetime

    @property
    def filename(self) -> str:
        return os.path.basename(self.path)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once now has reached expires_at."""
        return (now or _utcnow()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "token": self.token,
            "path": self.path,
            "service": self.service,
            "spotify_id": self.spotify_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class ReadWriteLock:
    """
    Readers/writer lock built on a Condition.

    Waiting writers block new readers so a steady stream of lookups cannot
    starve inserts and deletes.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


def remove_artifact(path: str, parent_levels: int = CLEANUP_PARENT_LEVELS) -> None:
    """
    Best-effort removal of a file and its empty parent directories.

    Each step is attempted once. Failures (missing file, non-empty
    directory, permissions) are logged at DEBUG and otherwise ignored.
    """
    target = Path(path)
    try:
        target.unlink()
    except OSError as e:
        logger.debug(f"[STORE] Could not remove {target}: {e}")

    parent = target.parent
    for _ in range(parent_levels):
        try:
            parent.rmdir()
        except OSError as e:
            logger.debug(f"[STORE] Could not remove directory {parent}: {e}")
        parent = parent.parent


class DownloadStore:
    """
    Concurrency-safe registry of downloadable files keyed by token.

    Usage:
        store = DownloadStore()
        entry = store.put("/tmp/spotiflac-rest-x/tidal/song.flac", "tidal", spotify_id, timedelta(hours=2))

        found = store.get(entry.token)
        if found and not found.is_expired():
            serve(found.path)

        store.start_sweeper(timedelta(minutes=1))
        ...
        store.stop_sweeper()
    """

    def __init__(
        self,
        *,
        token_factory: Callable[[], str] = generate_token,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize an empty store.

        Args:
            token_factory: Produces new tokens (raises TokenGenerationError on failure)
            clock: Returns the current UTC time
        """
        self._entries: Dict[str, DownloadEntry] = {}
        self._lock = ReadWriteLock()
        self._token_factory = token_factory
        self._clock = clock

        self._sweeper: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def put(self, path: str, service: str, spotify_id: str, ttl: timedelta) -> DownloadEntry:
        """
        Register a file under a fresh token.

        Args:
            path: Downloaded file; owned by the entry until deletion
            service: Provider that produced it
            spotify_id: Spotify track ID
            ttl: Lifetime of the token

        Returns:
            The new DownloadEntry

        Raises:
            TokenGenerationError: If no token could be generated (nothing is stored)
            TokenCollisionError: If the generated token is already registered
        """
        token = self._token_factory()
        created_at = self._clock()
        entry = DownloadEntry(
            token=token,
            path=path,
            service=service,
            spotify_id=spotify_id,
            created_at=created_at,
            expires_at=created_at + ttl,
        )

        with self._lock.write_locked():
            if token in self._entries:
                raise TokenCollisionError("generated token already registered")
            self._entries[token] = entry

        logger.info(
            f"[STORE] Registered {spotify_id} from {service} "
            f"(expires {entry.expires_at.isoformat()})"
        )
        return entry

    def get(self, token: str) -> Optional[DownloadEntry]:
        """
        Look up an entry by token.

        Expired entries are still returned until swept; callers decide
        whether an expired entry is "gone" or simply unknown.
        """
        with self._lock.read_locked():
            return self._entries.get(token)

    def delete(self, token: str) -> bool:
        """
        Remove an entry and release its file.

        The mapping is removed under the write lock; the file and up to two
        levels of now-empty parent directories are removed afterwards on a
        best-effort basis. Release is attempted, never guaranteed and never
        retried; filesystem errors are not raised. Deleting an unknown or
        already-deleted token is a no-op.

        Returns:
            True if an entry was removed, False if the token was unknown
        """
        with self._lock.write_locked():
            entry = self._entries.pop(token, None)

        if entry is None:
            return False

        remove_artifact(entry.path)
        logger.info(f"[STORE] Deleted entry for {entry.spotify_id} ({entry.service})")
        return True

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Delete every expired entry.

        Expired tokens are collected under the read lock, then deleted one
        at a time so lookups of live tokens are never held up for longer
        than a single map mutation.

        Returns:
            Number of entries this sweep removed
        """
        now = now or self._clock()
        with self._lock.read_locked():
            expired = [t for t, e in self._entries.items() if e.is_expired(now)]

        removed = 0
        for token in expired:
            if self.delete(token):
                removed += 1

        if removed:
            logger.info(f"[STORE] Swept {removed} expired entries")
        return removed

    def run_sweep_loop(self, interval: timedelta, stop_event: threading.Event) -> None:
        """
        Sweep once per interval until stop_event is set.

        Blocks the calling thread. Returns within one interval of the event
        being set; a sweep already in progress finishes its batch first.
        """
        seconds = interval.total_seconds()
        logger.info(f"[STORE] Sweep loop started (interval={seconds:g}s)")
        while not stop_event.wait(seconds):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"[STORE] Sweep failed: {e}")
        logger.info("[STORE] Sweep loop stopped")

    def start_sweeper(self, interval: timedelta) -> threading.Thread:
        """Run run_sweep_loop in a daemon thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return self._sweeper

        self._stop_event = threading.Event()
        self._sweeper = threading.Thread(
            target=self.run_sweep_loop,
            args=(interval, self._stop_event),
            name="download-store-sweeper",
            daemon=True,
        )
        self._sweeper.start()
        return self._sweeper

    def stop_sweeper(self, timeout: Optional[float] = None) -> None:
        """Signal the sweeper thread and wait for it to exit."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
        self._sweeper = None
        self._stop_event = None

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        now = self._clock()
        with self._lock.read_locked():
            total = len(self._entries)
            expired = sum(1 for e in self._entries.values() if e.is_expired(now))

        return {
            "entry_count": total,
            "expired_pending": expired,
            "sweeper_running": bool(self._sweeper and self._sweeper.is_alive()),
        }
