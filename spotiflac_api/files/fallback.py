"""
Fallback Orchestrator: Ordered Provider Fallback

Tries providers strictly in the caller's order until one produces a
non-empty file:

1. Each provider downloads into its own directory under the work dir
   (work_dir/<service>), so providers never clobber each other's files
2. Provider exceptions are recorded and the next provider is tried
3. A reported file that is missing or empty counts as a failure
4. A failed provider's directory is removed, so after a success the work
   dir holds only the winning file
5. The first valid file wins; later providers are never called

Providers run one at a time in the calling thread. There is no parallel
fan-out: later (costlier) providers are only paid for when earlier ones fail.

Every run returns the full attempt log so callers can report why each
provider failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
import os
import shutil
import tempfile

from ..errors import AllProvidersFailedError, SpotiflacError
from ..metadata import MetadataClient, TrackMetadata, extract_spotify_track_id, spotify_track_url
from .providers import Provider

logger = logging.getLogger(__name__)

EXISTS_PREFIX = "EXISTS:"
WORK_DIR_PREFIX = "spotiflac-rest-"


@dataclass(frozen=True)
class Attempt:
    """
    Outcome of one provider attempt.

    Attributes:
        service: Provider label
        error: Failure reason, None on success
    """
    service: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization (error omitted on success)."""
        data: Dict[str, Any] = {"service": self.service}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class FallbackResult:
    """
    Successful fallback resolution.

    Attributes:
        path: Downloaded file
        service: Provider that produced it
        attempts: Every attempt made, ending with the successful one
    """
    path: str
    service: str
    attempts: List[Attempt] = field(default_factory=list)


def _validate_download(filename: str) -> Optional[str]:
    """Return a failure reason for a reported download, or None if usable."""
    if not filename:
        return "empty file path returned"
    try:
        size = os.stat(filename).st_size
    except OSError as e:
        return f"downloaded file missing: {e}"
    if size <= 0:
        return "downloaded file is empty"
    return None


def _discard(service_dir: str) -> None:
    """Remove whatever a failed provider left behind (dirs, partial files)."""
    shutil.rmtree(service_dir, ignore_errors=True)


def resolve_with_fallback(
    spotify_id: str,
    providers: Sequence[Tuple[str, Provider]],
    metadata: TrackMetadata,
    work_dir: str,
) -> FallbackResult:
    """
    Try providers in order until one yields a non-empty file.

    Args:
        spotify_id: Spotify track ID
        providers: (service, provider) pairs in preference order
        metadata: Track metadata handed to every provider
        work_dir: Per-request directory; each provider writes to work_dir/<service>

    Returns:
        FallbackResult for the first provider whose file passed validation

    Raises:
        AllProvidersFailedError: If every provider failed (or none were given).
            The work dir is left for the caller to remove.
    """
    attempts: List[Attempt] = []
    services = [service for service, _ in providers]

    for service, provider in providers:
        service_dir = os.path.join(work_dir, service)
        logger.info(f"[FALLBACK] Trying {service} for {spotify_id}")

        try:
            filename = provider(spotify_id, service_dir, metadata)
        except Exception as e:
            logger.warning(f"[FALLBACK] {service} failed: {e}")
            attempts.append(Attempt(service=service, error=str(e)))
            _discard(service_dir)
            continue

        filename = filename or ""
        if filename.startswith(EXISTS_PREFIX):
            filename = filename[len(EXISTS_PREFIX):]

        reason = _validate_download(filename)
        if reason:
            logger.warning(f"[FALLBACK] {service} rejected: {reason}")
            attempts.append(Attempt(service=service, error=reason))
            _discard(service_dir)
            continue

        attempts.append(Attempt(service=service))
        logger.info(f"[FALLBACK] Success ({service}): {filename}")
        return FallbackResult(path=filename, service=service, attempts=attempts)

    logger.error(f"[FALLBACK] All services failed for {spotify_id}: {' -> '.join(services)}")
    raise AllProvidersFailedError(attempts, services)


@dataclass(frozen=True)
class Acquisition:
    """
    Result of a full acquisition: ID extraction, metadata lookup and fallback.

    Attributes:
        path: Downloaded file
        service: Provider that produced it
        spotify_id: Extracted Spotify track ID
        attempts: Attempt log from the fallback run
    """
    path: str
    service: str
    spotify_id: str
    attempts: List[Attempt] = field(default_factory=list)

    @property
    def filename(self) -> str:
        return Path(self.path).name


def acquire(
    spotify_input: str,
    providers: Sequence[Tuple[str, Provider]],
    metadata_client: MetadataClient,
    temp_root: Optional[str] = None,
) -> Acquisition:
    """
    Resolve a Spotify URL/ID to a downloaded file.

    Creates a uniquely named work dir for this request and removes it again
    if every provider fails. On success the work dir is owned by the file
    and released when its download entry is deleted.

    Raises:
        InvalidTrackError: If the input is not a Spotify track
        MetadataError: If metadata lookup failed
        AllProvidersFailedError: If no provider produced a file
    """
    spotify_id = extract_spotify_track_id(spotify_input)
    metadata = metadata_client.fetch(spotify_track_url(spotify_id))

    try:
        work_dir = tempfile.mkdtemp(prefix=WORK_DIR_PREFIX, dir=temp_root)
    except OSError as e:
        raise SpotiflacError(f"failed to create temp directory: {e}") from e

    try:
        result = resolve_with_fallback(spotify_id, providers, metadata, work_dir)
    except AllProvidersFailedError:
        shutil.rmtree(work_dir, ignore_errors=True)
        raise

    return Acquisition(
        path=result.path,
        service=result.service,
        spotify_id=spotify_id,
        attempts=result.attempts,
    )
