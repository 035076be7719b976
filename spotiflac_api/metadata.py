"""
Spotify track identification and metadata lookup.

Accepts the forms users paste (bare IDs, spotify:track: URIs and
open.spotify.com links, including intl-xx paths) and fetches the
descriptive metadata every provider needs for tagging and naming.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
import logging
import re

import httpx
from pydantic import BaseModel, ValidationError

from .errors import InvalidTrackError, MetadataError

logger = logging.getLogger(__name__)

SPOTIFY_TRACK_REGEX = re.compile(
    r"(?i)(?:spotify:track:|https?://open\.spotify\.com/(?:intl-[^/]+/)?track/)([A-Za-z0-9]{22})"
)
SPOTIFY_ID_REGEX = re.compile(r"^[A-Za-z0-9]{22}$")


def extract_spotify_track_id(value: str) -> str:
    """
    Extract the 22-character track ID from a Spotify URL, URI or bare ID.

    Raises:
        InvalidTrackError: If no track ID can be found
    """
    value = (value or "").strip()
    if not value:
        raise InvalidTrackError("spotify URL is empty")

    if SPOTIFY_ID_REGEX.match(value):
        return value

    match = SPOTIFY_TRACK_REGEX.search(value)
    if not match:
        raise InvalidTrackError("invalid Spotify track URL or ID")
    return match.group(1)


def spotify_track_url(spotify_id: str) -> str:
    """Canonical open.spotify.com URL for a track ID."""
    return f"https://open.spotify.com/track/{spotify_id}"


class TrackMetadata(BaseModel):
    """Descriptive metadata for one track."""
    spotify_id: str = ""
    artists: str = ""
    name: str = ""
    album_name: str = ""
    album_artist: str = ""
    images: str = ""
    release_date: str = ""
    track_number: int = 0
    total_tracks: int = 0
    disc_number: int = 0
    total_discs: int = 0
    copyright: str = ""
    publisher: str = ""


def parse_track_response(payload: Dict[str, Any]) -> TrackMetadata:
    """
    Parse a {"track": {...}} metadata payload.

    Raises:
        MetadataError: If the payload is malformed or has no track name
    """
    if not isinstance(payload, dict):
        raise MetadataError("unexpected metadata payload")
    try:
        track = TrackMetadata.model_validate(payload.get("track") or {})
    except ValidationError as e:
        raise MetadataError(f"invalid track metadata: {e.error_count()} field error(s)") from e

    if not track.name.strip():
        raise MetadataError("spotify metadata did not include track name")
    return track


class MetadataClient:
    """
    Fetches track metadata from the configured metadata endpoint.

    The endpoint is called as GET {metadata_url}?url=<spotify track url> and
    must answer with {"track": {...}}.
    """

    def __init__(self, metadata_url: str, timeout_s: float = 45.0, client: Optional[httpx.Client] = None):
        self.metadata_url = metadata_url
        self.timeout_s = timeout_s
        self._client = client

    def fetch(self, spotify_url: str) -> TrackMetadata:
        """
        Fetch metadata for a Spotify track URL.

        Raises:
            MetadataError: On transport errors, non-2xx responses or bad payloads
        """
        if not self.metadata_url:
            raise MetadataError("failed to fetch Spotify metadata: metadata endpoint not configured")

        logger.info(f"[METADATA] Fetching: {spotify_url}")
        try:
            if self._client is not None:
                r = self._client.get(self.metadata_url, params={"url": spotify_url}, timeout=self.timeout_s)
            else:
                with httpx.Client(timeout=self.timeout_s) as client:
                    r = client.get(self.metadata_url, params={"url": spotify_url})
            r.raise_for_status()
            payload = r.json()
        except httpx.TimeoutException as e:
            logger.error(f"[METADATA] Timeout after {self.timeout_s}s: {spotify_url}")
            raise MetadataError(f"failed to fetch Spotify metadata: timeout after {self.timeout_s}s") from e
        except httpx.HTTPError as e:
            logger.error(f"[METADATA] Request failed: {e}")
            raise MetadataError(f"failed to fetch Spotify metadata: {e}") from e
        except ValueError as e:
            raise MetadataError(f"failed to fetch Spotify metadata: invalid JSON: {e}") from e

        try:
            track = parse_track_response(payload)
        except MetadataError as e:
            raise MetadataError(f"failed to fetch Spotify metadata: {e}") from e

        logger.info(f"[METADATA] {track.name} - {track.artists}")
        return track
