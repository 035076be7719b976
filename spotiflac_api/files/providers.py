"""
Providers: Per-Service Track Downloaders

A provider is any callable (spotify_id, output_dir, metadata) -> file path
that raises on failure. The fallback orchestrator treats every provider the
same way; quality, format and naming options are provider-internal.

HttpTrackProvider downloads from a service-specific upstream:

    GET {api_url}/track?spotify_id=...&quality=...

The response body is streamed to output_dir. The filename comes from the
Content-Disposition header when present, otherwise from the metadata
("<title> - <artists>.flac").
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, TYPE_CHECKING
import logging
import re

import requests

from ..errors import ProviderError, ProviderUnavailableError

if TYPE_CHECKING:
    from ..config import Settings
    from ..metadata import TrackMetadata

logger = logging.getLogger(__name__)

VALID_SERVICES = ("tidal", "qobuz", "amazon")
DEFAULT_SERVICES = ["tidal", "qobuz", "amazon"]

# Quality/format each upstream expects
SERVICE_QUALITY = {
    "tidal": "LOSSLESS",
    "qobuz": "6",
    "amazon": "flac",
}

FILENAME_FORMAT = "title-artist"
CHUNK_SIZE = 64 * 1024


class Provider(Protocol):
    """Downloads one track into output_dir and returns the file path."""

    def __call__(self, spotify_id: str, output_dir: str, metadata: "TrackMetadata") -> str:
        ...


def normalize_service_order(services: Optional[Iterable[str]]) -> List[str]:
    """
    Normalize a requested service order.

    Names are trimmed and lower-cased; unknown names and repeats are dropped
    (first occurrence wins). An empty or missing list yields the default
    order. The result may be empty if nothing valid was requested.
    """
    if not services:
        return list(DEFAULT_SERVICES)

    normalized: List[str] = []
    for service in services:
        service = (service or "").strip().lower()
        if service not in VALID_SERVICES or service in normalized:
            continue
        normalized.append(service)
    return normalized


def filename_from_content_disposition(header: Optional[str]) -> Optional[str]:
    """
    Extract filename from a Content-Disposition header if present.

    Examples:
        Content-Disposition: attachment; filename="song.flac"
        Content-Disposition: attachment; filename*=UTF-8''song.flac
    """
    if not header:
        return None
    match = re.search(r'filename\*?=(?:UTF-8\'\')?["\']?([^"\';]+)["\']?', header, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    return None


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safe filesystem storage."""
    safe = re.sub(r'[\\/:*?"<>|\x00]', "_", filename).strip().strip(".")
    if len(safe) > 200:
        ext = Path(safe).suffix
        safe = safe[:200 - len(ext)] + ext
    return safe or "track.flac"


def build_filename(metadata: "TrackMetadata", fmt: str = FILENAME_FORMAT, ext: str = ".flac") -> str:
    """Build a filename from metadata using the given naming scheme."""
    title = metadata.name.strip() or metadata.spotify_id or "track"
    artists = metadata.artists.strip()
    if fmt == "artist-title" and artists:
        stem = f"{artists} - {title}"
    elif fmt == "title-artist" and artists:
        stem = f"{title} - {artists}"
    else:
        stem = title
    return sanitize_filename(stem + ext)


class HttpTrackProvider:
    """
    Provider backed by an HTTP upstream.

    Usage:
        tidal = HttpTrackProvider("tidal", "https://tidal-proxy.internal", quality="LOSSLESS")
        path = tidal(spotify_id, "/tmp/work/tidal", metadata)
    """

    def __init__(
        self,
        service: str,
        api_url: Optional[str],
        *,
        quality: str,
        filename_format: str = FILENAME_FORMAT,
        timeout_s: float = 120.0,
        session: Optional[requests.Session] = None,
    ):
        self.service = service
        self.api_url = (api_url or "").rstrip("/")
        self.quality = quality
        self.filename_format = filename_format
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    def __call__(self, spotify_id: str, output_dir: str, metadata: "TrackMetadata") -> str:
        if not self.api_url:
            raise ProviderUnavailableError(f"{self.service} upstream not configured")

        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)

        url = f"{self.api_url}/track"
        params = {
            "spotify_id": spotify_id,
            "quality": self.quality,
            "filename_format": self.filename_format,
        }
        logger.info(f"[PROVIDER] {self.service}: fetching {spotify_id} ({self.quality})")

        try:
            with self._session.get(url, params=params, stream=True, timeout=self.timeout_s) as r:
                if not r.ok:
                    raise ProviderError(f"HTTP {r.status_code}")

                name = filename_from_content_disposition(r.headers.get("Content-Disposition"))
                filename = sanitize_filename(name) if name else build_filename(metadata, self.filename_format)
                target = out / filename

                if target.exists() and target.stat().st_size > 0:
                    logger.info(f"[PROVIDER] {self.service}: already present {target}")
                    return f"EXISTS:{target}"

                written = 0
                with target.open("wb") as f:
                    for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)

        except requests.exceptions.Timeout as e:
            logger.error(f"[PROVIDER] {self.service}: timeout after {self.timeout_s}s")
            raise ProviderError(f"Timeout after {self.timeout_s}s") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"[PROVIDER] {self.service}: connection error: {e}")
            raise ProviderError(f"Connection Error: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(str(e)) from e

        logger.info(f"[PROVIDER] {self.service}: wrote {written} bytes to {target}")
        return str(target)


def unsupported_provider(service: str) -> Provider:
    """Provider that always fails for an unknown service name."""

    def _provider(spotify_id: str, output_dir: str, metadata: "TrackMetadata") -> str:
        raise ProviderError(f"unsupported service: {service}")

    return _provider


def build_providers(settings: "Settings") -> Dict[str, Provider]:
    """Build the HTTP provider for every known service from settings."""
    return {
        service: HttpTrackProvider(
            service,
            settings.provider_urls.get(service),
            quality=SERVICE_QUALITY[service],
            timeout_s=settings.provider_timeout.total_seconds(),
        )
        for service in VALID_SERVICES
    }


def providers_for(
    order: Iterable[str],
    registry: Dict[str, Provider],
) -> List[Tuple[str, Provider]]:
    """Pair each service in order with its provider, keeping the order."""
    pairs: List[Tuple[str, Provider]] = []
    for service in order:
        pairs.append((service, registry.get(service) or unsupported_provider(service)))
    return pairs
