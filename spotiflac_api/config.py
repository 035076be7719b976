"""
Runtime configuration from environment variables.

A .env file in the project root is loaded first (see load_env) so local
development does not need exported variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional
import os
import re

from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_PORT = 8080
DEFAULT_TTL = timedelta(hours=2)
MAX_TTL = timedelta(hours=24)
DEFAULT_CLEANUP_INTERVAL = timedelta(minutes=1)
DEFAULT_METADATA_TIMEOUT = timedelta(seconds=45)
DEFAULT_PROVIDER_TIMEOUT = timedelta(seconds=120)
DEFAULT_LOG_FILE = "spotiflac_api.log"
MAX_BODY_BYTES = 1 << 20

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(raw: str) -> timedelta:
    """
    Parse a duration such as "2h", "90m", "1h30m" or "45s".

    A bare number is read as seconds.

    Raises:
        ValueError: If the string is not a duration
    """
    text = (raw or "").strip()
    if not text:
        raise ValueError("empty duration")

    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration {raw!r}")
    return timedelta(seconds=sign * seconds)


@dataclass(frozen=True)
class Settings:
    """
    Service settings.

    Attributes:
        port: Listen port
        base_url: Public base URL used in download links ("" = derive from request)
        download_ttl: Default lifetime of a download token
        cleanup_interval: How often expired tokens are swept
        metadata_url: Track metadata endpoint
        metadata_timeout: Timeout for metadata lookups
        provider_urls: Upstream base URL per service
        provider_timeout: Timeout for each provider's HTTP request
        log_file: JSON log file path ("" disables file logging)
    """
    port: int = DEFAULT_PORT
    base_url: str = ""
    download_ttl: timedelta = DEFAULT_TTL
    cleanup_interval: timedelta = DEFAULT_CLEANUP_INTERVAL
    metadata_url: str = ""
    metadata_timeout: timedelta = DEFAULT_METADATA_TIMEOUT
    provider_urls: Dict[str, str] = field(default_factory=dict)
    provider_timeout: timedelta = DEFAULT_PROVIDER_TIMEOUT
    log_file: str = DEFAULT_LOG_FILE


def _positive_duration(env: Mapping[str, str], key: str, default: timedelta) -> timedelta:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        parsed = parse_duration(raw)
    except ValueError as e:
        raise ConfigError(f"invalid {key} {raw!r}: {e}") from e
    if parsed <= timedelta(0):
        raise ConfigError(f"invalid {key} {raw!r}: must be > 0")
    return parsed


def load_env(env_path: Optional[Path] = None) -> None:
    """Load .env from the project root (parent of the package) without overriding real env vars."""
    load_dotenv(env_path or Path(__file__).parent.parent / ".env")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Raises:
        ConfigError: If PORT or a duration variable is invalid
    """
    env = os.environ if env is None else env

    raw_port = (env.get("PORT") or "").strip()
    try:
        port = int(raw_port) if raw_port else DEFAULT_PORT
    except ValueError as e:
        raise ConfigError(f"invalid PORT {raw_port!r}") from e

    provider_urls = {}
    for service in ("tidal", "qobuz", "amazon"):
        url = (env.get(f"{service.upper()}_API_URL") or "").strip()
        if url:
            provider_urls[service] = url

    return Settings(
        port=port,
        base_url=(env.get("BASE_URL") or "").strip(),
        download_ttl=_positive_duration(env, "DOWNLOAD_TTL", DEFAULT_TTL),
        cleanup_interval=_positive_duration(env, "CLEANUP_INTERVAL", DEFAULT_CLEANUP_INTERVAL),
        metadata_url=(env.get("METADATA_URL") or "").strip(),
        metadata_timeout=_positive_duration(env, "METADATA_TIMEOUT", DEFAULT_METADATA_TIMEOUT),
        provider_urls=provider_urls,
        provider_timeout=_positive_duration(env, "PROVIDER_TIMEOUT", DEFAULT_PROVIDER_TIMEOUT),
        log_file=env.get("LOG_FILE", DEFAULT_LOG_FILE).strip(),
    )


def effective_ttl(default: timedelta, ttl_seconds: Optional[int]) -> timedelta:
    """Apply a per-request TTL override (only if > 0), capped at MAX_TTL."""
    if ttl_seconds and ttl_seconds > 0:
        return timedelta(seconds=min(ttl_seconds, int(MAX_TTL.total_seconds())))
    return default
