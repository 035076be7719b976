"""
Files Module: Track Acquisition and Tokenized Downloads

This module resolves a Spotify track to a local file through an ordered
chain of providers and hands the file out under a short-lived token.

Components:
- generate_token: Unguessable URL-safe download tokens
- DownloadStore: In-memory token -> file registry with TTL sweeping
- resolve_with_fallback / acquire: Ordered provider fallback with attempt log
- HttpTrackProvider: Per-service HTTP downloaders

Design Philosophy:
1. Ordered fallback: cheaper/preferred providers first, strictly one at a time
2. Ephemeral: tokens and files live only until their TTL passes
3. Best-effort cleanup: file removal is attempted once and never raised
"""

from .tokens import generate_token
from .download_store import DownloadEntry, DownloadStore, ReadWriteLock, remove_artifact
from .providers import (
    DEFAULT_SERVICES,
    VALID_SERVICES,
    HttpTrackProvider,
    Provider,
    build_providers,
    normalize_service_order,
    providers_for,
)
from .fallback import Acquisition, Attempt, FallbackResult, acquire, resolve_with_fallback

__all__ = [
    "generate_token",
    "DownloadEntry",
    "DownloadStore",
    "ReadWriteLock",
    "remove_artifact",
    "DEFAULT_SERVICES",
    "VALID_SERVICES",
    "HttpTrackProvider",
    "Provider",
    "build_providers",
    "normalize_service_order",
    "providers_for",
    "Acquisition",
    "Attempt",
    "FallbackResult",
    "acquire",
    "resolve_with_fallback",
]
