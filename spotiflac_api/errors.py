"""
Errors raised by the SpotiFLAC REST API.

Every service error derives from SpotiflacError so the HTTP layer can map
them to the JSON error envelope in one place.
"""

from __future__ import annotations

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .files.fallback import Attempt


class SpotiflacError(Exception):
    """Base class for service errors."""


class ConfigError(SpotiflacError):
    """Raised when an environment setting cannot be parsed."""


class InvalidTrackError(SpotiflacError):
    """Raised when input is not a Spotify track URL, URI or ID."""


class MetadataError(SpotiflacError):
    """Raised when track metadata cannot be fetched or is incomplete."""


class TokenGenerationError(SpotiflacError):
    """Raised when the OS entropy source cannot produce a token."""


class TokenCollisionError(SpotiflacError):
    """Raised if a freshly generated token is already registered."""


class ProviderError(SpotiflacError):
    """Raised by a provider that could not produce a file."""


class ProviderUnavailableError(ProviderError):
    """Raised by a provider with no upstream configured."""


class AllProvidersFailedError(SpotiflacError):
    """
    Raised when every provider in the fallback order failed.

    Attributes:
        attempts: Ordered attempt log, one entry per provider tried
        services: The service order that was tried
    """

    def __init__(self, attempts: List["Attempt"], services: Optional[List[str]] = None):
        self.attempts = list(attempts)
        self.services = list(services or [])
        super().__init__(f"failed in all services: {' -> '.join(self.services)}")
