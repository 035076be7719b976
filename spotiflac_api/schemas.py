"""
Pydantic schemas for the REST API.
Defines request bodies and JSON response envelopes.
"""

from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional
from datetime import datetime


class AttemptModel(BaseModel):
    """One provider attempt; error is omitted on success."""
    service: str
    error: Optional[str] = None


class CreateDownloadRequest(BaseModel):
    """Body of POST /v1/download-url. Unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid", strict=True)

    spotify_url: str = ""
    services: Optional[List[str]] = None
    ttl_seconds: Optional[int] = None


class CreateDownloadResponse(BaseModel):
    """Response of POST /v1/download-url."""
    ok: bool
    spotify_id: Optional[str] = None
    service: Optional[str] = None
    filename: Optional[str] = None
    download_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    attempts: Optional[List[AttemptModel]] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope shared by every route."""
    ok: bool = False
    error: str
    attempts: Optional[List[AttemptModel]] = None


def envelope(model: BaseModel) -> Dict[str, Any]:
    """Serialize a response model, dropping unset optional fields and empty attempt lists."""
    data = model.model_dump(mode="json", exclude_none=True)
    if not data.get("attempts"):
        data.pop("attempts", None)
    return data
