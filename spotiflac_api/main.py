"""
SpotiFLAC REST API: FastAPI Server

1. POST /v1/download-url resolves a Spotify track through the provider
   fallback chain (tidal -> qobuz -> amazon by default)
2. The downloaded file is registered in the DownloadStore under a token
3. GET /v1/download/{token} streams the file until the token expires
4. A background sweeper deletes expired tokens and their files
"""

# Load environment variables FIRST before any other imports
from .config import load_env

load_env()

import logging
import mimetypes
import os
import stat
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Dict, Optional
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pythonjsonlogger import jsonlogger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import MAX_BODY_BYTES, Settings, effective_ttl, load_settings
from .errors import (
    AllProvidersFailedError,
    SpotiflacError,
    TokenCollisionError,
    TokenGenerationError,
)
from .files import (
    DownloadStore,
    Provider,
    acquire,
    build_providers,
    normalize_service_order,
    providers_for,
    remove_artifact,
)
from .metadata import MetadataClient
from .schemas import AttemptModel, CreateDownloadRequest, CreateDownloadResponse, ErrorResponse, envelope

API_VERSION = "1"
CHUNK_SIZE = 64 * 1024
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
ENDPOINTS = ["GET /health", "POST /v1/download-url", "GET /v1/download/{token}"]

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'

    def format(self, record):
        if not isinstance(record.msg, str):
            record.msg = str(record.msg)
        color = self.COLORS.get(record.levelname, self.RESET)
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.msg = f"{color}{record.msg}{self.RESET}"
        return super().format(record)


def setup_logging(log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger.

    Console output is coloured and kept at INFO; the optional log file gets
    full-verbosity JSON records, rotated daily with 7 days kept.
    """
    logger = logging.getLogger("spotiflac_api")
    logger.setLevel(logging.DEBUG)
    logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | [%(name)s] %(message)s',
        datefmt='%H:%M:%S'
    ))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = TimedRotatingFileHandler(
            log_file, when="midnight", interval=1, backupCount=7, encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(jsonlogger.JsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(message)s %(lineno)d %(funcName)s',
            rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
        ))
        logger.addHandler(file_handler)

    return logger


logger = logging.getLogger("spotiflac_api.api")

# ============================================================================
# HELPERS
# ============================================================================

def error_json(status: int, error: str, attempts=None) -> JSONResponse:
    """Build the {"ok": false, "error": ...} envelope."""
    body = ErrorResponse(
        error=error,
        attempts=[AttemptModel(**a.to_dict()) for a in attempts] if attempts else None,
    )
    return JSONResponse(status_code=status, content=envelope(body))


def public_base_url(request: Request, base_url: str) -> str:
    """BASE_URL if configured, otherwise scheme://host of the request (honours X-Forwarded-Proto)."""
    if base_url:
        return base_url.rstrip("/")

    scheme = request.url.scheme or "http"
    forwarded_proto = (request.headers.get("x-forwarded-proto") or "").strip()
    if forwarded_proto:
        scheme = forwarded_proto

    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"


def content_type_for(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename.lower())
    return content_type or "application/octet-stream"


def open_download(path: str):
    """
    Open a stored file for streaming.

    The returned handle stays readable if the sweeper unlinks the path while
    the response is being sent.

    Returns:
        (file object, size in bytes)

    Raises:
        OSError: If the file is gone or is not a regular file
    """
    f = open(path, "rb")
    try:
        st = os.fstat(f.fileno())
        if not stat.S_ISREG(st.st_mode):
            raise IsADirectoryError(f"not a regular file: {path}")
    except OSError:
        f.close()
        raise
    return f, st.st_size


def iter_file(f, chunk_size: int = CHUNK_SIZE):
    with f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield chunk


def content_disposition(filename: str) -> str:
    """attachment header with a quoted filename; non-ASCII names also get an RFC 5987 filename*."""
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    if escaped.isascii():
        return f'attachment; filename="{escaped}"'
    fallback = escaped.encode("ascii", "replace").decode("ascii")
    return f"attachment; filename=\"{fallback}\"; filename*=utf-8''{quote(filename)}"


# ============================================================================
# FASTAPI APPLICATION
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[DownloadStore] = None,
    providers: Optional[Dict[str, Provider]] = None,
    metadata_client: Optional[MetadataClient] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Service settings (default: from environment)
        store: DownloadStore to use (default: a fresh one)
        providers: Service -> provider registry (default: HTTP providers from settings)
        metadata_client: Metadata client (default: from settings)
        configure_logging: Install console/JSON file handlers

    Raises:
        ConfigError: If settings come from an invalid environment
    """
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(settings.log_file)

    if store is None:
        store = DownloadStore()
    registry = providers if providers is not None else build_providers(settings)
    metadata_client = metadata_client or MetadataClient(
        settings.metadata_url, timeout_s=settings.metadata_timeout.total_seconds()
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("=" * 60)
        logger.info("  SPOTIFLAC REST API STARTING")
        logger.info("=" * 60)
        logger.info(f"REST API listening on http://localhost:{settings.port}")
        logger.info(f"Token TTL: {settings.download_ttl}")
        logger.info(f"Cleanup interval: {settings.cleanup_interval}")
        logger.info(f"Providers configured: {sorted(settings.provider_urls) or 'none'}")
        logger.info("=" * 60)
        store.start_sweeper(settings.cleanup_interval)
        yield
        store.stop_sweeper()
        logger.info("=" * 60)
        logger.info("  SPOTIFLAC REST API SHUTTING DOWN")
        logger.info("=" * 60)

    app = FastAPI(
        title="SpotiFLAC REST API",
        description="Spotify track to FLAC download links with provider fallback",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.providers = registry
    app.state.metadata_client = metadata_client

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next):
        if request.method == "POST":
            length = request.headers.get("content-length")
            if length and length.isdigit() and int(length) > MAX_BODY_BYTES:
                return error_json(400, "invalid JSON body")
            # chunked uploads carry no Content-Length
            body = await request.body()
            if len(body) > MAX_BODY_BYTES:
                logger.debug(f"[API] Rejected {len(body)} byte body")
                return error_json(400, "invalid JSON body")
        return await call_next(request)

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_json(404, "route not found")
        if exc.status_code == 405:
            return error_json(405, "method not allowed")
        return error_json(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        logger.debug(f"[API] Rejected body: {exc.errors()}")
        return error_json(400, "invalid JSON body")

    @app.get("/")
    async def root():
        """Service description."""
        return {
            "name": "SpotiFLAC REST API",
            "version": API_VERSION,
            "endpoints": ENDPOINTS,
        }

    @app.get("/health")
    async def health():
        """Simple health check endpoint."""
        return {"ok": True, "now": datetime.now(timezone.utc).isoformat()}

    @app.post("/v1/download-url")
    def create_download_url(req: CreateDownloadRequest, request: Request):
        """
        Resolve a Spotify track and return a tokenized download URL.

        Runs in the threadpool: the provider chain blocks for the whole
        download.
        """
        if not req.spotify_url.strip():
            return error_json(400, "spotify_url is required")

        service_order = normalize_service_order(req.services)
        if not service_order:
            return error_json(400, "no valid services in services[]")

        ttl = effective_ttl(settings.download_ttl, req.ttl_seconds)
        logger.info(f"[API] Download requested: {req.spotify_url} via {' -> '.join(service_order)}")

        try:
            acquisition = acquire(
                req.spotify_url,
                providers_for(service_order, registry),
                metadata_client,
            )
        except AllProvidersFailedError as e:
            return error_json(502, str(e), e.attempts)
        except SpotiflacError as e:
            logger.warning(f"[API] Resolution failed: {e}")
            return error_json(502, str(e))

        try:
            entry = store.put(acquisition.path, acquisition.service, acquisition.spotify_id, ttl)
        except (TokenGenerationError, TokenCollisionError) as e:
            logger.error(f"[API] Token generation failed: {e}")
            remove_artifact(acquisition.path)
            return error_json(500, "failed to generate download token")

        response = CreateDownloadResponse(
            ok=True,
            spotify_id=acquisition.spotify_id,
            service=acquisition.service,
            filename=entry.filename,
            download_url=f"{public_base_url(request, settings.base_url)}/v1/download/{entry.token}",
            expires_at=entry.expires_at,
            attempts=[AttemptModel(**a.to_dict()) for a in acquisition.attempts],
        )
        return envelope(response)

    @app.get("/v1/download/")
    async def missing_token():
        return error_json(400, "missing token")

    @app.get("/v1/download/{token}")
    def download_by_token(token: str):
        """
        Redeem a download token.

        Unknown tokens are 404; expired tokens are deleted and answered with
        410; a live token whose file has vanished is deleted and answered
        with 404.
        """
        token = token.strip()
        if not token:
            return error_json(400, "missing token")

        entry = store.get(token)
        if entry is None:
            return error_json(404, "invalid or expired token")

        if entry.is_expired():
            store.delete(token)
            return error_json(410, "download token expired")

        try:
            f, size = open_download(entry.path)
        except OSError as e:
            logger.warning(f"[API] File gone for {entry.spotify_id}: {e}")
            store.delete(token)
            return error_json(404, "file no longer available")

        filename = entry.filename
        logger.info(f"[API] Serving {filename} ({entry.service}) for {entry.spotify_id}")
        return StreamingResponse(
            iter_file(f),
            media_type=content_type_for(filename),
            headers={
                "Content-Length": str(size),
                "Content-Disposition": content_disposition(filename),
                "Cache-Control": "no-store",
            },
        )

    return app

