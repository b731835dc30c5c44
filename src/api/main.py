"""FastAPI application for the ChatRelay API.

Provides the main application instance with routers, middleware, and
exception handlers configured. The lifespan builds the single ChatRelay
for the process and stores it on ``app.state.relay``; nothing connects
to WhatsApp until a client calls POST /api/v1/whatsapp/start or a send
triggers the lazy reconnect.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("src").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.middleware.auth import maybe_require_api_key
from src.api.routes import conversations, whatsapp
from src.config import load_config
from src.db.connection import SessionLocal, close_db, init_db
from src.errors import DomainError, format_error, http_status_for
from src.services.runtime import build_chat_relay

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


def _parse_allowed_origins() -> list[str]:
    """Parse comma-separated CORS allowlist from ALLOWED_ORIGINS env var."""
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan: build the relay on startup, release it on shutdown."""
    global _startup_time

    # --- Startup ---
    _startup_time = _time.time()
    config = load_config()
    logging.getLogger("src").setLevel(config.server.log_level.upper())

    init_db()

    app.state.config = config
    app.state.relay = build_chat_relay(config, SessionLocal)
    logger.info(
        "ChatRelay ready (bridge=%s, session=%s, responder=%s)",
        config.bridge.base_url,
        config.bridge.session_name,
        config.responder.kind,
    )

    yield

    # --- Shutdown ---
    await app.state.relay.shutdown()
    close_db()


app = FastAPI(
    title="ChatRelay API",
    description="WhatsApp bridge with automated replies and operator takeover",
    version="0.1.0",
    lifespan=lifespan,
)

# Optional API auth for /api/* when CHATRELAY_API_KEY is configured.
app.middleware("http")(maybe_require_api_key)

# CORS allowlist is env-driven. If unset, CORS is disabled (same-origin only).
allowed_origins = _parse_allowed_origins()
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-API-Key", "X-Operator-Id"],
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Handle DomainError exceptions with consistent format.

    Args:
        request: The incoming request.
        exc: The DomainError exception.

    Returns:
        JSONResponse with the formatted error and its mapped status.
    """
    status_code = http_status_for(exc)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=format_error(exc))


# Include routers
app.include_router(whatsapp.router, prefix="/api/v1")
app.include_router(conversations.router, prefix="/api/v1")


@app.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint with the WhatsApp session state.

    Returns:
        Dictionary with health status, version, uptime, and session state.
    """
    uptime = int(_time.time() - _startup_time) if _startup_time else 0

    # Version from package metadata (matches pyproject.toml)
    try:
        version = _pkg_version("chatrelay")
    except Exception:
        version = "unknown"

    relay = getattr(request.app.state, "relay", None)
    session = relay.status().connection_status.value if relay else "unavailable"

    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
        "session": session,
    }


@app.get("/")
def root() -> dict:
    """API root with links to docs."""
    return {
        "name": "ChatRelay API",
        "version": "0.1.0",
        "docs": "/docs",
        "redoc": "/redoc",
    }


def serve() -> None:
    """Run the API with uvicorn using the ``server`` config section.

    Always a single worker: the WhatsApp session lives in this process.
    """
    import uvicorn

    config = load_config()
    uvicorn.run(
        "src.api.main:app",
        host=config.server.host,
        port=config.server.port,
        workers=1,
        log_level=config.server.log_level,
        lifespan="on",
    )


if __name__ == "__main__":
    serve()
