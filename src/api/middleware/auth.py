"""Optional API-key auth middleware for local/prod deployments.

The API key is a shared secret for the dashboard; it does not identify
an operator. Operator identity travels separately in X-Operator-Id.
The bridge webhook is exempt from the dashboard key and checks the
bridge's own key (``bridge.api_key``) instead.
"""

from __future__ import annotations

import hmac
import logging
import os
import threading
import time

from fastapi import Request
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

BRIDGE_WEBHOOK_PATH = "/api/v1/whatsapp/bridge-events"

_PUBLIC_PATH_PREFIXES = (
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    BRIDGE_WEBHOOK_PATH,
)

# --- Rate limiting for auth failures ---
_AUTH_FAIL_MAX = 10  # Max failures per IP in the time window
_AUTH_FAIL_WINDOW_SECONDS = 300
_auth_failures: dict[str, list[float]] = {}
_auth_lock = threading.Lock()


def _get_client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _is_rate_limited(client_ip: str) -> bool:
    """Check if the client IP has exceeded the auth failure rate limit.

    Args:
        client_ip: Client IP address.

    Returns:
        True if the client should be blocked.
    """
    with _auth_lock:
        now = time.monotonic()
        timestamps = _auth_failures.get(client_ip, [])
        timestamps = [t for t in timestamps if now - t < _AUTH_FAIL_WINDOW_SECONDS]
        _auth_failures[client_ip] = timestamps
        return len(timestamps) >= _AUTH_FAIL_MAX


def _record_auth_failure(client_ip: str) -> None:
    with _auth_lock:
        _auth_failures.setdefault(client_ip, []).append(time.monotonic())


def reset_rate_limiter() -> None:
    """Reset the rate limiter state. Used by tests."""
    with _auth_lock:
        _auth_failures.clear()


def get_expected_api_key() -> str:
    """Return configured API key; empty string means auth disabled."""
    return os.environ.get("CHATRELAY_API_KEY", "").strip()


def keys_match(provided: str, expected: str) -> bool:
    """Constant-time comparison of a provided key against the expected one."""
    return bool(provided) and hmac.compare_digest(provided, expected)


def should_authenticate(path: str) -> bool:
    """Return True when this path should be protected by API-key auth."""
    if path.startswith(_PUBLIC_PATH_PREFIXES):
        return False
    return path.startswith("/api/")


async def maybe_require_api_key(request: Request, call_next) -> Response:
    """FastAPI middleware entrypoint for optional API-key auth.

    Blocks client IPs that exceed _AUTH_FAIL_MAX failures within
    _AUTH_FAIL_WINDOW_SECONDS.
    """
    if request.method.upper() == "OPTIONS":
        return await call_next(request)

    expected_key = get_expected_api_key()
    if not expected_key or not should_authenticate(request.url.path):
        return await call_next(request)

    client_ip = _get_client_ip(request)
    if _is_rate_limited(client_ip):
        logger.warning("Auth rate limit exceeded for IP %s", client_ip)
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many authentication failures. Try again later."},
        )

    if not keys_match(request.headers.get("X-API-Key", ""), expected_key):
        _record_auth_failure(client_ip)
        return JSONResponse(
            status_code=401,
            content={"detail": "Invalid or missing API key"},
        )
    return await call_next(request)
