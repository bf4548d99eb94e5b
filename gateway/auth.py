"""
Bearer-credential authentication.

Every route except /health and /status requires `Authorization: Bearer <API_KEY>`.
WebSocket clients that cannot set headers may pass `?token=<API_KEY>` instead.
The check runs before any pipeline stage is invoked.
"""
import hmac
from typing import Optional

from fastapi import Header, Request, WebSocket

from logging_setup import get_logger, Component
from .errors import Unauthorized

logger = get_logger(Component.AUTH)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def check_credential(presented: Optional[str], expected: str) -> None:
    """Raise Unauthorized unless `presented` matches `expected` (constant-time)."""
    if not presented:
        raise Unauthorized("missing_credential")
    if not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
        raise Unauthorized("invalid_credential")


async def require_api_key(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> None:
    """FastAPI dependency guarding the protected HTTP routes."""
    try:
        check_credential(_bearer_token(authorization), request.app.state.gateway_config.api_key)
    except Unauthorized as e:
        logger.warning("Rejected unauthenticated request", path=request.url.path, reason=e.reason)
        raise


def authenticate_websocket(websocket: WebSocket) -> None:
    """Credential check for WebSocket handshakes (header first, then ?token=)."""
    token = _bearer_token(websocket.headers.get("authorization")) or websocket.query_params.get("token")
    try:
        check_credential(token, websocket.app.state.gateway_config.api_key)
    except Unauthorized as e:
        logger.warning("Rejected unauthenticated stream", path=websocket.url.path, reason=e.reason)
        raise
