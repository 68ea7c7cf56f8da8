"""FastAPI dependencies: service lookup and API key checks."""

import hashlib
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from kb_assistant.services.container import Services
from kb_assistant.utils.errors import AuthenticationError
from kb_assistant.utils.logging import get_logger

logger = get_logger("dependencies")

CALLER_ID_PREFIX = "key_"


def get_services(request: Request) -> Services:
    """Return the service container attached to the application."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not ready",
        )
    return services


def caller_id_for_key(api_key: str) -> str:
    """Stable, non-reversible caller identity for an API key."""
    digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    return f"{CALLER_ID_PREFIX}{digest[:24]}"


async def require_api_key(
    services: Services = Depends(get_services),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> str:
    """
    Require a chat API key and return the caller id derived from it.

    When CHAT_API_KEYS is empty any non-empty key is accepted.
    """
    if not x_api_key:
        raise AuthenticationError("Missing X-API-Key header")

    allowed = services.settings.auth.chat_api_keys
    if allowed and x_api_key not in allowed:
        logger.warning("Rejected chat request with unknown API key")
        raise AuthenticationError("Invalid API key")

    return caller_id_for_key(x_api_key)


async def require_admin_api_key(
    services: Services = Depends(get_services),
    x_admin_api_key: Optional[str] = Header(default=None, alias="X-Admin-API-Key"),
) -> None:
    """
    Require a valid admin API key for knowledge-base management.

    Behavior:
    - If ADMIN_API_KEY_ENABLED is false: allow (dev-friendly).
    - If enabled: require X-Admin-API-Key to match ADMIN_API_KEY.
    """
    auth = services.settings.auth
    if not auth.admin_api_key_enabled:
        return

    if not auth.admin_api_key:
        logger.error("ADMIN_API_KEY_ENABLED=true but ADMIN_API_KEY is not set")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin auth misconfigured",
        )

    if not x_admin_api_key or x_admin_api_key != auth.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin API key",
            headers={"WWW-Authenticate": "X-Admin-API-Key"},
        )


async def limit_chat_requests(
    caller_id: str = Depends(require_api_key),
    services: Services = Depends(get_services),
) -> None:
    """Per API key limit on chat messages; checked before the body is validated."""
    limits = services.settings.rate_limit
    if not limits.enabled:
        return
    services.rate_limiter.enforce(
        f"chat:{caller_id}",
        max_attempts=limits.chat_requests,
        window_seconds=limits.window_seconds,
    )


async def limit_upload_requests(
    request: Request,
    services: Services = Depends(get_services),
    x_admin_api_key: Optional[str] = Header(default=None, alias="X-Admin-API-Key"),
) -> None:
    """Per admin key (or client address when the admin guard is off) limit on uploads."""
    limits = services.settings.rate_limit
    if not limits.enabled:
        return
    if x_admin_api_key:
        caller = caller_id_for_key(x_admin_api_key)
    else:
        caller = request.client.host if request.client else "anonymous"
    services.rate_limiter.enforce(
        f"upload:{caller}",
        max_attempts=limits.upload_requests,
        window_seconds=limits.window_seconds,
        message="Too many upload requests",
    )


ServicesDep = Depends(get_services)
CallerDep = Depends(require_api_key)
AdminAuthDep = Depends(require_admin_api_key)
ChatRateLimitDep = Depends(limit_chat_requests)
UploadRateLimitDep = Depends(limit_upload_requests)
