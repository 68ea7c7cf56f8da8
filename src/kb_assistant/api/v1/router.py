"""API v1 router aggregation.

All v1 endpoints are prefixed with `/api/v1`.

Routers included:
- Health (`/api/v1/health`, `/api/v1/ready`)
- Chat (`/api/v1/chat/*`), authenticated with `X-API-Key`
- Knowledge Base (`/api/v1/knowledge/*`), guarded by `X-Admin-API-Key`
"""

from fastapi import APIRouter

from kb_assistant.api.v1 import chat, health, knowledge

# Create v1 API router with version prefix
router = APIRouter(
    prefix="/api/v1",
    responses={
        404: {"description": "Not found"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)

router.include_router(health.router)
router.include_router(chat.router)
router.include_router(knowledge.router)


@router.get(
    "/",
    summary="API Information",
    description="Get API version and status information",
    tags=["v1"],
)
async def api_info():
    """
    Get API v1 information.

    This endpoint is public and does not require authentication.
    """
    return {
        "version": "v1",
        "status": "active",
        "service": "kb-assistant",
        "endpoints": {
            "health": "/api/v1/health",
            "ready": "/api/v1/ready",
            "chat": "/api/v1/chat",
            "knowledge": "/api/v1/knowledge",
        },
    }
