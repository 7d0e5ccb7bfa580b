"""Health check endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "goldenarrow"}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Detailed health check with configuration info."""
    settings = request.app.state.settings
    provisioning = request.app.state.provisioning
    return {
        "status": "healthy" if provisioning.is_configured else "degraded",
        "service": "goldenarrow",
        "version": "0.1.0",
        "wallet_configured": provisioning.is_configured,
        "config": settings.get_safe_dict(),
    }
