"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request

from goldenarrow.config import get_settings
from goldenarrow.services import DepositReconciler, WalletProvisioningService


def get_provisioning_service(request: Request) -> WalletProvisioningService:
    return request.app.state.provisioning


def get_reconciler(request: Request) -> DepositReconciler:
    return request.app.state.reconciler


async def require_admin_token(
    request: Request, x_admin_token: str = Header(None)
) -> bool:
    """Verify admin token.

    Admin endpoints are closed when no token is configured.
    """
    settings = getattr(request.app.state, "settings", None) or get_settings()
    if not settings.admin_token or x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")
    return True


async def require_gateway_token(
    request: Request, x_gateway_token: str = Header(None)
) -> bool:
    """Verify the gateway token on user routes.

    User routes take the caller's user_id on trust. They must sit behind a
    gateway that authenticates the user; when GATEWAY_TOKEN is set, requests
    that did not come through it are rejected.
    """
    settings = getattr(request.app.state, "settings", None) or get_settings()
    if settings.gateway_token and x_gateway_token != settings.gateway_token:
        raise HTTPException(status_code=401, detail="Invalid gateway token")
    return True
