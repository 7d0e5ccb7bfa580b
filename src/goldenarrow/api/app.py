"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from goldenarrow.config import Settings, get_settings
from goldenarrow.errors import WalletError
from goldenarrow.hdwallet import MasterKeyMaterial
from goldenarrow.ledger.database import close_db, init_db
from goldenarrow.scanner import AlchemyTransferScanner, TransferScanner
from goldenarrow.services import DepositReconciler, WalletProvisioningService

logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    yield
    # Shutdown
    await app.state.reconciler.scanner.close()
    await close_db()


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": code, "message": message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as {"success": false, "error", "message"}."""

    @app.exception_handler(WalletError)
    async def wallet_error_handler(request: Request, exc: WalletError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
        return _error_response(exc.status_code, exc.code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
        else:
            message = "Invalid request"
        return _error_response(422, "validation_error", message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
        return _error_response(exc.status_code, code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}: {exc}")
        return _error_response(500, "internal_error", "Internal server error")


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    scanner: Optional[TransferScanner] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The xpub is parsed here, once. A missing xpub leaves the service up with
    wallet creation disabled; an unparseable one is fatal.
    """
    settings = settings or get_settings()

    master_key = MasterKeyMaterial.from_settings(settings)
    if master_key is None:
        logger.error("XPUB_KEY is not configured: wallet creation is disabled")

    if scanner is None:
        scanner = AlchemyTransferScanner(settings.rpc_endpoint, timeout=settings.scanner_timeout)

    app = FastAPI(
        title="Golden Arrow Wallet API",
        description="Deposit address provisioning and USDT deposit reconciliation",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.state.settings = settings
    app.state.provisioning = WalletProvisioningService(
        master_key,
        session_factory=session_factory,
        start_index=settings.derivation_start_index,
        lock_timeout=settings.allocation_lock_timeout,
    )
    app.state.reconciler = DepositReconciler(
        scanner,
        token_contract=settings.usdt_contract_address,
        token_decimals=settings.usdt_decimals,
        min_confirmations=settings.min_confirmations,
        session_factory=session_factory,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Register routes
    from goldenarrow.api.routes import health, wallet

    app.include_router(health.router, tags=["Health"])
    app.include_router(wallet.router, tags=["Wallet"])

    return app
