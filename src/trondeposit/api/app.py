"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trondeposit import __version__
from trondeposit.config import get_settings
from trondeposit.exceptions import (
    AddressAssignmentError,
    DepositError,
    DepositNotFoundError,
    DepositStateError,
    DuplicateTransactionError,
    InvalidDepositError,
    MasterSecretError,
    UserNotFoundError,
)
from trondeposit.hdwallet import validate_wallet_config
from trondeposit.ledger.database import close_db, init_db
from trondeposit.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[Exception], int] = {
    DepositNotFoundError: 404,
    UserNotFoundError: 404,
    DuplicateTransactionError: 409,
    DepositStateError: 409,
    InvalidDepositError: 400,
    AddressAssignmentError: 503,
    LockTimeoutError: 503,
    MasterSecretError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: refuse to serve without a usable mnemonic
    validate_wallet_config()
    await init_db()
    yield
    # Shutdown
    await close_db()


async def handle_service_error(request: Request, exc: Exception) -> JSONResponse:
    """Map service exceptions to HTTP responses."""
    status_code = 500
    for exc_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, exc_type):
            status_code = code
            break

    if status_code == 503:
        logger.warning(f"{request.url.path}: {exc}")
        detail = f"{exc}. Please try again."
    else:
        detail = str(exc)

    return JSONResponse(status_code=status_code, content={"detail": detail})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="TRON Deposit API",
        description="USDT (TRC20) deposit addresses and reconciliation",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DepositError, handle_service_error)
    app.add_exception_handler(LockTimeoutError, handle_service_error)

    # Register routes
    from trondeposit.api.routers import admin
    from trondeposit.api.routes import deposits, health

    app.include_router(health.router, tags=["Health"])
    app.include_router(deposits.router, prefix="/api/v1", tags=["Deposits"])
    app.include_router(admin.router, tags=["Admin"])

    return app


# Default app instance
app = create_app()
