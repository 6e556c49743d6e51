"""FastAPI dependencies shared by routes."""

from fastapi import Header, HTTPException, Request

from trondeposit.config import get_settings
from trondeposit.services.deposits import DepositService


def get_deposit_service(request: Request) -> DepositService:
    """Get the application's deposit service, creating it on first use."""
    service = getattr(request.app.state, "deposit_service", None)
    if service is None:
        service = DepositService()
        request.app.state.deposit_service = service
    return service


async def require_admin_token(x_admin_token: str = Header(None)) -> bool:
    """Verify admin token from header.

    If ADMIN_TOKEN is not set, allows access outside production (dev mode).
    """
    settings = get_settings()

    if not settings.admin_token:
        if settings.is_production:
            raise HTTPException(status_code=503, detail="Admin API disabled: ADMIN_TOKEN not set")
        return True

    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")

    return True
