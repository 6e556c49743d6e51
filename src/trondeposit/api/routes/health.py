"""Health check endpoints."""

from fastapi import APIRouter

from trondeposit import __version__
from trondeposit.config import get_settings
from trondeposit.hdwallet import get_wallet_info

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "trondeposit"}


@router.get("/health/detailed")
async def detailed_health():
    """Detailed health check with configuration info."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "trondeposit",
        "version": __version__,
        "config": settings.get_safe_dict(),
        "wallet": get_wallet_info(),
    }
