"""HD wallet factory.

The wallet is built once from settings and cached. A missing or invalid
mnemonic raises ``MasterSecretError``; entry points call
``validate_wallet_config`` before serving so that this happens at startup.
"""

import logging
from typing import Optional

from trondeposit.config import Settings, get_settings
from trondeposit.hdwallet.tron import TronHDWallet

logger = logging.getLogger(__name__)

_wallet: Optional[TronHDWallet] = None


def get_hd_wallet(settings: Optional[Settings] = None) -> TronHDWallet:
    """Get the deposit HD wallet.

    Raises:
        MasterSecretError: If the mnemonic is missing or invalid
    """
    global _wallet
    if _wallet is None:
        settings = settings or get_settings()
        _wallet = TronHDWallet(settings.tron_mnemonic or "")
    return _wallet


def validate_wallet_config(settings: Optional[Settings] = None) -> None:
    """Fail fast if the deposit wallet cannot be built."""
    wallet = get_hd_wallet(settings)
    logger.info(f"Deposit wallet ready (path m/44'/{wallet.coin_type}'/0'/0/*)")


def reset_wallet_cache() -> None:
    """Clear wallet cache (useful for testing)."""
    global _wallet
    _wallet = None


def get_wallet_info() -> dict:
    """Get public information about the deposit wallet."""
    wallet = get_hd_wallet()
    return {
        "asset": wallet.asset,
        "wallet_type": type(wallet).__name__,
        "coin_type": wallet.coin_type,
        "purpose": wallet.purpose,
    }
