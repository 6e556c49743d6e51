"""HD Wallet module for deterministic deposit address generation."""

from trondeposit.hdwallet.base import AddressInfo, HDWalletProvider, SigningKey
from trondeposit.hdwallet.factory import (
    get_hd_wallet,
    get_wallet_info,
    reset_wallet_cache,
    validate_wallet_config,
)
from trondeposit.hdwallet.tron import TronHDWallet, derive_keypair

__all__ = [
    "HDWalletProvider",
    "AddressInfo",
    "SigningKey",
    "TronHDWallet",
    "derive_keypair",
    "get_hd_wallet",
    "get_wallet_info",
    "reset_wallet_cache",
    "validate_wallet_config",
]
