"""TRON HD wallet using BIP44 / SLIP-44 coin type 195.

Derivation path: m/44'/195'/0'/0/index
Address format: T... (base58check)
"""

import logging

from bip_utils import (
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
    Bip44,
    Bip44Changes,
    Bip44Coins,
)

from trondeposit.exceptions import MasterSecretError
from trondeposit.hdwallet.base import AddressInfo, HDWalletProvider, SigningKey

logger = logging.getLogger(__name__)

# Non-hardened child indexes only
MAX_INDEX = 2**31 - 1


def normalize_mnemonic(mnemonic: str) -> str:
    """Collapse whitespace and lowercase the words."""
    return " ".join(mnemonic.lower().split())


class TronHDWallet(HDWalletProvider):
    """TRON HD wallet derived from a BIP-39 mnemonic.

    The mnemonic checksum is validated before any index is derived, so a
    typo in the secret fails at startup instead of silently producing
    addresses nobody controls.

    Example:
        wallet = TronHDWallet(mnemonic="abandon abandon ... about")
        addr = wallet.derive_address(0)
        # AddressInfo(address="T...", derivation_path="m/44'/195'/0'/0/0", index=0)
    """

    def __init__(self, mnemonic: str, passphrase: str = ""):
        if not mnemonic or not mnemonic.strip():
            raise MasterSecretError("TRON mnemonic is not set")

        normalized = normalize_mnemonic(mnemonic)
        if not Bip39MnemonicValidator().IsValid(normalized):
            raise MasterSecretError("TRON mnemonic failed BIP-39 validation")

        seed = Bip39SeedGenerator(normalized).Generate(passphrase)
        self._account_ctx = (
            Bip44.FromSeed(seed, Bip44Coins.TRON)
            .Purpose()
            .Coin()
            .Account(0)
            .Change(Bip44Changes.CHAIN_EXT)
        )

    @property
    def asset(self) -> str:
        return "TRX"

    @property
    def coin_type(self) -> int:
        return 195  # SLIP-44 for TRON

    def _child(self, index: int):
        if not 0 <= index <= MAX_INDEX:
            raise ValueError(f"Derivation index out of range: {index}")
        return self._account_ctx.AddressIndex(index)

    def derive_address(self, index: int) -> AddressInfo:
        """Derive the TRON address at ``index``."""
        child = self._child(index)
        return AddressInfo(
            address=child.PublicKey().ToAddress(),
            derivation_path=self.get_derivation_path(index),
            index=index,
        )

    def derive_signing_key(self, index: int) -> SigningKey:
        """Derive the private key for the address at ``index``."""
        child = self._child(index)
        return SigningKey(child.PrivateKey().Raw().ToBytes())


def derive_keypair(master_secret: str, index: int) -> tuple[str, SigningKey]:
    """Derive ``(address, signing_key)`` for ``index``.

    Pure function of its inputs. The key is returned wrapped so that
    printing the tuple does not reveal it.
    """
    wallet = TronHDWallet(master_secret)
    return wallet.derive_address(index).address, wallet.derive_signing_key(index)
