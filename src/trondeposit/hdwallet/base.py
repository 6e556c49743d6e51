"""HD wallet base types.

Addresses are derived deterministically from a master secret and a child
index. The private half of a derived pair is kept behind ``SigningKey`` so
that it can never end up in a log line or an API response by accident.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AddressInfo:
    """Public information about a derived address."""

    address: str
    derivation_path: str
    index: int


class SigningKey:
    """Raw private key bytes with a redacted representation."""

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes):
        self._raw = bytes(raw)

    def to_bytes(self) -> bytes:
        """Return the raw 32-byte private key."""
        return self._raw

    def to_hex(self) -> str:
        return self._raw.hex()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SigningKey):
            return NotImplemented
        return self._raw == other._raw

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return "SigningKey(<redacted>)"

    __str__ = __repr__


class HDWalletProvider(ABC):
    """Abstract base class for HD wallet providers.

    Usage:
        wallet = TronHDWallet(mnemonic="...")
        addr = wallet.derive_address(index=0)
    """

    @property
    @abstractmethod
    def asset(self) -> str:
        """Asset symbol (TRX, ...)."""
        pass

    @property
    @abstractmethod
    def coin_type(self) -> int:
        """BIP44 coin type number."""
        pass

    @property
    def purpose(self) -> int:
        """BIP purpose number."""
        return 44

    @abstractmethod
    def derive_address(self, index: int) -> AddressInfo:
        """Derive the receiving address at the given index."""
        pass

    @abstractmethod
    def derive_signing_key(self, index: int) -> SigningKey:
        """Derive the private key controlling the address at ``index``.

        Only needed for outbound signing; callers must not persist the result.
        """
        pass

    def get_derivation_path(self, index: int) -> str:
        """Get the full derivation path for an index.

        Format: m/purpose'/coin_type'/0'/0/index
        """
        return f"m/{self.purpose}'/{self.coin_type}'/0'/0/{index}"
