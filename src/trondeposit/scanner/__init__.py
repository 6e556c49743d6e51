"""Chain scanner module for detecting deposits to assigned addresses."""

from trondeposit.scanner.base import (
    ChainClient,
    DepositEvent,
    SimulatedChainClient,
    TransferInfo,
)
from trondeposit.scanner.factory import get_chain_client

__all__ = [
    "ChainClient",
    "DepositEvent",
    "SimulatedChainClient",
    "TransferInfo",
    "get_chain_client",
]
