"""Chain client factory."""

from typing import Optional

from trondeposit.config import Settings, get_settings
from trondeposit.scanner.base import ChainClient, SimulatedChainClient
from trondeposit.scanner.trongrid import TronGridClient

SUPPORTED_PROVIDERS = ("trongrid", "simulated")


def get_chain_client(settings: Optional[Settings] = None) -> ChainClient:
    """Create the chain client selected by ``chain_provider``.

    Raises:
        ValueError: If the provider is not supported
    """
    settings = settings or get_settings()
    provider = settings.chain_provider.lower()

    if provider == "trongrid":
        return TronGridClient(
            token_contract=settings.usdt_contract,
            token_decimals=settings.token_decimals,
            base_url=settings.trongrid_url,
            api_key=settings.trongrid_api_key or None,
            timeout=settings.request_timeout_seconds,
        )
    if provider == "simulated":
        return SimulatedChainClient()

    raise ValueError(
        f"Unsupported chain provider: {settings.chain_provider}. "
        f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"
    )
