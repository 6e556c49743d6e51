"""TronGrid client for TRC20 token transfers.

Uses the TronGrid HTTP API (free tier available).
API Docs: https://developers.tron.network/reference/background

Unlike a best-effort balance check, every failure here raises
``ChainClientError``: an empty answer for a block that could not be read
would let the checkpoint move past deposits that were never seen.
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx
from bip_utils import Base58Encoder

from trondeposit.exceptions import ChainClientError
from trondeposit.scanner.base import ChainClient, TransferInfo

logger = logging.getLogger(__name__)

# TronGrid API endpoints
TRONGRID_MAINNET = "https://api.trongrid.io"
TRONGRID_TESTNET = "https://api.shasta.trongrid.io"  # Shasta testnet

# USDT-TRC20 contract address
USDT_CONTRACT_MAINNET = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
USDT_CONTRACT_TESTNET = "TG3XXyExBkPp9nzdajDZsozEu4BkaSJozs"  # Test USDT

EVENTS_PAGE_SIZE = 200
MAX_EVENT_PAGES = 50


def hex_to_base58(address: str) -> str:
    """Convert a TRON hex address (0x... or 41...) to base58check T... form."""
    if address.startswith("T"):
        return address

    raw = address[2:] if address.lower().startswith("0x") else address
    if len(raw) == 40:
        raw = "41" + raw
    if len(raw) != 42 or not raw.lower().startswith("41"):
        raise ValueError(f"Not a TRON hex address: {address}")

    return Base58Encoder.CheckEncode(bytes.fromhex(raw))


class TronGridClient(ChainClient):
    """TRC20 transfer source backed by TronGrid.

    Example:
        client = TronGridClient(token_contract=USDT_CONTRACT_MAINNET)
        height = await client.get_current_block_height()
        transfers = await client.get_block_transfers(height - 20)
    """

    def __init__(
        self,
        token_contract: str = USDT_CONTRACT_MAINNET,
        token_decimals: int = 6,
        base_url: str = TRONGRID_MAINNET,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize TronGrid client.

        Args:
            token_contract: TRC20 contract whose transfers are reported
            token_decimals: Token decimals used to scale raw values
            base_url: TronGrid API base URL
            api_key: Optional TronGrid API key for higher rate limits
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.token_contract = token_contract
        self.token_decimals = token_decimals
        self.base_url = base_url.rstrip("/")

        headers = {"Accept": "application/json"}
        if api_key:
            headers["TRON-PRO-API-KEY"] = api_key

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _get_json(self, path: str, params: Optional[dict] = None) -> dict:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise ChainClientError(f"TronGrid request to {path} failed: {e}") from e

        if response.status_code != 200:
            raise ChainClientError(
                f"TronGrid API error {response.status_code} for {path}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise ChainClientError(f"TronGrid returned invalid JSON for {path}") from e

    async def get_current_block_height(self) -> int:
        """Get current TRON block height."""
        data = await self._get_json("/wallet/getnowblock")
        number = data.get("block_header", {}).get("raw_data", {}).get("number")
        if number is None:
            raise ChainClientError("TronGrid getnowblock response has no block number")
        return int(number)

    async def get_block_transfers(self, block_number: int) -> list[TransferInfo]:
        """Get all Transfer events of the token emitted in ``block_number``."""
        transfers: list[TransferInfo] = []
        params = {
            "event_name": "Transfer",
            "block_number": block_number,
            "limit": EVENTS_PAGE_SIZE,
        }
        path = f"/v1/contracts/{self.token_contract}/events"

        for _ in range(MAX_EVENT_PAGES):
            data = await self._get_json(path, params=params)
            if not data.get("success", False):
                raise ChainClientError(
                    f"TronGrid events query failed for block {block_number}: "
                    f"{data.get('error', 'unknown error')}"
                )

            for event in data.get("data", []):
                transfer = self._parse_transfer_event(event, block_number)
                if transfer is not None:
                    transfers.append(transfer)

            fingerprint = data.get("meta", {}).get("fingerprint")
            if not fingerprint:
                return transfers
            params = {**params, "fingerprint": fingerprint}

        raise ChainClientError(
            f"Too many event pages for block {block_number}, refusing partial result"
        )

    def _parse_transfer_event(self, event: dict, block_number: int) -> Optional[TransferInfo]:
        """Parse one TronGrid contract event into a transfer."""
        if event.get("event_name") != "Transfer":
            return None

        event_block = event.get("block_number")
        if event_block is not None and int(event_block) != block_number:
            logger.debug(
                f"Skipping event from block {event_block} while reading {block_number}"
            )
            return None

        result = event.get("result", {})
        tx_hash = event.get("transaction_id")
        to_raw = result.get("to")
        value = result.get("value")
        if not tx_hash or not to_raw or value is None:
            raise ChainClientError(f"Malformed Transfer event in block {block_number}: {event}")

        try:
            to_address = hex_to_base58(to_raw)
            from_raw = result.get("from")
            from_address = hex_to_base58(from_raw) if from_raw else None
        except ValueError as e:
            raise ChainClientError(f"Bad address in tx {tx_hash}: {e}") from e

        amount = Decimal(str(value)) / (Decimal(10) ** self.token_decimals)

        return TransferInfo(
            tx_hash=tx_hash,
            to_address=to_address,
            amount=amount,
            block_number=block_number,
            from_address=from_address,
        )

    async def close(self) -> None:
        await self._client.aclose()
