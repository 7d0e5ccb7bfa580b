"""BSC token transfer scanner using the Alchemy JSON-RPC API.

Uses eth_blockNumber for the chain height and alchemy_getAssetTransfers
(category erc20) for incoming USDT transfers.
"""

import logging
from typing import Any, Optional

import httpx

from goldenarrow.errors import ScannerError
from goldenarrow.scanner.base import TransferInfo, TransferScanner

logger = logging.getLogger(__name__)

# alchemy_getAssetTransfers page size (hex, API maximum is 1000)
MAX_COUNT = "0x3e8"


def _hex_to_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    return int(str(value), 16)


class AlchemyTransferScanner(TransferScanner):
    """Incoming ERC20/BEP-20 transfer scanner backed by Alchemy."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the scanner.

        Args:
            rpc_url: Full JSON-RPC endpoint including the API key
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._transport = transport
        self._request_id = 0

    async def _rpc(self, method: str, params: list) -> Any:
        """Send one JSON-RPC request and return its result."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"RPC {method} request failed: {e}")
            raise ScannerError(f"RPC {method} request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"RPC {method} HTTP error: {response.status_code}")
            raise ScannerError(f"RPC {method} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"RPC {method} returned a non-JSON body")
            raise ScannerError(f"RPC {method} returned an invalid response") from e

        if not isinstance(data, dict):
            raise ScannerError(f"RPC {method} returned an invalid response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            logger.error(f"RPC {method} error: {message}")
            raise ScannerError(f"RPC {method} error: {message}")

        return data.get("result")

    async def get_current_block_height(self) -> int:
        """Get current BSC block height."""
        result = await self._rpc("eth_blockNumber", [])
        try:
            return _hex_to_int(result)
        except ValueError as e:
            raise ScannerError(f"Invalid block number: {result!r}") from e

    async def get_incoming_transfers(
        self,
        address: str,
        contract_address: str,
        from_block: int,
        to_block: int,
    ) -> list[TransferInfo]:
        """Get token transfers to ``address`` within [from_block, to_block]."""
        if from_block > to_block:
            return []

        params: dict[str, Any] = {
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "toAddress": address,
            "contractAddresses": [contract_address],
            "category": ["erc20"],
            "order": "asc",
            "excludeZeroValue": True,
            "maxCount": MAX_COUNT,
        }

        transfers: list[TransferInfo] = []
        while True:
            result = await self._rpc("alchemy_getAssetTransfers", [params]) or {}
            if not isinstance(result, dict):
                raise ScannerError("alchemy_getAssetTransfers returned an invalid result")

            for raw in result.get("transfers") or []:
                transfer = self._parse_transfer(raw)
                if transfer is not None:
                    transfers.append(transfer)

            page_key = result.get("pageKey")
            if not page_key:
                break
            params = {**params, "pageKey": page_key}

        return transfers

    def _parse_transfer(self, raw: dict) -> Optional[TransferInfo]:
        """Parse one alchemy_getAssetTransfers entry."""
        raw_contract = raw.get("rawContract") or {}
        tx_hash = raw.get("hash")
        to_address = raw.get("to")
        contract = raw_contract.get("address")

        if not tx_hash or not to_address or not contract:
            logger.debug(f"Skipping incomplete transfer entry: {raw.get('uniqueId')}")
            return None

        log_index = None
        unique_id = raw.get("uniqueId") or ""
        if unique_id.count(":") == 2:
            try:
                log_index = int(unique_id.rsplit(":", 1)[1])
            except ValueError:
                log_index = None

        try:
            raw_value = _hex_to_int(raw_contract.get("value"))
            block_number = _hex_to_int(raw.get("blockNum"))
        except ValueError as e:
            raise ScannerError(f"Malformed transfer entry {tx_hash}: {e}") from e

        return TransferInfo(
            tx_hash=tx_hash,
            to_address=to_address,
            contract_address=contract,
            raw_value=raw_value,
            block_number=block_number,
            from_address=raw.get("from"),
            log_index=log_index,
        )
