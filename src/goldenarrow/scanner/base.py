"""Base interface for deposit transfer scanners.

Scanners answer two questions for the reconciler: how high is the chain,
and which token transfers reached an address inside a block range.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class TransferInfo:
    """A token transfer observed on chain."""

    tx_hash: str
    to_address: str
    contract_address: str
    raw_value: int
    block_number: int
    from_address: Optional[str] = None
    log_index: Optional[int] = None

    def amount(self, decimals: int) -> Decimal:
        """Human amount for a token with ``decimals`` places."""
        return Decimal(self.raw_value) / (Decimal(10) ** decimals)


class TransferScanner(ABC):
    """Abstract base class for chain transfer scanners."""

    @abstractmethod
    async def get_current_block_height(self) -> int:
        """Get the current blockchain height."""
        pass

    @abstractmethod
    async def get_incoming_transfers(
        self,
        address: str,
        contract_address: str,
        from_block: int,
        to_block: int,
    ) -> list[TransferInfo]:
        """Get token transfers to ``address`` within [from_block, to_block].

        Raises:
            ScannerError: If the upstream API fails.
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None
