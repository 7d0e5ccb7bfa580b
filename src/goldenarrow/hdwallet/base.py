"""HD Wallet base interface.

This module defines the abstract interface for HD wallet providers.
Addresses are derived from an xpub (extended public key) using
non-hardened BIP32 child indexes.

Security: Only xpub is used - private keys are NEVER stored or transmitted.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

# First hardened child index. Public-only keys can derive strictly below it.
HARDENED_OFFSET = 2**31


@dataclass(frozen=True)
class AddressInfo:
    """Information about a derived address."""

    address: str
    asset: str
    derivation_path: str
    index: int
    change: int = 0  # 0 = receiving, 1 = change
    script_type: Optional[str] = None


class HDWalletProvider(ABC):
    """Abstract base class for HD wallet providers.

    Each implementation handles a specific blockchain or family of chains.
    Addresses are derived deterministically from an xpub using child indexes.
    """

    @property
    @abstractmethod
    def asset(self) -> str:
        """Asset symbol (BSC, ETH, etc.)."""
        pass

    @property
    @abstractmethod
    def coin_type(self) -> int:
        """BIP44 coin type number."""
        pass

    @property
    @abstractmethod
    def purpose(self) -> int:
        """BIP purpose number (44, 49, 84, etc.)."""
        pass

    @abstractmethod
    def derive_address(self, index: int, change: int = 0) -> AddressInfo:
        """Derive an address at the given index.

        Args:
            index: Child index (0, 1, 2, ...)
            change: 0 for receiving addresses, 1 for change addresses

        Returns:
            AddressInfo with the derived address and metadata
        """
        pass

    def derive_receiving_address(self, index: int) -> AddressInfo:
        """Derive a receiving address (change=0)."""
        return self.derive_address(index, change=0)

    def get_derivation_path(self, index: int, change: int = 0) -> str:
        """Get the derivation path for an index, relative to the xpub.

        The xpub is an account-level key (m/44'/coin'/0'), so only the
        change and index levels remain: m/change/index
        """
        return f"m/{change}/{index}"
