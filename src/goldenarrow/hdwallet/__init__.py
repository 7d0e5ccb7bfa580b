"""HD Wallet module for deterministic address generation."""

from goldenarrow.hdwallet.base import AddressInfo, HDWalletProvider
from goldenarrow.hdwallet.evm import EVMHDWallet, derive_address
from goldenarrow.hdwallet.keys import MasterKeyMaterial

__all__ = [
    "HDWalletProvider",
    "AddressInfo",
    "EVMHDWallet",
    "MasterKeyMaterial",
    "derive_address",
]
