"""EVM HD Wallet implementation.

Derivation path: m/0/index relative to an account-level xpub
(m/44'/60'/0' for the usual BIP44 layout).
Address format: 0x... (EIP-55 checksum encoded)

Works for BSC, ETH, Polygon and other EVM-compatible chains.
Only the xpub is used - no private keys.
"""

import logging

from bip_utils import EthAddrEncoder

from goldenarrow.errors import DerivationError
from goldenarrow.hdwallet.base import HARDENED_OFFSET, AddressInfo, HDWalletProvider
from goldenarrow.hdwallet.keys import MasterKeyMaterial

logger = logging.getLogger(__name__)


def validate_index(index: int, name: str = "index") -> int:
    """Check that an index is usable for public (non-hardened) derivation."""
    if isinstance(index, bool) or not isinstance(index, int):
        raise DerivationError(f"Derivation {name} must be an integer, got {index!r}")
    if index < 0:
        raise DerivationError(f"Derivation {name} must be non-negative, got {index}")
    if index >= HARDENED_OFFSET:
        raise DerivationError(
            f"Derivation {name} {index} is outside the non-hardened range (< {HARDENED_OFFSET})"
        )
    return index


class EVMHDWallet(HDWalletProvider):
    """EVM HD Wallet deriving checksum addresses from the master xpub.

    Example:
        wallet = EVMHDWallet(MasterKeyMaterial.from_xpub("xpub..."))
        addr = wallet.derive_address(index=0)
        # AddressInfo(address="0x...", ...)
    """

    def __init__(self, master_key: MasterKeyMaterial, chain: str = "BSC"):
        self._master_key = master_key
        self._chain = chain.upper()

    @property
    def master_key(self) -> MasterKeyMaterial:
        return self._master_key

    @property
    def asset(self) -> str:
        return self._chain

    @property
    def coin_type(self) -> int:
        return 60  # ETH coin type for all EVM chains

    @property
    def purpose(self) -> int:
        return 44

    @property
    def testnet(self) -> bool:
        return self._master_key.testnet

    def derive_address(self, index: int, change: int = 0) -> AddressInfo:
        """Derive an EVM address at the given index.

        Args:
            index: Child index (0 <= index < 2**31)
            change: Usually 0 for EVM chains (no change addresses)

        Returns:
            AddressInfo with checksum address

        Raises:
            DerivationError: If the index is out of range or BIP32
                child derivation fails.
        """
        validate_index(index)
        validate_index(change, name="change")

        try:
            child = self._master_key.context.ChildKey(change).ChildKey(index)
        except Exception as e:
            raise DerivationError(f"Could not derive child {change}/{index}: {e}") from e

        # Keccak-256 of the uncompressed public key, last 20 bytes, EIP-55
        address = EthAddrEncoder.EncodeKey(child.PublicKey().KeyObject())

        return AddressInfo(
            address=address,
            asset=self.asset,
            derivation_path=self.get_derivation_path(index, change),
            index=index,
            change=change,
            script_type="eth_address",
        )


def derive_address(master_key: MasterKeyMaterial, index: int) -> AddressInfo:
    """Derive the receiving address for ``index`` under ``master_key``."""
    return EVMHDWallet(master_key).derive_receiving_address(index)
