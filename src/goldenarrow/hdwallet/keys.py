"""Master key material for deposit address derivation.

The platform holds a single account-level extended public key. It is parsed
once when the application is built and then passed around as an immutable
value; nothing in the process can swap it afterwards.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from bip_utils import Bip32KeyNetVersions, Bip32Secp256k1

from goldenarrow.config import Settings
from goldenarrow.crypto import decrypt_xpub
from goldenarrow.errors import InvalidKeyMaterial

logger = logging.getLogger(__name__)

# BIP32 version bytes (public, private). Only the public half is ever parsed.
MAINNET_KEY_NET_VERSIONS = Bip32KeyNetVersions(
    b"\x04\x88\xb2\x1e",  # xpub
    b"\x04\x88\xad\xe4",  # xprv (not used)
)
TESTNET_KEY_NET_VERSIONS = Bip32KeyNetVersions(
    b"\x04\x35\x87\xcf",  # tpub
    b"\x04\x35\x83\x94",  # tprv (not used)
)

PUBLIC_PREFIXES = {
    "xpub": MAINNET_KEY_NET_VERSIONS,
    "tpub": TESTNET_KEY_NET_VERSIONS,
}
PRIVATE_PREFIXES = ("xprv", "tprv")


@dataclass(frozen=True)
class MasterKeyMaterial:
    """A parsed, public-only extended key.

    Attributes:
        xpub: Serialized extended public key
        fingerprint: Hex BIP32 fingerprint, identifies the issuing key
        depth: BIP32 depth of the key (3 for an account-level xpub)
        testnet: True for tpub keys
    """

    xpub: str = field(repr=False)
    fingerprint: str
    depth: int
    testnet: bool
    _context: Any = field(repr=False, compare=False)

    @classmethod
    def from_xpub(cls, xpub: str) -> "MasterKeyMaterial":
        """Parse and validate an extended public key.

        Raises:
            InvalidKeyMaterial: On private keys, unknown prefixes or
                malformed serialization.
        """
        xpub = (xpub or "").strip()
        if not xpub:
            raise InvalidKeyMaterial("Extended public key is empty")

        prefix = xpub[:4]
        if prefix in PRIVATE_PREFIXES:
            raise InvalidKeyMaterial(
                "Extended private keys are not accepted; configure the xpub only"
            )

        key_net_ver = PUBLIC_PREFIXES.get(prefix)
        if key_net_ver is None:
            raise InvalidKeyMaterial(
                f"Invalid xpub prefix. Expected one of {sorted(PUBLIC_PREFIXES)}"
            )

        try:
            context = Bip32Secp256k1.FromExtendedKey(xpub, key_net_ver)
        except Exception as e:
            raise InvalidKeyMaterial(f"Invalid extended public key: {e}") from e

        if not context.IsPublicOnly():
            raise InvalidKeyMaterial("Extended key unexpectedly carries private material")

        return cls(
            xpub=xpub,
            fingerprint=context.PublicKey().FingerPrint().ToBytes().hex(),
            depth=context.Depth().ToInt(),
            testnet=prefix == "tpub",
            _context=context,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["MasterKeyMaterial"]:
        """Load the configured xpub, decrypting it if needed.

        Returns None when no xpub is configured. Configured but unusable
        material raises InvalidKeyMaterial.
        """
        if not settings.has_xpub:
            return None

        xpub = decrypt_xpub(settings.xpub_key, settings.xpub_encryption_key)
        key = cls.from_xpub(xpub)
        logger.info(
            f"Loaded deposit xpub (fingerprint={key.fingerprint}, depth={key.depth}, "
            f"testnet={key.testnet})"
        )
        return key

    @property
    def context(self) -> Any:
        """Parsed BIP32 public context."""
        return self._context
