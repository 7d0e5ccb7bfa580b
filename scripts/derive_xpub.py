#!/usr/bin/env python3
"""Derive the deposit account xpub from a seed phrase.

Prints the BIP44 account-level xpub (m/44'/60'/0') that XPUB_KEY expects,
optionally Fernet-encrypted for storage in the environment. Run this
offline; the seed phrase never needs to reach the server.

Usage:
    python scripts/derive_xpub.py                # prompts for seed phrase
    python scripts/derive_xpub.py --encrypt      # also prints an encrypted XPUB_KEY
    python scripts/derive_xpub.py --encrypt --key <fernet key>
"""

import argparse
import sys
from getpass import getpass
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bip_utils import Bip39MnemonicValidator, Bip39SeedGenerator, Bip44, Bip44Coins

from goldenarrow.crypto import XpubEncryptor, generate_encryption_key
from goldenarrow.hdwallet import MasterKeyMaterial, derive_address


def derive_account_xpub(mnemonic: str, account: int = 0) -> str:
    """Derive the Ethereum-path account xpub (BSC shares coin type 60)."""
    seed = Bip39SeedGenerator(mnemonic).Generate()
    bip44 = Bip44.FromSeed(seed, Bip44Coins.ETHEREUM)
    return bip44.Purpose().Coin().Account(account).PublicKey().ToExtended()


def main():
    parser = argparse.ArgumentParser(description="Derive the deposit account xpub")
    parser.add_argument("--account", type=int, default=0, help="BIP44 account index")
    parser.add_argument("--encrypt", action="store_true", help="Print a Fernet-encrypted XPUB_KEY")
    parser.add_argument("--key", type=str, default=None, help="Existing XPUB_ENCRYPTION_KEY")
    args = parser.parse_args()

    mnemonic = getpass("Seed phrase (hidden): ").strip()
    if not Bip39MnemonicValidator().IsValid(mnemonic):
        print("Error: invalid BIP39 seed phrase")
        return 1

    xpub = derive_account_xpub(mnemonic, args.account)
    master_key = MasterKeyMaterial.from_xpub(xpub)

    print(f"Account path: m/44'/60'/{args.account}'")
    print(f"Fingerprint:  {master_key.fingerprint}")
    print(f"First address (index 0): {derive_address(master_key, 0).address}")
    print()

    if args.encrypt:
        encryption_key = args.key or generate_encryption_key()
        print(f"XPUB_ENCRYPTION_KEY={encryption_key}")
        print(f"XPUB_KEY={XpubEncryptor(encryption_key).encrypt(xpub)}")
    else:
        print(f"XPUB_KEY={xpub}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
