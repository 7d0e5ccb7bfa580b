#!/usr/bin/env python3
"""Deposit Reconciliation Script.

Scans BSC for USDT transfers to every provisioned deposit address and
compares them with the ledger. Useful after downtime or to verify balances.

Usage:
    python scripts/reconcile.py [--address 0x...] [--credit]

Options:
    --address  Only reconcile one deposit address (default: all)
    --credit   Credit missing deposits and advance the sync markers
    --limit    Maximum number of wallets to check
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

load_dotenv()

from goldenarrow.config import get_settings
from goldenarrow.errors import WalletError
from goldenarrow.hdwallet import MasterKeyMaterial
from goldenarrow.ledger.database import close_db, init_db
from goldenarrow.scanner import AlchemyTransferScanner
from goldenarrow.services import DepositReconciler, WalletProvisioningService

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def reconcile_wallet(
    reconciler: DepositReconciler,
    address: str,
    user_id: str,
    credit: bool = False,
) -> dict:
    """Reconcile a single deposit address.

    Returns:
        Dict with reconciliation results
    """
    logger.info(f"Reconciling {address} (user {user_id})")

    result = {
        "address": address,
        "user_id": user_id,
        "missing_deposits": [],
        "missing_amount": Decimal("0"),
        "credited": 0,
    }

    missing = await reconciler.reconcile_deposits(address)
    result["missing_deposits"] = missing
    result["missing_amount"] = sum((t.amount for t in missing), Decimal("0"))

    for transfer in missing:
        logger.warning(
            f"  MISSING: {transfer.tx_hash[:18]}... "
            f"({transfer.amount} {reconciler.token_symbol}, block {transfer.block_number})"
        )

    if credit and missing:
        sync = await reconciler.sync_deposits(user_id)
        result["credited"] = sync.synced_count
        logger.info(
            f"  Credited {sync.synced_count} deposit(s), "
            f"synced to block {sync.last_synced_block}"
        )

    return result


async def main():
    parser = argparse.ArgumentParser(description="USDT Deposit Reconciliation")
    parser.add_argument("--address", type=str, help="Only reconcile this deposit address")
    parser.add_argument("--credit", action="store_true", help="Credit missing deposits")
    parser.add_argument("--limit", type=int, default=None, help="Maximum wallets to check")

    args = parser.parse_args()
    settings = get_settings()

    # Initialize database
    await init_db()

    scanner = AlchemyTransferScanner(settings.rpc_endpoint, timeout=settings.scanner_timeout)
    reconciler = DepositReconciler(
        scanner,
        token_contract=settings.usdt_contract_address,
        token_decimals=settings.usdt_decimals,
        min_confirmations=settings.min_confirmations,
    )
    provisioning = WalletProvisioningService(MasterKeyMaterial.from_settings(settings))

    logger.info("=" * 60)
    logger.info("DEPOSIT RECONCILIATION")
    logger.info("=" * 60)

    if not args.credit:
        logger.info("READ-ONLY MODE - pass --credit to credit missing deposits")

    results = []
    failures = 0

    try:
        if args.address:
            wallets = [await provisioning.find_owner(args.address)]
        else:
            wallets = await provisioning.list_wallets(limit=args.limit)

        for wallet in wallets:
            try:
                results.append(
                    await reconcile_wallet(
                        reconciler, wallet.address, wallet.user_id, credit=args.credit
                    )
                )
            except WalletError as e:
                failures += 1
                logger.error(f"  FAILED {wallet.address}: {e.code}: {e.message}")
    finally:
        await scanner.close()
        await close_db()

    # Summary
    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info("=" * 60)

    discrepancies = [r for r in results if r["missing_deposits"]]
    logger.info(f"Wallets checked: {len(results)}")
    logger.info(f"With missing deposits: {len(discrepancies)}")
    for r in discrepancies:
        status = "CREDITED" if r["credited"] else "DISCREPANCY"
        logger.info(
            f"{r['address']}: {status} "
            f"({len(r['missing_deposits'])} deposits, {r['missing_amount']} USDT)"
        )
    if failures:
        logger.error(f"Failed wallets: {failures}")

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
