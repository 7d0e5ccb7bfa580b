"""Deposit scanners for on-chain transfer discovery."""

from goldenarrow.scanner.alchemy import AlchemyTransferScanner
from goldenarrow.scanner.base import TransferInfo, TransferScanner

__all__ = ["TransferScanner", "TransferInfo", "AlchemyTransferScanner"]
