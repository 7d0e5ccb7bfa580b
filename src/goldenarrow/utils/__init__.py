"""Utility modules for Golden Arrow."""

from goldenarrow.utils.locks import KeyedLock, LockTimeoutError, get_named_lock

__all__ = ["KeyedLock", "LockTimeoutError", "get_named_lock"]
