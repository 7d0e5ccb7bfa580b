"""HTTP API for deposit wallets."""

from goldenarrow.api.app import create_app

__all__ = ["create_app"]
