"""API routers package."""

from bankrecon.routers import bank_sync

__all__ = ["bank_sync"]
