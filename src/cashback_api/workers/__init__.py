"""Background workers supporting async processing."""

from .cashback_expiration import CashbackExpirationWorker

__all__ = ["CashbackExpirationWorker"]
