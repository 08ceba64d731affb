"""Cashback maintenance jobs."""

from .expiration import run_cashback_expiration  # noqa: F401
