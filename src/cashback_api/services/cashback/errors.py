"""Typed failures raised by the cashback ledger."""

from __future__ import annotations


class CashbackError(RuntimeError):
    """Base error for ledger operations; ``status_code`` drives HTTP mapping."""

    status_code: int = 500
    kind: str = "internal_error"


class CashbackNotFoundError(CashbackError):
    """Referenced organization, program or balance does not exist."""

    status_code = 404
    kind = "not_found"


class CashbackUnauthorizedError(CashbackError):
    """Operator identifier does not match an active seller."""

    status_code = 401
    kind = "unauthorized"


class CashbackRuleViolationError(CashbackError):
    """Business rule rejected the request (limits, funds, missing sale value)."""

    status_code = 400
    kind = "bad_request"


class CashbackLedgerError(CashbackError):
    """A ledger write that should have succeeded did not."""

    status_code = 500
    kind = "internal_error"


__all__ = [
    "CashbackError",
    "CashbackLedgerError",
    "CashbackNotFoundError",
    "CashbackRuleViolationError",
    "CashbackUnauthorizedError",
]
