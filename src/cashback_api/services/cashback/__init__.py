"""Cashback ledger service exports."""

from .accumulation import AccumulationResult, accumulate  # noqa: F401
from .balances import (  # noqa: F401
    backfill_program_balances,
    ensure_balance,
    get_balance,
    initialize_client_balance,
)
from .campaigns import generate_campaign_cashback  # noqa: F401
from .errors import (  # noqa: F401
    CashbackError,
    CashbackLedgerError,
    CashbackNotFoundError,
    CashbackRuleViolationError,
    CashbackUnauthorizedError,
)
from .expiration import ExpirationSummary, expire_due_cashback  # noqa: F401
from .programs import CashbackProgramService  # noqa: F401
from .reconciliation import BalanceReconciliation, reconcile_balance  # noqa: F401
from .redemption import (  # noqa: F401
    REDEMPTION_SUCCESS_MESSAGE,
    RedemptionResult,
    apply_sale_cashback,
    redeem,
)
from .reversal import (  # noqa: F401
    RETROACTIVE_SALE_CANCELED_REASON,
    SALE_CANCELED_REASON,
    ReversalResult,
    reverse_sale_cashback,
)
from .rules import compute_accumulated_value, compute_redemption_cap, max_redeemable_amount  # noqa: F401
