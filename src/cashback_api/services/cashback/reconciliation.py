"""Rebuild a balance from the ledger and compare it with the stored row."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.cashback import (
    CashbackTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from cashback_api.services.cashback.balances import get_balance
from cashback_api.services.cashback.rules import ZERO, to_decimal


@dataclass(frozen=True)
class BalanceReconciliation:
    available: Decimal
    ledger_available: Decimal
    unconsumed_credit: Decimal

    @property
    def is_consistent(self) -> bool:
        return self.available == self.ledger_available == self.unconsumed_credit


async def reconcile_balance(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    program_id: UUID,
) -> BalanceReconciliation:
    """Compare the stored balance with two ledger projections.

    ``ledger_available`` replays every entry: credits minus redemptions plus
    the (negative) cancellation and expiration debits. ``unconsumed_credit``
    sums what is still spendable on active accumulation entries.
    """

    balance = await get_balance(
        db,
        organization_id=organization_id,
        client_id=client_id,
        program_id=program_id,
        lock=False,
    )
    available = to_decimal(balance.available_amount) if balance is not None else ZERO

    signed_amount = case(
        (CashbackTransaction.transaction_type == CashbackTransactionType.REDEMPTION, -CashbackTransaction.amount),
        else_=CashbackTransaction.amount,
    )
    unconsumed = case(
        (
            (CashbackTransaction.transaction_type == CashbackTransactionType.ACCUMULATION)
            & (CashbackTransaction.status == CashbackTransactionStatus.ACTIVE),
            CashbackTransaction.remaining_amount,
        ),
        else_=0,
    )
    stmt = select(
        func.coalesce(func.sum(signed_amount), 0),
        func.coalesce(func.sum(unconsumed), 0),
    ).where(
        CashbackTransaction.organization_id == organization_id,
        CashbackTransaction.client_id == client_id,
        CashbackTransaction.program_id == program_id,
    )
    ledger_available, unconsumed_credit = (await db.execute(stmt)).one()

    result = BalanceReconciliation(
        available=available,
        ledger_available=_money(ledger_available),
        unconsumed_credit=_money(unconsumed_credit),
    )
    if not result.is_consistent:
        logger.warning(
            "Cashback balance does not reconcile with ledger",
            organization_id=str(organization_id),
            client_id=str(client_id),
            program_id=str(program_id),
            available=str(result.available),
            ledger_available=str(result.ledger_available),
            unconsumed_credit=str(result.unconsumed_credit),
        )
    return result


def _money(value: object) -> Decimal:
    return to_decimal(value).quantize(Decimal("0.01"))


__all__ = ["BalanceReconciliation", "reconcile_balance"]
