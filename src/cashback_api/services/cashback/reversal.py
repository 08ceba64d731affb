"""Compensating entries for canceled sales."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.models.campaign import Interaction
from cashback_api.models.cashback import (
    CashbackTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from cashback_api.observability.cashback import get_cashback_store
from cashback_api.observability.tracing import get_ledger_tracer
from cashback_api.services.cashback.balances import get_balance
from cashback_api.services.cashback.rules import ZERO, to_decimal

SALE_CANCELED_REASON = "VENDA_CANCELADA"
RETROACTIVE_SALE_CANCELED_REASON = "VENDA_CANCELADA_RETROATIVA"


@dataclass(frozen=True)
class ReversalResult:
    reversed_transactions_count: int
    total_reversed_amount: Decimal
    canceled_interactions_count: int

    def as_dict(self) -> dict[str, object]:
        return {
            "reversedTransactionsCount": self.reversed_transactions_count,
            "totalReversedAmount": float(self.total_reversed_amount),
            "canceledInteractionsCount": self.canceled_interactions_count,
        }


EMPTY_REVERSAL = ReversalResult(
    reversed_transactions_count=0,
    total_reversed_amount=ZERO,
    canceled_interactions_count=0,
)


async def reverse_sale_cashback(
    db: AsyncSession,
    *,
    sale_id: UUID,
    client_id: UUID,
    organization_id: UUID,
    reason: str = SALE_CANCELED_REASON,
    allow_negative_balance: bool | None = None,
) -> ReversalResult:
    """Claw back unconsumed cashback earned by a canceled sale.

    Every accumulation tied to the sale is retired to ``EXPIRED``. Only the
    unconsumed remainder is debited; credit already spent stays spent. The
    debit may drive the balance negative unless ``allow_negative_balance``
    (or the setting) is false, in which case it is clamped at zero.
    Pending interactions queued by the retired credit are deleted. A missing
    balance row is logged and that entry is skipped; any other failure
    propagates and aborts the caller's transaction.
    """

    allow_negative = (
        settings.cashback_allow_negative_balance if allow_negative_balance is None else allow_negative_balance
    )
    with get_ledger_tracer().start_as_current_span("cashback.reverse_sale") as span:
        span.set_attribute("cashback.sale_id", str(sale_id))

        stmt = (
            select(CashbackTransaction)
            .where(
                CashbackTransaction.sale_id == sale_id,
                CashbackTransaction.organization_id == organization_id,
                CashbackTransaction.transaction_type == CashbackTransactionType.ACCUMULATION,
                CashbackTransaction.status.in_(
                    [CashbackTransactionStatus.ACTIVE, CashbackTransactionStatus.CONSUMED]
                ),
            )
            .order_by(CashbackTransaction.created_at)
            .with_for_update()
        )
        transactions = list((await db.execute(stmt)).scalars().all())
        if not transactions:
            logger.debug("No cashback to reverse", sale_id=str(sale_id), organization_id=str(organization_id))
            return EMPTY_REVERSAL

        now = dt.datetime.now(dt.timezone.utc)
        retired: list[CashbackTransaction] = []
        total_reversed = ZERO

        for transaction in transactions:
            remaining = to_decimal(transaction.remaining_amount)
            if remaining <= ZERO:
                transaction.status = CashbackTransactionStatus.EXPIRED
                transaction.remaining_amount = ZERO
                transaction.updated_at = now
                retired.append(transaction)
                continue

            balance = await get_balance(
                db,
                organization_id=organization_id,
                client_id=transaction.client_id,
                program_id=transaction.program_id,
            )
            if balance is None:
                logger.error(
                    "Cashback balance missing during reversal",
                    sale_id=str(sale_id),
                    transaction_id=str(transaction.id),
                    client_id=str(transaction.client_id),
                    program_id=str(transaction.program_id),
                )
                continue

            available = to_decimal(balance.available_amount)
            debit = remaining
            if not allow_negative and debit > available:
                debit = max(available, ZERO)
                get_cashback_store().record_reversal_discrepancy()
                logger.warning(
                    "Cashback reversal clamped at zero balance",
                    sale_id=str(sale_id),
                    transaction_id=str(transaction.id),
                    remaining=str(remaining),
                    available=str(available),
                )
            new_balance = available - debit

            db.add(
                CashbackTransaction(
                    organization_id=organization_id,
                    client_id=transaction.client_id,
                    program_id=transaction.program_id,
                    transaction_type=CashbackTransactionType.CANCELLATION,
                    status=CashbackTransactionStatus.ACTIVE,
                    amount=-debit,
                    remaining_amount=ZERO,
                    balance_before=available,
                    balance_after=new_balance,
                    sale_id=sale_id,
                    sale_value=transaction.sale_value,
                    campaign_id=transaction.campaign_id,
                    metadata_json={"sourceTransactionId": str(transaction.id), "reason": reason},
                    created_at=now,
                )
            )

            transaction.status = CashbackTransactionStatus.EXPIRED
            transaction.remaining_amount = ZERO
            transaction.updated_at = now

            balance.available_amount = new_balance
            balance.updated_at = now

            total_reversed += debit
            retired.append(transaction)

        await db.flush()

        canceled_interactions = await _delete_pending_interactions(
            db,
            organization_id=organization_id,
            client_id=client_id,
            transactions=retired,
        )

        result = ReversalResult(
            reversed_transactions_count=len(retired),
            total_reversed_amount=total_reversed,
            canceled_interactions_count=canceled_interactions,
        )
        get_cashback_store().record_reversal(
            transactions=result.reversed_transactions_count,
            amount=result.total_reversed_amount,
            interactions=result.canceled_interactions_count,
        )
        logger.info(
            "Cashback reversed for canceled sale",
            sale_id=str(sale_id),
            organization_id=str(organization_id),
            client_id=str(client_id),
            reason=reason,
            **result.as_dict(),
        )
        return result


async def _delete_pending_interactions(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    transactions: list[CashbackTransaction],
) -> int:
    """Drop unsent interactions triggered by retired credit.

    Interactions linked to a retired transaction are matched directly; rows
    without that link fall back to matching the transaction's campaign.
    """

    if not transactions:
        return 0

    transaction_ids = [transaction.id for transaction in transactions]
    campaign_ids = sorted(
        {transaction.campaign_id for transaction in transactions if transaction.campaign_id is not None},
        key=str,
    )

    trigger = Interaction.cashback_transaction_id.in_(transaction_ids)
    if campaign_ids:
        trigger = or_(
            trigger,
            and_(
                Interaction.cashback_transaction_id.is_(None),
                Interaction.campaign_id.in_(campaign_ids),
            ),
        )

    result = await db.execute(
        delete(Interaction)
        .where(
            Interaction.organization_id == organization_id,
            Interaction.client_id == client_id,
            Interaction.executed_at.is_(None),
            trigger,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


__all__ = [
    "EMPTY_REVERSAL",
    "RETROACTIVE_SALE_CANCELED_REASON",
    "ReversalResult",
    "SALE_CANCELED_REASON",
    "reverse_sale_cashback",
]
