"""Natural, time-based expiry of unspent cashback credit."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Collection
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.cashback import (
    CashbackTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from cashback_api.observability.cashback import get_cashback_store
from cashback_api.services.cashback.balances import get_balance
from cashback_api.services.cashback.rules import ZERO, to_decimal


@dataclass(frozen=True)
class ExpirationSummary:
    expired_transactions: int
    expired_amount: Decimal
    skipped_transactions: int = 0
    skipped_ids: tuple[UUID, ...] = ()

    def as_dict(self) -> dict[str, object]:
        return {
            "expired_transactions": self.expired_transactions,
            "expired_amount": float(self.expired_amount),
            "skipped_transactions": self.skipped_transactions,
        }


async def expire_due_cashback(
    db: AsyncSession,
    *,
    reference_time: dt.datetime | None = None,
    limit: int | None = None,
    exclude_ids: Collection[UUID] | None = None,
) -> ExpirationSummary:
    """Retire accumulation credit whose expiry date has passed.

    Each due credit gets an ``EXPIRATION`` entry for its unspent remainder,
    the balance is debited by the same amount and the credit flips to
    ``EXPIRED``. Already expired or fully consumed credit is never touched,
    so repeated sweeps are no-ops. Credit whose balance row is missing is
    left untouched and reported in ``skipped_ids``; callers sweeping in
    batches pass those ids back as ``exclude_ids``.
    """

    now = reference_time or dt.datetime.now(dt.timezone.utc)
    stmt = (
        select(CashbackTransaction)
        .where(
            CashbackTransaction.transaction_type == CashbackTransactionType.ACCUMULATION,
            CashbackTransaction.status == CashbackTransactionStatus.ACTIVE,
            CashbackTransaction.remaining_amount > 0,
            CashbackTransaction.expires_at.is_not(None),
            CashbackTransaction.expires_at <= now,
        )
        .order_by(CashbackTransaction.expires_at)
        .with_for_update(skip_locked=True)
    )
    if exclude_ids:
        stmt = stmt.where(CashbackTransaction.id.not_in(list(exclude_ids)))
    if limit:
        stmt = stmt.limit(limit)

    credits = list((await db.execute(stmt)).scalars().all())
    expired = 0
    skipped: list[UUID] = []
    total = ZERO
    for credit in credits:
        balance = await get_balance(
            db,
            organization_id=credit.organization_id,
            client_id=credit.client_id,
            program_id=credit.program_id,
        )
        if balance is None:
            skipped.append(credit.id)
            logger.error(
                "Cashback balance missing during expiration",
                transaction_id=str(credit.id),
                client_id=str(credit.client_id),
            )
            continue

        remaining = to_decimal(credit.remaining_amount)
        available = to_decimal(balance.available_amount)
        debit = min(remaining, max(available, ZERO))
        new_balance = available - debit

        db.add(
            CashbackTransaction(
                organization_id=credit.organization_id,
                client_id=credit.client_id,
                program_id=credit.program_id,
                transaction_type=CashbackTransactionType.EXPIRATION,
                status=CashbackTransactionStatus.ACTIVE,
                amount=-debit,
                remaining_amount=ZERO,
                balance_before=available,
                balance_after=new_balance,
                sale_id=credit.sale_id,
                campaign_id=credit.campaign_id,
                metadata_json={"sourceTransactionId": str(credit.id), "expiredAt": now.isoformat()},
                created_at=now,
            )
        )
        credit.status = CashbackTransactionStatus.EXPIRED
        credit.remaining_amount = ZERO
        credit.updated_at = now
        balance.available_amount = new_balance
        balance.updated_at = now

        expired += 1
        total += debit

    await db.flush()

    summary = ExpirationSummary(
        expired_transactions=expired,
        expired_amount=total,
        skipped_transactions=len(skipped),
        skipped_ids=tuple(skipped),
    )
    if expired:
        get_cashback_store().record_expiration(transactions=expired, amount=total)
    logger.bind(summary=summary.as_dict()).info("Cashback expiration sweep completed")
    return summary


__all__ = ["ExpirationSummary", "expire_due_cashback"]
