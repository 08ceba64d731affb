"""Crediting cashback for qualifying sales."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.cashback import (
    AccumulationRuleType,
    CashbackProgram,
    CashbackTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from cashback_api.observability.cashback import get_cashback_store
from cashback_api.observability.tracing import get_ledger_tracer
from cashback_api.services.cashback.balances import ensure_balance
from cashback_api.services.cashback.rules import (
    ZERO,
    compute_accumulated_value,
    compute_expiration_date,
    quantize_amount,
    to_decimal,
)

_UNSET: Any = object()


@dataclass(frozen=True)
class AccumulationResult:
    accumulated_value: Decimal
    previous_balance: Decimal
    new_balance: Decimal
    new_accumulated_total: Decimal
    transaction_id: UUID | None

    def as_dict(self) -> dict[str, object]:
        return {
            "accumulatedValue": float(self.accumulated_value),
            "previousBalance": float(self.previous_balance),
            "newBalance": float(self.new_balance),
            "newAccumulatedTotal": float(self.new_accumulated_total),
            "transactionId": str(self.transaction_id) if self.transaction_id else None,
        }


async def accumulate(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    sale_id: UUID | None,
    sale_value: Decimal | int | float,
    program: CashbackProgram,
    operator_id: UUID | None = None,
    accumulation_value_override: Decimal | int | float | None = None,
    rule_type_override: AccumulationRuleType | None = None,
    minimum_sale_value_override: Decimal | int | float | None = None,
    campaign_id: UUID | None = None,
    expires_at_override: dt.datetime | None = _UNSET,
    created_at: dt.datetime | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> AccumulationResult:
    """Credit cashback for one sale inside the caller's transaction.

    Zero-value accumulations return early without writing a ledger entry.
    Database failures propagate so the enclosing sale write rolls back too.
    """

    with get_ledger_tracer().start_as_current_span("cashback.accumulate") as span:
        span.set_attribute("cashback.organization_id", str(organization_id))
        span.set_attribute("cashback.client_id", str(client_id))

        balance = await ensure_balance(
            db,
            organization_id=organization_id,
            client_id=client_id,
            program_id=program.id,
        )
        previous_balance = to_decimal(balance.available_amount)
        previous_total = to_decimal(balance.accumulated_total)

        accumulated_value = compute_accumulated_value(
            rule_type_override or program.accumulation_type,
            program.accumulation_value if accumulation_value_override is None else accumulation_value_override,
            program.minimum_sale_value if minimum_sale_value_override is None else minimum_sale_value_override,
            sale_value,
        )

        if accumulated_value <= ZERO:
            get_cashback_store().record_skipped_accumulation()
            logger.debug(
                "Cashback accumulation skipped",
                organization_id=str(organization_id),
                client_id=str(client_id),
                sale_id=str(sale_id) if sale_id else None,
                sale_value=str(sale_value),
            )
            return AccumulationResult(
                accumulated_value=ZERO,
                previous_balance=previous_balance,
                new_balance=previous_balance,
                new_accumulated_total=previous_total,
                transaction_id=None,
            )

        timestamp = created_at or dt.datetime.now(dt.timezone.utc)
        new_balance = previous_balance + accumulated_value
        new_total = previous_total + accumulated_value

        balance.available_amount = new_balance
        balance.accumulated_total = new_total
        balance.updated_at = timestamp

        expires_at = (
            compute_expiration_date(timestamp, program.expiration_days)
            if expires_at_override is _UNSET
            else expires_at_override
        )
        transaction = CashbackTransaction(
            organization_id=organization_id,
            client_id=client_id,
            program_id=program.id,
            transaction_type=CashbackTransactionType.ACCUMULATION,
            status=CashbackTransactionStatus.ACTIVE,
            amount=accumulated_value,
            remaining_amount=accumulated_value,
            balance_before=previous_balance,
            balance_after=new_balance,
            sale_id=sale_id,
            sale_value=quantize_amount(to_decimal(sale_value)),
            campaign_id=campaign_id,
            expires_at=expires_at,
            operator_user_id=operator_id,
            metadata_json=dict(metadata) if metadata else None,
            created_at=timestamp,
        )
        db.add(transaction)
        await db.flush()

        get_cashback_store().record_accumulation(accumulated_value, campaign=campaign_id is not None)
        logger.info(
            "Cashback accumulated",
            organization_id=str(organization_id),
            client_id=str(client_id),
            sale_id=str(sale_id) if sale_id else None,
            campaign_id=str(campaign_id) if campaign_id else None,
            amount=str(accumulated_value),
            new_balance=str(new_balance),
            transaction_id=str(transaction.id),
        )
        return AccumulationResult(
            accumulated_value=accumulated_value,
            previous_balance=previous_balance,
            new_balance=new_balance,
            new_accumulated_total=new_total,
            transaction_id=transaction.id,
        )


__all__ = ["AccumulationResult", "accumulate"]
