"""Sale completion and cancellation flows that drive the cashback ledger."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.campaign import Campaign
from cashback_api.models.cashback import CashbackProgram
from cashback_api.models.client import Client
from cashback_api.models.sale import Sale, SaleStatus
from cashback_api.services.cashback import (
    AccumulationResult,
    CashbackNotFoundError,
    CashbackRuleViolationError,
    RedemptionResult,
    ReversalResult,
    SALE_CANCELED_REASON,
    accumulate,
    apply_sale_cashback,
    generate_campaign_cashback,
    initialize_client_balance,
    reverse_sale_cashback,
)
from cashback_api.services.cashback.reversal import EMPTY_REVERSAL
from cashback_api.services.cashback.rules import ZERO, quantize_amount, to_decimal


@dataclass
class SaleCompletion:
    sale: Sale
    accumulation: AccumulationResult | None
    campaign_accumulations: list[AccumulationResult]
    redemption: RedemptionResult | None = None


class SaleLifecycleService:
    """Compose sale writes with ledger operations in the caller's unit of work."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def register_client(
        self,
        organization_id: UUID,
        *,
        name: str,
        phone: str | None = None,
        email: str | None = None,
    ) -> Client:
        client = Client(organization_id=organization_id, name=name, phone=phone, email=email)
        self._db.add(client)
        await self._db.flush()
        await initialize_client_balance(self._db, client)
        return client

    async def complete_sale(
        self,
        organization_id: UUID,
        client_id: UUID,
        total_value: Decimal | int | float,
        *,
        seller_id: UUID | None = None,
        operator_id: UUID | None = None,
        external_id: str | None = None,
        sold_at: dt.datetime | None = None,
        metadata: Mapping[str, Any] | None = None,
        campaigns: Sequence[Campaign] = (),
        apply_cashback: Decimal | int | float | None = None,
    ) -> SaleCompletion:
        """Record a completed sale and credit its cashback atomically.

        ``apply_cashback`` spends that much of the client's balance on this
        sale. The sale then stores the net total while cashback accumulation
        and the client's purchase total use the gross ``total_value``.
        """

        client = await self._db.get(Client, client_id)
        if client is None or client.organization_id != organization_id:
            raise CashbackNotFoundError("Cliente não encontrado.")

        program = (
            await self._db.execute(
                select(CashbackProgram).where(CashbackProgram.organization_id == organization_id)
            )
        ).scalar_one_or_none()
        active_program = program if program is not None and program.is_active else None

        applied = quantize_amount(to_decimal(apply_cashback))
        if applied < ZERO:
            raise CashbackRuleViolationError("Valor do resgate deve ser positivo.")
        if applied > ZERO and active_program is None:
            raise CashbackNotFoundError("Programa de cashback não encontrado.")

        timestamp = sold_at or dt.datetime.now(dt.timezone.utc)
        value = quantize_amount(to_decimal(total_value))
        sale = Sale(
            organization_id=organization_id,
            client_id=client_id,
            seller_id=seller_id,
            external_id=external_id,
            total_value=value - applied,
            status=SaleStatus.COMPLETED,
            sold_at=timestamp,
            metadata_json=dict(metadata) if metadata else None,
        )
        self._db.add(sale)
        await self._db.flush()
        self._track_purchase(client, sale, value, timestamp)

        redemption: RedemptionResult | None = None
        if applied > ZERO:
            redemption = await apply_sale_cashback(
                self._db,
                organization_id=organization_id,
                client_id=client_id,
                sale_id=sale.id,
                sale_value=value,
                amount=applied,
                program=active_program,
                operator_seller_id=seller_id,
            )

        accumulation: AccumulationResult | None = None
        campaign_results: list[AccumulationResult] = []
        if active_program is not None:
            accumulation = await accumulate(
                self._db,
                organization_id=organization_id,
                client_id=client_id,
                sale_id=sale.id,
                sale_value=value,
                program=active_program,
                operator_id=operator_id,
                created_at=timestamp,
                metadata=metadata,
            )
            for campaign in campaigns:
                result = await generate_campaign_cashback(
                    self._db,
                    organization_id=organization_id,
                    client_id=client_id,
                    campaign=campaign,
                    sale_id=sale.id,
                    sale_value=value,
                    program=active_program,
                    created_at=timestamp,
                )
                if result is not None:
                    campaign_results.append(result)

        logger.info(
            "Sale completed",
            organization_id=str(organization_id),
            client_id=str(client_id),
            sale_id=str(sale.id),
            total_value=str(value),
            applied_cashback=str(applied),
            cashback=str(accumulation.accumulated_value) if accumulation else None,
        )
        return SaleCompletion(
            sale=sale,
            accumulation=accumulation,
            campaign_accumulations=campaign_results,
            redemption=redemption,
        )

    async def cancel_sale(
        self,
        sale_id: UUID,
        *,
        organization_id: UUID | None = None,
        reason: str = SALE_CANCELED_REASON,
    ) -> ReversalResult:
        """Mark the sale canceled and reverse the cashback it earned."""

        sale = await self._db.get(Sale, sale_id)
        if sale is None or (organization_id is not None and sale.organization_id != organization_id):
            raise CashbackNotFoundError("Venda não encontrada.")
        if sale.status == SaleStatus.CANCELED:
            return EMPTY_REVERSAL

        result = await reverse_sale_cashback(
            self._db,
            sale_id=sale.id,
            client_id=sale.client_id,
            organization_id=sale.organization_id,
            reason=reason,
        )
        sale.status = SaleStatus.CANCELED
        sale.canceled_at = dt.datetime.now(dt.timezone.utc)
        sale.cancellation_reason = reason
        await self._db.flush()

        logger.info(
            "Sale canceled",
            sale_id=str(sale.id),
            organization_id=str(sale.organization_id),
            reason=reason,
            reversed_transactions=result.reversed_transactions_count,
        )
        return result

    @staticmethod
    def _track_purchase(client: Client, sale: Sale, value: Decimal, timestamp: dt.datetime) -> None:
        if client.first_sale_id is None:
            client.first_sale_id = sale.id
            client.first_sale_at = timestamp
        client.last_sale_id = sale.id
        client.last_sale_at = timestamp
        client.purchase_count = (client.purchase_count or 0) + 1
        client.purchase_total = to_decimal(client.purchase_total) + value


__all__ = ["SaleCompletion", "SaleLifecycleService"]
