import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy import select

from cashback_api.core.settings import settings
from cashback_api.models import (
    AccumulationRuleType,
    Campaign,
    CashbackBalance,
    CashbackTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
    ExpirationMeasure,
    Interaction,
)
from cashback_api.observability.cashback import get_cashback_store
from cashback_api.services.cashback import redeem, reverse_sale_cashback
from cashback_api.services.cashback.reversal import EMPTY_REVERSAL
from cashback_api.services.sales import SaleLifecycleService
from conftest import seed_ledger


async def _cancellations(session):
    stmt = select(CashbackTransaction).where(
        CashbackTransaction.transaction_type == CashbackTransactionType.CANCELLATION
    )
    return (await session.execute(stmt)).scalars().all()


async def _balance(session):
    return (await session.execute(select(CashbackBalance))).scalar_one()


@pytest.mark.asyncio
async def test_reversal_debits_unconsumed_cashback_and_retires_credit(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        completion = await SaleLifecycleService(session).complete_sale(
            seed.organization.id, seed.client.id, Decimal("10000"), seller_id=seed.seller.id
        )
        sale_id = completion.sale.id
        credit_id = completion.accumulation.transaction_id
        await session.commit()

        result = await reverse_sale_cashback(
            session,
            sale_id=sale_id,
            client_id=seed.client.id,
            organization_id=seed.organization.id,
        )
        await session.commit()

        assert result.reversed_transactions_count == 1
        assert result.total_reversed_amount == Decimal("500")
        assert result.canceled_interactions_count == 0

    async with session_factory() as session:
        credit = await session.get(CashbackTransaction, credit_id)
        assert credit.status == CashbackTransactionStatus.EXPIRED
        assert credit.remaining_amount == Decimal("0")

        [cancellation] = await _cancellations(session)
        assert cancellation.amount == Decimal("-500")
        assert cancellation.balance_before == Decimal("500")
        assert cancellation.balance_after == Decimal("0")
        assert cancellation.sale_id == sale_id
        assert cancellation.metadata_json == {"sourceTransactionId": str(credit_id), "reason": "VENDA_CANCELADA"}

        balance = await _balance(session)
        assert balance.available_amount == Decimal("0")
        assert balance.accumulated_total == Decimal("500")


@pytest.mark.asyncio
async def test_reversal_does_not_claw_back_spent_cashback(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        completion = await SaleLifecycleService(session).complete_sale(
            seed.organization.id, seed.client.id, Decimal("10000")
        )
        await redeem(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            sale_value=None,
            redemption_value=Decimal("500"),
            operator_identifier="1234",
        )
        credit = await session.get(CashbackTransaction, completion.accumulation.transaction_id)
        assert credit.status == CashbackTransactionStatus.CONSUMED

        result = await reverse_sale_cashback(
            session,
            sale_id=completion.sale.id,
            client_id=seed.client.id,
            organization_id=seed.organization.id,
        )

        assert result.reversed_transactions_count == 1
        assert result.total_reversed_amount == Decimal("0")
        assert credit.status == CashbackTransactionStatus.EXPIRED
        assert await _cancellations(session) == []
        assert (await _balance(session)).available_amount == Decimal("0")


@pytest.mark.asyncio
async def test_second_reversal_is_a_no_op(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        completion = await SaleLifecycleService(session).complete_sale(
            seed.organization.id, seed.client.id, Decimal("10000")
        )
        kwargs = {
            "sale_id": completion.sale.id,
            "client_id": seed.client.id,
            "organization_id": seed.organization.id,
        }

        first = await reverse_sale_cashback(session, **kwargs)
        second = await reverse_sale_cashback(session, **kwargs)

        assert first.reversed_transactions_count == 1
        assert second == EMPTY_REVERSAL
        assert len(await _cancellations(session)) == 1
        assert (await _balance(session)).available_amount == Decimal("0")


@pytest.mark.asyncio
async def test_reversal_debits_into_debt_by_default_and_clamps_when_disabled(session_factory, monkeypatch) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        service = SaleLifecycleService(session)
        clamped_sale = await service.complete_sale(seed.organization.id, seed.client.id, Decimal("1000"))
        debt_sale = await service.complete_sale(seed.organization.id, seed.client.id, Decimal("1000"))
        configured_sale = await service.complete_sale(seed.organization.id, seed.client.id, Decimal("1000"))
        balance = await _balance(session)
        balance.available_amount = Decimal("100")
        await session.flush()
        kwargs = {"client_id": seed.client.id, "organization_id": seed.organization.id}

        clamped = await reverse_sale_cashback(
            session, sale_id=clamped_sale.sale.id, allow_negative_balance=False, **kwargs
        )
        assert clamped.total_reversed_amount == Decimal("100")
        assert balance.available_amount == Decimal("0")
        assert get_cashback_store().snapshot().counters["reversal_discrepancies"] == 1

        in_debt = await reverse_sale_cashback(session, sale_id=debt_sale.sale.id, **kwargs)
        assert in_debt.total_reversed_amount == Decimal("500")
        assert balance.available_amount == Decimal("-500")
        assert get_cashback_store().snapshot().counters["reversal_discrepancies"] == 1

        monkeypatch.setattr(settings, "cashback_allow_negative_balance", False)
        configured = await reverse_sale_cashback(session, sale_id=configured_sale.sale.id, **kwargs)
        assert configured.total_reversed_amount == Decimal("0")
        assert balance.available_amount == Decimal("-500")
        assert get_cashback_store().snapshot().counters["reversal_discrepancies"] == 2

        amounts = sorted(entry.amount for entry in await _cancellations(session))
        assert amounts == [Decimal("-500"), Decimal("-100"), Decimal("0")]


@pytest.mark.asyncio
async def test_reversal_skips_credit_whose_balance_is_missing(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        completion = await SaleLifecycleService(session).complete_sale(
            seed.organization.id, seed.client.id, Decimal("1000")
        )
        await session.delete(await _balance(session))
        await session.flush()

        result = await reverse_sale_cashback(
            session,
            sale_id=completion.sale.id,
            client_id=seed.client.id,
            organization_id=seed.organization.id,
        )

        assert result.reversed_transactions_count == 0
        credit = await session.get(CashbackTransaction, completion.accumulation.transaction_id)
        assert credit.status == CashbackTransactionStatus.ACTIVE
        assert await _cancellations(session) == []


@pytest.mark.asyncio
async def test_reversal_deletes_pending_interactions_triggered_by_the_sale(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        campaign = Campaign(
            organization_id=seed.organization.id,
            title="Cashback em dobro",
            cashback_generation_enabled=True,
            cashback_generation_type=AccumulationRuleType.FIXED,
            cashback_generation_value=Decimal("300"),
            cashback_expiration_measure=ExpirationMeasure.WEEKS,
            cashback_expiration_value=2,
        )
        unrelated = Campaign(organization_id=seed.organization.id, title="Aniversário")
        session.add_all([campaign, unrelated])
        await session.flush()

        completion = await SaleLifecycleService(session).complete_sale(
            seed.organization.id,
            seed.client.id,
            Decimal("10000"),
            campaigns=[campaign],
        )
        credit_id = completion.accumulation.transaction_id
        scheduled = dt.datetime.now(dt.timezone.utc) + dt.timedelta(days=7)
        org, client = seed.organization.id, seed.client.id
        session.add_all(
            [
                Interaction(
                    organization_id=org,
                    client_id=client,
                    cashback_transaction_id=credit_id,
                    title="Seu cashback chegou",
                    scheduled_for=scheduled,
                ),
                Interaction(
                    organization_id=org,
                    client_id=client,
                    campaign_id=campaign.id,
                    title="Lembrete de cashback",
                    scheduled_for=scheduled,
                ),
                Interaction(
                    organization_id=org,
                    client_id=client,
                    cashback_transaction_id=credit_id,
                    title="Enviada",
                    executed_at=dt.datetime.now(dt.timezone.utc),
                ),
                Interaction(
                    organization_id=org,
                    client_id=client,
                    campaign_id=unrelated.id,
                    title="Feliz aniversário",
                    scheduled_for=scheduled,
                ),
            ]
        )
        await session.commit()

        result = await reverse_sale_cashback(
            session,
            sale_id=completion.sale.id,
            client_id=client,
            organization_id=org,
        )
        await session.commit()

        assert result.reversed_transactions_count == 2
        assert result.total_reversed_amount == Decimal("800")
        assert result.canceled_interactions_count == 2

    async with session_factory() as session:
        titles = sorted((await session.execute(select(Interaction.title))).scalars().all())
        assert titles == ["Enviada", "Feliz aniversário"]


@pytest.mark.asyncio
async def test_cancel_sale_marks_sale_and_ignores_repeat_cancellation(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        service = SaleLifecycleService(session)
        completion = await service.complete_sale(seed.organization.id, seed.client.id, Decimal("10000"))

        result = await service.cancel_sale(completion.sale.id, reason="VENDA_CANCELADA_RETROATIVA")
        assert result.total_reversed_amount == Decimal("500")
        assert completion.sale.status.value == "canceled"
        assert completion.sale.cancellation_reason == "VENDA_CANCELADA_RETROATIVA"
        assert completion.sale.canceled_at is not None

        again = await service.cancel_sale(completion.sale.id)
        assert again == EMPTY_REVERSAL

        [cancellation] = await _cancellations(session)
        assert cancellation.metadata_json["reason"] == "VENDA_CANCELADA_RETROATIVA"
