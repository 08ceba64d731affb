import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy import select

from cashback_api.models import (
    AccumulationRuleType,
    Campaign,
    CashbackBalance,
    CashbackTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
    ExpirationMeasure,
)
from cashback_api.observability.cashback import get_cashback_store
from cashback_api.services.cashback import accumulate, balances, generate_campaign_cashback
from cashback_api.services.cashback.rules import ensure_utc
from conftest import seed_ledger


@pytest.mark.asyncio
async def test_fixed_accumulation_credits_balance_and_logs_transaction(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        sold_at = dt.datetime(2026, 3, 1, 15, tzinfo=dt.timezone.utc)

        result = await accumulate(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            sale_id=None,
            sale_value=Decimal("10000"),
            program=seed.program,
            created_at=sold_at,
        )
        await session.commit()

        assert result.accumulated_value == Decimal("500")
        assert result.previous_balance == Decimal("0")
        assert result.new_balance == Decimal("500")
        assert result.new_accumulated_total == Decimal("500")
        assert result.transaction_id is not None

    async with session_factory() as session:
        balance = (await session.execute(select(CashbackBalance))).scalar_one()
        assert balance.available_amount == Decimal("500")
        assert balance.accumulated_total == Decimal("500")
        assert balance.redeemed_total == Decimal("0")

        transaction = await session.get(CashbackTransaction, result.transaction_id)
        assert transaction.transaction_type == CashbackTransactionType.ACCUMULATION
        assert transaction.status == CashbackTransactionStatus.ACTIVE
        assert transaction.amount == Decimal("500")
        assert transaction.remaining_amount == Decimal("500")
        assert transaction.balance_before == Decimal("0")
        assert transaction.balance_after == Decimal("500")
        assert ensure_utc(transaction.expires_at) == sold_at + dt.timedelta(days=30)

    assert get_cashback_store().snapshot().counters["accumulations"] == 1


@pytest.mark.asyncio
async def test_percentage_accumulation_below_minimum_writes_nothing(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(
            session,
            accumulation_type=AccumulationRuleType.PERCENTAGE,
            accumulation_value=Decimal("10"),
            minimum_sale_value=Decimal("5000"),
        )

        skipped = await accumulate(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            sale_id=None,
            sale_value=Decimal("3000"),
            program=seed.program,
        )
        assert skipped.accumulated_value == Decimal("0")
        assert skipped.transaction_id is None
        assert skipped.new_balance == skipped.previous_balance == Decimal("0")

        transactions = (await session.execute(select(CashbackTransaction))).scalars().all()
        assert transactions == []

        credited = await accumulate(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            sale_id=None,
            sale_value=Decimal("20000"),
            program=seed.program,
        )
        assert credited.accumulated_value == Decimal("2000")
        assert credited.new_balance == Decimal("2000")


@pytest.mark.asyncio
async def test_balance_is_created_lazily_once(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)

        for _ in range(2):
            await accumulate(
                session,
                organization_id=seed.organization.id,
                client_id=seed.client.id,
                sale_id=None,
                sale_value=Decimal("1000"),
                program=seed.program,
            )

        balances = (await session.execute(select(CashbackBalance))).scalars().all()
        assert len(balances) == 1
        assert balances[0].available_amount == Decimal("1000")
        assert balances[0].accumulated_total == Decimal("1000")


@pytest.mark.asyncio
async def test_balance_creation_race_returns_existing_row(session_factory, monkeypatch) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        winner = CashbackBalance(
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            program_id=seed.program.id,
            available_amount=Decimal("300"),
            accumulated_total=Decimal("300"),
            redeemed_total=Decimal("0"),
        )
        session.add(winner)
        await session.flush()

        real_get_balance = balances.get_balance
        lookups = []

        async def stale_first_lookup(*args, **kwargs):
            lookups.append(kwargs)
            if len(lookups) == 1:
                return None
            return await real_get_balance(*args, **kwargs)

        monkeypatch.setattr(balances, "get_balance", stale_first_lookup)

        balance = await balances.ensure_balance(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            program_id=seed.program.id,
        )
        await session.commit()

        assert balance.id == winner.id
        assert balance.available_amount == Decimal("300")
        assert len(lookups) == 2

    async with session_factory() as session:
        rows = (await session.execute(select(CashbackBalance))).scalars().all()
        assert [row.id for row in rows] == [winner.id]


@pytest.mark.asyncio
async def test_program_without_expiry_stores_null_expiration(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session, expiration_days=0)

        result = await accumulate(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            sale_id=None,
            sale_value=Decimal("1000"),
            program=seed.program,
        )
        transaction = await session.get(CashbackTransaction, result.transaction_id)
        assert transaction.expires_at is None


@pytest.mark.asyncio
async def test_value_override_supports_promotional_multiplier(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)

        result = await accumulate(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            sale_id=None,
            sale_value=Decimal("1000"),
            program=seed.program,
            accumulation_value_override=Decimal("1000"),
            metadata={"promotion": "double"},
        )
        transaction = await session.get(CashbackTransaction, result.transaction_id)
        assert result.accumulated_value == Decimal("1000")
        assert transaction.metadata_json == {"promotion": "double"}


@pytest.mark.asyncio
async def test_campaign_cashback_uses_campaign_rule_and_attribution(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session, minimum_sale_value=Decimal("99999"))
        campaign = Campaign(
            organization_id=seed.organization.id,
            title="Volte em março",
            cashback_generation_enabled=True,
            cashback_generation_type=AccumulationRuleType.FIXED,
            cashback_generation_value=Decimal("300"),
            cashback_expiration_measure=ExpirationMeasure.MONTHS,
            cashback_expiration_value=1,
        )
        session.add(campaign)
        await session.flush()
        granted_at = dt.datetime(2026, 1, 31, tzinfo=dt.timezone.utc)

        result = await generate_campaign_cashback(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            campaign=campaign,
            created_at=granted_at,
        )

        assert result is not None
        assert result.accumulated_value == Decimal("300")
        transaction = await session.get(CashbackTransaction, result.transaction_id)
        assert transaction.campaign_id == campaign.id
        assert ensure_utc(transaction.expires_at) == dt.datetime(2026, 2, 28, tzinfo=dt.timezone.utc)


@pytest.mark.asyncio
async def test_campaign_without_cashback_generation_is_ignored(session_factory) -> None:
    async with session_factory() as session:
        seed = await seed_ledger(session)
        campaign = Campaign(organization_id=seed.organization.id, title="Aniversário")
        session.add(campaign)
        await session.flush()

        result = await generate_campaign_cashback(
            session,
            organization_id=seed.organization.id,
            client_id=seed.client.id,
            campaign=campaign,
        )
        assert result is None
