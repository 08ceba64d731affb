"""Operator-initiated cashback redemption."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.cashback import (
    CashbackBalance,
    CashbackProgram,
    CashbackTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from cashback_api.models.organization import Organization, OrganizationMember, Seller
from cashback_api.observability.cashback import get_cashback_store
from cashback_api.observability.tracing import get_ledger_tracer
from cashback_api.services.cashback.balances import get_balance
from cashback_api.services.cashback.errors import (
    CashbackError,
    CashbackLedgerError,
    CashbackNotFoundError,
    CashbackRuleViolationError,
    CashbackUnauthorizedError,
)
from cashback_api.services.cashback.rules import (
    ZERO,
    compute_redemption_cap,
    ensure_utc,
    format_currency,
    quantize_amount,
    to_decimal,
)

INSUFFICIENT_BALANCE_MESSAGE = "Saldo insuficiente."
REDEMPTION_SUCCESS_MESSAGE = "Resgate realizado com sucesso."


@dataclass(frozen=True)
class RedemptionResult:
    transaction_id: UUID
    new_balance: Decimal
    new_redeemed_total: Decimal


async def redeem(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    sale_value: Decimal | int | float | None,
    redemption_value: Decimal | int | float,
    operator_identifier: str,
) -> RedemptionResult:
    """Debit a client's cashback for a point-of-sale redemption.

    Preconditions are checked in a fixed order and each failure raises a
    distinct :class:`CashbackError`. The debit is a guarded ``UPDATE`` whose
    affected-row count must be one, so two terminals racing on the same
    balance cannot both spend it. Nothing is committed here.
    """

    try:
        return await _redeem(
            db,
            organization_id=organization_id,
            client_id=client_id,
            sale_value=to_decimal(sale_value),
            redemption_value=quantize_amount(to_decimal(redemption_value)),
            operator_identifier=operator_identifier,
        )
    except CashbackError as exc:
        get_cashback_store().record_redemption_rejection(exc.kind)
        logger.warning(
            "Cashback redemption rejected",
            organization_id=str(organization_id),
            client_id=str(client_id),
            kind=exc.kind,
            reason=str(exc),
        )
        raise


async def _redeem(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    sale_value: Decimal,
    redemption_value: Decimal,
    operator_identifier: str,
) -> RedemptionResult:
    with get_ledger_tracer().start_as_current_span("cashback.redeem") as span:
        span.set_attribute("cashback.organization_id", str(organization_id))
        span.set_attribute("cashback.client_id", str(client_id))

        organization = await db.get(Organization, organization_id)
        if organization is None:
            raise CashbackNotFoundError("Organização não encontrada.")

        seller = await _resolve_operator(db, organization_id, operator_identifier)
        if seller is None:
            raise CashbackUnauthorizedError("Operador não encontrado.")

        program = (
            await db.execute(select(CashbackProgram).where(CashbackProgram.organization_id == organization_id))
        ).scalar_one_or_none()
        if program is None:
            raise CashbackNotFoundError("Programa de cashback não encontrado.")

        if redemption_value <= ZERO:
            raise CashbackRuleViolationError("Valor do resgate deve ser positivo.")
        _enforce_limit(program, redemption_value, sale_value)

        transaction, balance = await _debit_balance(
            db,
            organization_id=organization_id,
            client_id=client_id,
            program=program,
            amount=redemption_value,
            sale_id=None,
            sale_value=sale_value,
            operator_seller_id=seller.id,
        )

        new_balance = to_decimal(balance.available_amount)
        get_cashback_store().record_redemption(redemption_value)
        logger.info(
            "Cashback redeemed",
            organization_id=str(organization_id),
            client_id=str(client_id),
            seller_id=str(seller.id),
            amount=str(redemption_value),
            new_balance=str(new_balance),
            transaction_id=str(transaction.id),
        )
        return RedemptionResult(
            transaction_id=transaction.id,
            new_balance=new_balance,
            new_redeemed_total=to_decimal(balance.redeemed_total),
        )


async def apply_sale_cashback(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    sale_id: UUID,
    sale_value: Decimal | int | float,
    amount: Decimal | int | float,
    program: CashbackProgram,
    operator_seller_id: UUID | None = None,
) -> RedemptionResult:
    """Spend part of the client's balance as payment for the sale being recorded.

    Applies the program's redemption limit against the gross sale value and
    links the ``REDEMPTION`` entry to the sale. Rejections are counted like
    terminal redemptions. Nothing is committed here.
    """

    value = quantize_amount(to_decimal(amount))
    gross = to_decimal(sale_value)
    try:
        with get_ledger_tracer().start_as_current_span("cashback.apply_sale_cashback") as span:
            span.set_attribute("cashback.sale_id", str(sale_id))
            if value <= ZERO:
                raise CashbackRuleViolationError("Valor do resgate deve ser positivo.")
            _enforce_limit(program, value, gross)
            transaction, balance = await _debit_balance(
                db,
                organization_id=organization_id,
                client_id=client_id,
                program=program,
                amount=value,
                sale_id=sale_id,
                sale_value=gross,
                operator_seller_id=operator_seller_id,
            )
    except CashbackError as exc:
        get_cashback_store().record_redemption_rejection(exc.kind)
        logger.warning(
            "Cashback applied to sale rejected",
            organization_id=str(organization_id),
            client_id=str(client_id),
            sale_id=str(sale_id),
            kind=exc.kind,
            reason=str(exc),
        )
        raise

    new_balance = to_decimal(balance.available_amount)
    get_cashback_store().record_redemption(value)
    logger.info(
        "Cashback applied to sale",
        organization_id=str(organization_id),
        client_id=str(client_id),
        sale_id=str(sale_id),
        amount=str(value),
        new_balance=str(new_balance),
        transaction_id=str(transaction.id),
    )
    return RedemptionResult(
        transaction_id=transaction.id,
        new_balance=new_balance,
        new_redeemed_total=to_decimal(balance.redeemed_total),
    )


def _enforce_limit(program: CashbackProgram, amount: Decimal, sale_value: Decimal) -> None:
    cap = compute_redemption_cap(program.redemption_limit_type, program.redemption_limit_value, sale_value)
    if cap is not None and amount > cap:
        raise CashbackRuleViolationError(
            f"Valor de resgate excede o limite permitido. Máximo: {format_currency(cap)}"
        )


async def _debit_balance(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    program: CashbackProgram,
    amount: Decimal,
    sale_id: UUID | None,
    sale_value: Decimal,
    operator_seller_id: UUID | None,
) -> tuple[CashbackTransaction, CashbackBalance]:
    """Debit the locked balance, draw down credits and write the ``REDEMPTION`` entry."""

    balance = await get_balance(
        db,
        organization_id=organization_id,
        client_id=client_id,
        program_id=program.id,
    )
    if balance is None:
        raise CashbackNotFoundError("Saldo de cashback não encontrado para este cliente.")

    previous_balance = to_decimal(balance.available_amount)
    if previous_balance < amount:
        raise CashbackRuleViolationError(INSUFFICIENT_BALANCE_MESSAGE)

    now = dt.datetime.now(dt.timezone.utc)
    debit = await db.execute(
        update(CashbackBalance)
        .where(
            CashbackBalance.id == balance.id,
            CashbackBalance.available_amount >= amount,
        )
        .values(
            available_amount=CashbackBalance.available_amount - amount,
            redeemed_total=CashbackBalance.redeemed_total + amount,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if debit.rowcount != 1:
        raise CashbackRuleViolationError(INSUFFICIENT_BALANCE_MESSAGE)
    await db.refresh(balance)

    consumed = await _consume_credits(
        db,
        organization_id=organization_id,
        client_id=client_id,
        program_id=program.id,
        amount=amount,
    )
    operator_user_id = None
    if operator_seller_id is not None:
        operator_user_id = await _resolve_operator_user(db, organization_id, operator_seller_id)

    # REDEMPTION rows are never updated after insert
    transaction = CashbackTransaction(
        organization_id=organization_id,
        client_id=client_id,
        program_id=program.id,
        transaction_type=CashbackTransactionType.REDEMPTION,
        status=CashbackTransactionStatus.ACTIVE,
        amount=amount,
        remaining_amount=ZERO,
        balance_before=previous_balance,
        balance_after=to_decimal(balance.available_amount),
        sale_id=sale_id,
        sale_value=quantize_amount(sale_value) if sale_value > ZERO else None,
        expires_at=None,
        operator_user_id=operator_user_id,
        operator_seller_id=operator_seller_id,
        metadata_json={"consumedTransactions": consumed},
        created_at=now,
    )
    db.add(transaction)
    await db.flush()
    if transaction.id is None:
        raise CashbackLedgerError("Erro ao criar transação de resgate.")
    return transaction, balance


async def _resolve_operator(db: AsyncSession, organization_id: UUID, identifier: str) -> Seller | None:
    if not identifier:
        return None
    stmt = select(Seller).where(
        Seller.organization_id == organization_id,
        Seller.operator_password == identifier,
        Seller.is_active.is_(True),
    )
    return (await db.execute(stmt)).scalars().first()


async def _resolve_operator_user(db: AsyncSession, organization_id: UUID, seller_id: UUID) -> UUID | None:
    stmt = select(OrganizationMember.user_id).where(
        OrganizationMember.organization_id == organization_id,
        OrganizationMember.seller_id == seller_id,
    )
    return (await db.execute(stmt)).scalars().first()


def _consumption_order(entry: CashbackTransaction) -> tuple[bool, dt.datetime, dt.datetime]:
    far_future = dt.datetime.max.replace(tzinfo=dt.timezone.utc)
    return (
        entry.expires_at is None,
        ensure_utc(entry.expires_at) if entry.expires_at else far_future,
        ensure_utc(entry.created_at) if entry.created_at else far_future,
    )


async def _consume_credits(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    program_id: UUID,
    amount: Decimal,
) -> list[dict[str, object]]:
    """Draw ``amount`` from active accumulation credits, soonest expiry first."""

    stmt = select(CashbackTransaction).where(
        CashbackTransaction.organization_id == organization_id,
        CashbackTransaction.client_id == client_id,
        CashbackTransaction.program_id == program_id,
        CashbackTransaction.transaction_type == CashbackTransactionType.ACCUMULATION,
        CashbackTransaction.status == CashbackTransactionStatus.ACTIVE,
        CashbackTransaction.remaining_amount > 0,
    )
    credits = list((await db.execute(stmt.with_for_update())).scalars().all())
    credits.sort(key=_consumption_order)

    outstanding = amount
    consumed: list[dict[str, object]] = []
    for credit in credits:
        if outstanding <= ZERO:
            break
        remaining = to_decimal(credit.remaining_amount)
        taken = min(remaining, outstanding)
        credit.remaining_amount = remaining - taken
        if credit.remaining_amount <= ZERO:
            credit.remaining_amount = ZERO
            credit.status = CashbackTransactionStatus.CONSUMED
        outstanding -= taken
        consumed.append({"transactionId": str(credit.id), "amount": float(taken)})

    if outstanding > ZERO:
        logger.warning(
            "Cashback redemption exceeded unconsumed credit",
            organization_id=str(organization_id),
            client_id=str(client_id),
            shortfall=str(outstanding),
        )
    return consumed


__all__ = [
    "INSUFFICIENT_BALANCE_MESSAGE",
    "REDEMPTION_SUCCESS_MESSAGE",
    "RedemptionResult",
    "apply_sale_cashback",
    "redeem",
]
