"""Balance row access for the cashback ledger."""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.cashback import CashbackBalance, CashbackProgram
from cashback_api.models.client import Client
from cashback_api.services.cashback.rules import ZERO


async def get_balance(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    program_id: UUID,
    lock: bool = True,
) -> CashbackBalance | None:
    """Fetch the balance row, locking it for the rest of the transaction by default."""

    stmt = select(CashbackBalance).where(
        CashbackBalance.organization_id == organization_id,
        CashbackBalance.client_id == client_id,
        CashbackBalance.program_id == program_id,
    )
    if lock:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def ensure_balance(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    program_id: UUID,
) -> CashbackBalance:
    """Return the locked balance row, inserting a zeroed one when absent.

    Runs inside the caller's transaction and never commits. The insert is
    wrapped in a savepoint: when a concurrent insert for the same triple
    wins the unique constraint, only the savepoint rolls back and the
    existing row is returned.
    """

    balance = await get_balance(
        db,
        organization_id=organization_id,
        client_id=client_id,
        program_id=program_id,
    )
    if balance is not None:
        return balance

    balance = CashbackBalance(
        organization_id=organization_id,
        client_id=client_id,
        program_id=program_id,
        available_amount=ZERO,
        accumulated_total=ZERO,
        redeemed_total=ZERO,
    )
    try:
        async with db.begin_nested():
            db.add(balance)
            await db.flush()
    except IntegrityError:
        logger.warning(
            "Detected race when creating cashback balance",
            organization_id=str(organization_id),
            client_id=str(client_id),
            program_id=str(program_id),
        )
        existing = await get_balance(
            db,
            organization_id=organization_id,
            client_id=client_id,
            program_id=program_id,
        )
        if existing is None:
            raise
        return existing

    logger.info(
        "Cashback balance created",
        organization_id=str(organization_id),
        client_id=str(client_id),
        program_id=str(program_id),
    )
    return balance


async def initialize_client_balance(db: AsyncSession, client: Client) -> CashbackBalance | None:
    """Open a balance for a newly created client when its organization runs a program."""

    program = (
        await db.execute(
            select(CashbackProgram).where(CashbackProgram.organization_id == client.organization_id)
        )
    ).scalar_one_or_none()
    if program is None:
        return None
    return await ensure_balance(
        db,
        organization_id=client.organization_id,
        client_id=client.id,
        program_id=program.id,
    )


def _chunks(values: list[UUID], size: int) -> Iterable[list[UUID]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


async def backfill_program_balances(
    db: AsyncSession,
    program: CashbackProgram,
    *,
    batch_size: int = 100,
) -> int:
    """Create zeroed balances for every client of the program's organization lacking one."""

    existing = select(CashbackBalance.client_id).where(CashbackBalance.program_id == program.id)
    stmt = (
        select(Client.id)
        .where(Client.organization_id == program.organization_id)
        .where(Client.id.not_in(existing))
        .order_by(Client.created_at)
    )
    client_ids = list((await db.execute(stmt)).scalars().all())

    created = 0
    for chunk in _chunks(client_ids, max(batch_size, 1)):
        db.add_all(
            CashbackBalance(
                organization_id=program.organization_id,
                client_id=client_id,
                program_id=program.id,
                available_amount=ZERO,
                accumulated_total=ZERO,
                redeemed_total=ZERO,
            )
            for client_id in chunk
        )
        await db.flush()
        created += len(chunk)

    if created:
        logger.info(
            "Cashback balances backfilled",
            organization_id=str(program.organization_id),
            program_id=str(program.id),
            created=created,
        )
    return created


__all__ = [
    "backfill_program_balances",
    "ensure_balance",
    "get_balance",
    "initialize_client_balance",
]
