"""Job that expires due cashback credit across every organization."""

from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.services.cashback.expiration import expire_due_cashback

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_cashback_expiration(
    *,
    session_factory: SessionFactory,
    batch_size: int = 500,
    max_batches: int = 20,
    reference_time: dt.datetime | None = None,
) -> Dict[str, Any]:
    """Sweep in committed batches until no due credit is left or ``max_batches`` is hit.

    Credit skipped for a missing balance is excluded from later batches.
    """

    now = reference_time or dt.datetime.now(dt.timezone.utc)
    summary: Dict[str, Any] = {
        "batches": 0,
        "expired_transactions": 0,
        "expired_amount": 0.0,
        "skipped_transactions": 0,
    }
    skipped: set[UUID] = set()

    for _ in range(max(max_batches, 1)):
        maybe_session = session_factory()
        session: AsyncSession
        if isinstance(maybe_session, AsyncSession):
            session = maybe_session
        else:
            session = await maybe_session

        async with session as managed_session:
            batch = await expire_due_cashback(
                managed_session,
                reference_time=now,
                limit=batch_size,
                exclude_ids=skipped,
            )
            await managed_session.commit()

        summary["batches"] += 1
        summary["expired_transactions"] += batch.expired_transactions
        summary["expired_amount"] += float(batch.expired_amount)
        skipped.update(batch.skipped_ids)
        summary["skipped_transactions"] = len(skipped)
        if batch.expired_transactions + batch.skipped_transactions < batch_size:
            break

    logger.bind(summary=summary).info("Cashback expiration job completed")
    return summary
