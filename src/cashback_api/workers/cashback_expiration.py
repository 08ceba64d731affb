"""Worker wiring for periodic cashback expiration sweeps."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.services.cashback.expiration import expire_due_cashback

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class CashbackExpirationWorker:
    """Periodically retires cashback credit past its expiry date."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.cashback_expiration_interval_seconds
        self._batch_size = batch_size or settings.cashback_expiration_batch_size
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self.last_summary: Dict[str, object] | None = None
        self.last_error: str | None = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Cashback expiration worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Cashback expiration worker stopped")

    async def run_once(self, *, reference_time: dt.datetime | None = None) -> Dict[str, object]:
        """Sweep one batch of due credit and commit it."""

        session = await self._ensure_session()
        async with session as managed_session:
            try:
                summary = await expire_due_cashback(
                    managed_session,
                    reference_time=reference_time,
                    limit=self._batch_size,
                )
                await managed_session.commit()
            except Exception as exc:
                await managed_session.rollback()
                self.last_error = str(exc)
                logger.exception("Cashback expiration sweep failed", error=str(exc))
                raise

        self.last_error = None
        self.last_summary = summary.as_dict()
        return self.last_summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - logged in run_once
                logger.debug("Cashback expiration iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
