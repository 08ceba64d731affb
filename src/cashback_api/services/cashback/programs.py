"""Administration of per-organization cashback programs."""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cashback_api.core.settings import settings
from cashback_api.models.cashback import CashbackProgram, CashbackProgramPrize
from cashback_api.models.organization import Organization
from cashback_api.schemas.cashback import CashbackProgramInput, CashbackProgramPrizeInput
from cashback_api.services.cashback.balances import backfill_program_balances
from cashback_api.services.cashback.errors import CashbackNotFoundError, CashbackRuleViolationError

_PROGRAM_FIELDS = (
    "title",
    "description",
    "is_active",
    "accumulation_type",
    "accumulation_value",
    "minimum_sale_value",
    "expiration_days",
    "redemption_limit_type",
    "redemption_limit_value",
    "allow_integration_accumulation",
)


class CashbackProgramService:
    """Create, read and update the cashback program of an organization."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_program(self, organization_id: UUID) -> CashbackProgram | None:
        stmt = (
            select(CashbackProgram)
            .options(selectinload(CashbackProgram.prizes))
            .where(CashbackProgram.organization_id == organization_id)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def create_program(
        self,
        organization_id: UUID,
        payload: CashbackProgramInput,
        *,
        backfill_batch_size: int | None = None,
    ) -> CashbackProgram:
        """Insert the program, open balances for existing clients and add prizes."""

        if await self._db.get(Organization, organization_id) is None:
            raise CashbackNotFoundError("Organização não encontrada.")
        if await self.get_program(organization_id) is not None:
            raise CashbackRuleViolationError("Programa de cashback já existe.")

        program = CashbackProgram(organization_id=organization_id)
        self._apply_fields(program, payload)
        self._db.add(program)
        await self._db.flush()

        created_balances = await backfill_program_balances(
            self._db,
            program,
            batch_size=backfill_batch_size or settings.cashback_balance_backfill_batch_size,
        )
        await self._sync_prizes(program, payload.prizes)
        await self._db.flush()

        logger.info(
            "Cashback program created",
            organization_id=str(organization_id),
            program_id=str(program.id),
            balances_created=created_balances,
            prizes=len(payload.prizes),
        )
        return await self._reload(program.id)

    async def update_program(
        self,
        organization_id: UUID,
        program_id: UUID,
        payload: CashbackProgramInput,
    ) -> CashbackProgram:
        stmt = select(CashbackProgram).where(
            CashbackProgram.id == program_id,
            CashbackProgram.organization_id == organization_id,
        )
        program = (await self._db.execute(stmt)).scalar_one_or_none()
        if program is None:
            raise CashbackNotFoundError("Programa de cashback não encontrado.")

        self._apply_fields(program, payload)
        await self._sync_prizes(program, payload.prizes)
        await self._db.flush()

        logger.info(
            "Cashback program updated",
            organization_id=str(organization_id),
            program_id=str(program.id),
        )
        return await self._reload(program.id)

    @staticmethod
    def _apply_fields(program: CashbackProgram, payload: CashbackProgramInput) -> None:
        for field in _PROGRAM_FIELDS:
            setattr(program, field, getattr(payload, field))

    async def _sync_prizes(
        self,
        program: CashbackProgram,
        prizes: Sequence[CashbackProgramPrizeInput],
    ) -> None:
        """Insert prizes without id, update those with one, delete flagged ones."""

        if not prizes:
            return

        existing_ids = [prize.id for prize in prizes if prize.id is not None]
        existing: dict[UUID, CashbackProgramPrize] = {}
        if existing_ids:
            stmt = select(CashbackProgramPrize).where(
                CashbackProgramPrize.program_id == program.id,
                CashbackProgramPrize.id.in_(existing_ids),
            )
            existing = {prize.id: prize for prize in (await self._db.execute(stmt)).scalars().all()}

        for payload in prizes:
            if payload.id is None:
                if payload.delete:
                    continue
                self._db.add(
                    CashbackProgramPrize(
                        program_id=program.id,
                        organization_id=program.organization_id,
                        title=payload.title,
                        description=payload.description,
                        image_url=payload.image_url,
                        value=payload.value,
                        is_active=payload.is_active,
                    )
                )
                continue

            prize = existing.get(payload.id)
            if prize is None:
                raise CashbackNotFoundError("Prêmio não encontrado.")
            if payload.delete:
                await self._db.delete(prize)
                continue
            prize.title = payload.title
            prize.description = payload.description
            prize.image_url = payload.image_url
            prize.value = payload.value
            prize.is_active = payload.is_active

    async def _reload(self, program_id: UUID) -> CashbackProgram:
        stmt = (
            select(CashbackProgram)
            .options(selectinload(CashbackProgram.prizes))
            .where(CashbackProgram.id == program_id)
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one()


__all__ = ["CashbackProgramService"]
