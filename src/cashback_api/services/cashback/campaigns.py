"""Cashback granted by messaging campaigns."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.campaign import Campaign
from cashback_api.models.cashback import CashbackProgram
from cashback_api.services.cashback.accumulation import AccumulationResult, accumulate
from cashback_api.services.cashback.rules import ZERO, shift_by_duration


async def generate_campaign_cashback(
    db: AsyncSession,
    *,
    organization_id: UUID,
    client_id: UUID,
    campaign: Campaign,
    sale_id: UUID | None = None,
    sale_value: Decimal | int | float = ZERO,
    program: CashbackProgram | None = None,
    created_at: dt.datetime | None = None,
) -> AccumulationResult | None:
    """Credit the campaign's own cashback rule, attributed to the campaign.

    Returns ``None`` when the campaign does not generate cashback or the
    organization has no program to hold the balance.
    """

    if not campaign.cashback_generation_enabled or campaign.cashback_generation_type is None:
        return None

    if program is None:
        program = (
            await db.execute(select(CashbackProgram).where(CashbackProgram.organization_id == organization_id))
        ).scalar_one_or_none()
    if program is None:
        logger.info(
            "Campaign cashback skipped without program",
            organization_id=str(organization_id),
            campaign_id=str(campaign.id),
        )
        return None

    timestamp = created_at or dt.datetime.now(dt.timezone.utc)
    return await accumulate(
        db,
        organization_id=organization_id,
        client_id=client_id,
        sale_id=sale_id,
        sale_value=sale_value,
        program=program,
        rule_type_override=campaign.cashback_generation_type,
        accumulation_value_override=campaign.cashback_generation_value or ZERO,
        minimum_sale_value_override=ZERO,
        campaign_id=campaign.id,
        expires_at_override=shift_by_duration(
            timestamp,
            campaign.cashback_expiration_measure,
            campaign.cashback_expiration_value,
        ),
        created_at=timestamp,
        metadata={"source": "campaign", "campaignId": str(campaign.id)},
    )


__all__ = ["generate_campaign_cashback"]
