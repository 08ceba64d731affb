"""Messaging campaigns and the scheduled interactions they queue."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, Numeric, String, Text, JSON, func
from sqlalchemy.dialects.postgresql import UUID

from cashback_api.db.base import Base
from cashback_api.models.cashback import AccumulationRuleType


class ExpirationMeasure(str, Enum):
    """Calendar unit used by campaign-granted cashback expiration."""

    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    cashback_generation_enabled = Column(Boolean, nullable=False, default=False, server_default="false")
    cashback_generation_type = Column(
        SqlEnum(
            AccumulationRuleType,
            name="campaign_cashback_rule_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=True,
    )
    cashback_generation_value = Column(Numeric(14, 2), nullable=True)
    cashback_expiration_measure = Column(
        SqlEnum(
            ExpirationMeasure,
            name="campaign_cashback_expiration_measure",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=True,
    )
    cashback_expiration_value = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Interaction(Base):
    """Scheduled client touchpoint; ``executed_at`` stays null until it is sent."""

    __tablename__ = "interactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    cashback_transaction_id = Column(
        UUID(as_uuid=True),
        ForeignKey("cashback_transactions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title = Column(String, nullable=False)
    interaction_type = Column(String, nullable=False, default="message", server_default="message")
    scheduled_for = Column(DateTime(timezone=True), nullable=True)
    executed_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
