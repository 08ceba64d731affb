"""Cashback program, balance and ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    JSON,
    func,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from cashback_api.db.base import Base


def _enum_values(enum: type[Enum]) -> list[str]:
    return [member.value for member in enum]


class AccumulationRuleType(str, Enum):
    """How a qualifying sale converts into cashback credit."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"


class RedemptionLimitType(str, Enum):
    """Cap applied to a single redemption."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"


class CashbackTransactionType(str, Enum):
    """Ledger entry kinds."""

    ACCUMULATION = "accumulation"
    REDEMPTION = "redemption"
    CANCELLATION = "cancellation"
    EXPIRATION = "expiration"


class CashbackTransactionStatus(str, Enum):
    """Lifecycle of a ledger entry; ``EXPIRED`` is terminal."""

    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class CashbackProgram(Base):
    """Per-organization cashback configuration."""

    __tablename__ = "cashback_programs"
    __table_args__ = (
        UniqueConstraint("organization_id", name="uq_cashback_programs_organization_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    accumulation_type = Column(
        SqlEnum(AccumulationRuleType, name="cashback_accumulation_type", values_callable=_enum_values),
        nullable=False,
    )
    accumulation_value = Column(Numeric(14, 2), nullable=False)
    minimum_sale_value = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    expiration_days = Column(Integer, nullable=False, default=0, server_default="0")
    redemption_limit_type = Column(
        SqlEnum(RedemptionLimitType, name="cashback_redemption_limit_type", values_callable=_enum_values),
        nullable=True,
    )
    redemption_limit_value = Column(Numeric(14, 2), nullable=True)
    allow_integration_accumulation = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    prizes = relationship(
        "CashbackProgramPrize",
        back_populates="program",
        cascade="all, delete-orphan",
        order_by="CashbackProgramPrize.created_at",
    )


class CashbackProgramPrize(Base):
    """Reward that clients can claim with cashback."""

    __tablename__ = "cashback_program_prizes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(
        UUID(as_uuid=True),
        ForeignKey("cashback_programs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    value = Column(Numeric(14, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    program = relationship("CashbackProgram", back_populates="prizes")


class CashbackBalance(Base):
    """Running cashback totals for one (organization, client, program)."""

    __tablename__ = "cashback_balances"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "client_id",
            "program_id",
            name="uq_cashback_balances_org_client_program",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    program_id = Column(
        UUID(as_uuid=True),
        ForeignKey("cashback_programs.id", ondelete="RESTRICT"),
        nullable=False,
    )
    available_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    accumulated_total = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    redeemed_total = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CashbackTransaction(Base):
    """Append-only cashback ledger entry."""

    __tablename__ = "cashback_transactions"
    __table_args__ = (
        Index("ix_cashback_transactions_sale_type", "sale_id", "transaction_type"),
        Index("ix_cashback_transactions_client_program", "organization_id", "client_id", "program_id"),
        Index("ix_cashback_transactions_status_expires", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    program_id = Column(
        UUID(as_uuid=True),
        ForeignKey("cashback_programs.id", ondelete="RESTRICT"),
        nullable=False,
    )
    transaction_type = Column(
        SqlEnum(CashbackTransactionType, name="cashback_transaction_type", values_callable=_enum_values),
        nullable=False,
    )
    status = Column(
        SqlEnum(CashbackTransactionStatus, name="cashback_transaction_status", values_callable=_enum_values),
        nullable=False,
        default=CashbackTransactionStatus.ACTIVE,
        server_default=CashbackTransactionStatus.ACTIVE.value,
    )
    amount = Column(Numeric(14, 2), nullable=False)
    remaining_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    balance_before = Column(Numeric(14, 2), nullable=False)
    balance_after = Column(Numeric(14, 2), nullable=False)
    sale_id = Column(UUID(as_uuid=True), ForeignKey("sales.id", ondelete="SET NULL"), nullable=True)
    sale_value = Column(Numeric(14, 2), nullable=True)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    operator_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    operator_seller_id = Column(UUID(as_uuid=True), ForeignKey("sellers.id", ondelete="SET NULL"), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
