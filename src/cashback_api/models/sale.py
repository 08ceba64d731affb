"""Sales recorded for organization clients."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Numeric, String, JSON, func
from sqlalchemy.dialects.postgresql import UUID

from cashback_api.db.base import Base


class SaleStatus(str, Enum):
    COMPLETED = "completed"
    CANCELED = "canceled"


class Sale(Base):
    __tablename__ = "sales"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(UUID(as_uuid=True), ForeignKey("sellers.id", ondelete="SET NULL"), nullable=True)
    external_id = Column(String, nullable=True)
    total_value = Column(Numeric(14, 2), nullable=False)
    status = Column(
        SqlEnum(SaleStatus, name="sale_status", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
        default=SaleStatus.COMPLETED,
        server_default=SaleStatus.COMPLETED.value,
    )
    sold_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
