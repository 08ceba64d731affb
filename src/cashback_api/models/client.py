"""Organization clients (CRM contacts that earn and spend cashback)."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, JSON, func
from sqlalchemy.dialects.postgresql import UUID

from cashback_api.db.base import Base


class Client(Base):
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    first_sale_id = Column(UUID(as_uuid=True), nullable=True)
    first_sale_at = Column(DateTime(timezone=True), nullable=True)
    last_sale_id = Column(UUID(as_uuid=True), nullable=True)
    last_sale_at = Column(DateTime(timezone=True), nullable=True)
    purchase_count = Column(Integer, nullable=False, default=0, server_default="0")
    purchase_total = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
