from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from cashback_api.models.cashback import (
    AccumulationRuleType,
    CashbackTransactionStatus,
    CashbackTransactionType,
    RedemptionLimitType,
)


def _lower_enum_input(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower() or None
    return value


class CashbackProgramPrizeInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: UUID | None = None
    title: str = Field(..., min_length=1)
    description: str | None = None
    image_url: str | None = Field(None, alias="imageUrl")
    value: Decimal = Field(..., ge=0)
    is_active: bool = Field(True, alias="isActive")
    delete: bool = False


class CashbackProgramInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    description: str | None = None
    is_active: bool = Field(True, alias="isActive")
    accumulation_type: AccumulationRuleType = Field(..., alias="accumulationType")
    accumulation_value: Decimal = Field(..., ge=0, alias="accumulationValue")
    minimum_sale_value: Decimal = Field(Decimal("0"), ge=0, alias="minimumSaleValue")
    expiration_days: int = Field(0, alias="expirationDays")
    redemption_limit_type: RedemptionLimitType | None = Field(None, alias="redemptionLimitType")
    redemption_limit_value: Decimal | None = Field(None, ge=0, alias="redemptionLimitValue")
    allow_integration_accumulation: bool = Field(True, alias="allowIntegrationAccumulation")
    prizes: list[CashbackProgramPrizeInput] = Field(default_factory=list)

    @field_validator("accumulation_type", "redemption_limit_type", mode="before")
    @classmethod
    def _normalize_enums(cls, value: Any) -> Any:
        return _lower_enum_input(value)

    @model_validator(mode="after")
    def _validate_rules(self) -> "CashbackProgramInput":
        if self.accumulation_type is AccumulationRuleType.PERCENTAGE and self.accumulation_value > 100:
            raise ValueError("accumulationValue must be at most 100 for percentage programs")
        if self.redemption_limit_type is not None and self.redemption_limit_value is None:
            raise ValueError("redemptionLimitValue is required when redemptionLimitType is set")
        if (
            self.redemption_limit_type is RedemptionLimitType.PERCENTAGE
            and self.redemption_limit_value is not None
            and self.redemption_limit_value > 100
        ):
            raise ValueError("redemptionLimitValue must be at most 100 for percentage limits")
        return self


class CashbackProgramPrizeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    title: str
    description: str | None = None
    image_url: str | None = Field(None, alias="imageUrl")
    value: float
    is_active: bool = Field(..., alias="isActive")


class CashbackProgramResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    organization_id: UUID = Field(..., alias="organizationId")
    title: str
    description: str | None = None
    is_active: bool = Field(..., alias="isActive")
    accumulation_type: AccumulationRuleType = Field(..., alias="accumulationType")
    accumulation_value: float = Field(..., alias="accumulationValue")
    minimum_sale_value: float = Field(..., alias="minimumSaleValue")
    expiration_days: int = Field(..., alias="expirationDays")
    redemption_limit_type: RedemptionLimitType | None = Field(None, alias="redemptionLimitType")
    redemption_limit_value: float | None = Field(None, alias="redemptionLimitValue")
    allow_integration_accumulation: bool = Field(..., alias="allowIntegrationAccumulation")
    prizes: list[CashbackProgramPrizeResponse] = Field(default_factory=list)
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")


class RedemptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    org_id: UUID = Field(..., alias="orgId")
    client_id: UUID = Field(..., alias="clientId")
    sale_value: Decimal = Field(Decimal("0"), ge=0, alias="saleValue")
    redemption_value: Decimal = Field(..., alias="redemptionValue")
    operator_identifier: str = Field(..., min_length=1, alias="operatorIdentifier")

    @field_validator("sale_value", mode="before")
    @classmethod
    def _default_sale_value(cls, value: Any) -> Any:
        return 0 if value is None else value


class RedemptionData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: UUID = Field(..., alias="transactionId")
    new_balance: float = Field(..., alias="newBalance")
    new_redeemed_total: float = Field(..., alias="newResgatadoTotal")


class RedemptionResponse(BaseModel):
    data: RedemptionData
    message: str


class CashbackBalanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    client_id: UUID = Field(..., alias="clientId")
    program_id: UUID = Field(..., alias="programId")
    available_amount: float = Field(..., alias="availableAmount")
    accumulated_total: float = Field(..., alias="accumulatedTotal")
    redeemed_total: float = Field(..., alias="redeemedTotal")
    updated_at: datetime | None = Field(None, alias="updatedAt")
    is_consistent: bool | None = Field(None, alias="isConsistent")


class CashbackTransactionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    transaction_type: CashbackTransactionType = Field(..., alias="type")
    status: CashbackTransactionStatus
    amount: float
    remaining_amount: float = Field(..., alias="remainingAmount")
    balance_before: float = Field(..., alias="balanceBefore")
    balance_after: float = Field(..., alias="balanceAfter")
    sale_id: UUID | None = Field(None, alias="saleId")
    campaign_id: UUID | None = Field(None, alias="campaignId")
    expires_at: datetime | None = Field(None, alias="expiresAt")
    operator_seller_id: UUID | None = Field(None, alias="operatorSellerId")
    metadata: dict[str, Any] | None = Field(
        None,
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )
    created_at: datetime | None = Field(None, alias="createdAt")


class SaleCancellationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: str = Field("VENDA_CANCELADA", min_length=1)


class ReversalResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reversed_transactions_count: int = Field(..., alias="reversedTransactionsCount")
    total_reversed_amount: float = Field(..., alias="totalReversedAmount")
    canceled_interactions_count: int = Field(..., alias="canceledInteractionsCount")
