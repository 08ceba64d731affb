"""SQLAlchemy models package."""

# Import all models
from .organization import Organization, OrganizationMember, Seller, User  # noqa: F401
from .client import Client  # noqa: F401
from .cashback import (  # noqa: F401
    AccumulationRuleType,
    CashbackBalance,
    CashbackProgram,
    CashbackProgramPrize,
    CashbackTransaction,
    CashbackTransactionStatus,
    CashbackTransactionType,
    RedemptionLimitType,
)
from .sale import Sale, SaleStatus  # noqa: F401
from .campaign import Campaign, ExpirationMeasure, Interaction  # noqa: F401
