"""Pure cashback rule arithmetic shared by the ledger engines."""

from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TypeVar

from dateutil.relativedelta import relativedelta

from cashback_api.models.campaign import ExpirationMeasure
from cashback_api.models.cashback import AccumulationRuleType, RedemptionLimitType
from cashback_api.services.cashback.errors import CashbackRuleViolationError

ZERO = Decimal("0")
_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")

PERCENTAGE_LIMIT_REQUIRES_SALE_MESSAGE = (
    "Valor da venda deve ser informado para calcular o limite de resgate percentual."
)

_EnumT = TypeVar("_EnumT", bound=Enum)


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _coerce(enum_cls: type[_EnumT], value: object) -> _EnumT | None:
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return None


def compute_accumulated_value(
    rule_type: AccumulationRuleType | str | None,
    rule_value: Decimal | int | float | None,
    minimum_sale_value: Decimal | int | float | None,
    sale_value: Decimal | int | float,
) -> Decimal:
    """Return the cashback earned by a sale.

    Sales below ``minimum_sale_value`` earn nothing. Unknown rule types also
    earn nothing instead of raising, so a misconfigured program never blocks
    sale processing.
    """

    sale = to_decimal(sale_value)
    if sale < to_decimal(minimum_sale_value):
        return ZERO

    resolved = _coerce(AccumulationRuleType, rule_type)
    value = to_decimal(rule_value)
    if resolved is AccumulationRuleType.FIXED:
        return quantize_amount(value)
    if resolved is AccumulationRuleType.PERCENTAGE:
        return quantize_amount(sale * value / _HUNDRED)
    return ZERO


def compute_redemption_cap(
    limit_type: RedemptionLimitType | str | None,
    limit_value: Decimal | int | float | None,
    sale_value: Decimal | int | float | None,
) -> Decimal | None:
    """Return the largest redeemable amount, or ``None`` when unlimited."""

    resolved = _coerce(RedemptionLimitType, limit_type)
    if resolved is None or limit_value is None:
        return None
    value = to_decimal(limit_value)
    if resolved is RedemptionLimitType.FIXED:
        return value
    sale = to_decimal(sale_value)
    if sale <= ZERO:
        raise CashbackRuleViolationError(PERCENTAGE_LIMIT_REQUIRES_SALE_MESSAGE)
    return quantize_amount(sale * value / _HUNDRED)


def max_redeemable_amount(
    available: Decimal | int | float,
    sale_value: Decimal | int | float,
    limit_type: RedemptionLimitType | str | None,
    limit_value: Decimal | int | float | None,
) -> Decimal:
    """Amount a terminal may offer: bounded by balance, sale value and program cap."""

    sale = to_decimal(sale_value)
    candidates = [max(to_decimal(available), ZERO), max(sale, ZERO)]
    if sale > ZERO:
        cap = compute_redemption_cap(limit_type, limit_value, sale)
        if cap is not None:
            candidates.append(cap)
    return min(candidates)


def format_currency(amount_in_cents: Decimal | int | float) -> str:
    reais = to_decimal(amount_in_cents) / _HUNDRED
    return f"R$ {reais.quantize(_CENT, rounding=ROUND_HALF_UP)}"


def compute_expiration_date(timestamp: dt.datetime, expiration_days: int | None) -> dt.datetime | None:
    """Non-positive windows mean the credit never expires."""

    if not expiration_days or expiration_days <= 0:
        return None
    return timestamp + dt.timedelta(days=expiration_days)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def shift_by_duration(
    timestamp: dt.datetime,
    measure: ExpirationMeasure | str | None,
    value: int | None,
) -> dt.datetime | None:
    resolved = _coerce(ExpirationMeasure, measure)
    if resolved is None or not value or value <= 0:
        return None
    if resolved is ExpirationMeasure.DAYS:
        return timestamp + relativedelta(days=value)
    if resolved is ExpirationMeasure.WEEKS:
        return timestamp + relativedelta(weeks=value)
    if resolved is ExpirationMeasure.MONTHS:
        return timestamp + relativedelta(months=value)
    return timestamp + relativedelta(years=value)


__all__ = [
    "PERCENTAGE_LIMIT_REQUIRES_SALE_MESSAGE",
    "ZERO",
    "compute_accumulated_value",
    "compute_expiration_date",
    "compute_redemption_cap",
    "ensure_utc",
    "format_currency",
    "max_redeemable_amount",
    "quantize_amount",
    "shift_by_duration",
    "to_decimal",
]
