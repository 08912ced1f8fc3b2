from decimal import Decimal
from typing import Annotated, Any

from bson.decimal128 import Decimal128
from pydantic import BeforeValidator


def _from_bson(v: Any) -> Any:
    if isinstance(v, Decimal128):
        return v.to_decimal()
    return v


Money = Annotated[Decimal, BeforeValidator(_from_bson)]

CURRENCIES = ("XOF", "USD", "EUR")

# Digits after the decimal point in each currency's minor unit.
CURRENCY_DECIMALS = {"XOF": 0, "USD": 2, "EUR": 2}


def quantize(amount: Decimal, currency: str) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-CURRENCY_DECIMALS[currency]))


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Integer amount in the currency's smallest unit (cents; XOF is already whole)."""
    return int(amount.scaleb(CURRENCY_DECIMALS[currency]).to_integral_value())
