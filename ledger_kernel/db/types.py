"""
Module: ledger_kernel.db.types
Responsibility: Annotated type aliases and helpers for financial-grade columns.
    Centralizes precision, rounding, and currency validation so that every
    model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.

Invariants enforced:
    - No floats anywhere.  coerce_amount() rejects binary floating point.
    - round_money() is the only sanctioned rounding function; it is applied
      at the currency-conversion boundary (base amount computation).
    - validate_currency() accepts only ISO 4217 codes.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

from ledger_kernel.exceptions import InvalidCurrencyError, ValidationError

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Exchange rate: 38 digits total, 18 decimal places
Rate = Annotated[Decimal, Numeric(38, 18)]

# ISO 4217 currency code (e.g., "USD", "EUR", "PLN")
Currency = Annotated[str, String(3)]

ZERO = Decimal("0")
AMOUNT_QUANTUM = Decimal("0.000000001")
DEFAULT_ROUNDING = ROUND_HALF_UP


def coerce_amount(value: Decimal | int | str, field: str = "amount") -> Decimal:
    """
    Convert a caller-supplied amount into a Decimal.

    Accepts Decimal, int, or a numeric string.  Floats are rejected because
    their binary representation cannot carry exact cents.

    Raises:
        ValidationError: If the value is a float or is not numeric.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(
            f"{field} must be a Decimal, int, or numeric string, not {type(value).__name__}",
            field=field,
        )
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(value)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ValidationError(f"{field} is not a number: {value!r}", field=field) from exc
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite: {value!r}", field=field)
    return result


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Postconditions: Returns value quantized with the given rounding mode.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def sum_amount(value) -> Decimal:
    """Normalize a SUM() result to Money precision; SQLite hands back floats."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(AMOUNT_QUANTUM)


# ISO 4217 Currency Codes
ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "AFN", "ALL", "AMD", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CLP", "CNY", "COP", "CRC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KPW", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "UYU", "UZS",
    "VES", "VND", "VUV",
    "WST",
    "XAF", "XCD", "XOF", "XPF",
    "YER",
    "ZAR", "ZMW", "ZWL",
})


def validate_currency(currency: str) -> str:
    """
    Validate and normalize an ISO 4217 currency code.

    Returns:
        The uppercase, trimmed currency code.

    Raises:
        InvalidCurrencyError: If the code is not a recognized ISO 4217 code.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return normalized
