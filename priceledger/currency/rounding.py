"""Per-currency rounding.

Currencies with a minor unit keep 2 decimal places; IDR has no minor unit
and is rounded to whole rupiah. Halves round away from zero.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from priceledger.exceptions import ValidationError

# Decimal places per ISO code; anything unlisted defaults to 2
MINOR_UNITS: dict[str, int] = {
    "CNY": 2,
    "USD": 2,
    "EUR": 2,
    "IDR": 0,
}


def minor_units(currency: str) -> int:
    """Decimal places used for currency."""
    return MINOR_UNITS.get(normalize_currency(currency), 2)


def normalize_currency(currency: str) -> str:
    """Upper-case and check a 3-letter currency token."""
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Currency code must be 3 letters, got {currency!r}")
    return code


def quantize_amount(amount: Decimal | int | str, currency: str) -> Decimal:
    """Round amount to the precision of currency."""
    exponent = Decimal(1).scaleb(-minor_units(currency))
    return Decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)


def quantize_amounts(amounts: dict[str, Decimal | None]) -> dict[str, Decimal | None]:
    """Round every non-null amount in a currency mapping."""
    return {
        normalize_currency(code): (
            quantize_amount(amount, code) if amount is not None else None
        )
        for code, amount in amounts.items()
    }
