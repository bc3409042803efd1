"""CNY/IDR price linkage.

While a linkage mode is active, the primary currency field is the single
source of truth: editing it derives the other currency, editing the other
currency never derives back. The exchange rate is always IDR per 1 CNY.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from priceledger.currency.rounding import normalize_currency, quantize_amount
from priceledger.exceptions import ValidationError
from priceledger.models import CNY, IDR, LinkageMode

JT = Decimal(1_000_000)  # 1 juta = 1,000,000 IDR


def primary_currency_for(mode: LinkageMode) -> str | None:
    """Currency that drives the other under mode (None when unlinked)."""
    if mode == LinkageMode.PRIMARY_IS_CNY:
        return CNY
    if mode == LinkageMode.PRIMARY_IS_IDR:
        return IDR
    return None


def derive_amount(
    primary_currency: str,
    primary_amount: Decimal | None,
    rate: Decimal | None,
    linkage_mode: LinkageMode,
) -> Decimal | None:
    """Derive the linked currency's amount from the edited one.

    Args:
        primary_currency: Currency of the field being edited
        primary_amount: New value of that field
        rate: IDR per 1 CNY
        linkage_mode: Active linkage mode

    Returns:
        The derived IDR (whole units) or CNY (2 dp) amount, or None when the
        mode is NONE, the edited field is not the mode's primary, or there
        is nothing to derive from.

    Raises:
        ValidationError: If a derivation is due and rate is missing or <= 0
    """
    linkage_mode = LinkageMode(linkage_mode)
    currency = normalize_currency(primary_currency)

    if linkage_mode == LinkageMode.NONE:
        return None
    if currency != primary_currency_for(linkage_mode):
        return None
    if primary_amount is None:
        return None

    if rate is None or not Decimal(rate).is_finite() or rate <= 0:
        raise ValidationError("exchange_rate must be greater than 0 for linked pricing")

    amount = Decimal(primary_amount)
    if not amount.is_finite():
        raise ValidationError(f"{currency} amount must be a finite number, got {primary_amount!r}")
    # Derive from the amount as it will be stored
    amount = quantize_amount(amount, currency)
    if linkage_mode == LinkageMode.PRIMARY_IS_CNY:
        return quantize_amount(amount * rate, IDR)
    return quantize_amount(amount / rate, CNY)


# Exposed name used by the API layer
compute_linked_amount = derive_amount


def linked_currency(currency: str) -> str | None:
    """The other side of the CNY/IDR pair."""
    code = normalize_currency(currency)
    if code == CNY:
        return IDR
    if code == IDR:
        return CNY
    return None


def apply_linkage(
    amounts: dict[str, Decimal | None],
    edited_currency: str,
    rate: Decimal | None,
    linkage_mode: LinkageMode,
) -> dict[str, Decimal | None]:
    """Return amounts after an edit to edited_currency, linkage applied.

    The input mapping is not modified.
    """
    updated = {normalize_currency(code): value for code, value in amounts.items()}
    edited = normalize_currency(edited_currency)

    derived = derive_amount(edited, updated.get(edited), rate, linkage_mode)
    target = linked_currency(edited)
    if derived is not None and target is not None:
        updated[edited] = quantize_amount(updated[edited], edited)
        updated[target] = derived
    return updated


def apply_primary(
    amounts: dict[str, Decimal | None],
    rate: Decimal | None,
    linkage_mode: LinkageMode,
) -> dict[str, Decimal | None]:
    """Re-derive the secondary currency from the mode's primary, if present."""
    primary = primary_currency_for(LinkageMode(linkage_mode))
    if primary is None:
        return dict(amounts)
    return apply_linkage(amounts, primary, rate, linkage_mode)


def idr_to_jt(idr: Decimal | None) -> Decimal | None:
    """Express an IDR amount in juta (millions), as the editor displays it."""
    if idr is None:
        return None
    return Decimal(idr) / JT


def jt_to_idr(jt: Decimal | str | None) -> Decimal | None:
    """Convert a juta value typed by a user back to whole IDR."""
    if jt is None or (isinstance(jt, str) and not jt.strip()):
        return None
    try:
        value = Decimal(jt)
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid IDR (jt) amount: {jt!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid IDR (jt) amount: {jt!r}")
    return quantize_amount(value * JT, IDR)
