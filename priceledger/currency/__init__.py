"""Currency rounding and CNY/IDR linkage."""

from priceledger.currency.linkage import (
    apply_linkage,
    compute_linked_amount,
    derive_amount,
    idr_to_jt,
    jt_to_idr,
)
from priceledger.currency.rounding import minor_units, quantize_amount, quantize_amounts

__all__ = [
    "apply_linkage",
    "compute_linked_amount",
    "derive_amount",
    "idr_to_jt",
    "jt_to_idr",
    "minor_units",
    "quantize_amount",
    "quantize_amounts",
]
