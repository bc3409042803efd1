"""Effective-dated price versioning.

Resolution, mutation and audit for prices that change over time. The
PriceMutationService is the single writer; everything else reads.
"""

from priceledger.versioning.cache import ResolutionCache
from priceledger.versioning.changelog import ChangeLogRecorder, compute_delta, diff_records
from priceledger.versioning.draft import Draft, InMemoryDraftBackend, RedisDraftBackend
from priceledger.versioning.mutation import PriceMutationService
from priceledger.versioning.resolver import find_current, find_pending, resolve_at
from priceledger.versioning.store import InMemoryPriceStore, PriceStore

__all__ = [
    "ChangeLogRecorder",
    "Draft",
    "InMemoryDraftBackend",
    "InMemoryPriceStore",
    "PriceMutationService",
    "PriceStore",
    "RedisDraftBackend",
    "ResolutionCache",
    "compute_delta",
    "diff_records",
    "find_current",
    "find_pending",
    "resolve_at",
]
