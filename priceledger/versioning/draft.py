"""Unsaved price edits.

A Draft holds what a user has typed into the price editor but not yet
scheduled. It is an explicit object with save/load/clear against a
backend, keyed per (subject, tier), so nothing depends on ambient browser
or process state.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Protocol

import redis.asyncio as redis
from pydantic import BaseModel, Field

from priceledger.currency.linkage import apply_linkage, apply_primary
from priceledger.currency.rounding import normalize_currency
from priceledger.exceptions import ValidationError
from priceledger.models import LinkageMode, PriceRecord, PriceTier, SubjectKey, _utcnow
from priceledger.utils.redis_cache import delete_cached, get_cached, set_cached

if TYPE_CHECKING:
    from priceledger.versioning.mutation import PriceMutationService

logger = logging.getLogger(__name__)

DRAFT_KEY_PREFIX = "product_price_config_draft"
DEFAULT_TTL_SECONDS = 7 * 24 * 3600


def draft_key(subject: SubjectKey, tier: PriceTier) -> str:
    return f"{DRAFT_KEY_PREFIX}:{subject}:{PriceTier(tier).value}"


def _finite(value: Decimal | str, field: str) -> Decimal:
    try:
        parsed = Decimal(value)
    except InvalidOperation as e:
        raise ValidationError(f"{field} is not a valid decimal: {value!r}") from e
    if not parsed.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}")
    return parsed


class DraftBackend(Protocol):
    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def put(self, key: str, data: dict[str, Any], ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryDraftBackend:
    """Process-local drafts; TTL is not enforced."""

    def __init__(self) -> None:
        self._drafts: dict[str, dict[str, Any]] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        return self._drafts.get(key)

    async def put(self, key: str, data: dict[str, Any], ttl_seconds: int) -> None:
        self._drafts[key] = data

    async def delete(self, key: str) -> None:
        self._drafts.pop(key, None)


class RedisDraftBackend:
    """Drafts stored as JSON in Redis with a TTL."""

    def __init__(self, client: redis.Redis | None = None):
        self.client = client

    async def get(self, key: str) -> dict[str, Any] | None:
        return await get_cached(key, client=self.client)

    async def put(self, key: str, data: dict[str, Any], ttl_seconds: int) -> None:
        await set_cached(key, data, ttl_seconds=ttl_seconds, client=self.client)

    async def delete(self, key: str) -> None:
        await delete_cached(key, client=self.client)


class Draft(BaseModel):
    """Editor state for one (subject, tier)."""

    subject: SubjectKey
    tier: PriceTier
    amounts: dict[str, Decimal | None] = Field(default_factory=dict)
    exchange_rate: Decimal | None = None
    effective_from_local: str | None = None  # YYYY-MM-DDTHH:mm, business tz
    reason: str | None = None
    linkage_mode: LinkageMode = LinkageMode.NONE
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> str:
        return draft_key(self.subject, self.tier)

    def edit_amount(self, currency: str, amount: Decimal | None) -> None:
        """Set one currency field, deriving the linked one when possible.

        Without a rate the edit is kept as typed; linkage applies once a rate
        is entered.
        """
        code = normalize_currency(currency)
        value = _finite(amount, code) if amount is not None else None
        amounts = {**self.amounts, code: value}
        if self.linkage_mode != LinkageMode.NONE and self.exchange_rate is not None:
            amounts = apply_linkage(amounts, code, self.exchange_rate, self.linkage_mode)
        self.amounts = amounts
        self.updated_at = _utcnow()

    def edit_rate(self, rate: Decimal | None) -> None:
        """Set the exchange rate and re-derive from the primary currency."""
        rate = _finite(rate, "exchange_rate") if rate is not None else None
        if rate is not None and rate <= 0:
            raise ValidationError("exchange_rate must be greater than 0")
        self.exchange_rate = rate
        if self.exchange_rate is not None:
            self.amounts = apply_primary(self.amounts, self.exchange_rate, self.linkage_mode)
        self.updated_at = _utcnow()

    def set_linkage(self, mode: LinkageMode | str) -> None:
        self.linkage_mode = LinkageMode(mode)
        if self.exchange_rate is not None:
            self.amounts = apply_primary(self.amounts, self.exchange_rate, self.linkage_mode)
        self.updated_at = _utcnow()

    async def save(self, backend: DraftBackend, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        await backend.put(self.key, self.model_dump(mode="json"), ttl_seconds)
        logger.debug(f"Saved draft {self.key}")

    @classmethod
    async def load(
        cls, backend: DraftBackend, subject: SubjectKey, tier: PriceTier | str
    ) -> Draft | None:
        data = await backend.get(draft_key(subject, PriceTier(tier)))
        if data is None:
            return None
        return cls.model_validate(data)

    async def clear(self, backend: DraftBackend) -> None:
        await backend.delete(self.key)
        logger.debug(f"Cleared draft {self.key}")

    async def submit(
        self,
        service: PriceMutationService,
        backend: DraftBackend | None = None,
        changed_by: str = "system",
    ) -> PriceRecord:
        """Schedule the drafted price; the draft is cleared only on success."""
        if not self.effective_from_local:
            raise ValidationError("effective_from is required")

        record = await service.create_or_update_pending(
            self.subject,
            self.tier,
            self.amounts,
            self.exchange_rate,
            self.effective_from_local,
            self.reason,
            linkage_mode=self.linkage_mode,
            changed_by=changed_by,
            source="draft",
        )
        if backend is not None:
            await self.clear(backend)
        return record
