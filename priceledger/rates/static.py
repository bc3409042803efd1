"""In-memory exchange rate provider, optionally seeded from YAML.

YAML layout::

    rates:
      - from: CNY
        to: IDR
        rate: 2200
        effective_from: 2024-01-01T00:00:00Z
        effective_to: null      # optional
        approved: true          # optional, default true
        source: bank-indonesia  # optional
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable
from uuid import UUID

import yaml

from priceledger.core.clock import ensure_utc
from priceledger.currency.rounding import normalize_currency
from priceledger.exceptions import NotFoundError, ValidationError
from priceledger.models import ExchangeRateRecord, Page
from priceledger.rates.provider import (
    BaseRateProvider,
    apply_rate_patch,
    check_no_overlap,
    current_rates,
    plan_new_rate,
)

logger = logging.getLogger(__name__)


class StaticRateProvider(BaseRateProvider):
    """Rates held in a list; good for tests, CLI seeding and small deployments."""

    def __init__(self, records: Iterable[ExchangeRateRecord] = ()):
        self._records: list[ExchangeRateRecord] = list(records)

    def add(self, record: ExchangeRateRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> list[ExchangeRateRecord]:
        return list(self._records)

    async def candidate_rates(
        self, from_currency: str, to_currency: str, as_of: datetime
    ) -> list[ExchangeRateRecord]:
        pair = {from_currency, to_currency}
        return [r for r in self._records if {r.from_currency, r.to_currency} == pair]

    def _filtered(
        self, from_currency: str | None, to_currency: str | None
    ) -> list[ExchangeRateRecord]:
        from_code = normalize_currency(from_currency) if from_currency else None
        to_code = normalize_currency(to_currency) if to_currency else None
        return [
            r
            for r in self._records
            if (from_code is None or r.from_currency == from_code)
            and (to_code is None or r.to_currency == to_code)
        ]

    async def list_current(
        self, as_of: datetime, from_currency: str | None = None, to_currency: str | None = None
    ) -> list[ExchangeRateRecord]:
        return current_rates(self._filtered(from_currency, to_currency), ensure_utc(as_of))

    async def list_history(
        self,
        from_currency: str | None = None,
        to_currency: str | None = None,
        page: int = 1,
        size: int = 20,
    ) -> Page[ExchangeRateRecord]:
        if page < 1 or size < 1:
            raise ValidationError("page and size must be positive")
        records = sorted(
            self._filtered(from_currency, to_currency),
            key=lambda r: r.effective_from,
            reverse=True,
        )
        start = (page - 1) * size
        return Page(items=records[start : start + size], total=len(records), page=page, size=size)

    async def create_rate(self, record: ExchangeRateRecord) -> ExchangeRateRecord:
        record, covering = plan_new_rate(self._records, record)
        if covering is not None:
            index = self._records.index(covering)
            self._records[index] = covering.model_copy(
                update={"effective_to": record.effective_from}
            )
        self._records.append(record)
        logger.info(
            f"Added {record.from_currency}->{record.to_currency} rate {record.rate} "
            f"from {record.effective_from.isoformat()}"
        )
        return record

    async def update_rate(self, rate_id: UUID, patch: dict[str, Any]) -> ExchangeRateRecord:
        index = next((i for i, r in enumerate(self._records) if r.id == rate_id), None)
        if index is None:
            raise NotFoundError(f"Exchange rate {rate_id} not found")
        updated = apply_rate_patch(self._records[index], patch)
        check_no_overlap(self._records, updated)
        self._records[index] = updated
        return updated


def load_rates_file(config_path: Path) -> list[ExchangeRateRecord]:
    """Load exchange rate records from a YAML file.

    Args:
        config_path: Path to YAML file

    Returns:
        Parsed rate records

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file has no 'rates' section or an entry is invalid
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Exchange rate file not found: {config_path}")

    with open(config_path) as f:
        config = yaml.safe_load(f)

    if not config or "rates" not in config:
        raise ValueError("Invalid exchange rate file: missing 'rates' section")

    records = []
    for index, entry in enumerate(config["rates"]):
        try:
            records.append(
                ExchangeRateRecord(
                    from_currency=entry["from"],
                    to_currency=entry["to"],
                    rate=Decimal(str(entry["rate"])),
                    effective_from=entry["effective_from"],
                    effective_to=entry.get("effective_to"),
                    approved=entry.get("approved", True),
                    source=entry.get("source"),
                    change_reason=entry.get("change_reason"),
                )
            )
        except (KeyError, ValueError) as e:
            raise ValueError(f"Invalid rate entry #{index}: {e}") from e

    logger.info(f"Loaded {len(records)} exchange rates from {config_path}")
    return records
