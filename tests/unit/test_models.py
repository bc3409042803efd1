"""Unit tests for priceledger Pydantic models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from priceledger.models import (
    ChangeLogEntry,
    ChangeLogFilters,
    ChangeType,
    ExchangeRateRecord,
    Page,
    PriceRecord,
    PriceTier,
    SubjectKey,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestSubjectKey:
    """Test subject identity."""

    def test_str_without_organization(self):
        assert str(SubjectKey(product_id="P1")) == "P1"

    def test_str_with_organization(self):
        assert str(SubjectKey(product_id="P1", organization_id="acme")) == "P1@acme"

    def test_hashable_and_equal_by_value(self):
        """Test keys can index dicts (used for per-key locks)."""
        a = SubjectKey(product_id="P1", organization_id="acme")
        b = SubjectKey(product_id="P1", organization_id="acme")
        assert a == b
        assert {a: 1}[b] == 1


class TestPriceRecord:
    """Test PriceRecord validation and temporal helpers."""

    def test_requires_one_non_null_amount(self):
        with pytest.raises(ValidationError, match="at least one non-null"):
            PriceRecord(
                subject=SubjectKey(product_id="P1"),
                tier=PriceTier.COST,
                amounts={"CNY": None, "IDR": None},
                effective_from=T0,
            )

    def test_rejects_negative_amount(self):
        with pytest.raises(ValidationError, match="non-negative"):
            PriceRecord(
                subject=SubjectKey(product_id="P1"),
                tier=PriceTier.COST,
                amounts={"CNY": Decimal("-1")},
                effective_from=T0,
            )

    def test_rejects_empty_window(self):
        with pytest.raises(ValidationError, match="earlier than effective_to"):
            PriceRecord(
                subject=SubjectKey(product_id="P1"),
                tier=PriceTier.COST,
                amounts={"CNY": Decimal("1")},
                effective_from=T0,
                effective_to=T0,
            )

    def test_currency_codes_upper_cased(self):
        record = PriceRecord(
            subject=SubjectKey(product_id="P1"),
            tier=PriceTier.COST,
            amounts={"cny": Decimal("1")},
            effective_from=T0,
        )
        assert list(record.amounts) == ["CNY"]

    def test_naive_datetimes_become_utc(self):
        record = PriceRecord(
            subject=SubjectKey(product_id="P1"),
            tier=PriceTier.COST,
            amounts={"CNY": Decimal("1")},
            effective_from=datetime(2024, 1, 1),
        )
        assert record.effective_from.tzinfo == timezone.utc

    def test_covers_is_half_open(self):
        record = PriceRecord(
            subject=SubjectKey(product_id="P1"),
            tier=PriceTier.COST,
            amounts={"CNY": Decimal("1")},
            effective_from=T0,
            effective_to=T0 + timedelta(days=1),
        )
        assert record.covers(T0)
        assert record.covers(T0 + timedelta(hours=23))
        assert not record.covers(T0 + timedelta(days=1))
        assert not record.covers(T0 - timedelta(seconds=1))

    def test_is_pending_requires_future_start_and_open_end(self):
        record = PriceRecord(
            subject=SubjectKey(product_id="P1"),
            tier=PriceTier.COST,
            amounts={"CNY": Decimal("1")},
            effective_from=T0,
        )
        assert record.is_pending(T0 - timedelta(seconds=1))
        assert not record.is_pending(T0)
        assert not record.model_copy(
            update={"effective_to": T0 + timedelta(days=1)}
        ).is_pending(T0 - timedelta(days=1))


class TestChangeLogFilters:
    """Test audit filter matching."""

    @pytest.fixture
    def entry(self) -> ChangeLogEntry:
        return ChangeLogEntry(
            subject=SubjectKey(product_id="P1"),
            tier=PriceTier.LIST,
            currency="IDR",
            change_type=ChangeType.CREATE,
            new_amount=Decimal("1000"),
            changed_at=T0,
        )

    def test_empty_filters_match_everything(self, entry):
        assert ChangeLogFilters().matches(entry)

    def test_currency_filter_case_insensitive(self, entry):
        assert ChangeLogFilters(currency="idr").matches(entry)
        assert not ChangeLogFilters(currency="CNY").matches(entry)

    def test_date_range_is_start_inclusive_end_exclusive(self, entry):
        assert ChangeLogFilters(start_date=T0).matches(entry)
        assert not ChangeLogFilters(end_date=T0).matches(entry)
        assert ChangeLogFilters(end_date=T0 + timedelta(seconds=1)).matches(entry)

    def test_tier_and_type_filters(self, entry):
        assert not ChangeLogFilters(tier=PriceTier.COST).matches(entry)
        assert not ChangeLogFilters(change_type=ChangeType.DELETE).matches(entry)


class TestExchangeRateRecord:
    """Test exchange rate validation."""

    def test_codes_normalized(self):
        rate = ExchangeRateRecord(
            from_currency="cny", to_currency="idr", rate=Decimal("2200"), effective_from=T0
        )
        assert (rate.from_currency, rate.to_currency) == ("CNY", "IDR")

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValidationError, match="positive"):
            ExchangeRateRecord(
                from_currency="CNY", to_currency="IDR", rate=Decimal("0"), effective_from=T0
            )

    def test_rejects_bad_code(self):
        with pytest.raises(ValidationError, match="3 letters"):
            ExchangeRateRecord(
                from_currency="CN", to_currency="IDR", rate=Decimal("1"), effective_from=T0
            )


class TestPage:
    """Test pagination envelope."""

    def test_pages_rounds_up(self):
        page = Page[int](items=[1, 2], total=5, page=1, size=2)
        assert page.pages == 3

    def test_pages_in_dump(self):
        page = Page[int](items=[], total=0, page=1, size=20)
        assert page.model_dump()["pages"] == 0
