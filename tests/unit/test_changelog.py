"""Unit tests for change log derivation and retrieval."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from priceledger.exceptions import ValidationError
from priceledger.models import ChangeLogFilters, ChangeType, PriceRecord, PriceTier, SubjectKey
from priceledger.versioning.changelog import ChangeLogRecorder, compute_delta, diff_records
from priceledger.versioning.store import InMemoryPriceStore

SUBJECT = SubjectKey(product_id="P1")
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
CHANGED_AT = datetime(2024, 5, 20, tzinfo=timezone.utc)


def _record(amounts: dict, start: datetime = T0, reason: str | None = None) -> PriceRecord:
    return PriceRecord(
        subject=SUBJECT,
        tier=PriceTier.CHANNEL,
        amounts={k: Decimal(v) if v is not None else None for k, v in amounts.items()},
        effective_from=start,
        change_reason=reason,
    )


class TestComputeDelta:
    """Test delta and percentage math."""

    def test_increase(self):
        assert compute_delta(Decimal("100"), Decimal("120")) == (Decimal("20"), Decimal("20.0000"))

    def test_decrease_quantized(self):
        delta, pct = compute_delta(Decimal("3"), Decimal("2"))
        assert delta == Decimal("-1")
        assert pct == Decimal("-33.3333")

    def test_old_zero_has_no_percentage(self):
        assert compute_delta(Decimal("0"), Decimal("5")) == (Decimal("5"), None)

    def test_missing_side(self):
        assert compute_delta(None, Decimal("5")) == (None, None)
        assert compute_delta(Decimal("5"), None) == (None, None)


class TestDiffRecords:
    """Test entry derivation per mutation."""

    def test_create_without_prior_emits_per_currency(self):
        after = _record({"CNY": "120", "IDR": "1848000"})

        entries = diff_records(None, after, ChangeType.CREATE, "alice", CHANGED_AT)

        assert [e.currency for e in entries] == ["CNY", "IDR"]
        assert all(e.old_amount is None and e.delta is None for e in entries)
        assert all(e.price_id == after.id for e in entries)

    def test_only_changed_currencies_logged(self):
        before = _record({"CNY": "100", "IDR": "1540000"})
        after = before.model_copy(update={"amounts": {"CNY": Decimal("120"), "IDR": Decimal("1540000")}})

        entries = diff_records(before, after, ChangeType.UPDATE, "alice", CHANGED_AT)

        assert len(entries) == 1
        assert entries[0].currency == "CNY"
        assert entries[0].delta == Decimal("20")
        assert entries[0].delta_percentage == Decimal("20.0000")

    def test_window_only_change_emits_zero_deltas(self):
        before = _record({"CNY": "100", "IDR": None})
        after = before.model_copy(update={"effective_from": T0 + timedelta(days=1)})

        entries = diff_records(before, after, ChangeType.UPDATE, "alice", CHANGED_AT)

        assert len(entries) == 1
        assert entries[0].delta == Decimal("0")
        assert entries[0].old_effective_from == T0
        assert entries[0].new_effective_from == T0 + timedelta(days=1)

    def test_no_change_no_entries(self):
        before = _record({"CNY": "100"})

        assert diff_records(before, before, ChangeType.UPDATE, "alice", CHANGED_AT) == []

    def test_delete_logs_removal(self):
        before = _record({"CNY": "100"}, reason="promo")

        entries = diff_records(before, None, ChangeType.DELETE, "bob", CHANGED_AT)

        assert entries[0].new_amount is None
        assert entries[0].change_reason == "promo"
        assert entries[0].changed_by == "bob"

    def test_explicit_reason_wins(self):
        after = _record({"CNY": "1"}, reason="record reason")

        entries = diff_records(None, after, ChangeType.CREATE, "a", CHANGED_AT, reason="explicit")

        assert entries[0].change_reason == "explicit"


class TestChangeLogRecorder:
    """Test appending and paginated retrieval."""

    @pytest.mark.asyncio
    async def test_record_and_list_newest_first(self):
        store = InMemoryPriceStore()
        recorder = ChangeLogRecorder(store)
        first = _record({"CNY": "100"})
        second = first.model_copy(update={"amounts": {"CNY": Decimal("110")}})

        await recorder.record(None, first, ChangeType.CREATE, "a", CHANGED_AT)
        await recorder.record(first, second, ChangeType.UPDATE, "a", CHANGED_AT + timedelta(hours=1))

        page = await recorder.list_change_log(SUBJECT)

        assert page.total == 2
        assert [e.change_type for e in page.items] == [ChangeType.UPDATE, ChangeType.CREATE]

    @pytest.mark.asyncio
    async def test_filters_and_pagination(self):
        store = InMemoryPriceStore()
        recorder = ChangeLogRecorder(store)
        record = _record({"CNY": "1", "IDR": "2200"})
        await recorder.record(None, record, ChangeType.CREATE, "a", CHANGED_AT)

        only_idr = await recorder.list_change_log(SUBJECT, ChangeLogFilters(currency="IDR"))
        page_two = await recorder.list_change_log(SUBJECT, page=2, size=1)

        assert [e.currency for e in only_idr.items] == ["IDR"]
        assert page_two.total == 2
        assert page_two.pages == 2
        assert len(page_two.items) == 1

    @pytest.mark.asyncio
    async def test_other_subjects_excluded(self):
        store = InMemoryPriceStore()
        recorder = ChangeLogRecorder(store)
        await recorder.record(None, _record({"CNY": "1"}), ChangeType.CREATE, "a", CHANGED_AT)

        page = await recorder.list_change_log(SubjectKey(product_id="P2"))

        assert page.total == 0

    @pytest.mark.asyncio
    async def test_invalid_page(self):
        recorder = ChangeLogRecorder(InMemoryPriceStore())

        with pytest.raises(ValidationError):
            await recorder.list_change_log(SUBJECT, page=0)
