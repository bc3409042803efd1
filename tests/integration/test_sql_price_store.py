"""Integration tests for SqlPriceStore behind PriceMutationService.

Runs the versioning rules against SQLite so the partial unique index, the
JSON amount column and UTC round-tripping are all exercised.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from priceledger.core.business_time import parse_local
from priceledger.db.models import NO_ORGANIZATION, PriceRecordModel
from priceledger.db.price_store import SqlPriceStore
from priceledger.exceptions import ConflictError
from priceledger.models import ChangeLogFilters, ChangeType, LinkageMode, PriceRecord, PriceTier, SubjectKey
from priceledger.versioning import resolver
from priceledger.versioning.mutation import PriceMutationService

pytestmark = pytest.mark.integration


@pytest.fixture
def sql_store(db_session) -> SqlPriceStore:
    return SqlPriceStore(db_session)


@pytest.fixture
def sql_service(sql_store, clock, rate_provider, pricing_config) -> PriceMutationService:
    return PriceMutationService(
        sql_store, clock=clock, rate_provider=rate_provider, config=pricing_config
    )


@pytest.mark.asyncio
async def test_schedule_supersedes_active(sql_service, sql_store, subject, active_record):
    await sql_store.insert(active_record)

    pending = await sql_service.create_or_update_pending(
        subject,
        PriceTier.CHANNEL,
        {"CNY": Decimal("120")},
        Decimal("15400"),
        "2024-06-01T00:00",
        "Q2 review",
        linkage_mode=LinkageMode.PRIMARY_IS_CNY,
    )

    stamped = await sql_store.get(active_record.id)
    assert stamped.effective_to == parse_local("2024-06-01T00:00")
    assert stamped.effective_to.tzinfo is not None

    stored = await sql_store.get(pending.id)
    assert stored.amounts == {"CNY": Decimal("120.00"), "IDR": Decimal("1848000")}
    assert stored.subject == subject
    assert stored.supersedes_id == active_record.id

    resolved = await sql_service.resolve_at(subject, "channel", datetime(2024, 3, 1, tzinfo=timezone.utc))
    assert resolved.current.id == active_record.id
    assert resolved.pending.id == pending.id


@pytest.mark.asyncio
async def test_unique_index_rejects_second_open_record(sql_store, subject, active_record):
    await sql_store.insert(active_record)

    duplicate = PriceRecord(
        subject=subject,
        tier=PriceTier.CHANNEL,
        amounts={"CNY": Decimal("1")},
        effective_from=datetime(2024, 7, 1, tzinfo=timezone.utc),
    )

    with pytest.raises(ConflictError):
        await sql_store.insert(duplicate)


@pytest.mark.asyncio
async def test_organizations_are_separate_keys(sql_store, active_record):
    scoped = active_record.model_copy(
        update={"id": uuid4(), "subject": SubjectKey(product_id="P1", organization_id="acme")}
    )

    await sql_store.insert(active_record)
    await sql_store.insert(scoped)

    rows = (await sql_store.session.execute(select(PriceRecordModel.organization_id))).scalars().all()
    assert sorted(rows) == [NO_ORGANIZATION, "acme"]
    assert (await sql_store.list_history(SubjectKey(product_id="P1")))[0].subject.organization_id is None


@pytest.mark.asyncio
async def test_update_then_delete_reopens(sql_service, sql_store, subject, active_record, now):
    await sql_store.insert(active_record)
    first = await sql_service.create_or_update_pending(
        subject, PriceTier.CHANNEL, {"CNY": Decimal("120")}, None, "2024-06-01T00:00", None
    )
    moved = await sql_service.create_or_update_pending(
        subject, PriceTier.CHANNEL, {"CNY": Decimal("130")}, None, "2024-07-01T00:00", None
    )

    assert moved.id == first.id
    assert (await sql_store.get(active_record.id)).effective_to == parse_local("2024-07-01T00:00")

    await sql_service.delete_pending(subject, PriceTier.CHANNEL, first.id)

    records = await sql_store.list_history(subject, PriceTier.CHANNEL)
    assert [r.id for r in records] == [active_record.id]
    assert records[0].effective_to is None
    assert resolver.count_pending(records, now) == 0


@pytest.mark.asyncio
async def test_change_log_order_and_filters(sql_service, sql_store, subject, active_record):
    await sql_store.insert(active_record)
    pending = await sql_service.create_or_update_pending(
        subject,
        PriceTier.CHANNEL,
        {"CNY": Decimal("120")},
        Decimal("15400"),
        "2024-06-01T00:00",
        None,
        linkage_mode=LinkageMode.PRIMARY_IS_CNY,
    )
    await sql_service.delete_pending(subject, PriceTier.CHANNEL, pending.id, changed_by="bob")

    page = await sql_service.list_change_log(subject)

    # Same changed_at for all entries; emission order is kept
    assert [(e.change_type, e.currency) for e in page.items] == [
        (ChangeType.CREATE, "CNY"),
        (ChangeType.CREATE, "IDR"),
        (ChangeType.DELETE, "CNY"),
        (ChangeType.DELETE, "IDR"),
    ]
    assert page.items[1].delta == Decimal("308000")

    deletes = await sql_service.list_change_log(
        subject, ChangeLogFilters(change_type=ChangeType.DELETE, currency="cny")
    )
    assert deletes.total == 1
    assert deletes.items[0].changed_by == "bob"
    assert deletes.items[0].new_amount is None


@pytest.mark.asyncio
async def test_list_upcoming(sql_service, clock):
    await sql_service.create_or_update_pending(
        "P1", PriceTier.COST, {"IDR": Decimal("5000")}, None, "2024-05-21T00:00", None
    )
    await sql_service.create_or_update_pending(
        "P2", PriceTier.COST, {"IDR": Decimal("5000")}, None, "2024-06-21T00:00", None
    )

    records = await sql_service.list_upcoming()

    assert [r.subject.product_id for r in records] == ["P1"]
