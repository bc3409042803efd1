"""Database layer for priceledger with async SQLAlchemy."""

from priceledger.db.connection import close_db, get_session, init_db
from priceledger.db.models import (
    Base,
    ExchangeRateModel,
    PriceChangeLogModel,
    PriceRecordModel,
)
from priceledger.db.price_store import SqlPriceStore

__all__ = [
    "Base",
    "PriceRecordModel",
    "PriceChangeLogModel",
    "ExchangeRateModel",
    "SqlPriceStore",
    "close_db",
    "get_session",
    "init_db",
]
