"""Exchange rate providers."""

from priceledger.rates.provider import BaseRateProvider, ExchangeRateBook, ExchangeRateProvider
from priceledger.rates.static import StaticRateProvider, load_rates_file

__all__ = [
    "BaseRateProvider",
    "ExchangeRateBook",
    "ExchangeRateProvider",
    "StaticRateProvider",
    "load_rates_file",
]
