"""priceledger API route modules.

Each module exports a `router` (APIRouter) that priceledger.web.app
includes. Shared dependencies live in priceledger.web.dependencies and
request/response models in priceledger.web.models.
"""

from priceledger.web.routes import change_logs, exchange_rates, prices

__all__ = [
    "change_logs",
    "exchange_rates",
    "prices",
]
