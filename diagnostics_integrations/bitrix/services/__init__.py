"""
Bitrix24 Services

Service modules for the portal resources used by the diagnostics flow.
"""

from .paginator import BatchPaginator
from .devices import DevicesService
from .deals import DealsService
from .catalog import CatalogService
from .currency import CurrencyService, CurrencyNormalizer

__all__ = [
    'BatchPaginator',
    'DevicesService',
    'DealsService',
    'CatalogService',
    'CurrencyService',
    'CurrencyNormalizer',
]
