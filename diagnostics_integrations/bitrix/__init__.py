"""
Bitrix24 Integration

Client and per-resource services for the Bitrix24 REST API.
"""

from .client import BitrixClient, BatchResult, build_batch_command
from .fields import pick
from .services.paginator import BatchPaginator
from .services.devices import DevicesService
from .services.deals import DealsService
from .services.catalog import CatalogService
from .services.currency import CurrencyService, CurrencyNormalizer

__all__ = [
    'BitrixClient',
    'BatchResult',
    'build_batch_command',
    'pick',
    'BatchPaginator',
    'DevicesService',
    'DealsService',
    'CatalogService',
    'CurrencyService',
    'CurrencyNormalizer',
]
