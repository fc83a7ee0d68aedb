"""
Bitrix24 Catalog Service

Handles the classic CRM product catalog.
"""

import logging
from typing import List, Optional, Sequence

from ...config import Settings
from ...models import Product, ReadResult
from ..client import BitrixClient
from .paginator import BatchPaginator


logger = logging.getLogger(__name__)

PRODUCT_SELECT = ["ID", "NAME", "PRICE", "CURRENCY_ID", "SECTION_ID"]


class CatalogService:
    """Service for catalog products"""

    def __init__(self, client: BitrixClient, settings: Settings):
        """
        Initialize CatalogService

        Args:
            client: Bitrix24 client instance
            settings: Application settings (sections, base currency)
        """
        self.client = client
        self.settings = settings
        self.paginator = BatchPaginator(client, key_prefix="sec")

    def _to_product(self, raw, section_id: int = 0) -> Product:
        return Product.from_remote(
            raw,
            default_currency=self.settings.BASE_CURRENCY,
            placeholder=self.settings.UNNAMED_PLACEHOLDER,
            section_id=section_id,
        )

    async def search_products(self, query: str) -> List[Product]:
        """
        Search active products by name fragment

        Args:
            query: Text to search for in product names

        Returns:
            Matching products ordered by name, empty for a blank query
        """
        query = (query or "").strip()
        if not query:
            return []

        logger.info(f"Searching products: {query}")
        result = await self.client.call("crm.product.list", {
            "order": {"NAME": "asc"},
            "filter": {"%NAME": query, "ACTIVE": "Y"},
            "select": PRODUCT_SELECT,
        })
        products = [self._to_product(p) for p in (result or [])]
        logger.info(f"Found {len(products)} products")
        return products

    async def get_product_price(self, product_id: int) -> ReadResult[Product]:
        """
        Get a product's catalog price, best effort

        Falls back to price 0 in the base currency when the product cannot be read.
        """
        try:
            raw = await self.client.call("crm.product.get", {"id": product_id})
            return ReadResult(self._to_product(raw or {"ID": product_id}))
        except Exception as e:
            logger.warning(f"Could not read price of product {product_id}: {e}")
            fallback = Product(id=str(product_id), name=self.settings.UNNAMED_PLACEHOLDER,
                               price=0.0, currency=self.settings.BASE_CURRENCY)
            return ReadResult(fallback, e)

    async def products_from_sections(self, section_ids: Optional[Sequence[int]] = None) -> List[Product]:
        """
        Get every active product of the given catalog sections

        Args:
            section_ids: Catalog section ids, defaults to the configured sections

        Returns:
            Products deduplicated by id
        """
        if section_ids is None:
            section_ids = self.settings.CATALOG_SECTION_IDS

        records = await self.paginator.fetch_all(
            "crm.product.list",
            list(section_ids),
            lambda section_id: {
                "order": {"ID": "asc"},
                "filter": {"SECTION_ID": section_id, "ACTIVE": "Y"},
                "select": PRODUCT_SELECT,
            },
        )
        return [self._to_product(r) for r in records]
