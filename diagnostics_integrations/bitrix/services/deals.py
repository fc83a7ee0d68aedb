"""
Bitrix24 Deals Service

Handles deals and their product rows.
"""

import logging
from typing import Any, Dict, List, Sequence

from ...models import LineItem, ReadResult
from ..client import BitrixClient


logger = logging.getLogger(__name__)


class DealsService:
    """Service for deals and deal product rows"""

    def __init__(self, client: BitrixClient):
        """
        Initialize DealsService

        Args:
            client: Bitrix24 client instance
        """
        self.client = client

    async def add_deal(self, fields: Dict[str, Any]) -> int:
        """
        Create a deal

        Args:
            fields: Deal fields (TITLE, CATEGORY_ID, STAGE_ID, ...)

        Returns:
            Id of the new deal
        """
        result = await self.client.call("crm.deal.add", {"fields": fields})
        deal_id = int(result)
        logger.info(f"Created deal {deal_id}: {fields.get('TITLE')}")
        return deal_id

    async def get_product_rows(self, deal_id: int) -> ReadResult[List[LineItem]]:
        """
        Read a deal's product rows, best effort

        Any failure (transport, remote error, unexpected shape) yields an empty
        list; the error is kept on the result so callers can tell "no rows"
        apart from "read failed".
        """
        try:
            raw = await self.client.call("crm.deal.productrows.get", {"id": deal_id})
            rows = [LineItem.model_validate(r) for r in (raw or []) if isinstance(r, dict)]
            return ReadResult(rows)
        except Exception as e:
            logger.warning(f"Could not read product rows of deal {deal_id}, using empty list: {e}")
            return ReadResult([], e)

    async def set_product_rows(self, deal_id: int, rows: Sequence[LineItem]) -> Any:
        """Overwrite all product rows of a deal"""
        logger.info(f"Writing {len(rows)} product rows to deal {deal_id}")
        return await self.client.call("crm.deal.productrows.set", {
            "id": deal_id,
            "rows": [row.to_row() for row in rows],
        })

    async def set_currency(self, deal_id: int, currency_code: str) -> Any:
        logger.info(f"Setting currency of deal {deal_id} to {currency_code}")
        return await self.client.call("crm.deal.update", {
            "id": deal_id,
            "fields": {"CURRENCY_ID": currency_code},
        })

    async def add_product_row(self, deal_id: int, row: LineItem) -> List[LineItem]:
        """
        Append one row to the deal, keeping the rows already there

        Returns:
            The full list of rows written
        """
        current = await self.get_product_rows(deal_id)
        rows = list(current.value) + [row]
        await self.set_product_rows(deal_id, rows)
        return rows
