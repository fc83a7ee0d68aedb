"""
Bitrix24 Devices Service

Handles device records stored as smart-process (SPA) items.
"""

import logging
from typing import Any, Dict, List, Sequence

from ...config import Settings
from ...models import Device, PartEntry
from ..client import BitrixClient
from ..fields import pick


logger = logging.getLogger(__name__)


class DevicesService:
    """Service for device records in the smart process"""

    def __init__(self, client: BitrixClient, settings: Settings):
        """
        Initialize DevicesService

        Args:
            client: Bitrix24 client instance
            settings: Application settings (entity type, field codes)
        """
        self.client = client
        self.settings = settings

    def _select(self) -> List[str]:
        fields = [
            "id",
            "title",
            "stageId",
            "ufCrm*",
            "updatedTime",
            self.settings.FIELD_SERIAL,
            self.settings.FIELD_NAME,
            self.settings.FIELD_DEAL_ID,
        ]
        return [f for f in fields if f]

    def to_device(self, item: Dict[str, Any]) -> Device:
        """Map a raw SPA item to a Device"""
        serial = pick(item, self.settings.FIELD_SERIAL)
        name = pick(item, self.settings.FIELD_NAME) or item.get("title") or self.settings.UNNAMED_PLACEHOLDER
        deal_link = pick(item, self.settings.FIELD_DEAL_ID)
        device = Device(
            id=item.get("id"),
            name=str(name),
            serial=None if serial is None else str(serial),
            stage=item.get("stageId"),
            deal_id=deal_link,
            raw=item,
        )
        if device.deal_id is None and deal_link not in (None, "", 0, "0", False):
            logger.warning(f"Device {device.id} has an unusable deal link {deal_link!r}; treating it as unlinked")
        return device

    async def find_by_serial(self, serial: str) -> List[Device]:
        """
        Find devices whose serial number contains the given text

        Only the diagnostics workflow category is searched. Results are
        ordered by id descending, so the first one is the most recent.

        Args:
            serial: Serial number or a fragment of it

        Returns:
            List of devices, empty for blank input
        """
        serial = (serial or "").strip()
        if not serial:
            return []

        logger.info(f"Searching devices by serial: {serial}")
        result = await self.client.call("crm.item.list", {
            "entityTypeId": self.settings.SPA_ENTITY_TYPE_ID,
            "filter": {
                self.settings.FIELD_SERIAL: f"%{serial}%",
                "categoryId": self.settings.DEVICE_CATEGORY_ID,
            },
            "order": {"id": "desc"},
            "select": self._select(),
        })

        items = result.get("items", []) if isinstance(result, dict) else []
        devices = [self.to_device(item) for item in items]
        logger.info(f"Found {len(devices)} devices for serial {serial}")
        return devices

    async def update_fields(self, device_id: int, fields: Dict[str, Any]) -> Any:
        """Patch fields of a device record"""
        logger.info(f"Updating device {device_id}: {sorted(fields)}")
        return await self.client.call("crm.item.update", {
            "entityTypeId": self.settings.SPA_ENTITY_TYPE_ID,
            "id": device_id,
            "fields": fields,
        })

    async def set_product_rows(self, device_id: int, parts: Sequence[PartEntry]) -> int:
        """
        Replace the device's own product rows with the given parts

        Args:
            device_id: SPA item id
            parts: Parts to write; entries with non-positive quantity are dropped

        Returns:
            Number of rows written
        """
        product_rows = [
            {"productId": p.id, "price": p.price, "quantity": p.qty}
            for p in parts
            if p.qty > 0
        ]
        await self.client.call("crm.item.productrow.set", {
            "ownerType": self.settings.SPA_OWNER_TYPE,
            "ownerId": int(device_id),
            "productRows": product_rows,
        })
        logger.info(f"Wrote {len(product_rows)} product rows to device {device_id}")
        return len(product_rows)

    async def move_to_stage(self, device_id: int, stage_id: str) -> Any:
        return await self.update_fields(device_id, {"stageId": stage_id})
