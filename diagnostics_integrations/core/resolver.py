"""
Device resolution: serial number -> device record -> linked deal.
"""

import logging
from typing import List

from ..bitrix.services.deals import DealsService
from ..bitrix.services.devices import DevicesService
from ..config import Settings
from ..exceptions import NotFoundError
from ..models import Device


logger = logging.getLogger(__name__)


class DeviceResolver:
    """Finds the active device for a serial and makes sure it has a deal"""

    def __init__(self, devices: DevicesService, deals: DealsService, settings: Settings):
        self.devices = devices
        self.deals = deals
        self.settings = settings

    async def lookup(self, serial: str) -> List[Device]:
        return await self.devices.find_by_serial(serial)

    async def resolve(self, serial: str) -> Device:
        """
        Most recent device whose serial contains the given text

        Raises:
            NotFoundError: If no device matches
        """
        devices = await self.lookup(serial)
        if not devices:
            raise NotFoundError(f"device not found: {serial}")
        device = devices[0]
        if len(devices) > 1:
            logger.info(f"{len(devices)} devices match {serial!r}; using most recent {device.id}")
        return device

    def _has_name(self, device: Device) -> bool:
        return bool(device.name) and device.name != self.settings.UNNAMED_PLACEHOLDER

    def display_name(self, device: Device) -> str:
        if self._has_name(device):
            return device.name
        return self.settings.DEVICE_NAME_TEMPLATE.format(id=device.id)

    async def ensure_deal(self, device: Device) -> int:
        """
        Return the device's deal id, creating and linking a deal if it has none

        The deal is created in the diagnostics category at its initial stage.
        Two concurrent calls for the same unlinked device can each create a deal.
        """
        if device.deal_id:
            return device.deal_id

        title = device.name if self._has_name(device) else self.settings.DEAL_TITLE_TEMPLATE.format(id=device.id)
        deal_id = await self.deals.add_deal({
            "TITLE": title,
            "CATEGORY_ID": self.settings.DEAL_CATEGORY_ID,
            "STAGE_ID": self.settings.DEAL_INITIAL_STAGE,
        })

        if self.settings.FIELD_DEAL_ID:
            await self.devices.update_fields(device.id, {self.settings.FIELD_DEAL_ID: deal_id})
        else:
            logger.warning(f"FIELD_DEAL_ID is not configured; deal {deal_id} is not linked to device {device.id}")

        device.deal_id = deal_id
        return deal_id
