"""
Diagnostics submission workflow.

Steps run strictly in sequence and stop at the first failure; nothing is
rolled back, so writes made before a failing step stay in effect. Only the
read of the deal's current rows is best effort.

Two submissions for the same device running at the same time both read the
same rows and the later write wins. There is no version check on the deal.
"""

import logging
from typing import Any, Dict, Mapping, Union

from pydantic import ValidationError

from ..bitrix.client import BitrixClient
from ..bitrix.services.currency import CurrencyNormalizer, CurrencyService
from ..bitrix.services.deals import DealsService
from ..bitrix.services.devices import DevicesService
from ..config import Settings
from ..exceptions import BadRequestError, InvalidInputError
from ..models import DiagnosticsPayload, DiagnosticsResult, round_money
from .reconciler import ReconcileOutcome, RowReconciler
from .resolver import DeviceResolver


logger = logging.getLogger(__name__)


def _describe_errors(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc']) or 'payload'}: {err['msg']}"
        for err in error.errors()
    )


class DiagnosticsOrchestrator:
    """Applies a diagnostics submission to the device and its deal"""

    def __init__(self, resolver: DeviceResolver, devices: DevicesService, deals: DealsService,
                 reconciler: RowReconciler, normalizer: CurrencyNormalizer, settings: Settings):
        self.resolver = resolver
        self.devices = devices
        self.deals = deals
        self.reconciler = reconciler
        self.normalizer = normalizer
        self.settings = settings

    @classmethod
    def from_client(cls, client: BitrixClient, settings: Settings) -> "DiagnosticsOrchestrator":
        devices = DevicesService(client, settings)
        deals = DealsService(client)
        return cls(
            resolver=DeviceResolver(devices, deals, settings),
            devices=devices,
            deals=deals,
            reconciler=RowReconciler(settings),
            normalizer=CurrencyNormalizer(CurrencyService(client, settings), deals, settings),
            settings=settings,
        )

    @staticmethod
    def parse_payload(payload: Union[Mapping[str, Any], DiagnosticsPayload]) -> DiagnosticsPayload:
        if isinstance(payload, DiagnosticsPayload):
            return payload
        try:
            return DiagnosticsPayload.model_validate(payload)
        except ValidationError as e:
            raise BadRequestError(f"invalid payload: {_describe_errors(e)}", details=e.errors()) from e

    async def submit(self, payload: Union[Mapping[str, Any], DiagnosticsPayload]) -> DiagnosticsResult:
        """
        Process one diagnostics submission

        Args:
            payload: Submission with serial, defects, verification, parts,
                services, currency and rate to base currency

        Returns:
            DiagnosticsResult summary

        Raises:
            BadRequestError: Malformed payload
            InvalidInputError: Blank serial
            NotFoundError: No device matches the serial
            RemoteCallError: A write to the portal failed
        """
        data = self.parse_payload(payload)
        serial = (data.serial or "").strip()
        if not serial:
            raise InvalidInputError("serial is required")

        device = await self.resolver.resolve(serial)
        deal_id = await self.resolver.ensure_deal(device)
        logger.info(f"Diagnostics for device {device.id} (serial {serial}), deal {deal_id}")

        # Parts go to the device only; their cost reaches the deal via repairs
        if data.parts:
            await self.devices.set_product_rows(device.id, data.parts)

        existing = await self.deals.get_product_rows(deal_id)
        if existing.failed:
            logger.warning(f"Proceeding without existing rows of deal {deal_id}")

        outcome = self.reconciler.reconcile(
            existing.value, data.services, data.parts, self.resolver.display_name(device)
        )

        decision = await self.normalizer.apply(deal_id, outcome.rows, data.currency, data.rate_to_base)
        logger.info(f"Deal {deal_id} written in {decision.code} with {len(decision.rows)} rows")

        result = self._summarize(device.id, deal_id, outcome)
        fields = self._summary_fields(data, result)
        if fields:
            await self.devices.update_fields(device.id, fields)

        return result

    def _summarize(self, device_id: int, deal_id: int, outcome: ReconcileOutcome) -> DiagnosticsResult:
        parts_sum = round_money(outcome.parts_sum)
        services_sum = round_money(outcome.services_sum)
        return DiagnosticsResult(
            device_id=device_id,
            deal_id=deal_id,
            diagnostic_qty=outcome.diagnostic_qty,
            verification_qty=outcome.verification_qty,
            repairs_added_qty=outcome.repairs_qty,
            parts_sum=parts_sum,
            services_sum=services_sum,
            total_sum=round_money(services_sum + parts_sum),
        )

    def _summary_fields(self, data: DiagnosticsPayload, result: DiagnosticsResult) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if self.settings.FIELD_DEFECTS:
            fields[self.settings.FIELD_DEFECTS] = data.defects
        if self.settings.FIELD_VERIFICATION:
            fields[self.settings.FIELD_VERIFICATION] = "Y" if data.verification else "N"
        if self.settings.FIELD_SUM_SERVICES:
            fields[self.settings.FIELD_SUM_SERVICES] = result.total_sum
        return fields
