"""
Bitrix24 Currency Service

Reads the currencies enabled on the portal and normalizes the currency of
deal rows before they are written.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from ...config import Settings
from ...models import Currency, LineItem, ReadResult, round_money
from ..client import BitrixClient
from .deals import DealsService


logger = logging.getLogger(__name__)


class CurrencyService:
    """Service for portal currencies"""

    def __init__(self, client: BitrixClient, settings: Settings):
        self.client = client
        self.settings = settings

    async def list_currencies(self) -> ReadResult[List[Currency]]:
        """
        List currencies enabled on the portal, best effort

        On failure only the base currency is reported as available.
        """
        try:
            raw = await self.client.call("crm.currency.list", {})
            currencies = [Currency.from_remote(c) for c in (raw or []) if isinstance(c, dict)]
            logger.info(f"Portal currencies: {[c.code for c in currencies]}")
            return ReadResult(currencies)
        except Exception as e:
            logger.warning(f"Could not list portal currencies, assuming {self.settings.BASE_CURRENCY} only: {e}")
            return ReadResult([Currency(code=self.settings.BASE_CURRENCY, base=True)], e)

    async def supported_codes(self) -> Set[str]:
        result = await self.list_currencies()
        return {c.code for c in result.value}


@dataclass
class CurrencyDecision:
    """Currency chosen for a deal and the rows to write"""

    code: str
    converted: bool
    rate: float
    rows: List[LineItem] = field(default_factory=list)


class CurrencyNormalizer:
    """Decides the deal currency and converts row prices when needed"""

    def __init__(self, currencies: CurrencyService, deals: DealsService, settings: Settings):
        self.currencies = currencies
        self.deals = deals
        self.settings = settings

    def resolve_code(self, label: Optional[str], supported: Iterable[str]) -> Optional[str]:
        """
        Map a requested currency label to a portal-supported code

        Args:
            label: Code or free-text name, e.g. "KGS", "сом", "$"
            supported: Codes enabled on the portal

        Returns:
            Supported code, or None when the label cannot be mapped to one
        """
        supported = {s.upper() for s in supported}
        label = (label or self.settings.BASE_CURRENCY).strip()

        code = label.upper()
        if code in supported:
            return code

        lowered = label.lower()
        for token, mapped in self.settings.CURRENCY_ALIASES.items():
            if token in lowered:
                mapped = mapped.upper()
                return mapped if mapped in supported else None
        return None

    def normalize(self, rows: Iterable[LineItem], label: Optional[str], rate: float,
                  supported: Iterable[str]) -> CurrencyDecision:
        """
        Tag rows with the requested currency, or convert them to the base currency

        Args:
            rows: Rows priced in the submission currency
            label: Requested currency code or name
            rate: Units of base currency per 1 unit of the requested currency
            supported: Codes enabled on the portal
        """
        rows = list(rows)
        code = self.resolve_code(label, supported)

        if code is not None:
            tagged = [row.model_copy(update={"currency": code}) for row in rows]
            return CurrencyDecision(code=code, converted=False, rate=1.0, rows=tagged)

        base = self.settings.BASE_CURRENCY
        converted = [
            row.model_copy(update={"price": round_money(row.price * rate), "currency": base})
            for row in rows
        ]
        logger.info(f"Currency {label!r} is not enabled on the portal; converted {len(rows)} rows "
                    f"to {base} at rate {rate}")
        return CurrencyDecision(code=base, converted=True, rate=rate, rows=converted)

    async def apply(self, deal_id: int, rows: Iterable[LineItem], label: Optional[str],
                    rate: float) -> CurrencyDecision:
        """
        Set the deal currency and write its rows

        Raises:
            RemoteCallError: If updating the deal or writing the rows fails
        """
        supported = await self.currencies.supported_codes()
        decision = self.normalize(rows, label, rate, supported)
        await self.deals.set_currency(deal_id, decision.code)
        await self.deals.set_product_rows(deal_id, decision.rows)
        return decision
