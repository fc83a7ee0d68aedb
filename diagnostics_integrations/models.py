"""
Diagnostics Models

Pydantic models for portal records (devices, deal rows, products, currencies),
the diagnostics submission and its summary, plus money rounding and the
best-effort read result.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def round_money(value: float) -> float:
    """Round a monetary amount to 2 decimal places, half up"""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _to_number(value: Any, default: float) -> Any:
    # Empty and zero values fall back to the default, as the portal sends them
    if value is None or value == "" or value == 0 or value == "0":
        return default
    return value


def _to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    # Ids that are not plain integers, e.g. "D_900", count as absent
    if isinstance(value, float) and value.is_integer():
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


class ServiceCategory(Enum):
    """How a service entry contributes to the deal"""
    DIAGNOSTIC = "diagnostic"
    VERIFICATION = "verification"
    REPAIR = "repair"


@dataclass
class ReadResult(Generic[T]):
    """Outcome of a best-effort read: the value to use and the error, if any"""

    value: T
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def failed(self) -> bool:
        return self.error is not None


class LineItem(BaseModel):
    """A deal product row. Unknown portal fields are kept and written back as-is."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    product_id: Optional[str] = Field(default=None, alias="PRODUCT_ID")
    name: str = Field(default="", alias="PRODUCT_NAME")
    price: float = Field(default=0.0, alias="PRICE")
    quantity: float = Field(default=1.0, alias="QUANTITY")
    currency: Optional[str] = Field(default=None, alias="CURRENCY_ID")

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id_as_str(cls, v):
        if v is None:
            return None
        return str(v).strip()

    @field_validator("name", mode="before")
    @classmethod
    def _name_as_str(cls, v):
        return "" if v is None else str(v)

    @field_validator("price", mode="before")
    @classmethod
    def _price_default(cls, v):
        return 0.0 if v is None or v == "" else v

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity_default(cls, v):
        return _to_number(v, 1.0)

    @property
    def catalog_id(self) -> Optional[str]:
        """Catalog product id, or None for rows identified by name only"""
        if not self.product_id or self.product_id == "0":
            return None
        return self.product_id

    @property
    def amount(self) -> float:
        return self.price * self.quantity

    def to_row(self) -> Dict[str, Any]:
        """Serialize to the portal's row shape"""
        return self.model_dump(by_alias=True, exclude_none=True)


class ServiceEntry(BaseModel):
    """A performed service submitted by the technician"""

    id: Optional[int] = None
    name: str = ""
    price: float = 0.0
    qty: float = 1.0

    @field_validator("id", mode="before")
    @classmethod
    def _blank_id(cls, v):
        return None if v == "" else v

    @field_validator("name", mode="before")
    @classmethod
    def _name_as_str(cls, v):
        return "" if v is None else str(v)

    @field_validator("price", mode="before")
    @classmethod
    def _price_default(cls, v):
        return 0.0 if v is None or v == "" else v

    @field_validator("qty", mode="before")
    @classmethod
    def _qty_default(cls, v):
        return _to_number(v, 1.0)

    @property
    def amount(self) -> float:
        return self.price * self.qty


class PartEntry(BaseModel):
    """A replacement part; written to the device, never to the deal"""

    id: int
    price: float = 0.0
    qty: float = 1.0

    @field_validator("price", mode="before")
    @classmethod
    def _price_default(cls, v):
        return 0.0 if v is None or v == "" else v

    @field_validator("qty", mode="before")
    @classmethod
    def _qty_default(cls, v):
        return _to_number(v, 1.0)

    @property
    def amount(self) -> float:
        return self.price * self.qty


class DiagnosticsPayload(BaseModel):
    """Diagnostics submission as posted by the form"""

    serial: Optional[str] = None
    defects: str = ""
    verification: bool = False
    parts: List[PartEntry] = []
    services: List[ServiceEntry] = []
    currency: Optional[str] = None
    rate_to_base: float = Field(
        default=1.0,
        gt=0,
        validation_alias=AliasChoices("rateToBase", "rateKZT", "rate_to_base"),
    )

    @field_validator("serial", mode="before")
    @classmethod
    def _serial_as_str(cls, v):
        return None if v is None else str(v)

    @field_validator("defects", mode="before")
    @classmethod
    def _defects_as_str(cls, v):
        return "" if v is None else str(v)

    @field_validator("parts", "services", mode="before")
    @classmethod
    def _null_list(cls, v):
        return [] if v is None else v

    @field_validator("rate_to_base", mode="before")
    @classmethod
    def _rate_default(cls, v):
        return 1.0 if v is None or v == "" else v


class Device(BaseModel):
    """A device record from the smart process"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    name: str
    serial: Optional[str] = None
    stage: Optional[str] = None
    deal_id: Optional[int] = None
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @field_validator("deal_id", mode="before")
    @classmethod
    def _empty_deal(cls, v):
        if v in (None, "", 0, "0", False):
            return None
        return _to_int(v) or None

    def to_lookup(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class Currency(BaseModel):
    """A currency enabled on the portal; rate is units of base per 1 unit"""

    code: str
    name: str = ""
    rate: float = 1.0
    base: bool = False

    @classmethod
    def from_remote(cls, raw: Dict[str, Any]) -> "Currency":
        amount = float(raw.get("AMOUNT") or 1)
        amount_cnt = float(raw.get("AMOUNT_CNT") or 1)
        return cls(
            code=str(raw.get("CURRENCY", "")).upper(),
            name=raw.get("FULL_NAME") or "",
            rate=amount / amount_cnt,
            base=raw.get("BASE") == "Y",
        )


class Product(BaseModel):
    """A catalog product"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    price: float = 0.0
    currency: str
    section_id: int = 0

    @classmethod
    def from_remote(cls, raw: Dict[str, Any], default_currency: str,
                    placeholder: str, section_id: int = 0) -> "Product":
        return cls(
            id=str(raw.get("ID", raw.get("id"))),
            name=raw.get("NAME") or raw.get("name") or placeholder,
            price=float(raw.get("PRICE") or raw.get("price") or 0),
            currency=raw.get("CURRENCY_ID") or raw.get("currency") or default_currency,
            section_id=_to_int(raw.get("SECTION_ID") or raw.get("sectionId") or section_id, section_id),
        )


class DiagnosticsResult(BaseModel):
    """Summary returned after a diagnostics submission"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    device_id: int
    deal_id: int
    diagnostic_qty: float = 0
    verification_qty: float = 0
    repairs_added_qty: float = 0
    parts_sum: float = 0.0
    services_sum: float = 0.0
    total_sum: float = 0.0
