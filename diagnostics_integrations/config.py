"""
Diagnostics Integrations Configuration

Settings for the Bitrix24 webhook, the device smart process, the diagnostics
workflow category and the keyword tables used to classify services.
Values come from environment variables or a local .env file.
"""

import logging
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the diagnostics backend"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Bitrix24 incoming webhook, e.g. https://portal.bitrix24.kz/rest/1/token/
    BX_LINK: str = ""

    # Smart process holding the devices
    SPA_ENTITY_TYPE_ID: int = 0
    SPA_OWNER_TYPE: str = "Tb1"

    # Diagnostics workflow (funnel) for devices and deals
    DEVICE_CATEGORY_ID: int = 11
    DEAL_CATEGORY_ID: int = 11
    DEAL_INITIAL_STAGE: str = "C11:NEW"
    STAGE_SENT: Optional[str] = None

    # Device fields
    FIELD_SERIAL: str = "ufCrm5Serial"
    FIELD_NAME: Optional[str] = None
    FIELD_DEFECTS: Optional[str] = None
    FIELD_VERIFICATION: Optional[str] = None
    FIELD_SUM_SERVICES: Optional[str] = None
    FIELD_DEAL_ID: Optional[str] = None

    # Catalog
    CATALOG_SECTION_IDS: List[int] = [653, 654]

    # Service classification
    DIAGNOSTIC_KEYWORDS: List[str] = ["диагност"]
    VERIFICATION_KEYWORDS: List[str] = ["поверк"]
    REPAIR_KEYWORDS: List[str] = ["ремонт"]
    DIAGNOSTIC_LABEL: str = "Диагностика"
    VERIFICATION_LABEL: str = "Поверка"
    REPAIR_LABEL: str = "Ремонт"

    # Placeholders
    UNNAMED_PLACEHOLDER: str = "(без названия)"
    DEVICE_NAME_TEMPLATE: str = "Прибор #{id}"
    DEAL_TITLE_TEMPLATE: str = "Сделка по прибору #{id}"

    # Currencies; aliases are scanned in order against the lowercased label
    BASE_CURRENCY: str = "KZT"
    CURRENCY_ALIASES: Dict[str, str] = {
        "сом": "KGS",
        "som": "KGS",
        "руб": "RUB",
        "rub": "RUB",
        "доллар": "USD",
        "dollar": "USD",
        "$": "USD",
        "евро": "EUR",
        "euro": "EUR",
        "€": "EUR",
        "тенге": "KZT",
        "tenge": "KZT",
        "kzt": "KZT",
    }

    # Transport
    REQUEST_TIMEOUT_SEC: float = 30.0
    REQUEST_INTERVAL_SEC: float = 0.1

    # HTTP surface
    CORS_ORIGINS: List[str] = ["*"]

    # Other
    LOG_LEVEL: str = "INFO"

    @property
    def webhook_url(self) -> str:
        """Webhook base URL with a trailing slash"""
        if not self.BX_LINK:
            return ""
        return self.BX_LINK if self.BX_LINK.endswith("/") else self.BX_LINK + "/"

    def check_required(self) -> bool:
        """Validate that required configuration is present"""
        if not self.BX_LINK:
            raise ValueError("BX_LINK (Bitrix24 webhook URL) is required")
        if not self.SPA_ENTITY_TYPE_ID:
            raise ValueError("SPA_ENTITY_TYPE_ID is required")
        return True


def load_settings(**overrides) -> Settings:
    """Create the settings object once at startup"""
    return Settings(**overrides)


def configure_logging(log_level: str = "INFO"):
    """Set up logging configuration."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
