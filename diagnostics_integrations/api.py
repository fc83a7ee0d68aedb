"""
HTTP API for the diagnostics form.

Thin FastAPI layer over the Bitrix24 services: device lookup, catalog
browsing, product row maintenance, shipping and the diagnostics submission.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .bitrix.client import BitrixClient
from .bitrix.services.catalog import CatalogService
from .bitrix.services.deals import DealsService
from .bitrix.services.devices import DevicesService
from .config import Settings, configure_logging, load_settings
from .core.diagnostics import DiagnosticsOrchestrator
from .exceptions import BadRequestError, DiagnosticsError, InvalidInputError, NotFoundError
from .models import LineItem, PartEntry


logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "INVALID_INPUT": 400,
    "BAD_REQUEST": 400,
    "NOT_FOUND": 404,
    "REMOTE_CALL_FAILED": 502,
}


@dataclass
class Services:
    """Components shared by all requests of one app instance"""

    settings: Settings
    client: BitrixClient
    devices: DevicesService
    deals: DealsService
    catalog: CatalogService
    diagnostics: DiagnosticsOrchestrator

    @classmethod
    def build(cls, settings: Settings, client: BitrixClient) -> "Services":
        diagnostics = DiagnosticsOrchestrator.from_client(client, settings)
        return cls(
            settings=settings,
            client=client,
            devices=diagnostics.devices,
            deals=diagnostics.deals,
            catalog=CatalogService(client, settings),
            diagnostics=diagnostics,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _parse_id(value: Any, error: str) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise BadRequestError(error) from None
    if parsed <= 0:
        raise BadRequestError(error)
    return parsed


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


def _parts_from_rows(rows: Any) -> List[PartEntry]:
    parts = []
    for raw in rows if isinstance(rows, list) else []:
        if not isinstance(raw, dict):
            continue
        try:
            parts.append(PartEntry(
                id=_first(raw, "productId", "id", "PRODUCT_ID"),
                price=_first(raw, "price", "PRICE", default=0),
                qty=_first(raw, "quantity", "qty", "QUANTITY", default=1),
            ))
        except ValidationError:
            logger.warning(f"Skipping malformed product row: {raw}")
    return parts


def _line_items_from_rows(rows: Any) -> List[LineItem]:
    return [
        LineItem(product_id=str(p.id), price=p.price, quantity=p.qty)
        for p in _parts_from_rows(rows)
    ]


def create_app(settings: Optional[Settings] = None, client: Optional[BitrixClient] = None) -> FastAPI:
    """
    Build the FastAPI app

    Args:
        settings: Application settings, loaded from the environment if omitted
        client: Bitrix24 client, created from settings if omitted
    """
    settings = settings or load_settings()
    configure_logging(settings.LOG_LEVEL)
    client = client or BitrixClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.aclose()

    app = FastAPI(title="Diagnostics Integrations", lifespan=lifespan)
    app.state.services = Services.build(settings, client)
    app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS,
                       allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(DiagnosticsError)
    async def diagnostics_error_handler(request: Request, exc: DiagnosticsError):
        status = STATUS_BY_CODE.get(exc.code, 500)
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        return JSONResponse(status_code=status, content={"ok": False, **exc.to_dict()})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"{request.method} {request.url.path} failed unexpectedly: {exc}")
        return JSONResponse(status_code=500, content={"ok": False, "error": "INTERNAL", "details": str(exc)})

    @app.get("/health")
    async def health():
        return {"ok": True, "service": "diagnostics-integrations"}

    @app.get("/api/device/by-serial/{serial}")
    async def device_by_serial(serial: str, services: Services = Depends(get_services)):
        devices = await services.diagnostics.resolver.lookup(serial)
        if not devices:
            raise NotFoundError(f"device not found: {serial}")
        logger.info(f"GET /api/device/by-serial {serial}: {len(devices)} devices")
        return [d.to_lookup() for d in devices]

    @app.get("/api/products/search")
    async def products_search(q: str = "", services: Services = Depends(get_services)):
        products = await services.catalog.search_products(q)
        return [p.model_dump(by_alias=True) for p in products]

    @app.get("/api/products/sections")
    async def products_sections(ids: str = "", services: Services = Depends(get_services)):
        section_ids = [int(x) for x in ids.split(",") if x.strip().isdigit()] if ids.strip() else None
        products = await services.catalog.products_from_sections(section_ids)
        logger.info(f"GET /api/products/sections {section_ids}: {len(products)} products")
        return [p.model_dump(by_alias=True) for p in products]

    @app.get("/api/products/sections/{section_id}")
    async def products_section(section_id: str, services: Services = Depends(get_services)):
        sid = _parse_id(section_id, "BAD_SECTION_ID")
        products = await services.catalog.products_from_sections([sid])
        return [p.model_dump(by_alias=True) for p in products]

    @app.post("/api/item/{item_id}/productrows/set")
    async def item_rows_set(item_id: str, body: Dict[str, Any] = Body(default={}),
                            services: Services = Depends(get_services)):
        device_id = _parse_id(item_id, "BAD_ITEM_ID")
        parts = _parts_from_rows(body.get("rows"))
        count = await services.devices.set_product_rows(device_id, parts)
        return {"ok": True, "itemId": device_id, "count": count}

    @app.post("/api/diagnostics")
    async def diagnostics(body: Dict[str, Any] = Body(default={}),
                          services: Services = Depends(get_services)):
        result = await services.diagnostics.submit(body)
        payload = result.model_dump(by_alias=True)
        logger.info(f"POST /api/diagnostics: {payload}")
        return {"ok": True, **payload}

    @app.post("/api/ship")
    async def ship(body: Dict[str, Any] = Body(default={}), services: Services = Depends(get_services)):
        stage_id = body.get("stageId") or services.settings.STAGE_SENT
        if not stage_id:
            raise BadRequestError("NO_STAGE")

        device_id = body.get("itemId")
        if not device_id and body.get("serial"):
            device = await services.diagnostics.resolver.resolve(str(body["serial"]))
            device_id = device.id
        if not device_id:
            raise InvalidInputError("NO_ITEM")

        device_id = _parse_id(device_id, "BAD_ITEM_ID")
        await services.devices.move_to_stage(device_id, stage_id)
        return {"ok": True, "itemId": device_id, "stageId": stage_id}

    @app.post("/api/deal/{deal_id}/productrows/add")
    async def deal_row_add(deal_id: str, body: Dict[str, Any] = Body(default={}),
                           services: Services = Depends(get_services)):
        did = _parse_id(deal_id, "BAD_DEAL_ID")
        product_id = _parse_id(_first(body, "productId", "id", "PRODUCT_ID"), "BAD_PRODUCT_ID")

        price = _first(body, "price", "PRICE")
        if price is None:
            price = (await services.catalog.get_product_price(product_id)).value.price
        try:
            quantity = float(_first(body, "quantity", "qty", "QUANTITY", default=1))
        except (TypeError, ValueError):
            quantity = 1.0
        if quantity <= 0:
            quantity = 1.0

        try:
            row = LineItem(product_id=str(product_id), price=price, quantity=quantity)
        except ValidationError:
            raise BadRequestError("BAD_PRICE") from None
        await services.deals.add_product_row(did, row)
        return {"ok": True, "dealId": did,
                "added": {"productId": product_id, "price": row.price, "quantity": row.quantity}}

    @app.post("/api/deal/{deal_id}/productrows/set")
    async def deal_rows_set(deal_id: str, body: Dict[str, Any] = Body(default={}),
                            services: Services = Depends(get_services)):
        did = _parse_id(deal_id, "BAD_DEAL_ID")
        rows = _line_items_from_rows(body.get("rows"))
        await services.deals.set_product_rows(did, rows)
        return {"ok": True, "dealId": did, "count": len(rows)}

    return app
