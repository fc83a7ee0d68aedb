"""
Bitrix24 REST Client

Async client for the Bitrix24 incoming webhook.
Handles single calls, batched calls, throttling and error handling.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import httpx

from ..config import Settings
from ..exceptions import RemoteCallError, RemoteRateLimitError


logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves untouched
_URI_SAFE = "-_.!~*'()"

_RATE_LIMIT_ERRORS = {"QUERY_LIMIT_EXCEEDED", "OPERATION_TIME_LIMIT"}


def _encode(value: Any) -> str:
    return quote(str(value), safe=_URI_SAFE)


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def build_batch_command(method: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Encode a single method call as a batch command string

    Args:
        method: REST method name, e.g. "crm.product.list"
        params: Call parameters; filter/order are mappings, select is a list,
            start is always emitted last

    Returns:
        Command string such as "crm.product.list?filter%5BID%5D=1&start=0"
    """
    params = dict(params or {})
    filter_ = params.pop("filter", None)
    order = params.pop("order", None)
    select = params.pop("select", None)
    start = params.pop("start", None)

    parts = []
    if isinstance(filter_, Mapping):
        for key, value in filter_.items():
            if _is_blank(value):
                continue
            parts.append(f"{_encode(f'filter[{key}]')}={_encode(value)}")

    if isinstance(order, Mapping):
        for key, value in order.items():
            parts.append(f"{_encode(f'order[{key}]')}={_encode(value)}")

    if isinstance(select, (list, tuple)):
        for name in select:
            parts.append(f"{_encode('select[]')}={_encode(name)}")

    for key, value in params.items():
        if _is_blank(value):
            continue
        parts.append(f"{_encode(key)}={_encode(value)}")

    if start is not None:
        parts.append(f"start={_encode(start)}")

    return f"{method}?{'&'.join(parts)}"


@dataclass
class BatchResult:
    """Per-key results of a batch call"""

    result: Dict[str, Any] = field(default_factory=dict)
    next: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, Any] = field(default_factory=dict)
    total: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: Any) -> "BatchResult":
        data = data if isinstance(data, dict) else {}

        def as_map(value: Any) -> Dict[str, Any]:
            # The portal sends an empty list instead of an empty object
            return value if isinstance(value, dict) else {}

        return cls(
            result=as_map(data.get("result")),
            next=as_map(data.get("result_next")),
            errors=as_map(data.get("result_error")),
            total=as_map(data.get("result_total")),
        )


class BitrixClient:
    """Bitrix24 webhook client with error handling and throttling"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize Bitrix24 client

        Args:
            settings: Application settings holding the webhook URL
            http_client: Optional preconfigured httpx client
        """
        self.settings = settings
        self.base_url = settings.webhook_url
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT_SEC)

        # Rate limiting tracking
        self.last_request_time = 0.0
        self.min_request_interval = settings.REQUEST_INTERVAL_SEC
        self._throttle_lock = asyncio.Lock()

    async def __aenter__(self) -> "BitrixClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self.http_client.aclose()

    async def _wait_for_rate_limit(self):
        """Keep at least min_request_interval between requests"""
        if self.min_request_interval <= 0:
            return
        async with self._throttle_lock:
            elapsed = time.monotonic() - self.last_request_time
            if elapsed < self.min_request_interval:
                await asyncio.sleep(self.min_request_interval - elapsed)
            self.last_request_time = time.monotonic()

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Call a single REST method

        Args:
            method: REST method name
            params: JSON parameters

        Returns:
            The "result" field of the response

        Raises:
            RemoteCallError: Transport failure, unparsable body or no result
            RemoteRateLimitError: The portal throttled the request
        """
        if not self.base_url:
            raise RemoteCallError(method, "Bitrix24 webhook URL is not configured")

        await self._wait_for_rate_limit()
        url = f"{self.base_url}{method}.json"

        try:
            logger.debug(f"Calling {method}")
            response = await self.http_client.post(url, json=params or {})
        except httpx.HTTPError as e:
            logger.error(f"Request to {method} failed: {e}")
            raise RemoteCallError(method, f"request failed: {e}") from e

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise RemoteCallError(
                method,
                f"invalid response (HTTP {response.status_code})",
                status_code=response.status_code,
                response=response.text,
            ) from e

        if isinstance(data, dict) and "result" in data:
            return data["result"]

        data = data if isinstance(data, dict) else {}
        error_code = data.get("error")
        message = data.get("error_description") or error_code or "Bitrix24 call failed"
        if response.status_code == 429 or error_code in _RATE_LIMIT_ERRORS:
            raise RemoteRateLimitError(method, message, status_code=response.status_code,
                                       response=response.text)
        raise RemoteCallError(method, message, status_code=response.status_code,
                              response=response.text)

    async def call_batch(self, commands: Mapping[str, str], halt: bool = False) -> BatchResult:
        """
        Execute several encoded commands in one round trip

        Args:
            commands: Caller-chosen key -> command built by build_batch_command
            halt: Stop the batch on the first failing command

        Returns:
            BatchResult with per-key results and next cursors
        """
        data = await self.call("batch", {"halt": 1 if halt else 0, "cmd": dict(commands)})
        batch = BatchResult.from_response(data)
        for key, error in batch.errors.items():
            logger.warning(f"Batch command {key} failed: {error}")
        return batch

    async def health_check(self) -> bool:
        """
        Check if the client can reach the portal

        Returns:
            True if connection successful, False otherwise
        """
        try:
            await self.call("profile")
            return True
        except RemoteCallError as e:
            logger.error(f"Health check failed: {e}")
            return False
