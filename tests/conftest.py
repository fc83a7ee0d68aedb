import pytest
from unittest.mock import AsyncMock

from diagnostics_integrations.config import Settings


class FakeBitrix:
    """Stands in for BitrixClient, answering calls from a method -> response map"""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.call = AsyncMock(side_effect=self._call)
        self.call_batch = AsyncMock()
        self.aclose = AsyncMock()

    async def _call(self, method, params=None):
        params = params or {}
        self.calls.append((method, params))
        response = self.responses.get(method, True)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params)
        return response

    @property
    def methods(self):
        return [method for method, _ in self.calls]

    def params_of(self, method):
        return [params for m, params in self.calls if m == method]


@pytest.fixture
def settings():
    """Settings with fixed field codes, isolated from the local environment"""
    return Settings(
        _env_file=None,
        BX_LINK="https://portal.test/rest/1/token",
        SPA_ENTITY_TYPE_ID=1032,
        FIELD_SERIAL="ufCrm5Serial",
        FIELD_NAME="ufCrm5Name",
        FIELD_DEAL_ID="ufCrm5DealId",
        FIELD_DEFECTS="ufCrm5Defects",
        FIELD_VERIFICATION="ufCrm5Verified",
        FIELD_SUM_SERVICES="ufCrm5SumServices",
        STAGE_SENT="DT1032_11:SUCCESS",
        REQUEST_INTERVAL_SEC=0,
    )


@pytest.fixture
def fake_bitrix():
    return FakeBitrix()
