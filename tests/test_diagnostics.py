import pytest

from diagnostics_integrations.core.diagnostics import DiagnosticsOrchestrator
from diagnostics_integrations.exceptions import BadRequestError, InvalidInputError, NotFoundError, RemoteCallError

PORTAL_CURRENCIES = [
    {"CURRENCY": "KZT", "AMOUNT": "1", "AMOUNT_CNT": 1, "BASE": "Y"},
    {"CURRENCY": "USD", "AMOUNT": "480", "AMOUNT_CNT": 1, "BASE": "N"},
]

DEVICE_ITEM = {
    "id": 42,
    "title": "Заявка 42",
    "stageId": "DT1032_11:NEW",
    "ufCrm5Serial": "SN-123",
    "ufCrm5Name": "Нивелир",
    "ufCrm5DealId": 900,
}


@pytest.fixture
def orchestrator(fake_bitrix, settings):
    fake_bitrix.responses.update({
        "crm.item.list": {"items": [DEVICE_ITEM]},
        "crm.deal.productrows.get": [
            {"ID": 1, "PRODUCT_ID": 10, "PRODUCT_NAME": "Диагностика", "PRICE": 100, "QUANTITY": 1},
        ],
        "crm.currency.list": PORTAL_CURRENCIES,
    })
    return DiagnosticsOrchestrator.from_client(fake_bitrix, settings)


@pytest.fixture
def payload():
    return {
        "serial": "SN-123",
        "defects": "Разбит окуляр",
        "verification": True,
        "parts": [{"id": 5, "price": 300, "qty": 1}],
        "services": [
            {"id": 10, "name": "Диагностика", "price": 50, "qty": 1},
            {"id": 20, "name": "Ремонт оптики", "price": 1000, "qty": 1},
            {"id": 21, "name": "Ремонт корпуса", "price": 500, "qty": 1},
        ],
        "currency": "KZT",
        "rateToBase": 1,
    }


def written_rows(fake_bitrix):
    [params] = fake_bitrix.params_of("crm.deal.productrows.set")
    return {row["PRODUCT_NAME"]: row for row in params["rows"]}


class TestDiagnosticsOrchestrator:
    """Unit tests for DiagnosticsOrchestrator"""

    @pytest.mark.asyncio
    async def test_full_submission(self, orchestrator, fake_bitrix, payload):
        result = await orchestrator.submit(payload)

        assert result.device_id == 42
        assert result.deal_id == 900
        assert result.diagnostic_qty == 1
        assert result.verification_qty == 0
        assert result.repairs_added_qty == 2
        assert result.parts_sum == 300
        assert result.services_sum == 1550
        assert result.total_sum == 1850

        assert fake_bitrix.methods == [
            "crm.item.list",
            "crm.item.productrow.set",
            "crm.deal.productrows.get",
            "crm.currency.list",
            "crm.deal.update",
            "crm.deal.productrows.set",
            "crm.item.update",
        ]

        rows = written_rows(fake_bitrix)
        assert rows["Диагностика"]["PRICE"] == 75
        assert rows["Диагностика"]["QUANTITY"] == 2
        assert rows["Диагностика"]["PRODUCT_ID"] == "10"
        assert rows["Ремонт оптики — Нивелир"]["PRICE"] == 1150
        assert rows["Ремонт корпуса — Нивелир"]["PRICE"] == 650
        assert {row["CURRENCY_ID"] for row in rows.values()} == {"KZT"}

        [device_rows] = fake_bitrix.params_of("crm.item.productrow.set")
        assert device_rows["ownerId"] == 42
        assert device_rows["productRows"] == [{"productId": 5, "price": 300, "quantity": 1}]

        [summary] = fake_bitrix.params_of("crm.item.update")
        assert summary["id"] == 42
        assert summary["fields"] == {
            "ufCrm5Defects": "Разбит окуляр",
            "ufCrm5Verified": "Y",
            "ufCrm5SumServices": 1850,
        }

    @pytest.mark.asyncio
    async def test_result_serializes_in_camel_case(self, orchestrator, payload):
        result = await orchestrator.submit(payload)

        dumped = result.model_dump(by_alias=True)
        assert dumped["dealId"] == 900
        assert dumped["repairsAddedQty"] == 2
        assert dumped["totalSum"] == 1850

    @pytest.mark.asyncio
    async def test_blank_serial(self, orchestrator, fake_bitrix, payload):
        payload["serial"] = "  "

        with pytest.raises(InvalidInputError):
            await orchestrator.submit(payload)

        assert fake_bitrix.calls == []

    @pytest.mark.asyncio
    async def test_malformed_part(self, orchestrator, fake_bitrix, payload):
        payload["parts"] = [{"id": "abc", "price": 1}]

        with pytest.raises(BadRequestError) as exc_info:
            await orchestrator.submit(payload)

        assert "parts.0.id" in exc_info.value.message
        assert fake_bitrix.calls == []

    @pytest.mark.asyncio
    async def test_non_positive_rate(self, orchestrator, payload):
        payload["rateToBase"] = 0

        with pytest.raises(BadRequestError):
            await orchestrator.submit(payload)

    @pytest.mark.asyncio
    async def test_device_not_found(self, orchestrator, fake_bitrix, payload):
        fake_bitrix.responses["crm.item.list"] = {"items": []}

        with pytest.raises(NotFoundError):
            await orchestrator.submit(payload)

        assert fake_bitrix.methods == ["crm.item.list"]

    @pytest.mark.asyncio
    async def test_failed_row_read_proceeds_with_no_rows(self, orchestrator, fake_bitrix, payload):
        fake_bitrix.responses["crm.deal.productrows.get"] = RemoteCallError("crm.deal.productrows.get", "timeout")

        result = await orchestrator.submit(payload)

        rows = written_rows(fake_bitrix)
        assert rows["Диагностика"]["PRICE"] == 50
        assert rows["Диагностика"]["QUANTITY"] == 1
        assert result.total_sum == 1850

    @pytest.mark.asyncio
    async def test_failed_row_write_stops_before_summary(self, orchestrator, fake_bitrix, payload):
        fake_bitrix.responses["crm.deal.productrows.set"] = RemoteCallError("crm.deal.productrows.set", "denied")

        with pytest.raises(RemoteCallError):
            await orchestrator.submit(payload)

        assert "crm.item.update" not in fake_bitrix.methods
        # Writes made before the failure are not rolled back
        assert "crm.item.productrow.set" in fake_bitrix.methods

    @pytest.mark.asyncio
    async def test_deal_is_created_for_unlinked_device(self, orchestrator, fake_bitrix, payload):
        fake_bitrix.responses["crm.item.list"] = {"items": [dict(DEVICE_ITEM, ufCrm5DealId=None)]}
        fake_bitrix.responses["crm.deal.add"] = 950
        fake_bitrix.responses["crm.deal.productrows.get"] = []

        result = await orchestrator.submit(payload)

        assert result.deal_id == 950
        assert fake_bitrix.methods[:3] == ["crm.item.list", "crm.deal.add", "crm.item.update"]
        assert fake_bitrix.params_of("crm.deal.productrows.set")[0]["id"] == 950

    @pytest.mark.asyncio
    async def test_no_parts_leaves_device_rows_alone(self, orchestrator, fake_bitrix, payload):
        payload["parts"] = []

        result = await orchestrator.submit(payload)

        assert "crm.item.productrow.set" not in fake_bitrix.methods
        assert result.parts_sum == 0
        assert written_rows(fake_bitrix)["Ремонт оптики — Нивелир"]["PRICE"] == 1000

    @pytest.mark.asyncio
    async def test_unsupported_currency_is_converted(self, orchestrator, fake_bitrix, payload):
        payload["currency"] = "сом"
        payload["rateToBase"] = 5.5
        fake_bitrix.responses["crm.deal.productrows.get"] = []

        await orchestrator.submit(payload)

        assert fake_bitrix.params_of("crm.deal.update")[0]["fields"] == {"CURRENCY_ID": "KZT"}
        rows = written_rows(fake_bitrix)
        assert rows["Диагностика"]["PRICE"] == 275
        assert rows["Ремонт оптики — Нивелир"]["PRICE"] == 6325

    @pytest.mark.asyncio
    async def test_summary_fields_skipped_when_not_configured(self, fake_bitrix, settings, payload):
        settings.FIELD_DEFECTS = None
        settings.FIELD_VERIFICATION = None
        settings.FIELD_SUM_SERVICES = None
        fake_bitrix.responses.update({
            "crm.item.list": {"items": [DEVICE_ITEM]},
            "crm.deal.productrows.get": [],
            "crm.currency.list": PORTAL_CURRENCIES,
        })
        orchestrator = DiagnosticsOrchestrator.from_client(fake_bitrix, settings)

        await orchestrator.submit(payload)

        assert "crm.item.update" not in fake_bitrix.methods
