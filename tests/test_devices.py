import pytest

from diagnostics_integrations.bitrix.fields import pick
from diagnostics_integrations.bitrix.services.deals import DealsService
from diagnostics_integrations.bitrix.services.devices import DevicesService
from diagnostics_integrations.core.resolver import DeviceResolver
from diagnostics_integrations.exceptions import NotFoundError
from diagnostics_integrations.models import Device, PartEntry


class TestPick:
    """Unit tests for pick"""

    def test_top_level_wins(self):
        record = {"ufCrm5Serial": "A1", "ufCrm": {"ufCrm5Serial": "B2"}}
        assert pick(record, "ufCrm5Serial") == "A1"

    def test_nested_maps_in_order(self):
        assert pick({"ufCrm": {"x": 1}, "fields": {"x": 2}}, "x") == 1
        assert pick({"ufCrm": {"x": None}, "fields": {"x": 2}}, "x") == 2

    def test_absent(self):
        assert pick({"a": 1}, "x") is None
        assert pick(None, "x") is None
        assert pick({"x": 1}, None) is None

    def test_falsy_values_are_returned(self):
        assert pick({"x": 0}, "x") == 0
        assert pick({"x": ""}, "x") == ""


class TestDevicesService:
    """Unit tests for DevicesService"""

    @pytest.fixture
    def devices(self, fake_bitrix, settings):
        return DevicesService(fake_bitrix, settings)

    @pytest.mark.asyncio
    async def test_blank_serial_returns_nothing(self, devices, fake_bitrix):
        assert await devices.find_by_serial("   ") == []
        assert fake_bitrix.calls == []

    @pytest.mark.asyncio
    async def test_find_by_serial(self, devices, fake_bitrix):
        fake_bitrix.responses["crm.item.list"] = {"items": [
            {"id": 42, "title": "Заявка", "stageId": "DT1032_11:NEW",
             "ufCrm5Serial": "SN-123", "ufCrm5Name": "Нивелир", "ufCrm5DealId": "900"},
            {"id": 17, "title": "Тахеометр", "ufCrm": {"ufCrm5Serial": "SN-1234"}},
            {"id": 5},
        ]}

        found = await devices.find_by_serial(" SN-123 ")

        assert [d.id for d in found] == [42, 17, 5]
        assert found[0].name == "Нивелир"
        assert found[0].deal_id == 900
        assert found[0].serial == "SN-123"
        assert found[1].name == "Тахеометр"
        assert found[1].serial == "SN-1234"
        assert found[1].deal_id is None
        assert found[2].name == "(без названия)"

        [params] = fake_bitrix.params_of("crm.item.list")
        assert params["entityTypeId"] == 1032
        assert params["filter"] == {"ufCrm5Serial": "%SN-123%", "categoryId": 11}
        assert params["order"] == {"id": "desc"}
        assert "ufCrm5DealId" in params["select"]

    def test_deal_link_parsing(self, devices):
        assert devices.to_device({"id": 1, "ufCrm5DealId": "D_900"}).deal_id is None
        assert devices.to_device({"id": 2, "ufCrm5DealId": " 900 "}).deal_id == 900
        assert devices.to_device({"id": 3, "ufCrm5DealId": 900.0}).deal_id == 900

    def test_lookup_shape(self, devices):
        device = devices.to_device({"id": 42, "ufCrm5Name": "Нивелир", "ufCrm5Serial": "SN-1", "ufCrm5DealId": 0})

        assert device.to_lookup() == {
            "id": 42, "name": "Нивелир", "serial": "SN-1", "stage": None, "dealId": None,
        }

    @pytest.mark.asyncio
    async def test_set_product_rows_drops_non_positive_quantities(self, devices, fake_bitrix):
        parts = [
            PartEntry(id=5, price=300, qty=2),
            PartEntry(id=6, price=100, qty=-1),
        ]

        count = await devices.set_product_rows(42, parts)

        assert count == 1
        assert fake_bitrix.params_of("crm.item.productrow.set") == [{
            "ownerType": "Tb1",
            "ownerId": 42,
            "productRows": [{"productId": 5, "price": 300, "quantity": 2}],
        }]

    @pytest.mark.asyncio
    async def test_move_to_stage(self, devices, fake_bitrix):
        await devices.move_to_stage(42, "DT1032_11:SUCCESS")

        assert fake_bitrix.params_of("crm.item.update") == [
            {"entityTypeId": 1032, "id": 42, "fields": {"stageId": "DT1032_11:SUCCESS"}}
        ]


class TestDeviceResolver:
    """Unit tests for DeviceResolver"""

    @pytest.fixture
    def resolver(self, fake_bitrix, settings):
        return DeviceResolver(DevicesService(fake_bitrix, settings), DealsService(fake_bitrix), settings)

    @pytest.mark.asyncio
    async def test_resolve_takes_most_recent(self, resolver, fake_bitrix):
        fake_bitrix.responses["crm.item.list"] = {"items": [{"id": 42}, {"id": 17}]}

        device = await resolver.resolve("SN")

        assert device.id == 42

    @pytest.mark.asyncio
    async def test_resolve_not_found(self, resolver, fake_bitrix):
        fake_bitrix.responses["crm.item.list"] = {"items": []}

        with pytest.raises(NotFoundError):
            await resolver.resolve("SN-404")

    @pytest.mark.asyncio
    async def test_existing_deal_is_reused(self, resolver, fake_bitrix):
        device = Device(id=42, name="Нивелир", deal_id=900)

        assert await resolver.ensure_deal(device) == 900
        assert fake_bitrix.calls == []

    @pytest.mark.asyncio
    async def test_deal_is_created_and_linked(self, resolver, fake_bitrix):
        fake_bitrix.responses["crm.deal.add"] = 901
        device = Device(id=42, name="Нивелир")

        deal_id = await resolver.ensure_deal(device)

        assert deal_id == 901
        assert device.deal_id == 901
        assert fake_bitrix.methods == ["crm.deal.add", "crm.item.update"]
        assert fake_bitrix.params_of("crm.deal.add") == [
            {"fields": {"TITLE": "Нивелир", "CATEGORY_ID": 11, "STAGE_ID": "C11:NEW"}}
        ]
        assert fake_bitrix.params_of("crm.item.update")[0]["fields"] == {"ufCrm5DealId": 901}

    @pytest.mark.asyncio
    async def test_unnamed_device_gets_generated_title(self, resolver, fake_bitrix):
        fake_bitrix.responses["crm.deal.add"] = "902"
        device = Device(id=7, name="(без названия)")

        await resolver.ensure_deal(device)

        assert fake_bitrix.params_of("crm.deal.add")[0]["fields"]["TITLE"] == "Сделка по прибору #7"
        assert resolver.display_name(device) == "Прибор #7"

    @pytest.mark.asyncio
    async def test_deal_not_linked_without_field(self, fake_bitrix, settings):
        settings.FIELD_DEAL_ID = None
        resolver = DeviceResolver(DevicesService(fake_bitrix, settings), DealsService(fake_bitrix), settings)
        fake_bitrix.responses["crm.deal.add"] = 903

        assert await resolver.ensure_deal(Device(id=42, name="Нивелир")) == 903
        assert fake_bitrix.methods == ["crm.deal.add"]
