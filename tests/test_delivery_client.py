from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from app.modules.checkout.delivery import DeliveryCostClient
from app.modules.checkout.errors import NetworkError, ServerError, ZoneError
from app.modules.checkout.schemas import Address


class FakeDeliveryService:
    """Delivery API stand-in with canned responses per endpoint."""

    def __init__(self):
        self.responses = {
            "validate-address": (200, {"within_delivery_zone": True, "distance_miles": 5.0}),
            "calculate-cost": (
                200,
                {"delivery_cost": 50, "is_free_delivery": False, "distance_miles": 5.0},
            ),
        }
        self.requests = []

        self.app = web.Application()
        self.app.router.add_post("/api/delivery/{operation}", self.handle)

    async def handle(self, request):
        operation = request.match_info["operation"]
        self.requests.append((operation, await request.json()))

        status, body = self.responses[operation]
        if isinstance(body, str):
            return web.Response(status=status, text=body)
        return web.json_response(body, status=status)


@pytest.fixture
async def service():
    fake = FakeDeliveryService()
    server = TestServer(fake.app)
    await server.start_server()
    fake.url = str(server.make_url("/api/"))
    yield fake
    await server.close()


@pytest.fixture
async def client(service):
    async with DeliveryCostClient(base_url=service.url, timeout=5) as delivery:
        yield delivery


class TestValidateAddress:
    async def test_in_zone(self, client, service, la_address):
        result = await client.validate_address(la_address)

        assert result.within_delivery_zone
        assert result.distance_miles == 5.0
        operation, body = service.requests[0]
        assert operation == "validate-address"
        assert body == {"address": la_address.to_dict()}

    async def test_out_of_zone_payload(self, client, service, la_address):
        service.responses["validate-address"] = (
            200,
            {
                "success": True,
                "data": {"is_in_zone": False, "distance_miles": 41.2, "message": "Too far"},
            },
        )

        result = await client.validate_address(la_address)

        assert not result.within_delivery_zone
        assert result.distance_miles == 41.2
        assert result.message == "Too far"

    async def test_out_of_zone_error_code(self, client, service, la_address):
        service.responses["validate-address"] = (
            400,
            {"error_code": "OUTSIDE_DELIVERY_ZONE", "message": "Not in service area"},
        )

        with pytest.raises(ZoneError) as exc_info:
            await client.validate_address(la_address)
        assert exc_info.value.message == "Not in service area"

    async def test_server_error(self, client, service, la_address):
        service.responses["validate-address"] = (503, {"message": "maintenance"})

        with pytest.raises(ServerError) as exc_info:
            await client.validate_address(la_address)
        assert exc_info.value.status == 503

    async def test_request_timeout_status(self, client, service, la_address):
        service.responses["validate-address"] = (408, "timeout")

        with pytest.raises(NetworkError):
            await client.validate_address(la_address)

    async def test_failed_envelope(self, client, service, la_address):
        service.responses["validate-address"] = (
            200,
            {"success": False, "data": None, "message": "Geocoder unavailable"},
        )

        with pytest.raises(ServerError) as exc_info:
            await client.validate_address(la_address)
        assert exc_info.value.message == "Geocoder unavailable"

    @pytest.mark.parametrize("body", ["not json", {"distance_miles": 3.0}, [1, 2, 3]])
    async def test_malformed_response(self, client, service, la_address, body):
        service.responses["validate-address"] = (200, body)

        with pytest.raises(ServerError):
            await client.validate_address(la_address)


class TestCalculateDeliveryCost:
    async def test_cost(self, client, service, la_address):
        result = await client.calculate_delivery_cost(la_address, Decimal("500"))

        assert result.delivery_cost == Decimal("50")
        assert not result.is_free_delivery
        assert result.distance_miles == 5.0
        operation, body = service.requests[0]
        assert operation == "calculate-cost"
        assert body["order_total"] == 500.0

    async def test_aliases_in_envelope(self, client, service, la_address):
        service.responses["calculate-cost"] = (
            200,
            {
                "success": True,
                "data": {"delivery_cost": 0, "is_free": True, "distance_miles": 3.5},
            },
        )

        result = await client.calculate_delivery_cost(la_address, Decimal("1200"))

        assert result.delivery_cost == Decimal("0")
        assert result.is_free_delivery

    async def test_out_of_zone_payload_raises(self, client, service, la_address):
        service.responses["calculate-cost"] = (
            200,
            {
                "delivery_cost": 0,
                "is_free_delivery": False,
                "within_delivery_zone": False,
                "reason": "Outside service area",
            },
        )

        with pytest.raises(ZoneError) as exc_info:
            await client.calculate_delivery_cost(la_address, Decimal("500"))
        assert exc_info.value.message == "Outside service area"

    async def test_negative_cost_rejected(self, client, service, la_address):
        service.responses["calculate-cost"] = (
            200,
            {"delivery_cost": -5, "is_free_delivery": False},
        )

        with pytest.raises(ServerError):
            await client.calculate_delivery_cost(la_address, Decimal("500"))


class TestConnection:
    async def test_unreachable_service(self, la_address):
        async with DeliveryCostClient(base_url="http://127.0.0.1:1/api", timeout=5) as client:
            with pytest.raises(NetworkError):
                await client.validate_address(la_address)

    async def test_reconnects_after_disconnect(self, service):
        client = DeliveryCostClient(base_url=service.url, timeout=5)

        await client.disconnect()
        result = await client.validate_address(Address(street="1 Main St", zip_code="90001"))
        await client.disconnect()

        assert result.within_delivery_zone

    def test_trailing_slash_stripped(self):
        assert DeliveryCostClient(base_url="http://delivery/api/").base_url == "http://delivery/api"
