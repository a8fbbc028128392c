import asyncio

import pytest

from app.modules.checkout.schemas import Address, CustomerInfo
from fakes import FakeDeliveryClient, FakeHandoff


@pytest.fixture
def delivery_client():
    return FakeDeliveryClient()


@pytest.fixture
def handoff():
    return FakeHandoff()


@pytest.fixture
def customer():
    return CustomerInfo(
        first_name="Ana",
        last_name="Lopez",
        email="ana@example.com",
        phone="(213) 555-0100",
    )


@pytest.fixture
def la_address():
    return Address(
        street="123 Main St",
        city="Los Angeles",
        state="CA",
        zip_code="90001",
        country="US",
    )


@pytest.fixture
def wait_for():
    async def _wait_for(predicate, timeout=1.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _wait_for
