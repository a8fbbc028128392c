"""
Delivery Service HTTP Client.

Async interface to the delivery backend:
- Address zone validation
- Delivery cost calculation

Pure request/response: no retries, no caching. Failures are
raised as checkout errors so callers can decide how to degrade.
"""

import asyncio
from decimal import Decimal
from typing import Any

import aiohttp
from loguru import logger
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from app.core.config import settings
from app.modules.checkout.errors import NetworkError, ServerError, ZoneError
from app.modules.checkout.schemas import (
    Address,
    DeliveryCostResult,
    DeliveryValidationResult,
)

# Error codes the delivery service uses for addresses it cannot serve
OUT_OF_ZONE_CODES = frozenset({"OUTSIDE_DELIVERY_ZONE", "OUT_OF_DELIVERY_ZONE"})


class ValidateAddressResponse(BaseModel):
    """validate-address response body."""

    within_delivery_zone: bool = Field(
        validation_alias=AliasChoices("within_delivery_zone", "is_in_zone"),
    )
    distance_miles: float = 0.0
    message: str | None = None


class CalculateCostResponse(BaseModel):
    """calculate-delivery-cost response body."""

    delivery_cost: Decimal = Field(ge=0)
    is_free_delivery: bool = Field(
        validation_alias=AliasChoices("is_free_delivery", "is_free"),
    )
    distance_miles: float = 0.0
    within_delivery_zone: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("within_delivery_zone", "is_in_zone"),
    )
    message: str | None = Field(
        default=None,
        validation_alias=AliasChoices("message", "reason"),
    )


class DeliveryCostClient:
    """
    Async client for the delivery API.

    Usage:
        async with DeliveryCostClient() as client:
            result = await client.validate_address(address)
            if result.within_delivery_zone:
                cost = await client.calculate_delivery_cost(address, subtotal)
    """

    VALIDATE_ADDRESS = "/delivery/validate-address"
    CALCULATE_COST = "/delivery/calculate-cost"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: int | None = None,
    ) -> None:
        """
        Initialize delivery client.

        Args:
            base_url: Delivery API base URL (default from settings)
            timeout: Request timeout in seconds
        """
        self.base_url = (base_url or settings.delivery_api_url).rstrip("/")
        self.timeout = timeout or settings.delivery_api_timeout
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "DeliveryCostClient":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.disconnect()

    async def connect(self) -> None:
        """Create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            logger.info(f"Delivery client connected to {self.base_url}")

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Delivery client disconnected")

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST to the delivery API and return the unwrapped JSON body.

        Raises:
            NetworkError: Connection failure or timeout
            ZoneError: Service rejected the address as out of zone
            ServerError: Any other non-2xx or unreadable response
        """
        if self._session is None or self._session.closed:
            await self.connect()

        url = f"{self.base_url}{endpoint}"

        try:
            async with self._session.post(url, json=payload) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None

                if response.status >= 400:
                    self._raise_for_error(response.status, body)

        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            logger.error(f"Cannot reach delivery service at {url}: {e}")
            raise NetworkError() from e
        except aiohttp.ClientError as e:
            logger.error(f"Delivery service request failed: {e}")
            raise ServerError(str(e)) from e

        return self._unwrap(body)

    @staticmethod
    def _raise_for_error(status: int, body: Any) -> None:
        """Translate an error response into the checkout taxonomy."""
        code = body.get("error_code") if isinstance(body, dict) else None
        message = body.get("message") if isinstance(body, dict) else None

        if code in OUT_OF_ZONE_CODES:
            raise ZoneError(message or "")
        if status == 408:
            raise NetworkError("Request timeout")
        raise ServerError(message or f"HTTP Error: {status}", status=status)

    @staticmethod
    def _unwrap(body: Any) -> dict[str, Any]:
        """Strip the optional ``{success, data, message}`` envelope."""
        if not isinstance(body, dict):
            raise ServerError("Delivery service returned no data")

        if "success" in body and "data" in body:
            if not body["success"] or not isinstance(body["data"], dict):
                raise ServerError(body.get("message") or "Delivery service request failed")
            return body["data"]

        return body

    # ==================== Delivery API ====================

    async def validate_address(self, address: Address) -> DeliveryValidationResult:
        """
        Check whether an address is inside the delivery zone.

        Args:
            address: Address to validate

        Returns:
            Zone membership and distance; ``within_delivery_zone`` is
            False for addresses the service can resolve but not serve
        """
        body = await self._post(self.VALIDATE_ADDRESS, {"address": address.to_dict()})

        try:
            data = ValidateAddressResponse.model_validate(body)
        except ValidationError as e:
            raise ServerError(f"Invalid validate-address response: {e}") from e

        return DeliveryValidationResult(
            within_delivery_zone=data.within_delivery_zone,
            distance_miles=data.distance_miles,
            message=data.message,
        )

    async def calculate_delivery_cost(
        self,
        address: Address,
        order_total: Decimal,
    ) -> DeliveryCostResult:
        """
        Calculate delivery cost for an in-zone address.

        Args:
            address: Address already known to be in zone
            order_total: Cart subtotal the cost depends on

        Returns:
            Delivery cost as reported by the service
        """
        payload = {"address": address.to_dict(), "order_total": float(order_total)}
        body = await self._post(self.CALCULATE_COST, payload)

        try:
            data = CalculateCostResponse.model_validate(body)
        except ValidationError as e:
            raise ServerError(f"Invalid calculate-cost response: {e}") from e

        if data.within_delivery_zone is False:
            raise ZoneError(data.message or "")

        return DeliveryCostResult(
            delivery_cost=data.delivery_cost,
            is_free_delivery=data.is_free_delivery,
            distance_miles=data.distance_miles,
            message=data.message,
        )


# Singleton instance for dependency injection
_delivery_client: DeliveryCostClient | None = None


async def get_delivery_client() -> DeliveryCostClient:
    """Get or create delivery client singleton."""
    global _delivery_client
    if _delivery_client is None:
        _delivery_client = DeliveryCostClient()
        await _delivery_client.connect()
    return _delivery_client
