"""
Order Handoff - priced orders passed to the payment step via Redis.
"""

import json
from typing import Any

import redis.asyncio as redis
from loguru import logger

from app.core.config import settings
from app.modules.checkout.errors import HandoffError
from app.modules.checkout.pricing import format_currency
from app.modules.checkout.schemas import OrderDraft


class OrderHandoff:
    """
    Short-lived keyed store between checkout and payment.

    Each priced order is written once under ``pendingOrder:<checkout id>``
    with a TTL, then announced on the ``pendingOrder:ready`` channel.

    Usage:
        handoff = OrderHandoff()
        await handoff.handoff(checkout_id, order)
        payload = await handoff.read(checkout_id)
    """

    KEY_PREFIX = "pendingOrder"
    READY_CHANNEL = "pendingOrder:ready"

    def __init__(
        self,
        client: redis.Redis | None = None,
        ttl: int | None = None,
    ) -> None:
        """
        Initialize handoff store.

        Args:
            client: Existing Redis client (connects lazily otherwise)
            ttl: Seconds a pending order stays readable
        """
        self._redis: redis.Redis | None = client
        self.ttl = ttl or settings.handoff_ttl_seconds

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.from_url(
                str(settings.redis_url),
                encoding="utf-8",
                decode_responses=True,
            )

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _key(self, checkout_id: str) -> str:
        """Generate Redis key for a pending order."""
        return f"{self.KEY_PREFIX}:{checkout_id}"

    async def handoff(self, checkout_id: str, order: OrderDraft) -> dict[str, Any]:
        """
        Write the order and signal the payment step.

        Args:
            checkout_id: Checkout the order belongs to
            order: Priced order draft

        Returns:
            The payload that was written

        Raises:
            HandoffError: If the order could not be serialized or stored
        """
        if self._redis is None:
            await self.connect()

        try:
            payload = order.to_payload()
            data = json.dumps(payload)
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot serialize order for checkout {checkout_id}: {e}")
            raise HandoffError() from e

        try:
            await self._redis.setex(self._key(checkout_id), self.ttl, data)
            await self._redis.publish(self.READY_CHANNEL, checkout_id)
        except redis.RedisError as e:
            logger.error(f"Failed to hand off order for checkout {checkout_id}: {e}")
            raise HandoffError() from e

        logger.info(
            f"Order for checkout {checkout_id} handed off to payment "
            f"(amount {format_currency(payload['amount'])})"
        )
        return payload

    async def read(self, checkout_id: str) -> dict[str, Any] | None:
        """
        Get the pending order for a checkout.

        Returns:
            Order payload, or None if missing, expired or unreadable
        """
        if self._redis is None:
            await self.connect()

        data = await self._redis.get(self._key(checkout_id))
        if not data:
            return None

        try:
            return json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Invalid pending order data for checkout {checkout_id}")
            return None

    async def clear(self, checkout_id: str) -> None:
        """Remove the pending order once payment has picked it up."""
        if self._redis is None:
            await self.connect()
        await self._redis.delete(self._key(checkout_id))


# Singleton instance
_order_handoff: OrderHandoff | None = None


async def get_order_handoff() -> OrderHandoff:
    """Get or create order handoff singleton."""
    global _order_handoff
    if _order_handoff is None:
        _order_handoff = OrderHandoff()
        await _order_handoff.connect()
    return _order_handoff
