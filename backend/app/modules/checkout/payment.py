"""
Payment Service - Stripe payment intents for handed-off orders.

The payment step reads the pending order written by checkout,
checks that the amount is consistent with its parts and only
then asks Stripe for a payment intent.
"""

from decimal import Decimal
from typing import Any

import stripe
from loguru import logger

from app.core.config import settings
from app.modules.checkout.handoff import OrderHandoff
from app.modules.checkout.pricing import format_currency


class PendingOrderError(Exception):
    """No usable pending order for a checkout."""


def amount_matches(payload: dict[str, Any]) -> bool:
    """``amount`` must equal subtotal + delivery cost + tax."""
    try:
        amount = Decimal(str(payload["amount"]))
        expected = (
            Decimal(str(payload["subtotal"]))
            + Decimal(str(payload["delivery_cost"]))
            + Decimal(str(payload["tax"]))
        )
    except (KeyError, ArithmeticError, ValueError):
        return False
    return amount == expected and payload.get("delivery_zone_validated") is True


class PaymentService:
    """
    Stripe payment service.

    Usage:
        payment = PaymentService(handoff)
        intent = await payment.create_payment_intent(checkout_id)
    """

    def __init__(self, handoff: OrderHandoff) -> None:
        """Initialize Stripe with API key."""
        stripe.api_key = settings.stripe_secret_key
        self._handoff = handoff

    async def load_pending_order(self, checkout_id: str) -> dict[str, Any]:
        """
        Read and check the order handed off by checkout.

        Raises:
            PendingOrderError: If the order is missing or inconsistent
        """
        payload = await self._handoff.read(checkout_id)

        if payload is None:
            raise PendingOrderError("No pending order for this checkout")

        if not amount_matches(payload):
            logger.warning(
                f"Rejected pending order for checkout {checkout_id}: amount "
                f"{payload.get('amount')!r} does not match its breakdown"
            )
            raise PendingOrderError("Pending order amount does not match its breakdown")

        return payload

    async def create_payment_intent(
        self,
        checkout_id: str,
        currency: str | None = None,
    ) -> dict[str, Any]:
        """
        Create Stripe payment intent for a pending order.

        Args:
            checkout_id: Checkout whose order is being paid
            currency: Currency code (default from settings)

        Returns:
            Payment intent details including client_secret
        """
        order = await self.load_pending_order(checkout_id)

        try:
            # Stripe expects amount in cents
            amount_cents = int(Decimal(str(order["amount"])) * 100)

            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=(currency or settings.shop_currency).lower(),
                receipt_email=order.get("customer_email") or None,
                metadata={
                    "checkout_id": checkout_id,
                    "delivery_cost": str(order["delivery_cost"]),
                    "distance_miles": str(order["distance_miles"]),
                },
                automatic_payment_methods={"enabled": True},
            )

            logger.info(
                f"Payment intent {intent.id} created for checkout {checkout_id} "
                f"(amount {format_currency(order['amount'])})"
            )

            return {
                "id": intent.id,
                "client_secret": intent.client_secret,
                "status": intent.status,
                "amount": order["amount"],
            }

        except stripe.StripeError as e:
            logger.error(f"Stripe error creating payment intent: {e}")
            raise
