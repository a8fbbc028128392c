"""
Checkout Sessions - live orchestrators by checkout id.
"""

import asyncio
import time

from loguru import logger

from app.core.config import settings
from app.modules.checkout.delivery import get_delivery_client
from app.modules.checkout.handoff import get_order_handoff
from app.modules.checkout.orchestrator import (
    CheckoutOrchestrator,
    CheckoutSnapshot,
    CheckoutState,
    DeliveryClient,
    HandoffChannel,
)
from app.modules.checkout.schemas import Address, CartProvider, CustomerInfo


class CheckoutSessions:
    """
    In-process registry of open checkouts.

    Orchestrators hold timers and in-flight requests, so they
    must be disposed when a customer leaves. A checkout is closed
    as soon as its order is handed off; abandoned ones are closed
    by the sweeper once idle for ``idle_timeout`` seconds.

    Usage:
        sessions = CheckoutSessions(client, handoff)
        await sessions.start()
        checkout = sessions.open(cart)
        ...
        await sessions.stop()
    """

    def __init__(
        self,
        client: DeliveryClient,
        handoff: HandoffChannel,
        debounce: float | None = None,
        idle_timeout: float | None = None,
        sweep_interval: float | None = None,
    ) -> None:
        """
        Initialize sessions.

        Args:
            client: Delivery client shared by all checkouts
            handoff: Handoff channel shared by all checkouts
            debounce: Live estimate debounce window in seconds
            idle_timeout: Seconds without a state change before a checkout is closed
            sweep_interval: Seconds between idle sweeps
        """
        self._client = client
        self._handoff = handoff
        self._debounce = debounce
        self.idle_timeout = (
            settings.checkout_idle_timeout_seconds if idle_timeout is None else idle_timeout
        )
        self.sweep_interval = (
            settings.checkout_sweep_interval_seconds if sweep_interval is None else sweep_interval
        )

        self._sessions: dict[str, CheckoutOrchestrator] = {}
        self._running = False
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, checkout_id: str) -> bool:
        return checkout_id in self._sessions

    def open(
        self,
        cart: CartProvider,
        customer: CustomerInfo | None = None,
        address: Address | None = None,
    ) -> CheckoutOrchestrator:
        """Start a checkout for a cart."""
        checkout = CheckoutOrchestrator(
            cart,
            self._client,
            self._handoff,
            customer=customer,
            address=address,
            debounce=self._debounce,
        )
        checkout.add_listener(self._close_when_complete)
        self._sessions[checkout.checkout_id] = checkout
        logger.info(
            f"Checkout {checkout.checkout_id} opened "
            f"({len(cart.items)} items, subtotal {cart.subtotal()})"
        )
        return checkout

    def get(self, checkout_id: str) -> CheckoutOrchestrator | None:
        """Get an open checkout."""
        return self._sessions.get(checkout_id)

    def close(self, checkout_id: str) -> bool:
        """
        Dispose and forget a checkout.

        Returns:
            True if the checkout was open
        """
        checkout = self._sessions.pop(checkout_id, None)
        if checkout is None:
            return False
        checkout.dispose()
        logger.info(f"Checkout {checkout_id} closed")
        return True

    def close_all(self) -> None:
        """Dispose every open checkout."""
        for checkout_id in list(self._sessions):
            self.close(checkout_id)

    def _close_when_complete(self, snapshot: CheckoutSnapshot) -> None:
        # The order now lives in the handoff store; nothing left to drive
        if snapshot.state is CheckoutState.HANDOFF_COMPLETE:
            self.close(snapshot.checkout_id)

    # ==================== Idle sweep ====================

    def sweep(self) -> int:
        """
        Close checkouts idle for longer than ``idle_timeout``.

        Returns:
            Number of checkouts closed
        """
        now = time.monotonic()
        idle = [
            checkout_id
            for checkout_id, checkout in self._sessions.items()
            if now - checkout.last_activity >= self.idle_timeout
        ]
        for checkout_id in idle:
            self.close(checkout_id)

        if idle:
            logger.info(f"Closed {len(idle)} idle checkouts, {len(self._sessions)} open")
        return len(idle)

    async def start(self) -> None:
        """Start the idle sweeper."""
        if self._running:
            return
        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Checkout session sweeper started")

    async def stop(self) -> None:
        """Stop the idle sweeper."""
        self._running = False

        if self._sweep_task:
            self._sweep_task.cancel()
            self._sweep_task = None

        logger.info("Checkout session sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Checkout session sweep error: {e}")


# Singleton instance
_checkout_sessions: CheckoutSessions | None = None


async def get_checkout_sessions() -> CheckoutSessions:
    """Get or create checkout sessions singleton."""
    global _checkout_sessions
    if _checkout_sessions is None:
        _checkout_sessions = CheckoutSessions(
            client=await get_delivery_client(),
            handoff=await get_order_handoff(),
        )
    return _checkout_sessions
