"""
Live Delivery Estimator.

Turns a stream of address edits into debounced delivery cost
estimates. Requests are numbered; only the latest issued one
may publish a result, so a slow stale response can never
overwrite a newer one.
"""

import asyncio
from collections.abc import Callable
from decimal import Decimal
from typing import Protocol

from loguru import logger

from app.core.config import settings
from app.modules.checkout.errors import ErrorKind, classify_error, user_message
from app.modules.checkout.pricing import fallback_delivery_cost, reconcile_delivery_cost
from app.modules.checkout.schemas import Address, DeliveryCostResult, DeliveryEstimate


class DeliveryCostCalculator(Protocol):
    """The part of the delivery client the estimator uses."""

    async def calculate_delivery_cost(
        self,
        address: Address,
        order_total: Decimal,
    ) -> DeliveryCostResult: ...


class CancellableTimer:
    """
    One-shot timer on the running event loop.

    ``start()`` re-arms the timer, dropping any pending fire.
    """

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()


class DebouncedEstimator:
    """
    Debounced, race-safe live delivery estimates.

    Usage:
        estimator = DebouncedEstimator(client, cart.subtotal, on_change)
        estimator.submit(address)   # on every field edit
        ...
        estimator.dispose()         # when the checkout goes away

    ``on_change`` receives the new estimate (or None when it is
    cleared). It is only ever called from the event loop.
    """

    def __init__(
        self,
        client: DeliveryCostCalculator,
        subtotal: Callable[[], Decimal],
        on_change: Callable[[DeliveryEstimate | None], None],
        delay: float | None = None,
    ) -> None:
        """
        Initialize estimator.

        Args:
            client: Delivery cost calculator
            subtotal: Returns the cart subtotal at request time
            on_change: Receives every published estimate
            delay: Debounce window in seconds (default from settings)
        """
        self._client = client
        self._subtotal = subtotal
        self._on_change = on_change

        self._timer = CancellableTimer(
            settings.estimate_debounce_seconds if delay is None else delay,
            self._fire,
        )
        self._address: Address | None = None
        self._seq = 0
        self._tasks: set[asyncio.Task] = set()
        self._current: DeliveryEstimate | None = None
        self._disposed = False

    @property
    def current(self) -> DeliveryEstimate | None:
        """Latest published estimate."""
        return self._current

    @property
    def pending(self) -> bool:
        """True while a debounce window is open."""
        return self._timer.pending

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, address: Address) -> None:
        """Record an address edit and restart the debounce window."""
        if self._disposed:
            return

        if not address.zip_code.strip():
            self.discard()
            return

        self._address = address
        self._timer.start()

    def discard(self) -> None:
        """Drop the current estimate and anything still on its way."""
        self._timer.cancel()
        self._address = None
        self._seq += 1
        self._publish(None)

    def dispose(self) -> None:
        """Stop the timer and ignore every outstanding response."""
        if self._disposed:
            return
        self._disposed = True
        self._timer.cancel()
        self._seq += 1
        for task in self._tasks:
            task.cancel()
        logger.debug("Delivery estimator disposed")

    def _fire(self) -> None:
        if self._disposed or self._address is None:
            return

        address = self._address.with_defaults(
            settings.service_city,
            settings.service_state,
            settings.service_country,
        )
        self._seq += 1
        seq = self._seq

        previous = self._current
        self._publish(
            DeliveryEstimate(
                cost=previous.cost if previous else Decimal("0"),
                is_free=previous.is_free if previous else False,
                distance_miles=previous.distance_miles if previous else 0.0,
                loading=True,
            )
        )

        task = asyncio.create_task(self._request(seq, address, self._subtotal()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _request(self, seq: int, address: Address, subtotal: Decimal) -> None:
        try:
            result = await self._client.calculate_delivery_cost(address, subtotal)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            estimate = self._estimate_for_error(e, subtotal)
        else:
            result = reconcile_delivery_cost(result, subtotal)
            estimate = DeliveryEstimate(
                cost=result.delivery_cost,
                is_free=result.is_free_delivery,
                distance_miles=result.distance_miles,
                message=result.message,
            )

        if self._disposed or seq != self._seq:
            logger.debug(f"Dropping stale delivery estimate #{seq} (latest #{self._seq})")
            return

        self._publish(estimate)

    @staticmethod
    def _estimate_for_error(error: Exception, subtotal: Decimal) -> DeliveryEstimate:
        kind = classify_error(error)

        if kind is ErrorKind.OUT_OF_ZONE:
            return DeliveryEstimate(
                cost=Decimal("0"),
                is_free=False,
                is_estimate=False,
                message=user_message(kind),
            )

        logger.warning(f"Delivery estimate degraded to fallback: {error!r}")

        fallback = fallback_delivery_cost(subtotal)
        return DeliveryEstimate(
            cost=fallback.delivery_cost,
            is_free=fallback.is_free_delivery,
            message=fallback.message,
        )

    def _publish(self, estimate: DeliveryEstimate | None) -> None:
        if self._disposed or estimate == self._current:
            return
        self._current = estimate
        self._on_change(estimate)
