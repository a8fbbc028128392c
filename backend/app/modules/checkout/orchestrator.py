"""
Checkout Orchestrator.

State machine behind "continue to payment":

    IDLE -> EDITING_ADDRESS -> VALIDATING -> VALIDATING_COST
         -> READY_FOR_HANDOFF | COST_DEGRADED -> SUBMITTING
         -> HANDOFF_COMPLETE

with VALIDATION_FAILED and SUBMISSION_FAILED falling back to
EDITING_ADDRESS. Address edits feed the live estimator; only
the explicit continue command produces prices used for the
real order.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

from loguru import logger

from app.core.config import settings
from app.modules.checkout.errors import (
    ErrorKind,
    FormValidationError,
    ZoneError,
    classify_error,
    is_retryable,
    user_message,
)
from app.modules.checkout.estimator import DebouncedEstimator
from app.modules.checkout.form import format_phone_number, validate_form
from app.modules.checkout.pricing import (
    fallback_delivery_cost,
    price,
    reconcile_delivery_cost,
)
from app.modules.checkout.schemas import (
    Address,
    CartProvider,
    CustomerInfo,
    DeliveryCostResult,
    DeliveryEstimate,
    DeliveryValidationResult,
    OrderDraft,
    PricingBreakdown,
)


class CheckoutState(str, Enum):
    """Checkout processing state."""

    IDLE = "idle"
    EDITING_ADDRESS = "editing_address"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    VALIDATING_COST = "validating_cost"
    COST_DEGRADED = "cost_degraded"
    READY_FOR_HANDOFF = "ready_for_handoff"
    SUBMITTING = "submitting"
    SUBMISSION_FAILED = "submission_failed"
    HANDOFF_COMPLETE = "handoff_complete"


class CheckoutBusyError(Exception):
    """An edit arrived while continue was validating or submitting."""

    def __init__(self, checkout_id: str, state: CheckoutState) -> None:
        self.checkout_id = checkout_id
        self.state = state
        super().__init__(
            f"Checkout {checkout_id} is {state.value}; "
            "edits are accepted again once it finishes"
        )


_ADDRESS_FIELDS = frozenset(f.name for f in fields(Address))
_CUSTOMER_FIELDS = frozenset(f.name for f in fields(CustomerInfo))


class DeliveryClient(Protocol):
    """Delivery operations the orchestrator drives."""

    async def validate_address(self, address: Address) -> DeliveryValidationResult: ...

    async def calculate_delivery_cost(
        self,
        address: Address,
        order_total: Decimal,
    ) -> DeliveryCostResult: ...


class HandoffChannel(Protocol):
    """Where priced orders go."""

    async def handoff(self, checkout_id: str, order: OrderDraft) -> Any: ...


@dataclass(frozen=True)
class CheckoutSnapshot:
    """Everything a client can observe about one checkout."""

    checkout_id: str
    state: CheckoutState
    address: Address
    customer: CustomerInfo
    pricing: PricingBreakdown
    estimate: DeliveryEstimate | None = None
    validation: DeliveryValidationResult | None = None
    delivery: DeliveryCostResult | None = None
    order: OrderDraft | None = None
    form_errors: dict[str, str] = field(default_factory=dict)
    error: ErrorKind | None = None
    message: str | None = None
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation."""
        estimate = None
        if self.estimate:
            estimate = {
                "cost": float(self.estimate.cost),
                "is_free": self.estimate.is_free,
                "distance_miles": self.estimate.distance_miles,
                "is_estimate": self.estimate.is_estimate,
                "loading": self.estimate.loading,
                "message": self.estimate.message,
            }

        validation = None
        if self.validation:
            validation = {
                "within_delivery_zone": self.validation.within_delivery_zone,
                "distance_miles": self.validation.distance_miles,
            }

        delivery = None
        if self.delivery:
            delivery = {
                "delivery_cost": float(self.delivery.delivery_cost),
                "is_free_delivery": self.delivery.is_free_delivery,
                "distance_miles": self.delivery.distance_miles,
            }

        return {
            "checkout_id": self.checkout_id,
            "state": self.state.value,
            "address": self.address.to_dict(),
            "customer": {
                "first_name": self.customer.first_name,
                "last_name": self.customer.last_name,
                "email": self.customer.email,
                "phone": self.customer.phone,
                "apartment": self.customer.apartment,
            },
            "pricing": self.pricing.to_dict(),
            "estimate": estimate,
            "validation": validation,
            "delivery": delivery,
            "order": self.order.to_payload() if self.order else None,
            "form_errors": dict(self.form_errors),
            "error": self.error.value if self.error else None,
            "message": self.message,
            "retryable": self.retryable,
        }


class CheckoutOrchestrator:
    """
    Single owner of a checkout's state.

    Commands:
        edit_address(**fields)      - customer typed into an address field
        edit_customer(**fields)     - customer typed into a contact field
        await continue_to_payment() - validate, price and hand off
        dispose()                   - customer left the checkout

    Every state change is published to listeners as a new
    immutable CheckoutSnapshot.

    Usage:
        checkout = CheckoutOrchestrator(cart, delivery_client, handoff)
        checkout.add_listener(lambda snap: print(snap.state))
        checkout.edit_address(zip_code="90001")
        snapshot = await checkout.continue_to_payment()
    """

    def __init__(
        self,
        cart: CartProvider,
        client: DeliveryClient,
        handoff: HandoffChannel,
        checkout_id: str | None = None,
        customer: CustomerInfo | None = None,
        address: Address | None = None,
        debounce: float | None = None,
    ) -> None:
        """
        Initialize checkout.

        Args:
            cart: Cart being checked out
            client: Delivery service client
            handoff: Channel the priced order is written to
            checkout_id: Identifier (generated if omitted)
            customer: Prefilled contact details
            address: Prefilled address
            debounce: Live estimate debounce window in seconds
        """
        self.checkout_id = checkout_id or uuid4().hex
        self._cart = cart
        self._client = client
        self._handoff = handoff

        self._estimator = DebouncedEstimator(
            client,
            cart.subtotal,
            self._on_estimate,
            delay=debounce,
        )
        self._listeners: list[Callable[[CheckoutSnapshot], None]] = []
        self._busy = False
        self._disposed = False
        self.last_activity = time.monotonic()

        # Kept across a failed handoff so continue can be re-issued
        self._draft: OrderDraft | None = None
        self._draft_key: tuple | None = None

        self._snapshot = CheckoutSnapshot(
            checkout_id=self.checkout_id,
            state=CheckoutState.IDLE,
            address=address or Address(),
            customer=customer or CustomerInfo(),
            pricing=price(cart.subtotal(), Decimal("0")),
        )

    # ==================== Observation ====================

    @property
    def snapshot(self) -> CheckoutSnapshot:
        return self._snapshot

    @property
    def state(self) -> CheckoutState:
        return self._snapshot.state

    @property
    def disposed(self) -> bool:
        return self._disposed

    def add_listener(self, listener: Callable[[CheckoutSnapshot], None]) -> None:
        """Register a callback for state changes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[CheckoutSnapshot], None]) -> None:
        """Unregister a state change callback."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _commit(self, **changes: Any) -> None:
        """Replace the snapshot and notify listeners. No-op once disposed."""
        if self._disposed:
            return

        self._snapshot = replace(self._snapshot, **changes)
        self.last_activity = time.monotonic()

        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception as e:
                logger.error(f"Checkout {self.checkout_id} listener failed: {e}")

    # ==================== Editing ====================

    def edit_address(self, **changes: str) -> CheckoutSnapshot:
        """
        Apply address field edits and schedule a live estimate.

        Raises:
            ValueError: If a field name is not an address field
            CheckoutBusyError: While continue is running
        """
        unknown = set(changes) - _ADDRESS_FIELDS
        if unknown:
            raise ValueError(f"Unknown address fields: {', '.join(sorted(unknown))}")

        if not self._accepts_edits():
            return self._snapshot

        address = replace(self._snapshot.address, **changes)
        if address.zip_code.strip():
            self._apply_edit(changes, address=address)
        else:
            # Nothing to estimate for; drop whatever estimate is showing
            self._apply_edit(changes, address=address, estimate=None)
        self._estimator.submit(address)
        return self._snapshot

    def edit_customer(self, **changes: str) -> CheckoutSnapshot:
        """
        Apply contact field edits. Phone input is formatted as typed.

        Raises:
            ValueError: If a field name is not a customer field
            CheckoutBusyError: While continue is running
        """
        unknown = set(changes) - _CUSTOMER_FIELDS
        if unknown:
            raise ValueError(f"Unknown customer fields: {', '.join(sorted(unknown))}")

        if not self._accepts_edits():
            return self._snapshot

        if "phone" in changes:
            changes["phone"] = format_phone_number(changes["phone"])

        customer = replace(self._snapshot.customer, **changes)
        self._apply_edit(changes, customer=customer)
        return self._snapshot

    def _accepts_edits(self) -> bool:
        """
        Raises:
            CheckoutBusyError: While continue is validating or submitting
        """
        if self._disposed or self.state is CheckoutState.HANDOFF_COMPLETE:
            return False
        if self._busy:
            logger.debug(f"Checkout {self.checkout_id}: edit rejected while validating")
            raise CheckoutBusyError(self.checkout_id, self.state)
        return True

    def _apply_edit(self, changes: dict[str, str], **values: Any) -> None:
        form_errors = {
            name: message
            for name, message in self._snapshot.form_errors.items()
            if name not in changes
        }
        self._draft = None
        self._draft_key = None

        estimate = values.pop("estimate", self._snapshot.estimate)

        self._commit(
            state=CheckoutState.EDITING_ADDRESS,
            form_errors=form_errors,
            validation=None,
            delivery=None,
            order=None,
            error=None,
            message=None,
            retryable=False,
            estimate=estimate,
            pricing=self._live_pricing(estimate),
            **values,
        )

    def _on_estimate(self, estimate: DeliveryEstimate | None) -> None:
        """Estimator callback; live numbers never touch an authoritative price."""
        if self._busy or self._snapshot.delivery is not None:
            return
        self._commit(estimate=estimate, pricing=self._live_pricing(estimate))

    def _live_pricing(self, estimate: DeliveryEstimate | None) -> PricingBreakdown:
        shipping = estimate.cost if estimate else Decimal("0")
        return price(self._cart.subtotal(), shipping)

    # ==================== Continue to payment ====================

    async def continue_to_payment(self) -> CheckoutSnapshot:
        """
        Validate the address, price the order and hand it off.

        Ignored while a previous continue is still running. Never
        raises: every outcome is reported through the snapshot.
        """
        if self._disposed or self.state is CheckoutState.HANDOFF_COMPLETE:
            return self._snapshot

        if self._busy:
            logger.debug(f"Checkout {self.checkout_id}: continue already in progress")
            return self._snapshot

        self._busy = True
        try:
            return await self._continue()
        finally:
            self._busy = False

    def _draft_key_for(self, snapshot: CheckoutSnapshot) -> tuple:
        return (snapshot.address, snapshot.customer, tuple(self._cart.items))

    async def _continue(self) -> CheckoutSnapshot:
        snapshot = self._snapshot

        try:
            validate_form(snapshot.customer, snapshot.address)
            if not self._cart.items:
                raise FormValidationError({"cart": "Your cart is empty"})
        except FormValidationError as e:
            self._commit(
                state=CheckoutState.EDITING_ADDRESS,
                form_errors=e.errors,
                error=e.kind,
                message=user_message(e.kind),
                retryable=False,
            )
            return self._snapshot

        key = self._draft_key_for(snapshot)
        if self._draft is not None and self._draft_key == key:
            logger.info(f"Checkout {self.checkout_id}: retrying handoff of priced order")
            return await self._submit(self._draft)

        # The live estimate never feeds the real order
        self._estimator.discard()

        address = snapshot.address.with_defaults(
            settings.service_city,
            settings.service_state,
            settings.service_country,
        )
        subtotal = self._cart.subtotal()

        self._commit(
            state=CheckoutState.VALIDATING,
            estimate=None,
            validation=None,
            delivery=None,
            order=None,
            form_errors={},
            error=None,
            message=None,
            retryable=False,
            pricing=price(subtotal, Decimal("0")),
        )

        try:
            validation = await self._client.validate_address(address)
        except Exception as e:
            return self._fail_validation(e, subtotal)

        if self._disposed:
            return self._snapshot

        if not validation.within_delivery_zone:
            return self._fail_validation(
                ZoneError(validation.message or ""),
                subtotal,
                validation,
            )

        self._commit(state=CheckoutState.VALIDATING_COST, validation=validation)

        degraded = False
        try:
            cost = await self._client.calculate_delivery_cost(address, subtotal)
        except ZoneError as e:
            return self._fail_validation(e, subtotal, validation)
        except Exception as e:
            # Zone already confirmed: degrade instead of blocking checkout
            logger.warning(
                f"Checkout {self.checkout_id}: delivery cost unavailable, "
                f"using fallback: {e!r}"
            )
            cost = fallback_delivery_cost(subtotal, validation.distance_miles)
            degraded = True
        else:
            cost = reconcile_delivery_cost(cost, subtotal)

        if self._disposed:
            return self._snapshot

        pricing = price(subtotal, cost.delivery_cost)
        order = OrderDraft(
            items=tuple(self._cart.items),
            address=address,
            customer=snapshot.customer,
            pricing=pricing,
            distance_miles=cost.distance_miles or validation.distance_miles,
            zone_validated=True,
            cost_degraded=degraded,
        )
        self._draft = order
        self._draft_key = key

        self._commit(
            state=CheckoutState.COST_DEGRADED if degraded else CheckoutState.READY_FOR_HANDOFF,
            delivery=cost,
            pricing=pricing,
            order=order,
            message=cost.message if degraded else None,
        )

        return await self._submit(order)

    def _fail_validation(
        self,
        error: Exception,
        subtotal: Decimal,
        validation: DeliveryValidationResult | None = None,
    ) -> CheckoutSnapshot:
        """Report a failed zone check and hand the form back to the customer."""
        kind = classify_error(error)
        zone = kind is ErrorKind.OUT_OF_ZONE

        if zone:
            logger.warning(f"Checkout {self.checkout_id}: address outside delivery zone")
            if validation is None or validation.within_delivery_zone:
                validation = DeliveryValidationResult(
                    within_delivery_zone=False,
                    distance_miles=validation.distance_miles if validation else 0.0,
                )
            estimate = DeliveryEstimate(
                cost=Decimal("0"),
                is_free=False,
                is_estimate=False,
                message=user_message(kind),
            )
        else:
            logger.error(f"Checkout {self.checkout_id}: address validation failed: {error!r}")
            validation = None
            estimate = None

        self._commit(
            state=CheckoutState.VALIDATION_FAILED,
            validation=validation,
            estimate=estimate,
            delivery=None,
            order=None,
            pricing=price(subtotal, Decimal("0")),
            error=kind,
            message=user_message(kind),
            retryable=is_retryable(kind),
        )
        self._commit(state=CheckoutState.EDITING_ADDRESS)
        return self._snapshot

    async def _submit(self, order: OrderDraft) -> CheckoutSnapshot:
        self._commit(state=CheckoutState.SUBMITTING, error=None, message=None, retryable=False)

        try:
            await self._handoff.handoff(self.checkout_id, order)
        except Exception as e:
            logger.error(f"Checkout {self.checkout_id}: order handoff failed: {e!r}")
            self._commit(
                state=CheckoutState.SUBMISSION_FAILED,
                error=ErrorKind.HANDOFF,
                message=user_message(ErrorKind.HANDOFF),
                retryable=True,
            )
            self._commit(state=CheckoutState.EDITING_ADDRESS)
            return self._snapshot

        self._commit(state=CheckoutState.HANDOFF_COMPLETE)
        logger.info(f"Checkout {self.checkout_id}: order ready for payment")
        return self._snapshot

    # ==================== Disposal ====================

    def dispose(self) -> None:
        """Cancel pending work; nothing mutates this checkout afterwards."""
        if self._disposed:
            return
        self._disposed = True
        self._estimator.dispose()
        self._listeners.clear()
        logger.debug(f"Checkout {self.checkout_id} disposed")
