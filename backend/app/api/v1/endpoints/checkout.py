"""
Checkout API Endpoints.

Drives checkout orchestrators over HTTP and WebSocket:
address edits, live delivery estimates, continue to payment.
"""

import asyncio
from decimal import Decimal
from typing import Any

import stripe
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from app.modules.checkout.handoff import OrderHandoff, get_order_handoff
from app.modules.checkout.orchestrator import (
    CheckoutBusyError,
    CheckoutOrchestrator,
    CheckoutSnapshot,
)
from app.modules.checkout.payment import PaymentService, PendingOrderError
from app.modules.checkout.schemas import Address, Cart, CustomerInfo, LineItem
from app.modules.checkout.sessions import CheckoutSessions, get_checkout_sessions

router = APIRouter()


# ==================== Schemas ====================


class LineItemRequest(BaseModel):
    """Cart line item."""

    product_id: str
    name: str
    price: Decimal = Field(ge=0)
    quantity: int = Field(1, ge=1)


class AddressRequest(BaseModel):
    """Address fields; omitted fields are left unchanged."""

    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None


class CustomerRequest(BaseModel):
    """Contact fields; omitted fields are left unchanged."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    apartment: str | None = None


class OpenCheckoutRequest(BaseModel):
    """Start a checkout for a cart."""

    items: list[LineItemRequest] = Field(min_length=1)
    customer: CustomerRequest | None = None
    address: AddressRequest | None = None


class CheckoutCommand(BaseModel):
    """WebSocket command from the checkout form."""

    type: str
    fields: dict[str, str] = {}


# ==================== Helpers ====================


async def get_checkout(
    checkout_id: str,
    sessions: CheckoutSessions = Depends(get_checkout_sessions),
) -> CheckoutOrchestrator:
    """Resolve an open checkout or 404."""
    checkout = sessions.get(checkout_id)
    if checkout is None:
        raise HTTPException(status_code=404, detail="Checkout not found")
    return checkout


def _changes(request: BaseModel) -> dict[str, str]:
    return request.model_dump(exclude_none=True)


# ==================== Checkout ====================


@router.post("", status_code=201)
async def open_checkout(
    request: OpenCheckoutRequest,
    sessions: CheckoutSessions = Depends(get_checkout_sessions),
) -> dict[str, Any]:
    """
    Open a checkout for a cart.

    Returns the checkout id and its initial state.
    """
    cart = Cart(
        items=tuple(
            LineItem(
                product_id=item.product_id,
                name=item.name,
                price=item.price,
                quantity=item.quantity,
            )
            for item in request.items
        )
    )
    customer = CustomerInfo(**_changes(request.customer)) if request.customer else None
    address = Address(**_changes(request.address)) if request.address else None

    checkout = sessions.open(cart, customer=customer, address=address)
    return checkout.snapshot.to_dict()


@router.get("/{checkout_id}")
async def get_checkout_state(
    checkout: CheckoutOrchestrator = Depends(get_checkout),
) -> dict[str, Any]:
    """Get current checkout state."""
    return checkout.snapshot.to_dict()


@router.patch("/{checkout_id}/address")
async def edit_address(
    request: AddressRequest,
    checkout: CheckoutOrchestrator = Depends(get_checkout),
) -> dict[str, Any]:
    """
    Apply address edits; a live estimate follows after the debounce window.

    Returns 409 while continue is validating or submitting.
    """
    try:
        return checkout.edit_address(**_changes(request)).to_dict()
    except CheckoutBusyError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.patch("/{checkout_id}/customer")
async def edit_customer(
    request: CustomerRequest,
    checkout: CheckoutOrchestrator = Depends(get_checkout),
) -> dict[str, Any]:
    """Apply contact field edits. Returns 409 while continue is running."""
    try:
        return checkout.edit_customer(**_changes(request)).to_dict()
    except CheckoutBusyError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.post("/{checkout_id}/continue")
async def continue_to_payment(
    checkout: CheckoutOrchestrator = Depends(get_checkout),
) -> dict[str, Any]:
    """
    Validate delivery, price the order and hand it to payment.

    Always returns 200 with the resulting state; failures are
    described by ``error``, ``message`` and ``retryable``.
    """
    snapshot = await checkout.continue_to_payment()
    return snapshot.to_dict()


@router.delete("/{checkout_id}")
async def close_checkout(
    checkout_id: str,
    sessions: CheckoutSessions = Depends(get_checkout_sessions),
) -> dict[str, str]:
    """Dispose a checkout."""
    if not sessions.close(checkout_id):
        raise HTTPException(status_code=404, detail="Checkout not found")
    return {"status": "closed"}


# ==================== Payment ====================


@router.post("/{checkout_id}/payment-intent")
async def create_payment_intent(
    checkout_id: str,
    handoff: OrderHandoff = Depends(get_order_handoff),
) -> dict[str, Any]:
    """Create Stripe payment intent for the handed-off order."""
    payment = PaymentService(handoff)

    try:
        return await payment.create_payment_intent(checkout_id)
    except PendingOrderError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except stripe.StripeError as e:
        raise HTTPException(status_code=502, detail="Payment provider error") from e


# ==================== WebSocket ====================


async def _handle_command(checkout: CheckoutOrchestrator, raw: str) -> None:
    try:
        command = CheckoutCommand.model_validate_json(raw)
    except ValidationError:
        logger.warning(f"Checkout {checkout.checkout_id}: malformed command")
        return

    try:
        if command.type == "edit_address":
            checkout.edit_address(**command.fields)
        elif command.type == "edit_customer":
            checkout.edit_customer(**command.fields)
        elif command.type == "continue":
            await checkout.continue_to_payment()
        else:
            logger.warning(f"Checkout {checkout.checkout_id}: unknown command {command.type}")
    except CheckoutBusyError as e:
        logger.info(f"Checkout {checkout.checkout_id}: {e}")
    except ValueError as e:
        logger.warning(f"Checkout {checkout.checkout_id}: rejected command: {e}")


@router.websocket("/{checkout_id}/events")
async def checkout_events(
    websocket: WebSocket,
    checkout_id: str,
    sessions: CheckoutSessions = Depends(get_checkout_sessions),
) -> None:
    """
    WebSocket for checkout state changes.

    Sends the current state on connect and a new one after every
    change. Accepts JSON commands:
    {"type": "edit_address" | "edit_customer", "fields": {...}}
    and {"type": "continue"}.
    """
    checkout = sessions.get(checkout_id)
    if checkout is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()

    queue: asyncio.Queue[CheckoutSnapshot] = asyncio.Queue()
    checkout.add_listener(queue.put_nowait)
    queue.put_nowait(checkout.snapshot)

    async def send_loop() -> None:
        while True:
            snapshot = await queue.get()
            await websocket.send_json(snapshot.to_dict())

    async def receive_loop() -> None:
        while True:
            raw = await websocket.receive_text()
            await _handle_command(checkout, raw)

    tasks = [asyncio.create_task(send_loop()), asyncio.create_task(receive_loop())]

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error and not isinstance(error, WebSocketDisconnect):
                logger.error(f"Checkout {checkout_id} event stream failed: {error}")
    finally:
        for task in tasks:
            task.cancel()
        checkout.remove_listener(queue.put_nowait)
