"""
Checkout data model.

Plain dataclasses shared by the estimator, the orchestrator
and the handoff. Money is always Decimal here; conversion to
float happens only when a payload leaves the process.
"""

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Protocol


@dataclass(frozen=True)
class Address:
    """Delivery address."""

    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""

    def with_defaults(self, city: str, state: str, country: str) -> "Address":
        """Fill blank city/state/country with the serviced metro."""
        return Address(
            street=self.street.strip(),
            city=self.city.strip() or city,
            state=self.state.strip() or state,
            zip_code=self.zip_code.strip(),
            country=self.country.strip() or country,
        )

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class CustomerInfo:
    """Contact details collected alongside the address."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    apartment: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class LineItem:
    """Cart line item."""

    product_id: str
    name: str
    price: Decimal
    quantity: int = 1

    @property
    def total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": float(self.price),
            "name": self.name,
        }


class CartProvider(Protocol):
    """What checkout needs from a cart."""

    @property
    def items(self) -> tuple[LineItem, ...]: ...

    def subtotal(self) -> Decimal: ...


@dataclass(frozen=True)
class Cart:
    """Immutable cart snapshot handed to a checkout."""

    items: tuple[LineItem, ...] = ()

    def subtotal(self) -> Decimal:
        return sum((item.total for item in self.items), Decimal("0"))


@dataclass(frozen=True)
class DeliveryEstimate:
    """
    Live, non-authoritative delivery cost.

    ``is_estimate`` is False only for the out-of-zone error
    state, where ``cost`` is always zero.
    """

    cost: Decimal
    is_free: bool
    distance_miles: float = 0.0
    is_estimate: bool = True
    loading: bool = False
    message: str | None = None


@dataclass(frozen=True)
class DeliveryValidationResult:
    """Authoritative zone check."""

    within_delivery_zone: bool
    distance_miles: float
    message: str | None = None


@dataclass(frozen=True)
class DeliveryCostResult:
    """Authoritative delivery cost, only computed for in-zone addresses."""

    delivery_cost: Decimal
    is_free_delivery: bool
    distance_miles: float
    message: str | None = None


@dataclass(frozen=True)
class PricingBreakdown:
    """Order money summary. ``total`` is derived, never assigned."""

    subtotal: Decimal
    shipping: Decimal
    tax: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.shipping + self.tax

    def to_dict(self) -> dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "shipping": float(self.shipping),
            "tax": float(self.tax),
            "total": float(self.total),
        }


@dataclass(frozen=True)
class OrderDraft:
    """Fully priced order, created once and never mutated."""

    items: tuple[LineItem, ...]
    address: Address
    customer: CustomerInfo
    pricing: PricingBreakdown
    distance_miles: float
    zone_validated: bool = True
    cost_degraded: bool = False
    payment_method: str = "Credit Card"

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the payment step."""
        address = self.address.to_dict()
        return {
            "items": [item.to_dict() for item in self.items],
            "shipping_address": address,
            "billing_address": dict(address),
            "payment_method": self.payment_method,
            "customer_email": self.customer.email,
            "customer_phone": self.customer.phone,
            "delivery_cost": float(self.pricing.shipping),
            "distance_miles": self.distance_miles,
            "delivery_zone_validated": self.zone_validated,
            "subtotal": float(self.pricing.subtotal),
            "tax": float(self.pricing.tax),
            "total": float(self.pricing.total),
            "amount": float(self.pricing.total),
        }
