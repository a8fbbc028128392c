"""
Pricing Aggregator - tax and totals for checkout.

Pure functions only. The same code prices the live estimate
shown while the customer types and the authoritative order
handed to payment.
"""

from decimal import ROUND_HALF_UP, Decimal

from loguru import logger

from app.modules.checkout.schemas import DeliveryCostResult, PricingBreakdown

# Fixed for compatibility with the payment step
TAX_RATE = Decimal("0.0975")
FREE_DELIVERY_THRESHOLD = Decimal("1000")
FALLBACK_DELIVERY_COST = Decimal("50")

_WHOLE = Decimal("1")
_CENTS = Decimal("0.01")


def to_money(value: Decimal | float | int | str) -> Decimal:
    """Convert wire numbers to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_tax(taxable: Decimal, tax_rate: Decimal = TAX_RATE) -> Decimal:
    """Tax rounded half-up to whole currency units."""
    return (taxable * tax_rate).quantize(_WHOLE, rounding=ROUND_HALF_UP)


def price(
    subtotal: Decimal,
    shipping: Decimal,
    tax_rate: Decimal = TAX_RATE,
) -> PricingBreakdown:
    """
    Price an order.

    Args:
        subtotal: Cart subtotal
        shipping: Resolved delivery cost
        tax_rate: Tax rate applied to subtotal + shipping

    Returns:
        Breakdown with tax; total is derived from the three parts

    Raises:
        ValueError: If subtotal or shipping is negative
    """
    subtotal = to_money(subtotal)
    shipping = to_money(shipping)
    if subtotal < 0 or shipping < 0:
        raise ValueError("subtotal and shipping must be non-negative")

    return PricingBreakdown(
        subtotal=subtotal,
        shipping=shipping,
        tax=calculate_tax(subtotal + shipping, tax_rate),
    )


def is_free_delivery(subtotal: Decimal) -> bool:
    """Free delivery over the threshold."""
    return to_money(subtotal) >= FREE_DELIVERY_THRESHOLD


def fallback_delivery_cost(
    subtotal: Decimal,
    distance_miles: float = 0.0,
) -> DeliveryCostResult:
    """Nominal delivery cost used when the cost service is unavailable."""
    free = is_free_delivery(subtotal)
    return DeliveryCostResult(
        delivery_cost=Decimal("0") if free else FALLBACK_DELIVERY_COST,
        is_free_delivery=free,
        distance_miles=distance_miles,
        message="Estimated delivery cost",
    )


def reconcile_delivery_cost(
    result: DeliveryCostResult,
    subtotal: Decimal,
) -> DeliveryCostResult:
    """
    Apply the free-delivery rule to a successful in-zone calculation.

    Free delivery depends only on the subtotal; a free order
    always ships at zero cost.
    """
    free = is_free_delivery(subtotal)
    if free != result.is_free_delivery:
        logger.warning(
            f"Delivery service reported is_free={result.is_free_delivery} "
            f"for subtotal {subtotal}; using {free}"
        )

    cost = Decimal("0") if free else to_money(result.delivery_cost)
    if cost < 0:
        logger.warning(f"Negative delivery cost {cost} from service; clamping to 0")
        cost = Decimal("0")

    return DeliveryCostResult(
        delivery_cost=cost,
        is_free_delivery=free,
        distance_miles=result.distance_miles,
        message=result.message,
    )


def format_currency(amount: Decimal | float) -> str:
    """Format amount with thousands separator and 2 decimal places."""
    return f"{to_money(amount).quantize(_CENTS, rounding=ROUND_HALF_UP):,.2f}"
