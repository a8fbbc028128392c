"""
Checkout Module - pricing and delivery validation.

Features:
- Debounced live delivery estimates while the address is typed
- Authoritative delivery zone validation and cost calculation
- Tax and totals
- Handoff of the priced order to the payment step
"""

from app.modules.checkout.delivery import DeliveryCostClient
from app.modules.checkout.estimator import DebouncedEstimator
from app.modules.checkout.handoff import OrderHandoff
from app.modules.checkout.orchestrator import CheckoutOrchestrator, CheckoutState
from app.modules.checkout.payment import PaymentService
from app.modules.checkout.sessions import CheckoutSessions

__all__ = [
    "CheckoutOrchestrator",
    "CheckoutSessions",
    "CheckoutState",
    "DebouncedEstimator",
    "DeliveryCostClient",
    "OrderHandoff",
    "PaymentService",
]
