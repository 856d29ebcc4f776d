"""Payment gateway clients."""

from .base import (
    PaymentGateway,
    IntentObject,
    ChargeObject,
    RefundObject,
    PaymentMethodObject,
    CardDetails,
    CardChecks,
    CustomerObject,
    WebhookEndpointObject,
    VALID_REFUND_REASONS,
)
from .errors import (
    GatewayError,
    GatewayConnectionError,
    GatewayRequestError,
    WebhookSignatureError,
)
from .stripe_gateway import StripeGateway, STRIPE_API_VERSION
from .simulator import SimulatorGateway

__all__ = [
    # Interface and object models
    "PaymentGateway",
    "IntentObject",
    "ChargeObject",
    "RefundObject",
    "PaymentMethodObject",
    "CardDetails",
    "CardChecks",
    "CustomerObject",
    "WebhookEndpointObject",
    # Errors
    "GatewayError",
    "GatewayConnectionError",
    "GatewayRequestError",
    "WebhookSignatureError",
    # Gateways
    "StripeGateway",
    "STRIPE_API_VERSION",
    "SimulatorGateway",
    "VALID_REFUND_REASONS",
]
