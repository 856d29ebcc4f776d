# intent_adapter package
__version__ = "0.1.0"

from .config import ProviderConfig
from .orders import Order, CustomerData
from .provider import StripeIntentProvider, PROVIDER
from .customers import CustomerService
from .payment_methods import PaymentMethodService
from .responses import (
    ResponseType,
    PaymentResponse,
    SimpleResponse,
    CustomerResponse,
    PaymentMethodResponse,
)
from .webhooks import WebhookRouter, EventType
