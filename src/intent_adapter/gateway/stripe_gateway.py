import logging
from typing import Dict, Any, List, Callable, TypeVar

import stripe

from ..config import ProviderConfig
from .base import (
    PaymentGateway,
    IntentObject,
    ChargeObject,
    RefundObject,
    PaymentMethodObject,
    CustomerObject,
    WebhookEndpointObject,
)
from .errors import GatewayConnectionError, GatewayRequestError

logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2022-11-15"
PAGE_SIZE = 100

T = TypeVar("T")


class StripeGateway(PaymentGateway):
    """
    Stripe gateway built on a per-instance ``stripe.StripeClient``, so several
    tenants with different keys can coexist in one process. Every Stripe
    exception is translated into the GatewayError hierarchy.
    """

    def __init__(self, config: ProviderConfig):
        api_key = config.active_secret_key
        if not api_key:
            raise ValueError("Stripe secret key is not configured.")
        if not config.livemode and not api_key.startswith("sk_test_"):
            raise ValueError("Tests may not be run with a production Stripe key.")

        self._livemode = config.livemode
        self._client = stripe.StripeClient(
            api_key,
            stripe_version=STRIPE_API_VERSION,
            max_network_retries=config.max_network_retries,
            http_client=stripe.RequestsClient(timeout=config.request_timeout),
        )
        logger.info(f"StripeGateway initialized (livemode={self._livemode})")

    @property
    def livemode(self) -> bool:
        return self._livemode

    def _call(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return func(*args, **kwargs)
        except stripe.APIConnectionError as e:
            logger.error(f"Stripe {operation} failed to connect: {e}")
            raise GatewayConnectionError(str(e), code=e.code, original_error=e) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise GatewayRequestError(str(e), code=e.code, original_error=e) from e

    # Payment intents
    def create_payment_intent(self, params: Dict[str, Any]) -> IntentObject:
        pi = self._call("payment_intents.create", self._client.payment_intents.create, params=params)
        return IntentObject.from_stripe(pi)

    def retrieve_payment_intent(self, intent_id: str) -> IntentObject:
        pi = self._call(
            "payment_intents.retrieve",
            self._client.payment_intents.retrieve,
            intent_id,
            params={"expand": ["latest_charge"]},
        )
        return IntentObject.from_stripe(pi)

    def update_payment_intent(self, intent_id: str, params: Dict[str, Any]) -> IntentObject:
        pi = self._call("payment_intents.update", self._client.payment_intents.update, intent_id, params=params)
        return IntentObject.from_stripe(pi)

    def list_payment_intents(self, limit: int = 10) -> List[IntentObject]:
        page = self._call("payment_intents.list", self._client.payment_intents.list, params={"limit": limit})
        return [IntentObject.from_stripe(pi) for pi in page.data]

    # Payment methods
    def retrieve_payment_method(self, payment_method_id: str) -> PaymentMethodObject:
        pm = self._call("payment_methods.retrieve", self._client.payment_methods.retrieve, payment_method_id)
        return PaymentMethodObject.from_stripe(pm)

    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> PaymentMethodObject:
        pm = self._call(
            "payment_methods.attach",
            self._client.payment_methods.attach,
            payment_method_id,
            params={"customer": customer_id},
        )
        return PaymentMethodObject.from_stripe(pm)

    def detach_payment_method(self, payment_method_id: str) -> PaymentMethodObject:
        pm = self._call("payment_methods.detach", self._client.payment_methods.detach, payment_method_id)
        return PaymentMethodObject.from_stripe(pm)

    def update_payment_method(self, payment_method_id: str, params: Dict[str, Any]) -> PaymentMethodObject:
        pm = self._call(
            "payment_methods.update", self._client.payment_methods.update, payment_method_id, params=params
        )
        return PaymentMethodObject.from_stripe(pm)

    # Charges and refunds
    def list_charges(self, intent_id: str) -> List[ChargeObject]:
        page = self._call(
            "charges.list",
            self._client.charges.list,
            params={"payment_intent": intent_id, "limit": PAGE_SIZE},
        )
        return self._call(
            "charges.list", lambda: [ChargeObject.from_stripe(c) for c in page.auto_paging_iter()]
        )

    def create_refund(self, params: Dict[str, Any]) -> RefundObject:
        refund = self._call("refunds.create", self._client.refunds.create, params=params)
        return RefundObject.from_stripe(refund)

    def list_refunds(self, intent_id: str) -> List[RefundObject]:
        page = self._call(
            "refunds.list",
            self._client.refunds.list,
            params={"payment_intent": intent_id, "limit": PAGE_SIZE},
        )
        return self._call(
            "refunds.list", lambda: [RefundObject.from_stripe(r) for r in page.auto_paging_iter()]
        )

    # Customers
    def create_customer(self, params: Dict[str, Any]) -> CustomerObject:
        customer = self._call("customers.create", self._client.customers.create, params=params)
        return CustomerObject.from_stripe(customer)

    def retrieve_customer(self, customer_id: str) -> CustomerObject:
        customer = self._call("customers.retrieve", self._client.customers.retrieve, customer_id)
        return CustomerObject.from_stripe(customer)

    def delete_customer(self, customer_id: str) -> CustomerObject:
        customer = self._call("customers.delete", self._client.customers.delete, customer_id)
        return CustomerObject.from_stripe(customer)

    def list_customer_payment_methods(self, customer_id: str, type: str = "card") -> List[PaymentMethodObject]:
        page = self._call(
            "customers.payment_methods.list",
            self._client.customers.payment_methods.list,
            customer_id,
            params={"type": type, "limit": PAGE_SIZE},
        )
        return self._call(
            "customers.payment_methods.list",
            lambda: [PaymentMethodObject.from_stripe(pm) for pm in page.auto_paging_iter()],
        )

    # Webhook endpoints
    def create_webhook_endpoint(self, url: str, enabled_events: List[str]) -> WebhookEndpointObject:
        endpoint = self._call(
            "webhook_endpoints.create",
            self._client.webhook_endpoints.create,
            params={"url": url, "enabled_events": enabled_events},
        )
        return WebhookEndpointObject.from_stripe(endpoint)

    def list_webhook_endpoints(self) -> List[WebhookEndpointObject]:
        page = self._call(
            "webhook_endpoints.list", self._client.webhook_endpoints.list, params={"limit": PAGE_SIZE}
        )
        return [WebhookEndpointObject.from_stripe(e) for e in page.data]

    def delete_webhook_endpoint(self, endpoint_id: str) -> None:
        self._call("webhook_endpoints.delete", self._client.webhook_endpoints.delete, endpoint_id)
