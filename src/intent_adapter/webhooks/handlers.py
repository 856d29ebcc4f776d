"""Tenant resolution and handlers for each supported webhook event."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from ..database.repository import PaymentProviderCustomerRepository, PaymentMethodRepository
from ..gateway import IntentObject, PaymentMethodObject, CustomerObject
from .events import EventType

if TYPE_CHECKING:
    from ..provider import StripeIntentProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventHandler:
    """How one event type is parsed, scoped to a tenant and applied."""
    object_type: str
    parse: Callable[[Dict[str, Any]], Any]
    resolve_tenant: Callable[["StripeIntentProvider", Any], Awaitable[Optional[str]]]
    handle: Callable[["StripeIntentProvider", Any], Awaitable[bool]]


async def metadata_tenant(provider: "StripeIntentProvider", obj: Any) -> Optional[str]:
    return obj.metadata.get("tenant_id")


async def payment_method_tenant(
    provider: "StripeIntentProvider",
    payment_method: PaymentMethodObject,
) -> Optional[str]:
    """
    Resolve the tenant of a payment method from local records.

    Payment methods carry no metadata of their own, so the stored copy of the
    method is used, then the stored customer it is attached to.
    """
    stored = await PaymentMethodRepository(provider.session).list_by_gateway_id(
        provider.PROVIDER, payment_method.id
    )
    if len(stored) > 1:
        logger.critical(
            f"Payment method {payment_method.id} is stored {len(stored)} times; cannot resolve its tenant"
        )
        return None

    customers = PaymentProviderCustomerRepository(provider.session)
    if stored:
        if stored[0].tenant_id:
            return stored[0].tenant_id
        customer = await customers.get_by_id(stored[0].customer_id)
        if customer is not None and customer.tenant_id:
            return customer.tenant_id

    customer = await customers.get_by_customer_id(provider.PROVIDER, payment_method.customer)
    if customer is not None and customer.tenant_id:
        return customer.tenant_id

    logger.critical(
        f"No tenant found for payment method {payment_method.id} (customer={payment_method.customer})"
    )
    return None


async def handle_payment_intent_succeeded(provider: "StripeIntentProvider", intent: IntentObject) -> bool:
    response = await provider.webhook_charge_by_retrieval(intent)
    if not response.success:
        logger.warning(f"Webhook for intent {intent.id} was not recorded: {response.message}")
    return response.success


async def handle_payment_method_updated_or_attached(
    provider: "StripeIntentProvider",
    payment_method: PaymentMethodObject,
) -> bool:
    return await provider.payment_method().webhook_updated_or_attached(payment_method)


async def handle_payment_method_detached(
    provider: "StripeIntentProvider",
    payment_method: PaymentMethodObject,
) -> bool:
    return await provider.payment_method().webhook_detached(payment_method)


async def handle_customer_deleted(provider: "StripeIntentProvider", customer: CustomerObject) -> bool:
    return await provider.customer().webhook_deleted(customer)


_PAYMENT_METHOD_UPDATED = EventHandler(
    object_type="payment_method",
    parse=PaymentMethodObject.from_stripe,
    resolve_tenant=payment_method_tenant,
    handle=handle_payment_method_updated_or_attached,
)

HANDLERS: Dict[EventType, EventHandler] = {
    EventType.PAYMENT_INTENT_SUCCEEDED: EventHandler(
        object_type="payment_intent",
        parse=IntentObject.from_stripe,
        resolve_tenant=metadata_tenant,
        handle=handle_payment_intent_succeeded,
    ),
    EventType.PAYMENT_METHOD_ATTACHED: _PAYMENT_METHOD_UPDATED,
    EventType.PAYMENT_METHOD_UPDATED: _PAYMENT_METHOD_UPDATED,
    EventType.PAYMENT_METHOD_AUTOMATICALLY_UPDATED: _PAYMENT_METHOD_UPDATED,
    EventType.PAYMENT_METHOD_DETACHED: EventHandler(
        object_type="payment_method",
        parse=PaymentMethodObject.from_stripe,
        resolve_tenant=payment_method_tenant,
        handle=handle_payment_method_detached,
    ),
    EventType.CUSTOMER_DELETED: EventHandler(
        object_type="customer",
        parse=CustomerObject.from_stripe,
        resolve_tenant=metadata_tenant,
        handle=handle_customer_deleted,
    ),
}
