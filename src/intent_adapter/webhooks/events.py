"""Gateway webhook event types handled by the adapter."""

from enum import Enum


class EventType(str, Enum):
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_METHOD_ATTACHED = "payment_method.attached"
    PAYMENT_METHOD_UPDATED = "payment_method.updated"
    PAYMENT_METHOD_AUTOMATICALLY_UPDATED = "payment_method.automatically_updated"
    PAYMENT_METHOD_DETACHED = "payment_method.detached"
    CUSTOMER_DELETED = "customer.deleted"

    @classmethod
    def values(cls) -> list:
        return [event.value for event in cls]
