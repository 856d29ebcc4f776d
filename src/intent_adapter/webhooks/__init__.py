"""Webhook handling for gateway events."""

from .events import EventType
from .handlers import EventHandler, HANDLERS, payment_method_tenant
from .router import WebhookRouter

__all__ = [
    "EventType",
    "EventHandler",
    "HANDLERS",
    "payment_method_tenant",
    "WebhookRouter",
]
