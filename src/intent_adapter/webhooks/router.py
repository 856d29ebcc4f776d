"""Entry point for gateway webhook deliveries."""

import json
import logging
from typing import Optional, Tuple, Union, TYPE_CHECKING

from pydantic import ValidationError

from ..gateway import WebhookSignatureError
from .events import EventType
from .handlers import HANDLERS

if TYPE_CHECKING:
    from ..provider import StripeIntentProvider

logger = logging.getLogger(__name__)

HANDLED = (200, "Webhook Handled")
INVALID_INPUT = (400, "Invalid input")
INVALID_SIGNATURE = (403, "Invalid signature")
UNKNOWN_WEBHOOK = (404, "Unknown webhook - it may not have been set up")
NOT_PROCESSED = (422, "There was an issue with processing the webhook")


class WebhookRouter:
    """
    Dispatches a webhook delivery to the handler of its event type.

    Returns an (HTTP status, plain-text body) pair. A non-2xx status makes
    the gateway redeliver the event later.
    """

    def __init__(self, provider: "StripeIntentProvider"):
        self.provider = provider

    def prepare(self, tenant_id: str, payload: Union[str, bytes], signature_header: Optional[str]) -> None:
        """Scope the provider to the tenant and verify the signature with its secret.

        Raises:
            WebhookSignatureError: if a secret is configured and the signature does not match.
        """
        self.provider.use_tenant(tenant_id)
        config = self.provider.config
        if not config.webhook_secret:
            logger.warning(f"No webhook secret configured for tenant {tenant_id}; skipping signature check")
            return
        self.provider.gateway.verify_webhook_header(
            payload, signature_header, config.webhook_secret, config.webhook_tolerance
        )

    async def handle(self, payload: Union[str, bytes], signature_header: Optional[str] = None) -> Tuple[int, str]:
        """
        Handle one delivery.

        Args:
            payload: Raw request body, as signed by the gateway.
            signature_header: Value of the ``Stripe-Signature`` header.

        Returns:
            Tuple of (status code, response text).
        """
        try:
            event = json.loads(payload)
        except (ValueError, TypeError):
            logger.warning("Webhook body is not valid JSON")
            return INVALID_INPUT
        if not isinstance(event, dict):
            return INVALID_INPUT

        try:
            event_type = EventType(event.get("type"))
        except ValueError:
            logger.info(f"Ignoring unhandled webhook event type {event.get('type')}")
            return UNKNOWN_WEBHOOK
        handler = HANDLERS[event_type]

        envelope = event.get("data")
        data = envelope.get("object") if isinstance(envelope, dict) else None
        if not isinstance(data, dict):
            logger.warning(f"Webhook {event.get('id')} ({event_type.value}) carries no event object")
            return INVALID_INPUT
        if data.get("object") != handler.object_type:
            logger.error(
                f"Webhook {event.get('id')} of type {event_type.value} carries a "
                f"{data.get('object')} object, expected {handler.object_type}"
            )
            return NOT_PROCESSED
        try:
            obj = handler.parse(data)
        except ValidationError as e:
            logger.warning(f"Webhook {event.get('id')} object could not be parsed: {e}")
            return INVALID_INPUT

        tenant_id = await handler.resolve_tenant(self.provider, obj)
        if not tenant_id:
            logger.error(f"Webhook {event.get('id')} ({event_type.value}) could not be tied to a tenant")
            return NOT_PROCESSED

        try:
            self.prepare(tenant_id, payload, signature_header)
        except WebhookSignatureError as e:
            logger.warning(f"Webhook {event.get('id')} failed signature verification: {e}")
            return INVALID_SIGNATURE

        try:
            handled = await handler.handle(self.provider, obj)
        except Exception:
            logger.exception(f"Webhook {event.get('id')} ({event_type.value}) raised while processing")
            return NOT_PROCESSED

        if not handled:
            return NOT_PROCESSED
        logger.info(f"Handled webhook {event.get('id')} ({event_type.value})")
        return HANDLED
