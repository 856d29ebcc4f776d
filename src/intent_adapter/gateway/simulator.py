"""Simulator gateway for exercising payment flows without real gateway calls."""

import uuid
import logging
from typing import Dict, Any, List, Optional

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
from .errors import GatewayRequestError

logger = logging.getLogger(__name__)


class SimulatorGateway(PaymentGateway):
    """
    In-memory gateway that behaves like Stripe for the operations used here.

    Features:
    - In-memory intents, charges, refunds, customers and payment methods
    - Out-of-band confirmation of intents (what the browser would do)
    - Refunds validated against the remaining refundable amount
    - A log of every call in ``calls`` and error injection via ``raise_on``
    """

    def __init__(self, livemode: bool = False):
        """Initialize the simulator.

        Args:
            livemode: Mode reported by the gateway and stamped on objects.
        """
        self._livemode = livemode
        self.intents: Dict[str, IntentObject] = {}
        self.charges: Dict[str, ChargeObject] = {}
        self.refunds: Dict[str, RefundObject] = {}
        self.payment_methods: Dict[str, PaymentMethodObject] = {}
        self.customers: Dict[str, CustomerObject] = {}
        self.webhook_endpoints: Dict[str, WebhookEndpointObject] = {}
        self._latest_charge: Dict[str, str] = {}
        self.refund_status = "succeeded"
        # Operation name -> exception raised the next time it is called
        self.raise_on: Dict[str, Exception] = {}
        self.calls: List[str] = []
        logger.info("SimulatorGateway initialized")

    @property
    def livemode(self) -> bool:
        return self._livemode

    @staticmethod
    def _generate_id(prefix: str) -> str:
        return f"{prefix}_sim_{uuid.uuid4().hex[:24]}"

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        error = self.raise_on.pop(operation, None)
        if error is not None:
            raise error

    @staticmethod
    def _missing(kind: str, object_id: str) -> GatewayRequestError:
        return GatewayRequestError(f"No such {kind}: '{object_id}'", code="resource_missing")

    def _intent_view(self, intent: IntentObject) -> IntentObject:
        view = intent.model_copy(deep=True)
        charge_id = self._latest_charge.get(intent.id)
        if charge_id:
            view.latest_charge = self.charges[charge_id].model_copy(deep=True)
        return view

    def _get_intent(self, intent_id: str) -> IntentObject:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise self._missing("payment_intent", intent_id)
        return intent

    def _get_payment_method(self, payment_method_id: str) -> PaymentMethodObject:
        pm = self.payment_methods.get(payment_method_id)
        if pm is None:
            raise self._missing("payment_method", payment_method_id)
        return pm

    # Payment intents
    def create_payment_intent(self, params: Dict[str, Any]) -> IntentObject:
        self._record("create_payment_intent")
        if "amount" not in params or "currency" not in params:
            raise GatewayRequestError("Missing required param: amount or currency", code="parameter_missing")

        intent_id = self._generate_id("pi")
        intent = IntentObject(
            id=intent_id,
            amount=params["amount"],
            currency=params["currency"].lower(),
            status="requires_confirmation" if params.get("payment_method") else "requires_payment_method",
            customer=params.get("customer"),
            payment_method=params.get("payment_method"),
            livemode=self._livemode,
            client_secret=f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
            metadata={k: str(v) for k, v in (params.get("metadata") or {}).items()},
        )
        self.intents[intent_id] = intent
        return self._intent_view(intent)

    def retrieve_payment_intent(self, intent_id: str) -> IntentObject:
        self._record("retrieve_payment_intent")
        return self._intent_view(self._get_intent(intent_id))

    def update_payment_intent(self, intent_id: str, params: Dict[str, Any]) -> IntentObject:
        self._record("update_payment_intent")
        intent = self._get_intent(intent_id)
        if intent.status == "succeeded":
            raise GatewayRequestError(
                "This PaymentIntent's amount could not be updated because it has a status of succeeded.",
                code="payment_intent_unexpected_state",
            )

        if "amount" in params:
            intent.amount = params["amount"]
        if "currency" in params:
            intent.currency = params["currency"].lower()
        if "customer" in params:
            intent.customer = params["customer"]
        if "payment_method" in params:
            intent.payment_method = params["payment_method"]
        if params.get("metadata"):
            intent.metadata.update({k: str(v) for k, v in params["metadata"].items()})
        return self._intent_view(intent)

    def list_payment_intents(self, limit: int = 10) -> List[IntentObject]:
        self._record("list_payment_intents")
        newest_first = list(reversed(list(self.intents.values())))
        return [self._intent_view(intent) for intent in newest_first[:limit]]

    def confirm_payment_intent(
        self,
        intent_id: str,
        payment_method: Optional[str] = None,
        succeed: bool = True,
        capture: bool = True,
    ) -> IntentObject:
        """Confirm an intent the way a customer's browser would (simulator-specific method)."""
        intent = self._get_intent(intent_id)
        if payment_method:
            intent.payment_method = payment_method

        charge = ChargeObject(
            id=self._generate_id("ch"),
            amount=intent.amount,
            currency=intent.currency,
            status="succeeded" if succeed else "failed",
            payment_intent=intent.id,
        )
        self.charges[charge.id] = charge
        self._latest_charge[intent.id] = charge.id

        if not succeed:
            intent.status = "requires_payment_method"
        elif capture:
            intent.status = "succeeded"
            intent.amount_received = intent.amount
            intent.amount_capturable = 0
        else:
            intent.status = "requires_capture"
            intent.amount_capturable = intent.amount
        return self._intent_view(intent)

    # Payment methods
    def add_payment_method(
        self,
        customer: Optional[str] = None,
        brand: str = "visa",
        last4: str = "4242",
        country: str = "GB",
        exp_month: int = 12,
        exp_year: int = 2030,
        checks: Optional[CardChecks] = None,
        three_d_secure_supported: bool = True,
        type: str = "card",
    ) -> PaymentMethodObject:
        """Create a card payment method (simulator-specific method)."""
        pm = PaymentMethodObject(
            id=self._generate_id("pm"),
            type=type,
            customer=customer,
            livemode=self._livemode,
            card=CardDetails(
                brand=brand,
                last4=last4,
                country=country,
                exp_month=exp_month,
                exp_year=exp_year,
                checks=checks or CardChecks(
                    address_line1_check="pass",
                    address_postal_code_check="pass",
                    cvc_check="pass",
                ),
                three_d_secure_supported=three_d_secure_supported,
            ),
        )
        self.payment_methods[pm.id] = pm
        return pm.model_copy(deep=True)

    def retrieve_payment_method(self, payment_method_id: str) -> PaymentMethodObject:
        self._record("retrieve_payment_method")
        return self._get_payment_method(payment_method_id).model_copy(deep=True)

    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> PaymentMethodObject:
        self._record("attach_payment_method")
        pm = self._get_payment_method(payment_method_id)
        if customer_id not in self.customers:
            raise self._missing("customer", customer_id)
        pm.customer = customer_id
        return pm.model_copy(deep=True)

    def detach_payment_method(self, payment_method_id: str) -> PaymentMethodObject:
        self._record("detach_payment_method")
        pm = self._get_payment_method(payment_method_id)
        if pm.customer is None:
            raise GatewayRequestError(
                "The payment method you provided is not attached to a customer so detachment is impossible.",
                code="payment_method_unexpected_state",
            )
        pm.customer = None
        return pm.model_copy(deep=True)

    def update_payment_method(self, payment_method_id: str, params: Dict[str, Any]) -> PaymentMethodObject:
        self._record("update_payment_method")
        pm = self._get_payment_method(payment_method_id)
        card = params.get("card") or {}
        if pm.card is not None:
            if "exp_month" in card:
                pm.card.exp_month = card["exp_month"]
            if "exp_year" in card:
                pm.card.exp_year = card["exp_year"]
        return pm.model_copy(deep=True)

    # Charges and refunds
    def list_charges(self, intent_id: str) -> List[ChargeObject]:
        self._record("list_charges")
        return [
            charge.model_copy(deep=True)
            for charge in reversed(list(self.charges.values()))
            if charge.payment_intent == intent_id
        ]

    def create_refund(self, params: Dict[str, Any]) -> RefundObject:
        self._record("create_refund")
        intent = self._get_intent(params.get("payment_intent", ""))
        charge_id = self._latest_charge.get(intent.id)
        charge = self.charges.get(charge_id) if charge_id else None
        if intent.status != "succeeded" or charge is None or charge.status != "succeeded":
            raise GatewayRequestError(
                f"PaymentIntent {intent.id} does not have a successful charge to refund.",
                code="charge_not_refundable",
            )

        remaining = charge.amount - charge.amount_refunded
        amount = params.get("amount", remaining)
        if remaining <= 0:
            raise GatewayRequestError(f"Charge {charge.id} has already been refunded.", code="charge_already_refunded")
        if amount <= 0 or amount > remaining:
            raise GatewayRequestError(
                f"Refund amount ({amount}) is greater than unrefunded amount on charge ({remaining})",
                code="amount_too_large",
            )
        reason = params.get("reason")
        if reason is not None and reason not in VALID_REFUND_REASONS:
            raise GatewayRequestError(f"Invalid reason: {reason}", code="parameter_invalid_string")

        refund = RefundObject(
            id=self._generate_id("re"),
            amount=amount,
            currency=charge.currency,
            status=self.refund_status,
            payment_intent=intent.id,
            charge=charge.id,
            reason=reason,
            metadata={k: str(v) for k, v in (params.get("metadata") or {}).items()},
        )
        self.refunds[refund.id] = refund
        if refund.status in ("succeeded", "pending"):
            charge.amount_refunded += amount
        return refund.model_copy(deep=True)

    def list_refunds(self, intent_id: str) -> List[RefundObject]:
        self._record("list_refunds")
        return [
            refund.model_copy(deep=True)
            for refund in reversed(list(self.refunds.values()))
            if refund.payment_intent == intent_id
        ]

    # Customers
    def create_customer(self, params: Dict[str, Any]) -> CustomerObject:
        self._record("create_customer")
        customer = CustomerObject(
            id=self._generate_id("cus"),
            email=params.get("email"),
            metadata={k: str(v) for k, v in (params.get("metadata") or {}).items()},
        )
        self.customers[customer.id] = customer
        return customer.model_copy(deep=True)

    def retrieve_customer(self, customer_id: str) -> CustomerObject:
        self._record("retrieve_customer")
        customer = self.customers.get(customer_id)
        if customer is None:
            raise self._missing("customer", customer_id)
        return customer.model_copy(deep=True)

    def delete_customer(self, customer_id: str) -> CustomerObject:
        self._record("delete_customer")
        customer = self.customers.pop(customer_id, None)
        if customer is None:
            raise self._missing("customer", customer_id)
        for pm in self.payment_methods.values():
            if pm.customer == customer_id:
                pm.customer = None
        return CustomerObject(id=customer_id, deleted=True)

    def list_customer_payment_methods(self, customer_id: str, type: str = "card") -> List[PaymentMethodObject]:
        self._record("list_customer_payment_methods")
        if customer_id not in self.customers:
            raise self._missing("customer", customer_id)
        return [
            pm.model_copy(deep=True)
            for pm in self.payment_methods.values()
            if pm.customer == customer_id and pm.type == type
        ]

    # Webhook endpoints
    def create_webhook_endpoint(self, url: str, enabled_events: List[str]) -> WebhookEndpointObject:
        self._record("create_webhook_endpoint")
        endpoint = WebhookEndpointObject(
            id=self._generate_id("we"),
            url=url,
            enabled_events=list(enabled_events),
            secret=f"whsec_{uuid.uuid4().hex}",
        )
        self.webhook_endpoints[endpoint.id] = endpoint
        return endpoint.model_copy(deep=True)

    def list_webhook_endpoints(self) -> List[WebhookEndpointObject]:
        self._record("list_webhook_endpoints")
        return [endpoint.model_copy(deep=True) for endpoint in self.webhook_endpoints.values()]

    def delete_webhook_endpoint(self, endpoint_id: str) -> None:
        self._record("delete_webhook_endpoint")
        if self.webhook_endpoints.pop(endpoint_id, None) is None:
            raise self._missing("webhook_endpoint", endpoint_id)

    def clear_calls(self) -> None:
        """Forget recorded calls (for test assertions)."""
        self.calls.clear()
