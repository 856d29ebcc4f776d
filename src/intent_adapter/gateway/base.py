from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Mapping, Union

import stripe
from pydantic import BaseModel, Field

from .errors import WebhookSignatureError

# Reasons the gateway accepts on a refund
VALID_REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping) or hasattr(obj, "get"):
        value = obj.get(key, default)
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


def _ref_id(value: Any) -> Optional[str]:
    """Id of a reference that may be a bare id or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _get(value, "id")


def _metadata(obj: Any) -> Dict[str, str]:
    meta = _get(obj, "metadata") or {}
    return {str(k): str(v) for k, v in meta.items() if v is not None}


# Gateway object models
class ChargeObject(BaseModel):
    id: str
    object: str = "charge"
    amount: int = 0
    amount_refunded: int = 0
    currency: Optional[str] = None
    status: Optional[str] = None
    payment_intent: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj: Any) -> "ChargeObject":
        return cls(
            id=_get(obj, "id"),
            amount=_get(obj, "amount", 0),
            amount_refunded=_get(obj, "amount_refunded", 0),
            currency=_get(obj, "currency"),
            status=_get(obj, "status"),
            payment_intent=_ref_id(_get(obj, "payment_intent")),
            metadata=_metadata(obj),
        )


class IntentObject(BaseModel):
    """A payment intent: the gateway's parent object for one payment attempt."""
    id: str
    object: str = "payment_intent"
    amount: int = 0
    amount_received: int = 0
    amount_capturable: int = 0
    currency: Optional[str] = None
    status: Optional[str] = None
    customer: Optional[str] = None
    payment_method: Optional[str] = None
    livemode: bool = False
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    # Gateways attach only the most recent charge to an intent.
    latest_charge: Optional[ChargeObject] = None

    @classmethod
    def from_stripe(cls, obj: Any) -> "IntentObject":
        """Build from a StripeObject or a plain dict.

        The latest charge is read from ``latest_charge`` when it is expanded,
        otherwise from the first entry of the legacy ``charges`` list.
        """
        latest = _get(obj, "latest_charge")
        charge = None
        if latest is not None and not isinstance(latest, str):
            charge = ChargeObject.from_stripe(latest)
        else:
            listed = _get(_get(obj, "charges"), "data") or []
            if listed:
                charge = ChargeObject.from_stripe(listed[0])
            elif isinstance(latest, str):
                charge = ChargeObject(id=latest)

        return cls(
            id=_get(obj, "id"),
            amount=_get(obj, "amount", 0),
            amount_received=_get(obj, "amount_received", 0),
            amount_capturable=_get(obj, "amount_capturable", 0),
            currency=_get(obj, "currency"),
            status=_get(obj, "status"),
            customer=_ref_id(_get(obj, "customer")),
            payment_method=_ref_id(_get(obj, "payment_method")),
            livemode=bool(_get(obj, "livemode", False)),
            client_secret=_get(obj, "client_secret"),
            metadata=_metadata(obj),
            latest_charge=charge,
        )


class RefundObject(BaseModel):
    id: str
    object: str = "refund"
    amount: int = 0
    currency: Optional[str] = None
    status: Optional[str] = None
    payment_intent: Optional[str] = None
    charge: Optional[str] = None
    reason: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj: Any) -> "RefundObject":
        return cls(
            id=_get(obj, "id"),
            amount=_get(obj, "amount", 0),
            currency=_get(obj, "currency"),
            status=_get(obj, "status"),
            payment_intent=_ref_id(_get(obj, "payment_intent")),
            charge=_ref_id(_get(obj, "charge")),
            reason=_get(obj, "reason"),
            metadata=_metadata(obj),
        )


class CardChecks(BaseModel):
    address_line1_check: Optional[str] = None
    address_postal_code_check: Optional[str] = None
    cvc_check: Optional[str] = None


class CardDetails(BaseModel):
    brand: Optional[str] = None
    last4: Optional[str] = None
    country: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    checks: CardChecks = Field(default_factory=CardChecks)
    three_d_secure_supported: Optional[bool] = None


class PaymentMethodObject(BaseModel):
    id: str
    object: str = "payment_method"
    type: Optional[str] = None
    customer: Optional[str] = None
    livemode: bool = False
    card: Optional[CardDetails] = None

    @classmethod
    def from_stripe(cls, obj: Any) -> "PaymentMethodObject":
        card = _get(obj, "card")
        details = None
        if card is not None:
            checks = _get(card, "checks")
            details = CardDetails(
                brand=_get(card, "brand"),
                last4=_get(card, "last4"),
                country=_get(card, "country"),
                exp_month=_get(card, "exp_month"),
                exp_year=_get(card, "exp_year"),
                checks=CardChecks(
                    address_line1_check=_get(checks, "address_line1_check"),
                    address_postal_code_check=_get(checks, "address_postal_code_check"),
                    cvc_check=_get(checks, "cvc_check"),
                ),
                three_d_secure_supported=_get(_get(card, "three_d_secure_usage"), "supported"),
            )
        return cls(
            id=_get(obj, "id"),
            type=_get(obj, "type"),
            customer=_ref_id(_get(obj, "customer")),
            livemode=bool(_get(obj, "livemode", False)),
            card=details,
        )


class CustomerObject(BaseModel):
    id: str
    object: str = "customer"
    deleted: bool = False
    email: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj: Any) -> "CustomerObject":
        return cls(
            id=_get(obj, "id"),
            deleted=bool(_get(obj, "deleted", False)),
            email=_get(obj, "email"),
            metadata=_metadata(obj),
        )


class WebhookEndpointObject(BaseModel):
    id: str
    url: str
    enabled_events: List[str] = Field(default_factory=list)
    secret: Optional[str] = None

    @classmethod
    def from_stripe(cls, obj: Any) -> "WebhookEndpointObject":
        return cls(
            id=_get(obj, "id"),
            url=_get(obj, "url", ""),
            enabled_events=list(_get(obj, "enabled_events") or []),
            secret=_get(obj, "secret"),
        )


class PaymentGateway(ABC):
    """
    Remote payment gateway surface used by the reconciliation core.
    Every method performs a blocking network call and raises GatewayError
    on failure; no client library exception escapes an implementation.
    """

    @property
    @abstractmethod
    def livemode(self) -> bool:
        """Whether this client talks to the live environment."""
        raise NotImplementedError

    # Payment intents
    @abstractmethod
    def create_payment_intent(self, params: Dict[str, Any]) -> IntentObject:
        raise NotImplementedError

    @abstractmethod
    def retrieve_payment_intent(self, intent_id: str) -> IntentObject:
        """Retrieve an intent with its latest charge expanded."""
        raise NotImplementedError

    @abstractmethod
    def update_payment_intent(self, intent_id: str, params: Dict[str, Any]) -> IntentObject:
        raise NotImplementedError

    @abstractmethod
    def list_payment_intents(self, limit: int = 10) -> List[IntentObject]:
        raise NotImplementedError

    # Payment methods
    @abstractmethod
    def retrieve_payment_method(self, payment_method_id: str) -> PaymentMethodObject:
        raise NotImplementedError

    @abstractmethod
    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> PaymentMethodObject:
        raise NotImplementedError

    @abstractmethod
    def detach_payment_method(self, payment_method_id: str) -> PaymentMethodObject:
        raise NotImplementedError

    @abstractmethod
    def update_payment_method(self, payment_method_id: str, params: Dict[str, Any]) -> PaymentMethodObject:
        raise NotImplementedError

    # Charges and refunds
    @abstractmethod
    def list_charges(self, intent_id: str) -> List[ChargeObject]:
        raise NotImplementedError

    @abstractmethod
    def create_refund(self, params: Dict[str, Any]) -> RefundObject:
        """
        Create a refund. Over-refunds are rejected by the gateway, not locally.
        """
        raise NotImplementedError

    @abstractmethod
    def list_refunds(self, intent_id: str) -> List[RefundObject]:
        raise NotImplementedError

    # Customers
    @abstractmethod
    def create_customer(self, params: Dict[str, Any]) -> CustomerObject:
        raise NotImplementedError

    @abstractmethod
    def retrieve_customer(self, customer_id: str) -> CustomerObject:
        raise NotImplementedError

    @abstractmethod
    def delete_customer(self, customer_id: str) -> CustomerObject:
        raise NotImplementedError

    @abstractmethod
    def list_customer_payment_methods(self, customer_id: str, type: str = "card") -> List[PaymentMethodObject]:
        raise NotImplementedError

    # Webhook endpoints
    @abstractmethod
    def create_webhook_endpoint(self, url: str, enabled_events: List[str]) -> WebhookEndpointObject:
        raise NotImplementedError

    @abstractmethod
    def list_webhook_endpoints(self) -> List[WebhookEndpointObject]:
        raise NotImplementedError

    @abstractmethod
    def delete_webhook_endpoint(self, endpoint_id: str) -> None:
        raise NotImplementedError

    def verify_webhook_header(
        self,
        payload: Union[str, bytes],
        header: Optional[str],
        secret: str,
        tolerance: int,
    ) -> None:
        """
        Check a webhook signature header against the raw payload.

        Raises:
            WebhookSignatureError: if the signature does not match or the
                timestamp is older than ``tolerance`` seconds.
        """
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        try:
            stripe.WebhookSignature.verify_header(payload, header or "", secret, tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(str(e)) from e
