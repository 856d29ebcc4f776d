"""Tests for the Stripe gateway adapter."""

import pytest
import stripe
from unittest.mock import MagicMock

from intent_adapter.config import ProviderConfig
from intent_adapter.gateway import (
    StripeGateway,
    IntentObject,
    PaymentMethodObject,
    GatewayConnectionError,
    GatewayRequestError,
)


@pytest.fixture
def gateway():
    """Gateway with its Stripe client replaced by a mock."""
    gateway = StripeGateway(ProviderConfig(test_secret_key="sk_test_mock_key"))
    gateway._client = MagicMock()
    return gateway


class TestStripeGatewayInit:
    """Test key checks on construction."""

    def test_requires_key(self):
        with pytest.raises(ValueError, match="not configured"):
            StripeGateway(ProviderConfig())

    def test_refuses_live_key_in_test_mode(self):
        with pytest.raises(ValueError, match="production"):
            StripeGateway(ProviderConfig(test_secret_key="sk_live_real"))

    def test_live_mode_uses_live_key(self):
        gateway = StripeGateway(ProviderConfig(secret_key="sk_live_real", livemode=True))
        assert gateway.livemode is True


class TestStripeGatewayCalls:
    """Test requests sent to the Stripe client."""

    def test_retrieve_expands_latest_charge(self, gateway):
        gateway._client.payment_intents.retrieve.return_value = {
            "id": "pi_1",
            "amount": 1000,
            "currency": "gbp",
            "status": "succeeded",
            "latest_charge": {"id": "ch_1", "amount": 1000, "status": "succeeded", "payment_intent": "pi_1"},
        }

        intent = gateway.retrieve_payment_intent("pi_1")

        gateway._client.payment_intents.retrieve.assert_called_once_with(
            "pi_1", params={"expand": ["latest_charge"]}
        )
        assert intent.latest_charge.id == "ch_1"
        assert intent.latest_charge.payment_intent == "pi_1"

    def test_list_refunds_pages_through(self, gateway):
        page = MagicMock()
        page.auto_paging_iter.return_value = iter([
            {"id": "re_1", "amount": 100, "status": "succeeded", "payment_intent": "pi_1"},
            {"id": "re_2", "amount": 200, "status": "succeeded", "payment_intent": "pi_1"},
        ])
        gateway._client.refunds.list.return_value = page

        refunds = gateway.list_refunds("pi_1")

        assert [r.id for r in refunds] == ["re_1", "re_2"]
        gateway._client.refunds.list.assert_called_once_with(params={"payment_intent": "pi_1", "limit": 100})

    def test_attach_payment_method(self, gateway):
        gateway._client.payment_methods.attach.return_value = {
            "id": "pm_1",
            "type": "card",
            "customer": "cus_1",
            "card": {"brand": "visa", "last4": "4242", "exp_month": 1, "exp_year": 2030},
        }

        pm = gateway.attach_payment_method("pm_1", "cus_1")

        gateway._client.payment_methods.attach.assert_called_once_with("pm_1", params={"customer": "cus_1"})
        assert pm.customer == "cus_1"
        assert pm.card.last4 == "4242"


class TestStripeGatewayErrors:
    """Test translation of Stripe exceptions."""

    def test_connection_error(self, gateway):
        gateway._client.payment_intents.retrieve.side_effect = stripe.APIConnectionError("Network down")

        with pytest.raises(GatewayConnectionError) as exc_info:
            gateway.retrieve_payment_intent("pi_1")

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.original_error, stripe.APIConnectionError)

    def test_invalid_request(self, gateway):
        gateway._client.refunds.create.side_effect = stripe.InvalidRequestError(
            "Refund amount is greater than unrefunded amount", "amount", code="amount_too_large"
        )

        with pytest.raises(GatewayRequestError) as exc_info:
            gateway.create_refund({"payment_intent": "pi_1", "amount": 99999})

        assert exc_info.value.code == "amount_too_large"
        assert exc_info.value.retryable is False

    def test_paging_error_translated(self, gateway):
        page = MagicMock()
        page.auto_paging_iter.side_effect = stripe.APIConnectionError("Network down")
        gateway._client.charges.list.return_value = page

        with pytest.raises(GatewayConnectionError):
            gateway.list_charges("pi_1")


class TestObjectModels:
    """Test building object models from Stripe payloads."""

    def test_legacy_charges_list(self):
        intent = IntentObject.from_stripe({
            "id": "pi_1",
            "status": "succeeded",
            "charges": {"data": [{"id": "ch_new", "amount": 500}, {"id": "ch_old"}]},
            "metadata": {"orderable_id": 12, "empty": None},
        })

        assert intent.latest_charge.id == "ch_new"
        assert intent.metadata == {"orderable_id": "12"}

    def test_unexpanded_latest_charge(self):
        intent = IntentObject.from_stripe({"id": "pi_1", "latest_charge": "ch_1"})
        assert intent.latest_charge.id == "ch_1"

    def test_payment_method_card_details(self):
        pm = PaymentMethodObject.from_stripe({
            "id": "pm_1",
            "customer": {"id": "cus_1"},
            "card": {
                "brand": "mastercard",
                "checks": {"cvc_check": "fail"},
                "three_d_secure_usage": {"supported": False},
            },
        })

        assert pm.customer == "cus_1"
        assert pm.card.checks.cvc_check == "fail"
        assert pm.card.three_d_secure_supported is False
