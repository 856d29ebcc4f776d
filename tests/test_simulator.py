"""Tests for the SimulatorGateway."""

import pytest

from intent_adapter.gateway import GatewayRequestError, GatewayConnectionError, SimulatorGateway


@pytest.fixture
def confirmed(simulator):
    intent = simulator.create_payment_intent({"amount": 1000, "currency": "GBP"})
    return simulator.confirm_payment_intent(intent.id)


class TestSimulatorIntents:
    """Test payment intent lifecycle."""

    def test_create(self, simulator):
        intent = simulator.create_payment_intent({
            "amount": 1000,
            "currency": "GBP",
            "metadata": {"orderable_id": 7},
        })

        assert intent.id.startswith("pi_sim_")
        assert intent.status == "requires_payment_method"
        assert intent.currency == "gbp"
        assert intent.client_secret.startswith(intent.id)
        assert intent.metadata == {"orderable_id": "7"}
        assert intent.latest_charge is None

    def test_create_requires_amount(self, simulator):
        with pytest.raises(GatewayRequestError):
            simulator.create_payment_intent({"currency": "gbp"})

    def test_confirm_attaches_latest_charge(self, simulator, confirmed):
        assert confirmed.status == "succeeded"
        assert confirmed.amount_received == 1000
        assert confirmed.latest_charge.status == "succeeded"
        assert confirmed.latest_charge.payment_intent == confirmed.id

    def test_failed_attempt_then_success(self, simulator):
        intent = simulator.create_payment_intent({"amount": 1000, "currency": "gbp"})
        failed = simulator.confirm_payment_intent(intent.id, succeed=False)
        succeeded = simulator.confirm_payment_intent(intent.id)

        assert failed.status == "requires_payment_method"
        assert [c.status for c in simulator.list_charges(intent.id)] == ["succeeded", "failed"]
        assert succeeded.latest_charge.id != failed.latest_charge.id

    def test_authorise_only(self, simulator):
        intent = simulator.create_payment_intent({"amount": 1000, "currency": "gbp"})
        intent = simulator.confirm_payment_intent(intent.id, capture=False)

        assert intent.status == "requires_capture"
        assert intent.amount_capturable == 1000

    def test_update_after_success_rejected(self, simulator, confirmed):
        with pytest.raises(GatewayRequestError) as exc_info:
            simulator.update_payment_intent(confirmed.id, {"amount": 5})
        assert exc_info.value.code == "payment_intent_unexpected_state"

    def test_returned_objects_are_copies(self, simulator, confirmed):
        confirmed.metadata["changed"] = "yes"
        assert "changed" not in simulator.retrieve_payment_intent(confirmed.id).metadata


class TestSimulatorRefunds:
    """Test refund validation."""

    def test_partial_then_remaining(self, simulator, confirmed):
        simulator.create_refund({"payment_intent": confirmed.id, "amount": 400})
        rest = simulator.create_refund({"payment_intent": confirmed.id})

        assert rest.amount == 600
        assert simulator.charges[confirmed.latest_charge.id].amount_refunded == 1000

    def test_over_refund(self, simulator, confirmed):
        with pytest.raises(GatewayRequestError) as exc_info:
            simulator.create_refund({"payment_intent": confirmed.id, "amount": 1001})
        assert exc_info.value.code == "amount_too_large"

    def test_fully_refunded(self, simulator, confirmed):
        simulator.create_refund({"payment_intent": confirmed.id})
        with pytest.raises(GatewayRequestError) as exc_info:
            simulator.create_refund({"payment_intent": confirmed.id})
        assert exc_info.value.code == "charge_already_refunded"

    def test_unconfirmed_intent(self, simulator):
        intent = simulator.create_payment_intent({"amount": 1000, "currency": "gbp"})
        with pytest.raises(GatewayRequestError):
            simulator.create_refund({"payment_intent": intent.id})

    def test_invalid_reason(self, simulator, confirmed):
        with pytest.raises(GatewayRequestError):
            simulator.create_refund({"payment_intent": confirmed.id, "reason": "changed_mind"})

    def test_list_refunds_newest_first(self, simulator, confirmed):
        first = simulator.create_refund({"payment_intent": confirmed.id, "amount": 100})
        second = simulator.create_refund({"payment_intent": confirmed.id, "amount": 200})

        assert [r.id for r in simulator.list_refunds(confirmed.id)] == [second.id, first.id]


class TestSimulatorCustomers:
    """Test customers and payment methods."""

    def test_attach_and_list(self, simulator):
        customer = simulator.create_customer({"email": "a@example.com", "metadata": {"user_id": 1}})
        pm = simulator.add_payment_method()

        simulator.attach_payment_method(pm.id, customer.id)

        listed = simulator.list_customer_payment_methods(customer.id)
        assert [p.id for p in listed] == [pm.id]
        assert customer.metadata == {"user_id": "1"}

    def test_attach_to_unknown_customer(self, simulator):
        pm = simulator.add_payment_method()
        with pytest.raises(GatewayRequestError):
            simulator.attach_payment_method(pm.id, "cus_missing")

    def test_detach_unattached(self, simulator):
        pm = simulator.add_payment_method()
        with pytest.raises(GatewayRequestError):
            simulator.detach_payment_method(pm.id)

    def test_delete_customer_detaches_methods(self, simulator):
        customer = simulator.create_customer({})
        pm = simulator.add_payment_method(customer=customer.id)

        deleted = simulator.delete_customer(customer.id)

        assert deleted.deleted is True
        assert simulator.payment_methods[pm.id].customer is None


class TestSimulatorInstrumentation:
    """Test call recording and error injection."""

    def test_calls_recorded(self, simulator):
        simulator.list_webhook_endpoints()
        simulator.create_customer({})

        assert simulator.calls == ["list_webhook_endpoints", "create_customer"]
        simulator.clear_calls()
        assert simulator.calls == []

    def test_raise_on_fires_once(self, simulator):
        simulator.raise_on["list_webhook_endpoints"] = GatewayConnectionError("timeout")

        with pytest.raises(GatewayConnectionError):
            simulator.list_webhook_endpoints()
        assert simulator.list_webhook_endpoints() == []

    def test_livemode(self):
        simulator = SimulatorGateway(livemode=True)
        intent = simulator.create_payment_intent({"amount": 1, "currency": "gbp"})

        assert simulator.livemode is True
        assert intent.livemode is True

    def test_webhook_endpoints(self, simulator):
        endpoint = simulator.create_webhook_endpoint("https://shop.example.com/stripe/webhook", ["customer.deleted"])

        assert endpoint.secret.startswith("whsec_")
        simulator.delete_webhook_endpoint(endpoint.id)
        with pytest.raises(GatewayRequestError):
            simulator.delete_webhook_endpoint(endpoint.id)
