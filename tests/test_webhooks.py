"""Tests for webhook routing, tenant resolution and handlers."""

import time

from intent_adapter.config import ProviderConfig
from intent_adapter.database import (
    PaymentMethodRepository,
    PaymentProviderCustomerRepository,
    TransactionRepository,
)
from intent_adapter.provider import StripeIntentProvider, PROVIDER
from intent_adapter.webhooks import EventType, WebhookRouter

SECRET = "whsec_test_secret"


def _intent_dict(intent):
    data = intent.model_dump()
    data["latest_charge"] = intent.latest_charge.id if intent.latest_charge else None
    return data


class TestRouterBasics:
    """Tests for request validation and dispatch."""

    async def test_invalid_json(self, provider):
        assert await WebhookRouter(provider).handle(b"{not json") == (400, "Invalid input")

    async def test_non_object_body(self, provider):
        assert await WebhookRouter(provider).handle(b"[1, 2]") == (400, "Invalid input")

    async def test_data_not_an_object(self, provider):
        payload = '{"id": "evt_1", "type": "payment_intent.succeeded", "data": "x"}'
        assert await WebhookRouter(provider).handle(payload) == (400, "Invalid input")

    async def test_event_object_not_an_object(self, provider):
        payload = '{"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": []}}'
        assert await WebhookRouter(provider).handle(payload) == (400, "Invalid input")

    async def test_missing_data(self, provider):
        payload = '{"id": "evt_1", "type": "customer.deleted"}'
        assert await WebhookRouter(provider).handle(payload) == (400, "Invalid input")

    async def test_unknown_event_type(self, provider, event_payload):
        payload = event_payload("charge.captured", {"object": "charge", "id": "ch_1"})

        status, text = await WebhookRouter(provider).handle(payload)

        assert status == 404
        assert text == "Unknown webhook - it may not have been set up"

    async def test_object_type_mismatch(self, provider, event_payload):
        payload = event_payload("payment_intent.succeeded", {"object": "customer", "id": "cus_1"})

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 422

    async def test_missing_tenant(self, provider, event_payload):
        payload = event_payload("payment_intent.succeeded", {"object": "payment_intent", "id": "pi_1"})

        status, text = await WebhookRouter(provider).handle(payload)

        assert status == 422
        assert text == "There was an issue with processing the webhook"

    def test_event_types(self):
        assert EventType.values() == [
            "payment_intent.succeeded",
            "payment_method.attached",
            "payment_method.updated",
            "payment_method.automatically_updated",
            "payment_method.detached",
            "customer.deleted",
        ]


class TestSignatureVerification:
    """Tests for signature checks with a configured secret."""

    async def _signed_provider(self, db_session, simulator):
        config = ProviderConfig(test_secret_key="sk_test_x", webhook_secret=SECRET)
        return StripeIntentProvider(db_session, config, gateway=simulator)

    async def test_valid_signature(self, db_session, simulator, order, guest, signer, event_payload):
        provider = await self._signed_provider(db_session, simulator)
        init = await provider.init(order, guest)
        intent = simulator.confirm_payment_intent(init.transaction.transaction_family_id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        status, text = await WebhookRouter(provider).handle(payload, signer(payload, SECRET))

        assert (status, text) == (200, "Webhook Handled")

    async def test_bad_signature(self, db_session, simulator, order, guest, signer, event_payload):
        provider = await self._signed_provider(db_session, simulator)
        init = await provider.init(order, guest)
        intent = simulator.confirm_payment_intent(init.transaction.transaction_family_id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        status, _ = await WebhookRouter(provider).handle(payload, signer(payload, "whsec_wrong"))

        assert status == 403
        assert init.transaction.success is False

    async def test_stale_signature(self, db_session, simulator, order, guest, signer, event_payload):
        provider = await self._signed_provider(db_session, simulator)
        init = await provider.init(order, guest)
        intent = simulator.confirm_payment_intent(init.transaction.transaction_family_id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))
        header = signer(payload, SECRET, timestamp=int(time.time()) - 3600)

        status, _ = await WebhookRouter(provider).handle(payload, header)

        assert status == 403

    async def test_missing_header(self, db_session, simulator, order, guest, event_payload):
        provider = await self._signed_provider(db_session, simulator)
        init = await provider.init(order, guest)
        intent = simulator.confirm_payment_intent(init.transaction.transaction_family_id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        status, _ = await WebhookRouter(provider).handle(payload, None)

        assert status == 403


class TestPaymentIntentSucceeded:
    """Tests for the payment_intent.succeeded handler."""

    async def test_records_known_transaction(self, provider, simulator, order, guest, event_payload):
        """Test the webhook converges the row the browser flow left behind."""
        init = await provider.init(order, guest)
        intent = simulator.confirm_payment_intent(init.transaction.transaction_family_id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 200
        row = init.transaction
        assert row.success is True
        assert row.through_webhook is True
        assert row.retrospective is True
        assert row.transaction_child_id == intent.latest_charge.id

    async def test_webhook_then_charge_converge(self, db_session, provider, simulator, order, guest, event_payload):
        """Test that webhook and charge on the same intent leave one postable row."""
        init = await provider.init(order, guest)
        intent = simulator.confirm_payment_intent(init.transaction.transaction_family_id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        await WebhookRouter(provider).handle(payload)
        await provider.charge(init.transaction)
        await WebhookRouter(provider).handle(payload)

        rows = await TransactionRepository(db_session).list_by_family_id(intent.id)
        assert len(rows) == 1
        assert rows[0].success is True

    async def test_rebuilds_unknown_transaction(self, db_session, provider, simulator, event_payload):
        """Test a row is reconstructed from metadata when the pid is unknown."""
        intent = simulator.create_payment_intent({
            "amount": 1200,
            "currency": "gbp",
            "metadata": {
                "tenant_id": "default",
                "orderable_id": "555",
                "orderable_amount": "1200",
                "user_type": "member",
                "user_id": "42",
                "cashier_id": "3",
            },
        })
        intent = simulator.confirm_payment_intent(intent.id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 200
        rows = await TransactionRepository(db_session).list_by_family_id(intent.id)
        assert len(rows) == 1
        row = rows[0]
        assert row.payment_provider == PROVIDER
        assert row.orderable_id == "555"
        assert row.orderable_amount == 1200
        assert row.amount == 1200
        assert row.user_id == "42"
        assert row.cashier_id == "3"
        assert row.success is True
        assert row.through_webhook is True

    async def test_rebuild_merges_into_placeholder(self, db_session, provider, simulator, order, guest, event_payload):
        """Test a lost pid still lands on the existing placeholder."""
        init = await provider.init(order, guest)
        intent_id = init.transaction.transaction_family_id
        simulator.intents[intent_id].metadata["transaction_pid"] = "unknown-pid"
        intent = simulator.confirm_payment_intent(intent_id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 200
        rows = await TransactionRepository(db_session).list_by_family_id(intent_id)
        assert rows == [init.transaction]
        assert init.transaction.success is True

    async def test_missing_orderable_is_not_processed(self, provider, simulator, event_payload):
        intent = simulator.create_payment_intent({
            "amount": 1200,
            "currency": "gbp",
            "metadata": {"tenant_id": "default"},
        })
        intent = simulator.confirm_payment_intent(intent.id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 422

    async def test_handler_exception_answers_422(self, provider, simulator, order, guest, event_payload):
        init = await provider.init(order, guest)
        intent = simulator.confirm_payment_intent(init.transaction.transaction_family_id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))
        simulator.raise_on["retrieve_payment_intent"] = RuntimeError("boom")

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 422


class TestTenantSwitching:
    """Tests for per-tenant configuration during webhook handling."""

    async def test_resolver_used_for_other_tenant(self, db_session, config, simulator, event_payload):
        resolved = []

        def resolver(tenant_id):
            resolved.append(tenant_id)
            return ProviderConfig(test_secret_key="sk_test_other")

        provider = StripeIntentProvider(
            db_session,
            config,
            gateway=simulator,
            config_resolver=resolver,
            gateway_factory=lambda cfg: simulator,
        )
        intent = simulator.create_payment_intent({
            "amount": 100,
            "currency": "gbp",
            "metadata": {"tenant_id": "acme", "orderable_id": "9"},
        })
        intent = simulator.confirm_payment_intent(intent.id)
        payload = event_payload("payment_intent.succeeded", _intent_dict(intent))

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 200
        assert resolved == ["acme"]
        assert provider.tenant_id == "acme"
        assert provider.config.test_secret_key == "sk_test_other"


class TestPaymentMethodEvents:
    """Tests for payment method and customer events."""

    async def test_attached_to_known_customer(self, db_session, provider, simulator, member, event_payload):
        customer = await provider.customer().to_payment_provider_customer_or_create(member)
        pm = simulator.add_payment_method(customer=customer.payment_provider_customer_id)
        payload = event_payload("payment_method.attached", pm.model_dump())

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 200
        stored = await PaymentMethodRepository(db_session).list_by_gateway_id(PROVIDER, pm.id)
        assert len(stored) == 1
        assert stored[0].customer_id == customer.id

    async def test_automatically_updated(self, db_session, provider, simulator, member, event_payload):
        pm = simulator.add_payment_method()
        saved = (await provider.payment_method(member).save({"payment_method_id": pm.id})).payment_method
        updated = simulator.update_payment_method(pm.id, {"card": {"exp_year": 2035}})
        payload = event_payload("payment_method.automatically_updated", updated.model_dump())

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 200
        assert saved.expires_at_year == 2035

    async def test_detached(self, db_session, provider, simulator, member, event_payload):
        """Test the tenant is found through the stored copy once the customer is gone."""
        pm = simulator.add_payment_method()
        await provider.payment_method(member).save({"payment_method_id": pm.id})
        detached = simulator.detach_payment_method(pm.id)
        payload = event_payload("payment_method.detached", detached.model_dump())

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 200
        assert await PaymentMethodRepository(db_session).list_by_gateway_id(PROVIDER, pm.id) == []

    async def test_unknown_payment_method_has_no_tenant(self, provider, simulator, event_payload):
        pm = simulator.add_payment_method(customer="cus_unknown")
        payload = event_payload("payment_method.attached", pm.model_dump())

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 422

    async def test_customer_deleted(self, db_session, provider, simulator, member, event_payload):
        customer = await provider.customer().to_payment_provider_customer_or_create(member)
        gateway_id = customer.payment_provider_customer_id
        payload = event_payload("customer.deleted", {
            "object": "customer",
            "id": gateway_id,
            "deleted": True,
            "metadata": {"tenant_id": "default"},
        })

        status, _ = await WebhookRouter(provider).handle(payload)

        assert status == 200
        assert await PaymentProviderCustomerRepository(db_session).get_by_customer_id(PROVIDER, gateway_id) is None
