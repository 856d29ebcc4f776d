"""
Stripe payment-intent provider.

Drives the payment lifecycle against the gateway and keeps the transaction
ledger converged with it: initiation, charge by retrieval, refunds, syncing
and the charge half of webhook handling.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable, List

from sqlalchemy.ext.asyncio import AsyncSession

from .config import ProviderConfig
from .customers import CustomerService
from .database.models import (
    Transaction,
    TransactionFamily,
    LocalStatus,
    PaymentProviderCustomer,
    PaymentProviderCustomerPaymentMethod,
)
from .database.repository import TransactionRepository, PaymentMethodRepository
from .gateway import (
    PaymentGateway,
    StripeGateway,
    IntentObject,
    GatewayError,
    VALID_REFUND_REASONS,
)
from .orders import Order, CustomerData
from .payment_methods import PaymentMethodService
from .reconciliation import Outcome, OperationFailed, TransactionMatcher, Recorder, SyncEngine
from .responses import PaymentResponse, PaymentMethodResponse, SimpleResponse, ResponseType
from .webhooks.events import EventType

logger = logging.getLogger(__name__)

PROVIDER = "stripe_intent"

# Attributes copied onto an existing row when a row is rebuilt from intent metadata
RECONSTRUCT_FIELDS = (
    "transaction_child_id", "amount", "currency", "user_type", "user_id",
    "cashier_id", "orderable_amount", "livemode",
)

# Stripe caps the statement descriptor suffix at 22 characters
STATEMENT_DESCRIPTOR_SUFFIX_MAX = 22


def _clean_metadata(values: Dict[str, Any]) -> Dict[str, str]:
    return {k: str(v) for k, v in values.items() if v is not None}


class StripeIntentProvider:
    """
    Capability object for one Stripe account and tenant.

    Every operation returns a structured response. Precondition denials and
    gateway errors are reported through the response; anything else is
    logged and re-raised.
    """

    PROVIDER = PROVIDER

    def __init__(
        self,
        session: AsyncSession,
        config: ProviderConfig,
        gateway: Optional[PaymentGateway] = None,
        config_resolver: Optional[Callable[[str], ProviderConfig]] = None,
        gateway_factory: Optional[Callable[[ProviderConfig], PaymentGateway]] = None,
    ):
        """Initialize the provider.

        Args:
            session: Database session the ledger is written through.
            config: Keys, webhook settings and sync toggles.
            gateway: Gateway client; a StripeGateway is built from config if omitted.
            config_resolver: Looks up the configuration of another tenant.
            gateway_factory: Builds the gateway for a resolved configuration.
        """
        self.session = session
        self.config_resolver = config_resolver
        self.gateway_factory = gateway_factory or StripeGateway
        self.transactions = TransactionRepository(session)
        self.payment_methods = PaymentMethodRepository(session)
        self.matcher = TransactionMatcher(session)
        self._configure(config, gateway or self.gateway_factory(config))

    def _configure(self, config: ProviderConfig, gateway: PaymentGateway) -> None:
        self.config = config
        self.tenant_id = config.tenant_id
        self.gateway = gateway
        self.recorder = Recorder(self.session, gateway, PROVIDER)
        self.sync_engine = SyncEngine(
            self.session,
            gateway,
            PROVIDER,
            sync_refunds=config.sync_refunds,
            sync_unsuccessful_charges=config.sync_unsuccessful_charges,
            recorder=self.recorder,
        )

    def use_tenant(self, tenant_id: Optional[str]) -> None:
        """Switch to another tenant, re-resolving configuration and client."""
        if not tenant_id or tenant_id == self.tenant_id:
            return
        if self.config_resolver is not None:
            config = self.config_resolver(tenant_id).model_copy(update={"tenant_id": tenant_id})
            self._configure(config, self.gateway_factory(config))
        else:
            self._configure(self.config.model_copy(update={"tenant_id": tenant_id}), self.gateway)
        logger.info(f"Switched provider to tenant {tenant_id}")

    def customer(self) -> CustomerService:
        return CustomerService(self.session, self.gateway, PROVIDER, tenant_id=self.tenant_id)

    def payment_method(self, customer_data: Optional[CustomerData] = None) -> PaymentMethodService:
        return PaymentMethodService(
            self.session,
            self.gateway,
            PROVIDER,
            customers=self.customer(),
            customer_data=customer_data,
            tenant_id=self.tenant_id,
        )

    def authorise_provider_transaction(self, transaction: Transaction) -> Optional[str]:
        """
        Check that this provider may act on the transaction.

        Returns:
            None when permitted, otherwise the reason for the denial.
        """
        if transaction.payment_provider != PROVIDER:
            return "Unauthorised payment transaction with provider"
        if bool(transaction.livemode) != self.gateway.livemode:
            return "Livemode mismatch"
        return None

    def _deny(self, response, transaction: Transaction, operation: str) -> bool:
        reason = self.authorise_provider_transaction(transaction)
        if reason is None:
            return False
        logger.warning(
            f"Refusing to {operation} transaction {transaction.pid} "
            f"(provider={transaction.payment_provider}, livemode={transaction.livemode}): {reason}"
        )
        response.message = reason
        response.errors = [reason]
        return True

    # Initiation
    async def init(
        self,
        order: Order,
        customer: CustomerData,
        amount: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
        transaction: Optional[Transaction] = None,
        cashier_id: Optional[str] = None,
    ) -> PaymentResponse:
        """
        Create or update the payment intent for an order.

        Args:
            order: What is being paid for.
            customer: Who is paying. Non-guests get a gateway customer and the
                card is set up for future on-session use.
            amount: Amount to request; defaults to the order amount.
            data: Optional payment method selection (``payment_method_id``,
                ``payment_method_pid`` or ``payment_method``).
            transaction: Existing row to reuse instead of creating one.
            cashier_id: Acting cashier, if any.

        Returns:
            PaymentResponse carrying the row and, on success, the publishable
            key and client secret needed to confirm in the browser.
        """
        data = data or {}
        amount = order.amount if amount is None else amount
        response = PaymentResponse(type=ResponseType.INIT)

        if transaction is None:
            transaction = await self.transactions.add(
                Transaction(
                    payment_provider=PROVIDER,
                    transaction_family=TransactionFamily.PAYMENT.value,
                    orderable_id=order.orderable_id,
                    orderable_amount=amount,
                    amount=0,
                    currency=order.currency.lower(),
                    local_status=LocalStatus.INIT.value,
                    success=False,
                    cashier_id=cashier_id,
                    user_type=customer.user_type,
                    user_id=customer.user_id,
                    livemode=self.gateway.livemode,
                )
            )
        response.transaction = transaction

        try:
            params = await self._intent_params(order, customer, amount, data, transaction, cashier_id)
            intent = None
            if transaction.transaction_family_id:
                try:
                    intent = self.gateway.update_payment_intent(transaction.transaction_family_id, params)
                except GatewayError as e:
                    logger.info(
                        f"Could not update intent {transaction.transaction_family_id} "
                        f"for transaction {transaction.pid}, creating a new one: {e}"
                    )
            if intent is None:
                intent = self.gateway.create_payment_intent(params)
        except GatewayError as e:
            logger.error(
                f"Error initialising payment for transaction {transaction.pid} "
                f"(order={order.orderable_id}, cashier={cashier_id}, "
                f"customer={customer.user_type}:{customer.user_id}, options={data}): {e}"
            )
            response.message = "Error occurred"
            response.errors = ["There was an error while initialising payment. Please contact us"]
            return response
        except Exception:
            logger.exception(f"Unexpected failure initialising payment for transaction {transaction.pid}")
            raise

        if transaction.transaction_family_id != intent.id or transaction.orderable_amount != amount:
            transaction.transaction_family_id = intent.id
            transaction.orderable_amount = amount
            transaction.amount = 0
            await self.session.flush()

        response.success = bool(intent.client_secret)
        response.client_side_data = {
            "publishable_key": self.config.active_publishable_key,
            "client_secret": intent.client_secret,
        }
        return response

    async def _intent_params(
        self,
        order: Order,
        customer: CustomerData,
        amount: int,
        data: Dict[str, Any],
        transaction: Transaction,
        cashier_id: Optional[str],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": order.currency.lower(),
            "metadata": _clean_metadata({
                "tenant_id": self.tenant_id,
                "transaction_pid": transaction.pid,
                "orderable_id": order.orderable_id,
                "cashier_id": cashier_id,
                "user_type": customer.user_type,
                "user_id": customer.user_id,
                "orderable_amount": amount,
            }),
            "statement_descriptor_suffix": f"Order #{order.orderable_id}"[:STATEMENT_DESCRIPTOR_SUFFIX_MAX],
        }
        if customer.email:
            params["receipt_email"] = customer.email
        if order.description:
            params["description"] = order.description

        provider_customer = await self.customer().to_payment_provider_customer_or_create(customer)
        if provider_customer is not None:
            params["customer"] = provider_customer.payment_provider_customer_id
            params["setup_future_usage"] = "on_session"
            payment_method = await self._select_payment_method(provider_customer, data)
            if payment_method is not None:
                params["payment_method"] = payment_method.payment_provider_payment_method_id
        return params

    async def _select_payment_method(
        self,
        customer: PaymentProviderCustomer,
        data: Dict[str, Any],
    ) -> Optional[PaymentProviderCustomerPaymentMethod]:
        """Pick one of the customer's saved methods by gateway id, then pid, then internal id.

        Only the first selector supplied is searched; an unmatched selector
        selects nothing, even when a later one would match.
        """
        tiers = (
            ("payment_provider_payment_method_id", data.get("payment_method_id")),
            ("pid", data.get("payment_method_pid")),
            ("id", data.get("payment_method")),
        )
        selected = next(((attr, wanted) for attr, wanted in tiers if wanted not in (None, "")), None)
        if selected is None:
            return None

        attr, wanted = selected
        for payment_method in await self.payment_methods.list_for_customer(customer.id):
            if str(getattr(payment_method, attr)) == str(wanted):
                return payment_method
        logger.warning(f"No saved payment method of customer {customer.pid} has {attr}={wanted}")
        return None

    # Charge
    async def charge(
        self,
        transaction: Transaction,
        data: Optional[Dict[str, Any]] = None,
    ) -> PaymentResponse:
        return await self._charge_by_retrieval(transaction, data or {})

    async def cashier_charge(
        self,
        cashier_id: str,
        transaction: Transaction,
        data: Optional[Dict[str, Any]] = None,
    ) -> PaymentResponse:
        return await self._charge_by_retrieval(transaction, data or {}, cashier_id=cashier_id)

    async def _charge_by_retrieval(
        self,
        transaction: Transaction,
        data: Dict[str, Any],
        cashier_id: Optional[str] = None,
    ) -> PaymentResponse:
        """
        Confirm a payment by reading the intent back from the gateway.

        Confirmation itself happened in the browser. The row is only
        recorded when the retrieved intent has succeeded.
        """
        response = PaymentResponse(type=ResponseType.CHARGE)
        if self._deny(response, transaction, "charge"):
            return response

        if not transaction.transaction_family_id:
            response.message = "Missing payment intent id"
            response.errors = ["Missing payment intent id"]
            return response

        try:
            intent = self.gateway.retrieve_payment_intent(transaction.transaction_family_id)
        except GatewayError as e:
            logger.error(
                f"Error confirming payment for transaction {transaction.pid} "
                f"(intent={transaction.transaction_family_id}, cashier={cashier_id}, options={data}): {e}"
            )
            response.message = "Error occurred"
            response.errors = ["There was an error while confirming payment. Please try again"]
            return response
        except Exception:
            logger.exception(f"A problem prevented confirming payment for transaction {transaction.pid}")
            raise

        response.message = intent.status or ""
        if intent.status != "succeeded":
            return response

        response.transaction = await self.recorder.record(
            intent, transaction, cashier_id=cashier_id, retrospective=True
        )
        response.success = True

        if data.get("save_payment_method") in (1, "1", True):
            outcome = await self._save_payment_method(intent, transaction, data)
            if not outcome.ok:
                logger.warning(
                    f"Could not save payment method {intent.payment_method} "
                    f"after charging transaction {transaction.pid}: {outcome.error}"
                )
        return response

    async def _save_payment_method(
        self,
        intent: IntentObject,
        transaction: Transaction,
        data: Dict[str, Any],
    ) -> Outcome[PaymentMethodResponse]:
        if not intent.payment_method:
            return Outcome.failure(OperationFailed("Intent has no payment method"))
        try:
            result = await self.payment_method(transaction.to_customer_data()).save(
                {**data, "payment_method_id": intent.payment_method}
            )
        except GatewayError as e:
            return Outcome.failure(e)
        if not result.success:
            return Outcome.failure(OperationFailed(result.message, result.errors))
        return Outcome.success(result)

    # Refund
    async def refund(
        self,
        cashier_id: Optional[str],
        transaction: Transaction,
        amount: Optional[int] = None,
        description: Optional[str] = None,
    ) -> PaymentResponse:
        """
        Refund all or part of a payment and sync the ledger on success.

        Args:
            cashier_id: Acting cashier, stored in refund metadata.
            transaction: The payment row being refunded.
            amount: Amount to refund; defaults to the captured amount.
            description: Stored in metadata, and sent as the refund reason
                when it is one the gateway accepts.

        Returns:
            PaymentResponse carrying the synced payment row on success.
        """
        response = PaymentResponse(type=ResponseType.REFUND)
        if self._deny(response, transaction, "refund"):
            return response

        if not transaction.transaction_family_id:
            response.message = "Missing payment intent id"
            response.errors = ["Missing payment intent id"]
            return response

        amount = transaction.amount if amount is None else amount
        params: Dict[str, Any] = {
            "amount": amount,
            "payment_intent": transaction.transaction_family_id,
            "metadata": _clean_metadata({
                "tenant_id": self.tenant_id,
                "orderable_id": transaction.orderable_id,
                "transaction_parent_pid": transaction.pid,
                "cashier_id": cashier_id,
                "description": description,
            }),
        }
        if description in VALID_REFUND_REASONS:
            params["reason"] = description

        try:
            refund = self.gateway.create_refund(params)
        except GatewayError as e:
            logger.error(
                f"Error refunding {amount} of transaction {transaction.pid} "
                f"(intent={transaction.transaction_family_id}, cashier={cashier_id}): {e}"
            )
            response.message = str(e)
            response.errors = ["There was an error while processing the refund. Please try again"]
            return response
        except Exception:
            logger.exception(f"A problem prevented refunding transaction {transaction.pid}")
            raise

        response.message = refund.status or ""
        if refund.status != "succeeded":
            return response

        synced = await self.sync_transaction(transaction)
        if synced.transaction is not None:
            response.transaction = synced.transaction
        response.success = True
        return response

    # Sync
    async def sync_transaction(self, transaction: Transaction) -> PaymentResponse:
        """Re-read the intent behind a row, record it, then run the sync engine."""
        response = PaymentResponse(type=ResponseType.SYNC)
        if not transaction.transaction_family_id:
            response.message = "Missing payment intent id"
            response.errors = ["Missing payment intent id"]
            return response

        try:
            intent = self.gateway.retrieve_payment_intent(transaction.transaction_family_id)
        except GatewayError as e:
            logger.error(
                f"Could not retrieve intent {transaction.transaction_family_id} "
                f"to sync transaction {transaction.pid}: {e}"
            )
            response.message = "Could not retrieve payment intent"
            response.errors = ["There was an error while syncing the payment. Please try again"]
            return response
        except Exception:
            logger.exception(f"A problem prevented syncing transaction {transaction.pid}")
            raise

        response.transaction = await self.recorder.record(intent, transaction, retrospective=True)
        response.success = True
        response.message = intent.status or ""

        await self.sync_engine.run(intent)
        return response

    async def sync_range(self, start: datetime, end: datetime, limit: int = 1000) -> List[PaymentResponse]:
        """Sync every postable row of this provider created from start up to, not including, end."""
        rows = await self.transactions.list_syncable(PROVIDER, start, end, limit=limit)
        logger.info(f"Syncing {len(rows)} transaction(s) created between {start} and {end}")
        return [await self.sync_transaction(row) for row in rows]

    # Webhooks
    async def webhook_charge_by_retrieval(self, webhook_intent: IntentObject) -> PaymentResponse:
        """
        Record a succeeded intent announced by a webhook.

        The event payload is not trusted; the intent is retrieved again. The
        row is found by the pid in the intent metadata, or rebuilt from the
        metadata when the row is unknown.
        """
        response = PaymentResponse(type=ResponseType.CHARGE)
        try:
            intent = self.gateway.retrieve_payment_intent(webhook_intent.id)
        except GatewayError as e:
            logger.error(f"Could not retrieve intent {webhook_intent.id} during webhook processing: {e}")
            response.message = "Error occurred in webhook processing"
            response.errors = [str(e)]
            return response

        response.message = intent.status or ""
        if intent.status != "succeeded":
            return response

        transaction = await self.transactions.get_by_pid(intent.metadata.get("transaction_pid"))
        if transaction is None:
            transaction = await self.intent_to_transaction(intent)
        if transaction is None:
            logger.error(f"No transaction could be found or rebuilt for intent {intent.id}")
            response.message = "Missing transaction"
            response.errors = ["Missing transaction"]
            return response

        response.transaction = await self.recorder.record(
            intent, transaction, retrospective=True, through_webhook=True
        )
        response.success = True
        return response

    async def intent_to_transaction(self, intent: IntentObject) -> Optional[Transaction]:
        """Rebuild a ledger row from intent metadata and merge it through the matcher."""
        metadata = intent.metadata
        orderable_id = metadata.get("orderable_id")
        if not orderable_id:
            return None

        try:
            orderable_amount = int(metadata.get("orderable_amount") or intent.amount)
        except ValueError:
            orderable_amount = intent.amount

        candidate = Transaction(
            payment_provider=PROVIDER,
            transaction_family=TransactionFamily.PAYMENT.value,
            transaction_family_id=intent.id,
            transaction_child_id=intent.latest_charge.id if intent.latest_charge else None,
            orderable_id=orderable_id,
            orderable_amount=orderable_amount,
            amount=intent.amount,
            currency=intent.currency,
            local_status=LocalStatus.INIT.value,
            success=False,
            cashier_id=metadata.get("cashier_id"),
            user_type=metadata.get("user_type"),
            user_id=metadata.get("user_id"),
            livemode=intent.livemode,
        )
        transaction = await self.matcher.upsert(candidate, RECONSTRUCT_FIELDS)
        logger.info(f"Rebuilt transaction {transaction.pid} from intent {intent.id}")
        return transaction

    # Lifecycle
    def _delete_webhook(self) -> bool:
        url = self.config.webhook_url()
        deleted = False
        for endpoint in self.gateway.list_webhook_endpoints():
            if endpoint.url == url:
                self.gateway.delete_webhook_endpoint(endpoint.id)
                deleted = True
        return deleted

    async def up(self) -> SimpleResponse:
        """Register the webhook endpoint for every handled event type."""
        response = SimpleResponse(type=ResponseType.UP)
        try:
            self._delete_webhook()
            self.gateway.create_webhook_endpoint(self.config.webhook_url(), EventType.values())
        except GatewayError as e:
            logger.error(f"Could not create webhook at {self.config.webhook_url()}: {e}")
            response.message = "An error occurred"
            response.errors = [str(e)]
            return response

        response.success = True
        response.message = (
            "The Stripe webhook was created successfully. Retrieve the webhook secret "
            "in your Stripe dashboard and set it in your Stripe config"
        )
        return response

    async def down(self) -> SimpleResponse:
        response = SimpleResponse(type=ResponseType.DOWN)
        try:
            self._delete_webhook()
        except GatewayError as e:
            logger.error(f"Could not delete webhook at {self.config.webhook_url()}: {e}")
            response.message = "An error occurred"
            response.errors = [str(e)]
            return response

        response.success = True
        response.message = "Webhooks has been deleted"
        return response

    async def ping(self) -> SimpleResponse:
        """Check the configured credentials by listing one intent."""
        response = SimpleResponse(type=ResponseType.PING)
        try:
            self.gateway.list_payment_intents(limit=1)
        except GatewayError as e:
            logger.error(f"Ping failed: {e}")
            response.message = str(e)
            response.errors = [
                "There might be an issue with communicating with Stripe API with the current configurations"
            ]
            return response

        response.success = True
        response.message = "Stripe API is reachable"
        return response
