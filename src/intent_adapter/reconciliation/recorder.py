"""Writes gateway truth about a payment intent onto a ledger row."""

import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import Transaction, LocalStatus
from ..database.repository import PaymentProviderCustomerRepository
from ..gateway import PaymentGateway, IntentObject, PaymentMethodObject, GatewayError
from .outcome import Outcome

logger = logging.getLogger(__name__)


class Recorder:
    """Applies a retrieved intent to a ledger row and persists it."""

    def __init__(self, session: AsyncSession, gateway: PaymentGateway, payment_provider: str):
        self.session = session
        self.gateway = gateway
        self.payment_provider = payment_provider
        self.customers = PaymentProviderCustomerRepository(session)

    def fetch_payment_method(self, intent: IntentObject) -> Outcome[PaymentMethodObject]:
        """Retrieve the payment method referenced by the intent.

        Returns:
            Outcome holding the payment method, no value when the intent has
            none, or the gateway error.
        """
        if not intent.payment_method:
            return Outcome.success(None)
        try:
            return Outcome.success(self.gateway.retrieve_payment_method(intent.payment_method))
        except GatewayError as e:
            return Outcome.failure(e)

    async def resolve_identity(
        self,
        intent: IntentObject,
        current: Tuple[Optional[str], Optional[str]] = (None, None),
    ) -> Tuple[Optional[str], Optional[str]]:
        """Work out (user_type, user_id) for an intent.

        The locally mapped customer wins; otherwise the intent metadata is
        used, falling back to ``current`` for any value the metadata lacks.
        """
        if intent.customer:
            customer = await self.customers.get_by_customer_id(self.payment_provider, intent.customer)
            if customer is not None:
                return customer.user_type, customer.user_id

        current_type, current_id = current
        return (
            intent.metadata.get("user_type") or current_type,
            intent.metadata.get("user_id") or current_id,
        )

    async def record(
        self,
        intent: IntentObject,
        transaction: Transaction,
        cashier_id: Optional[str] = None,
        retrospective: bool = False,
        through_webhook: bool = False,
    ) -> Transaction:
        """
        Record an intent on a ledger row.

        Args:
            intent: Intent freshly retrieved from the gateway.
            transaction: Row to write to; added to the session if new.
            cashier_id: Acting cashier. The stored value is kept when None.
            retrospective: Whether the recording happens after the fact.
            through_webhook: Whether the recording was triggered by a webhook.

        Returns:
            The persisted row.
        """
        pm_outcome = self.fetch_payment_method(intent)
        if not pm_outcome.ok:
            logger.warning(
                f"Cannot retrieve payment method {intent.payment_method} for recording "
                f"intent {intent.id}: {pm_outcome.error}"
            )
        payment_method = pm_outcome.value

        transaction.livemode = intent.livemode
        transaction.currency = intent.currency
        # amount_received is what was actually captured
        transaction.amount = intent.amount_received
        transaction.amount_escrow = intent.amount_capturable
        transaction.refund = False
        if cashier_id is not None:
            transaction.cashier_id = cashier_id

        transaction.user_type, transaction.user_id = await self.resolve_identity(
            intent, (transaction.user_type, transaction.user_id)
        )

        transaction.status = intent.status
        transaction.success = intent.status == "succeeded"
        if transaction.success:
            transaction.local_status = LocalStatus.COMPLETE.value
            charge = intent.latest_charge
            if charge is None:
                logger.critical(f"Payment intent {intent.id} succeeded but its charge is missing")
            elif charge.status != "succeeded":
                logger.critical(
                    f"Payment intent {intent.id} succeeded but charge {charge.id} has status {charge.status}"
                )
            else:
                transaction.amount_refunded = -abs(charge.amount_refunded)
                transaction.transaction_child_id = charge.id

        if payment_method is not None and payment_method.id == intent.payment_method:
            card = payment_method.card
            if card is not None:
                transaction.last_four = card.last4
                transaction.card_type = card.brand
                transaction.address_matched = card.checks.address_line1_check == "pass"
                transaction.cvc_matched = card.checks.cvc_check == "pass"
                transaction.postcode_matched = card.checks.address_postal_code_check == "pass"
                transaction.threed_secure = bool(card.three_d_secure_supported)
        elif intent.payment_method and pm_outcome.ok:
            logger.critical(
                f"Payment method {payment_method.id if payment_method else None} does not match "
                f"{intent.payment_method} referenced by intent {intent.id}"
            )

        transaction.retrospective = retrospective
        transaction.through_webhook = through_webhook

        if transaction not in self.session:
            self.session.add(transaction)
        await self.session.flush()
        logger.info(
            f"Recorded intent {intent.id} on transaction {transaction.pid} "
            f"(status={transaction.status}, amount={transaction.amount})"
        )
        return transaction
