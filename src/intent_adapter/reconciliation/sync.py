"""Mirrors the refunds and unsuccessful charges of an intent into the ledger."""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import Transaction, TransactionFamily, LocalStatus
from ..database.repository import TransactionRepository
from ..gateway import PaymentGateway, IntentObject, GatewayError
from .matcher import TransactionMatcher
from .outcome import Outcome
from .recorder import Recorder

logger = logging.getLogger(__name__)

# Attributes copied onto an existing row when a refund is re-synced
REFUND_FIELDS = (
    "currency", "amount", "orderable_amount", "refund", "cashier_id",
    "amount_refunded", "transaction_family", "transaction_family_id",
    "transaction_child_id", "local_status", "status", "success",
    "orderable_id", "payment_provider", "parent_id", "display_only", "livemode",
)

# Attributes copied onto an existing row when a failed charge is re-synced
CHARGE_FIELDS = (
    "currency", "amount", "orderable_amount", "cashier_id", "user_type", "user_id",
    "transaction_family", "transaction_family_id", "transaction_child_id",
    "local_status", "status", "success", "orderable_id", "payment_provider",
    "display_only", "livemode",
)


class SyncEngine:
    """
    Downloads the refunds and unsuccessful charges of an intent and records
    each as its own display-only ledger row through the matcher.

    Both downloads are toggled per instance. Their failures are returned as
    Outcome values and never fail the surrounding sync.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        payment_provider: str,
        sync_refunds: bool = True,
        sync_unsuccessful_charges: bool = False,
        recorder: Optional[Recorder] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.payment_provider = payment_provider
        self.sync_refunds_enabled = sync_refunds
        self.sync_unsuccessful_charges_enabled = sync_unsuccessful_charges
        self.recorder = recorder or Recorder(session, gateway, payment_provider)
        self.matcher = TransactionMatcher(session)
        self.transactions = TransactionRepository(session)

    async def run(self, intent: IntentObject) -> None:
        """Run the enabled downloads for an intent, logging any failure."""
        if self.sync_refunds_enabled:
            outcome = await self.sync_refunds(intent)
            if not outcome.ok:
                logger.warning(f"Syncing refunds of intent {intent.id} failed: {outcome.error}")

        if self.sync_unsuccessful_charges_enabled:
            outcome = await self.sync_unsuccessful_charges(intent)
            if not outcome.ok:
                logger.warning(f"Syncing unsuccessful charges of intent {intent.id} failed: {outcome.error}")

    async def sync_refunds(self, intent: IntentObject) -> Outcome[List[Transaction]]:
        """
        Record every refund of the intent as a display-only refund row.

        Args:
            intent: Parent intent of the refunds.

        Returns:
            Outcome holding the refund rows, or the gateway error.
        """
        try:
            refunds = self.gateway.list_refunds(intent.id)
        except GatewayError as e:
            return Outcome.failure(e)

        rows = []
        for refund in refunds:
            # Refunds created outside this system carry no originating pid
            parent_id = None
            parent_pid = refund.metadata.get("transaction_parent_pid")
            if parent_pid:
                parent = await self.transactions.get_by_pid(parent_pid)
                parent_id = parent.id if parent else None

            candidate = Transaction(
                payment_provider=self.payment_provider,
                transaction_family=TransactionFamily.PAYMENT.value,
                transaction_family_id=refund.payment_intent or intent.id,
                transaction_child_id=refund.id,
                parent_id=parent_id,
                orderable_id=refund.metadata.get("orderable_id"),
                orderable_amount=0,
                amount=0,
                amount_refunded=-abs(refund.amount),
                currency=refund.currency,
                status=refund.status,
                success=refund.status == "succeeded",
                local_status=LocalStatus.COMPLETE.value,
                refund=True,
                display_only=True,
                cashier_id=refund.metadata.get("cashier_id"),
                livemode=intent.livemode,
            )
            rows.append(await self.matcher.upsert(candidate, REFUND_FIELDS))

        logger.info(f"Synced {len(rows)} refund(s) of intent {intent.id}")
        return Outcome.success(rows)

    async def sync_unsuccessful_charges(self, intent: IntentObject) -> Outcome[List[Transaction]]:
        """
        Record every charge attempt of the intent that did not succeed as a
        display-only row with zero amount.

        Returns:
            Outcome holding the charge rows, or the gateway error.
        """
        try:
            charges = self.gateway.list_charges(intent.id)
        except GatewayError as e:
            return Outcome.failure(e)

        user_type, user_id = await self.recorder.resolve_identity(intent)

        rows = []
        for charge in charges:
            if charge.status == "succeeded":
                continue

            candidate = Transaction(
                payment_provider=self.payment_provider,
                transaction_family=TransactionFamily.PAYMENT.value,
                transaction_family_id=intent.id,
                transaction_child_id=charge.id,
                orderable_id=intent.metadata.get("orderable_id"),
                orderable_amount=charge.amount,
                amount=0,
                currency=charge.currency,
                status=charge.status,
                success=False,
                local_status=LocalStatus.COMPLETE.value,
                display_only=True,
                cashier_id=intent.metadata.get("cashier_id"),
                user_type=user_type,
                user_id=user_id,
                livemode=intent.livemode,
            )
            rows.append(await self.matcher.upsert(candidate, CHARGE_FIELDS))

        logger.info(f"Synced {len(rows)} unsuccessful charge(s) of intent {intent.id}")
        return Outcome.success(rows)
