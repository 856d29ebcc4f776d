"""Repository layer for ledger persistence operations."""

import logging
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, delete, and_, or_, case, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Transaction,
    PaymentProviderCustomer,
    PaymentProviderCustomerPaymentMethod,
    NULL_ORDERABLE_ID,
)

logger = logging.getLogger(__name__)


class TransactionRepository:
    """Repository for Transaction ledger rows."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def add(self, transaction: Transaction) -> Transaction:
        """Persist a new ledger row and assign its primary key."""
        self.session.add(transaction)
        await self.session.flush()
        logger.debug(f"Added transaction {transaction.pid} ({transaction.transaction_family_id})")
        return transaction

    async def get_by_id(self, transaction_id: int) -> Optional[Transaction]:
        result = await self.session.execute(
            select(Transaction).where(Transaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_by_pid(self, pid: str) -> Optional[Transaction]:
        """Get a ledger row by its public id.

        Args:
            pid: Public opaque id of the row.

        Returns:
            Transaction if found, None otherwise.
        """
        if not pid:
            return None
        result = await self.session.execute(
            select(Transaction).where(Transaction.pid == pid)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _family_clause(candidate: Transaction):
        return and_(
            Transaction.payment_provider == candidate.payment_provider,
            Transaction.transaction_family == candidate.transaction_family,
            Transaction.transaction_family_id == candidate.transaction_family_id,
            func.coalesce(Transaction.orderable_id, NULL_ORDERABLE_ID)
            == (candidate.orderable_id or NULL_ORDERABLE_ID),
        )

    async def find_matching(self, candidate: Transaction, limit: int = 2) -> List[Transaction]:
        """Find rows the candidate may update in place.

        A row matches when it shares the candidate's provider, family, family id
        and orderable id (NULL orderable ids compare equal), and is either the
        unsuccessful placeholder with no child id or carries the candidate's
        child id. Display-only candidates match on child id alone.

        Args:
            candidate: Unsaved row derived from a gateway object.
            limit: Maximum number of rows returned.

        Returns:
            Matching rows, a row carrying the candidate's child id first,
            then by primary key.
        """
        placeholder = and_(
            Transaction.transaction_child_id.is_(None),
            Transaction.success.is_(False),
        )
        if candidate.transaction_child_id is None:
            child_clause = placeholder
            ordering = [Transaction.id]
        else:
            exact_child = Transaction.transaction_child_id == candidate.transaction_child_id
            # Display-only rows never take over the postable placeholder.
            child_clause = exact_child if candidate.display_only else or_(placeholder, exact_child)
            ordering = [case((exact_child, 0), else_=1), Transaction.id]

        stmt = (
            select(Transaction)
            .where(self._family_clause(candidate), child_clause)
            .order_by(*ordering)
            .limit(limit)
        )
        if candidate.id is not None:
            stmt = stmt.where(Transaction.id != candidate.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_conflicting(self, candidate: Transaction) -> Optional[Transaction]:
        """Find the row that occupies the candidate's natural key.

        Used after a unique-index violation to locate the row written by a
        concurrent writer.
        """
        result = await self.session.execute(
            select(Transaction)
            .where(
                self._family_clause(candidate),
                func.coalesce(Transaction.transaction_child_id, "")
                == (candidate.transaction_child_id or ""),
            )
            .order_by(Transaction.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_syncable(
        self,
        payment_provider: str,
        start: datetime,
        end: datetime,
        limit: int = 1000,
    ) -> List[Transaction]:
        """List postable rows of a provider created within a time window.

        Args:
            payment_provider: Provider tag to filter by.
            start: Inclusive lower bound on created_at.
            end: Exclusive upper bound on created_at.
            limit: Maximum number of results.

        Returns:
            Rows with a gateway family id, oldest first.
        """
        result = await self.session.execute(
            select(Transaction)
            .where(
                and_(
                    Transaction.payment_provider == payment_provider,
                    Transaction.display_only.is_(False),
                    Transaction.refund.is_(False),
                    Transaction.transaction_family_id.is_not(None),
                    Transaction.created_at >= start,
                    Transaction.created_at < end,
                )
            )
            .order_by(Transaction.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_family_id(self, transaction_family_id: str) -> List[Transaction]:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.transaction_family_id == transaction_family_id)
            .order_by(Transaction.id)
        )
        return list(result.scalars().all())


class PaymentProviderCustomerRepository:
    """Repository for PaymentProviderCustomer rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, customer_id: int) -> Optional[PaymentProviderCustomer]:
        result = await self.session.execute(
            select(PaymentProviderCustomer).where(PaymentProviderCustomer.id == customer_id)
        )
        return result.scalar_one_or_none()

    async def get_by_user(
        self,
        payment_provider: str,
        user_type: Optional[str],
        user_id: Optional[str],
    ) -> Optional[PaymentProviderCustomer]:
        """Get the gateway customer mapped to an internal identity."""
        result = await self.session.execute(
            select(PaymentProviderCustomer).where(
                and_(
                    PaymentProviderCustomer.payment_provider == payment_provider,
                    PaymentProviderCustomer.user_type == user_type,
                    PaymentProviderCustomer.user_id == user_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_by_customer_id(
        self,
        payment_provider: str,
        payment_provider_customer_id: Optional[str],
    ) -> Optional[PaymentProviderCustomer]:
        """Get the local mapping for a gateway customer id."""
        if not payment_provider_customer_id:
            return None
        result = await self.session.execute(
            select(PaymentProviderCustomer).where(
                and_(
                    PaymentProviderCustomer.payment_provider == payment_provider,
                    PaymentProviderCustomer.payment_provider_customer_id == payment_provider_customer_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        payment_provider: str,
        payment_provider_customer_id: str,
        user_type: Optional[str],
        user_id: Optional[str],
        tenant_id: Optional[str] = None,
    ) -> PaymentProviderCustomer:
        """Create a customer mapping.

        Args:
            payment_provider: Provider tag.
            payment_provider_customer_id: Gateway customer id.
            user_type: Internal user type.
            user_id: Internal user id.
            tenant_id: Scope the customer belongs to.

        Returns:
            Created PaymentProviderCustomer instance.
        """
        customer = PaymentProviderCustomer(
            payment_provider=payment_provider,
            payment_provider_customer_id=payment_provider_customer_id,
            user_type=user_type,
            user_id=user_id,
            tenant_id=tenant_id,
        )
        self.session.add(customer)
        await self.session.flush()

        logger.info(f"Created customer mapping {customer.pid} for gateway customer {payment_provider_customer_id}")
        return customer

    async def delete(self, customer: PaymentProviderCustomer) -> None:
        """Delete a customer mapping along with its saved payment methods."""
        await self.session.execute(
            delete(PaymentProviderCustomerPaymentMethod).where(
                PaymentProviderCustomerPaymentMethod.customer_id == customer.id
            )
        )
        await self.session.delete(customer)
        await self.session.flush()
        logger.info(f"Deleted customer mapping {customer.pid}")


class PaymentMethodRepository:
    """Repository for saved PaymentProviderCustomerPaymentMethod rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, payment_method_id: int) -> Optional[PaymentProviderCustomerPaymentMethod]:
        result = await self.session.execute(
            select(PaymentProviderCustomerPaymentMethod).where(
                PaymentProviderCustomerPaymentMethod.id == payment_method_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_pid(self, pid: str) -> Optional[PaymentProviderCustomerPaymentMethod]:
        result = await self.session.execute(
            select(PaymentProviderCustomerPaymentMethod).where(
                PaymentProviderCustomerPaymentMethod.pid == pid
            )
        )
        return result.scalar_one_or_none()

    async def get_by_gateway_id(
        self,
        payment_provider: str,
        payment_provider_payment_method_id: str,
        customer_id: Optional[int] = None,
    ) -> Optional[PaymentProviderCustomerPaymentMethod]:
        """Get a saved method by its gateway id, optionally scoped to a customer."""
        stmt = select(PaymentProviderCustomerPaymentMethod).where(
            and_(
                PaymentProviderCustomerPaymentMethod.payment_provider == payment_provider,
                PaymentProviderCustomerPaymentMethod.payment_provider_payment_method_id
                == payment_provider_payment_method_id,
            )
        )
        if customer_id is not None:
            stmt = stmt.where(PaymentProviderCustomerPaymentMethod.customer_id == customer_id)
        result = await self.session.execute(
            stmt.order_by(PaymentProviderCustomerPaymentMethod.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def list_by_gateway_id(
        self,
        payment_provider: str,
        payment_provider_payment_method_id: str,
    ) -> List[PaymentProviderCustomerPaymentMethod]:
        """List every stored copy of a gateway payment method, across customers."""
        result = await self.session.execute(
            select(PaymentProviderCustomerPaymentMethod)
            .where(
                and_(
                    PaymentProviderCustomerPaymentMethod.payment_provider == payment_provider,
                    PaymentProviderCustomerPaymentMethod.payment_provider_payment_method_id
                    == payment_provider_payment_method_id,
                )
            )
            .order_by(PaymentProviderCustomerPaymentMethod.id)
        )
        return list(result.scalars().all())

    async def list_for_customer(self, customer_id: int) -> List[PaymentProviderCustomerPaymentMethod]:
        result = await self.session.execute(
            select(PaymentProviderCustomerPaymentMethod)
            .where(PaymentProviderCustomerPaymentMethod.customer_id == customer_id)
            .order_by(PaymentProviderCustomerPaymentMethod.id)
        )
        return list(result.scalars().all())

    async def find_by_card(
        self,
        payment_provider: str,
        payment_provider_payment_method_id: str,
        type: Optional[str],
        last_four: Optional[str],
        country_code: Optional[str],
        brand: Optional[str],
        expires_at_month: Optional[int],
        expires_at_year: Optional[int],
    ) -> List[PaymentProviderCustomerPaymentMethod]:
        """Find saved methods matching both the gateway id and the card details.

        Returns:
            All matching rows; callers decide how to treat more than one.
        """
        result = await self.session.execute(
            select(PaymentProviderCustomerPaymentMethod).where(
                and_(
                    PaymentProviderCustomerPaymentMethod.payment_provider == payment_provider,
                    PaymentProviderCustomerPaymentMethod.payment_provider_payment_method_id
                    == payment_provider_payment_method_id,
                    PaymentProviderCustomerPaymentMethod.type == type,
                    PaymentProviderCustomerPaymentMethod.last_four == last_four,
                    PaymentProviderCustomerPaymentMethod.country_code == country_code,
                    PaymentProviderCustomerPaymentMethod.brand == brand,
                    PaymentProviderCustomerPaymentMethod.expires_at_month == expires_at_month,
                    PaymentProviderCustomerPaymentMethod.expires_at_year == expires_at_year,
                )
            )
        )
        return list(result.scalars().all())

    async def add(self, payment_method: PaymentProviderCustomerPaymentMethod) -> PaymentProviderCustomerPaymentMethod:
        self.session.add(payment_method)
        await self.session.flush()
        logger.info(
            f"Saved payment method {payment_method.payment_provider_payment_method_id} "
            f"for customer {payment_method.customer_id}"
        )
        return payment_method

    async def delete(self, payment_method: PaymentProviderCustomerPaymentMethod) -> None:
        await self.session.delete(payment_method)
        await self.session.flush()
        logger.info(f"Deleted saved payment method {payment_method.payment_provider_payment_method_id}")
