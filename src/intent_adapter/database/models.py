"""SQLAlchemy models for the transaction ledger and saved customers."""

import uuid
import enum
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..orders import CustomerData


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _new_pid() -> str:
    return str(uuid.uuid4())


class TransactionFamily(str, enum.Enum):
    """Kind of gateway parent object a transaction belongs to."""
    PAYMENT = "payment"


class LocalStatus(str, enum.Enum):
    """Internal lifecycle of a ledger row."""
    INIT = "init"
    PENDING = "pending"
    COMPLETE = "complete"


# NULL orderable ids compare as this value in the natural key.
NULL_ORDERABLE_ID = "0"


class Transaction(Base):
    """One record of money movement mirrored from the gateway."""
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, default=_new_pid)

    payment_provider: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_family: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionFamily.PAYMENT.value
    )
    transaction_family_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    transaction_child_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("transactions.id"), nullable=True)

    orderable_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    orderable_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Minor units. amount_refunded is stored as a negative magnitude.
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_refunded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_escrow: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)

    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    local_status: Mapped[str] = mapped_column(String(20), nullable=False, default=LocalStatus.INIT.value)

    refund: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    retrospective: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    through_webhook: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    livemode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    cashier_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Card risk checks copied from the payment method
    last_four: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    card_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    address_matched: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    cvc_matched: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    postcode_matched: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    threed_secure: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_transactions_family_id", "transaction_family_id"),
        Index("ix_transactions_created_at", "created_at"),
    )

    def to_customer_data(self) -> CustomerData:
        return CustomerData(user_type=self.user_type, user_id=self.user_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the ledger row to a dictionary representation."""
        return {
            "pid": self.pid,
            "payment_provider": self.payment_provider,
            "transaction_family": self.transaction_family,
            "transaction_family_id": self.transaction_family_id,
            "transaction_child_id": self.transaction_child_id,
            "parent_id": self.parent_id,
            "orderable_id": self.orderable_id,
            "orderable_amount": self.orderable_amount,
            "amount": self.amount,
            "amount_refunded": self.amount_refunded,
            "amount_escrow": self.amount_escrow,
            "currency": self.currency,
            "status": self.status,
            "success": self.success,
            "local_status": self.local_status,
            "refund": self.refund,
            "display_only": self.display_only,
            "retrospective": self.retrospective,
            "through_webhook": self.through_webhook,
            "livemode": self.livemode,
            "cashier_id": self.cashier_id,
            "user_type": self.user_type,
            "user_id": self.user_id,
            "last_four": self.last_four,
            "card_type": self.card_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# At most one pending placeholder (NULL child) and at most one row per child id
# for a given provider, family, family id and orderable.
Index(
    "uq_transactions_natural_key",
    Transaction.payment_provider,
    Transaction.transaction_family,
    Transaction.transaction_family_id,
    func.coalesce(Transaction.orderable_id, NULL_ORDERABLE_ID),
    func.coalesce(Transaction.transaction_child_id, ""),
    unique=True,
)


class PaymentProviderCustomer(Base):
    """Maps an internal (user_type, user_id) identity to a gateway customer."""
    __tablename__ = "payment_provider_customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, default=_new_pid)
    payment_provider: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_provider_customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("payment_provider", "payment_provider_customer_id", name="uq_provider_customer_id"),
        UniqueConstraint("payment_provider", "user_type", "user_id", name="uq_provider_customer_user"),
    )


class PaymentProviderCustomerPaymentMethod(Base):
    """A saved instrument owned by one PaymentProviderCustomer."""
    __tablename__ = "payment_provider_customer_payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, default=_new_pid)
    customer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("payment_provider_customers.id"), nullable=False, index=True
    )
    payment_provider: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_provider_payment_method_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    country_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    last_four: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    expires_at_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expires_at_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    livemode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "payment_provider": self.payment_provider,
            "payment_provider_payment_method_id": self.payment_provider_payment_method_id,
            "type": self.type,
            "country_code": self.country_code,
            "brand": self.brand,
            "last_four": self.last_four,
            "expires_at_month": self.expires_at_month,
            "expires_at_year": self.expires_at_year,
            "livemode": self.livemode,
        }
