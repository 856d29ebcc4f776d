"""Database module for the transaction ledger."""

from .models import (
    Base,
    Transaction,
    TransactionFamily,
    LocalStatus,
    PaymentProviderCustomer,
    PaymentProviderCustomerPaymentMethod,
    NULL_ORDERABLE_ID,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    get_db_context,
)
from .repository import (
    TransactionRepository,
    PaymentProviderCustomerRepository,
    PaymentMethodRepository,
)

__all__ = [
    # Models
    "Base",
    "Transaction",
    "TransactionFamily",
    "LocalStatus",
    "PaymentProviderCustomer",
    "PaymentProviderCustomerPaymentMethod",
    "NULL_ORDERABLE_ID",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "TransactionRepository",
    "PaymentProviderCustomerRepository",
    "PaymentMethodRepository",
]
