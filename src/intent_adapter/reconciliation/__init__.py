"""Reconciliation of gateway state into the transaction ledger."""

from .outcome import Outcome, OperationFailed
from .matcher import TransactionMatcher
from .recorder import Recorder
from .sync import SyncEngine, REFUND_FIELDS, CHARGE_FIELDS

__all__ = [
    "Outcome",
    "OperationFailed",
    "TransactionMatcher",
    "Recorder",
    "SyncEngine",
    "REFUND_FIELDS",
    "CHARGE_FIELDS",
]
