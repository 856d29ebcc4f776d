"""Natural-key matching of gateway-derived rows against the ledger."""

import logging
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import Transaction
from ..database.repository import TransactionRepository

logger = logging.getLogger(__name__)


class TransactionMatcher:
    """
    Decides whether a candidate row derived from a gateway object updates an
    existing ledger row or is inserted as a new one.

    The natural key is (payment_provider, transaction_family,
    transaction_family_id, orderable_id) with NULL orderable ids treated as
    equal. Within it, the candidate matches the pending placeholder
    (no child id, not successful) or the row with the same child id.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.transactions = TransactionRepository(session)

    async def find(self, candidate: Transaction) -> Optional[Transaction]:
        """Return the ledger row the candidate should update, or None.

        Args:
            candidate: Unsaved row built from gateway state.

        Returns:
            The existing row, preferring one that already carries the
            candidate's child id over the pending placeholder.
        """
        matches = await self.transactions.find_matching(candidate)
        if not matches:
            return None
        if len(matches) > 1:
            logger.info(
                f"Placeholder and child {candidate.transaction_child_id} both match "
                f"family {candidate.transaction_family_id}; updating row {matches[0].pid}"
            )
        return matches[0]

    async def upsert(self, candidate: Transaction, fields: Iterable[str]) -> Transaction:
        """Merge the candidate into its matching row, or insert it.

        The insert runs in a savepoint. If a concurrent writer created the
        row first, the unique index rejects the insert and the candidate is
        merged into that row instead.

        Args:
            candidate: Unsaved row built from gateway state.
            fields: Attributes copied from the candidate onto an existing row.

        Returns:
            The persisted row.
        """
        fields = list(fields)
        existing = await self.find(candidate)
        if existing is not None:
            return await self._merge(candidate, existing, fields)

        try:
            async with self.session.begin_nested():
                self.session.add(candidate)
            logger.debug(f"Inserted transaction {candidate.pid} for family {candidate.transaction_family_id}")
            return candidate
        except IntegrityError:
            logger.warning(
                f"Concurrent insert detected for family {candidate.transaction_family_id} "
                f"child {candidate.transaction_child_id}; merging"
            )
            existing = await self.transactions.find_conflicting(candidate)
            if existing is None:
                raise
            return await self._merge(candidate, existing, fields)

    async def _merge(self, candidate: Transaction, existing: Transaction, fields: list) -> Transaction:
        for attr in fields:
            setattr(existing, attr, getattr(candidate, attr))
        if candidate in self.session:
            self.session.expunge(candidate)
        await self.session.flush()
        return existing
