"""Tests for natural-key matching of gateway-derived rows."""

import logging

from intent_adapter.database import Transaction, TransactionRepository
from intent_adapter.provider import PROVIDER
from intent_adapter.reconciliation import TransactionMatcher

FIELDS = ("transaction_child_id", "amount", "status", "success")


def candidate(**overrides) -> Transaction:
    values = {
        "payment_provider": PROVIDER,
        "transaction_family": "payment",
        "transaction_family_id": "pi_test_1",
        "orderable_id": "1001",
        "amount": 2500,
        "status": "succeeded",
        "success": True,
    }
    values.update(overrides)
    return Transaction(**values)


class TestMatcherFind:
    """Tests for TransactionMatcher.find."""

    async def test_no_match(self, db_session):
        matcher = TransactionMatcher(db_session)
        assert await matcher.find(candidate(transaction_child_id="ch_1")) is None

    async def test_placeholder_matches_child_candidate(self, db_session, make_transaction):
        """Test that the pending placeholder is claimed by a charge."""
        placeholder = await make_transaction()
        matcher = TransactionMatcher(db_session)

        assert await matcher.find(candidate(transaction_child_id="ch_1")) is placeholder

    async def test_successful_row_without_child_is_not_placeholder(self, db_session, make_transaction):
        await make_transaction(success=True)
        matcher = TransactionMatcher(db_session)

        assert await matcher.find(candidate(transaction_child_id="ch_1")) is None

    async def test_exact_child_preferred_over_placeholder(self, db_session, make_transaction, caplog):
        """Test that a row carrying the child id wins over the placeholder."""
        await make_transaction()
        charged = await make_transaction(transaction_child_id="ch_1", success=True)
        matcher = TransactionMatcher(db_session)

        with caplog.at_level(logging.INFO, logger="intent_adapter.reconciliation.matcher"):
            found = await matcher.find(candidate(transaction_child_id="ch_1"))

        assert found is charged
        assert "both match" in caplog.text

    async def test_other_orderable_does_not_match(self, db_session, make_transaction):
        await make_transaction(orderable_id="2002")
        matcher = TransactionMatcher(db_session)

        assert await matcher.find(candidate(transaction_child_id="ch_1")) is None

    async def test_null_orderable_matches_zero(self, db_session, make_transaction):
        """Test that NULL and '0' orderable ids are the same key."""
        row = await make_transaction(orderable_id="0")
        matcher = TransactionMatcher(db_session)

        assert await matcher.find(candidate(orderable_id=None, transaction_child_id="ch_1")) is row

    async def test_display_only_candidate_ignores_placeholder(self, db_session, make_transaction):
        """Test that a synced refund never takes over the postable placeholder."""
        await make_transaction()
        matcher = TransactionMatcher(db_session)

        found = await matcher.find(candidate(transaction_child_id="re_1", display_only=True, refund=True))
        assert found is None


class TestMatcherUpsert:
    """Tests for TransactionMatcher.upsert."""

    async def test_inserts_when_unmatched(self, db_session):
        matcher = TransactionMatcher(db_session)
        row = await matcher.upsert(candidate(transaction_child_id="ch_1"), FIELDS)

        assert row.id is not None
        assert await TransactionRepository(db_session).get_by_pid(row.pid) is row

    async def test_merges_listed_fields_only(self, db_session, make_transaction):
        """Test that only the listed attributes are copied onto the match."""
        placeholder = await make_transaction(cashier_id="7")
        matcher = TransactionMatcher(db_session)

        row = await matcher.upsert(candidate(transaction_child_id="ch_1", cashier_id="99"), FIELDS)

        assert row is placeholder
        assert row.transaction_child_id == "ch_1"
        assert row.amount == 2500
        assert row.success is True
        assert row.cashier_id == "7"

    async def test_repeated_upsert_is_idempotent(self, db_session):
        """Test that upserting the same gateway object twice leaves one row."""
        matcher = TransactionMatcher(db_session)
        first = await matcher.upsert(candidate(transaction_child_id="re_1", display_only=True), FIELDS)
        second = await matcher.upsert(
            candidate(transaction_child_id="re_1", display_only=True, amount=100), FIELDS
        )

        assert second is first
        assert first.amount == 100
        assert len(await TransactionRepository(db_session).list_by_family_id("pi_test_1")) == 1

    async def test_unique_conflict_is_merged(self, db_session, make_transaction):
        """Test that an insert rejected by the unique index merges into the occupant."""
        # Not a placeholder (successful), so find() misses it and the insert collides
        occupant = await make_transaction(success=True, amount=1)
        matcher = TransactionMatcher(db_session)

        row = await matcher.upsert(candidate(transaction_child_id=None, amount=2500), FIELDS)

        assert row is occupant
        assert occupant.amount == 2500
        assert len(await TransactionRepository(db_session).list_by_family_id("pi_test_1")) == 1
