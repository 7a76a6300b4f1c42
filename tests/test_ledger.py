"""
Unit tests for the credit ledger.

Tests balance arithmetic, the append-only transaction log and behaviour
under concurrent consumers.
"""

import os
import random
import sqlite3
import tempfile
import threading
from decimal import Decimal
from unittest.mock import patch

import pytest

from adventure_forge.core.errors import (
    InsufficientCredits,
    LedgerStorageError,
    LedgerWriteConflict,
)
from adventure_forge.core.ledger import OPERATION_COSTS, CreditLedger, credit_cost
from adventure_forge.core.requests import OperationKind
from adventure_forge.storage.models import TransactionKind
from adventure_forge.storage.repository import initialize_schema


class TestCreditCost:
    """Test the operation cost table."""

    def test_every_operation_costs_one(self):
        """Test that every operation kind is charged a single credit."""
        for kind in OperationKind:
            assert credit_cost(kind) == 1

    def test_fractional_cost_rounds_up(self):
        """Test that fractional costs are rounded up to whole credits."""
        with patch.dict(OPERATION_COSTS, {OperationKind.REFINEMENT: Decimal("0.5")}):
            assert credit_cost(OperationKind.REFINEMENT) == 1
        with patch.dict(OPERATION_COSTS, {OperationKind.REFINEMENT: Decimal("1.2")}):
            assert credit_cost(OperationKind.REFINEMENT) == 2


class TestCreditLedger:
    """Test ledger operations against a real database."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.ledger = CreditLedger(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_unknown_user_has_zero_credits(self):
        """Test that a user without a balance row reads as zero credits."""
        assert self.ledger.get_balance("nobody") == 0
        assert not self.ledger.check_sufficiency("nobody", OperationKind.SCAFFOLD)

    def test_add_then_consume(self):
        """Test that consuming after a top-up decrements the balance by the cost."""
        assert self.ledger.add_credits("u1", 5) == 5

        remaining = self.ledger.consume("u1", OperationKind.SCAFFOLD, {"operation": "scaffold"})

        assert remaining == 4
        assert self.ledger.get_balance("u1") == 4

    def test_consume_without_credits(self):
        """Test that an empty balance refuses consumption and records nothing."""
        with pytest.raises(InsufficientCredits) as exc_info:
            self.ledger.consume("u1", OperationKind.SCENE_EXPANSION)

        assert exc_info.value.required == 1
        assert exc_info.value.available == 0
        assert self.ledger.get_transactions("u1") == []

    def test_consume_exhausts_balance(self):
        """Test that the last credit can be spent exactly once."""
        self.ledger.add_credits("u1", 1)
        self.ledger.consume("u1", OperationKind.SCAFFOLD)

        with pytest.raises(InsufficientCredits, match="1 required, 0 available"):
            self.ledger.consume("u1", OperationKind.SCAFFOLD)
        assert self.ledger.get_balance("u1") == 0

    def test_refund_restores_balance(self):
        """Test that a refund returns the cost and is logged as a refund transaction."""
        self.ledger.add_credits("u1", 2)
        self.ledger.consume("u1", OperationKind.REFINEMENT)

        assert self.ledger.refund("u1", OperationKind.REFINEMENT, {"reason": "failed"}) == 2

        latest = self.ledger.get_transactions("u1", limit=1)[0]
        assert latest.kind is TransactionKind.REFUND
        assert latest.credit_type == "refinement"
        assert latest.metadata == {"reason": "failed"}

    @pytest.mark.parametrize("amount", [0, -3, 1.5, True])
    def test_add_credits_rejects_invalid_amount(self, amount):
        """Test that non-positive and non-integer amounts are rejected."""
        with pytest.raises(ValueError, match="positive integer"):
            self.ledger.add_credits("u1", amount)

    def test_add_credits_requires_source(self):
        """Test that a blank source is rejected."""
        with pytest.raises(ValueError, match="source is required"):
            self.ledger.add_credits("u1", 5, source=" ")

    def test_purchases_raise_lifetime_total(self):
        """Test that only purchase sources count toward the lifetime purchased total."""
        self.ledger.add_credits("u1", 10, source="purchase")
        self.ledger.add_credits("u1", 3, source="manual")
        self.ledger.add_credits("u1", 2, source="Stripe")

        balance = self.ledger.repository.get_balance("u1")
        assert balance.credits == 15
        assert balance.total_purchased == 12

    def test_transactions_record_every_mutation(self):
        """Test that every mutation appends a transaction whose amounts sum to the balance."""
        self.ledger.add_credits("u1", 3, source="purchase")
        self.ledger.consume("u1", OperationKind.SCAFFOLD)
        self.ledger.consume("u1", OperationKind.SCENE_EXPANSION)
        self.ledger.refund("u1", OperationKind.SCENE_EXPANSION)

        transactions = self.ledger.get_transactions("u1")

        assert [t.amount for t in transactions] == [1, -1, -1, 3]
        assert [t.balance_after for t in transactions] == [2, 1, 2, 3]
        assert sum(t.amount for t in transactions) == self.ledger.get_balance("u1")

    def test_get_transactions_rejects_bad_limit(self):
        """Test that a history limit below one is rejected."""
        with pytest.raises(ValueError, match="limit"):
            self.ledger.get_transactions("u1", limit=0)

    def test_random_sequence_never_goes_negative(self):
        """Test that a seeded random mix of mutations keeps the balance exact and non-negative."""
        rng = random.Random(1337)
        expected = 0
        for _ in range(200):
            action = rng.choice(["add", "consume", "consume", "consume", "refund"])
            if action == "add":
                amount = rng.randint(1, 3)
                self.ledger.add_credits("u1", amount)
                expected += amount
            elif action == "refund":
                self.ledger.refund("u1", OperationKind.SCAFFOLD)
                expected += 1
            else:
                try:
                    self.ledger.consume("u1", OperationKind.SCAFFOLD)
                    expected -= 1
                except InsufficientCredits:
                    assert expected == 0
            assert self.ledger.get_balance("u1") == expected
            assert expected >= 0

    def test_concurrent_consumers_race_for_last_credit(self):
        """Test that only one of many concurrent consumers gets the last credit."""
        self.ledger.add_credits("u1", 1)
        successes = []
        failures = []
        barrier = threading.Barrier(8)

        def worker():
            ledger = CreditLedger(self.db_path)
            barrier.wait()
            try:
                successes.append(ledger.consume("u1", OperationKind.SCAFFOLD))
            except InsufficientCredits:
                failures.append(True)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert successes == [0]
        assert len(failures) == 7
        assert self.ledger.get_balance("u1") == 0

    def test_concurrent_mixed_mutations_stay_consistent(self):
        """Test that concurrent adds, consumes and refunds keep the log and balance in step."""
        self.ledger.add_credits("u1", 2)
        errors = []
        barrier = threading.Barrier(6)

        def worker(seed):
            rng = random.Random(seed)
            ledger = CreditLedger(self.db_path)
            consumed = 0
            barrier.wait()
            try:
                for _ in range(25):
                    action = rng.choice(["add", "consume", "consume", "consume", "refund"])
                    if action == "add":
                        ledger.add_credits("u1", rng.randint(1, 2))
                    elif action == "refund":
                        if consumed:
                            ledger.refund("u1", OperationKind.SCENE_EXPANSION)
                            consumed -= 1
                    else:
                        try:
                            ledger.consume("u1", OperationKind.SCENE_EXPANSION)
                            consumed += 1
                        except InsufficientCredits:
                            pass
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(2024 + i,)) for i in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        transactions = self.ledger.get_transactions("u1", limit=10_000)
        balance = self.ledger.get_balance("u1")
        assert balance >= 0
        assert balance == sum(t.amount for t in transactions)
        assert all(t.balance_after >= 0 for t in transactions)


class TestLedgerStorageFailures:
    """Test error translation and the single retry on write conflicts."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.ledger = CreditLedger(self.db_path)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_lock_error_retried_once(self):
        """Test that a single lock error is retried and the write succeeds."""
        real_apply = self.ledger.repository.apply_delta
        calls = []

        def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return real_apply(*args, **kwargs)

        with patch.object(self.ledger.repository, "apply_delta", side_effect=flaky):
            assert self.ledger.add_credits("u1", 2) == 2

        assert len(calls) == 2

    def test_persistent_lock_raises_conflict(self):
        """Test that a lock that survives the retry surfaces as a write conflict."""
        with patch.object(
            self.ledger.repository,
            "apply_delta",
            side_effect=sqlite3.OperationalError("database is locked")
        ) as mock_apply:
            with pytest.raises(LedgerWriteConflict):
                self.ledger.add_credits("u1", 2)

        assert mock_apply.call_count == 2

    def test_other_errors_not_retried(self):
        """Test that non-lock storage errors are translated without a retry."""
        with patch.object(
            self.ledger.repository,
            "apply_delta",
            side_effect=sqlite3.OperationalError("disk I/O error")
        ) as mock_apply:
            with pytest.raises(LedgerStorageError, match="disk I/O error"):
                self.ledger.consume("u1", OperationKind.SCAFFOLD)

        assert mock_apply.call_count == 1

    def test_refusal_survives_failed_balance_read(self):
        """Test that a refused consume still reports insufficient credits when the balance read fails."""
        with patch.object(
            self.ledger.repository,
            "get_balance",
            side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            with pytest.raises(InsufficientCredits, match="1 required, unknown available") as exc_info:
                self.ledger.consume("u1", OperationKind.SCAFFOLD)

        assert exc_info.value.available is None

    def test_refusal_reports_current_balance(self):
        """Test that a refused consume reports the balance read straight from storage."""
        self.ledger.add_credits("u1", 3)
        with patch.object(self.ledger.repository, "apply_delta", return_value=None):
            with pytest.raises(InsufficientCredits, match="1 required, 3 available") as exc_info:
                self.ledger.consume("u1", OperationKind.SCAFFOLD)

        assert exc_info.value.available == 3
