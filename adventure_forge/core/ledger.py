"""
Credit ledger.

Owns every mutation of a user's credit balance. Each mutation changes the
balance and appends a ``CreditTransaction`` in one database transaction; the
decrement is conditional so the balance can never go negative, even when
many requests race for the last credit.
"""

import logging
import sqlite3
from decimal import ROUND_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .errors import InsufficientCredits, LedgerStorageError, LedgerWriteConflict
from .requests import OperationKind
from adventure_forge.storage.db import DEFAULT_DB_PATH, is_lock_error
from adventure_forge.storage.models import CreditTransaction, TransactionKind
from adventure_forge.storage.repository import LedgerRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

# One table for all paid operations; adding an operation is a one-line change.
OPERATION_COSTS: Dict[OperationKind, Decimal] = {
    OperationKind.SCAFFOLD: Decimal("1"),
    OperationKind.SCENE_EXPANSION: Decimal("1"),
    OperationKind.REFINEMENT: Decimal("1"),
    OperationKind.MOVEMENT_REGENERATION: Decimal("1"),
}

PURCHASE_SOURCES = frozenset({"purchase", "stripe"})


def credit_cost(kind: OperationKind) -> int:
    """Whole credits charged for an operation; fractional costs round up.

    Raises:
        ValueError: If the operation has no cost entry
    """
    if kind not in OPERATION_COSTS:
        raise ValueError(f"No credit cost defined for: {kind}")
    return int(OPERATION_COSTS[kind].quantize(Decimal("1"), rounding=ROUND_UP))


class CreditLedger:
    """Atomic consume/refund/add operations over per-user balances."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.repository = LedgerRepository(db_path)

    def get_balance(self, user_id: str) -> int:
        """Current balance; users without a balance row have 0 credits."""
        balance = self._run(lambda: self.repository.get_balance(user_id), "read balance")
        return balance.credits if balance is not None else 0

    def check_sufficiency(self, user_id: str, kind: OperationKind) -> bool:
        return self.get_balance(user_id) >= credit_cost(kind)

    def consume(
        self,
        user_id: str,
        kind: OperationKind,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """Charge the cost of ``kind`` to the user.

        Returns:
            Remaining credits after the charge

        Raises:
            InsufficientCredits: If the balance is lower than the cost
            LedgerWriteConflict: If the ledger stayed locked after one retry
            LedgerStorageError: On any other storage failure
        """
        cost = credit_cost(kind)
        transaction = self._run(
            lambda: self.repository.apply_delta(
                user_id, -cost, TransactionKind.CONSUMPTION, kind.value, metadata
            ),
            "consume"
        )
        if transaction is None:
            raise InsufficientCredits(user_id, cost, self._available_after_refusal(user_id))
        return transaction.balance_after

    def refund(
        self,
        user_id: str,
        kind: OperationKind,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """Return the cost of ``kind`` after a consumed operation failed.

        Returns:
            New balance after the refund
        """
        cost = credit_cost(kind)
        transaction = self._run(
            lambda: self.repository.apply_delta(
                user_id, cost, TransactionKind.REFUND, kind.value, metadata
            ),
            "refund"
        )
        return transaction.balance_after

    def add_credits(self, user_id: str, amount: int, source: str = "manual") -> int:
        """Add credits; purchases also raise the lifetime purchased total.

        Returns:
            New balance

        Raises:
            ValueError: If amount is not a positive integer
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("amount must be a positive integer")
        if not source or not source.strip():
            raise ValueError("source is required and cannot be empty")

        purchased = amount if source.lower() in PURCHASE_SOURCES else 0
        transaction = self._run(
            lambda: self.repository.apply_delta(
                user_id,
                amount,
                TransactionKind.PURCHASE,
                source,
                {"source": source},
                purchased=purchased
            ),
            "add credits"
        )
        return transaction.balance_after

    def get_transactions(self, user_id: str, limit: int = 20) -> List[CreditTransaction]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        return self._run(
            lambda: self.repository.fetch_transactions(user_id, limit),
            "read transactions"
        )

    def _available_after_refusal(self, user_id: str) -> Optional[int]:
        """Balance for a refusal message; None when it cannot be read."""
        try:
            balance = self.repository.get_balance(user_id)
        except sqlite3.Error:
            logger.warning("Could not read balance of %s after refused consume", user_id)
            return None
        return balance.credits if balance is not None else 0

    def _run(self, operation: Callable[[], T], description: str) -> T:
        """Run a storage call, retrying exactly once on a write conflict."""
        for attempt in (1, 2):
            try:
                return operation()
            except sqlite3.Error as e:
                if not is_lock_error(e):
                    raise LedgerStorageError(f"Ledger {description} failed: {e}") from e
                if attempt == 2:
                    raise LedgerWriteConflict(
                        f"Ledger {description} conflicted with a concurrent update"
                    ) from e
                logger.warning("Ledger %s conflicted, retrying once", description)
        raise AssertionError("unreachable")
