"""
Repository pattern for data access.

Handles database operations for the credit ledger, the LLM response cache and
the per-adventure regeneration counters. Every mutation runs inside a single
``BEGIN IMMEDIATE`` transaction so concurrent writers serialize on the
database lock instead of interleaving read-then-write sequences.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection, immediate_transaction
from .models import (
    CacheEntry,
    CreditBalance,
    CreditTransaction,
    RegenerationCounters,
    TransactionKind,
)

COUNTER_COLUMNS = ("scaffold_used", "expansion_used")


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    ``credit_transaction`` is an append-only ledger: no UPDATE or DELETE is
    ever issued against it. ``llm_cache`` rows are never deleted.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS credit_balance (
                user_id TEXT PRIMARY KEY,
                credits INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0),
                total_purchased INTEGER NOT NULL DEFAULT 0 CHECK (total_purchased >= 0),
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS credit_transaction (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                credit_type TEXT NOT NULL,
                amount INTEGER NOT NULL,
                balance_after INTEGER NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_credit_transaction_user
                ON credit_transaction (user_id, id);

            CREATE TABLE IF NOT EXISTS llm_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                prompt_hash TEXT NOT NULL UNIQUE,
                prompt_params TEXT NOT NULL,
                response TEXT NOT NULL,
                model TEXT NOT NULL,
                temperature REAL NOT NULL,
                token_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                accessed_at TEXT NOT NULL,
                access_count INTEGER NOT NULL DEFAULT 1 CHECK (access_count >= 1)
            );

            CREATE TABLE IF NOT EXISTS regeneration_counters (
                adventure_id TEXT PRIMARY KEY,
                scaffold_used INTEGER NOT NULL DEFAULT 0 CHECK (scaffold_used >= 0),
                expansion_used INTEGER NOT NULL DEFAULT 0 CHECK (expansion_used >= 0),
                created_at TEXT NOT NULL
            );
        """)
    finally:
        conn.close()


class LedgerRepository:
    """Row access for ``credit_balance`` and ``credit_transaction``."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_balance(self, user_id: str) -> Optional[CreditBalance]:
        """Return the balance row for a user, or None when none exists."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT user_id, credits, total_purchased, updated_at "
                "FROM credit_balance WHERE user_id = ?",
                (user_id,)
            ).fetchone()
            if row is None:
                return None
            return CreditBalance(
                user_id=row["user_id"],
                credits=row["credits"],
                total_purchased=row["total_purchased"],
                updated_at=datetime.fromisoformat(row["updated_at"])
            )
        finally:
            conn.close()

    def apply_delta(
        self,
        user_id: str,
        delta: int,
        kind: TransactionKind,
        credit_type: str,
        metadata: Optional[Dict[str, Any]] = None,
        purchased: int = 0
    ) -> Optional[CreditTransaction]:
        """Change a balance and append the matching ledger row atomically.

        The decrement is conditional on the balance staying non-negative, so
        two concurrent consumers of the last credit cannot both succeed.

        Args:
            user_id: Owner of the balance
            delta: Signed change in credits
            kind: Ledger record kind
            credit_type: Operation kind or purchase source
            metadata: Free-form context stored with the ledger row
            purchased: Amount to add to the lifetime purchased total

        Returns:
            The appended transaction, or None when the balance is insufficient
        """
        metadata = dict(metadata or {})
        now = datetime.now()
        with immediate_transaction(self.db_path) as conn:
            if delta >= 0:
                conn.execute(
                    "INSERT INTO credit_balance (user_id, credits, total_purchased, updated_at) "
                    "VALUES (?, 0, 0, ?) ON CONFLICT(user_id) DO NOTHING",
                    (user_id, now.isoformat())
                )
            cursor = conn.execute(
                """
                UPDATE credit_balance
                SET credits = credits + ?,
                    total_purchased = total_purchased + ?,
                    updated_at = ?
                WHERE user_id = ? AND credits + ? >= 0
                """,
                (delta, purchased, now.isoformat(), user_id, delta)
            )
            if cursor.rowcount == 0:
                return None

            balance_after = conn.execute(
                "SELECT credits FROM credit_balance WHERE user_id = ?",
                (user_id,)
            ).fetchone()["credits"]

            cursor = conn.execute(
                """
                INSERT INTO credit_transaction
                (user_id, kind, credit_type, amount, balance_after, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    kind.value,
                    credit_type,
                    delta,
                    balance_after,
                    json.dumps(metadata, sort_keys=True, default=str),
                    now.isoformat()
                )
            )
            return CreditTransaction(
                id=cursor.lastrowid,
                user_id=user_id,
                kind=kind,
                credit_type=credit_type,
                amount=delta,
                balance_after=balance_after,
                created_at=now,
                metadata=metadata
            )

    def fetch_transactions(self, user_id: str, limit: int = 20) -> List[CreditTransaction]:
        """Fetch ledger rows for a user, newest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                SELECT id, user_id, kind, credit_type, amount, balance_after,
                       metadata, created_at
                FROM credit_transaction
                WHERE user_id = ?
                ORDER BY id DESC LIMIT ?
                """,
                (user_id, limit)
            )
            return [
                CreditTransaction(
                    id=row["id"],
                    user_id=row["user_id"],
                    kind=TransactionKind(row["kind"]),
                    credit_type=row["credit_type"],
                    amount=row["amount"],
                    balance_after=row["balance_after"],
                    created_at=datetime.fromisoformat(row["created_at"]),
                    metadata=json.loads(row["metadata"])
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()


class CacheRepository:
    """Row access for ``llm_cache``."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, prompt_hash: str) -> Optional[CacheEntry]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT prompt_hash, prompt_params, response, model, temperature,
                       token_count, created_at, accessed_at, access_count
                FROM llm_cache WHERE prompt_hash = ?
                """,
                (prompt_hash,)
            ).fetchone()
            return _row_to_cache_entry(row) if row is not None else None
        finally:
            conn.close()

    def record_hit(self, prompt_hash: str, accessed_at: datetime) -> Optional[CacheEntry]:
        """Increment the access count by one and return the updated entry."""
        with immediate_transaction(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE llm_cache SET access_count = access_count + 1, accessed_at = ? "
                "WHERE prompt_hash = ?",
                (accessed_at.isoformat(), prompt_hash)
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                """
                SELECT prompt_hash, prompt_params, response, model, temperature,
                       token_count, created_at, accessed_at, access_count
                FROM llm_cache WHERE prompt_hash = ?
                """,
                (prompt_hash,)
            ).fetchone()
            return _row_to_cache_entry(row)

    def insert_if_absent(self, entry: CacheEntry) -> bool:
        """Insert an entry unless its hash is already stored.

        Returns:
            True when a new row was written, False when the hash existed
        """
        with immediate_transaction(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO llm_cache
                (prompt_hash, prompt_params, response, model, temperature,
                 token_count, created_at, accessed_at, access_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(prompt_hash) DO NOTHING
                """,
                (
                    entry.prompt_hash,
                    json.dumps(entry.canonical_params, sort_keys=True),
                    entry.response,
                    entry.model,
                    entry.temperature,
                    entry.token_count,
                    entry.created_at.isoformat(),
                    entry.accessed_at.isoformat(),
                    entry.access_count
                )
            )
            return cursor.rowcount == 1

    def get_stats(self) -> Dict[str, int]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT COUNT(*) AS entries,
                       SUM(access_count) AS total_accesses,
                       SUM(token_count) AS total_tokens
                FROM llm_cache
                """
            ).fetchone()
            entries = row["entries"] or 0
            total_accesses = row["total_accesses"] or 0
            return {
                "entries": entries,
                "hits": total_accesses - entries,
                "total_tokens": row["total_tokens"] or 0
            }
        finally:
            conn.close()


class CounterRepository:
    """Row access for ``regeneration_counters``."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create(self, adventure_id: str) -> None:
        """Create a zeroed counter row; an existing row is left untouched."""
        with immediate_transaction(self.db_path) as conn:
            conn.execute(
                "INSERT INTO regeneration_counters "
                "(adventure_id, scaffold_used, expansion_used, created_at) "
                "VALUES (?, 0, 0, ?) ON CONFLICT(adventure_id) DO NOTHING",
                (adventure_id, datetime.now().isoformat())
            )

    def get(self, adventure_id: str) -> Optional[RegenerationCounters]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT adventure_id, scaffold_used, expansion_used, created_at "
                "FROM regeneration_counters WHERE adventure_id = ?",
                (adventure_id,)
            ).fetchone()
            if row is None:
                return None
            return RegenerationCounters(
                adventure_id=row["adventure_id"],
                scaffold_used=row["scaffold_used"],
                expansion_used=row["expansion_used"],
                created_at=datetime.fromisoformat(row["created_at"])
            )
        finally:
            conn.close()

    def increment_if_below(self, adventure_id: str, column: str, limit: int) -> Optional[int]:
        """Atomically increment a counter unless it already reached ``limit``.

        Args:
            adventure_id: Adventure owning the counters
            column: ``scaffold_used`` or ``expansion_used``
            limit: Ceiling the counter may not exceed

        Returns:
            The new counter value, or None when the ceiling was already reached

        Raises:
            KeyError: If the adventure has no counter row
            ValueError: If column is not a counter column
        """
        if column not in COUNTER_COLUMNS:
            raise ValueError(f"Unknown counter column: {column}")

        with immediate_transaction(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE regeneration_counters SET {column} = {column} + 1 "
                f"WHERE adventure_id = ? AND {column} < ?",
                (adventure_id, limit)
            )
            row = conn.execute(
                f"SELECT {column} FROM regeneration_counters WHERE adventure_id = ?",
                (adventure_id,)
            ).fetchone()
            if row is None:
                raise KeyError(adventure_id)
            if cursor.rowcount == 0:
                return None
            return row[column]


def _row_to_cache_entry(row) -> CacheEntry:
    return CacheEntry(
        prompt_hash=row["prompt_hash"],
        canonical_params=json.loads(row["prompt_params"]),
        response=row["response"],
        model=row["model"],
        temperature=row["temperature"],
        token_count=row["token_count"],
        created_at=datetime.fromisoformat(row["created_at"]),
        accessed_at=datetime.fromisoformat(row["accessed_at"]),
        access_count=row["access_count"]
    )
