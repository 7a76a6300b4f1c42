"""
Data models for storage layer.

Defines the persisted records owned by the ledger, the response cache and the
regeneration governor.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class TransactionKind(Enum):
    """Kind of movement recorded in the credit ledger."""
    CONSUMPTION = "consumption"
    PURCHASE = "purchase"
    REFUND = "refund"


@dataclass(frozen=True)
class CreditBalance:
    """Current credit balance of a single user."""
    user_id: str
    credits: int
    total_purchased: int
    updated_at: datetime
    
    def __post_init__(self):
        """Validate balance values are never negative."""
        if self.credits < 0:
            raise ValueError("credits cannot be negative")
        if self.total_purchased < 0:
            raise ValueError("total_purchased cannot be negative")


@dataclass(frozen=True)
class CreditTransaction:
    """Immutable record of a credit balance mutation.
    
    Append-only rows that form an auditable ledger of credit movements.
    Once written, these records must never be modified.
    """
    id: int
    user_id: str
    kind: TransactionKind
    credit_type: str
    amount: int
    balance_after: int
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheEntry:
    """Stored LLM response keyed by the hash of its canonical parameters."""
    prompt_hash: str
    canonical_params: Dict[str, Any]
    response: str
    model: str
    temperature: float
    token_count: int
    created_at: datetime
    accessed_at: datetime
    access_count: int = 1
    
    def __post_init__(self):
        """Validate bookkeeping counters."""
        if self.access_count < 1:
            raise ValueError("access_count must be >= 1")
        if self.token_count < 0:
            raise ValueError("token_count cannot be negative")


@dataclass(frozen=True)
class RegenerationCounters:
    """Regeneration usage of a single adventure."""
    adventure_id: str
    scaffold_used: int = 0
    expansion_used: int = 0
    created_at: Optional[datetime] = None
    
    def __post_init__(self):
        """Validate counters are never negative."""
        if self.scaffold_used < 0:
            raise ValueError("scaffold_used cannot be negative")
        if self.expansion_used < 0:
            raise ValueError("expansion_used cannot be negative")
