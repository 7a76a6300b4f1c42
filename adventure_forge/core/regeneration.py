"""
Per-adventure regeneration ceilings.

Scaffold regenerations and expansion/refinement calls draw on two separate
budgets. Counters only ever go up: a regeneration whose generation later
fails is still counted, independently of any credit refund.
"""

import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum

from .errors import AdventureNotFound, CounterStorageError, RegenerationLimitReached
from adventure_forge.storage.db import DEFAULT_DB_PATH
from adventure_forge.storage.repository import CounterRepository

logger = logging.getLogger(__name__)

SCAFFOLD_REGENERATION_LIMIT = 10
EXPANSION_REGENERATION_LIMIT = 20


class LimitGuidance(Enum):
    """Advice appended to an expansion-budget limit message."""
    LOCKING_COMPONENTS = "locking_components"
    MANUAL_EDITING = "manual_editing"


@dataclass(frozen=True)
class RegenerationUsage:
    """Usage of one budget after a recorded regeneration."""
    used: int
    remaining: int


@dataclass(frozen=True)
class RegenerationCounts:
    """Usage of both budgets for an adventure."""
    scaffold_used: int
    expansion_used: int
    scaffold_remaining: int
    expansion_remaining: int


def scaffold_limit_message(limit: int) -> str:
    return (
        f"Scaffold regeneration limit reached ({limit} maximum). "
        "Consider starting a new adventure or manually editing the structure."
    )


def expansion_limit_message(limit: int, guidance: LimitGuidance) -> str:
    if guidance is LimitGuidance.MANUAL_EDITING:
        return f"Refinement limit reached ({limit} maximum). Consider manual editing instead."
    return (
        f"Expansion regeneration limit reached ({limit} maximum). "
        "Consider locking components you're satisfied with."
    )


class RegenerationGovernor:
    """Atomic increment-and-check of the per-adventure regeneration counters."""

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        scaffold_limit: int = SCAFFOLD_REGENERATION_LIMIT,
        expansion_limit: int = EXPANSION_REGENERATION_LIMIT
    ):
        if scaffold_limit <= 0 or expansion_limit <= 0:
            raise ValueError("regeneration limits must be > 0")
        self.repository = CounterRepository(db_path)
        self.scaffold_limit = scaffold_limit
        self.expansion_limit = expansion_limit

    def create_counters(self, adventure_id: str) -> None:
        """Start an adventure's budgets at zero."""
        try:
            self.repository.create(adventure_id)
        except sqlite3.Error as e:
            raise CounterStorageError(f"Could not create regeneration counters: {e}") from e

    def record_scaffold_regeneration(self, adventure_id: str) -> RegenerationUsage:
        """Count one scaffold regeneration.

        Raises:
            RegenerationLimitReached: If the scaffold budget is exhausted
            AdventureNotFound: If the adventure has no counters
        """
        used = self._increment(adventure_id, "scaffold_used", self.scaffold_limit)
        if used is None:
            raise RegenerationLimitReached(
                "scaffold",
                self.scaffold_limit,
                self.scaffold_limit,
                scaffold_limit_message(self.scaffold_limit)
            )
        logger.info("Scaffold regeneration %d/%d for %s", used, self.scaffold_limit, adventure_id)
        return RegenerationUsage(used=used, remaining=self.scaffold_limit - used)

    def record_expansion_or_refinement(
        self,
        adventure_id: str,
        guidance: LimitGuidance = LimitGuidance.LOCKING_COMPONENTS
    ) -> RegenerationUsage:
        """Count one expansion regeneration or refinement against the shared budget.

        Raises:
            RegenerationLimitReached: If the expansion budget is exhausted
            AdventureNotFound: If the adventure has no counters
        """
        used = self._increment(adventure_id, "expansion_used", self.expansion_limit)
        if used is None:
            raise RegenerationLimitReached(
                "expansion",
                self.expansion_limit,
                self.expansion_limit,
                expansion_limit_message(self.expansion_limit, guidance)
            )
        logger.info("Expansion regeneration %d/%d for %s", used, self.expansion_limit, adventure_id)
        return RegenerationUsage(used=used, remaining=self.expansion_limit - used)

    def get_counts(self, adventure_id: str) -> RegenerationCounts:
        try:
            counters = self.repository.get(adventure_id)
        except sqlite3.Error as e:
            raise CounterStorageError(f"Could not read regeneration counters: {e}") from e
        if counters is None:
            raise AdventureNotFound(adventure_id)
        return RegenerationCounts(
            scaffold_used=counters.scaffold_used,
            expansion_used=counters.expansion_used,
            scaffold_remaining=max(self.scaffold_limit - counters.scaffold_used, 0),
            expansion_remaining=max(self.expansion_limit - counters.expansion_used, 0)
        )

    def _increment(self, adventure_id: str, column: str, limit: int):
        try:
            return self.repository.increment_if_below(adventure_id, column, limit)
        except KeyError:
            raise AdventureNotFound(adventure_id)
        except sqlite3.Error as e:
            raise CounterStorageError(f"Could not update regeneration counters: {e}") from e
