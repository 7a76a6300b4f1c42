"""
Response cache keyed by canonical request parameters.

Identical requests, whatever the order of their fields, hash to the same
SHA-256 key. There is no lock between ``lookup`` and ``store``: two
concurrent identical requests may both miss and both call the LLM. That
costs an extra upstream call but never corrupts the cache, because ``store``
is an insert-if-absent and never replaces a stored response.
"""

import hashlib
import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import CacheStorageError
from adventure_forge.storage.db import DEFAULT_DB_PATH
from adventure_forge.storage.models import CacheEntry
from adventure_forge.storage.repository import CacheRepository

logger = logging.getLogger(__name__)


def canonicalize(params: Mapping[str, Any]) -> str:
    """Serialize parameters with lexicographically sorted keys at every level."""
    return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


def hash_params(params: Mapping[str, Any]) -> str:
    """SHA-256 hex digest of the canonical form of ``params``."""
    return hashlib.sha256(canonicalize(params).encode("utf-8")).hexdigest()


class ResponseCache:
    """Lookup/store of LLM responses with access bookkeeping.

    Entries are never evicted or expired by this class.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.repository = CacheRepository(db_path)
        self.clock = clock

    def lookup(self, canonical_params: Mapping[str, Any]) -> Optional[CacheEntry]:
        """Return the stored entry for ``canonical_params`` or None on a miss.

        A hit increments ``access_count`` by exactly one and sets
        ``accessed_at`` to now before returning.

        Raises:
            CacheStorageError: If the cache table cannot be read or updated
        """
        prompt_hash = hash_params(canonical_params)
        try:
            entry = self.repository.record_hit(prompt_hash, self.clock())
        except sqlite3.Error as e:
            raise CacheStorageError(f"Cache lookup failed: {e}") from e

        if entry is None:
            logger.debug("Cache miss for %s", prompt_hash[:12])
        else:
            logger.debug("Cache hit for %s (access_count=%d)", prompt_hash[:12], entry.access_count)
        return entry

    def store(
        self,
        canonical_params: Mapping[str, Any],
        response: str,
        token_count: int,
        model: str,
        temperature: float
    ) -> CacheEntry:
        """Store a response unless one is already cached for the same hash.

        Concurrent stores of the same hash succeed: the first insert wins and
        later ones count as an access. A differing response offered for an
        existing hash is discarded.

        Returns:
            The entry as it stands in the cache after the call

        Raises:
            CacheStorageError: If the cache table cannot be written
        """
        prompt_hash = hash_params(canonical_params)
        now = self.clock()
        entry = CacheEntry(
            prompt_hash=prompt_hash,
            canonical_params=_plain(canonical_params),
            response=response,
            model=model,
            temperature=temperature,
            token_count=max(int(token_count or 0), 0),
            created_at=now,
            accessed_at=now,
            access_count=1
        )
        try:
            if self.repository.insert_if_absent(entry):
                return entry
            existing = self.repository.record_hit(prompt_hash, now)
        except sqlite3.Error as e:
            raise CacheStorageError(f"Cache store failed: {e}") from e

        if existing is not None and existing.response != response:
            logger.warning(
                "Discarded differing response for cached hash %s", prompt_hash[:12]
            )
        return existing if existing is not None else entry

    def get_stats(self) -> Dict[str, int]:
        try:
            return self.repository.get_stats()
        except sqlite3.Error as e:
            raise CacheStorageError(f"Cache statistics unavailable: {e}") from e


def _plain(params: Mapping[str, Any]) -> Dict[str, Any]:
    return json.loads(canonicalize(params))
