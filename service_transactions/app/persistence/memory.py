"""
In-memory record store for local runs and tests.
"""

from datetime import date
from typing import Dict, List

from shared.logging import get_logger

from .contracts import CacheEntry


class MemoryTransactionStore:
    """Dict-backed store keyed by transaction id."""

    def __init__(self):
        self.logger = get_logger("transactions.persistence.memory")
        self._entries: Dict[int, CacheEntry] = {}

    async def start(self):
        """Start the store."""
        self.logger.info("Memory transaction store started")

    async def stop(self):
        """Stop the store."""
        self.logger.info("Memory transaction store stopped", entries=len(self._entries))

    async def exists_by_id(self, transaction_id: int) -> bool:
        return transaction_id in self._entries

    async def save(self, entry: CacheEntry) -> bool:
        # No await between check and insert, so this is atomic per id.
        if entry.id in self._entries:
            return False
        self._entries[entry.id] = entry
        return True

    async def find_by_owner_and_date_range(
        self,
        recipient_code: str,
        date_from: date,
        date_to: date
    ) -> List[CacheEntry]:
        matches = [
            entry for entry in self._entries.values()
            if entry.recipient_code == recipient_code
            and entry.doc_date is not None
            and date_from <= entry.doc_date <= date_to
        ]
        return sorted(matches, key=lambda entry: (entry.doc_date, entry.id))

    async def delete_older_than(self, cutoff: date) -> int:
        expired = [
            entry_id for entry_id, entry in self._entries.items()
            if entry.doc_date is not None and entry.doc_date < cutoff
        ]
        for entry_id in expired:
            del self._entries[entry_id]
        return len(expired)

    async def count_older_than(self, cutoff: date) -> int:
        return sum(
            1 for entry in self._entries.values()
            if entry.doc_date is not None and entry.doc_date < cutoff
        )

    async def count(self) -> int:
        return len(self._entries)

    async def health_check(self) -> bool:
        return True
