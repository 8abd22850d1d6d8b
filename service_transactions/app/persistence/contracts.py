"""
Record store contract for cached transactions.
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Protocol


@dataclass(frozen=True)
class CacheEntry:
    """Persisted representation of a fetched transaction."""
    id: int
    raw_json: str
    fingerprint: str
    recipient_code: str
    doc_date: Optional[date] = None


class TransactionStore(Protocol):
    """Keyed record store with insert-if-absent semantics."""

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...

    async def exists_by_id(self, transaction_id: int) -> bool:
        ...

    async def save(self, entry: CacheEntry) -> bool:
        """Insert the entry unless its id exists; return whether a row was inserted."""
        ...

    async def find_by_owner_and_date_range(
        self,
        recipient_code: str,
        date_from: date,
        date_to: date
    ) -> List[CacheEntry]:
        """Entries for one recipient with doc_date in [date_from, date_to], ordered by (doc_date, id)."""
        ...

    async def delete_older_than(self, cutoff: date) -> int:
        """Remove entries with doc_date before the cutoff; return the number removed."""
        ...

    async def count_older_than(self, cutoff: date) -> int:
        """Number of entries delete_older_than would remove for the same cutoff."""
        ...

    async def count(self) -> int:
        ...

    async def health_check(self) -> bool:
        ...
