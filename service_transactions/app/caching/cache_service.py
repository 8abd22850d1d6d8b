"""
Cache policy for fetched transactions.
"""

import asyncio
from datetime import date, timedelta
from typing import List, Optional

from pydantic_core import PydanticSerializationError

from shared.errors import EncodingError, StorageError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..persistence.contracts import CacheEntry, TransactionStore
from ..pipeline.fingerprint import compute_fingerprint
from ..pipeline.models import TransactionQuery, TransactionRecord


DEFAULT_RETENTION_DAYS = 30


class TransactionCacheService:
    """Insert-if-absent caching and age-based purge on top of a record store."""

    def __init__(self, store: TransactionStore, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("transactions.cache")

    async def cache_transaction(self, record: TransactionRecord, fingerprint: Optional[str] = None) -> bool:
        """Persist a record unless its id is already cached.

        Returns True when a new entry was written.

        Raises:
            EncodingError: the record could not be serialized.
            StorageError: the store rejected the read or write.
        """
        try:
            raw_json = record.model_dump_json()
        except (PydanticSerializationError, TypeError, ValueError) as e:
            self.logger.error("Error serializing transaction", transaction_id=record.id, error=str(e))
            raise EncodingError("Failed to serialize transaction", {"transaction_id": record.id})

        if await self.store.exists_by_id(record.id):
            self.logger.debug("Transaction already cached", transaction_id=record.id)
            self._count_persist("skipped")
            return False

        entry = CacheEntry(
            id=record.id,
            raw_json=raw_json,
            fingerprint=fingerprint or compute_fingerprint(record),
            recipient_code=record.recipt_edrpou or "",
            doc_date=record.doc_date
        )

        inserted = await self.store.save(entry)
        self._count_persist("inserted" if inserted else "skipped")
        self.logger.debug("Transaction cached", transaction_id=record.id, inserted=inserted)
        return inserted

    async def load_cached(self, query: TransactionQuery) -> List[CacheEntry]:
        """Load cache entries for every recipient in the query, de-duplicated by id."""
        lookups = [
            self.store.find_by_owner_and_date_range(code, query.start_date, query.end_date)
            for code in query.recipient_codes
        ]
        per_recipient = await asyncio.gather(*lookups)

        seen = set()
        entries: List[CacheEntry] = []
        for recipient_entries in per_recipient:
            for entry in recipient_entries:
                if entry.id not in seen:
                    seen.add(entry.id)
                    entries.append(entry)

        return entries

    async def cleanup_old_entries(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete entries dated before today minus the retention window."""
        cutoff = date.today() - timedelta(days=retention_days)
        try:
            deleted = await self.store.delete_older_than(cutoff)
        except StorageError as e:
            self.logger.warning("Error cleaning up old transactions", cutoff=cutoff.isoformat(), error=e.message)
            return 0

        self.logger.info("Cleaned up old transactions", cutoff=cutoff.isoformat(), deleted=deleted)
        if self.metrics:
            self.metrics.increment_counter("cache_purged_entries_total", deleted)
        return deleted

    def _count_persist(self, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("cache_persist_total", outcome=outcome)
