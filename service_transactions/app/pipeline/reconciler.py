"""
Cache reconciliation: turn cached entries back into result records.
"""

from typing import List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..caching.cache_service import TransactionCacheService
from .models import TransactionQuery, TransactionRecord, TransactionResult


class CacheReconciler:
    """Loads cached results for a query and reports which ids they cover."""

    def __init__(self, cache_service: TransactionCacheService, metrics: Optional[MetricsCollector] = None):
        self.cache_service = cache_service
        self.metrics = metrics
        self.logger = get_logger("transactions.reconciler")

    async def reconcile(self, query: TransactionQuery) -> Tuple[List[TransactionResult], Set[int]]:
        """Return cached results and the set of ids the cache covers.

        The stored fingerprint is reused as is. An entry that fails to decode
        is dropped from the results but its id stays covered, so the record
        is not fetched again.
        """
        entries = await self.cache_service.load_cached(query)

        results: List[TransactionResult] = []
        covered_ids: Set[int] = set()

        for entry in entries:
            covered_ids.add(entry.id)
            try:
                record = TransactionRecord.model_validate_json(entry.raw_json)
            except PydanticValidationError as e:
                self.logger.error(
                    "Error deserializing cached transaction",
                    transaction_id=entry.id,
                    error=str(e)
                )
                if self.metrics:
                    self.metrics.increment_counter("cache_deserialization_failures_total")
                continue

            results.append(TransactionResult(transaction=record, fingerprint=entry.fingerprint))

        return results, covered_ids
