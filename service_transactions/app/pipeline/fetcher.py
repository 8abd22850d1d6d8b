"""
Upstream stream fetcher and background persistence for fresh transactions.
"""

import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Iterable, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from shared.errors import EncodingError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.spending_client import SpendingApiClient
from ..caching.cache_service import TransactionCacheService
from .fingerprint import compute_fingerprint
from .models import MAX_TRANSACTIONS_PER_REQUEST, TransactionQuery, TransactionRecord, TransactionResult


class PersistenceDispatcher:
    """Fire-and-forget cache writes with bounded concurrency.

    Dispatching never blocks the caller. At most ``parallelism`` writes run at
    once; failures are logged and counted, never raised.
    """

    def __init__(
        self,
        cache_service: TransactionCacheService,
        parallelism: int = 8,
        metrics: Optional[MetricsCollector] = None
    ):
        self.cache_service = cache_service
        self.parallelism = parallelism
        self.metrics = metrics
        self.logger = get_logger("transactions.persistence.dispatcher")
        self._semaphore = asyncio.Semaphore(parallelism)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of persist operations not yet finished."""
        return len(self._tasks)

    def dispatch(self, result: TransactionResult) -> asyncio.Task:
        """Schedule a cache write for a result."""
        task = asyncio.create_task(self._persist(result))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _persist(self, result: TransactionResult):
        transaction_id = result.transaction.id
        async with self._semaphore:
            try:
                await self.cache_service.cache_transaction(result.transaction, result.fingerprint)
            except Exception as e:
                self.logger.warning(
                    "Failed to cache transaction",
                    transaction_id=transaction_id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                if self.metrics:
                    self.metrics.increment_counter("cache_persist_total", outcome="failed")

    async def drain(self):
        """Wait until every dispatched write has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self):
        """Cancel writes that have not finished."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.logger.info("Cancelled pending cache writes", count=len(tasks))


class UpstreamStreamFetcher:
    """Streams fresh transactions from upstream, skipping ids the cache covers."""

    def __init__(
        self,
        client: SpendingApiClient,
        dispatcher: PersistenceDispatcher,
        max_transactions: int = MAX_TRANSACTIONS_PER_REQUEST,
        metrics: Optional[MetricsCollector] = None
    ):
        self.client = client
        self.dispatcher = dispatcher
        self.max_transactions = max_transactions
        self.metrics = metrics
        self.logger = get_logger("transactions.fetcher")

    async def fetch_fresh(
        self,
        query: TransactionQuery,
        exclude_ids: Iterable[int]
    ) -> AsyncIterator[TransactionResult]:
        """Yield fresh results in upstream arrival order.

        Each yielded record is handed to the persistence dispatcher first.
        Stops and closes the upstream response after ``max_transactions``
        results. Upstream errors propagate and end the sequence.
        """
        if self.max_transactions <= 0:
            return

        skip_ids = set(exclude_ids)
        emitted = 0

        raw_stream = self.client.stream_transactions(
            query.recipient_codes,
            query.start_date,
            query.end_date
        )

        async with aclosing(raw_stream) as stream:
            async for raw in stream:
                if not isinstance(raw, dict):
                    self.logger.warning("Skipping non-object upstream element", element_type=type(raw).__name__)
                    self._count_skipped()
                    continue

                try:
                    record = TransactionRecord.model_validate(raw)
                except PydanticValidationError as e:
                    self.logger.warning(
                        "Skipping invalid upstream transaction",
                        transaction_id=raw.get("id"),
                        error=str(e)
                    )
                    self._count_skipped()
                    continue

                if record.id in skip_ids:
                    continue

                try:
                    fingerprint = compute_fingerprint(record)
                except EncodingError as e:
                    self.logger.error(
                        "Error processing transaction",
                        transaction_id=record.id,
                        error=e.message
                    )
                    self._count_skipped()
                    continue

                skip_ids.add(record.id)
                result = TransactionResult(transaction=record, fingerprint=fingerprint)
                self.dispatcher.dispatch(result)
                emitted += 1

                yield result

                if emitted >= self.max_transactions:
                    self.logger.debug("Transaction cap reached, closing upstream stream", cap=self.max_transactions)
                    break

    def _count_skipped(self):
        if self.metrics:
            self.metrics.increment_counter("upstream_records_skipped_total")
