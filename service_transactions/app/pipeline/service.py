"""
Transaction listing pipeline: validate, reconcile, fetch, paginate.
"""

import time
from contextlib import aclosing
from typing import Optional

from shared.logging import bind_query, get_logger
from shared.metrics import MetricsCollector

from .fetcher import UpstreamStreamFetcher
from .models import MAX_TRANSACTIONS_PER_REQUEST, PagedTransactionResponse, TransactionQuery
from .pagination import collect_capped, paginate
from .reconciler import CacheReconciler
from .validation import validate_query


class TransactionService:
    """Serves paged transaction listings from cache plus fresh upstream data."""

    def __init__(
        self,
        reconciler: CacheReconciler,
        fetcher: UpstreamStreamFetcher,
        max_transactions: int = MAX_TRANSACTIONS_PER_REQUEST,
        metrics: Optional[MetricsCollector] = None
    ):
        self.reconciler = reconciler
        self.fetcher = fetcher
        self.max_transactions = max_transactions
        self.metrics = metrics
        self.logger = get_logger("transactions.pipeline")

    async def fetch_transactions_paged(self, query: TransactionQuery) -> PagedTransactionResponse:
        """Return one page of cached and fresh transactions for a query.

        Fresh records are persisted in the background as a side effect.

        Raises:
            ValidationError: the query breaks the listing policy.
            UpstreamError: the upstream API answered with a non-2xx status.
            UpstreamUnavailableError: the upstream API could not be reached.
            StorageError: cached records could not be loaded.
        """
        start_time = time.time()
        validate_query(query)

        bind_query(
            recipient_codes=query.recipient_codes,
            start_date=query.start_date.isoformat(),
            end_date=query.end_date.isoformat()
        )
        self.logger.info(
            "Fetching transactions",
            page=query.page,
            size=query.size
        )

        cache_results, covered_ids = await self.reconciler.reconcile(query)

        fresh_stream = self.fetcher.fetch_fresh(query, covered_ids)
        async with aclosing(fresh_stream) as fresh:
            combined = await collect_capped(cache_results, fresh, self.max_transactions)

        response = paginate(combined, query, self.max_transactions)

        cached_count = min(len(cache_results), len(combined))
        fresh_count = len(combined) - cached_count
        if self.metrics:
            self.metrics.increment_counter("transactions_served_total", cached_count, source="cache")
            self.metrics.increment_counter("transactions_served_total", fresh_count, source="upstream")

        self.logger.info(
            "Transactions fetched",
            cached=cached_count,
            fresh=fresh_count,
            returned=len(response.transactions),
            total_elements=response.page.total_elements,
            duration_ms=round((time.time() - start_time) * 1000, 2)
        )

        return response
