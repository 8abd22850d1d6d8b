"""
Transaction Proxy service.
"""

import asyncio
from typing import Dict, List, Optional

from fastapi import Query

from shared.base_service import BaseService

from .adapters.spending_client import SpendingApiClient
from .caching.cache_service import TransactionCacheService
from .caching.housekeeping import MemoryMonitor
from .persistence import TransactionStore, create_store
from .pipeline.fetcher import PersistenceDispatcher, UpstreamStreamFetcher
from .pipeline.models import PagedTransactionResponse, TransactionQuery
from .pipeline.reconciler import CacheReconciler
from .pipeline.service import TransactionService


DRAIN_TIMEOUT_SECONDS = 10.0


class TransactionProxyService(BaseService):
    """Caching proxy in front of the spending API transactions endpoint."""

    def __init__(
        self,
        store: Optional[TransactionStore] = None,
        upstream_client: Optional[SpendingApiClient] = None
    ):
        super().__init__("transactions", 8080)

        self.store = store if store is not None else create_store(self.config)
        self.upstream_client = upstream_client if upstream_client is not None else SpendingApiClient(
            self.config.upstream_base_url,
            connect_timeout=self.config.upstream_connect_timeout,
            read_timeout=self.config.upstream_read_timeout,
            max_connections=self.config.upstream_max_connections,
            keepalive_expiry=self.config.upstream_keepalive_expiry
        )

        self.cache_service = TransactionCacheService(self.store, metrics=self.metrics)
        self.dispatcher = PersistenceDispatcher(
            self.cache_service,
            parallelism=self.config.processing_parallelism,
            metrics=self.metrics
        )
        self.transaction_service = TransactionService(
            reconciler=CacheReconciler(self.cache_service, metrics=self.metrics),
            fetcher=UpstreamStreamFetcher(
                self.upstream_client,
                self.dispatcher,
                max_transactions=self.config.max_transactions_per_request,
                metrics=self.metrics
            ),
            max_transactions=self.config.max_transactions_per_request,
            metrics=self.metrics
        )
        self.memory_monitor = MemoryMonitor(
            self.cache_service,
            threshold=self.config.memory_threshold,
            memory_limit_bytes=self.config.memory_limit_bytes,
            check_interval_seconds=self.config.memory_check_interval_seconds,
            stats_interval_seconds=self.config.memory_stats_interval_seconds,
            retention_days=self.config.cache_retention_days,
            metrics=self.metrics
        )

        self._setup_transaction_routes()

    def _setup_transaction_routes(self):
        """Set up transaction-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "transactions",
                "message": "Transaction Proxy - Spending API caching proxy",
                "version": "1.0.0",
                "upstream": self.config.upstream_base_url,
                "store_backend": self.config.store_backend
            }

        @self.app.get("/api/v2/api/transactions", response_model=PagedTransactionResponse)
        async def get_transactions(
            recipt_edrpous: Optional[List[str]] = Query(None),
            startdate: Optional[str] = Query(None),
            enddate: Optional[str] = Query(None),
            page: Optional[str] = Query(None),
            size: Optional[str] = Query(None)
        ):
            """Get one page of transactions for the given recipients and date range."""
            query = TransactionQuery.from_params(recipt_edrpous, startdate, enddate, page, size)
            response = await self.transaction_service.fetch_transactions_paged(query)

            self.logger.info("Returning transactions", count=len(response.transactions))
            return response

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check transaction service dependencies."""
        dependencies = {}

        try:
            dependencies["store"] = "ok" if await self.store.health_check() else "error"
        except Exception:
            dependencies["store"] = "error"

        dependencies["upstream"] = "ok" if await self.upstream_client.ping() else "error"

        return dependencies

    async def start(self):
        """Start transaction service components."""
        await self.store.start()

        if self.config.enable_housekeeping:
            await self.memory_monitor.start()

        self.logger.info(
            "Transaction service started",
            store_backend=self.config.store_backend,
            upstream=self.config.upstream_base_url
        )

    async def stop(self):
        """Stop transaction service components."""
        await self.memory_monitor.stop()

        try:
            await asyncio.wait_for(self.dispatcher.drain(), timeout=DRAIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            self.logger.warning("Timed out draining cache writes", pending=self.dispatcher.pending)
        await self.dispatcher.close()

        await self.upstream_client.close()
        await self.store.stop()

        self.logger.info("Transaction service stopped")


def create_app():
    """Create transaction service application."""
    service = TransactionProxyService()
    return service.app


if __name__ == "__main__":
    service = TransactionProxyService()
    service.run()
