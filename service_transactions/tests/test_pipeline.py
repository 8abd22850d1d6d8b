"""
Unit tests for the transaction pipeline: reconciler, fetcher, pagination and service.
"""

import asyncio
import json
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from service_transactions.app.adapters.spending_client import SpendingApiClient
from service_transactions.app.caching.cache_service import TransactionCacheService
from service_transactions.app.persistence import CacheEntry, MemoryTransactionStore
from service_transactions.app.pipeline.fetcher import PersistenceDispatcher, UpstreamStreamFetcher
from service_transactions.app.pipeline.fingerprint import compute_fingerprint
from service_transactions.app.pipeline.models import TransactionQuery, TransactionRecord, TransactionResult
from service_transactions.app.pipeline.pagination import assemble, collect_capped, paginate
from service_transactions.app.pipeline.reconciler import CacheReconciler
from service_transactions.app.pipeline.service import TransactionService
from shared.errors import StorageError, UpstreamError, ValidationError
from shared.metrics import MetricsCollector


RECIPIENT = "00013480"
START = date(2024, 10, 29)
END = date(2024, 10, 31)


def make_raw(transaction_id: int, doc_date: date = START, recipient: str = RECIPIENT) -> Dict[str, Any]:
    return {
        "id": transaction_id,
        "doc_number": f"DOC-{transaction_id}",
        "doc_date": doc_date.isoformat(),
        "amount": 100.0 + transaction_id,
        "currency": "UAH",
        "recipt_edrpou": recipient,
        "unknown_upstream_field": "ignored"
    }


def make_raws(count: int, start_id: int = 1) -> List[Dict[str, Any]]:
    """Records in (doc_date, id) order spread over the three query days."""
    return [
        make_raw(start_id + offset, START + timedelta(days=min(offset * 3 // count, 2)))
        for offset in range(count)
    ]


def make_result(transaction_id: int) -> TransactionResult:
    return TransactionResult(transaction=TransactionRecord(id=transaction_id), fingerprint=f"h{transaction_id}")


def make_query(page: int = 0, size: int = 10, codes=(RECIPIENT,)) -> TransactionQuery:
    return TransactionQuery(recipient_codes=list(codes), start_date=START, end_date=END, page=page, size=size)


async def fresh_from(results):
    for result in results:
        yield result


class FakeSpendingClient:
    """Upstream stand-in that records how much of its stream was consumed."""

    def __init__(self, raws: List[Dict[str, Any]], error: Optional[Exception] = None):
        self.raws = raws
        self.error = error
        self.requests = 0
        self.yielded = 0
        self.closed = False

    async def stream_transactions(self, recipient_codes, start_date, end_date):
        self.requests += 1
        try:
            if self.error:
                raise self.error
            for raw in self.raws:
                self.yielded += 1
                yield raw
        finally:
            self.closed = True


class TestCacheReconciler:
    """Test cases for CacheReconciler."""

    @pytest.fixture
    def store(self):
        """Create an empty memory store."""
        return MemoryTransactionStore()

    @pytest.fixture
    def metrics(self):
        """Create a metrics collector."""
        return MetricsCollector("transactions")

    @pytest.fixture
    def reconciler(self, store, metrics):
        """Create reconciler over the memory store."""
        return CacheReconciler(TransactionCacheService(store, metrics=metrics), metrics=metrics)

    @pytest.mark.asyncio
    async def test_reuses_stored_fingerprint(self, reconciler, store):
        """Test stored fingerprints are returned, not recomputed."""
        record = TransactionRecord.model_validate(make_raw(1))
        await store.save(CacheEntry(
            id=1, raw_json=record.model_dump_json(), fingerprint="stored-hash",
            recipient_code=RECIPIENT, doc_date=START
        ))

        results, covered = await reconciler.reconcile(make_query())

        assert covered == {1}
        assert results == [TransactionResult(transaction=record, fingerprint="stored-hash")]

    @pytest.mark.asyncio
    async def test_corrupt_entry_dropped_but_covered(self, reconciler, store, metrics):
        """Test a corrupt entry is dropped from results but its id stays covered."""
        good = TransactionRecord.model_validate(make_raw(2))
        await store.save(CacheEntry(id=1, raw_json="{not json", fingerprint="x", recipient_code=RECIPIENT, doc_date=START))
        await store.save(CacheEntry(
            id=2, raw_json=good.model_dump_json(), fingerprint="y",
            recipient_code=RECIPIENT, doc_date=START
        ))

        results, covered = await reconciler.reconcile(make_query())

        assert [result.transaction.id for result in results] == [2]
        assert covered == {1, 2}
        assert metrics.get_metric("cache_deserialization_failures_total")._value.get() == 1

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        """Test read-path storage failures are not swallowed."""
        store = MagicMock()
        store.find_by_owner_and_date_range = AsyncMock(side_effect=StorageError("down"))
        reconciler = CacheReconciler(TransactionCacheService(store))

        with pytest.raises(StorageError):
            await reconciler.reconcile(make_query())


class TestPersistenceDispatcher:
    """Test cases for PersistenceDispatcher."""

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self):
        """Test no more than `parallelism` writes run at once."""
        active = 0
        peak = 0

        async def slow_cache(record, fingerprint=None):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return True

        cache_service = MagicMock()
        cache_service.cache_transaction = AsyncMock(side_effect=slow_cache)
        dispatcher = PersistenceDispatcher(cache_service, parallelism=3)

        for transaction_id in range(20):
            dispatcher.dispatch(make_result(transaction_id))
        await dispatcher.drain()

        assert cache_service.cache_transaction.await_count == 20
        assert peak == 3
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self):
        """Test persist failures never propagate."""
        metrics = MetricsCollector("transactions")
        cache_service = MagicMock()
        cache_service.cache_transaction = AsyncMock(side_effect=StorageError("down"))
        dispatcher = PersistenceDispatcher(cache_service, metrics=metrics)

        dispatcher.dispatch(make_result(1))
        dispatcher.dispatch(make_result(2))
        await dispatcher.drain()

        failed = metrics.get_metric("cache_persist_total").labels(outcome="failed")
        assert failed._value.get() == 2

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self):
        """Test close cancels writes that are still waiting."""
        blocker = asyncio.Event()

        async def blocked_cache(record, fingerprint=None):
            await blocker.wait()

        cache_service = MagicMock()
        cache_service.cache_transaction = AsyncMock(side_effect=blocked_cache)
        dispatcher = PersistenceDispatcher(cache_service, parallelism=2)

        tasks = [dispatcher.dispatch(make_result(i)) for i in range(4)]
        await asyncio.sleep(0)
        await dispatcher.close()

        assert all(task.cancelled() for task in tasks)
        assert dispatcher.pending == 0


class TestUpstreamStreamFetcher:
    """Test cases for UpstreamStreamFetcher."""

    @pytest.fixture
    def cache_service(self):
        """Cache service over an empty memory store."""
        return TransactionCacheService(MemoryTransactionStore())

    @pytest.mark.asyncio
    async def test_emits_in_arrival_order_and_persists(self, cache_service):
        """Test emission order and background persistence."""
        raws = [make_raw(3), make_raw(1), make_raw(2)]
        dispatcher = PersistenceDispatcher(cache_service)
        fetcher = UpstreamStreamFetcher(FakeSpendingClient(raws), dispatcher)

        results = [result async for result in fetcher.fetch_fresh(make_query(), set())]
        await dispatcher.drain()

        assert [result.transaction.id for result in results] == [3, 1, 2]
        assert results[0].fingerprint == compute_fingerprint(TransactionRecord.model_validate(raws[0]))
        assert await cache_service.store.count() == 3

    @pytest.mark.asyncio
    async def test_excluded_and_invalid_records_skipped(self, cache_service):
        """Test cached ids and records failing validation are skipped."""
        raws = [make_raw(1), {"id": "not-a-number"}, {"doc_number": "no id"}, make_raw(2), make_raw(3)]
        dispatcher = PersistenceDispatcher(cache_service)
        fetcher = UpstreamStreamFetcher(FakeSpendingClient(raws), dispatcher)

        results = [result async for result in fetcher.fetch_fresh(make_query(), {2})]

        assert [result.transaction.id for result in results] == [1, 3]

    @pytest.mark.asyncio
    async def test_non_object_elements_skipped(self, cache_service):
        """Test null and scalar array elements do not fail the stream."""
        body = "[" + ", ".join([json.dumps(make_raw(1)), "null", "42", '"text"', json.dumps(make_raw(2))]) + "]"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=body)

        client = SpendingApiClient("http://upstream.test/api/v2/api", transport=httpx.MockTransport(handler))
        metrics = MetricsCollector("transactions")
        fetcher = UpstreamStreamFetcher(client, PersistenceDispatcher(cache_service), metrics=metrics)

        results = [result async for result in fetcher.fetch_fresh(make_query(), set())]
        await client.close()

        assert [result.transaction.id for result in results] == [1, 2]
        assert metrics.get_metric("upstream_records_skipped_total")._value.get() == 3

    @pytest.mark.asyncio
    async def test_stops_consuming_at_cap(self, cache_service):
        """Test the upstream stream is not consumed past the cap and is closed."""
        client = FakeSpendingClient(make_raws(50))
        fetcher = UpstreamStreamFetcher(client, PersistenceDispatcher(cache_service), max_transactions=20)

        results = [result async for result in fetcher.fetch_fresh(make_query(), set())]

        assert len(results) == 20
        assert client.yielded == 20
        assert client.closed is True

    @pytest.mark.asyncio
    async def test_persistence_does_not_block_emission(self):
        """Test results are emitted while writes are still pending."""
        blocker = asyncio.Event()

        async def blocked_cache(record, fingerprint=None):
            await blocker.wait()

        cache_service = MagicMock()
        cache_service.cache_transaction = AsyncMock(side_effect=blocked_cache)
        dispatcher = PersistenceDispatcher(cache_service, parallelism=1)
        fetcher = UpstreamStreamFetcher(FakeSpendingClient(make_raws(5)), dispatcher)

        results = [result async for result in fetcher.fetch_fresh(make_query(), set())]

        assert len(results) == 5
        assert dispatcher.pending == 5
        await dispatcher.close()

    @pytest.mark.asyncio
    async def test_upstream_error_propagates(self, cache_service):
        """Test upstream errors abort the sequence."""
        client = FakeSpendingClient([], error=UpstreamError(500, "boom"))
        fetcher = UpstreamStreamFetcher(client, PersistenceDispatcher(cache_service))

        with pytest.raises(UpstreamError):
            async for _ in fetcher.fetch_fresh(make_query(), set()):
                pass

        assert client.closed is True


class TestPagination:
    """Test cases for pagination assembly."""

    @pytest.mark.asyncio
    async def test_cache_first_then_fresh(self):
        """Test cache results precede fresh results without re-sorting."""
        combined = await collect_capped(
            [make_result(9), make_result(3)],
            fresh_from([make_result(1), make_result(5)])
        )

        assert [result.transaction.id for result in combined] == [9, 3, 1, 5]

    @pytest.mark.asyncio
    async def test_cap_truncates(self):
        """Test concatenation is capped."""
        combined = await collect_capped(
            [make_result(i) for i in range(3)],
            fresh_from([make_result(i) for i in range(100, 110)]),
            cap=5
        )

        assert [result.transaction.id for result in combined] == [0, 1, 2, 100, 101]

    @pytest.mark.asyncio
    async def test_fresh_not_pulled_when_cache_fills_cap(self):
        """Test fresh results are not touched when the cache fills the cap."""
        pulled = []

        async def fresh():
            pulled.append(True)
            yield make_result(100)

        combined = await collect_capped([make_result(i) for i in range(5)], fresh(), cap=5)

        assert len(combined) == 5
        assert pulled == []

    def test_middle_page(self):
        """Test slice and metadata for a middle page."""
        combined = [make_result(i) for i in range(25)]

        response = paginate(combined, make_query(page=1, size=10))

        assert [result.transaction.id for result in response.transactions] == list(range(10, 20))
        assert response.page.total_elements == 25
        assert response.page.total_pages == 3
        assert response.page.has_next is True
        assert response.page.has_previous is True

    def test_last_page(self):
        """Test the last partial page."""
        combined = [make_result(i) for i in range(25)]

        response = paginate(combined, make_query(page=2, size=10))

        assert len(response.transactions) == 5
        assert response.page.has_next is False

    def test_offset_past_end_is_empty(self):
        """Test a page past the end is empty but well-formed."""
        combined = [make_result(i) for i in range(15)]

        response = paginate(combined, make_query(page=5, size=10))

        assert response.transactions == []
        assert response.page.current_page == 5
        assert response.page.has_next is False
        assert response.page.has_previous is True

    def test_total_elements_capped(self):
        """Test totalElements never exceeds the cap."""
        combined = [make_result(i) for i in range(30)]

        response = paginate(combined, make_query(page=0, size=10), cap=20)

        assert response.page.total_elements == 20
        assert response.page.total_pages == 2

    @pytest.mark.asyncio
    async def test_assemble(self):
        """Test assemble combines collection and pagination."""
        response = await assemble(
            [make_result(1)],
            fresh_from([make_result(2), make_result(3)]),
            make_query(page=0, size=2)
        )

        assert [result.transaction.id for result in response.transactions] == [1, 2]
        assert response.page.total_elements == 3
        assert response.page.total_pages == 2

    def test_wire_format(self):
        """Test camelCase metadata and hash field on the wire."""
        response = paginate([make_result(1)], make_query(page=0, size=10))

        payload = response.model_dump(by_alias=True, mode="json")

        assert payload["transactions"][0]["hash"] == "h1"
        assert payload["transactions"][0]["transaction"]["id"] == 1
        assert payload["page"] == {
            "currentPage": 0,
            "pageSize": 10,
            "totalElements": 1,
            "totalPages": 1,
            "hasNext": False,
            "hasPrevious": False
        }


class TestTransactionService:
    """End-to-end pipeline scenarios over the memory store."""

    @staticmethod
    def build(client: FakeSpendingClient, store: MemoryTransactionStore, max_transactions: int = 5000):
        metrics = MetricsCollector("transactions")
        cache_service = TransactionCacheService(store, metrics=metrics)
        dispatcher = PersistenceDispatcher(cache_service, metrics=metrics)
        service = TransactionService(
            reconciler=CacheReconciler(cache_service, metrics=metrics),
            fetcher=UpstreamStreamFetcher(client, dispatcher, max_transactions=max_transactions, metrics=metrics),
            max_transactions=max_transactions,
            metrics=metrics
        )
        return service, dispatcher, metrics

    @pytest.mark.asyncio
    async def test_first_request_with_empty_cache(self):
        """Test 15 upstream records with page 0 size 10."""
        client = FakeSpendingClient(make_raws(15))
        service, dispatcher, _ = self.build(client, MemoryTransactionStore())

        response = await service.fetch_transactions_paged(make_query(page=0, size=10))
        await dispatcher.drain()

        assert len(response.transactions) == 10
        assert response.page.model_dump(by_alias=True) == {
            "currentPage": 0,
            "pageSize": 10,
            "totalElements": 15,
            "totalPages": 2,
            "hasNext": True,
            "hasPrevious": False
        }

    @pytest.mark.asyncio
    async def test_repeat_request_served_from_cache(self):
        """Test a repeat request is served from cache with an identical page."""
        store = MemoryTransactionStore()
        client = FakeSpendingClient(make_raws(15))
        service, dispatcher, metrics = self.build(client, store)

        first = await service.fetch_transactions_paged(make_query(page=0, size=10))
        await dispatcher.drain()
        assert await store.count() == 15

        second = await service.fetch_transactions_paged(make_query(page=0, size=10))

        served = metrics.get_metric("transactions_served_total")
        assert served.labels(source="cache")._value.get() == 15
        assert served.labels(source="upstream")._value.get() == 15
        assert second.model_dump(by_alias=True) == first.model_dump(by_alias=True)

    @pytest.mark.asyncio
    async def test_cache_and_fresh_ids_disjoint(self):
        """Test cached ids are never fetched again."""
        store = MemoryTransactionStore()
        client = FakeSpendingClient(make_raws(8))
        service, dispatcher, _ = self.build(client, store)

        await service.fetch_transactions_paged(make_query())
        await dispatcher.drain()

        client.raws = make_raws(8) + make_raws(4, start_id=100)
        response = await service.fetch_transactions_paged(make_query(size=100))

        ids = [result.transaction.id for result in response.transactions]
        assert len(ids) == len(set(ids)) == 12
        assert ids[:8] == list(range(1, 9))

    @pytest.mark.asyncio
    async def test_oversized_page_clamped(self):
        """Test size 5000 is served as 2000."""
        client = FakeSpendingClient(make_raws(3))
        service, _, _ = self.build(client, MemoryTransactionStore())

        query = TransactionQuery.from_params([RECIPIENT], "2024-10-29", "2024-10-31", size="5000")
        response = await service.fetch_transactions_paged(query)

        assert response.page.page_size == 2000

    @pytest.mark.asyncio
    async def test_invalid_query_rejected_before_io(self):
        """Test validation happens before any upstream call."""
        client = FakeSpendingClient(make_raws(3))
        service, _, _ = self.build(client, MemoryTransactionStore())

        with pytest.raises(ValidationError):
            await service.fetch_transactions_paged(make_query(codes=()))

        assert client.requests == 0

    @pytest.mark.asyncio
    async def test_cap_applies_to_merged_results(self):
        """Test cached plus fresh results never exceed the cap."""
        store = MemoryTransactionStore()
        client = FakeSpendingClient(make_raws(6))
        service, dispatcher, _ = self.build(client, store, max_transactions=10)

        await service.fetch_transactions_paged(make_query())
        await dispatcher.drain()

        client.raws = make_raws(6) + make_raws(20, start_id=100)
        response = await service.fetch_transactions_paged(make_query(size=100))

        assert len(response.transactions) == 10
        assert response.page.total_elements == 10

    @pytest.mark.asyncio
    async def test_failing_persist_does_not_fail_response(self):
        """Test persistence failures are invisible to the caller."""
        store = MemoryTransactionStore()
        store.save = AsyncMock(side_effect=StorageError("disk full"))
        client = FakeSpendingClient(make_raws(5))
        service, dispatcher, metrics = self.build(client, store)

        response = await service.fetch_transactions_paged(make_query())
        await dispatcher.drain()

        assert len(response.transactions) == 5
        assert metrics.get_metric("cache_persist_total").labels(outcome="failed")._value.get() == 5

    @pytest.mark.asyncio
    async def test_upstream_error_propagates(self):
        """Test upstream failures reach the caller."""
        client = FakeSpendingClient([], error=UpstreamError(500, "boom"))
        service, _, _ = self.build(client, MemoryTransactionStore())

        with pytest.raises(UpstreamError):
            await service.fetch_transactions_paged(make_query())
