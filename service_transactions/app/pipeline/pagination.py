"""
Pagination of merged cache and upstream results.
"""

import math
from typing import AsyncIterator, List, Sequence

from .models import (
    MAX_TRANSACTIONS_PER_REQUEST, PageMetadata, PagedTransactionResponse,
    TransactionQuery, TransactionResult
)


async def collect_capped(
    cache_results: Sequence[TransactionResult],
    fresh_results: AsyncIterator[TransactionResult],
    cap: int = MAX_TRANSACTIONS_PER_REQUEST
) -> List[TransactionResult]:
    """Cache results followed by fresh results, truncated to ``cap``.

    Fresh results are pulled only while the cap has room, so an upstream
    request is never issued when the cache alone fills it.
    """
    combined = list(cache_results[:cap])
    if len(combined) >= cap:
        return combined

    async for result in fresh_results:
        combined.append(result)
        if len(combined) >= cap:
            break

    return combined


def paginate(
    combined: Sequence[TransactionResult],
    query: TransactionQuery,
    cap: int = MAX_TRANSACTIONS_PER_REQUEST
) -> PagedTransactionResponse:
    """Slice one page out of the merged results and derive its metadata."""
    offset = query.page * query.size
    page_items = list(combined[offset:offset + query.size])

    # max() keeps the 15-record, size-10 first page at totalElements 15 rather than 10.
    total_elements = min(cap, max(offset + len(page_items), len(combined)))
    total_pages = math.ceil(total_elements / query.size)

    return PagedTransactionResponse(
        transactions=page_items,
        page=PageMetadata(
            current_page=query.page,
            page_size=query.size,
            total_elements=total_elements,
            total_pages=total_pages,
            has_next=query.page < total_pages - 1,
            has_previous=query.page > 0
        )
    )


async def assemble(
    cache_results: Sequence[TransactionResult],
    fresh_results: AsyncIterator[TransactionResult],
    query: TransactionQuery,
    cap: int = MAX_TRANSACTIONS_PER_REQUEST
) -> PagedTransactionResponse:
    """Concatenate, cap and paginate cache and fresh results."""
    combined = await collect_capped(cache_results, fresh_results, cap)
    return paginate(combined, query, cap)
