"""
Adapters package for the Transaction Proxy Service.

Contains the HTTP client for the upstream spending API. The adapter
encapsulates:

- Base URL, query shape and connection pooling
- Incremental decoding of the JSON array response body
- Error handling that maps to shared errors

Requests are never retried here; failures surface to the pipeline.
"""

from .json_stream import JsonArrayDecoder
from .spending_client import SpendingApiClient

__all__ = ["JsonArrayDecoder", "SpendingApiClient"]
