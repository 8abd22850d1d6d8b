"""
Caching package for the Transaction Proxy Service.

- cache_service: insert-if-absent writes, concurrent per-recipient reads and
  age-based purge on top of the record store
- housekeeping: background memory monitor that purges old entries under
  memory pressure
"""

from .cache_service import TransactionCacheService
from .housekeeping import MemoryMonitor

__all__ = ["TransactionCacheService", "MemoryMonitor"]
