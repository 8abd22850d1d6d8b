"""
PostgreSQL record store for the Transaction Proxy Service.
"""

from datetime import date
from typing import List, Optional

import asyncpg
from shared.logging import get_logger
from shared.errors import StorageError

from .contracts import CacheEntry


class PostgresTransactionStore:
    """asyncpg-backed store for cached transactions."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 30.0
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("transactions.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool and create the schema."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )

            await self._create_tables()

            self.logger.info("PostgreSQL transaction store started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL transaction store", error=str(e))
            raise StorageError("Failed to start record store", {"error": str(e)})

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL transaction store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id BIGINT PRIMARY KEY,
                    raw_json TEXT NOT NULL,
                    hash VARCHAR(128) NOT NULL,
                    recipt_edrpou VARCHAR(32) NOT NULL,
                    doc_date DATE
                );
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_transactions_recipt_doc_date
                ON transactions(recipt_edrpou, doc_date);
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StorageError("Record store is not started")
        return self.pool

    async def exists_by_id(self, transaction_id: int) -> bool:
        """Check whether a transaction is cached."""
        try:
            async with self._require_pool().acquire() as conn:
                found = await conn.fetchval(
                    "SELECT EXISTS(SELECT 1 FROM transactions WHERE id = $1)",
                    transaction_id
                )
                return bool(found)
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("Error checking transaction", transaction_id=transaction_id, error=str(e))
            raise StorageError("Failed to check cached transaction", {"error": str(e)})

    async def save(self, entry: CacheEntry) -> bool:
        """Insert an entry unless its id is already stored."""
        try:
            async with self._require_pool().acquire() as conn:
                status = await conn.execute("""
                    INSERT INTO transactions (id, raw_json, hash, recipt_edrpou, doc_date)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (id) DO NOTHING
                """,
                    entry.id, entry.raw_json, entry.fingerprint,
                    entry.recipient_code, entry.doc_date
                )
                return status.endswith(" 1")
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("Error saving transaction", transaction_id=entry.id, error=str(e))
            raise StorageError("Failed to save transaction", {"error": str(e)})

    async def find_by_owner_and_date_range(
        self,
        recipient_code: str,
        date_from: date,
        date_to: date
    ) -> List[CacheEntry]:
        """Load cached transactions for one recipient and date range."""
        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch("""
                    SELECT id, raw_json, hash, recipt_edrpou, doc_date
                    FROM transactions
                    WHERE recipt_edrpou = $1 AND doc_date BETWEEN $2 AND $3
                    ORDER BY doc_date, id
                """, recipient_code, date_from, date_to)

                return [
                    CacheEntry(
                        id=row["id"],
                        raw_json=row["raw_json"],
                        fingerprint=row["hash"],
                        recipient_code=row["recipt_edrpou"],
                        doc_date=row["doc_date"]
                    )
                    for row in rows
                ]
        except StorageError:
            raise
        except Exception as e:
            self.logger.error(
                "Error loading cached transactions",
                recipient_code=recipient_code,
                error=str(e)
            )
            raise StorageError("Failed to load cached transactions", {"error": str(e)})

    async def delete_older_than(self, cutoff: date) -> int:
        """Delete transactions dated before the cutoff."""
        try:
            async with self._require_pool().acquire() as conn:
                status = await conn.execute(
                    "DELETE FROM transactions WHERE doc_date < $1",
                    cutoff
                )
                return int(status.split()[-1])
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("Error deleting old transactions", cutoff=cutoff.isoformat(), error=str(e))
            raise StorageError("Failed to delete old transactions", {"error": str(e)})

    async def count_older_than(self, cutoff: date) -> int:
        """Count transactions dated before the cutoff."""
        try:
            async with self._require_pool().acquire() as conn:
                count = await conn.fetchval(
                    "SELECT COUNT(*) FROM transactions WHERE doc_date < $1",
                    cutoff
                )
                return count or 0
        except StorageError:
            raise
        except Exception as e:
            self.logger.error("Error counting old transactions", cutoff=cutoff.isoformat(), error=str(e))
            raise StorageError("Failed to count old transactions", {"error": str(e)})

    async def count(self) -> int:
        """Get total number of cached transactions."""
        try:
            async with self._require_pool().acquire() as conn:
                count = await conn.fetchval("SELECT COUNT(*) FROM transactions")
                return count or 0
        except Exception as e:
            self.logger.error("Error getting transaction count", error=str(e))
            return 0

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self._require_pool().acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
