# discount_engine/database/database.py
import asyncpg
import logging
from pathlib import Path
from typing import List, Optional, Set
from ..config import Config

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Serializes migration runs when several processes start at once
MIGRATION_LOCK_ID = 727_001


class Database:
    """Owns the asyncpg pool and applies schema migrations"""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn
        self.pool: Optional[asyncpg.Pool] = None
        self.logger = logging.getLogger(__name__)

    async def connect(self):
        """Open the pool and bring the schema up to date"""
        dsn = self.dsn or Config.require_database_url()
        try:
            self.pool = await asyncpg.create_pool(
                dsn,
                min_size=Config.DB_POOL_MIN_SIZE,
                max_size=Config.DB_POOL_MAX_SIZE,
                command_timeout=Config.DB_COMMAND_TIMEOUT
            )
            await self._run_migrations()
            self.logger.info("Connected to discount rule database")
        except Exception as e:
            self.logger.error(f"Database connection failed: {e}")
            await self.close()
            raise

    async def close(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Database connection closed")

    async def _run_migrations(self):
        """Apply pending .sql migrations in file name order, each in its own transaction"""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    name VARCHAR(255) PRIMARY KEY,
                    applied_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
            try:
                applied = await self._applied_migrations(conn)
                for path in pending_migrations(applied):
                    async with conn.transaction():
                        await conn.execute(path.read_text())
                        await conn.execute("INSERT INTO schema_migrations (name) VALUES ($1)", path.name)
                    self.logger.info(f"Applied migration {path.name}")
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)

    @staticmethod
    async def _applied_migrations(conn) -> Set[str]:
        rows = await conn.fetch("SELECT name FROM schema_migrations")
        return {row['name'] for row in rows}


def pending_migrations(applied: Set[str], directory: Path = MIGRATIONS_DIR) -> List[Path]:
    return [path for path in sorted(directory.glob("*.sql")) if path.name not in applied]
