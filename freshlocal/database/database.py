import asyncpg
import logging
from pathlib import Path
from typing import List, Optional
from ..config import Config

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Any constant works; it only has to be the same on every instance
MIGRATION_LOCK_ID = 74_310_001

class Database:
    """asyncpg connection pool plus schema migrations"""

    def __init__(self, dsn: Optional[str] = None, min_size: Optional[int] = None,
                 max_size: Optional[int] = None):
        self.dsn = dsn or Config.DATABASE_URL
        self.min_size = min_size or Config.DB_POOL_MIN_SIZE
        self.max_size = max_size or Config.DB_POOL_MAX_SIZE
        self.pool: Optional[asyncpg.Pool] = None
        self.logger = logging.getLogger(__name__)

    async def connect(self):
        """Open the pool and apply pending migrations"""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size
            )
            applied = await self.migrate()
            self.logger.info(
                f"Database ready (pool {self.min_size}-{self.max_size}, "
                f"{len(applied)} migrations applied)"
            )
        except Exception as e:
            self.logger.error(f"Database connection failed: {e}")
            raise

    async def close(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Database connection closed")

    async def migrate(self) -> List[str]:
        """Apply *.sql files from migrations/ in name order, once each.

        Instances starting together serialise on an advisory lock, so each
        file runs exactly once. Returns the names applied by this call.
        """
        applied = []
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock($1)", MIGRATION_LOCK_ID)
                await conn.execute("""
                    CREATE TABLE IF NOT EXISTS migrations (
                        id SERIAL PRIMARY KEY,
                        name VARCHAR(255) NOT NULL UNIQUE,
                        applied_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                done = {
                    row["name"] for row in await conn.fetch("SELECT name FROM migrations")
                }

                for migration_file in sorted(MIGRATIONS_DIR.glob("*.sql")):
                    if migration_file.name in done:
                        continue
                    try:
                        await conn.execute(migration_file.read_text())
                    except asyncpg.PostgresError as e:
                        self.logger.error(f"Migration {migration_file.name} failed: {e}")
                        raise
                    await conn.execute(
                        "INSERT INTO migrations (name) VALUES ($1)", migration_file.name
                    )
                    applied.append(migration_file.name)
                    self.logger.info(f"Migration {migration_file.name} applied")
        return applied
