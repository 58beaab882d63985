# main.py
import asyncio
import logging
from freshlocal.app import MarketplaceApp
from freshlocal.config import Config, setup_logging
from freshlocal.database import Database, PostgresStore
from freshlocal.services.realtime import PostgresTransport

async def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)

    Config.validate()
    db = Database()
    try:
        await db.connect()
        app = MarketplaceApp(PostgresStore(db), PostgresTransport(db))
        logger.info("Starting server...")
        await app.start()
    except Exception as e:
        logger.error(f"Error starting server: {e}", exc_info=True)
        raise
    finally:
        await db.close()

if __name__ == "__main__":
    asyncio.run(main())
