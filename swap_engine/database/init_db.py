import asyncio
from swap_engine.config import config
from swap_engine.database.postgres import OrderStore
from swap_engine.logging import setup_logging, logger

async def init_models():
    store = OrderStore(config)
    await store.connect() # This creates the engine

    logger.info("Creating tables...")
    await store.create_tables()
    logger.info("Tables created successfully.")

    await store.disconnect()

if __name__ == "__main__":
    setup_logging(config)
    asyncio.run(init_models())
