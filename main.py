import asyncio
from config import Config, logger, setup_logging
from services.record_store import DatabaseRecordStore, StorageError
from web import create_and_start_server

async def main():
    """
    Main entry point for the application.
    Opens the record store and serves the survey, contact and dashboard endpoints.
    """
    setup_logging(Config.LOG_LEVEL)

    # Validate configuration
    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return

    store = DatabaseRecordStore(Config.DATABASE_URL)
    try:
        await store.create_schema()
    except StorageError as e:
        logger.error(f"Error opening record store: {e}")
        return

    runner = await create_and_start_server(store)
    try:
        # Serve until cancelled
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        await store.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
