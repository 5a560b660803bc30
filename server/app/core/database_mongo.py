from datetime import timezone
from motor.motor_asyncio import AsyncIOMotorClient
import asyncio
from typing import Optional
import logging

from app.core.config import Settings, settings as default_settings
from app.core.errors import StoreUnavailableError
from app.db.base import DocumentStore
from app.db.memory import InMemoryDocumentStore
from app.db.mongo import MongoDocumentStore

logger = logging.getLogger(__name__)

# MongoDB client
client: Optional[AsyncIOMotorClient] = None


def get_database_url(settings: Settings = default_settings) -> str:
    """Get MongoDB connection URL."""
    if settings.MONGODB_URL:
        return settings.MONGODB_URL

    # Build URL from components
    if settings.MONGODB_USERNAME and settings.MONGODB_PASSWORD:
        auth = f"{settings.MONGODB_USERNAME}:{settings.MONGODB_PASSWORD}@"
    else:
        auth = ""

    return f"mongodb://{auth}{settings.MONGODB_HOST}:{settings.MONGODB_PORT}/{settings.MONGODB_DATABASE}"


async def connect_to_mongo(settings: Settings = default_settings) -> MongoDocumentStore:
    """Create database connection and return a document store over it."""
    global client

    database_url = get_database_url(settings)

    client = AsyncIOMotorClient(
        database_url,
        serverSelectionTimeoutMS=5000,  # 5 second timeout
        connectTimeoutMS=10000,  # 10 second connection timeout
        socketTimeoutMS=20000,  # 20 second socket timeout
        maxPoolSize=10,
        minPoolSize=1,
        maxIdleTimeMS=30000,
        # Writes carry money; a failed write surfaces to the caller instead
        retryWrites=False,
        retryReads=True,
        tz_aware=True,
        tzinfo=timezone.utc,
    )

    try:
        await asyncio.wait_for(client.admin.command('ping'), timeout=5.0)
    except asyncio.TimeoutError:
        logger.error("MongoDB connection timeout")
        raise StoreUnavailableError("MongoDB connection timeout")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        raise StoreUnavailableError(f"Failed to connect to MongoDB: {e}") from e

    logger.info(f"Connected to MongoDB database {settings.MONGODB_DATABASE}")
    return MongoDocumentStore(client[settings.MONGODB_DATABASE], client=client)


async def close_mongo_connection():
    """Close database connection."""
    global client
    if client is not None:
        try:
            client.close()
        except Exception as e:
            logger.warning(f"Error closing MongoDB connection (this is usually harmless): {e}")
        finally:
            client = None


async def connect_to_store(settings: Settings = default_settings) -> DocumentStore:
    """Open the configured document store backend."""
    if settings.STORE_BACKEND == "memory":
        logger.info("Using in-memory document store")
        return InMemoryDocumentStore()
    if settings.STORE_BACKEND == "mongo":
        return await connect_to_mongo(settings)
    raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND!r}")


async def close_store(store: Optional[DocumentStore]):
    """Release the document store opened by connect_to_store."""
    if store is None:
        return
    try:
        await store.close()
    finally:
        if isinstance(store, MongoDocumentStore):
            await close_mongo_connection()
