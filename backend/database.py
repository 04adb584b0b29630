"""
Database connection lifecycle

One motor client per process, created explicitly at startup and closed at
shutdown. Components receive the database handle at construction.
"""
from motor.motor_asyncio import AsyncIOMotorClient
import logging
from typing import Optional, Tuple

from fastapi import Request

from utils.environment import Settings

logger = logging.getLogger(__name__)


class MongoContext:
    """Owns the MongoDB client and the application database handle."""

    def __init__(self, client, db):
        self.client = client
        self.db = db

    async def check_connection(self) -> Tuple[bool, Optional[str]]:
        """
        Test database connection health.

        Returns:
            Tuple[bool, Optional[str]]: (success, error_message)
        """
        try:
            await self.client.admin.command('ping')
            await self.db.list_collection_names()

            logger.info(f"Database connected successfully: {self.db.name}")
            return True, None

        except Exception as e:
            error_msg = f"Database connection failed: {e}"
            logger.error(error_msg)
            return False, error_msg

    def close(self):
        self.client.close()
        logger.info("MongoDB client closed")


def connect_database(settings: Settings) -> MongoContext:
    """Create the MongoDB client with connection pool configuration."""
    try:
        client = AsyncIOMotorClient(
            settings.mongo_url,
            maxPoolSize=50,
            minPoolSize=10,
            connectTimeoutMS=5000,
            serverSelectionTimeoutMS=5000,
            retryWrites=True
        )
    except Exception as e:
        raise ValueError(f"Failed to create MongoDB client: {e}")

    return MongoContext(client, client[settings.db_name])


def get_db(request: Request):
    """FastAPI dependency returning the database handle for this app."""
    return request.app.state.db
