"""MongoDB Client - Shared connection for durable state stores"""
import re
import threading
from typing import Optional
from pymongo import MongoClient as PyMongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import ConnectionFailure

from ..config.settings import EngineSettings, get_settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# One pooled client per process; runners in different threads share it
_client: Optional[PyMongoClient] = None
_client_lock = threading.Lock()

_CREDENTIALS_RE = re.compile(r"//[^@/]+@")


def _redact(uri: str) -> str:
    return _CREDENTIALS_RE.sub("//***@", uri)


def get_client(settings: Optional[EngineSettings] = None) -> PyMongoClient:
    """
    Get or lazily create the MongoDB client

    Datetimes come back timezone-aware (UTC) so they compare with utc_now().

    Raises:
        ConnectionFailure: If the server does not answer a ping
    """
    global _client
    with _client_lock:
        if _client is not None:
            return _client

        settings = settings or get_settings()
        logger.info(f"Connecting to MongoDB: {_redact(settings.mongo_uri)}")
        client = PyMongoClient(
            settings.mongo_uri,
            tz_aware=True,
            appname="stepflow",
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            socketTimeoutMS=30000,
        )
        try:
            client.admin.command("ping")
        except ConnectionFailure as e:
            logger.error(f"MongoDB connection failed: {e}")
            client.close()
            raise
        logger.info("MongoDB connection successful")
        _client = client
        return _client


def get_database(settings: Optional[EngineSettings] = None) -> Database:
    settings = settings or get_settings()
    return get_client(settings)[settings.mongo_db]


def get_collection(name: str, settings: Optional[EngineSettings] = None) -> Collection:
    return get_database(settings)[name]


def close_connection() -> None:
    """Close the shared client; the next get_client() reconnects"""
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None
            logger.info("MongoDB connection closed")
