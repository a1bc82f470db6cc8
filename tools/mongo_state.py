"""
MongoStateBackend — Async MongoDB storage for the research tracker blob.

The whole tracker state lives in one document tagged with a ``_type``
field, so a load is a single find_one and a save is a single upsert.

Requires:
  - MONGODB_URI in .env (default: mongodb://localhost:27017)
  - Database name: points_tracker (configurable)
"""

import logging
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from tools.state_backends import empty_state
from tools.tracker_errors import BackendNotConnectedError, PersistenceError

logger = logging.getLogger("MongoState")

STATE_DOCUMENT_TYPE = "research_state"


class MongoStateBackend:
    """Async MongoDB-backed state backend.

    Collection:
        tracker_state: a single document: {"_type": "research_state", topics, log}
    """

    def __init__(
        self,
        uri: str = "mongodb://localhost:27017",
        db_name: str = "points_tracker",
        collection: str = "tracker_state",
    ):
        self.uri = uri
        self.db_name = db_name
        self.collection_name = collection
        self._client: Any = None
        self._db: Any = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Connect to MongoDB. Returns True on success."""
        try:
            self._client = AsyncIOMotorClient(self.uri)
            # Verify connectivity
            await self._client.admin.command("ping")
            self._db = self._client[self.db_name]
            logger.info(f"MongoStateBackend connected to MongoDB: {self.db_name}")
            return True
        except PyMongoError as e:
            logger.error(f"MongoDB connection failed: {e}")
            self._client = None
            self._db = None
            return False

    async def close(self):
        """Close the MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._db = None

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    def _collection(self):
        if not self.is_connected:
            raise BackendNotConnectedError("MongoStateBackend is not connected to MongoDB.")
        return self._db[self.collection_name]

    # ------------------------------------------------------------------
    # Blob I/O
    # ------------------------------------------------------------------

    async def load(self) -> Dict[str, Any]:
        collection = self._collection()
        try:
            doc: Optional[Dict[str, Any]] = await collection.find_one({"_type": STATE_DOCUMENT_TYPE})
        except PyMongoError as e:
            raise PersistenceError(f"Loading tracker state failed: {e}") from e
        if not doc:
            return empty_state()
        doc.pop("_id", None)
        doc.pop("_type", None)
        return doc

    async def save(self, blob: Dict[str, Any]) -> None:
        collection = self._collection()
        doc = {**blob, "_type": STATE_DOCUMENT_TYPE}
        try:
            # Whole-document replace: keys absent from the blob must not survive.
            await collection.replace_one({"_type": STATE_DOCUMENT_TYPE}, doc, upsert=True)
        except PyMongoError as e:
            raise PersistenceError(f"Saving tracker state failed: {e}") from e
