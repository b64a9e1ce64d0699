from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)


class Database:
    """MongoDB connection handle. Owned and closed by the host process."""

    def __init__(self, mongo_url: str = None, db_name: str = None):
        self.mongo_url = mongo_url or os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
        self.db_name = db_name or os.environ.get('DB_NAME', 'product_copy')
        self.client: AsyncIOMotorClient = None
        self.db = None

    async def connect(self):
        try:
            self.client = AsyncIOMotorClient(self.mongo_url)
            self.db = self.client[self.db_name]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {self.db_name}")
            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        if self.db is None:
            raise RuntimeError("Database is not connected")
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes. The unique shop index backs create-if-absent upserts."""
        await self.db.usage_stats.create_index("shop", unique=True)
        logger.info("MongoDB indexes created/verified")

