# link-analytics-service/database.py
import logging

from beanie import init_beanie
from config import get_settings
from models import DOCUMENT_MODELS
from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger(__name__)


async def connect_to_mongo():
    settings = get_settings()

    client = AsyncIOMotorClient(f"mongodb://{settings.mongo_host}:{settings.mongo_port}")
    database = client[settings.mongo_db]

    try:
        await database.command("ping")
        logger.info(
            "Connected to MongoDB",
            extra={
                "mongo_db": settings.mongo_db,
                "mongo_host": settings.mongo_host,
                "mongo_port": settings.mongo_port,
            },
        )
        await init_beanie(database=database, document_models=DOCUMENT_MODELS)
        logger.info("Beanie ODM initialized.")
        return client, database
    except Exception:
        logger.exception("MongoDB connection failed")
        raise


async def close_mongo_connection(client: AsyncIOMotorClient):
    client.close()
    logger.info("Disconnected from MongoDB.")
