from motor.motor_asyncio import AsyncIOMotorClient
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

class MongoDB:
    client: AsyncIOMotorClient = None

mongodb = MongoDB()

async def connect_to_mongo():
    """Connect to MongoDB and test the connection"""
    try:
        mongodb.client = AsyncIOMotorClient(settings.mongodb_url)
        # Test connection
        await mongodb.client.admin.command('ping')
        logger.info(f"✓ Connected to MongoDB at {settings.mongodb_url}")
    except Exception as e:
        logger.error(f"✗ Failed to connect to MongoDB: {e}")
        raise

async def close_mongo_connection():
    """Close MongoDB connection"""
    if mongodb.client:
        mongodb.client.close()
        mongodb.client = None
        logger.info("✓ Closed MongoDB connection")

def get_database():
    """Get the assessment database instance"""
    if mongodb.client is None:
        raise RuntimeError("MongoDB is not connected")
    return mongodb.client[settings.database_name]

async def ensure_indexes():
    """Create the indexes the session engine queries on"""
    db = get_database()
    await db[settings.questions_collection].create_index("questionId", unique=True)
    await db[settings.questions_collection].create_index([("subtopicId", 1), ("difficulty", 1)])
    await db[settings.questions_collection].create_index("sectionId")
    await db[settings.exam_sections_collection].create_index([("examId", 1), ("orderIndex", 1)])
    await db[settings.sessions_collection].create_index("sessionId", unique=True)
    await db[settings.attempts_collection].create_index([("userId", 1), ("isCorrect", 1)])
    await db[settings.streaks_collection].create_index(
        [("userId", 1), ("streakDate", 1)], unique=True
    )
    logger.info("✓ MongoDB indexes ensured")
