import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    await create_indexes()
    logger.info("Connected to MongoDB database %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
        logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes."""
    db = mongodb.db

    # One reference number per payer
    await db["on_account_receipts"].create_index(
        [("payer_type", ASCENDING), ("payer_id", ASCENDING), ("ref_number", ASCENDING)],
        unique=True,
    )
    await db["on_account_receipts"].create_index([("payer_id", ASCENDING), ("status", ASCENDING)])
    await db["on_account_receipts"].create_index([("received_date", DESCENDING)])

    await db["ledger_entries"].create_index([("booking_id", ASCENDING), ("created_at", ASCENDING)])
    await db["ledger_entries"].create_index("status")

    await db["finance_disbursements"].create_index("disbursement_reference", unique=True)
    await db["finance_disbursements"].create_index("booking_id")

    await db["manager_deviations"].create_index("booking_id")
    await db["manager_deviations"].create_index("manager_id")

    await db["broker_ledgers"].create_index(
        [("broker_id", ASCENDING), ("branch_id", ASCENDING)],
        unique=True,
    )
    await db["broker_ledgers"].create_index("transactions.status")
