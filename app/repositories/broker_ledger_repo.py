from datetime import datetime, timezone
from typing import List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.errors import StaleWriteError
from app.models.approval import ApprovalStatus
from app.models.broker_ledger import BrokerLedger
from app.utils.ids import parse_object_id


class BrokerLedgerRepository:
    """One running ledger document per (broker, branch)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.broker_ledgers

    async def find_ledger(self, broker_id, branch_id=None, session=None) -> Optional[BrokerLedger]:
        oid = parse_object_id(broker_id)
        if oid is None:
            return None
        doc = await self.collection.find_one(
            {"broker_id": oid, "branch_id": parse_object_id(branch_id)},
            session=session,
        )
        return BrokerLedger(**doc) if doc else None

    async def create_ledger(self, ledger: BrokerLedger, session=None) -> BrokerLedger:
        try:
            await self.collection.insert_one(ledger.to_document(), session=session)
        except DuplicateKeyError:
            # Another request opened the ledger first
            raise StaleWriteError(f"Broker ledger for {ledger.broker_id} already created")
        return ledger

    async def save_transactions(self, ledger: BrokerLedger, expected_version: int, session=None) -> BrokerLedger:
        doc = await self.collection.find_one_and_update(
            {"_id": ledger.id, "version": expected_version},
            {
                "$set": {
                    "transactions": [tx.model_dump(mode="python") for tx in ledger.transactions],
                    "current_balance_paise": ledger.current_balance_paise,
                    "on_account_paise": ledger.on_account_paise,
                    "last_updated_by": ledger.last_updated_by,
                    "updated_at": datetime.now(timezone.utc),
                },
                "$inc": {"version": 1},
            },
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StaleWriteError(f"Broker ledger {ledger.id} changed since version {expected_version}")
        return BrokerLedger(**doc)

    async def list_with_pending(self, limit: int = 100) -> List[BrokerLedger]:
        cursor = self.collection.find(
            {"transactions.status": ApprovalStatus.PENDING.value}
        ).sort("updated_at", -1).limit(limit)
        docs = await cursor.to_list(None)
        return [BrokerLedger(**doc) for doc in docs]

    async def list_ledgers(self, skip: int, limit: int) -> Tuple[List[BrokerLedger], int]:
        total = await self.collection.count_documents({})
        cursor = self.collection.find({}).sort("current_balance_paise", -1).skip(skip).limit(limit)
        docs = await cursor.to_list(None)
        return [BrokerLedger(**doc) for doc in docs], total
