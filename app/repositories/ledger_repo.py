"""
LedgerRepository - append-only booking ledger.

Entries are inserted once and afterwards only touched through versioned
updates (pending amount edits, metadata, approval decisions).
"""

from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.core.errors import StaleWriteError
from app.models.approval import ApprovalStatus
from app.models.ledger import LedgerEntry
from app.utils.ids import parse_object_id


class LedgerRepository:
    """Repository for booking ledger entries."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.ledger_entries

    async def insert_entry(self, entry: LedgerEntry, session=None) -> LedgerEntry:
        await self.collection.insert_one(entry.to_document(), session=session)
        return entry

    async def get_entry(self, entry_id, session=None) -> Optional[LedgerEntry]:
        oid = parse_object_id(entry_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid}, session=session)
        return LedgerEntry(**doc) if doc else None

    async def list_by_booking(self, booking_id) -> List[LedgerEntry]:
        cursor = self.collection.find({"booking_id": parse_object_id(booking_id)}).sort("created_at", 1)
        docs = await cursor.to_list(None)
        return [LedgerEntry(**doc) for doc in docs]

    async def list_pending(self, limit: int = 100) -> List[LedgerEntry]:
        cursor = self.collection.find({"status": ApprovalStatus.PENDING.value}).sort("created_at", -1).limit(limit)
        docs = await cursor.to_list(None)
        return [LedgerEntry(**doc) for doc in docs]

    async def update_entry(self, entry_id, expected_version: int, fields: dict, session=None) -> LedgerEntry:
        doc = await self.collection.find_one_and_update(
            {"_id": parse_object_id(entry_id), "version": expected_version},
            {
                "$set": {**fields, "updated_at": datetime.now(timezone.utc)},
                "$inc": {"version": 1},
            },
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StaleWriteError(f"Ledger entry {entry_id} changed since version {expected_version}")
        return LedgerEntry(**doc)
