from datetime import datetime, timezone
from typing import List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.errors import DuplicateError, StaleWriteError
from app.models.receipt import OnAccountReceipt
from app.utils.ids import parse_object_id


class ReceiptRepository:
    """On-account receipt database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.on_account_receipts

    async def create_receipt(self, receipt: OnAccountReceipt) -> OnAccountReceipt:
        try:
            await self.collection.insert_one(receipt.to_document())
        except DuplicateKeyError:
            raise DuplicateError(
                f"Reference number '{receipt.ref_number}' already exists for this {receipt.payer_type.value.lower()}"
            )
        return receipt

    async def find_by_ref(self, payer_type: str, payer_id, ref_number: str) -> Optional[OnAccountReceipt]:
        doc = await self.collection.find_one({
            "payer_type": payer_type,
            "payer_id": parse_object_id(payer_id),
            "ref_number": ref_number,
        })
        return OnAccountReceipt(**doc) if doc else None

    async def get_receipt(self, receipt_id, session=None) -> Optional[OnAccountReceipt]:
        oid = parse_object_id(receipt_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid}, session=session)
        return OnAccountReceipt(**doc) if doc else None

    async def list_receipts(
        self,
        query: dict,
        skip: int,
        limit: int,
        sort_field: str = "received_date",
        sort_direction: int = -1,
    ) -> Tuple[List[OnAccountReceipt], int]:
        total = await self.collection.count_documents(query)
        cursor = self.collection.find(query).sort(sort_field, sort_direction).skip(skip).limit(limit)
        docs = await cursor.to_list(None)
        return [OnAccountReceipt(**doc) for doc in docs], total

    async def save_allocations(
        self,
        receipt: OnAccountReceipt,
        expected_version: int,
        session=None,
    ) -> OnAccountReceipt:
        """
        Persist allocations, totals and derived status with a version check.

        Raises StaleWriteError when another writer bumped the version first.
        """
        doc = await self.collection.find_one_and_update(
            {"_id": receipt.id, "version": expected_version},
            {
                "$set": {
                    "allocations": [a.model_dump(mode="python") for a in receipt.allocations],
                    "allocated_total_paise": receipt.allocated_total_paise,
                    "status": receipt.status.value,
                    "closed_at": receipt.closed_at,
                    "closed_by": receipt.closed_by,
                    "idempotency_keys": receipt.idempotency_keys,
                    "updated_at": datetime.now(timezone.utc),
                },
                "$inc": {"version": 1},
            },
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StaleWriteError(f"Receipt {receipt.id} changed since version {expected_version}")
        return OnAccountReceipt(**doc)

    async def summarize_by_status(self, payer_type: str, payer_id) -> List[dict]:
        pipeline = [
            {"$match": {"payer_type": payer_type, "payer_id": parse_object_id(payer_id)}},
            {
                "$group": {
                    "_id": "$status",
                    "count": {"$sum": 1},
                    "amount_paise": {"$sum": "$amount_paise"},
                    "allocated_paise": {"$sum": "$allocated_total_paise"},
                }
            },
            {"$sort": {"_id": 1}},
        ]
        return await self.collection.aggregate(pipeline).to_list(None)
