from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.errors import DuplicateError, StaleWriteError
from app.models.disbursement import Disbursement, DisbursementStatus
from app.utils.ids import parse_object_id


class DisbursementRepository:
    """Finance disbursement database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.finance_disbursements

    async def create_disbursement(self, disbursement: Disbursement, session=None) -> Disbursement:
        try:
            await self.collection.insert_one(disbursement.to_document(), session=session)
        except DuplicateKeyError:
            raise DuplicateError(
                f"Disbursement reference '{disbursement.disbursement_reference}' already exists"
            )
        return disbursement

    async def find_by_reference(self, reference: str, session=None) -> Optional[Disbursement]:
        doc = await self.collection.find_one({"disbursement_reference": reference}, session=session)
        return Disbursement(**doc) if doc else None

    async def get_disbursement(self, disbursement_id, session=None) -> Optional[Disbursement]:
        oid = parse_object_id(disbursement_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid}, session=session)
        return Disbursement(**doc) if doc else None

    async def list_by_booking(self, booking_id, session=None) -> List[Disbursement]:
        cursor = self.collection.find(
            {"booking_id": parse_object_id(booking_id)}, session=session
        ).sort("disbursement_date", -1)
        docs = await cursor.to_list(None)
        return [Disbursement(**doc) for doc in docs]

    async def total_committed(self, booking_id, session=None) -> int:
        """Sum of disbursement amounts for a booking, cancelled ones excluded."""
        disbursements = await self.list_by_booking(booking_id, session=session)
        return sum(
            d.disbursement_amount_paise
            for d in disbursements
            if d.status != DisbursementStatus.CANCELLED
        )

    async def update_disbursement(self, disbursement_id, expected_version: int, fields: dict, session=None) -> Disbursement:
        doc = await self.collection.find_one_and_update(
            {"_id": parse_object_id(disbursement_id), "version": expected_version},
            {
                "$set": {**fields, "updated_at": datetime.now(timezone.utc)},
                "$inc": {"version": 1},
            },
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StaleWriteError(f"Disbursement {disbursement_id} changed since version {expected_version}")
        return Disbursement(**doc)
