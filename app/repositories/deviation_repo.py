from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.core.errors import StaleWriteError
from app.models.deviation import DeviationAuthority, ManagerDeviation
from app.utils.ids import parse_object_id


class DeviationRepository:
    """Manager deviation allowances and the deviations drawn from them."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.authorities = db.deviation_authorities
        self.collection = db.manager_deviations

    async def get_authority(self, manager_id, session=None) -> Optional[DeviationAuthority]:
        oid = parse_object_id(manager_id)
        if oid is None:
            return None
        doc = await self.authorities.find_one({"_id": oid}, session=session)
        return DeviationAuthority(**doc) if doc else None

    async def save_authority(self, authority: DeviationAuthority) -> DeviationAuthority:
        """Insert or replace a manager's allowance (opens a new period)."""
        await self.authorities.replace_one({"_id": authority.id}, authority.to_document(), upsert=True)
        return authority

    async def consume(self, manager_id, amount_paise: int, session=None) -> DeviationAuthority:
        """
        Draw `amount_paise` from the manager's available deviation.

        The filter re-checks both limits so a concurrent draw can never take
        the allowance below zero.
        """
        doc = await self.authorities.find_one_and_update(
            {
                "_id": parse_object_id(manager_id),
                "available_deviation_paise": {"$gte": amount_paise},
                "per_transaction_limit_paise": {"$gte": amount_paise},
            },
            {
                "$inc": {"available_deviation_paise": -amount_paise, "version": 1},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StaleWriteError(f"Deviation allowance of manager {manager_id} changed")
        return DeviationAuthority(**doc)

    async def insert_deviation(self, deviation: ManagerDeviation, session=None) -> ManagerDeviation:
        await self.collection.insert_one(deviation.to_document(), session=session)
        return deviation

    async def list_by_booking(self, booking_id) -> List[ManagerDeviation]:
        cursor = self.collection.find({"booking_id": parse_object_id(booking_id)}).sort("applied_at", 1)
        docs = await cursor.to_list(None)
        return [ManagerDeviation(**doc) for doc in docs]
