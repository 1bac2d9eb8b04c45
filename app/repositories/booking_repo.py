"""
BookingRepository - the narrow contract this service has with booking documents.

Every balance mutation is a single $inc. Decrements of the outstanding
balance are guarded by a `$gte` filter so a booking can never be overdrawn,
even by writers outside this service.
"""

from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.core.errors import StaleWriteError
from app.models.booking import Booking
from app.utils.ids import parse_object_id


class BookingRepository:

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.bookings

    async def get_booking(self, booking_id, session=None) -> Optional[Booking]:
        oid = parse_object_id(booking_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid}, session=session)
        return Booking(**doc) if doc else None

    async def _increment(self, booking_id, increments: dict, guard: Optional[dict] = None, session=None) -> Booking:
        query = {"_id": parse_object_id(booking_id)}
        if guard:
            query.update(guard)
        doc = await self.collection.find_one_and_update(
            query,
            {
                "$inc": {**increments, "version": 1},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            session=session,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StaleWriteError(f"Booking {booking_id} changed or no longer has the required balance")
        return Booking(**doc)

    async def apply_credit(self, booking_id, amount_paise: int, approved: bool = False, session=None) -> Booking:
        """Reserve outstanding balance for a (non-rejected) credit."""
        return await self._increment(
            booking_id,
            {
                "received_amount_paise": amount_paise,
                "approved_amount_paise": amount_paise if approved else 0,
                "balance_amount_paise": -amount_paise,
            },
            guard={"balance_amount_paise": {"$gte": amount_paise}},
            session=session,
        )

    async def release_credit(self, booking_id, amount_paise: int, was_approved: bool = False, session=None) -> Booking:
        return await self._increment(
            booking_id,
            {
                "received_amount_paise": -amount_paise,
                "approved_amount_paise": -amount_paise if was_approved else 0,
                "balance_amount_paise": amount_paise,
            },
            session=session,
        )

    async def approve_credit(self, booking_id, amount_paise: int, session=None) -> Booking:
        return await self._increment(booking_id, {"approved_amount_paise": amount_paise}, session=session)

    async def apply_debit(self, booking_id, amount_paise: int, session=None) -> Booking:
        """Approved debit charge: the customer owes more."""
        return await self._increment(
            booking_id,
            {"debit_amount_paise": amount_paise, "balance_amount_paise": amount_paise},
            session=session,
        )

    async def apply_deviation(self, booking_id, amount_paise: int, session=None) -> Booking:
        return await self._increment(
            booking_id,
            {"deviation_amount_paise": amount_paise, "balance_amount_paise": -amount_paise},
            guard={"balance_amount_paise": {"$gte": amount_paise}},
            session=session,
        )
