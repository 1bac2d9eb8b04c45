"""
Booking projection - the slice of the booking document this service reads and
mutates. Bookings themselves are owned by the sales module.

balance_amount_paise is the outstanding amount:
    deal + approved debits - received credits - deviation
"""

from typing import Optional

from app.models.base import PyObjectId, VersionedModel


class Booking(VersionedModel):
    booking_number: str = ""
    booking_type: Optional[str] = None
    subdealer_id: Optional[PyObjectId] = None
    broker_id: Optional[PyObjectId] = None
    branch_id: Optional[PyObjectId] = None

    deal_amount_paise: int = 0
    received_amount_paise: int = 0
    approved_amount_paise: int = 0
    debit_amount_paise: int = 0
    deviation_amount_paise: int = 0
    balance_amount_paise: int = 0

    @property
    def outstanding_paise(self) -> int:
        return self.balance_amount_paise

    @property
    def total_payable_paise(self) -> int:
        return self.deal_amount_paise + self.debit_amount_paise

    def belongs_to(self, payer_type: str, payer_id) -> bool:
        owner = self.subdealer_id if payer_type == "SUBDEALER" else self.broker_id
        return owner is not None and str(owner) == str(payer_id)
