from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.ledger import LedgerEntry, LedgerEntryType
from app.models.payment import ManualEntryPayment
from app.schemas.common import ObjectIdStr, ResponseMixin


class LedgerEntryCreate(BaseModel):
    booking_id: str
    amount_paise: int
    payment: ManualEntryPayment
    entry_type: Optional[LedgerEntryType] = None
    receipt_date: Optional[datetime] = None
    remark: Optional[str] = Field(default=None, max_length=500)


class LedgerEntryUpdate(BaseModel):
    """Amount may only change while PENDING; the rest is metadata."""
    amount_paise: Optional[int] = None
    remark: Optional[str] = Field(default=None, max_length=500)
    receipt_date: Optional[datetime] = None
    transaction_reference: Optional[str] = None


class ApproveRequest(BaseModel):
    remark: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str
    remark: Optional[str] = None


class LedgerEntryResponse(ResponseMixin, LedgerEntry):
    id: ObjectIdStr


class BookingLedgerSummary(BaseModel):
    booking_id: str
    deal_amount_paise: int
    customer_payments_paise: int = 0
    finance_disbursements_paise: int = 0
    on_account_allocations_paise: int = 0
    exchange_paise: int = 0
    reversals_paise: int = 0
    total_credit_paise: int = 0
    approved_credit_paise: int = 0
    pending_credit_paise: int = 0
    approved_debit_paise: int = 0
    pending_debit_paise: int = 0
    deviation_paise: int = 0
    balance_paise: int = 0

    @property
    def customer_paid_paise(self) -> int:
        return self.total_credit_paise - self.finance_disbursements_paise
