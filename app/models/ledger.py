"""
Ledger model - money movements against a booking.

Design principles:
- Append-only: corrections are new REVERSAL entries, nothing is deleted
- Signed amounts in integer paise: credits positive, debits negative
- Amount is frozen once the entry leaves PENDING
- Status: PENDING -> APPROVED | REJECTED
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.approval import ApprovalDecision, ApprovalStatus
from app.models.base import PyObjectId, VersionedModel, _utcnow
from app.models.payment import EntryPayment


class LedgerEntryType(str, Enum):
    BOOKING_PAYMENT = "BOOKING_PAYMENT"
    FINANCE_DISBURSEMENT = "FINANCE_DISBURSEMENT"
    ON_ACCOUNT_ALLOCATION = "ON_ACCOUNT_ALLOCATION"
    DEBIT_ENTRY = "DEBIT_ENTRY"
    REVERSAL = "REVERSAL"


class EntrySource(BaseModel):
    """Document that produced an entry (receipt allocation or disbursement)."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: str  # on_account_receipt | finance_disbursement
    ref_id: PyObjectId
    allocation_id: Optional[PyObjectId] = None


class LedgerEntry(VersionedModel):
    booking_id: PyObjectId
    entry_type: LedgerEntryType
    amount_paise: int
    payment: EntryPayment
    status: ApprovalStatus = ApprovalStatus.PENDING
    received_by: PyObjectId
    receipt_date: datetime = Field(default_factory=_utcnow)
    remark: Optional[str] = None
    source: Optional[EntrySource] = None
    reverses_entry_id: Optional[PyObjectId] = None
    approval: Optional[ApprovalDecision] = None

    @property
    def is_credit(self) -> bool:
        return self.amount_paise > 0

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING
