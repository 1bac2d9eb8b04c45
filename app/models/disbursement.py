from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from app.models.base import PyObjectId, VersionedModel, _utcnow
from app.models.payment import DisbursementTransfer


class DisbursementStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


def derive_disbursement_status(amount_paise: int, received_paise: int, cancelled: bool = False) -> DisbursementStatus:
    if cancelled:
        return DisbursementStatus.CANCELLED
    if received_paise <= 0:
        return DisbursementStatus.PENDING
    if received_paise >= amount_paise:
        return DisbursementStatus.COMPLETED
    return DisbursementStatus.PARTIAL


class Disbursement(VersionedModel):
    booking_id: PyObjectId
    finance_provider_id: PyObjectId
    disbursement_reference: str
    disbursement_amount_paise: int = Field(gt=0)
    received_amount_paise: int = 0
    transfer: Optional[DisbursementTransfer] = None
    disbursement_date: datetime = Field(default_factory=_utcnow)
    status: DisbursementStatus = DisbursementStatus.PENDING
    cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[PyObjectId] = None
    cancel_reason: Optional[str] = None
    ledger_entry_ids: List[PyObjectId] = Field(default_factory=list)
    remark: Optional[str] = None
    created_by: PyObjectId

    @property
    def outstanding_paise(self) -> int:
        return self.disbursement_amount_paise - self.received_amount_paise
