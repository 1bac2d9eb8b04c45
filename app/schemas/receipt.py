from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from app.models.payment import ReceiptPayment
from app.models.receipt import OnAccountReceipt, PayerType, ReceiptStatus
from app.schemas.common import ObjectIdStr, ResponseMixin


class ReceiptCreate(BaseModel):
    payer_type: PayerType
    payer_id: str
    ref_number: str
    amount_paise: int
    payment: ReceiptPayment
    received_date: Optional[datetime] = None
    remark: Optional[str] = Field(default=None, max_length=500)


class ReceiptFilters(BaseModel):
    payer_type: Optional[PayerType] = None
    payer_id: Optional[str] = None
    status: Optional[ReceiptStatus] = None
    q: Optional[str] = None
    received_from: Optional[datetime] = None
    received_to: Optional[datetime] = None


class AllocationLine(BaseModel):
    booking_id: str
    amount_paise: int
    remark: Optional[str] = Field(default=None, max_length=500)


class AllocateRequest(BaseModel):
    allocations: List[AllocationLine]


class ReceiptResponse(ResponseMixin, OnAccountReceipt):
    id: ObjectIdStr

    @computed_field
    @property
    def balance_paise(self) -> int:
        return self.amount_paise - self.allocated_total_paise


class StatusTotals(BaseModel):
    status: ReceiptStatus
    count: int = 0
    amount_paise: int = 0
    allocated_paise: int = 0
    balance_paise: int = 0


class PayerSummary(BaseModel):
    payer_type: PayerType
    payer_id: str
    by_status: List[StatusTotals]
    total_count: int = 0
    total_amount_paise: int = 0
    total_allocated_paise: int = 0
    total_balance_paise: int = 0
