"""
On-account receipt model - a bulk payment from a subdealer or broker that is
later allocated to bookings.

Invariants:
- allocated_total_paise == sum(allocation.amount_paise)
- 0 <= allocated_total_paise <= amount_paise
- status is derived from (amount_paise, allocated_total_paise) on every load
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.base import PyObjectId, VersionedModel, _utcnow
from app.models.payment import ReceiptPayment


class PayerType(str, Enum):
    SUBDEALER = "SUBDEALER"
    BROKER = "BROKER"


class ReceiptStatus(str, Enum):
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    CLOSED = "CLOSED"


def derive_status(amount_paise: int, allocated_total_paise: int) -> ReceiptStatus:
    if allocated_total_paise <= 0:
        return ReceiptStatus.OPEN
    if allocated_total_paise >= amount_paise:
        return ReceiptStatus.CLOSED
    return ReceiptStatus.PARTIAL


class Allocation(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    allocation_id: PyObjectId = Field(default_factory=PyObjectId)
    booking_id: PyObjectId
    amount_paise: int = Field(gt=0)
    ledger_entry_id: PyObjectId
    allocated_by: PyObjectId
    allocated_at: datetime = Field(default_factory=_utcnow)
    remark: Optional[str] = None
    idempotency_key: Optional[str] = None


class OnAccountReceipt(VersionedModel):
    payer_type: PayerType
    payer_id: PyObjectId
    ref_number: str
    amount_paise: int = Field(gt=0)
    payment: ReceiptPayment
    received_date: datetime = Field(default_factory=_utcnow)
    received_by: PyObjectId
    remark: Optional[str] = None

    status: ReceiptStatus = ReceiptStatus.OPEN
    allocations: List[Allocation] = Field(default_factory=list)
    allocated_total_paise: int = 0
    closed_at: Optional[datetime] = None
    closed_by: Optional[PyObjectId] = None
    # Keys of every allocate request applied, kept after its allocations are reversed
    idempotency_keys: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _derive_status(self) -> "OnAccountReceipt":
        self.status = derive_status(self.amount_paise, self.allocated_total_paise)
        return self

    @property
    def balance_paise(self) -> int:
        return self.amount_paise - self.allocated_total_paise

    def add_allocation(self, allocation: Allocation) -> None:
        self.allocations.append(allocation)
        if allocation.idempotency_key and allocation.idempotency_key not in self.idempotency_keys:
            self.idempotency_keys.append(allocation.idempotency_key)
        self._recompute(allocation.allocated_by)

    def remove_allocation(self, allocation_id, actor_id) -> Allocation:
        allocation = self.find_allocation(allocation_id)
        if allocation is None:
            raise ValueError(f"Allocation {allocation_id} not found on receipt {self.id}")
        self.allocations = [a for a in self.allocations if a.allocation_id != allocation.allocation_id]
        self._recompute(actor_id)
        return allocation

    def _recompute(self, actor_id) -> None:
        self.allocated_total_paise = sum(a.amount_paise for a in self.allocations)
        self.status = derive_status(self.amount_paise, self.allocated_total_paise)
        if self.status == ReceiptStatus.CLOSED:
            if self.closed_at is None:
                self.closed_at = _utcnow()
                self.closed_by = actor_id
        else:
            self.closed_at = None
            self.closed_by = None

    def find_allocation(self, allocation_id) -> Optional[Allocation]:
        for allocation in self.allocations:
            if str(allocation.allocation_id) == str(allocation_id):
                return allocation
        return None

    def allocations_for_key(self, idempotency_key: str) -> List[Allocation]:
        return [a for a in self.allocations if a.idempotency_key == idempotency_key]

    def has_seen_key(self, idempotency_key: str) -> bool:
        return idempotency_key in self.idempotency_keys
