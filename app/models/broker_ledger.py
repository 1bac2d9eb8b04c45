from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from app.models.approval import ApprovalDecision, ApprovalStatus
from app.models.base import PyObjectId, VersionedModel, _utcnow
from app.models.payment import BrokerPayment


class BrokerTransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class BrokerTransaction(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    transaction_id: PyObjectId = Field(default_factory=PyObjectId)
    date: datetime = Field(default_factory=_utcnow)
    type: BrokerTransactionType
    amount_paise: int = Field(gt=0)
    payment: BrokerPayment
    booking_id: Optional[PyObjectId] = None
    remark: Optional[str] = Field(default=None, max_length=200)
    is_on_account: bool = False
    status: ApprovalStatus = ApprovalStatus.PENDING
    approval: Optional[ApprovalDecision] = None
    created_by: PyObjectId


def balance_effect(tx: BrokerTransaction) -> int:
    """Signed amount a transaction adds to the broker balance, zero until approved."""
    if tx.status != ApprovalStatus.APPROVED:
        return 0
    return tx.amount_paise if tx.type == BrokerTransactionType.CREDIT else -tx.amount_paise


def compute_broker_balances(transactions: List[BrokerTransaction]) -> Tuple[int, int]:
    """(current balance, on-account amount) over APPROVED transactions only."""
    balance = 0
    on_account = 0
    for tx in transactions:
        balance += balance_effect(tx)
        if tx.is_on_account and tx.type == BrokerTransactionType.CREDIT and tx.status == ApprovalStatus.APPROVED:
            on_account += tx.amount_paise
    return balance, on_account


class BrokerLedger(VersionedModel):
    broker_id: PyObjectId
    branch_id: Optional[PyObjectId] = None
    transactions: List[BrokerTransaction] = Field(default_factory=list)
    current_balance_paise: int = 0
    on_account_paise: int = 0
    created_by: Optional[PyObjectId] = None
    last_updated_by: Optional[PyObjectId] = None

    def find_transaction(self, transaction_id) -> Optional[BrokerTransaction]:
        for tx in self.transactions:
            if str(tx.transaction_id) == str(transaction_id):
                return tx
        return None

    def refresh_balances(self) -> None:
        self.current_balance_paise, self.on_account_paise = compute_broker_balances(self.transactions)
