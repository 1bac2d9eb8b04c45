from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.broker_ledger import BrokerLedger, BrokerTransaction, BrokerTransactionType
from app.models.payment import BrokerPayment
from app.schemas.common import ObjectIdStr, ResponseMixin
from app.schemas.ledger import LedgerEntryResponse


class BrokerTransactionCreate(BaseModel):
    type: BrokerTransactionType
    amount_paise: int
    payment: BrokerPayment
    branch_id: Optional[str] = None
    booking_id: Optional[str] = None
    date: Optional[datetime] = None
    remark: Optional[str] = Field(default=None, max_length=200)
    is_on_account: bool = False


class BrokerLedgerResponse(ResponseMixin, BrokerLedger):
    id: ObjectIdStr


class PendingBrokerTransaction(BaseModel):
    broker_id: ObjectIdStr
    branch_id: Optional[ObjectIdStr] = None
    ledger_id: ObjectIdStr
    transaction: BrokerTransaction


class PendingApprovals(BaseModel):
    ledger_entries: List[LedgerEntryResponse]
    broker_transactions: List[PendingBrokerTransaction]


class StatementLine(BaseModel):
    transaction: BrokerTransaction
    running_balance_paise: int


class BrokerStatement(BaseModel):
    """Transactions of one ledger in date order; only APPROVED ones move the balance."""
    broker_id: ObjectIdStr
    branch_id: Optional[ObjectIdStr] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    opening_balance_paise: int = 0
    closing_balance_paise: int = 0
    lines: List[StatementLine] = Field(default_factory=list)


class BrokerSummary(BaseModel):
    broker_id: ObjectIdStr
    branch_id: Optional[ObjectIdStr] = None
    current_balance_paise: int
    on_account_paise: int
    approved_credit_paise: int = 0
    approved_debit_paise: int = 0
    pending_count: int = 0
    last_transaction_date: Optional[datetime] = None
