from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.deviation import DeviationAuthority, ManagerDeviation
from app.models.disbursement import Disbursement
from app.models.payment import DisbursementTransfer
from app.schemas.common import ObjectIdStr, ResponseMixin


class FinanceExpectedRequest(BaseModel):
    deal_amount_paise: int
    down_payment_expected_paise: int
    customer_paid_paise: Optional[int] = None


class FinanceExpectedResponse(BaseModel):
    deal_amount_paise: int
    down_payment_expected_paise: int
    finance_expected_paise: int
    down_payment_shortfall_paise: Optional[int] = None


class DisbursementCreate(BaseModel):
    booking_id: str
    finance_provider_id: str
    disbursement_reference: str
    disbursement_amount_paise: int
    transfer: Optional[DisbursementTransfer] = None
    disbursement_date: Optional[datetime] = None
    remark: Optional[str] = Field(default=None, max_length=500)


class ReceivedUpdate(BaseModel):
    received_amount_paise: int
    transfer: Optional[DisbursementTransfer] = None


class CancelRequest(BaseModel):
    reason: str


class DisbursementResponse(ResponseMixin, Disbursement):
    id: ObjectIdStr


class BookingDisbursements(BaseModel):
    booking_id: str
    disbursements: List[DisbursementResponse]
    total_committed_paise: int
    total_received_paise: int


class DeviationCreate(BaseModel):
    booking_id: str
    manager_id: str
    amount_paise: int
    reason: str


class AuthorityConfigure(BaseModel):
    total_limit_paise: int = Field(ge=0)
    per_transaction_limit_paise: int = Field(ge=0)
    manager_name: Optional[str] = None


class DeviationResponse(ResponseMixin, ManagerDeviation):
    id: ObjectIdStr


class AuthorityResponse(ResponseMixin, DeviationAuthority):
    id: ObjectIdStr
