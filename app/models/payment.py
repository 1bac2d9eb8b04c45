"""
Payment-mode variants.

Each mode carries exactly the fields it needs and the union is discriminated
on `mode`, so a bank payment without a bank or a debit without a reason cannot
be constructed at all.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.models.base import PyObjectId


BANK_MODES = ("BANK", "UPI", "NEFT", "RTGS", "IMPS", "CHEQUE", "PAY_ORDER")
DEBIT_MODES = ("LATE_PAYMENT", "PENALTY", "CHEQUE_BOUNCE", "INSURANCE_ENDORSEMENT", "OTHER_DEBIT")


class _Variant(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")


class CashPayment(_Variant):
    mode: Literal["CASH"] = "CASH"
    cash_location_id: PyObjectId


class BankPayment(_Variant):
    mode: Literal["BANK", "UPI", "NEFT", "RTGS", "IMPS", "CHEQUE", "PAY_ORDER"]
    bank_id: PyObjectId
    transaction_reference: Optional[str] = None


class FinancePayment(_Variant):
    mode: Literal["FINANCE_DISBURSEMENT"] = "FINANCE_DISBURSEMENT"
    finance_provider_id: PyObjectId
    disbursement_id: Optional[PyObjectId] = None
    disbursement_reference: Optional[str] = None


class ExchangePayment(_Variant):
    mode: Literal["EXCHANGE"] = "EXCHANGE"
    bank_id: PyObjectId
    exchange_reference: Optional[str] = None


class OnAccountPayment(_Variant):
    mode: Literal["ON_ACCOUNT"] = "ON_ACCOUNT"
    receipt_id: PyObjectId
    ref_number: str
    payer_type: str
    payer_id: PyObjectId
    allocation_id: Optional[PyObjectId] = None


class OtherPayment(_Variant):
    mode: Literal["OTHER"] = "OTHER"
    note: Optional[str] = None


class DebitCharge(_Variant):
    mode: Literal["LATE_PAYMENT", "PENALTY", "CHEQUE_BOUNCE", "INSURANCE_ENDORSEMENT", "OTHER_DEBIT"]
    reason: str = Field(min_length=1)


# Ledger entries: credits and debit charges
EntryPayment = Annotated[
    Union[CashPayment, BankPayment, FinancePayment, ExchangePayment, OnAccountPayment, OtherPayment, DebitCharge],
    Field(discriminator="mode"),
]

# What a user may post by hand; on-account credits only come from allocation
ManualEntryPayment = Annotated[
    Union[CashPayment, BankPayment, FinancePayment, ExchangePayment, OtherPayment, DebitCharge],
    Field(discriminator="mode"),
]

ReceiptPayment = Annotated[
    Union[CashPayment, BankPayment, OtherPayment],
    Field(discriminator="mode"),
]

BrokerPayment = Annotated[
    Union[CashPayment, BankPayment, FinancePayment, ExchangePayment],
    Field(discriminator="mode"),
]


class ElectronicTransfer(_Variant):
    mode: Literal["NEFT", "RTGS", "IMPS"]
    utr: str = Field(min_length=1)


class InstrumentTransfer(_Variant):
    mode: Literal["CHEQUE", "DD"]
    instrument_number: str = Field(min_length=1)
    bank_id: Optional[PyObjectId] = None


class OtherTransfer(_Variant):
    mode: Literal["OTHER"] = "OTHER"
    note: Optional[str] = None


DisbursementTransfer = Annotated[
    Union[ElectronicTransfer, InstrumentTransfer, OtherTransfer],
    Field(discriminator="mode"),
]


def is_debit_mode(mode: str) -> bool:
    return mode in DEBIT_MODES
