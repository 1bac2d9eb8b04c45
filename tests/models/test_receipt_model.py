import pytest
from bson import ObjectId
from pydantic import ValidationError

from app.models.approval import ApprovalStatus
from app.models.booking import Booking
from app.models.broker_ledger import BrokerTransaction, BrokerTransactionType, compute_broker_balances
from app.models.payment import BankPayment, CashPayment, DebitCharge, is_debit_mode
from app.models.receipt import Allocation, OnAccountReceipt, ReceiptStatus, derive_status

ACTOR_ID = ObjectId()


def allocation(amount, **fields):
    return Allocation(booking_id=ObjectId(), amount_paise=amount, ledger_entry_id=ObjectId(), allocated_by=ACTOR_ID, **fields)


def test_derive_status():
    assert derive_status(10000, 0) == ReceiptStatus.OPEN
    assert derive_status(10000, 1) == ReceiptStatus.PARTIAL
    assert derive_status(10000, 9999) == ReceiptStatus.PARTIAL
    assert derive_status(10000, 10000) == ReceiptStatus.CLOSED


def test_status_is_rederived_on_load(make_receipt):
    stored = make_receipt(amount=5000).to_document()
    stored["allocations"] = [allocation(5000).model_dump()]
    stored["allocated_total_paise"] = 5000
    stored["status"] = "OPEN"

    receipt = OnAccountReceipt(**stored)

    assert receipt.status == ReceiptStatus.CLOSED
    assert receipt.balance_paise == 0


def test_allocations_keep_totals_and_close_markers(make_receipt):
    receipt = make_receipt(amount=5000)
    first = allocation(2000)
    second = allocation(3000, idempotency_key="k-1")

    receipt.add_allocation(first)
    assert receipt.status == ReceiptStatus.PARTIAL
    assert receipt.closed_at is None

    receipt.add_allocation(second)
    assert receipt.status == ReceiptStatus.CLOSED
    assert receipt.closed_by == ACTOR_ID
    assert receipt.allocations_for_key("k-1") == [second]
    assert receipt.has_seen_key("k-1")

    removed = receipt.remove_allocation(str(first.allocation_id), ACTOR_ID)
    assert removed is first
    assert receipt.allocated_total_paise == 3000
    assert receipt.status == ReceiptStatus.PARTIAL
    assert receipt.closed_at is None

    with pytest.raises(ValueError):
        receipt.remove_allocation(ObjectId(), ACTOR_ID)


def test_receipt_amount_must_be_positive(make_receipt):
    with pytest.raises(ValidationError):
        make_receipt(amount=0)


def test_payment_variants_require_their_fields():
    with pytest.raises(ValidationError):
        BankPayment(mode="RTGS")
    with pytest.raises(ValidationError):
        BankPayment(mode="CASH", bank_id=ObjectId())
    with pytest.raises(ValidationError):
        CashPayment()
    with pytest.raises(ValidationError):
        DebitCharge(mode="PENALTY", reason="")

    assert is_debit_mode("CHEQUE_BOUNCE")
    assert not is_debit_mode("CHEQUE")


def test_booking_ownership():
    subdealer, broker = ObjectId(), ObjectId()
    booking = Booking(subdealer_id=subdealer, broker_id=broker)

    assert booking.belongs_to("SUBDEALER", str(subdealer))
    assert booking.belongs_to("BROKER", broker)
    assert not booking.belongs_to("SUBDEALER", broker)
    assert not Booking().belongs_to("BROKER", broker)


def test_broker_balances_count_approved_only():
    def tx(tx_type, amount, status, on_account=False):
        return BrokerTransaction(
            type=tx_type,
            amount_paise=amount,
            payment=CashPayment(cash_location_id=ObjectId()),
            status=status,
            is_on_account=on_account,
            created_by=ACTOR_ID,
        )

    balance, on_account = compute_broker_balances([
        tx(BrokerTransactionType.CREDIT, 5000, ApprovalStatus.APPROVED, on_account=True),
        tx(BrokerTransactionType.CREDIT, 9000, ApprovalStatus.PENDING),
        tx(BrokerTransactionType.DEBIT, 1500, ApprovalStatus.APPROVED),
        tx(BrokerTransactionType.DEBIT, 700, ApprovalStatus.REJECTED),
    ])

    assert balance == 3500
    assert on_account == 5000
