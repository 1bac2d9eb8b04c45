"""
Allocation engine - moves on-account receipt balance onto bookings.

A call either allocates every requested line or nothing:
1. Load the receipt and every target booking inside one transaction
2. Validate the whole batch (plan_allocation)
3. Write the receipt with a version check, then one ledger credit per line
   which also reserves the booking's outstanding balance

A lost version check re-runs the whole unit against fresh state, so two
concurrent requests racing for the same receipt balance serialize and the
loser fails validation instead of overdrawing.
"""

import logging
from typing import Dict, List, Optional

from bson import ObjectId

from app.core.config import settings
from app.core.errors import InvalidStateError, NotFoundError, ValidationError
from app.db.session import get_database
from app.db.transaction import run_in_transaction
from app.models.approval import ApprovalStatus
from app.models.booking import Booking
from app.models.ledger import EntrySource, LedgerEntryType
from app.models.payment import OnAccountPayment
from app.models.receipt import Allocation, OnAccountReceipt, ReceiptStatus
from app.repositories.booking_repo import BookingRepository
from app.repositories.ledger_repo import LedgerRepository
from app.repositories.receipt_repo import ReceiptRepository
from app.schemas.receipt import AllocationLine
from app.services.approval import transition
from app.services.ledger_service import ON_ACCOUNT_SOURCE, LedgerService

logger = logging.getLogger(__name__)


def plan_allocation(
    receipt: OnAccountReceipt,
    lines: List[AllocationLine],
    bookings: Dict[str, Optional[Booking]],
) -> None:
    """Raise if any line of the batch cannot be applied. Lines keep caller order."""
    if receipt.status == ReceiptStatus.CLOSED:
        raise InvalidStateError(f"Receipt {receipt.ref_number} is closed, nothing left to allocate")
    if not lines:
        raise ValidationError("At least one allocation is required")

    for line in lines:
        if line.amount_paise <= 0:
            raise ValidationError(
                f"Allocation amount must be positive, got {line.amount_paise} for booking {line.booking_id}"
            )

    requested = sum(line.amount_paise for line in lines)
    if requested > receipt.balance_paise:
        raise ValidationError(
            f"Requested allocation {requested} exceeds remaining receipt balance {receipt.balance_paise}"
        )

    remaining: Dict[str, int] = {}
    for line in lines:
        booking = bookings.get(line.booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {line.booking_id} not found")
        if not booking.belongs_to(receipt.payer_type, receipt.payer_id):
            raise ValidationError(
                f"Booking {booking.booking_number or booking.id} does not belong to "
                f"{receipt.payer_type.value.lower()} {receipt.payer_id}"
            )
        left = remaining.setdefault(line.booking_id, booking.outstanding_paise)
        if line.amount_paise > left:
            raise ValidationError(
                f"Allocation {line.amount_paise} exceeds outstanding balance {left} "
                f"of booking {booking.booking_number or booking.id}"
            )
        remaining[line.booking_id] = left - line.amount_paise


def allocation_status_for(receipt: OnAccountReceipt) -> ApprovalStatus:
    if receipt.payer_type.value in settings.AUTO_APPROVE_ALLOCATION_PAYERS:
        return ApprovalStatus.APPROVED
    return ApprovalStatus.PENDING


class AllocationService:
    @staticmethod
    async def allocate(
        receipt_id,
        lines: List[AllocationLine],
        actor_id,
        idempotency_key: Optional[str] = None,
    ) -> OnAccountReceipt:
        db = await get_database()
        receipts = ReceiptRepository(db)
        bookings = BookingRepository(db)

        async def work(session):
            receipt = await receipts.get_receipt(receipt_id, session=session)
            if receipt is None:
                raise NotFoundError(f"On-account receipt {receipt_id} not found")

            if idempotency_key and receipt.has_seen_key(idempotency_key):
                logger.info("Allocation replay on receipt %s for key %s", receipt.id, idempotency_key)
                return receipt

            booking_map: Dict[str, Optional[Booking]] = {}
            for line in lines:
                if line.booking_id not in booking_map:
                    booking_map[line.booking_id] = await bookings.get_booking(line.booking_id, session=session)

            plan_allocation(receipt, lines, booking_map)

            status = allocation_status_for(receipt)
            expected_version = receipt.version
            pending = []
            for line in lines:
                allocation = Allocation(
                    booking_id=booking_map[line.booking_id].id,
                    amount_paise=line.amount_paise,
                    ledger_entry_id=ObjectId(),
                    allocated_by=actor_id,
                    remark=line.remark,
                    idempotency_key=idempotency_key,
                )
                receipt.add_allocation(allocation)
                pending.append(allocation)

            saved = await receipts.save_allocations(receipt, expected_version, session=session)

            for allocation in pending:
                await LedgerService.post_entry(
                    db,
                    booking_id=allocation.booking_id,
                    amount_paise=allocation.amount_paise,
                    payment=OnAccountPayment(
                        receipt_id=receipt.id,
                        ref_number=receipt.ref_number,
                        payer_type=receipt.payer_type.value,
                        payer_id=receipt.payer_id,
                        allocation_id=allocation.allocation_id,
                    ),
                    received_by=actor_id,
                    entry_type=LedgerEntryType.ON_ACCOUNT_ALLOCATION,
                    status=status,
                    receipt_date=receipt.received_date,
                    remark=allocation.remark or f"On-account allocation from {receipt.ref_number}",
                    source=EntrySource(
                        kind=ON_ACCOUNT_SOURCE,
                        ref_id=receipt.id,
                        allocation_id=allocation.allocation_id,
                    ),
                    entry_id=allocation.ledger_entry_id,
                    session=session,
                )
            return saved

        receipt = await run_in_transaction(db, work)
        logger.info(
            "Receipt %s allocated: lines=%d allocated_total=%d status=%s",
            receipt.id, len(lines), receipt.allocated_total_paise, receipt.status.value,
        )
        return receipt

    @staticmethod
    async def deallocate(receipt_id, allocation_id, actor_id) -> OnAccountReceipt:
        db = await get_database()
        receipts = ReceiptRepository(db)
        bookings = BookingRepository(db)
        entries = LedgerRepository(db)

        async def work(session):
            receipt = await receipts.get_receipt(receipt_id, session=session)
            if receipt is None:
                raise NotFoundError(f"On-account receipt {receipt_id} not found")
            allocation = receipt.find_allocation(allocation_id)
            if allocation is None:
                raise NotFoundError(f"Allocation {allocation_id} not found on receipt {receipt.ref_number}")
            if receipt.status == ReceiptStatus.CLOSED and not settings.ALLOW_REOPEN_CLOSED_RECEIPTS:
                raise InvalidStateError(f"Receipt {receipt.ref_number} is closed, allocations cannot be reversed")

            expected_version = receipt.version
            receipt.remove_allocation(allocation.allocation_id, actor_id)
            saved = await receipts.save_allocations(receipt, expected_version, session=session)

            entry = await entries.get_entry(allocation.ledger_entry_id, session=session)
            if entry is None:
                raise NotFoundError(
                    f"Ledger entry {allocation.ledger_entry_id} of allocation {allocation.allocation_id} not found"
                )

            if entry.status == ApprovalStatus.PENDING:
                decision = transition(
                    entry.status, ApprovalStatus.REJECTED, actor_id,
                    rejection_reason="Allocation reversed", subject="Ledger entry",
                )
                await entries.update_entry(
                    entry.id,
                    entry.version,
                    {"status": ApprovalStatus.REJECTED.value, "approval": decision.model_dump(mode="python")},
                    session=session,
                )
                await bookings.release_credit(entry.booking_id, entry.amount_paise, session=session)
            elif entry.status == ApprovalStatus.APPROVED:
                await LedgerService.post_reversal(
                    db, entry, actor_id,
                    remark=f"Allocation reversed from {receipt.ref_number}",
                    session=session,
                )
            return saved

        receipt = await run_in_transaction(db, work)
        logger.info(
            "Allocation %s reversed on receipt %s: allocated_total=%d status=%s",
            allocation_id, receipt.id, receipt.allocated_total_paise, receipt.status.value,
        )
        return receipt
