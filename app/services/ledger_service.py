import logging
from typing import List, Optional

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.session import get_database
from app.db.transaction import run_in_transaction
from app.models.approval import ApprovalDecision, ApprovalStatus
from app.models.booking import Booking
from app.models.disbursement import derive_disbursement_status
from app.models.ledger import EntrySource, LedgerEntry, LedgerEntryType
from app.models.payment import BankPayment, DebitCharge, FinancePayment, OnAccountPayment
from app.repositories.booking_repo import BookingRepository
from app.repositories.disbursement_repo import DisbursementRepository
from app.repositories.ledger_repo import LedgerRepository
from app.repositories.receipt_repo import ReceiptRepository
from app.schemas.ledger import BookingLedgerSummary, LedgerEntryCreate, LedgerEntryUpdate
from app.services.approval import transition

logger = logging.getLogger(__name__)

ON_ACCOUNT_SOURCE = "on_account_receipt"
DISBURSEMENT_SOURCE = "finance_disbursement"


def summarize_entries(booking: Booking, entries: List[LedgerEntry]) -> BookingLedgerSummary:
    """Credits by category, debits and the resulting balance of one booking."""
    summary = BookingLedgerSummary(
        booking_id=str(booking.id),
        deal_amount_paise=booking.deal_amount_paise,
        deviation_paise=booking.deviation_amount_paise,
    )

    for entry in entries:
        if entry.status == ApprovalStatus.REJECTED:
            continue

        if entry.entry_type == LedgerEntryType.DEBIT_ENTRY:
            if entry.status == ApprovalStatus.APPROVED:
                summary.approved_debit_paise += -entry.amount_paise
            else:
                summary.pending_debit_paise += -entry.amount_paise
            continue

        if entry.entry_type == LedgerEntryType.REVERSAL:
            summary.reversals_paise += entry.amount_paise
        elif entry.entry_type == LedgerEntryType.FINANCE_DISBURSEMENT:
            summary.finance_disbursements_paise += entry.amount_paise
        elif entry.entry_type == LedgerEntryType.ON_ACCOUNT_ALLOCATION:
            summary.on_account_allocations_paise += entry.amount_paise
        elif entry.payment.mode == "EXCHANGE":
            summary.exchange_paise += entry.amount_paise
        else:
            summary.customer_payments_paise += entry.amount_paise

        summary.total_credit_paise += entry.amount_paise
        if entry.status == ApprovalStatus.APPROVED:
            summary.approved_credit_paise += entry.amount_paise
        else:
            summary.pending_credit_paise += entry.amount_paise

    summary.balance_paise = (
        summary.deal_amount_paise
        + summary.approved_debit_paise
        - summary.total_credit_paise
        - summary.deviation_paise
    )
    return summary


class LedgerService:
    @staticmethod
    async def post_entry(
        db,
        *,
        booking_id,
        amount_paise: int,
        payment,
        received_by,
        entry_type: Optional[LedgerEntryType] = None,
        status: ApprovalStatus = ApprovalStatus.PENDING,
        receipt_date=None,
        remark: Optional[str] = None,
        source: Optional[EntrySource] = None,
        entry_id=None,
        session=None,
    ) -> LedgerEntry:
        """
        Append one entry and move the booking balance in the same session.

        `amount_paise` is the magnitude; debit charges are stored negative.
        Credits reserve outstanding balance immediately, debits only count
        once approved.
        """
        if amount_paise <= 0:
            raise ValidationError(f"Amount must be positive, got {amount_paise}")

        bookings = BookingRepository(db)
        entries = LedgerRepository(db)

        booking = await bookings.get_booking(booking_id, session=session)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")

        is_debit = isinstance(payment, DebitCharge)
        if is_debit:
            entry_type = LedgerEntryType.DEBIT_ENTRY
        elif entry_type is None:
            entry_type = (
                LedgerEntryType.FINANCE_DISBURSEMENT
                if isinstance(payment, FinancePayment)
                else LedgerEntryType.BOOKING_PAYMENT
            )
        elif entry_type in (LedgerEntryType.DEBIT_ENTRY, LedgerEntryType.REVERSAL):
            raise ValidationError(f"Entry type {entry_type.value} cannot be posted as a credit")
        elif entry_type == LedgerEntryType.ON_ACCOUNT_ALLOCATION and not isinstance(payment, OnAccountPayment):
            raise ValidationError("On-account allocations are posted by allocating a receipt")
        elif entry_type == LedgerEntryType.FINANCE_DISBURSEMENT and not isinstance(payment, FinancePayment):
            raise ValidationError(f"Finance disbursement entries need a FINANCE payment, got {payment.mode}")

        if not is_debit and amount_paise > booking.outstanding_paise:
            raise ValidationError(
                f"Amount {amount_paise} exceeds outstanding balance {booking.outstanding_paise} "
                f"of booking {booking.booking_number or booking.id}"
            )

        entry = LedgerEntry(
            booking_id=booking.id,
            entry_type=entry_type,
            amount_paise=-amount_paise if is_debit else amount_paise,
            payment=payment,
            status=status,
            received_by=received_by,
            remark=remark,
            source=source,
        )
        if entry_id is not None:
            entry.id = entry_id
        if receipt_date is not None:
            entry.receipt_date = receipt_date
        if status != ApprovalStatus.PENDING:
            entry.approval = ApprovalDecision(status=status, decided_by=received_by, remark="Auto-approved")

        if is_debit:
            if status == ApprovalStatus.APPROVED:
                await bookings.apply_debit(booking.id, amount_paise, session=session)
        else:
            await bookings.apply_credit(
                booking.id,
                amount_paise,
                approved=status == ApprovalStatus.APPROVED,
                session=session,
            )

        await entries.insert_entry(entry, session=session)
        return entry

    @staticmethod
    async def post_reversal(db, original: LedgerEntry, actor_id, remark: Optional[str] = None, session=None) -> LedgerEntry:
        """Offset an APPROVED credit with an APPROVED negative entry."""
        reversal = LedgerEntry(
            booking_id=original.booking_id,
            entry_type=LedgerEntryType.REVERSAL,
            amount_paise=-original.amount_paise,
            payment=original.payment,
            status=ApprovalStatus.APPROVED,
            received_by=actor_id,
            remark=remark or f"Reversal of entry {original.id}",
            source=original.source,
            reverses_entry_id=original.id,
            approval=ApprovalDecision(status=ApprovalStatus.APPROVED, decided_by=actor_id, remark="Automatic reversal"),
        )
        await BookingRepository(db).release_credit(
            original.booking_id, original.amount_paise, was_approved=True, session=session
        )
        await LedgerRepository(db).insert_entry(reversal, session=session)
        return reversal

    @staticmethod
    async def create_entry(entry_in: LedgerEntryCreate, actor_id) -> LedgerEntry:
        db = await get_database()

        async def work(session):
            return await LedgerService.post_entry(
                db,
                booking_id=entry_in.booking_id,
                amount_paise=entry_in.amount_paise,
                payment=entry_in.payment,
                entry_type=entry_in.entry_type,
                received_by=actor_id,
                receipt_date=entry_in.receipt_date,
                remark=entry_in.remark,
                session=session,
            )

        entry = await run_in_transaction(db, work)
        logger.info(
            "Ledger entry %s posted: booking=%s type=%s amount=%d",
            entry.id, entry.booking_id, entry.entry_type.value, entry.amount_paise,
        )
        return entry

    @staticmethod
    async def get_entry(entry_id) -> LedgerEntry:
        db = await get_database()
        entry = await LedgerRepository(db).get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Ledger entry {entry_id} not found")
        return entry

    @staticmethod
    async def update_entry(entry_id, patch: LedgerEntryUpdate, actor_id) -> LedgerEntry:
        db = await get_database()
        entries = LedgerRepository(db)
        bookings = BookingRepository(db)

        async def work(session):
            entry = await entries.get_entry(entry_id, session=session)
            if entry is None:
                raise NotFoundError(f"Ledger entry {entry_id} not found")

            fields = {}
            if patch.amount_paise is not None and patch.amount_paise != abs(entry.amount_paise):
                if not entry.is_pending:
                    raise ConflictError(
                        f"Amount of a {entry.status.value} entry cannot be changed, post a reversal instead"
                    )
                if patch.amount_paise <= 0:
                    raise ValidationError(f"Amount must be positive, got {patch.amount_paise}")
                # The receipt allocation or disbursement carries the same amount
                if entry.source is not None:
                    raise ConflictError(
                        f"Amount of a {entry.entry_type.value} entry follows its {entry.source.kind}, "
                        "reverse it there and post again"
                    )

                if entry.is_credit:
                    delta = patch.amount_paise - entry.amount_paise
                    if delta > 0:
                        booking = await bookings.get_booking(entry.booking_id, session=session)
                        if booking is None:
                            raise NotFoundError(f"Booking {entry.booking_id} not found")
                        if delta > booking.outstanding_paise:
                            raise ValidationError(
                                f"Increase of {delta} exceeds outstanding balance {booking.outstanding_paise}"
                            )
                        await bookings.apply_credit(entry.booking_id, delta, session=session)
                    else:
                        await bookings.release_credit(entry.booking_id, -delta, session=session)
                    fields["amount_paise"] = patch.amount_paise
                else:
                    fields["amount_paise"] = -patch.amount_paise

            if patch.remark is not None:
                fields["remark"] = patch.remark
            if patch.receipt_date is not None:
                fields["receipt_date"] = patch.receipt_date
            if patch.transaction_reference is not None:
                if not isinstance(entry.payment, BankPayment):
                    raise ValidationError(
                        f"Payment mode {entry.payment.mode} does not carry a transaction reference"
                    )
                fields["payment.transaction_reference"] = patch.transaction_reference

            if not fields:
                return entry
            return await entries.update_entry(entry.id, entry.version, fields, session=session)

        updated = await run_in_transaction(db, work)
        logger.info("Ledger entry %s updated by %s", entry_id, actor_id)
        return updated

    @staticmethod
    async def set_approval_status(
        entry_id,
        target: ApprovalStatus,
        actor_id,
        remark: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> LedgerEntry:
        db = await get_database()
        entries = LedgerRepository(db)
        bookings = BookingRepository(db)
        receipts = ReceiptRepository(db)
        disbursements = DisbursementRepository(db)

        async def work(session):
            entry = await entries.get_entry(entry_id, session=session)
            if entry is None:
                raise NotFoundError(f"Ledger entry {entry_id} not found")

            decision = transition(
                entry.status, target, actor_id,
                remark=remark, rejection_reason=rejection_reason, subject="Ledger entry",
            )
            updated = await entries.update_entry(
                entry.id,
                entry.version,
                {"status": target.value, "approval": decision.model_dump(mode="python")},
                session=session,
            )

            if entry.is_credit:
                if target == ApprovalStatus.APPROVED:
                    await bookings.approve_credit(entry.booking_id, entry.amount_paise, session=session)
                else:
                    await bookings.release_credit(entry.booking_id, entry.amount_paise, session=session)
                    if entry.source is not None and entry.source.kind == ON_ACCOUNT_SOURCE:
                        await _release_receipt_allocation(receipts, entry, actor_id, session)
                    elif entry.source is not None and entry.source.kind == DISBURSEMENT_SOURCE:
                        await _release_disbursement_receipt(disbursements, entry, session)
            elif target == ApprovalStatus.APPROVED:
                await bookings.apply_debit(entry.booking_id, -entry.amount_paise, session=session)

            return updated

        updated = await run_in_transaction(db, work)
        logger.info("Ledger entry %s %s by %s", updated.id, target.value, actor_id)
        return updated

    @staticmethod
    async def list_entries(booking_id) -> List[LedgerEntry]:
        db = await get_database()
        return await LedgerRepository(db).list_by_booking(booking_id)

    @staticmethod
    async def booking_summary(booking_id, session=None) -> BookingLedgerSummary:
        db = await get_database()
        booking = await BookingRepository(db).get_booking(booking_id, session=session)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        entries = await LedgerRepository(db).list_by_booking(booking.id)
        return summarize_entries(booking, entries)

    @staticmethod
    async def list_pending(limit: int = 100) -> List[LedgerEntry]:
        db = await get_database()
        return await LedgerRepository(db).list_pending(limit)


async def _release_receipt_allocation(receipts: ReceiptRepository, entry: LedgerEntry, actor_id, session) -> None:
    """A rejected on-account credit hands its amount back to the receipt."""
    receipt = await receipts.get_receipt(entry.source.ref_id, session=session)
    if receipt is None or receipt.find_allocation(entry.source.allocation_id) is None:
        return
    expected_version = receipt.version
    receipt.remove_allocation(entry.source.allocation_id, actor_id)
    await receipts.save_allocations(receipt, expected_version, session=session)


async def _release_disbursement_receipt(disbursements: DisbursementRepository, entry: LedgerEntry, session) -> None:
    """A rejected finance credit was never received, so the disbursement can record it again."""
    disbursement = await disbursements.get_disbursement(entry.source.ref_id, session=session)
    if disbursement is None:
        return
    received = max(0, disbursement.received_amount_paise - entry.amount_paise)
    await disbursements.update_disbursement(
        disbursement.id,
        disbursement.version,
        {
            "received_amount_paise": received,
            "status": derive_disbursement_status(
                disbursement.disbursement_amount_paise, received, disbursement.cancelled
            ).value,
        },
        session=session,
    )
