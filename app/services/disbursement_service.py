import logging
from datetime import datetime, timezone
from typing import List

from app.core.config import settings
from app.core.errors import DuplicateError, InvalidStateError, NotFoundError, ValidationError
from app.db.session import get_database
from app.db.transaction import run_in_transaction
from app.models.approval import ApprovalStatus
from app.models.disbursement import Disbursement, DisbursementStatus, derive_disbursement_status
from app.models.ledger import EntrySource, LedgerEntryType
from app.models.payment import FinancePayment
from app.repositories.booking_repo import BookingRepository
from app.repositories.disbursement_repo import DisbursementRepository
from app.schemas.disbursement import DisbursementCreate, ReceivedUpdate
from app.services.ledger_service import DISBURSEMENT_SOURCE, LedgerService
from app.utils.ids import parse_object_id

logger = logging.getLogger(__name__)


def finance_expected(deal_amount_paise: int, down_payment_expected_paise: int) -> int:
    """Amount the financier is expected to pay: deal minus down payment."""
    if deal_amount_paise < 0 or down_payment_expected_paise < 0:
        raise ValidationError("Deal amount and down payment must not be negative")
    if down_payment_expected_paise > deal_amount_paise:
        raise ValidationError(
            f"Down payment {down_payment_expected_paise} exceeds deal amount {deal_amount_paise}"
        )
    return deal_amount_paise - down_payment_expected_paise


def down_payment_shortfall(down_payment_expected_paise: int, customer_paid_paise: int) -> int:
    return max(0, down_payment_expected_paise - customer_paid_paise)


class DisbursementService:
    @staticmethod
    async def create(disbursement_in: DisbursementCreate, actor_id) -> Disbursement:
        reference = disbursement_in.disbursement_reference.strip()
        if not reference:
            raise ValidationError("Disbursement reference is required")
        if disbursement_in.disbursement_amount_paise <= 0:
            raise ValidationError(
                f"Disbursement amount must be positive, got {disbursement_in.disbursement_amount_paise}"
            )
        provider_oid = parse_object_id(disbursement_in.finance_provider_id)
        if provider_oid is None:
            raise ValidationError(f"Invalid finance provider id '{disbursement_in.finance_provider_id}'")

        db = await get_database()
        disbursements = DisbursementRepository(db)

        if await disbursements.find_by_reference(reference) is not None:
            raise DuplicateError(f"Disbursement reference '{reference}' already exists")

        booking = await BookingRepository(db).get_booking(disbursement_in.booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {disbursement_in.booking_id} not found")
        if disbursement_in.disbursement_amount_paise > booking.outstanding_paise:
            raise ValidationError(
                f"Disbursement amount {disbursement_in.disbursement_amount_paise} exceeds outstanding "
                f"balance {booking.outstanding_paise} of booking {booking.booking_number or booking.id}"
            )

        disbursement = Disbursement(
            booking_id=booking.id,
            finance_provider_id=provider_oid,
            disbursement_reference=reference,
            disbursement_amount_paise=disbursement_in.disbursement_amount_paise,
            transfer=disbursement_in.transfer,
            remark=disbursement_in.remark,
            created_by=actor_id,
        )
        if disbursement_in.disbursement_date is not None:
            disbursement.disbursement_date = disbursement_in.disbursement_date

        disbursement = await disbursements.create_disbursement(disbursement)
        logger.info(
            "Disbursement %s created: booking=%s ref=%s amount=%d",
            disbursement.id, booking.id, reference, disbursement.disbursement_amount_paise,
        )
        return disbursement

    @staticmethod
    async def get(disbursement_id) -> Disbursement:
        db = await get_database()
        disbursement = await DisbursementRepository(db).get_disbursement(disbursement_id)
        if disbursement is None:
            raise NotFoundError(f"Disbursement {disbursement_id} not found")
        return disbursement

    @staticmethod
    async def update_received(disbursement_id, update: ReceivedUpdate, actor_id) -> Disbursement:
        """
        Record money received from the financier.

        The received amount only grows; the increase is posted to the booking
        ledger as a finance disbursement credit in the same transaction.
        """
        db = await get_database()
        disbursements = DisbursementRepository(db)

        async def work(session):
            disbursement = await disbursements.get_disbursement(disbursement_id, session=session)
            if disbursement is None:
                raise NotFoundError(f"Disbursement {disbursement_id} not found")
            if disbursement.status == DisbursementStatus.CANCELLED:
                raise InvalidStateError(f"Disbursement {disbursement.disbursement_reference} is cancelled")

            received = update.received_amount_paise
            if received > disbursement.disbursement_amount_paise:
                raise ValidationError(
                    f"Received amount {received} exceeds disbursement amount {disbursement.disbursement_amount_paise}"
                )
            if received < disbursement.received_amount_paise:
                raise ValidationError(
                    f"Received amount {received} is lower than already received {disbursement.received_amount_paise}"
                )

            delta = received - disbursement.received_amount_paise
            fields = {
                "received_amount_paise": received,
                "status": derive_disbursement_status(disbursement.disbursement_amount_paise, received).value,
            }
            if update.transfer is not None:
                fields["transfer"] = update.transfer.model_dump(mode="python")

            if delta > 0:
                entry = await LedgerService.post_entry(
                    db,
                    booking_id=disbursement.booking_id,
                    amount_paise=delta,
                    payment=FinancePayment(
                        finance_provider_id=disbursement.finance_provider_id,
                        disbursement_id=disbursement.id,
                        disbursement_reference=disbursement.disbursement_reference,
                    ),
                    received_by=actor_id,
                    entry_type=LedgerEntryType.FINANCE_DISBURSEMENT,
                    status=(
                        ApprovalStatus.APPROVED
                        if settings.AUTO_APPROVE_DISBURSEMENT_RECEIPTS
                        else ApprovalStatus.PENDING
                    ),
                    remark=f"Finance disbursement {disbursement.disbursement_reference}",
                    source=EntrySource(kind=DISBURSEMENT_SOURCE, ref_id=disbursement.id),
                    session=session,
                )
                fields["ledger_entry_ids"] = disbursement.ledger_entry_ids + [entry.id]

            return await disbursements.update_disbursement(
                disbursement.id, disbursement.version, fields, session=session
            )

        disbursement = await run_in_transaction(db, work)
        logger.info(
            "Disbursement %s received=%d status=%s",
            disbursement.id, disbursement.received_amount_paise, disbursement.status.value,
        )
        return disbursement

    @staticmethod
    async def cancel(disbursement_id, reason: str, actor_id) -> Disbursement:
        if not (reason or "").strip():
            raise ValidationError("Cancellation reason is required")

        db = await get_database()
        disbursements = DisbursementRepository(db)

        async def work(session):
            disbursement = await disbursements.get_disbursement(disbursement_id, session=session)
            if disbursement is None:
                raise NotFoundError(f"Disbursement {disbursement_id} not found")
            if disbursement.status == DisbursementStatus.CANCELLED:
                raise InvalidStateError(f"Disbursement {disbursement.disbursement_reference} is already cancelled")
            if disbursement.received_amount_paise > 0:
                raise InvalidStateError(
                    f"Disbursement {disbursement.disbursement_reference} has received "
                    f"{disbursement.received_amount_paise} and cannot be cancelled"
                )
            return await disbursements.update_disbursement(
                disbursement.id,
                disbursement.version,
                {
                    "cancelled": True,
                    "status": DisbursementStatus.CANCELLED.value,
                    "cancelled_at": datetime.now(timezone.utc),
                    "cancelled_by": actor_id,
                    "cancel_reason": reason.strip(),
                },
                session=session,
            )

        disbursement = await run_in_transaction(db, work)
        logger.info("Disbursement %s cancelled by %s", disbursement.id, actor_id)
        return disbursement

    @staticmethod
    async def list_for_booking(booking_id) -> List[Disbursement]:
        db = await get_database()
        return await DisbursementRepository(db).list_by_booking(booking_id)


def totals(disbursements: List[Disbursement]) -> tuple:
    """(committed, received) over non-cancelled disbursements."""
    active = [d for d in disbursements if d.status != DisbursementStatus.CANCELLED]
    return (
        sum(d.disbursement_amount_paise for d in active),
        sum(d.received_amount_paise for d in active),
    )
