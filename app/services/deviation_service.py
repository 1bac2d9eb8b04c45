import logging
from typing import List

from app.core.config import settings
from app.core.errors import LimitExceededError, NotFoundError, ValidationError
from app.db.session import get_database
from app.db.transaction import run_in_transaction
from app.models.deviation import DeviationAuthority, ManagerDeviation
from app.repositories.booking_repo import BookingRepository
from app.repositories.deviation_repo import DeviationRepository
from app.repositories.disbursement_repo import DisbursementRepository
from app.repositories.ledger_repo import LedgerRepository
from app.schemas.disbursement import AuthorityConfigure, DeviationCreate
from app.services.ledger_service import summarize_entries
from app.utils.ids import parse_object_id

logger = logging.getLogger(__name__)


def check_deviation_limits(authority: DeviationAuthority, amount_paise: int) -> None:
    if amount_paise > authority.per_transaction_limit_paise:
        raise LimitExceededError(
            f"Deviation {amount_paise} exceeds per-transaction limit {authority.per_transaction_limit_paise}"
        )
    if amount_paise > authority.available_deviation_paise:
        raise LimitExceededError(
            f"Deviation {amount_paise} exceeds available deviation {authority.available_deviation_paise}"
        )


class DeviationService:
    @staticmethod
    async def add_manager_deviation(deviation_in: DeviationCreate, actor_id) -> ManagerDeviation:
        reason = deviation_in.reason.strip()
        if not reason:
            raise ValidationError("Deviation reason is required")
        if deviation_in.amount_paise <= 0:
            raise ValidationError(f"Deviation amount must be positive, got {deviation_in.amount_paise}")

        db = await get_database()
        bookings = BookingRepository(db)
        deviations = DeviationRepository(db)

        async def work(session):
            booking = await bookings.get_booking(deviation_in.booking_id, session=session)
            if booking is None:
                raise NotFoundError(f"Booking {deviation_in.booking_id} not found")
            authority = await deviations.get_authority(deviation_in.manager_id, session=session)
            if authority is None:
                raise NotFoundError(f"Manager {deviation_in.manager_id} has no deviation allowance")

            amount = deviation_in.amount_paise
            check_deviation_limits(authority, amount)
            if amount > booking.outstanding_paise:
                raise ValidationError(
                    f"Deviation {amount} exceeds outstanding balance {booking.outstanding_paise} "
                    f"of booking {booking.booking_number or booking.id}"
                )

            if settings.DEVIATION_REQUIRES_EXACT_MATCH:
                committed = await DisbursementRepository(db).total_committed(booking.id, session=session)
                entries = await LedgerRepository(db).list_by_booking(booking.id)
                customer_paid = summarize_entries(booking, entries).customer_paid_paise
                deviation_total = booking.deviation_amount_paise + amount
                total = committed + customer_paid + deviation_total
                if total != booking.deal_amount_paise:
                    raise ValidationError(
                        f"Finance {committed} + customer paid {customer_paid} + deviation {deviation_total} "
                        f"= {total} does not match deal amount {booking.deal_amount_paise}"
                    )

            await deviations.consume(authority.id, amount, session=session)
            await bookings.apply_deviation(booking.id, amount, session=session)

            deviation = ManagerDeviation(
                booking_id=booking.id,
                manager_id=authority.id,
                amount_paise=amount,
                reason=reason,
                applied_by=actor_id,
            )
            return await deviations.insert_deviation(deviation, session=session)

        deviation = await run_in_transaction(db, work)
        logger.info(
            "Deviation %s applied: booking=%s manager=%s amount=%d",
            deviation.id, deviation.booking_id, deviation.manager_id, deviation.amount_paise,
        )
        return deviation

    @staticmethod
    async def configure_authority(manager_id: str, config: AuthorityConfigure, actor_id) -> DeviationAuthority:
        """Open a new deviation period for a manager with a full allowance."""
        manager_oid = parse_object_id(manager_id)
        if manager_oid is None:
            raise ValidationError(f"Invalid manager id '{manager_id}'")
        if config.per_transaction_limit_paise > config.total_limit_paise:
            raise ValidationError(
                f"Per-transaction limit {config.per_transaction_limit_paise} exceeds "
                f"total limit {config.total_limit_paise}"
            )

        db = await get_database()
        deviations = DeviationRepository(db)
        existing = await deviations.get_authority(manager_oid)

        authority = DeviationAuthority(
            id=manager_oid,
            manager_name=config.manager_name or (existing.manager_name if existing else None),
            total_limit_paise=config.total_limit_paise,
            per_transaction_limit_paise=config.per_transaction_limit_paise,
            available_deviation_paise=config.total_limit_paise,
            version=existing.version + 1 if existing else 1,
        )
        if existing is not None:
            authority.created_at = existing.created_at

        authority = await deviations.save_authority(authority)
        logger.info(
            "Deviation period opened for manager %s by %s: total=%d per_transaction=%d",
            manager_oid, actor_id, authority.total_limit_paise, authority.per_transaction_limit_paise,
        )
        return authority

    @staticmethod
    async def get_authority(manager_id: str) -> DeviationAuthority:
        db = await get_database()
        authority = await DeviationRepository(db).get_authority(manager_id)
        if authority is None:
            raise NotFoundError(f"Manager {manager_id} has no deviation allowance")
        return authority

    @staticmethod
    async def list_for_booking(booking_id) -> List[ManagerDeviation]:
        db = await get_database()
        return await DeviationRepository(db).list_by_booking(booking_id)
