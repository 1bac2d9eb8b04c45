"""Repository contracts against a mocked Motor database."""
import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.core.errors import DuplicateError, StaleWriteError
from app.models.approval import ApprovalStatus
from app.models.broker_ledger import BrokerLedger
from app.models.disbursement import Disbursement
from app.repositories.booking_repo import BookingRepository
from app.repositories.broker_ledger_repo import BrokerLedgerRepository
from app.repositories.deviation_repo import DeviationRepository
from app.repositories.disbursement_repo import DisbursementRepository
from app.repositories.ledger_repo import LedgerRepository
from app.repositories.receipt_repo import ReceiptRepository


@pytest.mark.asyncio
class TestReceiptRepository:

    async def test_save_allocations_filters_on_expected_version(self, mock_db, mock_session, make_receipt):
        receipt = make_receipt(amount=10000)
        saved = receipt.model_copy(update={"version": 5})
        mock_db.on_account_receipts.find_one_and_update.return_value = saved.to_document()

        result = await ReceiptRepository(mock_db).save_allocations(receipt, 4, session=mock_session)

        query, update = mock_db.on_account_receipts.find_one_and_update.call_args.args
        assert query == {"_id": receipt.id, "version": 4}
        assert update["$inc"] == {"version": 1}
        assert update["$set"]["status"] == "OPEN"
        assert update["$set"]["idempotency_keys"] == []
        assert mock_db.on_account_receipts.find_one_and_update.call_args.kwargs["session"] is mock_session
        assert result.version == 5

    async def test_save_allocations_stale_version(self, mock_db, make_receipt):
        mock_db.on_account_receipts.find_one_and_update.return_value = None

        with pytest.raises(StaleWriteError):
            await ReceiptRepository(mock_db).save_allocations(make_receipt(), 1)

    async def test_duplicate_reference(self, mock_db, make_receipt):
        mock_db.on_account_receipts.insert_one.side_effect = DuplicateKeyError("E11000")

        with pytest.raises(DuplicateError):
            await ReceiptRepository(mock_db).create_receipt(make_receipt())

    async def test_invalid_id_short_circuits(self, mock_db):
        assert await ReceiptRepository(mock_db).get_receipt("abc") is None
        mock_db.on_account_receipts.find_one.assert_not_called()


@pytest.mark.asyncio
class TestBookingRepository:

    async def test_credit_is_guarded_by_outstanding_balance(self, mock_db, make_booking):
        booking = make_booking(deal=10000, balance=10000)
        mock_db.bookings.find_one_and_update.return_value = booking.to_document()

        await BookingRepository(mock_db).apply_credit(booking.id, 4000, approved=True)

        query, update = mock_db.bookings.find_one_and_update.call_args.args
        assert query == {"_id": booking.id, "balance_amount_paise": {"$gte": 4000}}
        assert update["$inc"] == {
            "received_amount_paise": 4000,
            "approved_amount_paise": 4000,
            "balance_amount_paise": -4000,
            "version": 1,
        }

    async def test_release_is_unguarded(self, mock_db, make_booking):
        booking = make_booking()
        mock_db.bookings.find_one_and_update.return_value = booking.to_document()

        await BookingRepository(mock_db).release_credit(booking.id, 500)

        query, update = mock_db.bookings.find_one_and_update.call_args.args
        assert query == {"_id": booking.id}
        assert update["$inc"]["balance_amount_paise"] == 500
        assert update["$inc"]["approved_amount_paise"] == 0

    async def test_overdraw_raises_stale_write(self, mock_db, make_booking):
        mock_db.bookings.find_one_and_update.return_value = None

        with pytest.raises(StaleWriteError):
            await BookingRepository(mock_db).apply_deviation(make_booking().id, 100)


@pytest.mark.asyncio
class TestLedgerRepository:

    async def test_update_entry_sets_fields_with_version_check(self, mock_db):
        from app.models.ledger import LedgerEntry, LedgerEntryType
        from app.models.payment import OtherPayment

        entry = LedgerEntry(
            booking_id=ObjectId(),
            entry_type=LedgerEntryType.BOOKING_PAYMENT,
            amount_paise=100,
            payment=OtherPayment(),
            received_by=ObjectId(),
        )
        mock_db.ledger_entries.find_one_and_update.return_value = {
            **entry.to_document(), "status": "APPROVED", "version": 2,
        }

        updated = await LedgerRepository(mock_db).update_entry(entry.id, 1, {"status": "APPROVED"})

        query, update = mock_db.ledger_entries.find_one_and_update.call_args.args
        assert query == {"_id": entry.id, "version": 1}
        assert update["$set"]["status"] == "APPROVED"
        assert updated.status == ApprovalStatus.APPROVED

    async def test_update_entry_stale(self, mock_db):
        mock_db.ledger_entries.find_one_and_update.return_value = None

        with pytest.raises(StaleWriteError):
            await LedgerRepository(mock_db).update_entry(ObjectId(), 3, {"remark": "x"})


@pytest.mark.asyncio
class TestOtherRepositories:

    async def test_duplicate_disbursement_reference(self, mock_db):
        mock_db.finance_disbursements.insert_one.side_effect = DuplicateKeyError("E11000")
        disbursement = Disbursement(
            booking_id=ObjectId(),
            finance_provider_id=ObjectId(),
            disbursement_reference="LN-1",
            disbursement_amount_paise=1000,
            created_by=ObjectId(),
        )

        with pytest.raises(DuplicateError):
            await DisbursementRepository(mock_db).create_disbursement(disbursement)

    async def test_consume_rechecks_both_limits(self, mock_db):
        manager_id = ObjectId()
        mock_db.deviation_authorities.find_one_and_update.return_value = None

        with pytest.raises(StaleWriteError):
            await DeviationRepository(mock_db).consume(manager_id, 700)

        query, update = mock_db.deviation_authorities.find_one_and_update.call_args.args
        assert query == {
            "_id": manager_id,
            "available_deviation_paise": {"$gte": 700},
            "per_transaction_limit_paise": {"$gte": 700},
        }
        assert update["$inc"] == {"available_deviation_paise": -700, "version": 1}

    async def test_concurrent_broker_ledger_creation_is_retried(self, mock_db):
        mock_db.broker_ledgers.insert_one.side_effect = DuplicateKeyError("E11000")

        with pytest.raises(StaleWriteError):
            await BrokerLedgerRepository(mock_db).create_ledger(BrokerLedger(broker_id=ObjectId()))
