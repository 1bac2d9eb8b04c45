import asyncio
from contextlib import ExitStack
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from app.core.auth import Actor, get_current_actor
from app.core.errors import DuplicateError, StaleWriteError
from app.main import app
from app.models.booking import Booking
from app.models.payment import BankPayment
from app.models.receipt import OnAccountReceipt, PayerType

ACTOR_ID = ObjectId("507f1f77bcf86cd799439011")
SUBDEALER_ID = ObjectId("64b000000000000000000001")
BANK_ID = ObjectId("64b0000000000000000000b1")

COLLECTIONS = (
    "on_account_receipts",
    "ledger_entries",
    "bookings",
    "finance_disbursements",
    "deviation_authorities",
    "manager_deviations",
    "broker_ledgers",
)


def make_collection():
    collection = MagicMock()
    for name in ("insert_one", "find_one", "find_one_and_update", "update_one", "replace_one", "count_documents"):
        setattr(collection, name, AsyncMock())
    return collection


@pytest.fixture
def mock_session():
    session = MagicMock()
    session.start_transaction.return_value = MagicMock(
        __aenter__=AsyncMock(return_value=None),
        __aexit__=AsyncMock(return_value=False),
    )
    return session


@pytest.fixture
def mock_db(mock_session):
    db = MagicMock()
    for name in COLLECTIONS:
        setattr(db, name, make_collection())
    db.client.start_session = AsyncMock(return_value=MagicMock(
        __aenter__=AsyncMock(return_value=mock_session),
        __aexit__=AsyncMock(return_value=False),
    ))
    return db


@pytest.fixture
def actor():
    return Actor(id=ACTOR_ID, name="Accounts Desk")


@pytest.fixture
def client(actor):
    app.dependency_overrides[get_current_actor] = lambda: actor
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def build_booking(deal=100000, balance=None, subdealer_id=SUBDEALER_ID, **fields) -> Booking:
    return Booking(
        booking_number=fields.pop("booking_number", "BK-0001"),
        subdealer_id=subdealer_id,
        deal_amount_paise=deal,
        balance_amount_paise=deal if balance is None else balance,
        **fields,
    )


def build_receipt(amount=10000, ref_number="UTR-1001", payer_id=SUBDEALER_ID, **fields) -> OnAccountReceipt:
    return OnAccountReceipt(
        payer_type=fields.pop("payer_type", PayerType.SUBDEALER),
        payer_id=payer_id,
        ref_number=ref_number,
        amount_paise=amount,
        payment=BankPayment(mode="NEFT", bank_id=BANK_ID, transaction_reference=ref_number),
        received_by=ACTOR_ID,
        **fields,
    )


# In-memory repositories. Each call yields to the event loop once so that
# concurrent service calls interleave the way they would against MongoDB.

class FakeStore:
    def __init__(self):
        self.receipts = {}
        self.bookings = {}
        self.entries = {}
        self.disbursements = {}
        self.authorities = {}
        self.deviations = {}
        self.broker_ledgers = {}

    def add_booking(self, booking: Booking) -> Booking:
        self.bookings[str(booking.id)] = booking
        return booking

    def add_receipt(self, receipt: OnAccountReceipt) -> OnAccountReceipt:
        self.receipts[str(receipt.id)] = receipt
        return receipt

    def booking(self, booking_id) -> Booking:
        return self.bookings[str(booking_id)]

    def receipt(self, receipt_id) -> OnAccountReceipt:
        return self.receipts[str(receipt_id)]

    def entries_for(self, booking_id):
        return [e for e in self.entries.values() if str(e.booking_id) == str(booking_id)]


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class FakeReceiptRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def find_by_ref(self, payer_type, payer_id, ref_number):
        await asyncio.sleep(0)
        for receipt in self.store.receipts.values():
            if (receipt.payer_type.value, str(receipt.payer_id), receipt.ref_number) == (payer_type, str(payer_id), ref_number):
                return _copy(receipt)
        return None

    async def create_receipt(self, receipt):
        await asyncio.sleep(0)
        if await self.find_by_ref(receipt.payer_type.value, receipt.payer_id, receipt.ref_number):
            raise DuplicateError(f"Reference number '{receipt.ref_number}' already exists")
        self.store.add_receipt(_copy(receipt))
        return receipt

    async def get_receipt(self, receipt_id, session=None):
        await asyncio.sleep(0)
        return _copy(self.store.receipts.get(str(receipt_id)))

    async def save_allocations(self, receipt, expected_version, session=None):
        await asyncio.sleep(0)
        current = self.store.receipts[str(receipt.id)]
        if current.version != expected_version:
            raise StaleWriteError(f"Receipt {receipt.id} changed since version {expected_version}")
        saved = _copy(receipt)
        saved.version = expected_version + 1
        self.store.receipts[str(receipt.id)] = saved
        return _copy(saved)


class FakeBookingRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def get_booking(self, booking_id, session=None):
        await asyncio.sleep(0)
        return _copy(self.store.bookings.get(str(booking_id)))

    def _inc(self, booking_id, **increments):
        booking = self.store.booking(booking_id)
        for field, delta in increments.items():
            setattr(booking, field, getattr(booking, field) + delta)
        booking.version += 1
        return _copy(booking)

    async def apply_credit(self, booking_id, amount_paise, approved=False, session=None):
        await asyncio.sleep(0)
        if self.store.booking(booking_id).balance_amount_paise < amount_paise:
            raise StaleWriteError("insufficient balance")
        return self._inc(
            booking_id,
            received_amount_paise=amount_paise,
            approved_amount_paise=amount_paise if approved else 0,
            balance_amount_paise=-amount_paise,
        )

    async def release_credit(self, booking_id, amount_paise, was_approved=False, session=None):
        await asyncio.sleep(0)
        return self._inc(
            booking_id,
            received_amount_paise=-amount_paise,
            approved_amount_paise=-amount_paise if was_approved else 0,
            balance_amount_paise=amount_paise,
        )

    async def approve_credit(self, booking_id, amount_paise, session=None):
        await asyncio.sleep(0)
        return self._inc(booking_id, approved_amount_paise=amount_paise)

    async def apply_debit(self, booking_id, amount_paise, session=None):
        await asyncio.sleep(0)
        return self._inc(booking_id, debit_amount_paise=amount_paise, balance_amount_paise=amount_paise)

    async def apply_deviation(self, booking_id, amount_paise, session=None):
        await asyncio.sleep(0)
        if self.store.booking(booking_id).balance_amount_paise < amount_paise:
            raise StaleWriteError("insufficient balance")
        return self._inc(booking_id, deviation_amount_paise=amount_paise, balance_amount_paise=-amount_paise)


class FakeLedgerRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def insert_entry(self, entry, session=None):
        await asyncio.sleep(0)
        self.store.entries[str(entry.id)] = _copy(entry)
        return entry

    async def get_entry(self, entry_id, session=None):
        await asyncio.sleep(0)
        return _copy(self.store.entries.get(str(entry_id)))

    async def list_by_booking(self, booking_id):
        await asyncio.sleep(0)
        return [_copy(e) for e in self.store.entries_for(booking_id)]

    async def list_pending(self, limit=100):
        await asyncio.sleep(0)
        return [_copy(e) for e in self.store.entries.values() if e.is_pending][:limit]

    async def update_entry(self, entry_id, expected_version, fields, session=None):
        await asyncio.sleep(0)
        entry = self.store.entries[str(entry_id)]
        if entry.version != expected_version:
            raise StaleWriteError(f"Ledger entry {entry_id} changed")
        data = entry.model_dump()
        for key, value in fields.items():
            target = data
            *parents, leaf = key.split(".")
            for parent in parents:
                target = target[parent]
            target[leaf] = value
        data["version"] = expected_version + 1
        updated = type(entry).model_validate(data)
        self.store.entries[str(entry_id)] = updated
        return _copy(updated)


class FakeDisbursementRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def create_disbursement(self, disbursement, session=None):
        await asyncio.sleep(0)
        self.store.disbursements[str(disbursement.id)] = _copy(disbursement)
        return disbursement

    async def find_by_reference(self, reference, session=None):
        await asyncio.sleep(0)
        for disbursement in self.store.disbursements.values():
            if disbursement.disbursement_reference == reference:
                return _copy(disbursement)
        return None

    async def get_disbursement(self, disbursement_id, session=None):
        await asyncio.sleep(0)
        return _copy(self.store.disbursements.get(str(disbursement_id)))

    async def list_by_booking(self, booking_id, session=None):
        await asyncio.sleep(0)
        return [_copy(d) for d in self.store.disbursements.values() if str(d.booking_id) == str(booking_id)]

    async def total_committed(self, booking_id, session=None):
        return sum(
            d.disbursement_amount_paise
            for d in await self.list_by_booking(booking_id)
            if not d.cancelled
        )

    async def update_disbursement(self, disbursement_id, expected_version, fields, session=None):
        await asyncio.sleep(0)
        current = self.store.disbursements[str(disbursement_id)]
        if current.version != expected_version:
            raise StaleWriteError(f"Disbursement {disbursement_id} changed")
        data = {**current.model_dump(), **fields, "version": expected_version + 1}
        updated = type(current).model_validate(data)
        self.store.disbursements[str(disbursement_id)] = updated
        return _copy(updated)


class FakeDeviationRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def get_authority(self, manager_id, session=None):
        await asyncio.sleep(0)
        return _copy(self.store.authorities.get(str(manager_id)))

    async def save_authority(self, authority):
        self.store.authorities[str(authority.id)] = _copy(authority)
        return authority

    async def consume(self, manager_id, amount_paise, session=None):
        await asyncio.sleep(0)
        authority = self.store.authorities[str(manager_id)]
        if authority.available_deviation_paise < amount_paise or authority.per_transaction_limit_paise < amount_paise:
            raise StaleWriteError("allowance changed")
        authority.available_deviation_paise -= amount_paise
        authority.version += 1
        return _copy(authority)

    async def insert_deviation(self, deviation, session=None):
        await asyncio.sleep(0)
        self.store.deviations[str(deviation.id)] = _copy(deviation)
        return deviation

    async def list_by_booking(self, booking_id):
        return [_copy(d) for d in self.store.deviations.values() if str(d.booking_id) == str(booking_id)]


class FakeBrokerLedgerRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def find_ledger(self, broker_id, branch_id=None, session=None):
        await asyncio.sleep(0)
        return _copy(self.store.broker_ledgers.get((str(broker_id), str(branch_id))))

    async def create_ledger(self, ledger, session=None):
        await asyncio.sleep(0)
        self.store.broker_ledgers[(str(ledger.broker_id), str(ledger.branch_id))] = _copy(ledger)
        return ledger

    async def save_transactions(self, ledger, expected_version, session=None):
        await asyncio.sleep(0)
        key = (str(ledger.broker_id), str(ledger.branch_id))
        if self.store.broker_ledgers[key].version != expected_version:
            raise StaleWriteError(f"Broker ledger {ledger.id} changed")
        saved = _copy(ledger)
        saved.version = expected_version + 1
        self.store.broker_ledgers[key] = saved
        return _copy(saved)

    async def list_with_pending(self, limit=100):
        return [_copy(l) for l in self.store.broker_ledgers.values()][:limit]

    async def list_ledgers(self, skip, limit):
        ordered = sorted(self.store.broker_ledgers.values(), key=lambda l: l.current_balance_paise, reverse=True)
        return [_copy(l) for l in ordered[skip:skip + limit]], len(ordered)


FAKES = {
    "BrokerLedgerRepository": FakeBrokerLedgerRepository,
    "ReceiptRepository": FakeReceiptRepository,
    "BookingRepository": FakeBookingRepository,
    "LedgerRepository": FakeLedgerRepository,
    "DisbursementRepository": FakeDisbursementRepository,
    "DeviationRepository": FakeDeviationRepository,
}

PATCHED_MODULES = (
    "app.services.allocation_service",
    "app.services.ledger_service",
    "app.services.receipt_service",
    "app.services.disbursement_service",
    "app.services.deviation_service",
    "app.services.broker_ledger_service",
)


@pytest.fixture
def store(mock_db):
    """Services wired to in-memory repositories and a mocked transaction session."""
    fake_store = FakeStore()
    with ExitStack() as stack:
        for module_path in PATCHED_MODULES:
            module = __import__(module_path, fromlist=["get_database"])
            stack.enter_context(patch(f"{module_path}.get_database", return_value=mock_db))
            for name, fake in FAKES.items():
                if hasattr(module, name):
                    stack.enter_context(patch(f"{module_path}.{name}", return_value=fake(fake_store)))
        yield fake_store


@pytest.fixture
def subdealer_id():
    return SUBDEALER_ID


@pytest.fixture
def make_booking():
    return build_booking


@pytest.fixture
def make_receipt():
    return build_receipt
