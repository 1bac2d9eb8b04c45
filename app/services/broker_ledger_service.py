import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.db.session import get_database
from app.db.transaction import run_in_transaction
from app.models.approval import ApprovalDecision, ApprovalStatus
from app.models.broker_ledger import BrokerLedger, BrokerTransaction, BrokerTransactionType, balance_effect
from app.models.payment import CashPayment
from app.repositories.booking_repo import BookingRepository
from app.repositories.broker_ledger_repo import BrokerLedgerRepository
from app.repositories.ledger_repo import LedgerRepository
from app.schemas.broker_ledger import (
    BrokerStatement,
    BrokerSummary,
    BrokerTransactionCreate,
    PendingApprovals,
    PendingBrokerTransaction,
    StatementLine,
)
from app.schemas.ledger import LedgerEntryResponse
from app.services.approval import transition
from app.utils.ids import parse_object_id

logger = logging.getLogger(__name__)


def _parse_optional_id(value: Optional[str], label: str):
    if value is None:
        return None
    oid = parse_object_id(value)
    if oid is None:
        raise ValidationError(f"Invalid {label} '{value}'")
    return oid


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def build_statement(
    ledger: BrokerLedger,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
) -> BrokerStatement:
    """Opening balance from APPROVED transactions before `from_date`, then one line per transaction in range."""
    statement = BrokerStatement(
        broker_id=ledger.broker_id,
        branch_id=ledger.branch_id,
        from_date=from_date,
        to_date=to_date,
    )
    start = _as_utc(from_date) if from_date is not None else None
    end = _as_utc(to_date) if to_date is not None else None

    running = 0
    for tx in sorted(ledger.transactions, key=lambda t: _as_utc(t.date)):
        when = _as_utc(tx.date)
        if start is not None and when < start:
            running += balance_effect(tx)
            statement.opening_balance_paise = running
            continue
        if end is not None and when > end:
            break
        running += balance_effect(tx)
        statement.lines.append(StatementLine(transaction=tx, running_balance_paise=running))

    statement.closing_balance_paise = running
    return statement


def summarize_ledger(ledger: BrokerLedger) -> BrokerSummary:
    summary = BrokerSummary(
        broker_id=ledger.broker_id,
        branch_id=ledger.branch_id,
        current_balance_paise=ledger.current_balance_paise,
        on_account_paise=ledger.on_account_paise,
    )
    for tx in ledger.transactions:
        if tx.status == ApprovalStatus.PENDING:
            summary.pending_count += 1
        elif tx.status == ApprovalStatus.APPROVED:
            if tx.type == BrokerTransactionType.CREDIT:
                summary.approved_credit_paise += tx.amount_paise
            else:
                summary.approved_debit_paise += tx.amount_paise
        if summary.last_transaction_date is None or _as_utc(tx.date) > _as_utc(summary.last_transaction_date):
            summary.last_transaction_date = tx.date
    return summary


class BrokerLedgerService:
    @staticmethod
    async def add_transaction(broker_id: str, tx_in: BrokerTransactionCreate, actor_id) -> BrokerLedger:
        broker_oid = _parse_optional_id(broker_id, "broker id")
        branch_oid = _parse_optional_id(tx_in.branch_id, "branch id")
        booking_oid = _parse_optional_id(tx_in.booking_id, "booking id")
        if tx_in.amount_paise <= 0:
            raise ValidationError(f"Amount must be positive, got {tx_in.amount_paise}")

        db = await get_database()
        ledgers = BrokerLedgerRepository(db)
        bookings = BookingRepository(db)

        async def work(session):
            if booking_oid is not None and await bookings.get_booking(booking_oid, session=session) is None:
                raise NotFoundError(f"Booking {tx_in.booking_id} not found")

            ledger = await ledgers.find_ledger(broker_oid, branch_oid, session=session)
            if ledger is None:
                ledger = await ledgers.create_ledger(
                    BrokerLedger(broker_id=broker_oid, branch_id=branch_oid, created_by=actor_id),
                    session=session,
                )

            tx = BrokerTransaction(
                type=tx_in.type,
                amount_paise=tx_in.amount_paise,
                payment=tx_in.payment,
                booking_id=booking_oid,
                remark=tx_in.remark,
                is_on_account=tx_in.is_on_account,
                created_by=actor_id,
            )
            if tx_in.date is not None:
                tx.date = tx_in.date
            # Cash is counted at the counter, everything else waits for accounts
            if isinstance(tx.payment, CashPayment) and settings.AUTO_APPROVE_CASH_BROKER_TRANSACTIONS:
                tx.status = ApprovalStatus.APPROVED
                tx.approval = ApprovalDecision(
                    status=ApprovalStatus.APPROVED, decided_by=actor_id, remark="Auto-approved cash"
                )

            expected_version = ledger.version
            ledger.transactions.append(tx)
            ledger.refresh_balances()
            ledger.last_updated_by = actor_id
            return await ledgers.save_transactions(ledger, expected_version, session=session)

        ledger = await run_in_transaction(db, work)
        logger.info(
            "Broker %s transaction %s %d recorded, balance=%d",
            broker_oid, tx_in.type.value, tx_in.amount_paise, ledger.current_balance_paise,
        )
        return ledger

    @staticmethod
    async def get_ledger(broker_id: str, branch_id: Optional[str] = None) -> BrokerLedger:
        db = await get_database()
        ledger = await BrokerLedgerRepository(db).find_ledger(broker_id, branch_id)
        if ledger is None:
            raise NotFoundError(f"Ledger for broker {broker_id} not found")
        return ledger

    @staticmethod
    async def statement(
        broker_id: str,
        branch_id: Optional[str] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> BrokerStatement:
        if from_date is not None and to_date is not None and _as_utc(from_date) > _as_utc(to_date):
            raise ValidationError(f"Statement start {from_date.isoformat()} is after end {to_date.isoformat()}")
        ledger = await BrokerLedgerService.get_ledger(broker_id, branch_id)
        return build_statement(ledger, from_date, to_date)

    @staticmethod
    async def summaries(page: int = 1, limit: Optional[int] = None) -> Tuple[List[BrokerSummary], int, int, int]:
        """Returns (items, total, page, limit), highest balance first."""
        page = max(page, 1)
        limit = min(max(limit or settings.DEFAULT_PAGE_SIZE, 1), settings.MAX_PAGE_SIZE)

        db = await get_database()
        ledgers, total = await BrokerLedgerRepository(db).list_ledgers(skip=(page - 1) * limit, limit=limit)
        return [summarize_ledger(ledger) for ledger in ledgers], total, page, limit

    @staticmethod
    async def decide(
        broker_id: str,
        transaction_id: str,
        target: ApprovalStatus,
        actor_id,
        branch_id: Optional[str] = None,
        remark: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> BrokerLedger:
        db = await get_database()
        ledgers = BrokerLedgerRepository(db)

        async def work(session):
            ledger = await ledgers.find_ledger(broker_id, branch_id, session=session)
            if ledger is None:
                raise NotFoundError(f"Ledger for broker {broker_id} not found")
            tx = ledger.find_transaction(transaction_id)
            if tx is None:
                raise NotFoundError(f"Transaction {transaction_id} not found in broker ledger")

            decision = transition(
                tx.status, target, actor_id,
                remark=remark, rejection_reason=rejection_reason, subject="Broker transaction",
            )
            expected_version = ledger.version
            tx.status = target
            tx.approval = decision
            ledger.refresh_balances()
            ledger.last_updated_by = actor_id
            return await ledgers.save_transactions(ledger, expected_version, session=session)

        ledger = await run_in_transaction(db, work)
        logger.info(
            "Broker transaction %s %s by %s, balance=%d",
            transaction_id, target.value, actor_id, ledger.current_balance_paise,
        )
        return ledger

    @staticmethod
    async def pending_approvals(limit: int = 100) -> PendingApprovals:
        """Pending ledger entries and non-cash broker transactions, newest first."""
        db = await get_database()
        entries = await LedgerRepository(db).list_pending(limit)
        ledgers = await BrokerLedgerRepository(db).list_with_pending(limit)

        pending = []
        for ledger in ledgers:
            for tx in ledger.transactions:
                if tx.status != ApprovalStatus.PENDING or isinstance(tx.payment, CashPayment):
                    continue
                pending.append(PendingBrokerTransaction(
                    broker_id=ledger.broker_id,
                    branch_id=ledger.branch_id,
                    ledger_id=ledger.id,
                    transaction=tx,
                ))
        pending.sort(key=lambda item: item.transaction.date, reverse=True)

        return PendingApprovals(
            ledger_entries=[LedgerEntryResponse.from_model(entry) for entry in entries],
            broker_transactions=pending[:limit],
        )
