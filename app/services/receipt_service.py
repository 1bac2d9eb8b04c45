import logging
import math
import re
from typing import List, Optional, Tuple

from app.core.config import settings
from app.core.errors import DuplicateError, NotFoundError, ValidationError
from app.db.session import get_database
from app.models.receipt import OnAccountReceipt, ReceiptStatus
from app.repositories.receipt_repo import ReceiptRepository
from app.schemas.receipt import PayerSummary, ReceiptCreate, ReceiptFilters, StatusTotals
from app.utils.ids import parse_object_id

logger = logging.getLogger(__name__)


def build_receipt_query(filters: ReceiptFilters) -> dict:
    query: dict = {}
    if filters.payer_type is not None:
        query["payer_type"] = filters.payer_type.value
    if filters.payer_id:
        payer_oid = parse_object_id(filters.payer_id)
        if payer_oid is None:
            raise ValidationError(f"Invalid payer id '{filters.payer_id}'")
        query["payer_id"] = payer_oid
    if filters.status is not None:
        query["status"] = filters.status.value
    if filters.q:
        query["ref_number"] = {"$regex": re.escape(filters.q.strip()), "$options": "i"}
    if filters.received_from or filters.received_to:
        date_range = {}
        if filters.received_from:
            date_range["$gte"] = filters.received_from
        if filters.received_to:
            date_range["$lte"] = filters.received_to
        query["received_date"] = date_range
    return query


class ReceiptService:
    @staticmethod
    async def create(receipt_in: ReceiptCreate, actor_id) -> OnAccountReceipt:
        ref_number = receipt_in.ref_number.strip()
        if not ref_number:
            raise ValidationError("Reference number is required")
        if receipt_in.amount_paise <= 0:
            raise ValidationError(f"Amount must be positive, got {receipt_in.amount_paise}")
        payer_oid = parse_object_id(receipt_in.payer_id)
        if payer_oid is None:
            raise ValidationError(f"Invalid payer id '{receipt_in.payer_id}'")

        db = await get_database()
        receipts = ReceiptRepository(db)

        existing = await receipts.find_by_ref(receipt_in.payer_type.value, payer_oid, ref_number)
        if existing is not None:
            raise DuplicateError(
                f"Reference number '{ref_number}' already exists for this {receipt_in.payer_type.value.lower()}"
            )

        receipt = OnAccountReceipt(
            payer_type=receipt_in.payer_type,
            payer_id=payer_oid,
            ref_number=ref_number,
            amount_paise=receipt_in.amount_paise,
            payment=receipt_in.payment,
            received_by=actor_id,
            remark=receipt_in.remark,
        )
        if receipt_in.received_date is not None:
            receipt.received_date = receipt_in.received_date

        # Unique index catches a concurrent insert that slipped past the pre-check
        receipt = await receipts.create_receipt(receipt)
        logger.info(
            "On-account receipt %s created: payer=%s/%s ref=%s amount=%d",
            receipt.id, receipt.payer_type.value, receipt.payer_id, receipt.ref_number, receipt.amount_paise,
        )
        return receipt

    @staticmethod
    async def get(receipt_id) -> OnAccountReceipt:
        db = await get_database()
        receipt = await ReceiptRepository(db).get_receipt(receipt_id)
        if receipt is None:
            raise NotFoundError(f"On-account receipt {receipt_id} not found")
        return receipt

    @staticmethod
    async def list_receipts(filters: ReceiptFilters, page: int = 1, limit: Optional[int] = None) -> Tuple[List[OnAccountReceipt], int, int, int]:
        """Returns (items, total, page, limit)."""
        page = max(page, 1)
        limit = min(max(limit or settings.DEFAULT_PAGE_SIZE, 1), settings.MAX_PAGE_SIZE)

        db = await get_database()
        items, total = await ReceiptRepository(db).list_receipts(
            build_receipt_query(filters),
            skip=(page - 1) * limit,
            limit=limit,
        )
        return items, total, page, limit

    @staticmethod
    async def payer_summary(payer_type: str, payer_id: str) -> PayerSummary:
        if parse_object_id(payer_id) is None:
            raise ValidationError(f"Invalid payer id '{payer_id}'")

        db = await get_database()
        rows = await ReceiptRepository(db).summarize_by_status(payer_type, payer_id)

        by_status = {status: StatusTotals(status=status) for status in ReceiptStatus}
        for row in rows:
            totals = by_status[ReceiptStatus(row["_id"])]
            totals.count = row["count"]
            totals.amount_paise = row["amount_paise"]
            totals.allocated_paise = row["allocated_paise"]
            totals.balance_paise = row["amount_paise"] - row["allocated_paise"]

        summary = PayerSummary(payer_type=payer_type, payer_id=payer_id, by_status=list(by_status.values()))
        for totals in summary.by_status:
            summary.total_count += totals.count
            summary.total_amount_paise += totals.amount_paise
            summary.total_allocated_paise += totals.allocated_paise
            summary.total_balance_paise += totals.balance_paise
        return summary


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
