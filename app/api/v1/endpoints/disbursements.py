from fastapi import APIRouter, Depends, status

from app.core.auth import Actor, get_current_actor
from app.schemas.common import Envelope
from app.schemas.disbursement import (
    BookingDisbursements,
    CancelRequest,
    DisbursementCreate,
    DisbursementResponse,
    FinanceExpectedRequest,
    FinanceExpectedResponse,
    ReceivedUpdate,
)
from app.services.disbursement_service import (
    DisbursementService,
    down_payment_shortfall,
    finance_expected,
    totals,
)

router = APIRouter()


@router.post("/finance-expected", response_model=Envelope[FinanceExpectedResponse])
async def calculate_finance_expected(
    request: FinanceExpectedRequest,
    actor: Actor = Depends(get_current_actor)
):
    """Finance amount expected for a deal, and the down payment still missing"""
    expected = finance_expected(request.deal_amount_paise, request.down_payment_expected_paise)
    shortfall = None
    if request.customer_paid_paise is not None:
        shortfall = down_payment_shortfall(request.down_payment_expected_paise, request.customer_paid_paise)
    return Envelope(data=FinanceExpectedResponse(
        deal_amount_paise=request.deal_amount_paise,
        down_payment_expected_paise=request.down_payment_expected_paise,
        finance_expected_paise=expected,
        down_payment_shortfall_paise=shortfall,
    ))


@router.post("/", response_model=Envelope[DisbursementResponse], status_code=status.HTTP_201_CREATED)
async def create_disbursement(
    disbursement_in: DisbursementCreate,
    actor: Actor = Depends(get_current_actor)
):
    disbursement = await DisbursementService.create(disbursement_in, actor.id)
    return Envelope(data=DisbursementResponse.from_model(disbursement))


@router.get("/booking/{booking_id}", response_model=Envelope[BookingDisbursements])
async def list_booking_disbursements(
    booking_id: str,
    actor: Actor = Depends(get_current_actor)
):
    disbursements = await DisbursementService.list_for_booking(booking_id)
    committed, received = totals(disbursements)
    return Envelope(data=BookingDisbursements(
        booking_id=booking_id,
        disbursements=[DisbursementResponse.from_model(d) for d in disbursements],
        total_committed_paise=committed,
        total_received_paise=received,
    ))


@router.get("/{disbursement_id}", response_model=Envelope[DisbursementResponse])
async def get_disbursement(
    disbursement_id: str,
    actor: Actor = Depends(get_current_actor)
):
    disbursement = await DisbursementService.get(disbursement_id)
    return Envelope(data=DisbursementResponse.from_model(disbursement))


@router.patch("/{disbursement_id}/received", response_model=Envelope[DisbursementResponse])
async def update_received(
    disbursement_id: str,
    update: ReceivedUpdate,
    actor: Actor = Depends(get_current_actor)
):
    """Record the cumulative amount received from the financier"""
    disbursement = await DisbursementService.update_received(disbursement_id, update, actor.id)
    return Envelope(data=DisbursementResponse.from_model(disbursement))


@router.post("/{disbursement_id}/cancel", response_model=Envelope[DisbursementResponse])
async def cancel_disbursement(
    disbursement_id: str,
    request: CancelRequest,
    actor: Actor = Depends(get_current_actor)
):
    disbursement = await DisbursementService.cancel(disbursement_id, request.reason, actor.id)
    return Envelope(data=DisbursementResponse.from_model(disbursement))
