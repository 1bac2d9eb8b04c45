from fastapi import APIRouter
from app.api.v1.endpoints import on_account, ledger, disbursements, deviations, brokers, approvals

api_router = APIRouter()

api_router.include_router(on_account.router, prefix="/on-account", tags=["on-account"])
api_router.include_router(ledger.router, prefix="/ledger", tags=["ledger"])
api_router.include_router(disbursements.router, prefix="/disbursements", tags=["disbursements"])
api_router.include_router(deviations.router, prefix="/deviations", tags=["deviations"])
api_router.include_router(brokers.router, prefix="/brokers", tags=["broker-ledgers"])
api_router.include_router(approvals.router, prefix="/approvals", tags=["approvals"])
