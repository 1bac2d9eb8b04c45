from unittest.mock import AsyncMock, patch

from bson import ObjectId

from app.core.errors import NotFoundError
from app.schemas.broker_ledger import BrokerStatement, BrokerSummary
from app.services.broker_ledger_service import BrokerLedgerService

BROKER_ID = str(ObjectId())


def test_statement_reads_date_range(client):
    statement = BrokerStatement(broker_id=BROKER_ID, opening_balance_paise=5000, closing_balance_paise=4000)

    with patch.object(BrokerLedgerService, "statement", new_callable=AsyncMock) as mock_statement:
        mock_statement.return_value = statement
        response = client.get(
            f"/api/v1/brokers/{BROKER_ID}/ledger/statement",
            params={"from": "2026-02-01T00:00:00", "to": "2026-02-28T23:59:59"},
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["broker_id"] == BROKER_ID
    assert data["opening_balance_paise"] == 5000
    assert data["closing_balance_paise"] == 4000
    broker_id, branch_id, from_date, to_date = mock_statement.call_args.args
    assert broker_id == BROKER_ID
    assert branch_id is None
    assert (from_date.month, from_date.day) == (2, 1)
    assert (to_date.month, to_date.day) == (2, 28)


def test_statement_for_unknown_broker(client):
    with patch.object(BrokerLedgerService, "statement", new_callable=AsyncMock) as mock_statement:
        mock_statement.side_effect = NotFoundError(f"Ledger for broker {BROKER_ID} not found")
        response = client.get(f"/api/v1/brokers/{BROKER_ID}/ledger/statement")

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_summary_is_paginated(client):
    summary = BrokerSummary(broker_id=BROKER_ID, current_balance_paise=8500, on_account_paise=0, pending_count=1)

    with patch.object(BrokerLedgerService, "summaries", new_callable=AsyncMock) as mock_summaries:
        mock_summaries.return_value = ([summary], 1, 1, 20)
        response = client.get("/api/v1/brokers/summary")

    assert response.status_code == 200
    page = response.json()["data"]
    assert page["total"] == 1
    assert page["pages"] == 1
    assert page["items"][0]["current_balance_paise"] == 8500
    assert page["items"][0]["pending_count"] == 1
