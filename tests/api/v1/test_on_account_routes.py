from unittest.mock import AsyncMock, patch

from bson import ObjectId

from app.core.errors import DuplicateError, InvalidStateError, NotFoundError, ValidationError
from app.services.allocation_service import AllocationService
from app.services.receipt_service import ReceiptService

ACTOR_ID = "507f1f77bcf86cd799439011"


def receipt_payload(**overrides):
    payload = {
        "payer_type": "SUBDEALER",
        "payer_id": str(ObjectId()),
        "ref_number": "UTR-1001",
        "amount_paise": 250000,
        "payment": {"mode": "UPI", "bank_id": str(ObjectId()), "transaction_reference": "UPI-1"},
    }
    payload.update(overrides)
    return payload


def test_create_receipt(client, make_receipt):
    receipt = make_receipt(amount=250000)

    with patch.object(ReceiptService, "create", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = receipt
        response = client.post("/api/v1/on-account/receipts", json=receipt_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    assert body["data"]["id"] == str(receipt.id)
    assert body["data"]["status"] == "OPEN"
    assert body["data"]["balance_paise"] == 250000
    assert body["data"]["payment"]["mode"] == "NEFT"
    assert str(mock_create.call_args.args[1]) == ACTOR_ID


def test_create_receipt_duplicate_reference(client):
    with patch.object(ReceiptService, "create", new_callable=AsyncMock) as mock_create:
        mock_create.side_effect = DuplicateError("Reference number 'UTR-1001' already exists for this subdealer")
        response = client.post("/api/v1/on-account/receipts", json=receipt_payload())

    assert response.status_code == 409
    assert response.json() == {
        "status": "fail",
        "message": "Reference number 'UTR-1001' already exists for this subdealer",
        "error": "duplicate",
    }


def test_create_receipt_rejects_incomplete_payment(client):
    with patch.object(ReceiptService, "create", new_callable=AsyncMock) as mock_create:
        response = client.post(
            "/api/v1/on-account/receipts",
            json=receipt_payload(payment={"mode": "CHEQUE"}),
        )

    assert response.status_code == 400
    assert response.json()["status"] == "fail"
    assert response.json()["error"] == "validation_error"
    mock_create.assert_not_called()


def test_list_receipts_passes_filters(client, make_receipt):
    receipts = [make_receipt(ref_number="UTR-1"), make_receipt(ref_number="UTR-2")]

    with patch.object(ReceiptService, "list_receipts", new_callable=AsyncMock) as mock_list:
        mock_list.return_value = (receipts, 2, 1, 20)
        response = client.get("/api/v1/on-account/receipts", params={"status": "PARTIAL", "q": "UTR"})

    assert response.status_code == 200
    page = response.json()["data"]
    assert [r["ref_number"] for r in page["items"]] == ["UTR-1", "UTR-2"]
    assert page["pages"] == 1
    filters = mock_list.call_args.args[0]
    assert filters.status.value == "PARTIAL"
    assert filters.q == "UTR"


def test_get_missing_receipt(client):
    with patch.object(ReceiptService, "get", new_callable=AsyncMock) as mock_get:
        mock_get.side_effect = NotFoundError("On-account receipt abc not found")
        response = client.get("/api/v1/on-account/receipts/abc")

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_allocate_forwards_lines_and_idempotency_key(client, make_receipt):
    receipt = make_receipt(amount=10000)
    booking_id = str(ObjectId())

    with patch.object(AllocationService, "allocate", new_callable=AsyncMock) as mock_allocate:
        mock_allocate.return_value = receipt
        response = client.post(
            f"/api/v1/on-account/receipts/{receipt.id}/allocate",
            json={"allocations": [{"booking_id": booking_id, "amount_paise": 4000}]},
            headers={"Idempotency-Key": "req-42"},
        )

    assert response.status_code == 200
    receipt_id, lines, actor_id, key = mock_allocate.call_args.args
    assert receipt_id == str(receipt.id)
    assert lines[0].booking_id == booking_id
    assert lines[0].amount_paise == 4000
    assert key == "req-42"


def test_allocate_errors_map_to_status_codes(client):
    cases = [
        (ValidationError("Requested allocation 7000 exceeds remaining receipt balance 6000"), 400, "validation_error"),
        (InvalidStateError("Receipt UTR-1 is closed"), 409, "invalid_state"),
    ]
    for error, status_code, kind in cases:
        with patch.object(AllocationService, "allocate", new_callable=AsyncMock) as mock_allocate:
            mock_allocate.side_effect = error
            response = client.post(
                f"/api/v1/on-account/receipts/{ObjectId()}/allocate",
                json={"allocations": [{"booking_id": str(ObjectId()), "amount_paise": 7000}]},
            )

        assert response.status_code == status_code
        assert response.json()["error"] == kind
        assert response.json()["message"] == error.message


def test_deallocate(client, make_receipt):
    receipt = make_receipt(amount=10000)
    allocation_id = str(ObjectId())

    with patch.object(AllocationService, "deallocate", new_callable=AsyncMock) as mock_deallocate:
        mock_deallocate.return_value = receipt
        response = client.delete(f"/api/v1/on-account/receipts/{receipt.id}/allocations/{allocation_id}")

    assert response.status_code == 200
    assert mock_deallocate.call_args.args[:2] == (str(receipt.id), allocation_id)
