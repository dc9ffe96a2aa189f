"""
FieldLedger - API Integration Tests

Integration tests for REST API endpoints.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from httpx import AsyncClient

from fieldledger.utils.security import create_access_token

API = "/api/v1/bank-reconciliation"


def _start_payload(scenario, ending_balance="10000.00"):
    return {
        "account_id": str(scenario.accounts.checking),
        "statement_start_date": scenario.start.isoformat(),
        "statement_end_date": scenario.end.isoformat(),
        "statement_ending_balance": ending_balance,
    }


async def _start(client, auth_headers, scenario, ending_balance="10000.00") -> str:
    response = await client.post(
        f"{API}/reconciliations",
        json=_start_payload(scenario, ending_balance),
        headers=auth_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"


class TestAuthentication:
    """Every endpoint requires an actor."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get(f"{API}/reconciliations")

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient):
        response = await client.get(
            f"{API}/reconciliations",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_token_without_uuid_subject(self, client: AsyncClient):
        token = create_access_token({"sub": "bookkeeper"})

        response = await client.get(
            f"{API}/reconciliations",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_valid_token_accepted(self, client: AsyncClient, auth_headers):
        response = await client.get(f"{API}/reconciliations", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == []


class TestReconciliationAPI:
    """Test reconciliation lifecycle endpoints."""

    @pytest.mark.asyncio
    async def test_start_reconciliation(self, client, auth_headers, scenario, actor_id):
        response = await client.post(
            f"{API}/reconciliations",
            json=_start_payload(scenario),
            headers=auth_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "in_progress"
        assert Decimal(data["calculated_book_balance"]) == Decimal("10000.00")
        assert Decimal(data["cleared_balance"]) == Decimal("0")
        assert Decimal(data["difference"]) == Decimal("10000.00")
        assert data["created_by_id"] == str(actor_id)

    @pytest.mark.asyncio
    async def test_start_twice_conflict(self, client, auth_headers, scenario):
        first_id = await _start(client, auth_headers, scenario)

        response = await client.post(
            f"{API}/reconciliations",
            json=_start_payload(scenario),
            headers=auth_headers,
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "RECONCILIATION_IN_PROGRESS"
        assert detail["details"]["existing_reconciliation_id"] == first_id

    @pytest.mark.asyncio
    async def test_start_with_reversed_dates(self, client, auth_headers, scenario):
        payload = _start_payload(scenario)
        payload["statement_start_date"], payload["statement_end_date"] = (
            payload["statement_end_date"], payload["statement_start_date"],
        )

        response = await client.post(f"{API}/reconciliations", json=payload, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_get_unknown_reconciliation(self, client, auth_headers):
        response = await client.get(f"{API}/reconciliations/{uuid4()}", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "RECONCILIATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_toggle_and_complete(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)

        for posting_id in (
            scenario.customer_payment, scenario.equipment_purchase, scenario.loan_proceeds,
        ):
            response = await client.post(
                f"{API}/reconciliations/{reconciliation_id}/postings/{posting_id}/toggle",
                headers=auth_headers,
            )
            assert response.status_code == 200

        assert Decimal(response.json()["difference"]) == Decimal("0")

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/complete", headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        response = await client.get(
            f"{API}/accounts/{scenario.accounts.checking}/last-reconciliation", headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["id"] == reconciliation_id

    @pytest.mark.asyncio
    async def test_complete_out_of_balance(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)
        await client.post(
            f"{API}/reconciliations/{reconciliation_id}/postings/{scenario.customer_payment}/toggle",
            headers=auth_headers,
        )

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/complete", headers=auth_headers,
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "OUT_OF_BALANCE"
        assert detail["details"]["difference"] == "5000.00"
        assert detail["details"]["tolerance"] == "0.01"

        response = await client.get(f"{API}/reconciliations/{reconciliation_id}", headers=auth_headers)
        assert response.json()["status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_cancel_and_list(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/cancel", headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = await client.get(
            f"{API}/reconciliations", params={"status": "cancelled"}, headers=auth_headers,
        )
        assert [r["id"] for r in response.json()] == [reconciliation_id]

        response = await client.get(
            f"{API}/reconciliations", params={"status": "in_progress"}, headers=auth_headers,
        )
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_rollback_requires_completed(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/rollback", headers=auth_headers,
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "INVALID_STATE"
        assert detail["details"]["current_status"] == "in_progress"

    @pytest.mark.asyncio
    async def test_list_postings(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)

        response = await client.get(
            f"{API}/reconciliations/{reconciliation_id}/postings", headers=auth_headers,
        )

        assert response.status_code == 200
        postings = {p["id"]: p for p in response.json()}
        assert len(postings) == 3
        equipment = postings[str(scenario.equipment_purchase)]
        assert Decimal(equipment["net_amount"]) == Decimal("-2000.00")
        assert equipment["is_cleared"] is False


class TestBankLineAPI:
    """Test bank line import, matching and auto-match endpoints."""

    LINES = [
        {"transaction_date": "2026-03-05", "description": "Customer payment ACME", "amount": "5000.00"},
        {"transaction_date": "2026-03-12", "description": "Laptop purchase", "amount": "-2000.00",
         "check_number": "1042"},
        {"transaction_date": "2026-03-21", "description": "LOAN PROCEEDS", "amount": "7000.00"},
    ]

    async def _import(self, client, auth_headers, reconciliation_id):
        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/bank-lines",
            json={"lines": self.LINES},
            headers=auth_headers,
        )
        assert response.status_code == 201, response.text
        return response.json()

    @pytest.mark.asyncio
    async def test_import_lines(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)

        result = await self._import(client, auth_headers, reconciliation_id)

        assert result == {"imported": 3, "failed": 0, "errors": []}
        response = await client.get(
            f"{API}/reconciliations/{reconciliation_id}/bank-lines", headers=auth_headers,
        )
        lines = response.json()
        assert [line["match_status"] for line in lines] == ["unmatched"] * 3
        assert lines[1]["external_transaction_id"] == "1042"

    @pytest.mark.asyncio
    async def test_import_requires_lines(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/bank-lines",
            json={"lines": []},
            headers=auth_headers,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_manual_match_and_unmatch(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)
        await self._import(client, auth_headers, reconciliation_id)
        lines = (await client.get(
            f"{API}/reconciliations/{reconciliation_id}/bank-lines", headers=auth_headers,
        )).json()
        line_id = lines[0]["id"]

        response = await client.post(
            f"{API}/bank-lines/{line_id}/match",
            json={"posting_id": str(scenario.customer_payment)},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["match_status"] == "manually_matched"

        response = await client.post(
            f"{API}/bank-lines/{line_id}/match",
            json={"posting_id": str(scenario.loan_proceeds)},
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "ALREADY_MATCHED"

        response = await client.post(f"{API}/bank-lines/{line_id}/unmatch", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["match_status"] == "unmatched"

    @pytest.mark.asyncio
    async def test_auto_match_apply_and_complete(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)
        await self._import(client, auth_headers, reconciliation_id)

        response = await client.get(
            f"{API}/reconciliations/{reconciliation_id}/auto-match", headers=auth_headers,
        )
        assert response.status_code == 200
        suggestions = response.json()
        assert len(suggestions) == 3
        assert {s["confidence"] for s in suggestions} == {"high"}

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/auto-match/apply",
            json={},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"matched": 3, "failed": 0, "errors": []}

        response = await client.get(
            f"{API}/reconciliations/{reconciliation_id}/summary", headers=auth_headers,
        )
        summary = response.json()
        assert summary["matched_lines_count"] == 3
        assert summary["cleared_entries_count"] == 3
        assert Decimal(summary["difference"]) == Decimal("0")

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/complete", headers=auth_headers,
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_apply_explicit_suggestions(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)
        await self._import(client, auth_headers, reconciliation_id)
        lines = (await client.get(
            f"{API}/reconciliations/{reconciliation_id}/bank-lines", headers=auth_headers,
        )).json()

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/auto-match/apply",
            json={"suggestions": [
                {"bank_line_id": lines[0]["id"], "posting_id": str(scenario.customer_payment)},
                {"bank_line_id": lines[2]["id"], "posting_id": str(scenario.customer_payment)},
            ]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        result = response.json()
        assert result["matched"] == 1
        assert result["failed"] == 1


class TestAdjustmentAPI:
    """Test adjustment endpoints."""

    @pytest.mark.asyncio
    async def test_create_and_list_adjustment(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario, ending_balance="-25.00")

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/adjustments",
            json={
                "adjustment_type": "bank_fee",
                "description": "Monthly service fee",
                "amount": "25.00",
                "debit_account_id": str(scenario.accounts.bank_fees),
                "credit_account_id": str(scenario.accounts.checking),
            },
            headers=auth_headers,
        )

        assert response.status_code == 201, response.text
        adjustment = response.json()
        assert adjustment["adjustment_type"] == "bank_fee"
        assert adjustment["posting_id"] is not None

        response = await client.get(
            f"{API}/reconciliations/{reconciliation_id}/adjustments", headers=auth_headers,
        )
        assert [a["id"] for a in response.json()] == [adjustment["id"]]

        response = await client.get(f"{API}/reconciliations/{reconciliation_id}", headers=auth_headers)
        assert Decimal(response.json()["cleared_balance"]) == Decimal("-25.00")
        assert Decimal(response.json()["difference"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_adjustment_same_accounts_rejected(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)

        response = await client.post(
            f"{API}/reconciliations/{reconciliation_id}/adjustments",
            json={
                "adjustment_type": "correction",
                "description": "Oops",
                "amount": "5.00",
                "debit_account_id": str(scenario.accounts.checking),
                "credit_account_id": str(scenario.accounts.checking),
            },
            headers=auth_headers,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_suggested_accounts(self, client, auth_headers, scenario):
        reconciliation_id = await _start(client, auth_headers, scenario)

        response = await client.get(
            f"{API}/reconciliations/{reconciliation_id}/adjustments/suggested-accounts",
            params={"adjustment_type": "bank_fee"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "adjustment_type": "bank_fee",
            "debit_account_id": str(scenario.accounts.bank_fees),
            "credit_account_id": str(scenario.accounts.checking),
        }


class TestCashFlowAPI:
    """Test cash flow statement endpoint."""

    @pytest.mark.asyncio
    async def test_cash_flow_statement(self, client, auth_headers, scenario):
        response = await client.get(
            "/api/v1/cash-flow/statement",
            params={"start_date": "2026-03-01", "end_date": "2026-03-31"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["operating"]["subtotal"]) == Decimal("5000.00")
        assert Decimal(data["investing"]["subtotal"]) == Decimal("-2000.00")
        assert Decimal(data["financing"]["subtotal"]) == Decimal("7000.00")
        assert Decimal(data["net_change"]) == Decimal("10000.00")
        assert data["is_balanced"] is True

    @pytest.mark.asyncio
    async def test_cash_flow_invalid_range(self, client, auth_headers):
        response = await client.get(
            "/api/v1/cash-flow/statement",
            params={"start_date": "2026-03-31", "end_date": "2026-03-01"},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_DATE_RANGE"
