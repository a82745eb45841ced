"""API tests against the FastAPI app with a temp-file database."""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from tests.conftest import STANDARD_DEDUCTIONS

PERIOD_PAYLOAD = {
    "name": "January 2026",
    "period_type": "monthly",
    "start_date": "2026-01-01",
    "end_date": "2026-01-31",
    "pay_date": "2026-02-05",
}


async def create_period(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/api/v1/periods", json={**PERIOD_PAYLOAD, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


async def create_payroll_info(client: AsyncClient, employee_id: str, **overrides) -> dict:
    payload = {
        "employee_id": employee_id,
        "employee_name": f"Employee {employee_id}",
        "rate_basis": "monthly",
        "rate": "30000",
        "effective_date": "2025-01-01",
        "deduction_config": STANDARD_DEDUCTIONS,
        **overrides,
    }
    response = await client.post("/api/v1/payroll-info", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["engine_version"] == "1.0.0-test"

    async def test_readiness_check(self, client: AsyncClient):
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"


class TestPeriodEndpoints:
    """Test period CRUD endpoints."""

    async def test_create_period(self, client: AsyncClient):
        data = await create_period(client)

        assert data["status"] == "draft"
        assert data["version"] == 1
        assert data["pay_group"] == "default"
        assert float(data["total_net_pay"]) == 0
        assert set(data["allowed_actions"]) == {"recalculate", "cancel"}

    async def test_create_period_invalid_dates(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/periods",
            json={**PERIOD_PAYLOAD, "end_date": "2025-12-31", "pay_date": None},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_create_period_unknown_type(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/periods", json={**PERIOD_PAYLOAD, "period_type": "fortnightly"}
        )
        assert response.status_code == 422

    async def test_create_overlapping_period(self, client: AsyncClient):
        await create_period(client)
        response = await client.post(
            "/api/v1/periods",
            json={**PERIOD_PAYLOAD, "name": "Overlap", "start_date": "2026-01-15"},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    async def test_get_period_not_found(self, client: AsyncClient):
        response = await client.get(f"/api/v1/periods/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_list_periods_with_filters(self, client: AsyncClient):
        await create_period(client)
        await create_period(
            client,
            name="February 2026",
            start_date="2026-02-01",
            end_date="2026-02-28",
            pay_date="2026-03-05",
        )

        response = await client.get("/api/v1/periods", params={"search": "feb"})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["name"] == "February 2026"

        response = await client.get("/api/v1/periods", params={"page_size": 1, "page": 2})
        data = response.json()
        assert data["total"] == 2
        assert [p["name"] for p in data["items"]] == ["January 2026"]

    async def test_patch_draft_period(self, client: AsyncClient):
        period = await create_period(client)

        response = await client.patch(
            f"/api/v1/periods/{period['id']}",
            json={"name": "Jan 2026", "cutoff_date": "2026-01-25"},
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Jan 2026"
        assert response.json()["cutoff_date"] == "2026-01-25"

    @pytest.mark.parametrize("field", ["name", "period_type", "start_date", "end_date"])
    async def test_patch_cannot_clear_required_field(self, client: AsyncClient, field):
        period = await create_period(client)

        response = await client.patch(f"/api/v1/periods/{period['id']}", json={field: None})
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

        response = await client.get(f"/api/v1/periods/{period['id']}")
        assert response.json()["name"] == "January 2026"


class TestLifecycleEndpoints:
    """Test recalculate, approve and cancel over HTTP."""

    async def test_recalculate_approve_flow(self, client: AsyncClient, runner):
        period = await create_period(client)
        await create_payroll_info(client, "E001")
        await create_payroll_info(client, "E002")

        response = await client.post(
            f"/api/v1/periods/{period['id']}/recalculate", headers={"X-Actor-ID": "admin-1"}
        )
        assert response.status_code == 202
        run_id = response.json()["run_id"]
        assert response.json()["status"] == "pending"

        await runner.run_pending()

        response = await client.get(f"/api/v1/runs/{run_id}")
        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "succeeded"
        assert run["progress_percent"] == 100
        assert run["skipped"] == []

        response = await client.get(f"/api/v1/periods/{period['id']}/calculations")
        data = response.json()
        assert data["total"] == 2
        first = data["items"][0]
        assert first["employee_id"] == "E001"
        assert float(first["net_pay"]) == 26977.45
        assert [d["code"] for d in first["deductions"]] == ["SSS", "HMO", "WTAX"]

        response = await client.post(
            f"/api/v1/periods/{period['id']}/approve", headers={"X-Actor-ID": "admin-2"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["approved_by"] == "admin-2"
        assert response.json()["allowed_actions"] == []

        response = await client.post(f"/api/v1/periods/{period['id']}/cancel")
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

        response = await client.get(f"/api/v1/periods/{period['id']}/history")
        events = response.json()
        assert [e["to_status"] for e in events] == ["draft", "calculating", "calculated", "approved"]
        assert events[1]["actor"] == "admin-1"

    async def test_recalculate_twice_conflicts(self, client: AsyncClient, runner):
        period = await create_period(client)

        first = await client.post(f"/api/v1/periods/{period['id']}/recalculate")
        second = await client.post(f"/api/v1/periods/{period['id']}/recalculate")

        assert first.status_code == 202
        assert second.status_code == 409
        assert second.json()["code"] == "CONFLICT"

        response = await client.get(f"/api/v1/periods/{period['id']}/runs")
        assert len(response.json()) == 1

    async def test_approve_draft_rejected(self, client: AsyncClient):
        period = await create_period(client)

        response = await client.post(f"/api/v1/periods/{period['id']}/approve")
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

        response = await client.get(f"/api/v1/periods/{period['id']}")
        assert response.json()["status"] == "draft"

    async def test_partial_failure_reported_on_run(self, client: AsyncClient, runner):
        period = await create_period(client)
        await create_payroll_info(client, "E001")
        await create_payroll_info(client, "E002", rate=None)

        response = await client.post(f"/api/v1/periods/{period['id']}/recalculate")
        run_id = response.json()["run_id"]
        await runner.run_pending()

        run = (await client.get(f"/api/v1/runs/{run_id}")).json()
        assert run["status"] == "succeeded"
        assert run["error_code"] == "PARTIAL_CALCULATION_FAILURE"
        assert run["skipped"] == [{"employee_id": "E002", "reason": "Missing rate"}]

        response = await client.post(f"/api/v1/periods/{period['id']}/approve")
        assert response.status_code == 409
        assert "calculation errors" in response.json()["detail"]

    async def test_cancel_with_reason(self, client: AsyncClient):
        period = await create_period(client)

        response = await client.post(
            f"/api/v1/periods/{period['id']}/cancel",
            json={"reason": "Created by mistake"},
            headers={"X-Actor-ID": "admin-1"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "cancelled"
        assert data["cancel_reason"] == "Created by mistake"
        assert data["cancelled_by"] == "admin-1"

    async def test_run_not_found(self, client: AsyncClient):
        response = await client.get(f"/api/v1/runs/{uuid4()}")
        assert response.status_code == 404


class TestPayrollInfoEndpoints:
    """Test payroll info endpoints."""

    async def test_create_and_get(self, client: AsyncClient):
        info = await create_payroll_info(client, "E001")

        response = await client.get(f"/api/v1/payroll-info/{info['id']}")
        assert response.status_code == 200
        assert response.json()["employee_id"] == "E001"
        assert response.json()["deduction_config"][0]["code"] == "SSS"

    async def test_list_by_employee(self, client: AsyncClient):
        await create_payroll_info(client, "E001")
        await create_payroll_info(client, "E001", rate="32000", effective_date="2026-01-01")
        await create_payroll_info(client, "E002")

        response = await client.get("/api/v1/payroll-info", params={"employee_id": "E001"})
        data = response.json()
        assert data["total"] == 2
        assert [i["effective_date"] for i in data["items"]] == ["2026-01-01", "2025-01-01"]

    async def test_invalid_deduction_config(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll-info",
            json={
                "employee_id": "E001",
                "rate_basis": "monthly",
                "rate": "30000",
                "effective_date": "2025-01-01",
                "deduction_config": [{"code": "X", "kind": "bogus"}],
            },
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_rate_out_of_range_rejected(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll-info",
            json={
                "employee_id": "E001",
                "rate_basis": "monthly",
                "rate": "1e40",
                "effective_date": "2025-01-01",
            },
        )
        assert response.status_code == 422

    async def test_oversized_deduction_amount_rejected(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll-info",
            json={
                "employee_id": "E001",
                "rate_basis": "monthly",
                "rate": "30000",
                "effective_date": "2025-01-01",
                "deduction_config": [{"code": "LOAN", "kind": "fixed", "amount": "1e40"}],
            },
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
