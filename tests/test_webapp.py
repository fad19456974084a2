from __future__ import annotations

import pytest

from capacity_guard.models import ValidationConfig
from webapp.app import create_app


def state_payload() -> dict:
    return {
        "resources": [{"id": "r1", "name": "Alice", "maxCapacity": 1.0, "overAllocationThreshold": 1.2}],
        "allocations": [
            {"id": "a1", "resource": "Alice", "allocationPercentage": 0.5, "status": "active", "costCenterId": "cc-1"},
            {"id": "a2", "resource": "Alice", "allocationPercentage": 0.3, "status": "active"},
        ],
        "costCenters": [
            {
                "id": "cc-1",
                "name": "Engineering",
                "monthlyBudget": 100000000,
                "actualMonthlyCost": 40000000,
                "budgetEnforcement": "strict",
            }
        ],
    }


@pytest.fixture()
def client():
    app = create_app()
    app.config["TESTING"] = True
    return app.test_client()


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_validate_rejects_over_threshold(client) -> None:
    response = client.post(
        "/api/validate",
        json={"state": state_payload(), "request": {"resource": "Alice", "allocationPercentage": 0.5}},
    )

    payload = response.get_json()
    assert response.status_code == 200
    assert payload["decision"] == "reject"
    assert payload["outcomes"][0]["type"] == "capacity_limits"
    assert payload["outcomes"][0]["conflicts"] == ["a1", "a2"]


def test_validate_options_relax_enforcement(client) -> None:
    response = client.post(
        "/api/validate",
        json={
            "state": state_payload(),
            "request": {"resource": "Alice", "allocationPercentage": 0.5},
            "options": {"allowOverAllocation": True},
        },
    )

    payload = response.get_json()
    assert payload["decision"] == "warn"
    assert payload["outcomes"][0]["severity"] == "warning"


def test_validate_uses_app_config() -> None:
    client = create_app(ValidationConfig(strict_enforcement=False)).test_client()
    response = client.post(
        "/api/validate",
        json={"state": state_payload(), "request": {"resource": "Alice", "allocationPercentage": 0.5}},
    )

    assert response.get_json()["decision"] == "warn"


@pytest.mark.parametrize(
    "body",
    [
        {"state": state_payload()},
        {"state": state_payload(), "request": {"resource": "Alice", "allocationPercentage": "lots"}},
        {"state": state_payload(), "request": {"resource": "Alice", "allocationPercentage": 0.2}, "options": {"x": 1}},
        {"state": {"resources": "Alice"}, "request": {"resource": "Alice", "allocationPercentage": 0.2}},
    ],
)
def test_validate_malformed_input_is_400(client, body) -> None:
    response = client.post("/api/validate", json=body)

    assert response.status_code == 400
    assert "error" in response.get_json()


def test_non_json_body_is_400(client) -> None:
    response = client.post("/api/validate", data="nope", content_type="text/plain")

    assert response.status_code == 400


def test_budget_endpoint(client) -> None:
    response = client.post(
        "/api/budget",
        json={"state": state_payload(), "costCenterId": "cc-1", "allocationCost": 70000000, "period": "monthly"},
    )

    payload = response.get_json()
    assert payload["result"] == "rejected"
    assert payload["details"]["newProjectedSpend"] == 110000000


def test_budget_endpoint_unknown_cost_center(client) -> None:
    response = client.post("/api/budget", json={"state": state_payload(), "costCenterId": "cc-9", "allocationCost": 1})

    assert response.get_json()["message"] == "Cost center not found"


def test_budget_endpoint_requires_numeric_cost(client) -> None:
    response = client.post("/api/budget", json={"state": state_payload(), "costCenterId": "cc-1"})

    assert response.status_code == 400


def test_utilization_endpoint(client) -> None:
    response = client.post("/api/utilization", json={"state": state_payload()})

    (entry,) = response.get_json()["resources"]
    assert entry["resourceName"] == "Alice"
    assert entry["utilizationPercentage"] == 80.0
    assert entry["status"] == "high-utilization"
