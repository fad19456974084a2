from __future__ import annotations

import json
from datetime import date

import pytest

from capacity_guard.io_utils import (
    allocation_from_dict,
    config_from_dict,
    load_allocations,
    load_config,
    load_request,
    load_resources,
    load_snapshot,
    request_from_dict,
    snapshot_from_dict,
)
from capacity_guard.models import AllocationStatus, InvalidInputError, Period


def write_json(path, payload) -> None:
    path.write_text(json.dumps(payload))


def write_state(tmp_path) -> None:
    write_json(
        tmp_path / "resources.json",
        [
            {"id": "r1", "name": "Alice", "maxCapacity": 1.0, "overAllocationThreshold": 1.2, "costCenterId": "cc-1"},
            {"id": "r2", "name": "Bob", "isActive": "false"},
        ],
    )
    (tmp_path / "allocations.csv").write_text(
        "id,resource,allocation_percentage,cost_center_id,cost_monthly,cost_project,status,task_name\n"
        "a1,Alice,0.5,cc-1,10000000,60000000,active,Build\n"
        "a2,Alice,0.25,,,,,\n"
    )
    write_json(
        tmp_path / "cost_centers.json",
        [
            {
                "id": "cc-1",
                "code": "ENG",
                "name": "Engineering",
                "monthlyBudget": 100000000,
                "yearlyBudget": 1200000000,
                "actualMonthlyCost": 20000000,
                "budgetEnforcement": "strict",
            }
        ],
    )
    write_json(
        tmp_path / "leaves.json",
        [{"memberName": "Alice", "startDate": "2025-03-10", "endDate": "2025-03-12", "type": "annual"}],
    )
    write_json(tmp_path / "holidays.json", [{"date": "2025-03-31", "name": "Nyepi"}])


def test_load_snapshot_reads_every_collection(tmp_path) -> None:
    write_state(tmp_path)

    snapshot = load_snapshot(tmp_path)

    assert [r.name for r in snapshot.resources] == ["Alice", "Bob"]
    assert snapshot.resources[1].active is False
    assert [a.id for a in snapshot.allocations] == ["a1", "a2"]
    first, second = snapshot.allocations
    assert first.plan.cost_monthly == 10_000_000
    assert first.status is AllocationStatus.ACTIVE
    assert second.cost_center_id is None
    assert second.status is AllocationStatus.NOT_STARTED
    assert second.task_name == ""
    assert snapshot.cost_centers[0].budget_enforcement == "strict"
    assert snapshot.leaves[0].id == "Alice:2025-03-10"
    assert snapshot.holidays[0].date == date(2025, 3, 31)


def test_optional_files_may_be_absent(tmp_path) -> None:
    write_json(tmp_path / "resources.json", [{"name": "Alice"}])

    snapshot = load_snapshot(tmp_path)

    assert snapshot.allocations == ()
    assert snapshot.cost_centers == ()
    assert snapshot.resources[0].id == "Alice"


def test_missing_resources_file_raises(tmp_path) -> None:
    with pytest.raises(ValueError, match="resources.json"):
        load_snapshot(tmp_path)


def test_duplicate_resource_names_raise(tmp_path) -> None:
    path = tmp_path / "resources.json"
    write_json(path, [{"name": "Alice"}, {"name": "alice"}])

    with pytest.raises(ValueError, match="duplicate resource names"):
        load_resources(path)


def test_allocations_csv_requires_columns(tmp_path) -> None:
    path = tmp_path / "allocations.csv"
    path.write_text("id,resource\na1,Alice\n")

    with pytest.raises(ValueError, match="allocation_percentage"):
        load_allocations(path)


def test_allocations_csv_rejects_non_numeric(tmp_path) -> None:
    path = tmp_path / "allocations.csv"
    path.write_text("id,resource,allocation_percentage\na1,Alice,half\n")

    with pytest.raises(ValueError, match="allocation_percentage"):
        load_allocations(path)


def test_allocations_json_accepts_snapshot_membership(tmp_path) -> None:
    path = tmp_path / "allocations.json"
    write_json(
        path,
        [
            {
                "id": "a1",
                "resource": "Alice",
                "workload": 0.4,
                "costCenterSnapshot": {"id": "cc-1"},
                "plan": {"costMonthly": 5000000, "taskStart": "2025-03-01", "taskEnd": "2025-03-31"},
                "status": "Completed",
                "complexity": "Sophisticated",
            }
        ],
    )

    (allocation,) = load_allocations(path)

    assert allocation.allocation_percentage == pytest.approx(0.4)
    assert allocation.cost_center_snapshot_id == "cc-1"
    assert allocation.plan.task_end == date(2025, 3, 31)
    assert allocation.is_active() is False
    assert allocation.complexity == "sophisticated"
    assert allocation_from_dict({"id": "a2", "resource": "Alice", "allocationPercentage": 0.2}).complexity == "medium"


def test_unknown_allocation_status_raises() -> None:
    with pytest.raises(InvalidInputError):
        allocation_from_dict({"id": "a1", "resource": "Alice", "allocationPercentage": 0.2, "status": "paused"})


def test_invalid_date_raises() -> None:
    with pytest.raises(InvalidInputError, match="startDate"):
        snapshot_from_dict({"leaves": [{"memberName": "Alice", "startDate": "soon", "endDate": "2025-01-01"}]})


def test_load_request(tmp_path) -> None:
    path = tmp_path / "request.json"
    write_json(
        path,
        {
            "resource": "Alice",
            "allocationPercentage": 0.3,
            "startDate": "2025-03-01",
            "endDate": "2025-03-31",
            "plan": {"costMonthly": 5000000, "costProject": 30000000},
            "allocationId": "a1",
        },
    )

    request = load_request(path)

    assert request.resource == "Alice"
    assert request.start_date == date(2025, 3, 1)
    assert request.plan.cost_project == 30_000_000
    assert request.allocation_id == "a1"
    assert request.task_name == ""


def test_request_requires_percentage() -> None:
    with pytest.raises(InvalidInputError, match="allocationPercentage"):
        request_from_dict({"resource": "Alice"})


def test_non_numeric_capacity_raises() -> None:
    with pytest.raises(InvalidInputError):
        snapshot_from_dict({"resources": [{"name": "Alice", "maxCapacity": "lots"}]})


def test_load_config_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    write_json(path, {})

    config = load_config(path)

    assert config.default_capacity_threshold == pytest.approx(1.2)
    assert config.strict_enforcement is True
    assert config.budget_period is Period.MONTHLY


def test_load_config_overrides(tmp_path) -> None:
    path = tmp_path / "config.json"
    write_json(path, {"strict_enforcement": False, "budget_period": "yearly", "max_concurrent_tasks": 3, "currency": "USD"})

    config = load_config(path)

    assert config.strict_enforcement is False
    assert config.budget_period is Period.YEARLY
    assert config.max_concurrent_tasks == 3
    assert config.currency == "USD"


@pytest.mark.parametrize(
    "payload",
    [
        {"default_capacity_threshold": 0},
        {"default_capacity_threshold": "high"},
        {"strict_enforcement": "yes"},
        {"budget_period": "weekly"},
        {"max_concurrent_tasks": 0},
        {"currency": ""},
        [],
    ],
)
def test_invalid_config_raises(payload) -> None:
    with pytest.raises(ValueError):
        config_from_dict(payload)


def test_invalid_json_raises(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ValueError, match="invalid JSON"):
        load_config(path)
