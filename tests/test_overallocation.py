from __future__ import annotations

import pytest

from capacity_guard.models import Allocation, AllocationStatus, Resource
from capacity_guard.overallocation import (
    CapacityStatus,
    classify_utilization,
    detect_over_allocation,
    get_resource_availability,
    get_utilization_summary,
    utilization_summary_frame,
)


def make_resource(name: str = "Alice", **overrides) -> Resource:
    defaults = {"id": name.lower(), "name": name, "max_capacity": 1.0, "over_allocation_threshold": 1.2}
    defaults.update(overrides)
    return Resource(**defaults)


def make_allocation(alloc_id: str, percentage: float, resource: str = "Alice") -> Allocation:
    return Allocation(
        id=alloc_id,
        resource=resource,
        allocation_percentage=percentage,
        status=AllocationStatus.ACTIVE,
    )


@pytest.mark.parametrize(
    "utilization, expected",
    [
        (1.3, CapacityStatus.OVER_CAPACITY),
        (1.0, CapacityStatus.AT_CAPACITY),
        (1.0004, CapacityStatus.AT_CAPACITY),
        (1.0008, CapacityStatus.AT_CAPACITY),
        (0.9996, CapacityStatus.AT_CAPACITY),
        (0.85, CapacityStatus.HIGH_UTILIZATION),
        (0.8, CapacityStatus.HIGH_UTILIZATION),
        (0.5, CapacityStatus.MODERATE_UTILIZATION),
        (0.4, CapacityStatus.MODERATE_UTILIZATION),
        (0.39, CapacityStatus.AVAILABLE),
        (0.0, CapacityStatus.AVAILABLE),
    ],
)
def test_classify_utilization_bands(utilization, expected) -> None:
    assert classify_utilization(utilization) is expected


def test_classify_uses_ratio_to_capacity() -> None:
    assert classify_utilization(0.5, max_capacity=0.5) is CapacityStatus.AT_CAPACITY
    assert classify_utilization(0.6, max_capacity=0.5) is CapacityStatus.OVER_CAPACITY


def test_classify_zero_capacity() -> None:
    assert classify_utilization(0.0, max_capacity=0.0) is CapacityStatus.AT_CAPACITY
    assert classify_utilization(0.2, max_capacity=0.0) is CapacityStatus.OVER_CAPACITY


def test_detects_over_allocation_with_conflicts() -> None:
    allocations = [make_allocation("a1", 0.8), make_allocation("a2", 0.5)]
    result = detect_over_allocation("Alice", allocations, [make_resource()])

    assert result.is_over_allocated is True
    assert result.over_allocation_amount == pytest.approx(0.1)
    assert result.conflicting_allocations == ("a1", "a2")
    assert result.status is CapacityStatus.OVER_CAPACITY


def test_exactly_at_threshold_is_not_over_allocated() -> None:
    allocations = [make_allocation("a1", 0.6), make_allocation("a2", 0.6)]
    result = detect_over_allocation("Alice", allocations, [make_resource()])

    assert result.is_over_allocated is False
    assert result.over_allocation_amount == 0.0
    assert result.conflicting_allocations == ()


@pytest.mark.parametrize("delta, expected", [(0.0, False), (0.0004, False), (0.0008, False), (0.002, True)])
def test_threshold_boundary(delta, expected) -> None:
    allocations = [make_allocation("a1", 1.2 + delta)]
    result = detect_over_allocation("Alice", allocations, [make_resource()])

    assert result.is_over_allocated is expected


def test_default_threshold_applies_when_resource_omits_it() -> None:
    resources = [make_resource(over_allocation_threshold=None)]
    result = detect_over_allocation("Alice", [make_allocation("a1", 1.1)], resources)

    assert result.over_allocation_threshold == pytest.approx(1.2)
    assert result.is_over_allocated is False

    custom = detect_over_allocation("Alice", [make_allocation("a1", 1.1)], resources, default_threshold=1.05)
    assert custom.is_over_allocated is True


def test_unknown_resource_is_not_over_allocated() -> None:
    result = detect_over_allocation("Ghost", [], [make_resource()])

    assert result.found is False
    assert result.is_over_allocated is False
    assert result.current_utilization == 0.0


def test_availability_reports_headroom() -> None:
    availability = get_resource_availability("Alice", [make_allocation("a1", 0.7)], [make_resource()])

    assert availability.found is True
    assert availability.available is True
    assert availability.available_capacity == pytest.approx(0.5)
    assert availability.available_percentage == pytest.approx(50.0)
    assert availability.status is CapacityStatus.MODERATE_UTILIZATION
    assert availability.breakdown[0]["allocationId"] == "a1"


def test_availability_for_unknown_resource() -> None:
    availability = get_resource_availability("Ghost", [], [make_resource()])

    assert availability.found is False
    assert availability.available is False
    assert availability.to_dict()["status"] is None


def test_summary_is_sorted_and_skips_inactive_resources() -> None:
    resources = [make_resource(), make_resource("Bob"), make_resource("Carol", active=False)]
    allocations = [make_allocation("a1", 0.3), make_allocation("b1", 0.9, "Bob"), make_allocation("c1", 0.5, "Carol")]

    entries = get_utilization_summary(allocations, resources)

    assert [entry.resource_name for entry in entries] == ["Bob", "Alice"]
    assert entries[0].status is CapacityStatus.HIGH_UTILIZATION


@pytest.mark.parametrize("percentages", [[0.2], [0.5, 0.3], [1.0], [0.7, 0.7], [0.6, 0.6]])
def test_availability_and_summary_agree_on_status(percentages) -> None:
    resources = [make_resource()]
    allocations = [make_allocation(f"a{i}", value) for i, value in enumerate(percentages)]

    availability = get_resource_availability("Alice", allocations, resources)
    (entry,) = get_utilization_summary(allocations, resources)

    assert availability.status is entry.status


def test_summary_frame_has_one_row_per_active_resource() -> None:
    resources = [make_resource(), make_resource("Bob")]
    frame = utilization_summary_frame([make_allocation("a1", 0.5)], resources)

    assert list(frame["resourceName"]) == ["Alice", "Bob"]
    assert frame.loc[0, "status"] == "moderate-utilization"
    assert "lastUpdated" in frame.columns
