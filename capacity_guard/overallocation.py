from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .models import DEFAULT_CAPACITY_THRESHOLD, Allocation, Resource
from .thresholds import at_limit, exceeds, quantize
from .utilization import calculate_utilization, find_resource

logger = logging.getLogger(__name__)

HIGH_UTILIZATION_RATIO = 0.8
MODERATE_UTILIZATION_RATIO = 0.4


class CapacityStatus(str, Enum):
    OVER_CAPACITY = "over-capacity"
    AT_CAPACITY = "at-capacity"
    HIGH_UTILIZATION = "high-utilization"
    MODERATE_UTILIZATION = "moderate-utilization"
    AVAILABLE = "available"


def classify_utilization(current_utilization: float, max_capacity: float = 1.0) -> CapacityStatus:
    """Map utilization to the capacity vocabulary shared by every caller.

    The ratio is taken against ``max_capacity``: more than ``EPSILON`` above 100% is over capacity,
    100% within ``EPSILON`` is at capacity, then 80% and 40%
    bound the high and moderate bands.
    """
    if max_capacity <= 0:
        return CapacityStatus.OVER_CAPACITY if exceeds(current_utilization, 0.0) else CapacityStatus.AT_CAPACITY
    ratio = current_utilization / max_capacity
    if exceeds(ratio, 1.0):
        return CapacityStatus.OVER_CAPACITY
    if at_limit(ratio, 1.0):
        return CapacityStatus.AT_CAPACITY
    if quantize(ratio) >= HIGH_UTILIZATION_RATIO:
        return CapacityStatus.HIGH_UTILIZATION
    if quantize(ratio) >= MODERATE_UTILIZATION_RATIO:
        return CapacityStatus.MODERATE_UTILIZATION
    return CapacityStatus.AVAILABLE


@dataclass(frozen=True)
class OverAllocationResult:
    resource_name: str
    current_utilization: float
    over_allocation_threshold: float
    is_over_allocated: bool
    over_allocation_amount: float
    max_capacity: float
    status: CapacityStatus
    conflicting_allocations: Tuple[str, ...] = ()
    found: bool = True

    def to_dict(self) -> Dict[str, object]:
        return {
            "resourceName": self.resource_name,
            "currentUtilization": self.current_utilization,
            "overAllocationThreshold": self.over_allocation_threshold,
            "isOverAllocated": self.is_over_allocated,
            "overAllocationAmount": self.over_allocation_amount,
            "maxCapacity": self.max_capacity,
            "status": self.status.value,
            "conflictingAllocations": list(self.conflicting_allocations),
        }


def detect_over_allocation(
    resource_name: str,
    allocations: Sequence[Allocation],
    resources: Sequence[Resource],
    *,
    default_threshold: float = DEFAULT_CAPACITY_THRESHOLD,
) -> OverAllocationResult:
    utilization = calculate_utilization(resource_name, allocations, resources)
    resource = find_resource(resource_name, resources)
    threshold = resource.threshold_or(default_threshold) if resource else default_threshold
    current = utilization.current_utilization
    is_over = exceeds(current, threshold)
    amount = quantize(current - threshold) if is_over else 0.0
    conflicting = tuple(utilization.contributing_ids()) if is_over else ()
    if is_over:
        logger.info(
            "Resource over-allocated | resource=%s | utilization=%.3f | threshold=%.3f",
            utilization.resource_name,
            current,
            threshold,
        )
    max_capacity = float(resource.max_capacity) if resource else 0.0
    return OverAllocationResult(
        resource_name=utilization.resource_name,
        current_utilization=current,
        over_allocation_threshold=threshold,
        is_over_allocated=is_over,
        over_allocation_amount=amount,
        max_capacity=max_capacity,
        status=classify_utilization(current, max_capacity) if resource else CapacityStatus.AVAILABLE,
        conflicting_allocations=conflicting,
        found=resource is not None,
    )


@dataclass(frozen=True)
class ResourceAvailability:
    resource_name: str
    found: bool
    available: bool
    current_utilization: float = 0.0
    max_capacity: float = 0.0
    over_allocation_threshold: float = DEFAULT_CAPACITY_THRESHOLD
    available_capacity: float = 0.0
    status: Optional[CapacityStatus] = None
    active_allocations_count: int = 0
    breakdown: List[Dict[str, object]] = field(default_factory=list)

    @property
    def available_percentage(self) -> float:
        return round(self.available_capacity * 100, 1)

    def to_dict(self) -> Dict[str, object]:
        return {
            "resourceName": self.resource_name,
            "found": self.found,
            "available": self.available,
            "currentUtilization": self.current_utilization,
            "maxCapacity": self.max_capacity,
            "overAllocationThreshold": self.over_allocation_threshold,
            "availableCapacity": self.available_capacity,
            "availablePercentage": self.available_percentage,
            "status": self.status.value if self.status else None,
            "activeAllocationsCount": self.active_allocations_count,
            "utilizationBreakdown": self.breakdown,
        }


def get_resource_availability(
    resource_name: str,
    allocations: Sequence[Allocation],
    resources: Sequence[Resource],
    *,
    default_threshold: float = DEFAULT_CAPACITY_THRESHOLD,
) -> ResourceAvailability:
    utilization = calculate_utilization(resource_name, allocations, resources)
    resource = find_resource(resource_name, resources)
    if resource is None:
        return ResourceAvailability(resource_name=utilization.resource_name, found=False, available=False)
    threshold = resource.threshold_or(default_threshold)
    available_capacity = quantize(max(0.0, threshold - utilization.current_utilization))
    return ResourceAvailability(
        resource_name=resource.name,
        found=True,
        available=available_capacity > 0,
        current_utilization=utilization.current_utilization,
        max_capacity=float(resource.max_capacity),
        over_allocation_threshold=threshold,
        available_capacity=available_capacity,
        status=classify_utilization(utilization.current_utilization, float(resource.max_capacity)),
        active_allocations_count=len(utilization.active_allocations),
        breakdown=utilization.breakdown(),
    )


@dataclass(frozen=True)
class UtilizationSummaryEntry:
    resource_id: str
    resource_name: str
    current_utilization: float
    utilization_percentage: float
    max_capacity: float
    is_over_allocated: bool
    over_allocation_amount: float
    active_allocations_count: int
    status: CapacityStatus
    last_updated: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "resourceId": self.resource_id,
            "resourceName": self.resource_name,
            "currentUtilization": self.current_utilization,
            "utilizationPercentage": self.utilization_percentage,
            "maxCapacity": self.max_capacity,
            "isOverAllocated": self.is_over_allocated,
            "overAllocationAmount": self.over_allocation_amount,
            "activeAllocationsCount": self.active_allocations_count,
            "status": self.status.value,
            "lastUpdated": self.last_updated,
        }


def get_utilization_summary(
    allocations: Sequence[Allocation],
    resources: Sequence[Resource],
    *,
    default_threshold: float = DEFAULT_CAPACITY_THRESHOLD,
) -> List[UtilizationSummaryEntry]:
    """Utilization of every active resource, busiest first."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    entries: List[UtilizationSummaryEntry] = []
    for resource in resources:
        if not resource.active:
            continue
        utilization = calculate_utilization(resource.name, allocations, resources)
        detection = detect_over_allocation(
            resource.name, allocations, resources, default_threshold=default_threshold
        )
        entries.append(
            UtilizationSummaryEntry(
                resource_id=resource.id,
                resource_name=resource.name,
                current_utilization=utilization.current_utilization,
                utilization_percentage=utilization.utilization_percentage,
                max_capacity=float(resource.max_capacity),
                is_over_allocated=detection.is_over_allocated,
                over_allocation_amount=detection.over_allocation_amount,
                active_allocations_count=len(utilization.active_allocations),
                status=classify_utilization(utilization.current_utilization, float(resource.max_capacity)),
                last_updated=stamp,
            )
        )
    entries.sort(key=lambda entry: entry.utilization_percentage, reverse=True)
    return entries


def utilization_summary_frame(
    allocations: Sequence[Allocation],
    resources: Sequence[Resource],
    *,
    default_threshold: float = DEFAULT_CAPACITY_THRESHOLD,
) -> pd.DataFrame:
    entries = get_utilization_summary(allocations, resources, default_threshold=default_threshold)
    columns = [
        "resourceId",
        "resourceName",
        "currentUtilization",
        "utilizationPercentage",
        "maxCapacity",
        "isOverAllocated",
        "overAllocationAmount",
        "activeAllocationsCount",
        "status",
        "lastUpdated",
    ]
    return pd.DataFrame([entry.to_dict() for entry in entries], columns=columns)
