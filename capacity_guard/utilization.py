from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Allocation, Resource, names_match, require_name, require_number
from .thresholds import quantize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UtilizationResult:
    resource_name: str
    current_utilization: float
    active_allocations: Tuple[Allocation, ...] = ()
    max_capacity: float = 1.0
    found: bool = True

    @property
    def utilization_percentage(self) -> float:
        if self.max_capacity <= 0:
            return 0.0 if self.current_utilization <= 0 else float("inf")
        return round(self.current_utilization / self.max_capacity * 100, 2)

    def breakdown(self) -> List[Dict[str, object]]:
        return [
            {
                "allocationId": allocation.id,
                "projectName": allocation.project_name,
                "taskName": allocation.task_name,
                "allocationPercentage": allocation.allocation_percentage,
                "startDate": allocation.plan.task_start.isoformat() if allocation.plan.task_start else None,
                "endDate": allocation.plan.task_end.isoformat() if allocation.plan.task_end else None,
            }
            for allocation in self.active_allocations
        ]

    def contributing_ids(self) -> List[str]:
        return [allocation.id for allocation in self.active_allocations if allocation.allocation_percentage > 0]


def find_resource(resource_name: str, resources: Iterable[Resource]) -> Optional[Resource]:
    for resource in resources:
        if resource.id == resource_name or names_match(resource.name, resource_name):
            return resource
    return None


def active_allocations_for(
    resource: Resource,
    allocations: Iterable[Allocation],
    *,
    exclude_allocation_id: Optional[str] = None,
) -> List[Allocation]:
    matched: List[Allocation] = []
    for allocation in allocations:
        if exclude_allocation_id is not None and allocation.id == exclude_allocation_id:
            continue
        if not names_match(allocation.resource, resource.name):
            continue
        if not allocation.is_active():
            continue
        matched.append(allocation)
    return matched


def calculate_utilization(
    resource_name: str,
    allocations: Sequence[Allocation],
    resources: Sequence[Resource],
    *,
    exclude_allocation_id: Optional[str] = None,
) -> UtilizationResult:
    """Sum the percentages of a resource's active allocations.

    Allocations join to resources by name. Completed, cancelled and idle
    allocations are skipped, and every active allocation counts at its full
    percentage regardless of its dates. An unknown resource yields zero
    utilization with no allocations.
    """
    name = require_name(resource_name, "resource name")
    resource = find_resource(name, resources)
    if resource is None:
        logger.debug("Utilization requested for unknown resource %s", name)
        return UtilizationResult(resource_name=name, current_utilization=0.0, max_capacity=0.0, found=False)

    active = active_allocations_for(resource, allocations, exclude_allocation_id=exclude_allocation_id)
    total = 0.0
    for allocation in active:
        total += require_number(allocation.allocation_percentage, f"allocation {allocation.id} percentage")
    return UtilizationResult(
        resource_name=resource.name,
        current_utilization=quantize(total),
        active_allocations=tuple(active),
        max_capacity=float(resource.max_capacity),
    )
