from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .budget import BudgetValidator
from .cache import AggregateCache
from .models import (
    AllocationRequest,
    BudgetResult,
    CheckType,
    LeavePeriod,
    Resource,
    Severity,
    StateSnapshot,
    ValidationConfig,
    ValidationOutcome,
    dedupe,
    names_match,
)
from .overallocation import classify_utilization
from .thresholds import as_percent, exceeds, quantize
from .utilization import UtilizationResult, calculate_utilization, find_resource

logger = logging.getLogger(__name__)

LOW_SUSTAINABILITY_SCORE = 70
UNSUSTAINABLE_SCORE = 50


class Decision(str, Enum):
    ADMIT = "admit"
    WARN = "warn"
    REJECT = "reject"


def is_admissible(outcomes: Sequence[ValidationOutcome]) -> bool:
    return not any(outcome.is_blocking for outcome in outcomes)


@dataclass(frozen=True)
class ValidationReport:
    outcomes: Tuple[ValidationOutcome, ...]

    @property
    def is_admissible(self) -> bool:
        return is_admissible(self.outcomes)

    @property
    def errors(self) -> List[ValidationOutcome]:
        return [outcome for outcome in self.outcomes if outcome.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[ValidationOutcome]:
        return [outcome for outcome in self.outcomes if outcome.severity is Severity.WARNING]

    @property
    def decision(self) -> Decision:
        if not self.is_admissible:
            return Decision.REJECT
        if self.outcomes:
            return Decision.WARN
        return Decision.ADMIT

    def recommendations(self) -> List[str]:
        collected: List[str] = []
        for outcome in self.outcomes:
            collected.extend(str(item) for item in outcome.details.get("recommendations", ()) or ())
        return dedupe(collected)

    def to_dict(self) -> Dict[str, object]:
        return {
            "decision": self.decision.value,
            "isAdmissible": self.is_admissible,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "recommendations": self.recommendations(),
        }


def _overlap(start: date, end: date, other_start: date, other_end: date) -> Optional[Tuple[date, date]]:
    if other_start <= end and other_end >= start:
        return max(start, other_start), min(end, other_end)
    return None


def sustainability_score(
    current_utilization: float,
    requested: float,
    task_count: int,
    complexities: Sequence[str],
    tier_level: int,
) -> int:
    """Score 0-100 for how sustainably a resource carries its load after the request."""
    score = 100.0
    total = quantize(current_utilization + requested)
    if total > 1.0:
        score -= (total - 1.0) * 30
    tasks = task_count + 1
    if tasks > 3:
        score -= (tasks - 3) * 10
    sophisticated = sum(1 for complexity in complexities if complexity == "sophisticated")
    if sophisticated > 1:
        score -= (sophisticated - 1) * 15
    if tier_level >= 3:
        score += 5
    return int(math.floor(max(0.0, min(100.0, score)) + 0.5))


class ValidationSession:
    """One snapshot plus the aggregate cache used while validating against it."""

    def __init__(
        self,
        pipeline: "AllocationValidationPipeline",
        snapshot: StateSnapshot,
        cache: Optional[AggregateCache] = None,
    ) -> None:
        self.pipeline = pipeline
        self.snapshot = snapshot
        self.cache = cache if cache is not None else AggregateCache()
        self._fingerprint = snapshot.fingerprint()

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    def refresh(self, snapshot: StateSnapshot) -> None:
        """Swap in a newer snapshot and drop every cached aggregate."""
        self.snapshot = snapshot
        self._fingerprint = snapshot.fingerprint()
        self.cache.invalidate()

    def utilization(self, resource_name: str, exclude_allocation_id: Optional[str] = None) -> UtilizationResult:
        return self.cache.get_or_compute(
            "utilization",
            self._fingerprint,
            (resource_name.strip().lower(), exclude_allocation_id),
            lambda: calculate_utilization(
                resource_name,
                self.snapshot.allocations,
                self.snapshot.resources,
                exclude_allocation_id=exclude_allocation_id,
            ),
        )

    def budget_validator(self, exclude_allocation_id: Optional[str] = None) -> BudgetValidator:
        return BudgetValidator(
            self.snapshot.cost_centers,
            self.snapshot.allocations,
            currency=self.pipeline.config.currency,
            exclude_allocation_id=exclude_allocation_id,
            cache=self.cache,
        )

    def validate(
        self,
        request: AllocationRequest,
        *,
        strict_enforcement: Optional[bool] = None,
        allow_over_allocation: Optional[bool] = None,
    ) -> List[ValidationOutcome]:
        return self.pipeline.run_checks(
            self,
            request,
            strict_enforcement=strict_enforcement,
            allow_over_allocation=allow_over_allocation,
        )

    def evaluate(
        self,
        request: AllocationRequest,
        *,
        strict_enforcement: Optional[bool] = None,
        allow_over_allocation: Optional[bool] = None,
    ) -> ValidationReport:
        outcomes = self.validate(
            request,
            strict_enforcement=strict_enforcement,
            allow_over_allocation=allow_over_allocation,
        )
        report = ValidationReport(outcomes=tuple(outcomes))
        logger.info(
            "Allocation validated | resource=%s | decision=%s | errors=%s | warnings=%s",
            request.resource,
            report.decision.value,
            len(report.errors),
            len(report.warnings),
        )
        return report


class AllocationValidationPipeline:
    """Runs every allocation check and reports all findings together.

    Checks run in a fixed order (fields, capacity limits, schedule conflicts,
    budget, workload) and none of them stops the others. Business-rule
    failures come back as :class:`ValidationOutcome` records; only
    structurally malformed input raises.
    """

    def __init__(self, config: Optional[ValidationConfig] = None) -> None:
        self.config = config or ValidationConfig()

    def session(self, snapshot: StateSnapshot, cache: Optional[AggregateCache] = None) -> ValidationSession:
        return ValidationSession(self, snapshot, cache)

    def validate(
        self,
        request: AllocationRequest,
        snapshot: StateSnapshot,
        *,
        strict_enforcement: Optional[bool] = None,
        allow_over_allocation: Optional[bool] = None,
    ) -> List[ValidationOutcome]:
        return self.session(snapshot).validate(
            request,
            strict_enforcement=strict_enforcement,
            allow_over_allocation=allow_over_allocation,
        )

    def evaluate(
        self,
        request: AllocationRequest,
        snapshot: StateSnapshot,
        *,
        strict_enforcement: Optional[bool] = None,
        allow_over_allocation: Optional[bool] = None,
    ) -> ValidationReport:
        return self.session(snapshot).evaluate(
            request,
            strict_enforcement=strict_enforcement,
            allow_over_allocation=allow_over_allocation,
        )

    def run_checks(
        self,
        session: ValidationSession,
        request: AllocationRequest,
        *,
        strict_enforcement: Optional[bool] = None,
        allow_over_allocation: Optional[bool] = None,
    ) -> List[ValidationOutcome]:
        if not isinstance(request, AllocationRequest):
            raise TypeError(f"expected AllocationRequest, got {type(request).__name__}")
        enforce = self.config.enforces_capacity(strict_enforcement, allow_over_allocation)
        resource = find_resource(request.resource, session.snapshot.resources) if request.resource else None

        outcomes: List[ValidationOutcome] = []
        outcomes.extend(self.check_fields(request, resource))
        if resource is not None:
            capacity = self.check_capacity_limits(session, request, resource, enforce=enforce)
            if capacity is not None:
                outcomes.append(capacity)
            schedule = self.check_schedule_conflicts(session, request, resource)
            if schedule is not None:
                outcomes.append(schedule)
        budget = self.check_budget(session, request, resource)
        if budget is not None:
            outcomes.append(budget)
        if resource is not None:
            workload = self.check_workload(session, request, resource)
            if workload is not None:
                outcomes.append(workload)
        return outcomes

    def check_fields(self, request: AllocationRequest, resource: Optional[Resource]) -> List[ValidationOutcome]:
        problems: List[Tuple[str, str]] = []
        if not request.resource or not request.resource.strip():
            problems.append(("resource", "Resource name is required"))
        elif resource is None:
            problems.append(("resource", f"Resource not found: {request.resource}"))

        percentage = float(request.allocation_percentage)
        if not 0 < percentage <= 1.0:
            problems.append(
                (
                    "allocationPercentage",
                    f"Invalid allocation percentage: {percentage}. Must be greater than 0 and at most 1.0",
                )
            )

        if (request.start_date is None) != (request.end_date is None):
            problems.append(("dateRange", "Both start and end dates are required for a date range"))
        elif request.start_date and request.end_date and request.start_date > request.end_date:
            problems.append(
                (
                    "dateRange",
                    f"Start date {request.start_date.isoformat()} is after end date {request.end_date.isoformat()}",
                )
            )

        return [
            ValidationOutcome(
                check_type=CheckType.FIELDS,
                is_valid=False,
                severity=Severity.ERROR,
                message=message,
                details={"field": field_name},
            )
            for field_name, message in problems
        ]

    def check_capacity_limits(
        self,
        session: ValidationSession,
        request: AllocationRequest,
        resource: Resource,
        *,
        enforce: bool,
    ) -> Optional[ValidationOutcome]:
        utilization = session.utilization(resource.name, request.allocation_id)
        requested = float(request.allocation_percentage)
        current = utilization.current_utilization
        projected = quantize(current + requested)
        max_capacity = float(resource.max_capacity)
        threshold = resource.threshold_or(self.config.default_capacity_threshold)
        contributing = tuple(utilization.contributing_ids())
        recommendations: List[str] = []
        details: Dict[str, object] = {
            "resourceName": resource.name,
            "requestedPercentage": requested,
            "currentUtilization": current,
            "projectedUtilization": projected,
            "projectedUtilizationPercent": as_percent(projected),
            "maxCapacity": max_capacity,
            "overAllocationThreshold": threshold,
            "projectedStatus": classify_utilization(projected, max_capacity).value,
            "enforced": enforce,
            "recommendations": recommendations,
        }

        if exceeds(projected, threshold):
            over_amount = quantize(projected - threshold)
            details["overAllocationAmount"] = over_amount
            recommendations.append(
                f"Reduce allocation percentage to {max(0.0, threshold - current):.2f} or less"
            )
            recommendations.append("Consider assigning another resource with available capacity")
            if contributing:
                recommendations.append("Consider rescheduling or reducing existing allocations")
            summary = (
                f"by {as_percent(over_amount):.1f}% "
                f"(projected {as_percent(projected):.1f}%, threshold {as_percent(threshold):.1f}%)"
            )
            if enforce:
                logger.info(
                    "Capacity limit breached | resource=%s | projected=%.3f | threshold=%.3f",
                    resource.name,
                    projected,
                    threshold,
                )
                return ValidationOutcome(
                    check_type=CheckType.CAPACITY_LIMITS,
                    is_valid=False,
                    severity=Severity.ERROR,
                    message=f"Allocation would exceed capacity threshold {summary}",
                    details=details,
                    conflicts=contributing,
                )
            return ValidationOutcome(
                check_type=CheckType.CAPACITY_LIMITS,
                is_valid=True,
                severity=Severity.WARNING,
                message=f"Allocation exceeds capacity threshold {summary}",
                details=details,
                conflicts=contributing,
            )

        if exceeds(projected, max_capacity):
            recommendations.append("Monitor resource workload closely for signs of overwork")
            return ValidationOutcome(
                check_type=CheckType.CAPACITY_LIMITS,
                is_valid=True,
                severity=Severity.WARNING,
                message=(
                    f"Allocation exceeds base capacity ({as_percent(max_capacity):.0f}%) "
                    f"but stays within the {as_percent(threshold):.0f}% threshold"
                ),
                details=details,
                conflicts=contributing,
            )
        return None

    def _leaves_for(self, session: ValidationSession, resource: Resource) -> List[LeavePeriod]:
        return [leave for leave in session.snapshot.leaves if names_match(leave.member_name, resource.name)]

    def check_schedule_conflicts(
        self,
        session: ValidationSession,
        request: AllocationRequest,
        resource: Resource,
    ) -> Optional[ValidationOutcome]:
        start, end = request.start_date, request.end_date
        if start is None or end is None or start > end:
            return None

        allocation_conflicts: List[Dict[str, object]] = []
        for allocation in session.utilization(resource.name, request.allocation_id).active_allocations:
            task_start, task_end = allocation.plan.task_start, allocation.plan.task_end
            if task_start is None or task_end is None:
                continue
            window = _overlap(start, end, task_start, task_end)
            if window is None:
                continue
            allocation_conflicts.append(
                {
                    "type": "allocation_overlap",
                    "allocationId": allocation.id,
                    "projectName": allocation.project_name,
                    "taskName": allocation.task_name,
                    "conflictStart": window[0].isoformat(),
                    "conflictEnd": window[1].isoformat(),
                    "allocationPercentage": allocation.allocation_percentage,
                }
            )

        leave_conflicts: List[Dict[str, object]] = []
        if self.config.validate_leave_schedules:
            for leave in self._leaves_for(session, resource):
                window = _overlap(start, end, leave.start_date, leave.end_date)
                if window is None:
                    continue
                leave_conflicts.append(
                    {
                        "leaveId": leave.id,
                        "leaveType": leave.leave_type,
                        "conflictStart": window[0].isoformat(),
                        "conflictEnd": window[1].isoformat(),
                    }
                )
        if not allocation_conflicts and not leave_conflicts:
            return None

        parts: List[str] = []
        recommendations: List[str] = []
        if allocation_conflicts:
            parts.append(f"{len(allocation_conflicts)} conflicting allocation(s)")
            recommendations.append("Review existing allocations for potential rescheduling")
        if leave_conflicts:
            parts.append(f"{len(leave_conflicts)} leave conflict(s)")
            recommendations.append("Consider adjusting allocation dates around the scheduled leave")

        holidays = sorted(
            holiday.date.isoformat() for holiday in session.snapshot.holidays if start <= holiday.date <= end
        )
        return ValidationOutcome(
            check_type=CheckType.SCHEDULE_CONFLICT,
            is_valid=True,
            severity=Severity.WARNING,
            message=f"Resource has {' and '.join(parts)} during the requested period",
            details={
                "resourceName": resource.name,
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
                "allocationConflicts": allocation_conflicts,
                "leaveConflicts": leave_conflicts,
                "holidaysInRange": holidays,
                "recommendations": recommendations,
            },
            conflicts=tuple(str(item["allocationId"]) for item in allocation_conflicts)
            + tuple(str(item["leaveId"]) for item in leave_conflicts),
        )

    def check_budget(
        self,
        session: ValidationSession,
        request: AllocationRequest,
        resource: Optional[Resource],
    ) -> Optional[ValidationOutcome]:
        if not self.config.validate_budget:
            return None
        cost_center_id = request.cost_center_id or (resource.cost_center_id if resource else None)
        if not cost_center_id:
            return None
        period = self.config.budget_period
        cost = request.plan.cost_for(period)
        result = session.budget_validator(request.allocation_id).validate_budget_capacity(
            cost_center_id, cost, period
        )
        if result.result is BudgetResult.APPROVED:
            return None
        details = dict(result.details)
        details["result"] = result.result.value
        if result.result is BudgetResult.REJECTED:
            return ValidationOutcome(
                check_type=CheckType.BUDGET,
                is_valid=False,
                severity=Severity.ERROR,
                message=result.message,
                details=details,
            )
        return ValidationOutcome(
            check_type=CheckType.BUDGET,
            is_valid=True,
            severity=Severity.WARNING,
            message=result.message,
            details=details,
        )

    def check_workload(
        self,
        session: ValidationSession,
        request: AllocationRequest,
        resource: Resource,
    ) -> Optional[ValidationOutcome]:
        utilization = session.utilization(resource.name, request.allocation_id)
        active = utilization.active_allocations
        task_count = len(active)
        limit = self.config.max_concurrent_tasks
        score = sustainability_score(
            utilization.current_utilization,
            request.allocation_percentage,
            task_count,
            [allocation.complexity for allocation in active],
            resource.tier_level,
        )
        details: Dict[str, object] = {
            "resourceName": resource.name,
            "currentTaskCount": task_count,
            "maxConcurrentTasks": limit,
            "totalUtilization": utilization.current_utilization,
            "workloadDistribution": [
                {
                    "allocationId": allocation.id,
                    "projectName": allocation.project_name,
                    "taskName": allocation.task_name,
                    "complexity": allocation.complexity,
                    "allocationPercentage": allocation.allocation_percentage,
                    "startDate": allocation.plan.task_start.isoformat() if allocation.plan.task_start else None,
                    "endDate": allocation.plan.task_end.isoformat() if allocation.plan.task_end else None,
                }
                for allocation in active
            ],
            "sustainabilityScore": score,
        }
        conflicts = tuple(allocation.id for allocation in active)

        if score < UNSUSTAINABLE_SCORE:
            details["recommendations"] = [
                "Immediate action required to reduce workload or provide additional resources"
            ]
            return ValidationOutcome(
                check_type=CheckType.WORKLOAD,
                is_valid=False,
                severity=Severity.ERROR,
                message=f"Unsustainable workload detected: {score}%",
                details=details,
                conflicts=conflicts,
            )
        if task_count >= limit:
            details["recommendations"] = [
                "Consider waiting for current tasks to complete or reassigning to another resource"
            ]
            return ValidationOutcome(
                check_type=CheckType.WORKLOAD,
                is_valid=True,
                severity=Severity.WARNING,
                message=f"Resource at maximum concurrent task limit ({limit})",
                details=details,
                conflicts=conflicts,
            )
        if score < LOW_SUSTAINABILITY_SCORE:
            details["recommendations"] = ["Workload may not be sustainable long-term - consider load balancing"]
            return ValidationOutcome(
                check_type=CheckType.WORKLOAD,
                is_valid=True,
                severity=Severity.WARNING,
                message=f"Low workload sustainability score: {score}%",
                details=details,
                conflicts=conflicts,
            )
        return None


def validate_allocation(
    request: AllocationRequest,
    snapshot: StateSnapshot,
    config: Optional[ValidationConfig] = None,
    **options: Optional[bool],
) -> List[ValidationOutcome]:
    return AllocationValidationPipeline(config).validate(request, snapshot, **options)
