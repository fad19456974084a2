from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .cache import AggregateCache
from .models import (
    Allocation,
    BudgetResult,
    BudgetValidationResult,
    CostCenter,
    EnforcementMode,
    Period,
    content_hash,
    require_name,
    require_number,
)

logger = logging.getLogger(__name__)

BUDGET_STATUS_BANDS = (
    (100.0, "Over Budget"),
    (90.0, "Critical"),
    (75.0, "High"),
    (40.0, "Moderate"),
)


def format_currency(amount: float, currency: str = "IDR") -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}{currency} {abs(amount):,.0f}"


def budget_status_text(utilization: float) -> str:
    for bound, label in BUDGET_STATUS_BANDS:
        if utilization >= bound:
            return label
    return "Low"


def resolve_enforcement_mode(value: Optional[str]) -> EnforcementMode:
    """Unset or unrecognised modes fall back to warning behaviour."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return EnforcementMode.WARNING
    if isinstance(value, EnforcementMode):
        return value
    try:
        return EnforcementMode(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown budget enforcement mode %r, using warning mode", value)
        return EnforcementMode.WARNING


@dataclass(frozen=True)
class BudgetRequest:
    cost_center_id: str
    allocation_cost: float
    period: Period = Period.MONTHLY


class BudgetValidator:
    """Budget capacity checks over one snapshot of cost centers and allocations."""

    def __init__(
        self,
        cost_centers: Sequence[CostCenter],
        allocations: Sequence[Allocation],
        *,
        currency: str = "IDR",
        exclude_allocation_id: Optional[str] = None,
        cache: Optional[AggregateCache] = None,
    ) -> None:
        self._cost_centers: Dict[str, CostCenter] = {cc.id: cc for cc in cost_centers}
        self._allocations = tuple(allocations)
        self._currency = currency
        self._exclude_allocation_id = exclude_allocation_id
        self._cache = cache
        self._fingerprint: Optional[str] = None

    def _allocations_fingerprint(self) -> str:
        if self._fingerprint is None:
            self._fingerprint = content_hash(self._allocations)
        return self._fingerprint

    def get_cost_center(self, cost_center_id: str) -> Optional[CostCenter]:
        return self._cost_centers.get(cost_center_id)

    def enforcement_mode(self, cost_center_id: str) -> EnforcementMode:
        cost_center = self.get_cost_center(cost_center_id)
        if cost_center is None:
            return EnforcementMode.NONE
        return resolve_enforcement_mode(cost_center.budget_enforcement)

    def current_spend(self, cost_center_id: str, period: Period = Period.MONTHLY) -> float:
        cost_center = self.get_cost_center(cost_center_id)
        if cost_center is None:
            return 0.0
        return float(cost_center.actual_for(Period.parse(period)))

    def pending_spend(self, cost_center_id: str, period: Period = Period.MONTHLY) -> float:
        period = Period.parse(period)
        if self._cache is None:
            return self._sum_pending(cost_center_id, period)
        return self._cache.get_or_compute(
            "pending_spend",
            self._allocations_fingerprint(),
            (cost_center_id, period.value, self._exclude_allocation_id),
            lambda: self._sum_pending(cost_center_id, period),
        )

    def _sum_pending(self, cost_center_id: str, period: Period) -> float:
        total = 0.0
        for allocation in self._allocations:
            if allocation.id == self._exclude_allocation_id and self._exclude_allocation_id is not None:
                continue
            if not allocation.is_active() or not allocation.belongs_to(cost_center_id):
                continue
            total += require_number(allocation.plan.cost_for(period), f"allocation {allocation.id} cost")
        return total

    def projected_spend(
        self, cost_center_id: str, additional_cost: float = 0.0, period: Period = Period.MONTHLY
    ) -> float:
        return (
            self.current_spend(cost_center_id, period)
            + self.pending_spend(cost_center_id, period)
            + require_number(additional_cost, "additional_cost")
        )

    def available_budget(self, cost_center_id: str, period: Period = Period.MONTHLY) -> float:
        cost_center = self.get_cost_center(cost_center_id)
        if cost_center is None:
            return 0.0
        total_budget = float(cost_center.budget_for(Period.parse(period)))
        return max(0.0, total_budget - self.projected_spend(cost_center_id, 0.0, period))

    def budget_utilization(self, cost_center_id: str, period: Period = Period.MONTHLY) -> float:
        cost_center = self.get_cost_center(cost_center_id)
        if cost_center is None:
            return 0.0
        total_budget = float(cost_center.budget_for(Period.parse(period)))
        if total_budget == 0:
            return 0.0
        return self.projected_spend(cost_center_id, 0.0, period) / total_budget * 100

    def validate_budget_capacity(
        self,
        cost_center_id: str,
        allocation_cost: float,
        period: Period = Period.MONTHLY,
    ) -> BudgetValidationResult:
        """Decide whether ``allocation_cost`` fits the cost center's budget.

        Strict mode rejects anything that pushes projected spend above the
        budget. Warning mode only ever warns, with a separate message once the
        over-budget tolerance is also breached. ``none`` always approves. A
        negative cost is a refund and lowers projected spend.
        """
        cost_center_id = require_name(cost_center_id, "cost center id")
        cost = require_number(allocation_cost, "allocation_cost")
        period = Period.parse(period)

        cost_center = self.get_cost_center(cost_center_id)
        if cost_center is None:
            logger.warning("Budget validation for unknown cost center %s", cost_center_id)
            return BudgetValidationResult(
                result=BudgetResult.REJECTED,
                message="Cost center not found",
                details={"costCenterId": cost_center_id, "allocationCost": cost, "period": period.value},
            )

        mode = resolve_enforcement_mode(cost_center.budget_enforcement)
        total_budget = float(cost_center.budget_for(period))
        current_spend = self.current_spend(cost_center_id, period)
        pending = self.pending_spend(cost_center_id, period)
        current_projected = current_spend + pending
        new_projected = current_projected + cost
        available = max(0.0, total_budget - current_projected)
        utilization_after = round(new_projected / total_budget * 100, 2) if total_budget > 0 else 0.0
        over_budget_threshold = float(cost_center.over_budget_threshold or 0.0)
        max_allowed = total_budget * (1 + over_budget_threshold / 100)

        details: Dict[str, object] = {
            "costCenterId": cost_center_id,
            "costCenterName": cost_center.name,
            "allocationCost": cost,
            "period": period.value,
            "totalBudget": total_budget,
            "currentSpend": current_spend,
            "pendingSpend": pending,
            "currentProjectedSpend": current_projected,
            "newProjectedSpend": new_projected,
            "availableBudget": available,
            "utilizationAfterAllocation": utilization_after,
            "enforcementMode": mode.value,
            "overBudgetThreshold": over_budget_threshold,
            "maxAllowedSpend": max_allowed,
        }

        exceeds_budget = new_projected > total_budget
        exceeds_threshold = new_projected > max_allowed
        overrun = format_currency(new_projected - total_budget, self._currency)

        if mode is EnforcementMode.STRICT:
            rejection: Optional[str] = None
            if exceeds_budget:
                rejection = f"Allocation rejected: Would exceed {period.value} budget by {overrun}"
            elif total_budget <= 0 and cost > 0:
                rejection = f"Allocation rejected: No {period.value} budget available for {cost_center.name}"
            if rejection is not None:
                logger.info(
                    "Budget rejected | cost_center=%s | period=%s | projected=%.2f | budget=%.2f",
                    cost_center_id,
                    period.value,
                    new_projected,
                    total_budget,
                )
                return BudgetValidationResult(
                    result=BudgetResult.REJECTED,
                    message=rejection,
                    details=details,
                )
        elif mode is EnforcementMode.WARNING:
            if exceeds_threshold:
                return BudgetValidationResult(
                    result=BudgetResult.WARNING,
                    message=(
                        f"Budget warning: Allocation would exceed {period.value} budget threshold "
                        f"({utilization_after:.1f}% utilization, {over_budget_threshold:g}% tolerance)"
                    ),
                    details=details,
                )
            if exceeds_budget:
                return BudgetValidationResult(
                    result=BudgetResult.WARNING,
                    message=f"Budget warning: Allocation would exceed {period.value} budget by {overrun}",
                    details=details,
                )

        remaining = format_currency(max(0.0, total_budget - new_projected), self._currency)
        return BudgetValidationResult(
            result=BudgetResult.APPROVED,
            message=f"Budget validation passed: {remaining} remaining in {period.value} budget",
            details=details,
        )

    def has_sufficient_budget(
        self, cost_center_id: str, allocation_cost: float, period: Period = Period.MONTHLY
    ) -> bool:
        validation = self.validate_budget_capacity(cost_center_id, allocation_cost, period)
        return validation.result is BudgetResult.APPROVED

    def validate_many(self, requests: Iterable[BudgetRequest]) -> List[Dict[str, object]]:
        results: List[Dict[str, object]] = []
        for request in requests:
            validation = self.validate_budget_capacity(
                request.cost_center_id, request.allocation_cost, request.period
            )
            results.append(
                {
                    "costCenterId": request.cost_center_id,
                    "allocationCost": request.allocation_cost,
                    "period": Period.parse(request.period).value,
                    "validation": validation.to_dict(),
                }
            )
        return results

    def budget_status_for_period(self, cost_center_id: str, period: Period) -> Optional[Dict[str, object]]:
        cost_center = self.get_cost_center(cost_center_id)
        if cost_center is None:
            return None
        period = Period.parse(period)
        total_budget = float(cost_center.budget_for(period))
        projected = self.projected_spend(cost_center_id, 0.0, period)
        utilization = projected / total_budget * 100 if total_budget > 0 else 0.0
        return {
            "period": period.value,
            "totalBudget": total_budget,
            "currentSpend": self.current_spend(cost_center_id, period),
            "projectedSpend": projected,
            "availableBudget": max(0.0, total_budget - projected),
            "utilization": round(utilization, 2),
            "status": budget_status_text(utilization),
            "isOverBudget": projected > total_budget,
        }

    def budget_status(self, cost_center_id: str) -> Dict[str, object]:
        cost_center = self.get_cost_center(cost_center_id)
        if cost_center is None:
            return {"found": False, "costCenterId": cost_center_id, "message": "Cost center not found"}
        return {
            "found": True,
            "costCenterId": cost_center.id,
            "costCenterName": cost_center.name,
            "costCenterCode": cost_center.code,
            "enforcementMode": self.enforcement_mode(cost_center.id).value,
            "overBudgetThreshold": float(cost_center.over_budget_threshold or 0.0),
            "monthly": self.budget_status_for_period(cost_center.id, Period.MONTHLY),
            "yearly": self.budget_status_for_period(cost_center.id, Period.YEARLY),
        }

    def all_budget_summaries(self) -> List[Dict[str, object]]:
        return [self.budget_status(cost_center_id) for cost_center_id in self._cost_centers]

    def over_budget_cost_centers(self, period: Period = Period.MONTHLY) -> List[Dict[str, object]]:
        period = Period.parse(period)
        flagged: List[Dict[str, object]] = []
        for cost_center in self._cost_centers.values():
            utilization = self.budget_utilization(cost_center.id, period)
            if utilization <= 100:
                continue
            flagged.append(
                {
                    "costCenterId": cost_center.id,
                    "costCenterName": cost_center.name,
                    "utilization": round(utilization, 2),
                    "overageAmount": self.projected_spend(cost_center.id, 0.0, period)
                    - float(cost_center.budget_for(period)),
                }
            )
        return flagged


def validate_allocation_budget(
    cost_center_id: str,
    allocation_cost: float,
    cost_centers: Sequence[CostCenter],
    allocations: Sequence[Allocation],
    period: Period = Period.MONTHLY,
) -> BudgetValidationResult:
    validator = BudgetValidator(cost_centers, allocations)
    return validator.validate_budget_capacity(cost_center_id, allocation_cost, period)
