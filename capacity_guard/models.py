from __future__ import annotations

import hashlib
import json
import math
import numbers
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple


DEFAULT_CAPACITY_THRESHOLD = 1.2
DEFAULT_MAX_CONCURRENT_TASKS = 5


class InvalidInputError(ValueError):
    """Structurally malformed input handed to the validation core."""


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class CheckType(str, Enum):
    FIELDS = "fields"
    CAPACITY_LIMITS = "capacity_limits"
    SCHEDULE_CONFLICT = "schedule_conflict"
    BUDGET = "budget"
    WORKLOAD = "workload"


class EnforcementMode(str, Enum):
    STRICT = "strict"
    WARNING = "warning"
    NONE = "none"


class BudgetResult(str, Enum):
    APPROVED = "approved"
    WARNING = "warning"
    REJECTED = "rejected"


class Period(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: object) -> "Period":
        if isinstance(value, Period):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidInputError(f"period must be 'monthly' or 'yearly', got {value!r}") from exc


class AllocationStatus(str, Enum):
    NOT_STARTED = "not-started"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    IDLE = "idle"

    @classmethod
    def parse(cls, value: object) -> "AllocationStatus":
        if isinstance(value, AllocationStatus):
            return value
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls.NOT_STARTED
        normalized = str(value).strip().lower().replace("_", "-").replace(" ", "-")
        try:
            return cls(normalized)
        except ValueError as exc:
            raise InvalidInputError(f"unknown allocation status {value!r}") from exc

    @property
    def is_active(self) -> bool:
        return self not in (AllocationStatus.COMPLETED, AllocationStatus.CANCELLED, AllocationStatus.IDLE)


INACTIVE_TASK_NAMES = frozenset({"completed", "idle"})


def require_number(value: object, field_name: str) -> float:
    """Coerce ``value`` to float, rejecting bools, NaN and non-numerics."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidInputError(f"{field_name} must be a number, got {value!r}")
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        raise InvalidInputError(f"{field_name} must be finite, got {value!r}")
    return number


def require_name(value: object, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{field_name} is required")
    return value.strip()


def names_match(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left == right or left.strip().lower() == right.strip().lower()


@dataclass(frozen=True)
class Resource:
    """Roster entry that can carry allocations."""

    id: str
    name: str
    tier_level: int = 1
    max_capacity: float = 1.0
    over_allocation_threshold: Optional[float] = None
    cost_center_id: Optional[str] = None
    active: bool = True

    def __post_init__(self) -> None:
        require_name(self.name, "resource name")
        capacity = require_number(self.max_capacity, "max_capacity")
        if capacity < 0:
            raise InvalidInputError(f"max_capacity must be >= 0 for {self.name}")
        if self.over_allocation_threshold is not None:
            threshold = require_number(self.over_allocation_threshold, "over_allocation_threshold")
            if threshold < capacity:
                raise InvalidInputError(
                    f"over_allocation_threshold must be >= max_capacity for {self.name}"
                )

    def threshold_or(self, default: float) -> float:
        if self.over_allocation_threshold is None:
            return default
        return float(self.over_allocation_threshold)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "tierLevel": self.tier_level,
            "maxCapacity": self.max_capacity,
            "overAllocationThreshold": self.over_allocation_threshold,
            "costCenterId": self.cost_center_id,
            "isActive": self.active,
        }


@dataclass(frozen=True)
class CostPlan:
    cost_monthly: float = 0.0
    cost_project: float = 0.0
    task_start: Optional[date] = None
    task_end: Optional[date] = None

    def cost_for(self, period: Period) -> float:
        return self.cost_monthly if period is Period.MONTHLY else self.cost_project


@dataclass(frozen=True)
class Allocation:
    """Commitment of part of a resource's time to a task."""

    id: str
    resource: str
    allocation_percentage: float
    cost_center_id: Optional[str] = None
    cost_center_snapshot_id: Optional[str] = None
    plan: CostPlan = field(default_factory=CostPlan)
    status: AllocationStatus = AllocationStatus.NOT_STARTED
    task_name: str = ""
    project_name: str = ""
    complexity: str = "medium"

    def is_active(self) -> bool:
        if not self.status.is_active:
            return False
        return self.task_name.strip().lower() not in INACTIVE_TASK_NAMES

    def belongs_to(self, cost_center_id: str) -> bool:
        return self.cost_center_id == cost_center_id or self.cost_center_snapshot_id == cost_center_id


@dataclass(frozen=True)
class CostCenter:
    id: str
    code: str
    name: str
    monthly_budget: float = 0.0
    yearly_budget: float = 0.0
    actual_monthly_cost: float = 0.0
    actual_yearly_cost: float = 0.0
    budget_enforcement: Optional[str] = None
    over_budget_threshold: float = 0.0
    active: bool = True

    def __post_init__(self) -> None:
        for field_name in ("monthly_budget", "yearly_budget"):
            if require_number(getattr(self, field_name), field_name) < 0:
                raise InvalidInputError(f"{field_name} must be >= 0 for cost center {self.id}")

    def budget_for(self, period: Period) -> float:
        return self.monthly_budget if period is Period.MONTHLY else self.yearly_budget

    def actual_for(self, period: Period) -> float:
        return self.actual_monthly_cost if period is Period.MONTHLY else self.actual_yearly_cost


@dataclass(frozen=True)
class LeavePeriod:
    id: str
    member_name: str
    start_date: date
    end_date: date
    leave_type: str = "leave"


@dataclass(frozen=True)
class Holiday:
    date: date
    name: str = ""


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable view of the host application's state at validation time."""

    resources: Tuple[Resource, ...] = ()
    allocations: Tuple[Allocation, ...] = ()
    cost_centers: Tuple[CostCenter, ...] = ()
    leaves: Tuple[LeavePeriod, ...] = ()
    holidays: Tuple[Holiday, ...] = ()

    @classmethod
    def build(
        cls,
        resources: Iterable[Resource] = (),
        allocations: Iterable[Allocation] = (),
        cost_centers: Iterable[CostCenter] = (),
        leaves: Iterable[LeavePeriod] = (),
        holidays: Iterable[Holiday] = (),
    ) -> "StateSnapshot":
        return cls(
            resources=tuple(resources),
            allocations=tuple(allocations),
            cost_centers=tuple(cost_centers),
            leaves=tuple(leaves),
            holidays=tuple(holidays),
        )

    def fingerprint(self) -> str:
        return content_hash(self.resources, self.allocations, self.cost_centers, self.leaves, self.holidays)


def content_hash(*collections: Iterable[object]) -> str:
    """Stable digest over dataclass records, used as a cache key."""
    digest = hashlib.sha256()
    for collection in collections:
        rows = [asdict(item) for item in collection]
        digest.update(json.dumps(rows, sort_keys=True, default=str).encode("utf-8"))
        digest.update(b"|")
    return digest.hexdigest()


@dataclass(frozen=True)
class AllocationRequest:
    """Candidate allocation submitted for validation."""

    resource: str
    allocation_percentage: float
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    cost_center_id: Optional[str] = None
    plan: CostPlan = field(default_factory=CostPlan)
    allocation_id: Optional[str] = None
    task_name: str = ""
    project_name: str = ""

    def __post_init__(self) -> None:
        if self.resource is not None and not isinstance(self.resource, str):
            raise InvalidInputError(f"resource must be a name, got {self.resource!r}")
        require_number(self.allocation_percentage, "allocation_percentage")
        require_number(self.plan.cost_monthly, "plan.cost_monthly")
        require_number(self.plan.cost_project, "plan.cost_project")
        for field_name in ("start_date", "end_date"):
            value = getattr(self, field_name)
            if value is not None and not isinstance(value, date):
                raise InvalidInputError(f"{field_name} must be a date, got {value!r}")


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of one check inside the validation pipeline."""

    check_type: CheckType
    is_valid: bool
    severity: Severity
    message: str
    details: Dict[str, object] = field(default_factory=dict)
    conflicts: Tuple[str, ...] = ()

    @property
    def is_blocking(self) -> bool:
        return self.severity is Severity.ERROR and not self.is_valid

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.check_type.value,
            "isValid": self.is_valid,
            "severity": self.severity.value,
            "message": self.message,
            "details": dict(self.details),
            "conflicts": list(self.conflicts),
        }


@dataclass(frozen=True)
class BudgetValidationResult:
    result: BudgetResult
    message: str
    details: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {"result": self.result.value, "message": self.message, "details": dict(self.details)}


@dataclass(frozen=True)
class ValidationConfig:
    default_capacity_threshold: float = DEFAULT_CAPACITY_THRESHOLD
    strict_enforcement: bool = True
    allow_over_allocation: bool = False
    validate_leave_schedules: bool = True
    validate_budget: bool = True
    budget_period: Period = Period.MONTHLY
    max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS
    currency: str = "IDR"
    logging_level: str = "INFO"

    def enforces_capacity(
        self,
        strict_enforcement: Optional[bool] = None,
        allow_over_allocation: Optional[bool] = None,
    ) -> bool:
        strict = self.strict_enforcement if strict_enforcement is None else strict_enforcement
        allow = self.allow_over_allocation if allow_over_allocation is None else allow_over_allocation
        return bool(strict) and not allow


def dedupe(items: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
