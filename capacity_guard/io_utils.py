from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd
from dateutil import parser as dateparser

from .models import (
    DEFAULT_CAPACITY_THRESHOLD,
    DEFAULT_MAX_CONCURRENT_TASKS,
    Allocation,
    AllocationRequest,
    AllocationStatus,
    CostCenter,
    CostPlan,
    Holiday,
    InvalidInputError,
    LeavePeriod,
    Period,
    Resource,
    StateSnapshot,
    ValidationConfig,
    require_number,
)

RESOURCES_FILE = "resources.json"
ALLOCATIONS_CSV = "allocations.csv"
ALLOCATIONS_JSON = "allocations.json"
COST_CENTERS_FILE = "cost_centers.json"
LEAVES_FILE = "leaves.json"
HOLIDAYS_FILE = "holidays.json"

_ALLOCATION_REQUIRED_COLUMNS = {"id", "resource", "allocation_percentage"}


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(sorted(missing))}")


def _is_missing(value: object) -> bool:
    if value is None or value is pd.NA:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _parse_bool(value: object, field_name: str, default: bool = True) -> bool:
    if _is_missing(value):
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise InvalidInputError(f"cannot interpret boolean value '{value}' in '{field_name}'")


def parse_optional_date(value: object, field_name: str) -> Optional[date]:
    if _is_missing(value):
        return None
    if isinstance(value, date):
        return value
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise InvalidInputError(f"invalid date in '{field_name}': {value}") from exc


def _parse_required_date(value: object, field_name: str) -> date:
    parsed = parse_optional_date(value, field_name)
    if parsed is None:
        raise InvalidInputError(f"'{field_name}' is required")
    return parsed


def _optional_str(value: object) -> Optional[str]:
    if _is_missing(value):
        return None
    return str(value).strip()


def _number(value: object, field_name: str, default: float = 0.0) -> float:
    if _is_missing(value):
        return default
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError as exc:
            raise InvalidInputError(f"{field_name} must be a number, got {value!r}") from exc
    return require_number(value, field_name)


def _pick(entry: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        if key in entry:
            return entry[key]
    return None


def resource_from_dict(entry: Mapping[str, object]) -> Resource:
    if not isinstance(entry, Mapping):
        raise InvalidInputError("resource entries must be objects")
    name = entry.get("name")
    threshold = _pick(entry, "overAllocationThreshold", "over_allocation_threshold")
    return Resource(
        id=str(entry.get("id") or name),
        name=name,  # type: ignore[arg-type]
        tier_level=int(_number(_pick(entry, "tierLevel", "tier_level"), "tierLevel", 1)),
        max_capacity=_number(_pick(entry, "maxCapacity", "max_capacity"), "maxCapacity", 1.0),
        over_allocation_threshold=None if _is_missing(threshold) else _number(threshold, "overAllocationThreshold"),
        cost_center_id=_optional_str(_pick(entry, "costCenterId", "cost_center_id")),
        active=_parse_bool(_pick(entry, "isActive", "active"), "isActive"),
    )


def cost_plan_from_dict(entry: Optional[Mapping[str, object]]) -> CostPlan:
    if entry is None:
        return CostPlan()
    if not isinstance(entry, Mapping):
        raise InvalidInputError("plan must be an object")
    return CostPlan(
        cost_monthly=_number(_pick(entry, "costMonthly", "cost_monthly"), "plan.costMonthly"),
        cost_project=_number(_pick(entry, "costProject", "cost_project"), "plan.costProject"),
        task_start=parse_optional_date(_pick(entry, "taskStart", "task_start"), "plan.taskStart"),
        task_end=parse_optional_date(_pick(entry, "taskEnd", "task_end"), "plan.taskEnd"),
    )


def allocation_from_dict(entry: Mapping[str, object]) -> Allocation:
    if not isinstance(entry, Mapping):
        raise InvalidInputError("allocation entries must be objects")
    allocation_id = _optional_str(entry.get("id"))
    if allocation_id is None:
        raise InvalidInputError("allocation id is required")
    resource = _optional_str(entry.get("resource"))
    if resource is None:
        raise InvalidInputError(f"allocation {allocation_id} has no resource")
    percentage = _pick(entry, "allocationPercentage", "allocation_percentage")
    if _is_missing(percentage):
        # legacy records carry the share as "workload"; full time when absent
        percentage = entry.get("workload", 1.0)
    snapshot = entry.get("costCenterSnapshot")
    snapshot_id = snapshot.get("id") if isinstance(snapshot, Mapping) else None
    return Allocation(
        id=allocation_id,
        resource=resource,
        allocation_percentage=_number(percentage, f"allocation {allocation_id} percentage"),
        cost_center_id=_optional_str(_pick(entry, "costCenterId", "cost_center_id")),
        cost_center_snapshot_id=_optional_str(snapshot_id or entry.get("cost_center_snapshot_id")),
        plan=cost_plan_from_dict(entry.get("plan")),
        status=AllocationStatus.parse(_optional_str(entry.get("status"))),
        task_name=_optional_str(_pick(entry, "taskName", "task_name")) or "",
        project_name=_optional_str(_pick(entry, "projectName", "project_name")) or "",
        complexity=(_optional_str(entry.get("complexity")) or "medium").lower(),
    )


def cost_center_from_dict(entry: Mapping[str, object]) -> CostCenter:
    if not isinstance(entry, Mapping):
        raise InvalidInputError("cost center entries must be objects")
    cost_center_id = _optional_str(entry.get("id"))
    if cost_center_id is None:
        raise InvalidInputError("cost center id is required")
    status = entry.get("status")
    active = _parse_bool(entry.get("isActive"), "isActive")
    if isinstance(status, str) and status.strip():
        active = status.strip().lower() == "active"
    return CostCenter(
        id=cost_center_id,
        code=str(entry.get("code") or ""),
        name=str(entry.get("name") or cost_center_id),
        monthly_budget=_number(_pick(entry, "monthlyBudget", "monthly_budget"), "monthlyBudget"),
        yearly_budget=_number(_pick(entry, "yearlyBudget", "yearly_budget"), "yearlyBudget"),
        actual_monthly_cost=_number(_pick(entry, "actualMonthlyCost", "actual_monthly_cost"), "actualMonthlyCost"),
        actual_yearly_cost=_number(_pick(entry, "actualYearlyCost", "actual_yearly_cost"), "actualYearlyCost"),
        budget_enforcement=_optional_str(_pick(entry, "budgetEnforcement", "budget_enforcement")),
        over_budget_threshold=_number(_pick(entry, "overBudgetThreshold", "over_budget_threshold"), "overBudgetThreshold"),
        active=active,
    )


def leave_from_dict(entry: Mapping[str, object]) -> LeavePeriod:
    if not isinstance(entry, Mapping):
        raise InvalidInputError("leave entries must be objects")
    member = _optional_str(_pick(entry, "memberName", "member_name"))
    if member is None:
        raise InvalidInputError("leave memberName is required")
    start = _parse_required_date(_pick(entry, "startDate", "start_date"), "startDate")
    end = _parse_required_date(_pick(entry, "endDate", "end_date"), "endDate")
    if end < start:
        raise InvalidInputError(f"leave for {member} ends before it starts")
    return LeavePeriod(
        id=str(entry.get("id") or f"{member}:{start.isoformat()}"),
        member_name=member,
        start_date=start,
        end_date=end,
        leave_type=str(entry.get("type") or entry.get("leave_type") or "leave"),
    )


def holiday_from_dict(entry: Mapping[str, object]) -> Holiday:
    if not isinstance(entry, Mapping):
        raise InvalidInputError("holiday entries must be objects")
    return Holiday(date=_parse_required_date(entry.get("date"), "date"), name=str(entry.get("name") or ""))


def request_from_dict(entry: Mapping[str, object]) -> AllocationRequest:
    if not isinstance(entry, Mapping):
        raise InvalidInputError("allocation request must be an object")
    percentage = _pick(entry, "allocationPercentage", "allocation_percentage")
    if _is_missing(percentage):
        raise InvalidInputError("allocationPercentage is required")
    if isinstance(percentage, str):
        percentage = _number(percentage, "allocationPercentage")
    return AllocationRequest(
        resource=str(entry.get("resource") or ""),
        allocation_percentage=percentage,  # type: ignore[arg-type]
        start_date=parse_optional_date(_pick(entry, "startDate", "start_date"), "startDate"),
        end_date=parse_optional_date(_pick(entry, "endDate", "end_date"), "endDate"),
        cost_center_id=_optional_str(_pick(entry, "costCenterId", "cost_center_id")),
        plan=cost_plan_from_dict(entry.get("plan")),
        allocation_id=_optional_str(_pick(entry, "allocationId", "allocation_id", "id")),
        task_name=_optional_str(_pick(entry, "taskName", "task_name")) or "",
        project_name=_optional_str(_pick(entry, "projectName", "project_name")) or "",
    )


def _as_list(data: object, source: str) -> List[Mapping[str, object]]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError(f"{source} must be a JSON array")
    return data


def snapshot_from_dict(data: Mapping[str, object]) -> StateSnapshot:
    if not isinstance(data, Mapping):
        raise InvalidInputError("state must be an object")
    return StateSnapshot.build(
        resources=[resource_from_dict(item) for item in _as_list(data.get("resources"), "resources")],
        allocations=[allocation_from_dict(item) for item in _as_list(data.get("allocations"), "allocations")],
        cost_centers=[cost_center_from_dict(item) for item in _as_list(data.get("costCenters"), "costCenters")],
        leaves=[leave_from_dict(item) for item in _as_list(data.get("leaves"), "leaves")],
        holidays=[holiday_from_dict(item) for item in _as_list(data.get("holidays"), "holidays")],
    )


def _read_json(path: str | Path) -> object:
    try:
        return json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON in {path}: {exc}") from exc


def load_resources(path: str | Path) -> List[Resource]:
    entries = _as_list(_read_json(path), Path(path).name)
    if not entries:
        raise ValueError("resources file is empty")
    resources = [resource_from_dict(entry) for entry in entries]
    names = [resource.name.lower() for resource in resources]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValueError(f"duplicate resource names: {', '.join(duplicates)}")
    return resources


def _allocations_from_df(df: pd.DataFrame) -> List[Allocation]:
    allocations: List[Allocation] = []
    for row in df.itertuples(index=False):
        allocations.append(
            allocation_from_dict(
                {
                    "id": row.id,
                    "resource": row.resource,
                    "allocation_percentage": row.allocation_percentage,
                    "cost_center_id": getattr(row, "cost_center_id", None),
                    "cost_center_snapshot_id": getattr(row, "cost_center_snapshot_id", None),
                    "plan": {
                        "cost_monthly": getattr(row, "cost_monthly", None),
                        "cost_project": getattr(row, "cost_project", None),
                        "task_start": getattr(row, "task_start", None),
                        "task_end": getattr(row, "task_end", None),
                    },
                    "status": getattr(row, "status", None),
                    "task_name": getattr(row, "task_name", None),
                    "project_name": getattr(row, "project_name", None),
                    "complexity": getattr(row, "complexity", None),
                }
            )
        )
    return allocations


def load_allocations(path: str | Path) -> List[Allocation]:
    path = Path(path)
    if path.suffix.lower() == ".json":
        return [allocation_from_dict(entry) for entry in _as_list(_read_json(path), path.name)]
    df = pd.read_csv(path, dtype=str)
    if df.empty:
        return []
    _require_columns(df, _ALLOCATION_REQUIRED_COLUMNS, path.name)
    for col in ["allocation_percentage", "cost_monthly", "cost_project"]:
        if col not in df.columns:
            continue
        try:
            df[col] = pd.to_numeric(df[col])
        except ValueError as exc:
            raise ValueError(f"invalid numeric value in column '{col}'") from exc
    return _allocations_from_df(df)


def load_cost_centers(path: str | Path) -> List[CostCenter]:
    return [cost_center_from_dict(entry) for entry in _as_list(_read_json(path), Path(path).name)]


def load_leaves(path: str | Path) -> List[LeavePeriod]:
    return [leave_from_dict(entry) for entry in _as_list(_read_json(path), Path(path).name)]


def load_holidays(path: str | Path) -> List[Holiday]:
    return [holiday_from_dict(entry) for entry in _as_list(_read_json(path), Path(path).name)]


def load_snapshot(state_dir: str | Path) -> StateSnapshot:
    """Read a state directory into one immutable snapshot.

    ``resources.json`` is required. Allocations come from ``allocations.csv``
    or ``allocations.json``; cost centers, leaves and holidays are optional.
    """
    root = Path(state_dir)
    if not root.is_dir():
        raise ValueError(f"state directory not found: {root}")
    resources_path = root / RESOURCES_FILE
    if not resources_path.is_file():
        raise ValueError(f"{RESOURCES_FILE} not found in {root}")

    allocations: List[Allocation] = []
    for name in (ALLOCATIONS_CSV, ALLOCATIONS_JSON):
        candidate = root / name
        if candidate.is_file():
            allocations = load_allocations(candidate)
            break

    def _optional(name: str, loader):
        candidate = root / name
        return loader(candidate) if candidate.is_file() else []

    return StateSnapshot.build(
        resources=load_resources(resources_path),
        allocations=allocations,
        cost_centers=_optional(COST_CENTERS_FILE, load_cost_centers),
        leaves=_optional(LEAVES_FILE, load_leaves),
        holidays=_optional(HOLIDAYS_FILE, load_holidays),
    )


def load_request(path: str | Path) -> AllocationRequest:
    return request_from_dict(_read_json(path))  # type: ignore[arg-type]


def config_from_dict(data: Mapping[str, object]) -> ValidationConfig:
    if not isinstance(data, Mapping):
        raise ValueError("config must be a JSON object")

    threshold = data.get("default_capacity_threshold", DEFAULT_CAPACITY_THRESHOLD)
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise ValueError("default_capacity_threshold must be a number")
    if threshold <= 0:
        raise ValueError("default_capacity_threshold must be positive")

    flags: Dict[str, bool] = {}
    for key, default in (
        ("strict_enforcement", True),
        ("allow_over_allocation", False),
        ("validate_leave_schedules", True),
        ("validate_budget", True),
    ):
        value = data.get(key, default)
        if not isinstance(value, bool):
            raise ValueError(f"{key} must be a boolean")
        flags[key] = value

    try:
        budget_period = Period.parse(data.get("budget_period", "monthly"))
    except InvalidInputError as exc:
        raise ValueError(str(exc)) from exc

    max_tasks = data.get("max_concurrent_tasks", DEFAULT_MAX_CONCURRENT_TASKS)
    if isinstance(max_tasks, bool) or not isinstance(max_tasks, int) or max_tasks <= 0:
        raise ValueError("max_concurrent_tasks must be a positive integer")

    currency = data.get("currency", "IDR")
    if not isinstance(currency, str) or not currency.strip():
        raise ValueError("currency must be a non-empty string")

    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")

    return ValidationConfig(
        default_capacity_threshold=float(threshold),
        budget_period=budget_period,
        max_concurrent_tasks=max_tasks,
        currency=currency.strip(),
        logging_level=logging_level,
        **flags,
    )


def load_config(path: str | Path) -> ValidationConfig:
    return config_from_dict(_read_json(path))  # type: ignore[arg-type]
