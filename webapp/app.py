from __future__ import annotations

from dataclasses import replace
from typing import Dict, Mapping, Optional

from flask import Flask, jsonify, request

from capacity_guard.budget import BudgetValidator
from capacity_guard.io_utils import request_from_dict, snapshot_from_dict
from capacity_guard.models import Period, ValidationConfig
from capacity_guard.overallocation import get_utilization_summary
from capacity_guard.pipeline import AllocationValidationPipeline

_OPTION_KEYS = {
    "strictEnforcement": "strict_enforcement",
    "allowOverAllocation": "allow_over_allocation",
}


def _json_body() -> Dict[str, object]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")
    return data


def _options(raw: object) -> Dict[str, Optional[bool]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError("options must be an object")
    options: Dict[str, Optional[bool]] = {}
    for key, value in raw.items():
        name = _OPTION_KEYS.get(key, key)
        if name not in _OPTION_KEYS.values():
            raise ValueError(f"unknown option: {key}")
        if value is not None and not isinstance(value, bool):
            raise ValueError(f"{key} must be a boolean")
        options[name] = value
    return options


def create_app(config: Optional[ValidationConfig] = None) -> Flask:
    app = Flask(__name__)
    validation_config = config or ValidationConfig()
    app.config["VALIDATION_CONFIG"] = validation_config

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    @app.post("/api/validate")
    def validate():
        try:
            data = _json_body()
            snapshot = snapshot_from_dict(data.get("state") or {})
            allocation_request = request_from_dict(data.get("request"))
            options = _options(data.get("options"))
            cfg = validation_config
            if data.get("period"):
                cfg = replace(cfg, budget_period=Period.parse(data["period"]))
            report = AllocationValidationPipeline(cfg).evaluate(allocation_request, snapshot, **options)
            return jsonify(report.to_dict())
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

    @app.post("/api/budget")
    def budget():
        try:
            data = _json_body()
            snapshot = snapshot_from_dict(data.get("state") or {})
            validator = BudgetValidator(
                snapshot.cost_centers,
                snapshot.allocations,
                currency=validation_config.currency,
            )
            result = validator.validate_budget_capacity(
                data.get("costCenterId"),  # type: ignore[arg-type]
                data.get("allocationCost"),  # type: ignore[arg-type]
                Period.parse(data.get("period") or validation_config.budget_period),
            )
            return jsonify(result.to_dict())
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

    @app.post("/api/utilization")
    def utilization():
        try:
            data = _json_body()
            snapshot = snapshot_from_dict(data.get("state") or {})
            entries = get_utilization_summary(
                snapshot.allocations,
                snapshot.resources,
                default_threshold=validation_config.default_capacity_threshold,
            )
            return jsonify({"resources": [entry.to_dict() for entry in entries]})
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
