from __future__ import annotations

import json

import pytest

from capacity_guard.main import main


def write_state(state_dir) -> None:
    state_dir.mkdir()
    (state_dir / "resources.json").write_text(
        json.dumps([{"id": "r1", "name": "Alice", "maxCapacity": 1.0, "overAllocationThreshold": 1.2}])
    )
    (state_dir / "allocations.csv").write_text(
        "id,resource,allocation_percentage,status\n"
        "a1,Alice,0.5,active\n"
        "a2,Alice,0.3,active\n"
    )


def write_request(path, percentage: float) -> None:
    path.write_text(json.dumps({"resource": "Alice", "allocationPercentage": percentage}))


def test_admitted_request_exits_cleanly(tmp_path, capsys) -> None:
    write_state(tmp_path / "state")
    write_request(tmp_path / "request.json", 0.2)

    main(["--state-dir", str(tmp_path / "state"), "--request", str(tmp_path / "request.json")])

    out = capsys.readouterr().out
    assert "No issues found." in out
    assert "Decision: admit" in out


def test_rejected_request_exits_with_one(tmp_path, capsys) -> None:
    write_state(tmp_path / "state")
    write_request(tmp_path / "request.json", 0.5)

    with pytest.raises(SystemExit) as excinfo:
        main(["--state-dir", str(tmp_path / "state"), "--request", str(tmp_path / "request.json")])

    assert excinfo.value.code == 1
    assert "[ERROR] capacity_limits" in capsys.readouterr().out


def test_lenient_flag_downgrades_to_warning(tmp_path, capsys) -> None:
    write_state(tmp_path / "state")
    write_request(tmp_path / "request.json", 0.5)

    main(["--state-dir", str(tmp_path / "state"), "--request", str(tmp_path / "request.json"), "--lenient", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["decision"] == "warn"


def test_summary_only(tmp_path, capsys) -> None:
    write_state(tmp_path / "state")

    main(["--state-dir", str(tmp_path / "state"), "--summary"])

    out = capsys.readouterr().out
    assert "Alice: 80.0% [high-utilization]" in out
    assert "Cost center budgets:" in out


def test_missing_request_file_exits_with_two(tmp_path, capsys) -> None:
    write_state(tmp_path / "state")

    with pytest.raises(SystemExit) as excinfo:
        main(["--state-dir", str(tmp_path / "state"), "--request", str(tmp_path / "missing.json")])

    assert excinfo.value.code == 2
    assert "request file not found" in capsys.readouterr().err


def test_request_or_summary_is_required(tmp_path) -> None:
    write_state(tmp_path / "state")

    with pytest.raises(SystemExit) as excinfo:
        main(["--state-dir", str(tmp_path / "state")])

    assert excinfo.value.code == 2
