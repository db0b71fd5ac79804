import json
import os
import re

import pytest

from greengrass_provisioning.lib.fsutil import file_mode
from greengrass_provisioning.status import (
    DEFAULT_MESSAGES,
    Phase,
    StatusRecorder,
    load_status,
)

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")


def test_new_recorder_writes_starting_at_zero(tmp_path):
    path = tmp_path / "run" / "provisioning.status"
    StatusRecorder(str(path))

    data = load_status(str(path))
    assert data["status"] == "STARTING"
    assert data["progress_percentage"] == 0
    assert data["message"] == DEFAULT_MESSAGES[Phase.STARTING]
    assert TIMESTAMP_RE.match(data["timestamp"])
    assert "error_details" not in data


def test_progress_is_clamped(tmp_path):
    path = str(tmp_path / "s.status")
    rec = StatusRecorder(path)

    rec.report(Phase.PROVISIONING, "low", -10)
    assert load_status(path)["progress_percentage"] == 0

    rec.report(Phase.PROVISIONING, "high", 150)
    assert load_status(path)["progress_percentage"] == 100


def test_empty_message_uses_phase_default(tmp_path):
    path = str(tmp_path / "s.status")
    rec = StatusRecorder(path)

    rec.report(Phase.PROVISIONING, "", 50)

    data = load_status(path)
    assert data["message"] == "Provisioning Greengrass device"
    assert data["progress_percentage"] == 50


def test_omitted_progress_uses_phase_default(tmp_path):
    path = str(tmp_path / "s.status")
    rec = StatusRecorder(path)

    rec.report(Phase.READING_DATABASE)
    assert load_status(path)["progress_percentage"] == 40

    rec.report(Phase.COMPLETED)
    assert load_status(path)["progress_percentage"] == 100


def test_error_without_message_is_rejected(tmp_path):
    rec = StatusRecorder(str(tmp_path / "s.status"))
    with pytest.raises(ValueError):
        rec.report(Phase.ERROR, "")


def test_report_error_without_detail_omits_key(tmp_path):
    path = str(tmp_path / "s.status")
    rec = StatusRecorder(path)

    rec.report_error("x", "")

    raw = json.loads((tmp_path / "s.status").read_text())
    assert raw["status"] == "ERROR"
    assert raw["message"] == "x"
    assert "error_details" not in raw


def test_report_error_keeps_last_progress(tmp_path):
    path = str(tmp_path / "s.status")
    rec = StatusRecorder(path)

    rec.report(Phase.GENERATING_CONFIG, "", 60)
    rec.report_error("Failed to generate configuration", "disk full")

    data = load_status(path)
    assert data["status"] == "ERROR"
    assert data["progress_percentage"] == 60
    assert data["error_details"] == "disk full"
    assert rec.current().progress_percent == 60


def test_non_error_report_clears_error_detail(tmp_path):
    path = str(tmp_path / "s.status")
    rec = StatusRecorder(path)

    rec.report_error("boom", "detail")
    rec.report(Phase.STARTING)

    assert "error_details" not in load_status(path)
    assert rec.current().error_detail == ""


def test_status_file_is_world_readable(tmp_path):
    path = tmp_path / "s.status"
    rec = StatusRecorder(str(path))
    os.chmod(path, 0o600)

    rec.report(Phase.CHECKING_PROVISIONING)

    assert file_mode(path) == 0o644


def test_rapid_updates_always_leave_parseable_file(tmp_path):
    path = tmp_path / "s.status"
    rec = StatusRecorder(str(path))

    for i in range(25):
        rec.report(Phase.PROVISIONING, f"step {i}", i * 4)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["message"] == f"step {i}"

    # No temporary siblings are left behind.
    assert sorted(p.name for p in tmp_path.iterdir()) == ["s.status"]


def test_write_failure_is_remembered_not_raised(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    rec = StatusRecorder(str(blocker / "s.status"))
    assert rec.last_write_error

    rec.report(Phase.CHECKING_CONNECTIVITY)
    assert rec.current().phase is Phase.CHECKING_CONNECTIVITY
    assert rec.last_write_error


def test_phase_wire_names():
    assert [p.value for p in Phase] == [
        "STARTING",
        "CHECKING_PROVISIONING",
        "ALREADY_PROVISIONED",
        "CHECKING_CONNECTIVITY",
        "NO_CONNECTIVITY",
        "READING_DATABASE",
        "GENERATING_CONFIG",
        "PROVISIONING",
        "COMPLETED",
        "ERROR",
    ]
