from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .lib.fsutil import atomic_write_text

logger = logging.getLogger(__name__)

STATUS_FILE_MODE = 0o644
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class Phase(str, Enum):
    STARTING = "STARTING"
    CHECKING_PROVISIONING = "CHECKING_PROVISIONING"
    ALREADY_PROVISIONED = "ALREADY_PROVISIONED"
    CHECKING_CONNECTIVITY = "CHECKING_CONNECTIVITY"
    NO_CONNECTIVITY = "NO_CONNECTIVITY"
    READING_DATABASE = "READING_DATABASE"
    GENERATING_CONFIG = "GENERATING_CONFIG"
    PROVISIONING = "PROVISIONING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


DEFAULT_MESSAGES: Dict[Phase, str] = {
    Phase.STARTING: "Service is starting",
    Phase.CHECKING_PROVISIONING: "Checking if Greengrass is already provisioned",
    Phase.ALREADY_PROVISIONED: "Greengrass is already provisioned",
    Phase.CHECKING_CONNECTIVITY: "Checking internet connectivity",
    Phase.NO_CONNECTIVITY: "No internet connectivity available",
    Phase.READING_DATABASE: "Reading configuration from database",
    Phase.GENERATING_CONFIG: "Generating Greengrass configuration",
    Phase.PROVISIONING: "Provisioning Greengrass device",
    Phase.COMPLETED: "Provisioning completed successfully",
}

# Used when a caller reports a phase without an explicit progress value.
# ERROR is absent on purpose: it keeps whatever progress was last reported.
DEFAULT_PROGRESS: Dict[Phase, int] = {
    Phase.STARTING: 5,
    Phase.CHECKING_PROVISIONING: 10,
    Phase.ALREADY_PROVISIONED: 100,
    Phase.CHECKING_CONNECTIVITY: 20,
    Phase.NO_CONNECTIVITY: 20,
    Phase.READING_DATABASE: 40,
    Phase.GENERATING_CONFIG: 60,
    Phase.PROVISIONING: 80,
    Phase.COMPLETED: 100,
}


def clamp_progress(value: int) -> int:
    return max(0, min(100, int(value)))


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class StatusRecord:
    phase: Phase
    message: str
    timestamp: datetime
    progress_percent: int = 0
    error_detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.phase.value,
            "message": self.message,
            "timestamp": format_timestamp(self.timestamp),
            "progress_percentage": self.progress_percent,
        }
        if self.error_detail:
            data["error_details"] = self.error_detail
        return data


def load_status(path: str) -> Dict[str, Any]:
    """Read a status file back (used by monitors and tests)."""

    p = Path(path)
    if not p.exists():
        return {}
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Status file must contain an object, got {type(data)}")
    return data


class StatusRecorder:
    """Single current-progress record, flushed to disk on every change.

    The file is a mailbox, not a log: each call atomically replaces it and the
    newest write wins. It is left world-readable so unprivileged monitors can
    poll it.
    """

    def __init__(self, path: str, *, logger: Optional[logging.Logger] = None) -> None:
        self.path = path
        self.log = logger or logging.getLogger(__name__)
        self.last_write_error: Optional[str] = None
        self._record = StatusRecord(
            phase=Phase.STARTING,
            message=DEFAULT_MESSAGES[Phase.STARTING],
            timestamp=datetime.now(timezone.utc),
            progress_percent=0,
        )
        self._flush()

    def current(self) -> StatusRecord:
        return self._record

    def report(self, phase: Phase, message: str = "", progress: Optional[int] = None) -> None:
        if not message:
            if phase is Phase.ERROR:
                raise ValueError("ERROR has no default message; use report_error()")
            message = DEFAULT_MESSAGES[phase]

        if progress is not None:
            pct = clamp_progress(progress)
        else:
            pct = DEFAULT_PROGRESS.get(phase, self._record.progress_percent)

        self._record = replace(
            self._record,
            phase=phase,
            message=message,
            timestamp=datetime.now(timezone.utc),
            progress_percent=pct,
            error_detail=self._record.error_detail if phase is Phase.ERROR else "",
        )
        self._flush()
        self.log.info("Status updated: %s - %s (%d%%)", phase.value, message, pct)

    def report_error(self, message: str, detail: str = "") -> None:
        self._record = replace(
            self._record,
            phase=Phase.ERROR,
            message=message,
            timestamp=datetime.now(timezone.utc),
            error_detail=detail,
        )
        self._flush()
        self.log.error("Error reported: %s - %s", message, detail)

    def _flush(self) -> None:
        body = json.dumps(self._record.to_dict(), indent=4) + "\n"
        try:
            atomic_write_text(self.path, body, mode=STATUS_FILE_MODE)
        except OSError as e:
            # The status file is a side channel; provisioning continues without it.
            self.last_write_error = str(e)
            self.log.error("Failed to write status file %s: %s", self.path, e)
        else:
            self.last_write_error = None
