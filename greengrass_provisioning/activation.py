"""Install and start the Greengrass nucleus once its config is on disk.

The activator is the last collaborator the orchestrator calls. It is kept
behind the :class:`Activator` protocol so the pipeline can be exercised with
a fake; :class:`GreengrassActivator` is the systemd-based implementation.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import time
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol

import requests

from .errors import CommandError
from .lib.command import run_cmd
from .lib.env import LIB_DIR, LOGS_DIR, PATHS
from .materializer import GeneratedArtifacts
from .records import DEFAULT_RUNTIME_VERSION, DeviceRecord
from .settings import DEFAULT_NUCLEUS_URL

logger = logging.getLogger(__name__)

NUCLEUS_JAR = "Greengrass.jar"
DOWNLOAD_TIMEOUT_S = 300
LOG_TAIL_LINES = 50
SUCCESS_WORDS = ("connected", "established", "successful")
ERROR_WORDS = ("error", "failed")
PLACEHOLDER_JAR = b"Placeholder Greengrass nucleus (dry run)\n"

ProgressCallback = Callable[[int, str], None]


class ActivationStep(str, Enum):
    INITIALIZING = "INITIALIZING"
    DOWNLOADING_NUCLEUS = "DOWNLOADING_NUCLEUS"
    INSTALLING_NUCLEUS = "INSTALLING_NUCLEUS"
    CONFIGURING_SYSTEMD = "CONFIGURING_SYSTEMD"
    STARTING_SERVICE = "STARTING_SERVICE"
    VERIFYING_CONNECTION = "VERIFYING_CONNECTION"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class ActivationResult:
    success: bool
    last_completed_step: ActivationStep = ActivationStep.INITIALIZING
    error: str = ""
    service_name: str = "greengrass"


class Activator(Protocol):
    def activate(
        self,
        record: DeviceRecord,
        artifacts: GeneratedArtifacts,
        *,
        progress: Optional[ProgressCallback] = None,
    ) -> ActivationResult:
        ...


class _ActivationFailed(Exception):
    pass


def nucleus_download_url(version: Optional[str], template: str = DEFAULT_NUCLEUS_URL) -> str:
    return template.format(version=version or DEFAULT_RUNTIME_VERSION)


def detect_java_home() -> Optional[str]:
    java = shutil.which("java")
    if not java:
        return None
    real = Path(os.path.realpath(java))
    # .../jvm/<jdk>/bin/java -> .../jvm/<jdk>
    if real.parent.name == "bin":
        return str(real.parent.parent)
    return str(real.parent)


def render_systemd_unit(*, root: str, user: str, group: str, java_home: str) -> str:
    return "\n".join(
        [
            "[Unit]",
            "Description=Greengrass Core",
            "After=network.target",
            "",
            "[Service]",
            "Type=simple",
            f"PIDFile={root}/alts/loader.pid",
            "RemainAfterExit=no",
            "Restart=on-failure",
            "RestartSec=10",
            f"User={user}",
            f"Group={group}",
            f'Environment="JAVA_HOME={java_home}"',
            f"ExecStart=/usr/bin/java -Dlog.store=FILE -Droot={root} -jar {root}/{LIB_DIR}/{NUCLEUS_JAR}"
            f" --config-path {root}/config/config.yaml",
            "StandardOutput=journal",
            "StandardError=journal",
            "",
            "[Install]",
            "WantedBy=multi-user.target",
            "",
        ]
    )


def scan_log_tail(lines: List[str]) -> Optional[bool]:
    """True on a success word, False on an error word, None when neither shows up."""

    tail = [line.lower() for line in lines[-LOG_TAIL_LINES:]]
    if any(w in line for line in tail for w in SUCCESS_WORDS):
        return True
    if any(w in line for line in tail for w in ERROR_WORDS):
        return False
    return None


class GreengrassActivator:
    def __init__(
        self,
        root: str | Path,
        *,
        user: str = "ggc_user",
        group: str = "ggc_group",
        service_name: str = "greengrass",
        unit_dir: str = PATHS.systemd_unit_dir,
        nucleus_url_template: str = DEFAULT_NUCLEUS_URL,
        java_home: Optional[str] = None,
        startup_wait_s: float = 5.0,
        log_wait_s: float = 30.0,
        dry_run: bool = False,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.root = Path(root).absolute()
        self.user = user
        self.group = group
        self.service_name = service_name
        self.unit_dir = Path(unit_dir)
        self.nucleus_url_template = nucleus_url_template
        self.java_home = java_home
        self.startup_wait_s = startup_wait_s
        self.log_wait_s = log_wait_s
        self.dry_run = dry_run
        self.session = session or requests.Session()
        self.sleep = sleep
        self.log = logger or logging.getLogger(__name__)

    @property
    def unit_name(self) -> str:
        return f"{self.service_name}.service"

    @property
    def nucleus_jar_path(self) -> Path:
        return self.root / LIB_DIR / NUCLEUS_JAR

    def activate(
        self,
        record: DeviceRecord,
        artifacts: GeneratedArtifacts,
        *,
        progress: Optional[ProgressCallback] = None,
    ) -> ActivationResult:
        def report(pct: int, message: str) -> None:
            if progress is not None:
                progress(pct, message)

        self.log.info("Starting Greengrass activation for device: %s", record.device_id)
        if not artifacts.success:
            return self._failed(ActivationStep.INITIALIZING, "Generated configuration is not usable")

        plan = [
            (0, "Initializing provisioning process", ActivationStep.INITIALIZING, self.ensure_system_user),
            (20, "Downloading Greengrass nucleus", ActivationStep.DOWNLOADING_NUCLEUS,
             lambda: self.ensure_nucleus(record.runtime_version)),
            (40, "Installing Greengrass nucleus", ActivationStep.INSTALLING_NUCLEUS, self.set_ownership),
            (60, "Configuring systemd service", ActivationStep.CONFIGURING_SYSTEMD, self.install_service),
            (80, "Starting Greengrass service", ActivationStep.STARTING_SERVICE, self.start_service),
            (90, "Verifying Greengrass connection", ActivationStep.VERIFYING_CONNECTION, self.verify_connection),
        ]

        last = ActivationStep.INITIALIZING
        for pct, message, step, action in plan:
            report(pct, message)
            try:
                action()
            except (_ActivationFailed, CommandError, OSError, requests.RequestException, zipfile.BadZipFile) as e:
                return self._failed(last, f"{message} failed: {e}")
            last = step

        report(100, "Provisioning completed successfully")
        self.log.info("Greengrass activation completed successfully")
        return ActivationResult(
            success=True,
            last_completed_step=ActivationStep.COMPLETED,
            service_name=self.service_name,
        )

    def _failed(self, last: ActivationStep, error: str) -> ActivationResult:
        self.log.error(error)
        return ActivationResult(
            success=False,
            last_completed_step=last,
            error=error,
            service_name=self.service_name,
        )

    def ensure_system_user(self) -> None:
        if run_cmd(["id", "-u", self.user], check=False, dry_run=self.dry_run).ok:
            self.log.info("Greengrass user %s already exists", self.user)
            return

        # groupadd fails harmlessly when the group already exists.
        run_cmd(["groupadd", "--system", self.group], check=False, dry_run=self.dry_run)
        run_cmd(
            ["useradd", "--system", "--gid", self.group, "--shell", "/bin/false", self.user],
            dry_run=self.dry_run,
        )
        self.log.info("Created Greengrass user %s and group %s", self.user, self.group)

    def ensure_nucleus(self, version: Optional[str]) -> None:
        jar = self.nucleus_jar_path
        if jar.exists():
            self.log.info("Greengrass nucleus already exists, skipping download")
            return

        jar.parent.mkdir(parents=True, exist_ok=True)
        if self.dry_run:
            self.log.info("Dry run: writing placeholder nucleus at %s", str(jar))
            jar.write_bytes(PLACEHOLDER_JAR)
            return

        url = nucleus_download_url(version, self.nucleus_url_template)
        self.log.info("Downloading Greengrass nucleus %s from %s", version or DEFAULT_RUNTIME_VERSION, url)
        resp = self.session.get(url, timeout=DOWNLOAD_TIMEOUT_S, allow_redirects=True)
        resp.raise_for_status()

        with zipfile.ZipFile(io.BytesIO(resp.content)) as zf:
            member = next((n for n in zf.namelist() if n.endswith(f"{LIB_DIR}/{NUCLEUS_JAR}")), None)
            if member is None:
                raise _ActivationFailed(f"{NUCLEUS_JAR} not found in {url}")
            tmp = jar.with_suffix(".jar.part")
            with zf.open(member) as src, open(tmp, "wb") as dst:
                shutil.copyfileobj(src, dst)
            os.replace(tmp, jar)
        self.log.info("Installed Greengrass nucleus at %s", str(jar))

    def set_ownership(self) -> None:
        run_cmd(["chown", "-R", f"{self.user}:{self.group}", str(self.root)], dry_run=self.dry_run)
        self.log.info("Greengrass nucleus installation prepared")

    def install_service(self) -> None:
        java_home = self.java_home or detect_java_home() or ""
        unit = render_systemd_unit(root=str(self.root), user=self.user, group=self.group, java_home=java_home)
        unit_path = self.unit_dir / self.unit_name

        if self.dry_run:
            self.log.info("Would write %s", str(unit_path))
        else:
            unit_path.parent.mkdir(parents=True, exist_ok=True)
            unit_path.write_text(unit, encoding="utf-8")

        run_cmd(["systemctl", "daemon-reload"], dry_run=self.dry_run)
        run_cmd(["systemctl", "enable", self.unit_name], dry_run=self.dry_run)
        self.log.info("Configured systemd service %s", self.unit_name)

    def start_service(self) -> None:
        run_cmd(["systemctl", "stop", self.unit_name], check=False, dry_run=self.dry_run)
        run_cmd(["systemctl", "start", self.unit_name], dry_run=self.dry_run)
        if self.dry_run:
            return

        deadline = time.monotonic() + self.startup_wait_s
        while True:
            if run_cmd(["systemctl", "is-active", self.unit_name], check=False).ok:
                self.log.info("Greengrass service started successfully")
                return
            if time.monotonic() >= deadline:
                raise _ActivationFailed(f"{self.unit_name} is not active")
            self.sleep(1)

    def verify_connection(self) -> None:
        if self.dry_run:
            self.log.info("Dry run: skipping connection verification")
            return

        log_file = self.root / LOGS_DIR / "greengrass.log"
        waited = 0.0
        while not log_file.exists() and waited < self.log_wait_s:
            self.sleep(1)
            waited += 1

        if not log_file.exists():
            self.log.warning("Greengrass log file not found, assuming connection is ok")
            return

        lines = log_file.read_text(encoding="utf-8", errors="replace").splitlines()
        verdict = scan_log_tail(lines)
        if verdict is False:
            raise _ActivationFailed(f"errors found in {log_file}")
        if verdict:
            self.log.info("Greengrass connection verified from logs")
        else:
            self.log.info("No errors found in logs, assuming connection successful")
