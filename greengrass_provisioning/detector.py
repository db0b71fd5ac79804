from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

from .lib.env import (
    CERTS_DIR,
    CONFIG_DIR,
    CONFIG_JSON,
    CONFIG_YAML,
    CONFIG_YML,
    GGC_ROOT_DIR,
    RECIPES_DIR,
)

logger = logging.getLogger(__name__)

MISSING_CONFIG = "config"
MISSING_CERTIFICATES = "certificates"
MISSING_GGC_ROOT = "ggc-root"

CERT_PATTERNS = (".cert.pem", ".crt")
KEY_PATTERNS = (".private.key", ".key")

_THING_NAME_RE = re.compile(r"thingName:\s*(\S+)")


@dataclass(frozen=True)
class ProvisioningStatus:
    is_provisioned: bool = False
    detected_version: str = "unknown"
    identity_name: str = "unknown"
    missing_components: List[str] = field(default_factory=list)
    details: str = ""
    config_file_path: Optional[str] = None


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in {".yaml", ".yml"}


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Cannot read %s: %s", str(path), e)
        return None


class ProvisioningDetector:
    """Inspect a Greengrass root and decide whether provisioning already happened.

    Three things must be present: a config file, a certificate plus key under
    ``certs/``, and the ``ggc-root`` working directory. When they are, the
    config content gets a deliberately shallow structural check.
    """

    def __init__(self, root: str | Path, *, logger: Optional[logging.Logger] = None) -> None:
        self.root = Path(root)
        self.log = logger or logging.getLogger(__name__)

    @property
    def config_dir(self) -> Path:
        return self.root / CONFIG_DIR

    @property
    def certs_dir(self) -> Path:
        return self.root / CERTS_DIR

    @property
    def ggc_root_dir(self) -> Path:
        return self.root / GGC_ROOT_DIR

    def config_candidates(self) -> List[Path]:
        return [self.config_dir / CONFIG_YAML, self.config_dir / CONFIG_YML, self.config_dir / CONFIG_JSON]

    def detect(self) -> ProvisioningStatus:
        self.log.info("Checking Greengrass provisioning status at: %s", str(self.root))

        if not self.root.exists():
            self.log.info("Greengrass root does not exist")
            return ProvisioningStatus(details="root directory does not exist")

        has_config = self.config_exists()
        has_certs = self.certificates_exist()
        has_root = self.ggc_root_exists()

        missing: List[str] = []
        if not has_config:
            missing.append(MISSING_CONFIG)
        if not has_certs:
            missing.append(MISSING_CERTIFICATES)
        if not has_root:
            missing.append(MISSING_GGC_ROOT)

        if missing:
            details = "missing components: " + ", ".join(missing)
            self.log.info("Greengrass is not provisioned (%s)", details)
            return ProvisioningStatus(missing_components=missing, details=details)

        config_file = self.validate_config()
        if config_file is None:
            self.log.warning("Greengrass configuration file is invalid")
            return ProvisioningStatus(details="configuration file is invalid or corrupted")

        status = ProvisioningStatus(
            is_provisioned=True,
            detected_version=self.detect_version(),
            identity_name=self.read_identity_name(),
            details="fully provisioned",
            config_file_path=str(config_file),
        )
        self.log.info(
            "Greengrass is already provisioned. Thing name: %s, version: %s",
            status.identity_name,
            status.detected_version,
        )
        return status

    def config_exists(self) -> bool:
        exists = any(p.exists() for p in self.config_candidates())
        self.log.debug("Config file present: %s", exists)
        return exists

    def certificates_exist(self) -> bool:
        certs = self.certs_dir
        if not certs.is_dir():
            self.log.debug("Certificates directory does not exist")
            return False

        entries = list(certs.iterdir())
        if not entries:
            return False

        found_cert = False
        found_key = False
        for entry in entries:
            if not entry.is_file():
                continue
            name = entry.name
            if any(pat in name for pat in CERT_PATTERNS):
                found_cert = True
            if any(pat in name for pat in KEY_PATTERNS):
                found_key = True

        self.log.debug("Certificates check - cert: %s, key: %s", found_cert, found_key)
        return found_cert and found_key

    def ggc_root_exists(self) -> bool:
        return self.ggc_root_dir.is_dir()

    def validate_config(self) -> Optional[Path]:
        """Return the first config file that passes the structural check.

        YAML: both ``system:`` and ``services:`` must appear somewhere in the
        text; nothing else is parsed. JSON: must be an object with a
        ``coreThing`` or ``system`` key. An empty file, unreadable file or
        malformed JSON fails the whole check.
        """

        for path in self.config_candidates():
            if not path.exists():
                continue

            content = _read_text(path)
            if content is None:
                return None
            if not content.strip():
                self.log.warning("Configuration file is empty: %s", str(path))
                return None

            if _is_yaml(path):
                if "system:" in content and "services:" in content:
                    self.log.debug("Valid YAML configuration found: %s", str(path))
                    return path
                continue

            try:
                data = json.loads(content)
            except ValueError as e:
                self.log.warning("Invalid JSON in config file %s: %s", str(path), e)
                return None
            if isinstance(data, dict) and ("coreThing" in data or "system" in data):
                self.log.debug("Valid JSON configuration found: %s", str(path))
                return path

        return None

    def detect_version(self) -> str:
        if (self.root / RECIPES_DIR).exists():
            return "v2"
        if (self.config_dir / CONFIG_YAML).exists() or (self.config_dir / CONFIG_YML).exists():
            return "v2"
        if (self.config_dir / CONFIG_JSON).exists():
            return "v1"
        return "unknown"

    def read_identity_name(self) -> str:
        for path in self.config_candidates():
            if not path.exists():
                continue
            content = _read_text(path)
            if content is None:
                continue

            if _is_yaml(path):
                m = _THING_NAME_RE.search(content)
                if m:
                    name = m.group(1).strip("\"'")
                    if name:
                        return name
                continue

            name = _thing_name_from_json(content)
            if name:
                return name

        return "unknown"


def _thing_name_from_json(content: str) -> Optional[str]:
    try:
        data: Any = json.loads(content)
    except ValueError as e:
        logger.debug("Error parsing JSON for thing name: %s", e)
        return None
    if not isinstance(data, dict):
        return None
    for section in ("coreThing", "system"):
        block = data.get(section)
        if isinstance(block, dict) and block.get("thingName"):
            return str(block["thingName"])
    return None


def detect(root_dir: str | Path, *, logger: Optional[logging.Logger] = None) -> ProvisioningStatus:
    return ProvisioningDetector(root_dir, logger=logger).detect()
