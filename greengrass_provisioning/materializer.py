from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .lib.env import (
    CERTS_DIR,
    CONFIG_DIR,
    CONFIG_YAML,
    DEPLOYMENTS_DIR,
    GGC_ROOT_DIR,
    LOGS_DIR,
    PACKAGES_DIR,
    ROOT_CA_FILE,
    WORK_DIR,
)
from .lib.fsutil import write_text_with_mode
from .records import DeviceRecord

logger = logging.getLogger(__name__)

NUCLEUS_COMPONENT = "aws.greengrass.Nucleus"

DIR_MODE = 0o750
PRIVATE_KEY_MODE = 0o600
SHARED_FILE_MODE = 0o640

LOGGING_BLOCK: Dict[str, Any] = {
    "level": "INFO",
    "fileSizeKB": 1024,
    "totalLogsSizeKB": 25600,
    "format": "JSON",
}

DEPLOYMENT_BLOCK: Dict[str, Any] = {
    "deploymentPollingFrequency": 15,
    "componentStoreMaxSizeBytes": 10737418240,
    "deploymentStatusKeepAliveFrequency": 60,
}


@dataclass(frozen=True)
class GeneratedArtifacts:
    config_file_path: Optional[str] = None
    certificate_path: Optional[str] = None
    private_key_path: Optional[str] = None
    root_ca_path: Optional[str] = None
    success: bool = False
    error: str = ""


class _StepFailed(Exception):
    pass


def certificate_file_name(identity_name: str) -> str:
    return f"{identity_name}.cert.pem"


def private_key_file_name(identity_name: str) -> str:
    return f"{identity_name}.private.key"


def resolve_root_ca(value: str) -> str:
    """A readable file path yields its content; anything else is the PEM itself."""

    try:
        p = Path(value)
        if p.is_file():
            return p.read_text(encoding="utf-8")
    except (OSError, ValueError):
        # PEM text is not a usable path (too long, NUL bytes, unreadable).
        pass
    return value


def build_runtime_config(record: DeviceRecord, root: str | Path) -> Dict[str, Any]:
    """Assemble the Greengrass v2 ``config.yaml`` document for a device."""

    root_s = str(root)
    certs = f"{root_s}/{CERTS_DIR}"

    configuration: Dict[str, Any] = {
        "awsRegion": record.region,
        "iotRoleAlias": record.credential_role,
        "iotDataEndpoint": record.endpoint,
        "iotCredEndpoint": record.credential_role_endpoint,
    }
    if record.mqtt_port is not None:
        configuration["mqtt"] = {"port": int(record.mqtt_port)}
    if record.proxy_url:
        configuration["networkProxy"] = {"proxy": {"url": record.proxy_url}}
    configuration["logging"] = dict(LOGGING_BLOCK)
    if record.group:
        configuration.update(DEPLOYMENT_BLOCK)

    return {
        "system": {
            "certificateFilePath": f"{certs}/{certificate_file_name(record.identity_name)}",
            "privateKeyPath": f"{certs}/{private_key_file_name(record.identity_name)}",
            "rootCaPath": f"{certs}/{ROOT_CA_FILE}",
            "rootpath": root_s,
            "thingName": record.identity_name,
        },
        "services": {
            NUCLEUS_COMPONENT: {
                "version": record.effective_runtime_version,
                "configuration": configuration,
            }
        },
    }


def render_runtime_config(record: DeviceRecord, root: str | Path) -> str:
    return yaml.safe_dump(
        build_runtime_config(record, root),
        sort_keys=False,
        default_flow_style=False,
        explicit_start=True,
    )


class ConfigMaterializer:
    """Write credentials and the runtime config for one device under ``root``.

    Every call regenerates the whole tree. Steps run in order and the first
    failure ends the call with ``success=False`` and an error naming the step.
    """

    def __init__(self, root: str | Path, *, logger: Optional[logging.Logger] = None) -> None:
        if not str(root):
            raise ValueError("Greengrass root path must not be empty")
        self.root = Path(root).absolute()
        self.log = logger or logging.getLogger(__name__)

        self.config_dir = self.root / CONFIG_DIR
        self.certs_dir = self.root / CERTS_DIR
        self.config_file = self.config_dir / CONFIG_YAML
        self.root_ca_file = self.certs_dir / ROOT_CA_FILE

    def materialize(self, record: DeviceRecord) -> GeneratedArtifacts:
        self.log.info("Generating Greengrass configuration for device: %s", record.device_id)

        try:
            self._check_record(record)
            self.create_directory_structure()
            cert_path, key_path = self.write_credentials(record)
            self.write_runtime_config(record)
            self.validate()
        except _StepFailed as e:
            self.log.error("%s", e)
            return GeneratedArtifacts(success=False, error=str(e))

        self.log.info("Generated Greengrass configuration at %s", str(self.config_file))
        return GeneratedArtifacts(
            config_file_path=str(self.config_file),
            certificate_path=str(cert_path),
            private_key_path=str(key_path),
            root_ca_path=str(self.root_ca_file),
            success=True,
        )

    def _check_record(self, record: DeviceRecord) -> None:
        missing = record.missing_fields()
        if missing:
            raise _StepFailed(f"Device record is incomplete: missing {', '.join(missing)}")
        if record.custom_domain:
            # Accepted for schema compatibility; it does not change the generated config.
            self.log.debug("custom_domain=%s ignored", record.custom_domain)

    def create_directory_structure(self) -> None:
        try:
            for rel in (CONFIG_DIR, CERTS_DIR, LOGS_DIR, WORK_DIR, PACKAGES_DIR, DEPLOYMENTS_DIR, GGC_ROOT_DIR):
                (self.root / rel).mkdir(parents=True, exist_ok=True)
            os.chmod(self.root, DIR_MODE)
            os.chmod(self.certs_dir, DIR_MODE)
        except OSError as e:
            raise _StepFailed(f"Failed to create directory structure under {self.root}: {e}") from e
        self.log.debug("Created Greengrass directory structure under %s", str(self.root))

    def write_credentials(self, record: DeviceRecord) -> tuple[Path, Path]:
        cert_path = self.certs_dir / certificate_file_name(record.identity_name)
        key_path = self.certs_dir / private_key_file_name(record.identity_name)

        root_ca = resolve_root_ca(record.root_ca)
        if not root_ca.strip():
            raise _StepFailed(f"Failed to write certificates: root CA {record.root_ca!r} is empty")

        try:
            self.remove_stale_credentials(record.identity_name)
            write_text_with_mode(cert_path, record.certificate_pem, mode=SHARED_FILE_MODE)
            write_text_with_mode(key_path, record.private_key_pem, mode=PRIVATE_KEY_MODE)
            write_text_with_mode(self.root_ca_file, root_ca, mode=SHARED_FILE_MODE)
        except PermissionError as e:
            raise _StepFailed(f"Failed to write certificates (permission denied): {e}") from e
        except OSError as e:
            raise _StepFailed(f"Failed to write certificates: {e}") from e

        self.log.debug("Wrote certificates to %s", str(self.certs_dir))
        return cert_path, key_path

    def remove_stale_credentials(self, identity_name: str) -> List[Path]:
        """Delete certificates and keys left behind by a previous identity."""

        keep = {certificate_file_name(identity_name), private_key_file_name(identity_name)}
        removed: List[Path] = []
        for pattern in (certificate_file_name("*"), private_key_file_name("*")):
            for p in sorted(self.certs_dir.glob(pattern)):
                if p.name in keep or not p.is_file():
                    continue
                p.unlink()
                removed.append(p)
                self.log.info("Removed stale credential %s", str(p))
        return removed

    def write_runtime_config(self, record: DeviceRecord) -> None:
        try:
            contents = render_runtime_config(record, self.root)
            write_text_with_mode(self.config_file, contents, mode=SHARED_FILE_MODE)
        except yaml.YAMLError as e:
            raise _StepFailed(f"Failed to render {CONFIG_YAML}: {e}") from e
        except OSError as e:
            raise _StepFailed(f"Failed to write {self.config_file}: {e}") from e
        self.log.debug("Generated Greengrass v2 configuration file")

    def validate(self) -> None:
        problem = self.validation_error()
        if problem:
            raise _StepFailed(f"Generated configuration failed validation: {problem}")
        self.log.debug("Configuration validation passed")

    def validation_error(self) -> Optional[str]:
        """Return why the tree on disk is unusable, or None when it looks complete."""

        try:
            if not self.config_file.is_file():
                return f"{CONFIG_YAML} does not exist"
            if self.config_file.stat().st_size == 0:
                return f"{CONFIG_YAML} is empty"
            if not self.certs_dir.is_dir():
                return "certs directory does not exist"
            if not any(p.suffix in {".pem", ".key"} for p in self.certs_dir.iterdir() if p.is_file()):
                return "no certificates found in certs directory"
        except OSError as e:
            return str(e)
        return None
