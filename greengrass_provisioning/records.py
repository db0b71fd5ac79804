"""Read-only access to the device provisioning database.

The database is a SQLite file with two tables::

    device_config(device_id PRIMARY KEY, thing_name, iot_endpoint, aws_region,
                  root_ca_path, certificate_pem, private_key_pem, role_alias,
                  role_alias_endpoint, nucleus_version, deployment_group,
                  initial_components, proxy_url, mqtt_port, custom_domain)
    device_identifiers(device_id, mac_address, serial_number)

Column names follow the Greengrass vocabulary; :class:`DeviceRecord` exposes
them under the names the rest of the service uses.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from .errors import NotConnectedError, RecordError

logger = logging.getLogger(__name__)

DEFAULT_RUNTIME_VERSION = "2.9.0"

_SELECT_DEVICE = """
SELECT device_id, thing_name, iot_endpoint, aws_region, root_ca_path,
       certificate_pem, private_key_pem, role_alias, role_alias_endpoint,
       nucleus_version, deployment_group, initial_components, proxy_url,
       mqtt_port, custom_domain
FROM device_config
WHERE device_id = ?
LIMIT 1
"""

_SELECT_BY_IDENTIFIER = """
SELECT device_id
FROM device_identifiers
WHERE mac_address = ? OR serial_number = ?
LIMIT 1
"""

_LIST_DEVICES = "SELECT device_id FROM device_config ORDER BY device_id"

REQUIRED_FIELDS = (
    "device_id",
    "identity_name",
    "endpoint",
    "region",
    "root_ca",
    "certificate_pem",
    "private_key_pem",
    "credential_role",
    "credential_role_endpoint",
)


def parse_components(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(c.strip() for c in raw.split(",") if c.strip())


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class DeviceRecord:
    device_id: str
    identity_name: str
    endpoint: str
    region: str
    root_ca: str
    certificate_pem: str
    private_key_pem: str
    credential_role: str
    credential_role_endpoint: str
    runtime_version: Optional[str] = None
    group: Optional[str] = None
    initial_components: Tuple[str, ...] = ()
    proxy_url: Optional[str] = None
    mqtt_port: Optional[int] = None
    custom_domain: Optional[str] = None

    @property
    def effective_runtime_version(self) -> str:
        return self.runtime_version or DEFAULT_RUNTIME_VERSION

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_FIELDS if not str(getattr(self, name) or "").strip()]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DeviceRecord":
        return cls(
            device_id=str(row["device_id"] or ""),
            identity_name=str(row["thing_name"] or ""),
            endpoint=str(row["iot_endpoint"] or ""),
            region=str(row["aws_region"] or ""),
            root_ca=str(row["root_ca_path"] or ""),
            certificate_pem=str(row["certificate_pem"] or ""),
            private_key_pem=str(row["private_key_pem"] or ""),
            credential_role=str(row["role_alias"] or ""),
            credential_role_endpoint=str(row["role_alias_endpoint"] or ""),
            runtime_version=_optional_text(row["nucleus_version"]),
            group=_optional_text(row["deployment_group"]),
            initial_components=parse_components(row["initial_components"]),
            proxy_url=_optional_text(row["proxy_url"]),
            mqtt_port=_optional_int(row["mqtt_port"]),
            custom_domain=_optional_text(row["custom_domain"]),
        )


class RecordStore:
    """Thin read-only shim over the device database."""

    def __init__(self, database_path: str, *, logger: Optional[logging.Logger] = None) -> None:
        self.database_path = database_path
        self.log = logger or logging.getLogger(__name__)
        self.last_error = ""
        self._conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> "RecordStore":
        self.connect()
        return self

    def __exit__(self, *exc: object) -> None:
        self.disconnect()

    def connect(self) -> bool:
        if self._conn is not None:
            self.log.warning("Database already connected")
            return True

        p = Path(self.database_path)
        if not p.is_file():
            self.last_error = f"Cannot open database: {self.database_path} does not exist"
            self.log.error(self.last_error)
            return False

        try:
            conn = sqlite3.connect(f"{p.resolve().as_uri()}?mode=ro", uri=True, timeout=30)
            conn.row_factory = sqlite3.Row
            # Opening is lazy; touch the schema so a corrupt file fails here.
            conn.execute("SELECT name FROM sqlite_master LIMIT 1").fetchall()
        except sqlite3.Error as e:
            self.last_error = f"Cannot open database: {e}"
            self.log.error(self.last_error)
            return False

        self._conn = conn
        self.log.info("Connected to database: %s", self.database_path)
        return True

    def disconnect(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self.log.debug("Disconnected from database")

    def is_connected(self) -> bool:
        return self._conn is not None

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.last_error = "Database not connected"
            raise NotConnectedError(self.last_error)
        return self._conn

    def get_by_primary_id(self, device_id: str) -> Optional[DeviceRecord]:
        """None when no such device exists; a row that cannot be read raises :class:`RecordError`."""

        conn = self._require_conn()
        try:
            row = conn.execute(_SELECT_DEVICE, (device_id,)).fetchone()
            if row is None:
                self.log.warning("No device configuration found for device_id: %s", device_id)
                return None
            record = DeviceRecord.from_row(row)
        except (sqlite3.Error, ValueError) as e:
            self.last_error = f"Error reading device {device_id}: {e}"
            self.log.error(self.last_error)
            raise RecordError(f"Device record {device_id} is unusable", self.last_error) from e

        self.log.info("Found device configuration for device_id: %s", device_id)
        return record

    def get_by_secondary_identifier(self, identifier: str) -> Optional[DeviceRecord]:
        """Resolve a MAC address or serial number to a device, then load it."""

        conn = self._require_conn()
        try:
            row = conn.execute(_SELECT_BY_IDENTIFIER, (identifier, identifier)).fetchone()
        except sqlite3.Error as e:
            self.last_error = f"Identifier lookup failed: {e}"
            self.log.error(self.last_error)
            raise RecordError("Device identifier lookup failed", self.last_error) from e

        if row is None or not row["device_id"]:
            self.log.warning("No device found for identifier: %s", identifier)
            return None

        self.log.debug("Found device_id %s for identifier %s", row["device_id"], identifier)
        return self.get_by_primary_id(str(row["device_id"]))

    def list_device_ids(self) -> List[str]:
        conn = self._require_conn()
        try:
            rows = conn.execute(_LIST_DEVICES).fetchall()
        except sqlite3.Error as e:
            self.last_error = f"Error listing devices: {e}"
            self.log.error(self.last_error)
            return []
        ids = [str(r["device_id"]) for r in rows if r["device_id"]]
        self.log.debug("Found %d devices in database", len(ids))
        return ids
