from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .lib.env import PATHS
from .lib.net import DEFAULT_ENDPOINTS, DEFAULT_TIMEOUT_S, DNS_PROBE_HOST, TRUST_ANCHOR_URL

logger = logging.getLogger(__name__)

DEFAULT_NUCLEUS_URL = "https://d2s8p88vqu9w66.cloudfront.net/releases/greengrass-{version}.zip"


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class Settings:
    """Optional tuning knobs; every property has a working default.

    Example ``settings.yaml``::

        connectivity:
          timeout_seconds: 5
          custom_endpoint: https://xxxx-ats.iot.eu-west-1.amazonaws.com
        device:
          default_id: default
        activation:
          user: ggc_user
          startup_wait_seconds: 5
    """

    raw: Dict[str, Any]

    @property
    def test_mode(self) -> bool:
        return bool(self.raw.get("test_mode", False))

    @property
    def probe_timeout_s(self) -> int:
        return int(_section(self.raw, "connectivity").get("timeout_seconds") or DEFAULT_TIMEOUT_S)

    @property
    def dns_host(self) -> str:
        return str(_section(self.raw, "connectivity").get("dns_host") or DNS_PROBE_HOST)

    @property
    def trust_anchor_url(self) -> str:
        return str(_section(self.raw, "connectivity").get("trust_anchor_url") or TRUST_ANCHOR_URL)

    @property
    def endpoints(self) -> List[str]:
        return list(_section(self.raw, "connectivity").get("endpoints") or DEFAULT_ENDPOINTS)

    @property
    def custom_endpoint(self) -> Optional[str]:
        value = _section(self.raw, "connectivity").get("custom_endpoint")
        return str(value) if value else None

    @property
    def default_device_id(self) -> str:
        return str(_section(self.raw, "device").get("default_id") or "default")

    @property
    def activation_user(self) -> str:
        return str(_section(self.raw, "activation").get("user") or "ggc_user")

    @property
    def activation_group(self) -> str:
        return str(_section(self.raw, "activation").get("group") or "ggc_group")

    @property
    def service_name(self) -> str:
        return str(_section(self.raw, "activation").get("service_name") or "greengrass")

    @property
    def systemd_unit_dir(self) -> str:
        return str(_section(self.raw, "activation").get("unit_dir") or PATHS.systemd_unit_dir)

    @property
    def nucleus_url_template(self) -> str:
        return str(_section(self.raw, "activation").get("nucleus_url") or DEFAULT_NUCLEUS_URL)

    @property
    def startup_wait_s(self) -> float:
        value = _section(self.raw, "activation").get("startup_wait_seconds")
        return float(5 if value is None else value)

    @property
    def log_wait_s(self) -> float:
        value = _section(self.raw, "activation").get("log_wait_seconds")
        return float(30 if value is None else value)

    @property
    def java_home(self) -> Optional[str]:
        value = _section(self.raw, "activation").get("java_home")
        return str(value) if value else None


def _apply_env(raw: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    if env.get("TEST_MODE") != "true":
        return raw

    raw["test_mode"] = True
    endpoint = env.get("IOT_ENDPOINT")
    if endpoint:
        url = f"http://{endpoint}"
        logger.info("Running in TEST_MODE, using mock endpoint: %s", endpoint)
        conn = dict(_section(raw, "connectivity"))
        conn["endpoints"] = [url]
        conn["custom_endpoint"] = url
        raw["connectivity"] = conn
    return raw


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    raw: Dict[str, Any] = {}

    if path:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(path)
        if p.suffix.lower() not in {".yaml", ".yml"}:
            raise ValueError("settings file must be YAML")

        loaded = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"{path} must contain a mapping/object")
        raw = loaded

    return Settings(raw=_apply_env(raw, os.environ if env is None else env))
