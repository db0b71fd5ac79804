from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

DNS_PROBE_HOST = "amazonaws.com"
TRUST_ANCHOR_URL = "https://www.amazontrust.com"
DEFAULT_ENDPOINTS = (
    "https://iot.us-east-1.amazonaws.com",
    "https://iot.us-west-2.amazonaws.com",
    "https://greengrass.us-east-1.amazonaws.com",
    "https://www.amazontrust.com",
)
DEFAULT_TIMEOUT_S = 10

Resolver = Callable[[str], Any]


@dataclass
class ReachabilityResult:
    connected: bool = False
    dns_ok: bool = False
    https_ok: bool = False
    error: str = ""
    latency_ms: Optional[float] = None
    tested_endpoints: List[str] = field(default_factory=list)


def _default_resolver(host: str) -> Any:
    return socket.getaddrinfo(host, None)


class ReachabilityProbe:
    """Best-effort cloud reachability check.

    Order matters: DNS first (no network at all), then the trust anchor over
    HTTPS (TLS or proxy trouble), then the IoT endpoint itself.
    """

    def __init__(
        self,
        *,
        timeout_seconds: int = DEFAULT_TIMEOUT_S,
        dns_host: str = DNS_PROBE_HOST,
        trust_anchor_url: str = TRUST_ANCHOR_URL,
        endpoints: Optional[Sequence[str]] = None,
        custom_endpoint: Optional[str] = None,
        session: Optional[requests.Session] = None,
        resolver: Optional[Resolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.timeout_seconds = int(timeout_seconds)
        self.dns_host = dns_host
        self.trust_anchor_url = trust_anchor_url
        self.endpoints = list(endpoints) if endpoints is not None else list(DEFAULT_ENDPOINTS)
        self.custom_endpoint = custom_endpoint or None
        self.session = session or requests.Session()
        self.resolver = resolver or _default_resolver
        self.log = logger or logging.getLogger(__name__)

    def set_custom_endpoint(self, url: str) -> None:
        self.custom_endpoint = url or None
        self.log.debug("Custom IoT endpoint set to: %s", url)

    def set_timeout_seconds(self, seconds: int) -> None:
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        self.timeout_seconds = int(seconds)
        self.log.debug("Connectivity check timeout set to: %s seconds", seconds)

    def check_dns(self, host: str) -> bool:
        try:
            infos = self.resolver(host)
        except (OSError, UnicodeError) as e:
            self.log.debug("Failed to resolve hostname %s: %s", host, e)
            return False
        if not infos:
            return False
        self.log.debug("Resolved %s", host)
        return True

    def check_https(self, url: str) -> bool:
        """HEAD the URL; any 2xx/3xx answer means reachable."""

        connect_timeout = max(self.timeout_seconds / 2, 1)
        try:
            resp = self.session.head(
                url,
                timeout=(connect_timeout, self.timeout_seconds),
                allow_redirects=True,
                verify=True,
            )
        except requests.RequestException as e:
            self.log.debug("Request to %s failed: %s", url, e)
            return False

        if 200 <= resp.status_code < 400:
            self.log.debug("Connected to %s (HTTP %s)", url, resp.status_code)
            return True
        self.log.debug("Request to %s returned HTTP %s", url, resp.status_code)
        return False

    def check_overall(self) -> ReachabilityResult:
        result = ReachabilityResult()
        self.log.info("Starting connectivity check...")

        result.dns_ok = self.check_dns(self.dns_host)
        if not result.dns_ok:
            result.error = "DNS resolution failed"
            self.log.error("DNS resolution check failed for %s", self.dns_host)
            return result

        started = time.monotonic()
        result.https_ok = self.check_https(self.trust_anchor_url)
        if not result.https_ok:
            result.error = "HTTPS connectivity check failed"
            self.log.error("HTTPS connectivity check failed for %s", self.trust_anchor_url)
            return result
        result.latency_ms = (time.monotonic() - started) * 1000.0

        if self.custom_endpoint:
            result.tested_endpoints.append(self.custom_endpoint)
            if not self.check_https(self.custom_endpoint):
                result.error = f"Failed to connect to custom IoT endpoint {self.custom_endpoint}"
                self.log.error(result.error)
                return result
        else:
            reached = False
            for endpoint in self.endpoints:
                result.tested_endpoints.append(endpoint)
                if self.check_https(endpoint):
                    reached = True
                    break
            if not reached:
                result.error = "Failed to connect to any AWS IoT endpoint"
                self.log.error(result.error)
                return result

        result.connected = True
        self.log.info("Connectivity check passed. Latency: %.0fms", result.latency_ms)
        return result
