from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    greengrass_root: str = "/greengrass/v2"
    status_default: str = "/var/run/greengrass-provisioning.status"
    log_default: str = "/var/log/greengrass-provisioning.log"
    systemd_unit_dir: str = "/etc/systemd/system"
    net_class_dir: str = "/sys/class/net"


PATHS = Paths()

# Layout under the Greengrass root. The detector and the materializer must agree.
CONFIG_DIR = "config"
CERTS_DIR = "certs"
LOGS_DIR = "logs"
WORK_DIR = "work"
PACKAGES_DIR = "packages"
DEPLOYMENTS_DIR = "deployments"
RECIPES_DIR = "recipes"
GGC_ROOT_DIR = "ggc-root"
LIB_DIR = "lib"

CONFIG_YAML = "config.yaml"
CONFIG_YML = "config.yml"
CONFIG_JSON = "config.json"
ROOT_CA_FILE = "root.ca.pem"
