from __future__ import annotations

import argparse
import logging
import socket
from pathlib import Path
from typing import List, Optional

import yaml

from .activation import Activator, GreengrassActivator
from .lib.env import PATHS
from .lib.net import ReachabilityProbe
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .materializer import ConfigMaterializer
from .pipeline import EXIT_FAILURE, RunContext, run_pipeline
from .records import RecordStore
from .settings import Settings, load_settings
from .status import StatusRecorder
from .steps import (
    ActivateStep,
    CheckExistingStep,
    CheckReachabilityStep,
    GenerateConfigStep,
    ReadRecordStep,
)

logger = logging.getLogger(__name__)

PRIMARY_INTERFACE = "eth0"


def build_steps():
    return [
        CheckExistingStep(),
        CheckReachabilityStep(),
        ReadRecordStep(),
        GenerateConfigStep(),
        ActivateStep(),
    ]


def discover_device_identifiers(
    net_class_dir: str = PATHS.net_class_dir,
    interface: str = PRIMARY_INTERFACE,
    hostname: Optional[str] = None,
) -> List[str]:
    """Identifiers to try against the record store, most specific first."""

    found: List[str] = []
    address_file = Path(net_class_dir) / interface / "address"
    try:
        mac = address_file.read_text(encoding="utf-8").strip()
    except OSError:
        logger.debug("No MAC address available from %s", str(address_file))
        mac = ""

    if mac:
        found.append(mac)
        found.append(mac.replace(":", ""))

    host = hostname if hostname is not None else socket.gethostname()
    if host:
        found.append(host)

    # Keep order, drop repeats.
    return list(dict.fromkeys(found))


def build_probe(settings: Settings) -> ReachabilityProbe:
    return ReachabilityProbe(
        timeout_seconds=settings.probe_timeout_s,
        dns_host=settings.dns_host,
        trust_anchor_url=settings.trust_anchor_url,
        endpoints=settings.endpoints,
        custom_endpoint=settings.custom_endpoint,
    )


def build_activator(settings: Settings, greengrass_path: str, *, dry_run: bool) -> GreengrassActivator:
    return GreengrassActivator(
        greengrass_path,
        user=settings.activation_user,
        group=settings.activation_group,
        service_name=settings.service_name,
        unit_dir=settings.systemd_unit_dir,
        nucleus_url_template=settings.nucleus_url_template,
        java_home=settings.java_home,
        startup_wait_s=settings.startup_wait_s,
        log_wait_s=settings.log_wait_s,
        dry_run=dry_run or settings.test_mode,
    )


def run(
    *,
    database_path: str,
    greengrass_path: str,
    recorder: StatusRecorder,
    settings: Settings,
    device_id: Optional[str] = None,
    force: bool = False,
    dry_run: bool = False,
    identifiers: Optional[List[str]] = None,
    probe: Optional[ReachabilityProbe] = None,
    activator: Optional[Activator] = None,
) -> int:
    """Provision this device once and return the process exit code."""

    store = RecordStore(database_path)
    ctx = RunContext(
        root=Path(greengrass_path),
        recorder=recorder,
        store=store,
        probe=probe or build_probe(settings),
        materializer=ConfigMaterializer(greengrass_path),
        activator=activator or build_activator(settings, greengrass_path, dry_run=dry_run),
        identifiers=list(identifiers) if identifiers is not None else discover_device_identifiers(),
        device_id=device_id,
        default_device_id=settings.default_device_id,
        force=force,
    )

    try:
        result = run_pipeline(ctx, build_steps())
    finally:
        store.disconnect()

    logger.info("Provisioning finished: %s (exit %d)", result.final_phase.value, result.exit_code)
    return result.exit_code


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="greengrass-provisioning",
        description="Provision this device for AWS IoT Greengrass v2 from a local device database.",
    )
    p.add_argument("-d", "--database-path", required=True, help="Path to the SQLite device database")
    p.add_argument(
        "-g",
        "--greengrass-path",
        default=PATHS.greengrass_root,
        help=f"Greengrass root directory (default: {PATHS.greengrass_root})",
    )
    p.add_argument("-s", "--status-file", default=PATHS.status_default, help="Path to the JSON status file")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug output on the console")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to the service log")
    p.add_argument("--config", default=None, help="Optional YAML settings file")
    p.add_argument("--device-id", default=None, help="Use this device_id instead of MAC/hostname discovery")
    p.add_argument("--dry-run", action="store_true", help="Log activation commands instead of running them")
    p.add_argument("--force", action="store_true", help="Provision even if an installation is detected")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)

    if not Path(args.database_path).is_file():
        p.error(f"database file not found: {args.database_path}")

    configure_logging(log_path=args.log, verbose=args.verbose)

    logger.info("AWS Greengrass Provisioning Service starting...")
    logger.debug("Database path: %s", args.database_path)
    logger.debug("Greengrass path: %s", args.greengrass_path)
    logger.debug("Status file: %s", args.status_file)

    recorder = StatusRecorder(args.status_file)

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Cannot load settings from %s: %s", args.config, e)
        recorder.report_error("Invalid settings file", str(e))
        return EXIT_FAILURE

    return run(
        database_path=args.database_path,
        greengrass_path=args.greengrass_path,
        recorder=recorder,
        settings=settings,
        device_id=args.device_id,
        force=args.force,
        dry_run=args.dry_run,
    )


if __name__ == "__main__":
    raise SystemExit(main())
