#!/usr/bin/env python3
"""ddns-keeper - Dynamic DNS keeper

Keeps DNS address records in sync with the host's current address. For every
configured record a worker periodically runs an address-discovery command,
compares the result with the record held by the registrar, updates the record
when they differ and then runs an optional on-update command.

Supported Registrars:
    - cloudflare: Cloudflare DNS (API v4)
    - aliyun: AliCloud DNS

Command line:
    -c, --config PATH          YAML config file (default: /etc/ddk/config.yaml)

Environment variables:
    DDK_CONFIG                 Config file path, overrides --config
    LOG_LEVEL                  DEBUG, INFO, WARNING, ERROR (default: INFO)
    REQUEST_TIMEOUT_SECONDS    Timeout for registrar HTTP calls (default: 10)
    COMMAND_TIMEOUT_SECONDS    Timeout for external commands (default: 30)

Example config file:

    global:
      post_up_wait: 10                 # seconds to wait for the network
      post_up_cmd: "echo started"      # ';'-separated, run once at startup
      check_interval_seconds: 60

    record:
      - domain_registrar: cloudflare
        ip_address_from_cmd: "curl -s https://api.ipify.org"
        ip_address_on_update_cmd: "logger new address ${IP_ADDRESS}"
        api_param:
          email: "me@example.com"
          api_key: "..."               # or api_token: "..."
          zone_id: "023e105f4ecef8ad9ca31a8372d0c353"
          domain: "example.com"
          record_name: "home"
          record_type: "A"
          record_ttl: 120
          record_proxied: false

      - domain_registrar: aliyun
        ip_address_from_cmd: "curl -s https://api6.ipify.org"
        api_param:
          key_id: "..."
          key_secret: "..."
          domain_name: "example.com"
          record_rr: "home"
          record_type: "AAAA"
          record_ttl: 600
          record_line: "default"       # optional
          record_id: "..."             # optional, pins the record to update
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .commands import run_command_sequence
from .errors import ConfigError
from .records import RecordSpec, RecordType, RegistrarKind
from .registrars import lookup_kind
from .worker import DEFAULT_POLL_INTERVAL_SECONDS, WorkerPool

# =============================================================================
# Configuration
# =============================================================================

DEFAULT_CONFIG_PATH = "/etc/ddk/config.yaml"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10"))
COMMAND_TIMEOUT_SECONDS = float(os.getenv("COMMAND_TIMEOUT_SECONDS", "30"))

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class GlobalSettings:
    """The [global] section of the config file."""

    post_up_wait: int = 0
    post_up_cmd: str = ""
    check_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS


@dataclass(frozen=True)
class AppConfig:
    settings: GlobalSettings = field(default_factory=GlobalSettings)
    records: List[RecordSpec] = field(default_factory=list)


# =============================================================================
# Utility Functions
# =============================================================================


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(value: Any, key: str, *, default: Optional[int] = None) -> int:
    if value is None or value == "":
        if default is None:
            raise ConfigError(f"missing required api_param: {key}")
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e


def _get_str(params: Mapping[str, Any], key: str, *, required: bool = True) -> str:
    value = params.get(key)
    if value is None or str(value).strip() == "":
        if required:
            raise ConfigError(f"missing required api_param: {key}")
        return ""
    return str(value).strip()


def _parse_record_type(value: Any) -> RecordType:
    normalized = str(value or "").upper().strip()
    try:
        return RecordType(normalized)
    except ValueError as e:
        raise ConfigError(
            f"Unsupported record_type: '{value}'. Supported: "
            f"{', '.join(t.value for t in RecordType)}"
        ) from e


# =============================================================================
# Config Loading
# =============================================================================


def parse_record(raw: Any) -> RecordSpec:
    """Build a RecordSpec from one [[record]] entry of the config file."""
    if not isinstance(raw, dict):
        raise ConfigError(f"record entry must be a mapping, got {type(raw).__name__}")

    kind = lookup_kind(raw.get("domain_registrar"))
    from_cmd = str(raw.get("ip_address_from_cmd") or "").strip()
    if not from_cmd:
        raise ConfigError("missing required field: ip_address_from_cmd")
    on_update_cmd = str(raw.get("ip_address_on_update_cmd") or "").strip() or None

    params = raw.get("api_param") or {}
    if not isinstance(params, dict):
        raise ConfigError("api_param must be a mapping")
    record_type = _parse_record_type(params.get("record_type"))

    if kind is RegistrarKind.CLOUDFLARE:
        domain = _get_str(params, "domain")
        credentials = {
            "api_key": _get_str(params, "api_key", required=False),
            "email": _get_str(params, "email", required=False),
            "api_token": _get_str(params, "api_token", required=False),
        }
        if not credentials["api_token"] and not (credentials["api_key"] and credentials["email"]):
            raise ConfigError("cloudflare requires either api_token or api_key + email")
        return RecordSpec(
            registrar=kind,
            zone=_get_str(params, "zone_id"),
            domain=domain,
            name=_get_str(params, "record_name"),
            record_type=record_type,
            ttl=_parse_int(params.get("record_ttl"), "record_ttl", default=1),
            proxied=_parse_bool(params.get("record_proxied"), default=False),
            ip_address_from_cmd=from_cmd,
            ip_address_on_update_cmd=on_update_cmd,
            credentials=MappingProxyType(credentials),
        )

    domain = _get_str(params, "domain_name")
    credentials = {
        "key_id": _get_str(params, "key_id"),
        "key_secret": _get_str(params, "key_secret"),
        "record_id": _get_str(params, "record_id", required=False),
        "record_line": _get_str(params, "record_line", required=False),
        "endpoint": _get_str(params, "endpoint", required=False),
    }
    return RecordSpec(
        registrar=kind,
        zone=domain,
        domain=domain,
        name=_get_str(params, "record_rr"),
        record_type=record_type,
        ttl=_parse_int(params.get("record_ttl"), "record_ttl", default=600),
        ip_address_from_cmd=from_cmd,
        ip_address_on_update_cmd=on_update_cmd,
        credentials=MappingProxyType(credentials),
    )


def parse_config(data: Any) -> AppConfig:
    """Validate the decoded YAML document and build an AppConfig."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("config file must contain a mapping")

    raw_global = data.get("global") or {}
    if not isinstance(raw_global, dict):
        raise ConfigError("'global' must be a mapping")
    interval = _parse_int(
        raw_global.get("check_interval_seconds"),
        "check_interval_seconds",
        default=DEFAULT_POLL_INTERVAL_SECONDS,
    )
    settings = GlobalSettings(
        post_up_wait=max(0, _parse_int(raw_global.get("post_up_wait"), "post_up_wait", default=0)),
        post_up_cmd=str(raw_global.get("post_up_cmd") or "").strip(),
        check_interval_seconds=interval if interval > 0 else DEFAULT_POLL_INTERVAL_SECONDS,
    )

    raw_records = data.get("record") or []
    if not isinstance(raw_records, list):
        raise ConfigError("'record' must be a list")

    records: List[RecordSpec] = []
    errors: List[str] = []
    for index, raw in enumerate(raw_records):
        try:
            records.append(parse_record(raw))
        except ConfigError as e:
            errors.append(f"record #{index + 1}: {e}")

    if errors:
        raise ConfigError("; ".join(errors))
    if not records:
        raise ConfigError("at least one record is required")

    return AppConfig(settings=settings, records=records)


def load_config(path: str) -> AppConfig:
    """Read and validate the YAML config file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Error reading config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Error decoding YAML config {path}: {e}") from e
    return parse_config(data)


def resolve_config_path(cli_path: Optional[str], environ: Optional[Dict[str, str]] = None) -> str:
    """DDK_CONFIG wins over --config, which wins over the default path."""
    env = os.environ if environ is None else environ
    return env.get("DDK_CONFIG", "").strip() or cli_path or DEFAULT_CONFIG_PATH


# =============================================================================
# Main
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ddns-keeper", description="Keep DNS address records in sync with this host."
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help=f"path to the YAML configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    return parser


def run_post_up(settings: GlobalSettings, shutdown: threading.Event) -> bool:
    """Wait for the network, then run the startup commands.

    Returns:
        False if shutdown was requested during the wait; the startup
        commands are not run in that case.
    """
    if settings.post_up_wait > 0:
        logger.info(f"Waiting for network... ({settings.post_up_wait} seconds)")
        if shutdown.wait(settings.post_up_wait):
            return False
    logger.info("Start")
    if settings.post_up_cmd:
        run_command_sequence(settings.post_up_cmd, timeout=COMMAND_TIMEOUT_SECONDS)
    return True


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    config_path = resolve_config_path(args.config)
    logger.info(f"Config file: {config_path}")

    try:
        config = load_config(config_path)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    settings = config.settings
    logger.info(
        f"Loaded {len(config.records)} record(s), post-up wait {settings.post_up_wait}s, "
        f"check interval {settings.check_interval_seconds}s"
    )

    shutdown = threading.Event()

    def _handle_signal(signum: int, _frame: Any) -> None:
        logger.info(f"Received signal {signal.Signals(signum).name}, shutting down...")
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    if not run_post_up(settings, shutdown):
        logger.info("DDNS service stopped.")
        return

    pool = WorkerPool(
        poll_interval=settings.check_interval_seconds,
        request_timeout=REQUEST_TIMEOUT_SECONDS,
        command_timeout=COMMAND_TIMEOUT_SECONDS,
    )
    if not pool.start(config.records):
        logger.error("No record worker could be started")
        sys.exit(1)

    logger.info("DDNS service started. Press Ctrl+C to exit.")
    while not shutdown.wait(1.0):
        pass

    pool.stop()
    pool.join(timeout=COMMAND_TIMEOUT_SECONDS + REQUEST_TIMEOUT_SECONDS)
    logger.info("DDNS service stopped.")


if __name__ == "__main__":
    main()
