"""External commands: address discovery and on-update notifications."""

from __future__ import annotations

import ipaddress
import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import CommandError, ParseError
from .records import IP_ADDRESS_PLACEHOLDER, IPAddress, RecordSpec, RecordType

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_SECONDS = 30.0

# =============================================================================
# Command Execution
# =============================================================================


def run_command(command: str, timeout: float = DEFAULT_COMMAND_TIMEOUT_SECONDS) -> str:
    """Run a shell command and return its trimmed stdout.

    Raises:
        CommandError: If the command is empty, cannot be launched, exits
            non-zero or does not finish within ``timeout`` seconds.
    """
    command = (command or "").strip()
    if not command:
        raise CommandError("command is empty")

    logger.debug(f"Run {command}")
    try:
        completed = subprocess.run(
            command,
            shell=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandError(f"'{command}' timed out after {timeout}s") from e
    except OSError as e:
        raise CommandError(f"'{command}' could not be launched: {e}") from e

    if completed.returncode != 0:
        stderr = (completed.stderr or "").strip()
        raise CommandError(f"'{command}' exited with status {completed.returncode}: {stderr}")

    return (completed.stdout or "").strip()


def run_command_sequence(
    commands: str, timeout: float = DEFAULT_COMMAND_TIMEOUT_SECONDS
) -> int:
    """Run ';'-separated commands independently, returning the failure count.

    A failing command is logged and does not stop the remaining ones.
    """
    failures = 0
    for raw in (commands or "").split(";"):
        command = raw.strip()
        if not command:
            continue
        try:
            output = run_command(command, timeout=timeout)
            logger.debug(f"Command '{command}' succeeded: {output}")
        except CommandError as e:
            failures += 1
            logger.warning(f"Error running command '{command}': {e}")
    return failures


# =============================================================================
# Address Resolver
# =============================================================================


def parse_address(text: str, record_type: Optional[RecordType] = None) -> IPAddress:
    """Parse the first line of ``text`` as an IP address literal."""
    lines = (text or "").strip().splitlines()
    candidate = lines[0].strip() if lines else ""
    if not candidate:
        raise ParseError("command returned an empty address")

    try:
        address = ipaddress.ip_address(candidate)
    except ValueError as e:
        raise ParseError(f"'{candidate}' is not a valid IP address") from e

    if record_type is not None and address.version != record_type.ip_version:
        raise ParseError(
            f"'{candidate}' is an IPv{address.version} address, "
            f"but the record type is {record_type.value}"
        )
    return address


def resolve_address(
    command: str,
    record_type: Optional[RecordType] = None,
    timeout: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
) -> IPAddress:
    """Run the discovery command and parse its output into an address.

    No retries happen here; the worker's poll interval is the retry policy.
    """
    return parse_address(run_command(command, timeout=timeout), record_type)


# =============================================================================
# Update-Notification Dispatcher
# =============================================================================


@dataclass
class DedupState:
    """Last address the on-update command already ran for, per record."""

    last_dispatched_address: Optional[IPAddress] = None


def maybe_dispatch(
    spec: RecordSpec,
    dedup: DedupState,
    new_address: IPAddress,
    runner: Callable[[str], int] = run_command_sequence,
) -> bool:
    """Run the record's on-update command once per distinct address.

    Dispatch is best-effort: the address is marked as handled once the
    commands were attempted, even if some of them failed.

    Returns:
        True if the on-update command was run.
    """
    if not spec.ip_address_on_update_cmd:
        return False

    if dedup.last_dispatched_address == new_address:
        logger.info(
            f"[{spec.fqdn}] on-update command already ran for {new_address}, skipping"
        )
        return False

    command = spec.ip_address_on_update_cmd.replace(IP_ADDRESS_PLACEHOLDER, str(new_address))
    logger.info(f"[{spec.fqdn}] Running on-update command: {command}")
    failures = runner(command)
    if failures:
        logger.warning(f"[{spec.fqdn}] {failures} on-update command(s) failed")
    dedup.last_dispatched_address = new_address
    return True
