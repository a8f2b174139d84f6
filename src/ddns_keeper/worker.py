"""Per-record reconciliation workers and the pool that runs them."""

from __future__ import annotations

import functools
import logging
import threading
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .commands import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DedupState,
    maybe_dispatch,
    resolve_address,
    run_command_sequence,
)
from .errors import ConfigError, DDNSError
from .records import IPAddress, ReconcileOutcome, RecordSpec, RecordType
from .registrars import DEFAULT_REQUEST_TIMEOUT_SECONDS, Registrar, create_registrar

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 60

Resolver = Callable[[str, Optional[RecordType]], IPAddress]
CommandRunner = Callable[[str], int]


class WorkerState(Enum):
    """Lifecycle states of a reconciliation worker."""

    IDLE = "idle"
    RESOLVING = "resolving"
    RECONCILING = "reconciling"
    DISPATCHING = "dispatching"
    SLEEPING = "sleeping"


# =============================================================================
# Reconciliation Worker
# =============================================================================


class ReconciliationWorker:
    """Keeps one record in sync: resolve, reconcile, notify, sleep, repeat.

    The worker owns its RecordSpec and DedupState; nothing is shared with other
    workers. Errors never escape a cycle.
    """

    def __init__(
        self,
        spec: RecordSpec,
        registrar: Registrar,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        resolver: Optional[Resolver] = None,
        command_runner: Optional[CommandRunner] = None,
        shutdown: Optional[threading.Event] = None,
    ):
        self.spec = spec
        self.registrar = registrar
        self.poll_interval = poll_interval
        self.state = WorkerState.IDLE
        self.dedup = DedupState()
        self._resolver = resolver or functools.partial(resolve_address, timeout=command_timeout)
        self._command_runner = command_runner or functools.partial(
            run_command_sequence, timeout=command_timeout
        )
        self._shutdown = shutdown or threading.Event()

    def _enter(self, state: WorkerState, visited: List[WorkerState]) -> None:
        logger.debug(f"[{self.spec.fqdn}] {self.state.value} -> {state.value}")
        self.state = state
        visited.append(state)

    def run_cycle(self) -> List[WorkerState]:
        """Run one reconciliation cycle and return the states it went through."""
        visited: List[WorkerState] = []
        fqdn = self.spec.fqdn
        try:
            self._enter(WorkerState.RESOLVING, visited)
            address = self._resolver(self.spec.ip_address_from_cmd, self.spec.record_type)
            logger.debug(f"[{fqdn}] Resolved address {address}")

            self._enter(WorkerState.RECONCILING, visited)
            outcome = self.registrar.reconcile(self.spec, address)

            if outcome is ReconcileOutcome.UPDATED:
                self._enter(WorkerState.DISPATCHING, visited)
                maybe_dispatch(self.spec, self.dedup, address, runner=self._command_runner)
        except DDNSError as e:
            logger.warning(
                f"[{fqdn}] {self.state.value} failed ({e.kind}): {e}"
            )
        except Exception as e:
            logger.error(f"[{fqdn}] Unexpected error while {self.state.value}: {e}", exc_info=True)

        self._enter(WorkerState.SLEEPING, visited)
        return visited

    def run(self) -> None:
        """Cycle until the shutdown event is set."""
        logger.info(
            f"Starting worker for {self.spec.fqdn} ({self.spec.record_type.value}) "
            f"via {self.registrar.name}, polling every {self.poll_interval}s"
        )
        while not self._shutdown.is_set():
            self.run_cycle()
            self._shutdown.wait(self.poll_interval)
        logger.info(f"Worker for {self.spec.fqdn} stopped")


# =============================================================================
# Worker Pool Supervisor
# =============================================================================


class WorkerPool:
    """Runs one ReconciliationWorker thread per configured record."""

    def __init__(
        self,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        registrar_factory: Callable[[RecordSpec, float], Registrar] = create_registrar,
    ):
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.command_timeout = command_timeout
        self._registrar_factory = registrar_factory
        self._shutdown = threading.Event()
        self.workers: List[ReconciliationWorker] = []
        self.threads: List[threading.Thread] = []

    def start(self, records: Sequence[RecordSpec]) -> List[ReconciliationWorker]:
        """Spawn a worker per record and return without waiting for them."""
        started: List[ReconciliationWorker] = []
        for spec in records:
            try:
                registrar = self._registrar_factory(spec, self.request_timeout)
            except ConfigError as e:
                logger.error(
                    f"Failed to initialize {spec.registrar.value} registrar for {spec.fqdn}: {e}"
                )
                continue

            worker = ReconciliationWorker(
                spec,
                registrar,
                poll_interval=self.poll_interval,
                command_timeout=self.command_timeout,
                shutdown=self._shutdown,
            )
            thread = threading.Thread(
                target=worker.run, name=f"ddns-worker-{spec.fqdn}", daemon=True
            )
            thread.start()
            self.workers.append(worker)
            self.threads.append(thread)
            started.append(worker)

        logger.info(f"Started {len(started)} of {len(records)} record worker(s)")
        return started

    def stop(self) -> None:
        """Ask every worker to stop after its current cycle."""
        self._shutdown.set()

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self.threads:
            thread.join(timeout)
