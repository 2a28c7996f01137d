"""
Supervisor loop.

Performs the initial clone and start, then drives the reconciliation engine
at a fixed interval until a shutdown is requested, and finally kills the
supervised process. The shutdown flag is only looked at between ticks.
"""

import logging
import signal
import threading

from .config import DeployConfig
from .engine import ReconciliationEngine
from .errors import CleanupError, SpawnError, SyncError
from .process import ProcessSupervisor
from .report import Reporter
from .repository import RepositorySource

logger = logging.getLogger(__name__)


class ShutdownSignal:
    """One-shot shutdown flag, set from signal handlers."""

    def __init__(self):
        self._event = threading.Event()

    def install(self, signals=(signal.SIGINT, signal.SIGTERM)):
        """Set the flag when any of the given signals arrives."""
        for signum in signals:
            signal.signal(signum, self._handle)

    def _handle(self, signum, frame):
        logger.warning(f"Signal {signal.Signals(signum).name} received, stopping...")
        self._event.set()

    def request(self):
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if shutdown was requested."""
        return self._event.wait(timeout)


class SupervisorLoop:
    """Drives the engine until shutdown."""

    def __init__(
        self,
        deploy: DeployConfig,
        engine: ReconciliationEngine,
        repository: RepositorySource,
        supervisor: ProcessSupervisor,
        shutdown: ShutdownSignal,
        reporter: Reporter = None,
    ):
        self.deploy = deploy
        self.engine = engine
        self.repository = repository
        self.supervisor = supervisor
        self.shutdown = shutdown
        self.reporter = reporter or engine.reporter
        self.ticks = 0

    def run(self) -> int:
        """Run until shutdown. Returns the process exit code."""
        self.reporter.updated(
            "Starting mittorch orchestrator",
            account=self.deploy.account,
            repository=self.deploy.repository,
            branch=self.deploy.branch,
        )

        self._prepare_repository()

        start_command = self.deploy.start_command
        if not start_command:
            self.reporter.failure("No start-command configured.")
            return 1

        try:
            handle = self.supervisor.start(start_command, self.engine.checkout_dir)
        except SpawnError as e:
            self.reporter.failure(f"Could not start supervised process: {e}")
            return 1
        self.engine.attach(handle)
        self.reporter.success("Supervised process started.", pid=handle.pid)

        while not self.shutdown.is_set():
            if self.shutdown.wait(self.deploy.interval):
                break
            self._tick()

        self.engine.shutdown()
        self.reporter.success("Mittorch exited cleanly.", ticks=self.ticks)
        return 0

    def _prepare_repository(self):
        try:
            self.repository.ensure_clone(
                self.deploy.account,
                self.deploy.repository,
                self.deploy.branch,
                self.deploy.token,
            )
        except (SyncError, CleanupError) as e:
            self.reporter.failure(f"Initial clone failed: {e}", error=type(e).__name__)
        else:
            self.reporter.success("Repository prepared.")

    def _tick(self):
        self.ticks += 1
        try:
            outcome = self.engine.tick()
        except Exception as e:
            logger.exception(f"Unexpected error during tick {self.ticks}: {e}")
            return
        logger.debug(f"Tick {self.ticks}: {outcome.value} (state: {self.engine.state.value})")
