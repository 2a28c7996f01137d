"""
Reconciliation engine.

Each tick answers two questions in order: is the supervised process still
alive, and does the local checkout still match the remote branch? A dead
process is restarted (after pulling any update it missed); a live process on
a stale checkout is stopped, re-cloned and started again. At most one
corrective action runs per tick, and no error escapes a tick except through
the loop's last-resort handler.
"""

import time
from enum import Enum
from pathlib import Path
from typing import Callable

from .config import DeployConfig, settings
from .errors import CheckoutMissingError, CleanupError, SpawnError, SyncError
from .process import ProcessHandle, ProcessSupervisor, describe_exit
from .report import Reporter
from .repository import CommitId, RemoteRef, RepositorySource, short_sha


class SupervisionState(Enum):
    RUNNING = "running"
    CRASH_RECOVERED = "crash_recovered"
    RELOADING = "reloading"
    DRAINING = "draining"
    STOPPED = "stopped"


class TickOutcome(Enum):
    UNCHANGED = "unchanged"
    INCONCLUSIVE = "inconclusive"
    RECLONED = "recloned"
    RELOADED = "reloaded"
    RELOAD_ABORTED = "reload_aborted"
    RESTARTED = "restarted"
    RESTART_FAILED = "restart_failed"


def has_drifted(local: CommitId, remote: CommitId) -> bool:
    """True only when both hashes are known and they differ."""
    return bool(local) and bool(remote) and local != remote


class ReconciliationEngine:
    """State machine that keeps one process running on the latest commit."""

    def __init__(
        self,
        deploy: DeployConfig,
        checkout_dir: Path,
        repository: RepositorySource,
        remote: RemoteRef,
        supervisor: ProcessSupervisor,
        reporter: Reporter = None,
        stop_grace_seconds: float = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.deploy = deploy
        self.checkout_dir = Path(checkout_dir)
        self.repository = repository
        self.remote = remote
        self.supervisor = supervisor
        self.reporter = reporter or Reporter()
        if stop_grace_seconds is None:
            stop_grace_seconds = settings.stop_grace_seconds
        self.stop_grace_seconds = stop_grace_seconds
        self._sleep = sleep

        self.state: SupervisionState | None = None
        self.handle: ProcessHandle | None = None

    def attach(self, handle: ProcessHandle):
        """Adopt the initially started process."""
        self.handle = handle
        self.state = SupervisionState.RUNNING

    def tick(self) -> TickOutcome:
        """Run one reconciliation pass."""
        if self.handle is None or self.state is None:
            raise RuntimeError("No supervised process attached")
        if self.state in (SupervisionState.DRAINING, SupervisionState.STOPPED):
            raise RuntimeError(f"Cannot tick while {self.state.value}")

        exit_code = self.supervisor.try_wait(self.handle)
        if exit_code is not None:
            return self._recover_from_crash(exit_code)
        return self._check_for_drift()

    def shutdown(self):
        """Kill the current process. The engine is unusable afterwards."""
        self.state = SupervisionState.DRAINING
        self.reporter.warning("Stopping supervised process...")
        if self.handle is not None:
            self.supervisor.kill_and_wait(self.handle)
        self.state = SupervisionState.STOPPED

    # Crash recovery

    def _recover_from_crash(self, exit_code: int) -> TickOutcome:
        self.state = SupervisionState.CRASH_RECOVERED
        self.reporter.warning(
            f"Supervised process exited with code {describe_exit(exit_code)}",
            exit_code=exit_code,
            pid=self.handle.pid,
        )

        self.reporter.updated("Checking for possible updates before restart...")
        self._update_before_restart()

        if not self._restart():
            return TickOutcome.RESTART_FAILED

        self.reporter.success("Process restarted after crash.", pid=self.handle.pid)
        self.state = SupervisionState.RUNNING
        return TickOutcome.RESTARTED

    def _update_before_restart(self):
        """Pull a missed update before restarting. Every failure is logged and tolerated."""
        try:
            local = self.repository.local_head(self.checkout_dir)
        except CheckoutMissingError as e:
            self.reporter.failure(f"Could not open local repository during crash recovery: {e}")
            self._clone("Repository re-cloned before restart.")
            return

        try:
            remote = self._remote_head()
        except SyncError as e:
            self.reporter.failure(f"Failed to query remote SHA: {e}", error=type(e).__name__)
            return

        if not has_drifted(local, remote):
            self.reporter.updated("No new commits detected.")
            return

        self.reporter.updated(
            f"Update available: {short_sha(local)} → {short_sha(remote)}",
            local=local,
            remote=remote,
        )
        self.reporter.warning("Updating repository before restart...")
        try:
            self.repository.remove_checkout(self.checkout_dir)
        except CleanupError as e:
            self.reporter.failure(f"Cleanup failed: {e}")
            return

        self._clone("Repository updated successfully.")

    # Drift handling

    def _check_for_drift(self) -> TickOutcome:
        try:
            local = self.repository.local_head(self.checkout_dir)
        except CheckoutMissingError:
            self.reporter.warning("Local repo missing, retrying clone.")
            self._clone("Repository re-cloned successfully.", failure_prefix="Retry failed")
            return TickOutcome.RECLONED

        try:
            remote = self._remote_head()
        except SyncError as e:
            self.reporter.failure(f"Failed to query remote SHA: {e}", error=type(e).__name__)
            return TickOutcome.INCONCLUSIVE

        if not local or not remote:
            self.reporter.warning("Skipping (invalid SHAs)", local=local, remote=remote)
            return TickOutcome.INCONCLUSIVE

        if local == remote:
            self.reporter.updated("No changes detected.", commit=short_sha(local))
            return TickOutcome.UNCHANGED

        return self._reload(local, remote)

    def _reload(self, local: CommitId, remote: CommitId) -> TickOutcome:
        self.state = SupervisionState.RELOADING
        self.reporter.updated(
            f"Change detected: {short_sha(local)} → {short_sha(remote)}",
            local=local,
            remote=remote,
        )

        self._stop_current()

        self.reporter.warning("Removing old repository...")
        try:
            self.repository.remove_checkout(self.checkout_dir)
        except CleanupError as e:
            self.reporter.failure(f"Cleanup failed: {e}")
            return TickOutcome.RELOAD_ABORTED

        if not self._clone(None):
            return TickOutcome.RELOAD_ABORTED

        if not self._restart():
            return TickOutcome.RESTART_FAILED

        self.reporter.success("Reloaded cleanly.", commit=short_sha(remote), pid=self.handle.pid)
        self.state = SupervisionState.RUNNING
        return TickOutcome.RELOADED

    def _stop_current(self):
        """Stop the running process, gracefully if a stop command exists."""
        stop_command = self.deploy.stop_command
        if not stop_command:
            self.reporter.warning("Killing supervised process...", pid=self.handle.pid)
            self.supervisor.kill_and_wait(self.handle)
            return

        self.reporter.updated("Executing stop...")
        try:
            code = self.supervisor.run_to_completion(stop_command, self.checkout_dir)
        except SpawnError as e:
            self.reporter.failure(f"stop command failed: {e}")
        else:
            if code == 0:
                self.reporter.success("stop completed.")
            else:
                self.reporter.failure(f"stop command failed with code {describe_exit(code)}.", exit_code=code)

        self._sleep(self.stop_grace_seconds)

        # Two supervised processes must never coexist
        if self.supervisor.try_wait(self.handle) is None:
            self.reporter.warning("Process still running after stop command, killing it.", pid=self.handle.pid)
            self.supervisor.kill_and_wait(self.handle)

    # Shared steps

    def _remote_head(self) -> CommitId:
        return self.remote.remote_head(
            self.deploy.account,
            self.deploy.repository,
            self.deploy.branch,
            self.deploy.token,
        )

    def _clone(self, success_message: str | None, failure_prefix: str = "Re-clone failed") -> bool:
        try:
            self.repository.ensure_clone(
                self.deploy.account,
                self.deploy.repository,
                self.deploy.branch,
                self.deploy.token,
            )
        except (SyncError, CleanupError) as e:
            self.reporter.failure(f"{failure_prefix}: {e}", error=type(e).__name__)
            return False
        if success_message:
            self.reporter.success(success_message)
        return True

    def _restart(self) -> bool:
        """Start a fresh process. On failure the old (dead) handle is kept."""
        start_command = self.deploy.start_command
        if not start_command:
            self.reporter.failure("No start command configured, cannot restart.")
            return False

        try:
            self.handle = self.supervisor.start(start_command, self.checkout_dir)
        except SpawnError as e:
            self.reporter.failure(f"Restart failed: {e}")
            return False
        return True
