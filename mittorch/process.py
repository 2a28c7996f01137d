"""
Process supervisor for the deployed command.

Starts the single supervised process through a shell inside the checkout,
polls it without blocking, runs the stop command to completion and kills the
whole process tree when asked to. Output is not captured; the child inherits
our stdout/stderr.
"""

import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import psutil

from .config import settings
from .errors import SpawnError

logger = logging.getLogger(__name__)


@dataclass
class ProcessHandle:
    """Information about the supervised process."""

    command: str
    working_dir: Path
    process: subprocess.Popen
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def pid(self) -> int:
        return self.process.pid


def describe_exit(code: int | None) -> str:
    """Human-readable exit status (Popen reports signals as negative codes)."""
    if code is None:
        return "unknown"
    if code < 0:
        try:
            return f"signal {signal.Signals(-code).name}"
        except ValueError:
            return f"signal {-code}"
    return str(code)


class ProcessSupervisor:
    """Owns the lifecycle of the supervised child process."""

    def __init__(self, shell: str = None, reap_timeout: float = 5):
        self.shell = shell or settings.shell
        self.reap_timeout = reap_timeout

    def start(self, command: str, working_dir: Path) -> ProcessHandle:
        """Start the command in its own session. Raises SpawnError on failure."""
        logger.info(f"Starting supervised process in {working_dir}")
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                executable=self.shell,
                cwd=str(working_dir),
                env=os.environ.copy(),
                start_new_session=True,  # Own process group, killed as a unit
            )
        except OSError as e:
            raise SpawnError(f"Failed to start '{command}': {e}") from e

        logger.info(f"Process started (PID {process.pid})")
        return ProcessHandle(command=command, working_dir=Path(working_dir), process=process)

    def try_wait(self, handle: ProcessHandle) -> int | None:
        """Exit code if the process has exited, None while it is running."""
        return handle.process.poll()

    def kill_and_wait(self, handle: ProcessHandle):
        """Forcefully kill the process and its descendants, then reap it.

        Best effort: failures are logged and otherwise ignored.
        """
        process = handle.process

        # A reaped PID may already belong to someone else
        if process.poll() is not None:
            logger.info(f"Process {process.pid} already exited with code {describe_exit(process.returncode)}")
            return

        # Collect descendants first; some may have left our process group
        try:
            descendants = psutil.Process(process.pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            descendants = []

        try:
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        except (ProcessLookupError, PermissionError) as e:
            logger.debug(f"killpg for PID {process.pid} failed: {e}")
            try:
                process.kill()
            except OSError:
                pass

        for child in descendants:
            try:
                child.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        try:
            process.wait(timeout=self.reap_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Process {process.pid} did not exit after SIGKILL")

        if descendants:
            _, alive = psutil.wait_procs(descendants, timeout=self.reap_timeout)
            for child in alive:
                logger.warning(f"Descendant process {child.pid} survived SIGKILL")

        logger.info(f"Stopped process {process.pid}")

    def run_to_completion(self, command: str, working_dir: Path) -> int:
        """Run a command through the shell and block until it exits."""
        logger.info(f"Running '{command}' in {working_dir}")
        try:
            completed = subprocess.run(
                command,
                shell=True,
                executable=self.shell,
                cwd=str(working_dir),
                env=os.environ.copy(),
            )
        except OSError as e:
            raise SpawnError(f"Failed to run '{command}': {e}") from e
        return completed.returncode
