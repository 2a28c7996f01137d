"""Shared test fixtures and fakes."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import pytest

os.environ.setdefault("MITTORCH_DATA_DIR", tempfile.mkdtemp(prefix="mittorch-test-"))
os.environ.setdefault("MITTORCH_LOG_LEVEL", "WARNING")

from mittorch.config import DeployConfig
from mittorch.engine import ReconciliationEngine
from mittorch.errors import CheckoutMissingError, CleanupError, SpawnError, SyncError
from mittorch.report import Event, Reporter


class RecordingReporter(Reporter):
    """Keeps events instead of logging them."""

    def __init__(self):
        super().__init__()
        self.events: list[Event] = []

    def emit(self, event: Event):
        self.events.append(event)

    def messages(self, severity=None) -> list[str]:
        return [e.message for e in self.events if severity is None or e.severity is severity]


@dataclass
class FakeHandle:
    pid: int
    command: str
    working_dir: Path
    exit_code: int | None = None


class FakeSupervisor:
    """Process supervisor that records every call in a shared list."""

    def __init__(self, calls: list):
        self.calls = calls
        self.handles: list[FakeHandle] = []
        self.start_error: SpawnError | None = None
        self.stop_exit_code = 0
        self.stop_error: SpawnError | None = None
        self.stop_terminates = True
        self._next_pid = 1000

    @property
    def current(self) -> FakeHandle:
        return self.handles[-1]

    def start(self, command, working_dir):
        self.calls.append("start")
        if self.start_error:
            raise self.start_error
        self._next_pid += 1
        handle = FakeHandle(pid=self._next_pid, command=command, working_dir=Path(working_dir))
        self.handles.append(handle)
        return handle

    def try_wait(self, handle):
        return handle.exit_code

    def kill_and_wait(self, handle):
        self.calls.append("kill")
        if handle.exit_code is None:
            handle.exit_code = -9

    def run_to_completion(self, command, working_dir):
        self.calls.append("stop")
        if self.stop_error:
            raise self.stop_error
        if self.stop_terminates and self.handles:
            self.current.exit_code = 0
        return self.stop_exit_code


class FakeRemote:
    def __init__(self, head: str = "", error: SyncError | None = None):
        self.head = head
        self.error = error
        self.lookups = 0

    def remote_head(self, account, repository, branch, token):
        self.lookups += 1
        if self.error:
            raise self.error
        return self.head


class FakeRepository:
    """Checkout that follows the remote head whenever it is cloned."""

    def __init__(self, calls: list, remote: FakeRemote, local: str = "", missing: bool = False):
        self.calls = calls
        self.remote = remote
        self.local = local
        self.missing = missing
        self.clone_error: SyncError | None = None
        self.remove_error: CleanupError | None = None

    def ensure_clone(self, account, repository, branch, token):
        self.calls.append("clone")
        if self.clone_error:
            raise self.clone_error
        self.missing = False
        self.local = self.remote.head

    def local_head(self, path):
        if self.missing:
            raise CheckoutMissingError(f"No git repository at {path}")
        return self.local

    def remove_checkout(self, path):
        self.calls.append("remove")
        if self.remove_error:
            raise self.remove_error
        self.missing = True


def make_deploy(**overrides) -> DeployConfig:
    values = {
        "account": "octocat",
        "repository": "hello-world",
        "branch": "main",
        "interval": 1,
        "start_command": "python -m app",
    }
    values.update(overrides)
    return DeployConfig(**values)


@pytest.fixture
def calls() -> list:
    return []


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote(head="a" * 40)


@pytest.fixture
def repository(calls, remote) -> FakeRepository:
    return FakeRepository(calls, remote, local="a" * 40)


@pytest.fixture
def supervisor(calls) -> FakeSupervisor:
    return FakeSupervisor(calls)


@pytest.fixture
def make_engine(tmp_path, calls, repository, remote, supervisor, reporter):
    """Build an engine with a started process already attached."""

    def factory(**deploy_overrides) -> ReconciliationEngine:
        engine = ReconciliationEngine(
            make_deploy(**deploy_overrides),
            tmp_path / "hello-world",
            repository,
            remote,
            supervisor,
            reporter=reporter,
            sleep=lambda seconds: calls.append(("sleep", seconds)),
        )
        engine.attach(supervisor.start("python -m app", tmp_path / "hello-world"))
        calls.clear()
        return engine

    return factory
