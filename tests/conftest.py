"""Shared fixtures for tddloop tests."""
import sys
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import patch

import pytest

# Add parent directory to path so we can import tddloop
sys.path.insert(0, str(Path(__file__).parent.parent))

import tddloop  # noqa: E402


class FakeProducer(tddloop.ChangeProducer):
    """Records every call; plan() and edit() return canned values."""

    def __init__(self, role, events, files=("src/calc.py",), plan_error=None, edit_error=None):
        self.role = role
        self.events = events
        self.files = list(files)
        self.plan_error = plan_error
        self.edit_error = edit_error
        self.plan_contexts = []
        self.edit_contexts = []

    def plan(self, context):
        self.events.append(("plan", self.role.value))
        self.plan_contexts.append(context)
        if self.plan_error:
            raise self.plan_error
        return f"plan for {self.role.value}"

    def edit(self, context):
        self.events.append(("edit", self.role.value))
        self.edit_contexts.append(context)
        if self.edit_error:
            raise self.edit_error
        return tddloop.StepResult(
            files_changed=list(self.files),
            commit_message=f"{self.role.value}: change {len(self.edit_contexts)}",
            notes=f"notes from {self.role.value}",
        )


class ScriptedVerifier(tddloop.Verifier):
    """
    Returns scripted outcomes. Each of fmt/check/test is a bool (same every
    attempt) or a list of bools indexed by call number (last value repeats).
    """

    def __init__(self, events, fmt=True, check=True, test=True):
        self.events = events
        self.script = {"format": fmt, "check": check, "test": test}
        self.calls = {"format": 0, "check": 0, "test": 0}

    def _next(self, name):
        n = self.calls[name]
        self.calls[name] += 1
        planned = self.script[name]
        ok = planned[min(n, len(planned) - 1)] if isinstance(planned, list) else planned
        self.events.append((name, ok))
        return tddloop.CheckOutcome(
            ok=ok, stdout=f"{name} output", stderr="" if ok else f"{name} failed"
        )

    def format(self):
        return self._next("format")

    def static_check(self):
        return self._next("check")

    def test(self):
        return self._next("test")


class RecordingGateway(tddloop.RepositoryGateway):
    def __init__(self, events, commit_error=None):
        self.events = events
        self.commit_error = commit_error
        self.commits = []
        self.discards = 0
        self.stages = 0
        self.reads = 0

    def init_if_needed(self):
        self.events.append(("init",))

    def read_state(self):
        self.reads += 1
        self.events.append(("read_state",))
        return tddloop.RepoState(
            last_commit_message="initial",
            last_diff="+x = 1\n",
            files=["src/calc.py", "tests/test_calc.py"],
        )

    def stage_all(self):
        self.stages += 1
        self.events.append(("stage_all",))

    def commit(self, message):
        self.events.append(("commit",))
        if self.commit_error:
            raise self.commit_error
        self.commits.append(message)
        return f"{len(self.commits):040x}"

    def discard_working_changes(self):
        self.discards += 1
        self.events.append(("discard",))


@dataclass
class Harness:
    engine: "tddloop.StepEngine"
    producers: dict
    verifier: ScriptedVerifier
    gateway: RecordingGateway
    work_dir: Path
    events: list = field(default_factory=list)


@pytest.fixture
def make_engine(tmp_path):
    """Build a StepEngine wired to recording fakes."""

    def _make(
        role=tddloop.Role.TESTER,
        step=1,
        fmt=True,
        check=True,
        test=True,
        max_attempts=3,
        policy=None,
        **producer_kwargs,
    ) -> Harness:
        events = []
        producers = {r: FakeProducer(r, events, **producer_kwargs) for r in tddloop.Role}
        verifier = ScriptedVerifier(events, fmt=fmt, check=check, test=test)
        gateway = RecordingGateway(events)
        engine = tddloop.StepEngine(
            producers,
            verifier,
            gateway,
            kata_description="# String Calculator\n\nAdd numbers.",
            max_attempts=max_attempts,
            work_dir=tmp_path,
            policy=policy,
            start_step=step,
            start_role=role,
        )
        return Harness(engine, producers, verifier, gateway, tmp_path, events)

    return _make


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for git/verification commands."""
    with patch("tddloop.subprocess.run") as mock:
        yield mock


@pytest.fixture
def mock_isatty():
    """Control terminal detection for color tests."""
    with patch("sys.stdout.isatty") as mock:
        yield mock


@pytest.fixture
def temp_config_file(tmp_path):
    """Create a temporary tddloop.toml file."""

    def _create(content: str) -> Path:
        config_path = tmp_path / "tddloop.toml"
        config_path.write_text(content)
        return config_path

    return _create


@pytest.fixture(autouse=True)
def no_log_file(monkeypatch):
    """Keep Logger from writing to a file left over by another test."""
    monkeypatch.setattr(tddloop.Logger, "_log_file", None)
