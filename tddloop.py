#!/usr/bin/env python3
"""
tddloop.py - Red-Green-Refactor step engine

Rotates three roles (Tester, Implementor, Refactorer) across repeated steps.
Each step asks a role-specific change producer for a plan, applies its edits,
runs the format/check/test commands, and either commits the change and hands
over to the next role or discards it and tries again.
Configuration is loaded from tddloop.toml.
"""

import argparse
import atexit
import json
import os
import re
import shutil
import subprocess
import sys
import threading
import tomllib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, TextIO

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError


CONFIG_FILE = "tddloop.toml"
LOG_FILE = "tddloop.log"
ARTIFACT_DIR = ".tdd"
LLM_TIMEOUT_SECONDS = 120.0


# ============================================================================
# ANSI Color Codes (stdlib-only terminal styling)
# ============================================================================
class Colors:
    """ANSI escape codes for terminal colors."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_MAGENTA = "\033[95m"
    BRIGHT_CYAN = "\033[96m"


class Logger:
    """Centralized logging and output formatting."""

    _log_file: Optional[TextIO] = None

    @classmethod
    def set_log_file(cls, log_file: Optional[TextIO]) -> None:
        """Set the log file for verbose output."""
        cls._log_file = log_file

    @staticmethod
    def color(text: str, *codes: str) -> str:
        """Wrap text with ANSI color codes."""
        if not sys.stdout.isatty():
            return text
        return "".join(codes) + text + Colors.RESET

    @staticmethod
    def strip_ansi(text: str) -> str:
        """Remove ANSI escape codes from text."""
        return re.sub(r"\033\[[0-9;]*m", "", text)

    @staticmethod
    def timestamp() -> str:
        return datetime.now().strftime("%H:%M:%S")

    @classmethod
    def write(cls, text: str) -> None:
        """Write text to log file (without ANSI codes)."""
        if cls._log_file:
            cls._log_file.write(cls.strip_ansi(text))
            cls._log_file.flush()

    @classmethod
    def banner(cls, text: str, char: str = "=", width: int = 60) -> None:
        """Print a prominent banner."""
        line = char * width
        print(cls.color(line, Colors.BRIGHT_CYAN, Colors.BOLD))
        print(cls.color(text.center(width), Colors.BRIGHT_CYAN, Colors.BOLD))
        print(cls.color(line, Colors.BRIGHT_CYAN, Colors.BOLD))
        ts = cls.timestamp()
        cls.write(f"[{ts}] ┏" + "━" * 78 + "┓\n")
        cls.write(f"[{ts}] ┃" + text.center(78) + "┃\n")
        cls.write(f"[{ts}] ┗" + "━" * 78 + "┛\n")

    @classmethod
    def phase(cls, phase: str, description: str) -> None:
        """Print a TDD phase header (RED/GREEN/REFACTOR/VERIFY)."""
        phase_colors = {
            "RED": Colors.BRIGHT_RED,
            "GREEN": Colors.BRIGHT_GREEN,
            "REFACTOR": Colors.BRIGHT_YELLOW,
            "VERIFY": Colors.BRIGHT_BLUE,
            "ROLLBACK": Colors.BRIGHT_MAGENTA,
        }
        phase_color = phase_colors.get(phase, Colors.CYAN)
        print(
            f"\n{cls.color(f'[{phase}]', phase_color, Colors.BOLD)} {cls.color(description, Colors.WHITE)}"
        )
        cls.write("\n")
        cls.write("─" * 80 + "\n")
        cls.write(f"[{cls.timestamp()}] ▶ [{phase}] {description}\n")
        cls.write("─" * 80 + "\n")

    @classmethod
    def info(cls, msg: str, indent: int = 0) -> None:
        prefix = "  " * indent
        print(f"{prefix}{cls.color('▸', Colors.CYAN)} {msg}")
        cls.write(f"[{cls.timestamp()}] {prefix}> {msg}\n")

    @classmethod
    def success(cls, msg: str, indent: int = 0) -> None:
        prefix = "  " * indent
        print(
            f"{prefix}{cls.color('✓', Colors.BRIGHT_GREEN, Colors.BOLD)} {cls.color(msg, Colors.GREEN)}"
        )
        cls.write(f"[{cls.timestamp()}] {prefix}[OK] {msg}\n")

    @classmethod
    def warning(cls, msg: str, indent: int = 0) -> None:
        prefix = "  " * indent
        print(
            f"{prefix}{cls.color('⚠', Colors.BRIGHT_YELLOW, Colors.BOLD)} {cls.color(msg, Colors.YELLOW)}"
        )
        cls.write(f"[{cls.timestamp()}] {prefix}[WARN] {msg}\n")

    @classmethod
    def error(cls, msg: str, indent: int = 0) -> None:
        prefix = "  " * indent
        print(
            f"{prefix}{cls.color('✗', Colors.BRIGHT_RED, Colors.BOLD)} {cls.color(msg, Colors.RED)}"
        )
        cls.write(f"[{cls.timestamp()}] {prefix}[ERROR] {msg}\n")

    @classmethod
    def prompt(cls, prompt_text: str, label: str = "PROMPT TO LLM") -> None:
        """Log a prompt with clear visual demarcation (log file only)."""
        ts = cls.timestamp()
        cls.write("\n")
        cls.write(f"[{ts}] ┌" + "─" * 78 + "┐\n")
        cls.write(f"[{ts}] │" + f" {label} ".center(78) + "│\n")
        cls.write(f"[{ts}] ├" + "─" * 78 + "┤\n")
        for line in prompt_text.split("\n"):
            cls.write(f"[{ts}] │  {line}\n")
        cls.write(f"[{ts}] └" + "─" * 78 + "┘\n")
        cls.write("\n")


# ============================================================================
# Exceptions
# ============================================================================


class TddLoopError(Exception):
    """Base class for all application errors."""


class ConfigError(TddLoopError):
    """FATAL: configuration file or engine wiring is invalid."""


class LlmError(TddLoopError):
    """FATAL: the LLM backend could not produce a usable response."""


class PlanArtifactError(TddLoopError):
    """FATAL: the plan artifact for a step is missing or cannot be parsed into edits."""


class GatewayError(TddLoopError):
    """FATAL: a git operation failed."""

    def __init__(self, message: str, command: Optional[list[str]] = None, stderr: str = ""):
        super().__init__(message)
        self.command = command or []
        self.stderr = stderr


class EngineBusyError(TddLoopError):
    """advance() was called while another step is still running on the same engine."""


class AttemptsExhaustedError(TddLoopError):
    """
    FATAL: every attempt of a step failed its role's success predicate.

    The working tree has been rolled back and the engine's counters are
    exactly as they were before the step began.
    """

    def __init__(self, step: int, role: "Role", attempts: int):
        super().__init__(
            f"Max attempts ({attempts}) reached for step {step} ({role.label})"
        )
        self.step = step
        self.role = role
        self.attempts = attempts


# ============================================================================
# Data Models
# ============================================================================


class Role(Enum):
    """The three TDD personas, cycling Tester -> Implementor -> Refactorer."""

    TESTER = "tester"
    IMPLEMENTOR = "implementor"
    REFACTORER = "refactorer"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def phase(self) -> str:
        """TDD phase owned by this role."""
        return {
            Role.TESTER: "RED",
            Role.IMPLEMENTOR: "GREEN",
            Role.REFACTORER: "REFACTOR",
        }[self]

    def next_role(self) -> "Role":
        return {
            Role.TESTER: Role.IMPLEMENTOR,
            Role.IMPLEMENTOR: Role.REFACTORER,
            Role.REFACTORER: Role.TESTER,
        }[self]


@dataclass(frozen=True)
class StepContext:
    """
    Snapshot of the repository handed to the producer for one step.

    Built once before planning and shared, unchanged, by every attempt of the
    step, even though attempts discard and re-apply edits in between.
    """

    role: Role
    step_index: int
    kata_description: str
    last_commit_message: str
    last_diff: str
    file_list: tuple[str, ...]


@dataclass
class StepResult:
    """Producer output for one attempt."""

    files_changed: list[str]
    commit_message: str
    notes: str


@dataclass(frozen=True)
class CheckOutcome:
    """Result of one verification command."""

    ok: bool
    stdout: str = ""
    stderr: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "stdout": self.stdout, "stderr": self.stderr}


@dataclass
class RepoState:
    last_commit_message: str
    last_diff: str
    files: list[str]


@dataclass
class AuditRecord:
    """Durable record of a successful step, written to .tdd/logs/."""

    step: int
    role: Role
    plan: str
    attempts: int
    commit_id: str
    format_outcome: CheckOutcome
    check_outcome: CheckOutcome
    test_outcome: CheckOutcome
    files_changed: list[str] = field(default_factory=list)
    completed_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "role": self.role.value,
            "plan": self.plan,
            "attempts": self.attempts,
            "commit_id": self.commit_id,
            "format_outcome": self.format_outcome.to_dict(),
            "check_outcome": self.check_outcome.to_dict(),
            "test_outcome": self.test_outcome.to_dict(),
            "files_changed": list(self.files_changed),
            "completed_at": self.completed_at,
        }


# ============================================================================
# Collaborator Interfaces
# ============================================================================


class ChangeProducer(ABC):
    """Proposes and applies the change for one role."""

    @abstractmethod
    def plan(self, context: StepContext) -> str:
        """Return the plan text for this step. Raises on backend error."""

    @abstractmethod
    def edit(self, context: StepContext) -> StepResult:
        """Apply the planned edits to the working tree and describe them."""


class Verifier(ABC):
    """Runs the three verification checks. Failures are reported via ok=False, never raised."""

    @abstractmethod
    def format(self) -> CheckOutcome: ...

    @abstractmethod
    def static_check(self) -> CheckOutcome: ...

    @abstractmethod
    def test(self) -> CheckOutcome: ...


class RepositoryGateway(ABC):
    """Owns the repository working tree and index."""

    @abstractmethod
    def init_if_needed(self) -> None: ...

    @abstractmethod
    def read_state(self) -> RepoState: ...

    @abstractmethod
    def stage_all(self) -> None: ...

    @abstractmethod
    def commit(self, message: str) -> str:
        """Commit the staged changes and return the commit id."""

    @abstractmethod
    def discard_working_changes(self) -> None:
        """Restore the working tree to the last commit."""


# ============================================================================
# Verification-Judgment Policy
# ============================================================================


def judge(
    role: Role,
    format_outcome: CheckOutcome,
    check_outcome: CheckOutcome,
    test_outcome: CheckOutcome,
) -> bool:
    """
    Decide whether an attempt satisfies its role.

    Tester must leave the code compiling with a failing test (red).
    Implementor and Refactorer must leave it compiling with passing tests (green).
    The format outcome is observed but does not take part in the decision.
    """
    if role is Role.TESTER:
        return check_outcome.ok and not test_outcome.ok
    return check_outcome.ok and test_outcome.ok


@dataclass(frozen=True)
class JudgmentPolicy:
    """
    Replaceable success predicate used by StepEngine.

    Attributes:
        format_gates_success: When True, a failing format check fails the
            attempt regardless of the role predicate. Off by default.
    """

    format_gates_success: bool = False

    def __call__(
        self,
        role: Role,
        format_outcome: CheckOutcome,
        check_outcome: CheckOutcome,
        test_outcome: CheckOutcome,
    ) -> bool:
        if self.format_gates_success and not format_outcome.ok:
            return False
        return judge(role, format_outcome, check_outcome, test_outcome)


Policy = Callable[[Role, CheckOutcome, CheckOutcome, CheckOutcome], bool]


# ============================================================================
# Context Builder
# ============================================================================


def build_context(
    repo_state: RepoState, role: Role, step: int, kata_description: str
) -> StepContext:
    return StepContext(
        role=role,
        step_index=step,
        kata_description=kata_description,
        last_commit_message=repo_state.last_commit_message,
        last_diff=repo_state.last_diff,
        file_list=tuple(repo_state.files),
    )


def kata_goal(kata_description: str, limit: int = 72) -> str:
    """First non-empty line of the kata, without markdown heading marks."""
    for line in kata_description.splitlines():
        line = line.strip().lstrip("#").strip()
        if line:
            return line if len(line) <= limit else line[: limit - 3] + "..."
    return ""


def compose_commit_message(
    result: StepResult,
    role: Role,
    step: int,
    kata_description: str,
    test_outcome: CheckOutcome,
) -> str:
    """
    Build the commit message for a successful step.

    The producer's one-line summary comes first, followed by a structured
    block with role, step, rationale, changed files and the test verdict.
    """
    files = "\n".join(f"- {path}" for path in result.files_changed) or "- (none)"
    return (
        f"{result.commit_message.strip()}\n"
        f"\n"
        f"Context:\n"
        f"- Role: {role.label}\n"
        f"- Step: {step}\n"
        f"- Kata goal: {kata_goal(kata_description)}\n"
        f"\n"
        f"Rationale:\n"
        f"{result.notes.strip()}\n"
        f"\n"
        f"Diff summary:\n"
        f"{files}\n"
        f"\n"
        f"Verification:\n"
        f"Tests: {'PASS' if test_outcome.ok else 'FAIL'}\n"
    )


# ============================================================================
# Audit Persistence
# ============================================================================

_RECORD_NAME = re.compile(r"^step-(\d+)-([a-z]+)\.json$")


class AuditTrail:
    """Plan and audit artifacts under <work_dir>/.tdd/, keyed by (step, role)."""

    def __init__(self, work_dir: Path | str):
        self.root = Path(work_dir) / ARTIFACT_DIR

    def plan_path(self, step: int, role: Role) -> Path:
        return self.root / "plan" / f"step-{step}-{role.value}.md"

    def record_path(self, step: int, role: Role) -> Path:
        return self.root / "logs" / f"step-{step}-{role.value}.json"

    def save_plan(self, step: int, role: Role, plan: str) -> Path:
        path = self.plan_path(step, role)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(plan, encoding="utf-8")
        return path

    def save_record(self, record: AuditRecord) -> Path:
        path = self.record_path(record.step, record.role)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record.to_dict(), indent=2), encoding="utf-8")
        return path

    def latest_record(self) -> Optional[dict[str, Any]]:
        """
        Load the audit record with the highest step number.

        Only used by status tooling; the engine never reads the trail back.

        Returns:
            The record as a dict, or None if no step has been recorded
        """
        log_dir = self.root / "logs"
        if not log_dir.is_dir():
            return None

        latest: Optional[tuple[int, Path]] = None
        for path in log_dir.iterdir():
            match = _RECORD_NAME.match(path.name)
            if not match:
                continue
            step = int(match.group(1))
            if latest is None or step > latest[0]:
                latest = (step, path)

        if latest is None:
            return None
        try:
            return json.loads(latest[1].read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise TddLoopError(f"Corrupt audit record {latest[1]}: {e}") from e

    def resume_point(self) -> tuple[int, Role]:
        """Step and role that follow the latest recorded step."""
        record = self.latest_record()
        if record is None:
            return 1, Role.TESTER
        try:
            role = Role(record["role"])
            step = int(record["step"])
        except (KeyError, TypeError, ValueError) as e:
            raise TddLoopError(f"Audit record is missing step/role: {e}") from e
        return step + 1, role.next_role()


# ============================================================================
# Step Engine
# ============================================================================


class StepEngine:
    """
    Drives one red/green/refactor step per advance() call.

    Owns the step and role counters. They only move after a committed step,
    and always together: the role rotates one position and the step grows by
    one. Producers, verifier and gateway are injected and never mutate them.
    """

    def __init__(
        self,
        producers: Mapping[Role, ChangeProducer],
        verifier: Verifier,
        gateway: RepositoryGateway,
        kata_description: str,
        max_attempts: int,
        work_dir: Path | str,
        policy: Optional[Policy] = None,
        start_step: int = 1,
        start_role: Role = Role.TESTER,
    ):
        missing = [role.label for role in Role if role not in producers]
        if missing:
            raise ConfigError(f"No change producer for role(s): {', '.join(missing)}")
        if max_attempts < 1:
            raise ConfigError(f"max_attempts must be at least 1, got {max_attempts}")
        if start_step < 1:
            raise ConfigError(f"start_step must be at least 1, got {start_step}")

        self._producers = dict(producers)
        self._verifier = verifier
        self._gateway = gateway
        self._kata_description = kata_description
        self._max_attempts = max_attempts
        self._audit = AuditTrail(work_dir)
        self._policy: Policy = policy if policy is not None else JudgmentPolicy()
        self._lock = threading.Lock()

        self._current_step = start_step
        self._current_role = start_role

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def current_role(self) -> Role:
        return self._current_role

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def advance(self) -> AuditRecord:
        """
        Perform exactly one step.

        Returns:
            The audit record of the committed step

        Raises:
            AttemptsExhaustedError: no attempt satisfied the role predicate
            EngineBusyError: another advance() is already running
            TddLoopError / OSError: a collaborator failed; the run must stop
        """
        if not self._lock.acquire(blocking=False):
            raise EngineBusyError("A step is already in progress on this engine")
        try:
            return self._run_step()
        finally:
            self._lock.release()

    def run(self, steps: int) -> list[AuditRecord]:
        """Advance `steps` times, stopping at the first error."""
        records = []
        for i in range(1, steps + 1):
            Logger.info(f"Step {i}/{steps}")
            records.append(self.advance())
        return records

    def _run_step(self) -> AuditRecord:
        step = self._current_step
        role = self._current_role
        producer = self._producers[role]

        Logger.phase(role.phase, f"Step {step} as {role.label}")

        context = build_context(
            self._gateway.read_state(), role, step, self._kata_description
        )

        Logger.info(f"Planning step {step} as {role.label}...")
        plan = producer.plan(context)
        plan_path = self._audit.save_plan(step, role, plan)
        Logger.info(f"Plan saved to {plan_path}", indent=1)

        for attempt in range(1, self._max_attempts + 1):
            Logger.info(f"Attempt {attempt}/{self._max_attempts}...")
            result = producer.edit(context)
            Logger.info(
                f"Edited {len(result.files_changed)} file(s): {', '.join(result.files_changed)}",
                indent=1,
            )

            format_outcome, check_outcome, test_outcome = self._verify()

            if self._policy(role, format_outcome, check_outcome, test_outcome):
                return self._commit(
                    context, plan, attempt, result,
                    format_outcome, check_outcome, test_outcome,
                )

            Logger.warning(f"Verification failed for {role.label} (attempt {attempt})")
            Logger.phase("ROLLBACK", "Discarding working tree changes")
            self._gateway.discard_working_changes()

        Logger.error(f"Step {step} failed after {self._max_attempts} attempt(s)")
        raise AttemptsExhaustedError(step, role, self._max_attempts)

    def _verify(self) -> tuple[CheckOutcome, CheckOutcome, CheckOutcome]:
        """Run format, static check and test, always all three, in that order."""
        Logger.phase("VERIFY", "Running format, static check and tests")
        outcomes = []
        for name, check in (
            ("format", self._verifier.format),
            ("check", self._verifier.static_check),
            ("test", self._verifier.test),
        ):
            outcome = check()
            if outcome.ok:
                Logger.success(f"{name}: ok", indent=1)
            else:
                Logger.warning(f"{name}: failed", indent=1)
            outcomes.append(outcome)
        return outcomes[0], outcomes[1], outcomes[2]

    def _commit(
        self,
        context: StepContext,
        plan: str,
        attempt: int,
        result: StepResult,
        format_outcome: CheckOutcome,
        check_outcome: CheckOutcome,
        test_outcome: CheckOutcome,
    ) -> AuditRecord:
        role = context.role
        step = context.step_index

        self._gateway.stage_all()
        commit_id = self._gateway.commit(
            compose_commit_message(
                result, role, step, self._kata_description, test_outcome
            )
        )
        Logger.success(f"Committed {commit_id[:8]} ({role.label}, step {step})")

        record = AuditRecord(
            step=step,
            role=role,
            plan=plan,
            attempts=attempt,
            commit_id=commit_id,
            format_outcome=format_outcome,
            check_outcome=check_outcome,
            test_outcome=test_outcome,
            files_changed=list(result.files_changed),
        )
        self._audit.save_record(record)

        self._current_role = role.next_role()
        self._current_step = step + 1
        return record


# ============================================================================
# LLM Client
# ============================================================================


class LlmClient:
    """Minimal OpenAI-compatible chat completions client."""

    def __init__(self, base_url: str, api_key: str, timeout: float = LLM_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def chat(self, model: str, messages: list[dict[str, str]], temperature: float) -> str:
        """
        Send a chat completion request and return the first choice's content.

        Uses a context-managed httpx.Client per call.

        Raises:
            LlmError: on transport failure, non-2xx status or malformed response
        """
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/chat/completions", json=payload, headers=headers
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise LlmError(
                f"LLM API error ({e.response.status_code}): {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise LlmError(f"Failed to send LLM request: {e}") from e
        except ValueError as e:
            raise LlmError(f"Failed to parse LLM response: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LlmError("No content in LLM response") from e
        if not isinstance(content, str):
            raise LlmError("No content in LLM response")
        return content


# ============================================================================
# PROMPT_TEMPLATES - system prompt per role
# ============================================================================

_OUTPUT_CONTRACT = """Your output must be ONLY valid JSON with no markdown formatting:
{{
  "edits": [
    {{"path": "path/to/file", "action": "upsert", "content": "{content_hint}"}}
  ],
  "commit_message": "{commit_prefix}: {commit_hint}",
  "notes": "{notes_hint}"
}}

All three fields (edits, commit_message, notes) are REQUIRED."""

PROMPT_TEMPLATES: dict[Role, str] = {
    Role.TESTER: """You are the Tester in a TDD cycle for a {language} kata. This is the RED phase of red-green-refactor.

YOUR ONLY JOB: Write a small, failing test that describes the next tiny behavior increment.

CRITICAL CONSTRAINTS:
- You MUST ONLY write test code
- You are FORBIDDEN from writing ANY production code
- The test you write MUST fail when run (this proves you haven't implemented it)
- The code MUST still pass the static check, so declare only what the test needs to compile
- If the test passes, you have violated your role

WORKFLOW:
1. Read the kata description to understand the next small behavior to test
2. Write ONLY test code that describes this behavior
3. Commit with "test:" prefix

"""
    + _OUTPUT_CONTRACT.replace("{content_hint}", "ONLY test code here")
    .replace("{commit_prefix}", "test")
    .replace("{commit_hint}", "description of the behavior being tested")
    .replace("{notes_hint}", "brief explanation of what behavior this test verifies"),
    Role.IMPLEMENTOR: """You are the Implementor in a TDD cycle for a {language} kata. This is the GREEN phase of red-green-refactor.

YOUR ONLY JOB: Write the minimal production code to make the failing test pass.

CRITICAL CONSTRAINTS:
- Read the last commit message and diff to understand what test was added
- Write the SIMPLEST possible production code to make ALL tests pass
- Do NOT add features that are not tested
- Do NOT modify test code

WORKFLOW:
1. Read the failing test from the last commit
2. Write minimal production code to make it pass
3. Commit with "feat:" or "fix:" prefix

"""
    + _OUTPUT_CONTRACT.replace("{content_hint}", "production code that makes tests pass")
    .replace("{commit_prefix}", "feat")
    .replace("{commit_hint}", "description of what was implemented")
    .replace("{notes_hint}", "brief explanation of the minimal implementation approach"),
    Role.REFACTORER: """You are the Refactorer in a TDD cycle for a {language} kata. This is the REFACTOR phase of red-green-refactor.

YOUR ONLY JOB: Improve code structure and readability WITHOUT changing behavior.

CRITICAL CONSTRAINTS:
- Do NOT change test assertions or expected behavior
- Do NOT add new features
- ALL tests must still pass after refactoring

ALLOWED CHANGES:
- Extract functions or modules
- Rename for clarity
- Remove duplication
- Improve types and documentation

"""
    + _OUTPUT_CONTRACT.replace("{content_hint}", "refactored code with same behavior")
    .replace("{commit_prefix}", "refactor")
    .replace("{commit_hint}", "description of structural improvement")
    .replace("{notes_hint}", "brief explanation of why this refactoring improves the code"),
}

USER_PROMPT_TEMPLATE = """Step: {step}
Role: {role}
Kata: {kata}

Last Commit: {last_commit}

Last Diff:
{last_diff}

Current Files:
{files}"""


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json / ``` markdown fence from LLM output."""
    cleaned = text.strip()
    for prefix in ("```json", "```"):
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
            break
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


# ============================================================================
# LLM Change Producer
# ============================================================================


class FileEdit(BaseModel):
    path: str
    action: str
    content: str


class EditPlan(BaseModel):
    """Shape of the JSON plan every role must produce."""

    edits: list[FileEdit]
    commit_message: str
    notes: str


class LlmProducer(ChangeProducer):
    """
    Change producer backed by a chat completion model.

    plan() asks the model for a JSON edit plan; edit() reads that plan back
    from the persisted plan artifact and applies its upserts to work_dir.
    """

    def __init__(
        self,
        role: Role,
        client: LlmClient,
        model: str,
        temperature: float,
        work_dir: Path | str,
        language: str = "python",
    ):
        self.role = role
        self.client = client
        self.model = model
        self.temperature = temperature
        self.work_dir = Path(work_dir)
        self.language = language
        self._audit = AuditTrail(self.work_dir)

    def system_prompt(self) -> str:
        return PROMPT_TEMPLATES[self.role].format(language=self.language)

    def read_files(self, paths: Iterable[str]) -> str:
        """Concatenate existing files as '--- path ---' sections."""
        contents = []
        for path in paths:
            full_path = self.work_dir / path
            if full_path.is_file():
                text = full_path.read_text(encoding="utf-8", errors="replace")
                contents.append(f"--- {path} ---\n{text}\n")
        return "\n".join(contents)

    def build_user_prompt(self, context: StepContext) -> str:
        return USER_PROMPT_TEMPLATE.format(
            step=context.step_index,
            role=self.role.label,
            kata=context.kata_description,
            last_commit=context.last_commit_message,
            last_diff=context.last_diff,
            files=self.read_files(context.file_list),
        )

    def plan(self, context: StepContext) -> str:
        user_prompt = self.build_user_prompt(context)
        Logger.prompt(user_prompt, f"PROMPT TO {self.role.label.upper()}")
        messages = [
            {"role": "system", "content": self.system_prompt()},
            {"role": "user", "content": user_prompt},
        ]
        response = self.client.chat(self.model, messages, self.temperature)
        Logger.write(response + "\n")
        return strip_code_fence(response)

    def load_plan(self, context: StepContext) -> EditPlan:
        plan_path = self._audit.plan_path(context.step_index, self.role)
        if not plan_path.is_file():
            raise PlanArtifactError(f"Plan file not found: {plan_path}")
        try:
            return EditPlan.model_validate_json(plan_path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise PlanArtifactError(f"Failed to parse plan JSON in {plan_path}: {e}") from e

    def edit(self, context: StepContext) -> StepResult:
        """
        Apply the 'upsert' edits of the persisted plan.

        Other actions are ignored. Every path is checked before anything is
        written, so a plan pointing outside work_dir writes nothing.
        """
        plan = self.load_plan(context)
        root = self.work_dir.resolve()

        targets = []
        for file_edit in plan.edits:
            if file_edit.action != "upsert":
                Logger.warning(
                    f"Ignoring unsupported action '{file_edit.action}' for {file_edit.path}",
                    indent=1,
                )
                continue
            target = (root / file_edit.path).resolve()
            if not target.is_relative_to(root) or target == root:
                raise PlanArtifactError(
                    f"Edit path escapes the working directory: {file_edit.path}"
                )
            targets.append((file_edit, target))

        files_changed = []
        for file_edit, target in targets:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(file_edit.content, encoding="utf-8")
            files_changed.append(file_edit.path)

        return StepResult(
            files_changed=files_changed,
            commit_message=plan.commit_message,
            notes=plan.notes,
        )


# ============================================================================
# Command Verifier
# ============================================================================


class CommandVerifier(Verifier):
    """Runs the configured format / check / test commands as subprocesses."""

    def __init__(
        self,
        format_cmd: list[str],
        check_cmd: list[str],
        test_cmd: list[str],
        cwd: Path | str,
        env: Optional[Mapping[str, Any]] = None,
    ):
        self.format_cmd = list(format_cmd)
        self.check_cmd = list(check_cmd)
        self.test_cmd = list(test_cmd)
        self.cwd = Path(cwd)
        self.env = dict(env or {})

    def get_env(self) -> dict[str, str]:
        """
        Build environment dict for running commands.

        Merges the current environment with the configured env vars.
        Configured vars override existing environment vars.
        """
        env = os.environ.copy()
        for key, value in self.env.items():
            env[key] = str(value)
        return env

    def format(self) -> CheckOutcome:
        return self._run("format", self.format_cmd)

    def static_check(self) -> CheckOutcome:
        return self._run("check", self.check_cmd)

    def test(self) -> CheckOutcome:
        return self._run("test", self.test_cmd)

    def _run(self, name: str, command: list[str]) -> CheckOutcome:
        if not command:
            return CheckOutcome(ok=True)

        Logger.info(f"Running {name}: {' '.join(command)}", indent=1)
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                cwd=self.cwd,
                env=self.get_env(),
            )
        except OSError as e:
            return CheckOutcome(
                ok=False, stderr=f"Failed to spawn command '{command[0]}': {e}"
            )

        if result.stdout:
            Logger.write(result.stdout)
        if result.stderr:
            Logger.write(result.stderr)

        return CheckOutcome(
            ok=result.returncode == 0, stdout=result.stdout, stderr=result.stderr
        )


# ============================================================================
# Git Gateway
# ============================================================================


class GitGateway(RepositoryGateway):
    """Collection of git operations on one repository, via the git CLI."""

    def __init__(
        self,
        root: Path | str,
        author_name: Optional[str] = None,
        author_email: Optional[str] = None,
    ):
        self.root = Path(root)
        self.author_name = author_name
        self.author_email = author_email

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        command = ["git", *args]
        try:
            result = subprocess.run(
                command, capture_output=True, text=True, cwd=self.root
            )
        except OSError as e:
            raise GatewayError(f"Failed to run git: {e}", command) from e
        if check and result.returncode != 0:
            raise GatewayError(
                f"{' '.join(command)} failed: {result.stderr.strip()}",
                command,
                result.stderr,
            )
        return result

    def has_head(self) -> bool:
        """True once the repository has at least one commit."""
        return self._git("rev-parse", "--verify", "-q", "HEAD", check=False).returncode == 0

    def init_if_needed(self) -> None:
        if not (self.root / ".git").exists():
            self._git("init", "-q")

    def read_state(self) -> RepoState:
        if self.has_head():
            last_commit_message = self._git("log", "-1", "--format=%B").stdout.strip()
            last_diff = self._git("show", "--format=", "HEAD").stdout
        else:
            last_commit_message = ""
            last_diff = ""

        listing = self._git("ls-files", "--cached", "--others", "--exclude-standard")
        files = set()
        for line in listing.stdout.splitlines():
            path = line.strip()
            if path and not path.startswith(f"{ARTIFACT_DIR}/"):
                files.add(path)

        return RepoState(
            last_commit_message=last_commit_message,
            last_diff=last_diff,
            files=sorted(files),
        )

    def stage_all(self) -> None:
        self._git("add", "-A")

    def commit(self, message: str) -> str:
        identity = []
        if self.author_name:
            identity += ["-c", f"user.name={self.author_name}"]
        if self.author_email:
            identity += ["-c", f"user.email={self.author_email}"]
        self._git(*identity, "commit", "--allow-empty", "-q", "-m", message)
        return self._git("rev-parse", "HEAD").stdout.strip()

    def discard_working_changes(self) -> None:
        """
        Reset tracked files to HEAD and delete untracked ones.

        .tdd/ is excluded so plan artifacts survive the rollback.

        Raises:
            GatewayError: if the repository has no commit to restore
        """
        if not self.has_head():
            raise GatewayError(
                "Cannot discard changes: repository has no commits yet (run 'tddloop init')"
            )
        self._git("reset", "-q", "--hard", "HEAD")
        self._git("clean", "-fdq", f"--exclude={ARTIFACT_DIR}")


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class RoleSettings:
    model: str
    temperature: float


@dataclass
class Config:
    """Parsed tddloop.toml. Relative paths resolve against project_dir."""

    project_dir: Path
    kata_description: str
    language: str
    steps: int
    max_attempts_per_agent: int
    roles: dict[Role, RoleSettings]
    llm_base_url: str
    api_key_env: str
    fmt_cmd: list[str]
    check_cmd: list[str]
    test_cmd: list[str]
    author_name: str
    author_email: str
    format_gates_success: bool = False
    ci_env: dict[str, Any] = field(default_factory=dict)

    @property
    def kata_path(self) -> Path:
        return self.project_dir / self.kata_description

    def read_kata(self) -> str:
        try:
            return self.kata_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to read kata description {self.kata_path}: {e}") from e


STRING_CALCULATOR_KATA = """# String Calculator Kata

1. Create a simple String calculator with a method signature:
   `int Add(string numbers)`

2. The method can take up to two numbers, separated by commas, and will return their sum.
   for example "" or "1" or "1,2" as inputs.
   (for an empty string it will return 0)

3. Allow the Add method to handle an unknown amount of numbers

4. Allow the Add method to handle new lines between numbers (instead of commas).
   the following input is ok: "1\\n2,3" (will equal 6)
   the following input is NOT ok: "1,\\n" (not need to prove it - just clarifying)

5. Support different delimiters
   to change a delimiter, the beginning of the string will contain a separate line that looks like this:
   "//[delimiter]\\n[numbers...]"
   for example "//;\\n1;2" should return three where the default delimiter is ';' .
   the first line is optional. all existing scenarios should still be supported
"""

DEFAULT_CONFIG_TOML = """kata_description = "kata.md"
language = "python"
steps = 20
max_attempts_per_agent = 5

[roles.tester]
model = "gpt-4o"
temperature = 0.4

[roles.implementor]
model = "gpt-4o"
temperature = 0.2

[roles.refactorer]
model = "gpt-4o"
temperature = 0.3

[llm]
base_url = "https://api.openai.com/v1"
api_key_env = "OPENAI_API_KEY"

[ci]
fmt_cmd = ["ruff", "format", "."]
check_cmd = ["ruff", "check", "."]
test_cmd = ["pytest", "-q"]
format_gates_success = false

[commit]
author_name = "TDD Machine"
author_email = "tdd@local"
"""

DEFAULT_GITIGNORE = "/.tdd\n.env\n__pycache__/\n*.log\n"


class ConfigManager:
    """Loads and validates tddloop.toml."""

    REQUIRED_KEYS = [
        "kata_description",
        "language",
        "steps",
        "max_attempts_per_agent",
        "roles",
        "llm",
        "ci",
        "commit",
    ]
    REQUIRED_SECTION_KEYS = {
        "llm": ["base_url", "api_key_env"],
        "ci": ["fmt_cmd", "check_cmd", "test_cmd"],
        "commit": ["author_name", "author_email"],
    }

    @classmethod
    def load(cls, path: Path | str = CONFIG_FILE) -> Config:
        """
        Load configuration from tddloop.toml.

        Expected structure: see DEFAULT_CONFIG_TOML.

        Returns:
            Parsed Config whose project_dir is the config file's directory

        Raises:
            ConfigError: file missing, invalid TOML, or required keys missing
        """
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"{config_path} not found (run 'tddloop init')")

        try:
            with open(config_path, "rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse {config_path}: {e}") from e

        missing = [k for k in cls.REQUIRED_KEYS if k not in raw]
        if missing:
            raise ConfigError(f"{config_path} missing required keys: {', '.join(missing)}")

        for section in ("roles", *cls.REQUIRED_SECTION_KEYS):
            if not isinstance(raw[section], dict):
                raise ConfigError(f"[{section}] must be a table")

        for section, keys in cls.REQUIRED_SECTION_KEYS.items():
            missing = [k for k in keys if k not in raw[section]]
            if missing:
                raise ConfigError(
                    f"[{section}] missing required keys: {', '.join(missing)}"
                )

        roles: dict[Role, RoleSettings] = {}
        for role in Role:
            settings = raw["roles"].get(role.value)
            if settings is None:
                raise ConfigError(f"[roles.{role.value}] section is missing")
            if not isinstance(settings, dict):
                raise ConfigError(f"[roles.{role.value}] must be a table")
            missing = [k for k in ("model", "temperature") if k not in settings]
            if missing:
                raise ConfigError(
                    f"[roles.{role.value}] missing required keys: {', '.join(missing)}"
                )
            roles[role] = RoleSettings(
                model=str(settings["model"]),
                temperature=cls._number(
                    settings["temperature"], float, f"roles.{role.value}.temperature"
                ),
            )

        ci = raw["ci"]
        for key in ("fmt_cmd", "check_cmd", "test_cmd"):
            if not isinstance(ci[key], list) or not all(isinstance(p, str) for p in ci[key]):
                raise ConfigError(f"[ci] {key} must be a list of strings")
        if not isinstance(ci.get("env", {}), dict):
            raise ConfigError("[ci] env must be a table")

        steps = cls._number(raw["steps"], int, "steps")
        max_attempts = cls._number(
            raw["max_attempts_per_agent"], int, "max_attempts_per_agent"
        )
        if max_attempts < 1:
            raise ConfigError("max_attempts_per_agent must be at least 1")

        return Config(
            project_dir=config_path.resolve().parent,
            kata_description=str(raw["kata_description"]),
            language=str(raw["language"]),
            steps=steps,
            max_attempts_per_agent=max_attempts,
            roles=roles,
            llm_base_url=str(raw["llm"]["base_url"]),
            api_key_env=str(raw["llm"]["api_key_env"]),
            fmt_cmd=list(ci["fmt_cmd"]),
            check_cmd=list(ci["check_cmd"]),
            test_cmd=list(ci["test_cmd"]),
            format_gates_success=bool(ci.get("format_gates_success", False)),
            ci_env=dict(ci.get("env", {})),
            author_name=str(raw["commit"]["author_name"]),
            author_email=str(raw["commit"]["author_email"]),
        )

    @staticmethod
    def _number(value: Any, kind: type, name: str) -> Any:
        """Convert a numeric setting; booleans and strings are rejected."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{name} must be a number, got {value!r}")
        if kind is int and isinstance(value, float) and not value.is_integer():
            raise ConfigError(f"{name} must be a whole number, got {value!r}")
        return kind(value)


def load_config(path: Path | str = CONFIG_FILE) -> Config:
    return ConfigManager.load(path)


# ============================================================================
# Wiring + CLI
# ============================================================================


def build_engine(config: Config, resume: bool = False) -> StepEngine:
    """Construct the engine and its collaborators from configuration."""
    load_dotenv(config.project_dir / ".env")
    api_key = os.environ.get(config.api_key_env)
    if not api_key:
        raise ConfigError(f"{config.api_key_env} not set")

    client = LlmClient(config.llm_base_url, api_key)
    producers = {
        role: LlmProducer(
            role,
            client,
            settings.model,
            settings.temperature,
            config.project_dir,
            config.language,
        )
        for role, settings in config.roles.items()
    }
    verifier = CommandVerifier(
        config.fmt_cmd,
        config.check_cmd,
        config.test_cmd,
        cwd=config.project_dir,
        env=config.ci_env,
    )
    gateway = GitGateway(config.project_dir, config.author_name, config.author_email)
    gateway.init_if_needed()

    start_step, start_role = 1, Role.TESTER
    if resume:
        start_step, start_role = AuditTrail(config.project_dir).resume_point()
        Logger.info(f"Resuming at step {start_step} as {start_role.label}")

    return StepEngine(
        producers,
        verifier,
        gateway,
        kata_description=config.read_kata(),
        max_attempts=config.max_attempts_per_agent,
        work_dir=config.project_dir,
        policy=JudgmentPolicy(format_gates_success=config.format_gates_success),
        start_step=start_step,
        start_role=start_role,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="tddloop",
        description="Red-Green-Refactor step engine driven by LLM roles",
    )
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        metavar="PATH",
        help=f"Path to the configuration file (default: {CONFIG_FILE})",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        metavar="PATH",
        help=f"Append verbose output to this file (default: {ARTIFACT_DIR}/{LOG_FILE} next to the config)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create config, kata and .gitignore; initialize git")

    run = sub.add_parser("run", help="Run N TDD steps")
    run.add_argument("--steps", type=int, default=None, help="Number of steps (default: from config)")
    run.add_argument(
        "--resume",
        action="store_true",
        help="Continue after the latest recorded step instead of starting at step 1",
    )

    step = sub.add_parser("step", help="Run a single step")
    step.add_argument("--resume", action="store_true", help="Continue after the latest recorded step")

    sub.add_parser("status", help="Show the latest recorded step and what comes next")
    sub.add_parser("doctor", help="Verify tools and environment")
    return parser.parse_args(argv)


def cmd_init(config_path: Path) -> int:
    project_dir = config_path.resolve().parent
    Logger.info(f"Initializing TDD workspace in {project_dir}")

    scaffold = {
        config_path.resolve(): DEFAULT_CONFIG_TOML,
        project_dir / "kata.md": STRING_CALCULATOR_KATA,
        project_dir / ".gitignore": DEFAULT_GITIGNORE,
    }
    for path, content in scaffold.items():
        if path.exists():
            Logger.info(f"{path.name} already exists, leaving it alone", indent=1)
            continue
        path.write_text(content, encoding="utf-8")
        Logger.success(f"Created {path.name}", indent=1)

    config = load_config(config_path)
    gateway = GitGateway(project_dir, config.author_name, config.author_email)
    gateway.init_if_needed()
    if not gateway.has_head():
        gateway.stage_all()
        commit_id = gateway.commit("chore: initialize tdd workspace")
        Logger.success(f"Initial commit {commit_id[:8]}", indent=1)
    Logger.success("Workspace ready")
    return 0


def cmd_run(config_path: Path, steps: Optional[int], resume: bool) -> int:
    config = load_config(config_path)
    engine = build_engine(config, resume=resume)
    total = steps if steps is not None else config.steps

    Logger.banner("TDDLOOP - Red / Green / Refactor")
    Logger.info(
        f"Running {Logger.color(str(total), Colors.YELLOW, Colors.BOLD)} step(s), "
        f"max {engine.max_attempts} attempt(s) per step"
    )
    records = engine.run(total)

    print()
    Logger.banner("Run complete", char="*")
    Logger.success(f"Committed {len(records)} step(s)")
    Logger.info(f"Next: step {engine.current_step} as {engine.current_role.label}")
    return 0


def cmd_status(config_path: Path) -> int:
    project_dir = config_path.resolve().parent
    trail = AuditTrail(project_dir)
    record = trail.latest_record()
    if record is None:
        Logger.info("No steps recorded yet")
        Logger.info(f"Next: step 1 as {Role.TESTER.label}")
        return 0

    # Validates step and role before anything is printed
    next_step, next_role = trail.resume_point()
    role = Role(record["role"])
    Logger.banner(f"Step {record['step']} - {role.label}")
    Logger.info(f"Commit: {str(record.get('commit_id', ''))[:12]}")
    Logger.info(f"Attempts: {record.get('attempts')}")
    for label, key in (("format", "format_outcome"), ("check", "check_outcome"), ("test", "test_outcome")):
        outcome = record.get(key)
        verdict = "ok" if isinstance(outcome, dict) and outcome.get("ok") else "failed"
        Logger.info(f"{label}: {verdict}", indent=1)
    if record.get("completed_at"):
        Logger.info(f"Completed at: {record['completed_at']}")

    Logger.info(f"Next: step {next_step} as {next_role.label}")
    return 0


def cmd_doctor(config_path: Path) -> int:
    Logger.info("Checking environment...")
    problems = 0

    def check_program(program: str) -> None:
        nonlocal problems
        location = shutil.which(program)
        if location:
            Logger.success(f"{program}: {location}", indent=1)
        else:
            Logger.error(f"{program}: NOT FOUND", indent=1)
            problems += 1

    check_program("git")

    if not config_path.exists():
        Logger.warning(f"{config_path} not found, skipping config checks")
        return 1 if problems else 0

    config = load_config(config_path)
    for command in (config.fmt_cmd, config.check_cmd, config.test_cmd):
        if command:
            check_program(command[0])

    load_dotenv(config.project_dir / ".env")
    if os.environ.get(config.api_key_env):
        Logger.success(f"{config.api_key_env}: set", indent=1)
    else:
        Logger.error(f"{config.api_key_env}: not set", indent=1)
        problems += 1

    if not config.kata_path.is_file():
        Logger.error(f"kata description {config.kata_path}: missing", indent=1)
        problems += 1

    return 1 if problems else 0


def default_log_path(config_path: Path) -> Path:
    """Log file inside the artifact dir, which git clean and the file list skip."""
    return config_path.resolve().parent / ARTIFACT_DIR / LOG_FILE


def open_log(log_path: Path | str) -> None:
    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_file = open(log_path, "a", encoding="utf-8")
    Logger.set_log_file(log_file)
    atexit.register(log_file.close)

    Logger.write("\n\n")
    Logger.write("╔" + "═" * 78 + "╗\n")
    Logger.write("║" + f"TDDLOOP RUN: {datetime.now().isoformat()}".center(78) + "║\n")
    Logger.write("╚" + "═" * 78 + "╝\n")
    Logger.write("\n")


def main(argv: Optional[list[str]] = None) -> int:
    """Command-line entry point."""
    args = parse_args(argv)
    config_path = Path(args.config)

    try:
        if args.command == "init":
            return cmd_init(config_path)
        if args.command == "status":
            return cmd_status(config_path)
        if args.command == "doctor":
            return cmd_doctor(config_path)

        open_log(args.log_file or default_log_path(config_path))
        if args.command == "step":
            return cmd_run(config_path, steps=1, resume=args.resume)
        return cmd_run(config_path, steps=args.steps, resume=args.resume)
    except AttemptsExhaustedError as e:
        print()
        Logger.banner("FAILED", char="!")
        Logger.error(str(e))
        return 1
    except TddLoopError as e:
        Logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
