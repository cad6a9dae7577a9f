"""Code generation from a debate outcome, verified by gates and retried on failure."""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from conclave.gates import GatePipelineResult
from conclave.guard import ExecutionGuard
from conclave.models import DebateSession, OutcomeStatus, TokenUsage
from conclave.observer import Observer
from conclave.policy import PolicyCheckResult, PolicyEngine

logger = logging.getLogger(__name__)

GATE_OUTPUT_CHARS = 1000
STDERR_CHARS = 1000

RESOLVED_STATUSES = (OutcomeStatus.CONSENSUS, OutcomeStatus.MODERATOR_DECIDED)


@dataclass(frozen=True)
class CodeGenTask:
    id: str
    debate_session_id: str
    working_dir: Path
    prompt: str
    system_prompt: str | None = None
    instruction_content: str = ""
    allowed_tools: tuple[str, ...] = ()
    max_turns: int = 30
    timeout_sec: float = 600.0
    env: str = "int"


@dataclass(frozen=True)
class CodeGenResult:
    task_id: str
    success: bool
    output: str
    files_changed: list[str] = field(default_factory=list)
    tokens_used: TokenUsage = TokenUsage()
    cost_usd: float = 0.0
    duration_sec: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class GateRetryResult:
    code_result: CodeGenResult
    gate_result: GatePipelineResult
    attempts: int
    policy_result: PolicyCheckResult | None = None

    @property
    def succeeded(self) -> bool:
        blocked = self.policy_result is not None and not self.policy_result.allowed
        return self.gate_result.all_passed and not blocked


class CodeGenerator(ABC):
    @abstractmethod
    async def execute(self, task: CodeGenTask) -> CodeGenResult:
        """Run generation for ``task``. Expected failures come back as ``success=False``."""
        ...


def parse_cli_output(stdout: str) -> dict[str, Any]:
    """Read the CLI's JSON summary. Anything unparseable is returned as plain text."""
    fallback = {"text": stdout, "files_changed": [], "tokens_used": TokenUsage(), "cost_usd": 0.0}
    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        return fallback
    if not isinstance(data, dict):
        return fallback

    usage = data.get("usage") or {}
    return {
        "text": data.get("result") or data.get("text") or stdout,
        "files_changed": list(data.get("files_changed") or []),
        "tokens_used": TokenUsage(int(usage.get("input_tokens", 0)), int(usage.get("output_tokens", 0))),
        "cost_usd": float(data.get("cost_usd") or data.get("total_cost_usd") or 0.0),
    }


class CliCodeGenerator(CodeGenerator):
    """Runs a headless code-generation CLI (``claude --print``) in the task's working directory."""

    def __init__(self, cli_path: str = "claude", instruction_file: str = "CLAUDE.md") -> None:
        self._cli_path = cli_path
        self._instruction_file = instruction_file

    def build_args(self, task: CodeGenTask) -> list[str]:
        args = ["--print", "--output-format", "json", "--max-turns", str(task.max_turns)]
        if task.system_prompt:
            args += ["--system-prompt", task.system_prompt]
        if task.allowed_tools:
            args += ["--allowedTools", ",".join(task.allowed_tools)]
        args.append(task.prompt)
        return args

    async def execute(self, task: CodeGenTask) -> CodeGenResult:
        start = time.monotonic()
        logger.info("Starting code generation %s in %s (max_turns=%d)", task.id, task.working_dir, task.max_turns)

        try:
            if task.instruction_content:
                await asyncio.to_thread(
                    (task.working_dir / self._instruction_file).write_text,
                    task.instruction_content,
                    encoding="utf-8",
                )
            proc = await asyncio.create_subprocess_exec(
                self._cli_path,
                *self.build_args(task),
                cwd=str(task.working_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Code generation %s could not start: %s", task.id, exc)
            return self._failure(task, start, str(exc))

        try:
            stdout_raw, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=task.timeout_sec)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error("Code generation %s timed out after %ss", task.id, task.timeout_sec)
            return self._failure(task, start, f"Timed out after {task.timeout_sec}s")

        stdout = stdout_raw.decode("utf-8", errors="replace")
        stderr = stderr_raw.decode("utf-8", errors="replace")
        duration = time.monotonic() - start

        if proc.returncode != 0:
            logger.warning("Code generation %s exited with code %s", task.id, proc.returncode)
            return CodeGenResult(
                task_id=task.id,
                success=False,
                output=stdout or stderr,
                duration_sec=duration,
                error=f"CLI exited with code {proc.returncode}: {stderr[:STDERR_CHARS]}",
            )

        parsed = parse_cli_output(stdout)
        logger.info(
            "Code generation %s completed: %d files changed, %.1fs",
            task.id,
            len(parsed["files_changed"]),
            duration,
        )
        return CodeGenResult(
            task_id=task.id,
            success=True,
            output=parsed["text"],
            files_changed=parsed["files_changed"],
            tokens_used=parsed["tokens_used"],
            cost_usd=parsed["cost_usd"],
            duration_sec=duration,
        )

    @staticmethod
    def _failure(task: CodeGenTask, start: float, error: str) -> CodeGenResult:
        return CodeGenResult(
            task_id=task.id,
            success=False,
            output="",
            duration_sec=time.monotonic() - start,
            error=error,
        )


# ─── Prompts ───────────────────────────────────────────────────────────────────


def build_task_prompt(session: DebateSession) -> str:
    """Generation prompt from a resolved debate: decision, artifacts, dissent."""
    outcome = session.outcome
    if outcome is None or outcome.status not in RESOLVED_STATUSES:
        status = outcome.status.value if outcome else "open"
        raise ValueError(f"Debate {session.id} is not resolved (status: {status})")

    config = session.config
    lines = [
        f"# Implement: {config.topic}",
        "",
        f"Ticket: {config.context.ticket_id} ({config.context.env})",
        "",
        "## Agreed decision",
        "",
        outcome.decision.strip(),
    ]

    if outcome.artifacts:
        lines += ["", "## Artifacts"]
        for artifact in outcome.artifacts:
            lines += ["", f"### {artifact.title} ({artifact.type})", "", artifact.content]

    if outcome.dissenting_views:
        lines += ["", "## Dissenting views to keep in mind", ""]
        lines += [f"- {d.role.value}: {d.view}" for d in outcome.dissenting_views]

    lines += ["", "Implement the decision above. Keep changes focused and make the verification gates pass."]
    return "\n".join(lines)


def read_changed_files(working_dir: Path, files_changed: list[str]) -> dict[str, str]:
    """Contents of the changed files that still exist under ``working_dir``."""
    contents: dict[str, str] = {}
    for name in files_changed:
        path = working_dir / name
        if not path.is_file():
            continue
        try:
            contents[name] = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Could not read changed file %s for policy check: %s", path, exc)
    return contents


def build_instruction_content(session: DebateSession) -> str:
    """Project instruction file written next to the code before generation."""
    ctx = session.config.context
    lines = [
        "# Project context",
        "",
        f"- Ticket: {ctx.ticket_id}",
        f"- Environment: {ctx.env}",
        f"- Debate session: {session.id}",
        "",
        "## Summary",
        "",
        ctx.summary,
    ]
    for title, body in (
        ("Description", ctx.description),
        ("Code context", ctx.code_context),
        ("Previous decisions", ctx.previous_decisions),
    ):
        if body:
            lines += ["", f"## {title}", "", body]
    return "\n".join(lines) + "\n"


def build_retry_prompt(original_prompt: str, gate_result: GatePipelineResult) -> str:
    failures = "\n\n".join(f"{g.gate}: {g.output[:GATE_OUTPUT_CHARS]}" for g in gate_result.failed)
    return (
        "The following verification gates failed on the previous run. Fix these problems:\n\n"
        f"{failures}\n\nOriginal request:\n{original_prompt}"
    )


# ─── Gate retry loop ───────────────────────────────────────────────────────────


class GateRetryExecutor:
    """generate -> policy -> verify -> done | retry | exhausted.

    The first attempt is free; every later attempt consumes one retry from
    the guard. The caller's task is never modified. A policy violation ends
    the run without a retry and before the gates.
    """

    def __init__(
        self,
        generator: CodeGenerator,
        run_gates: Callable[[], Awaitable[GatePipelineResult]],
        guard: ExecutionGuard,
        observer: Observer | None = None,
        policy: PolicyEngine | None = None,
    ) -> None:
        self._generator = generator
        self._run_gates = run_gates
        self._guard = guard
        self._observer = observer
        self._policy = policy

    async def execute(self, task: CodeGenTask) -> GateRetryResult:
        gate_result = GatePipelineResult(all_passed=False)
        prompt = task.prompt
        attempts = 0

        while True:
            attempts += 1
            logger.info("Code generation attempt %d for %s", attempts, task.id)
            code_result = await self._generator.execute(replace(task, prompt=prompt))

            if not code_result.success:
                logger.warning("Code generation attempt %d failed: %s", attempts, code_result.error)
            else:
                policy_result = await self._check_policy(task, code_result)
                if policy_result is not None and not policy_result.allowed:
                    logger.error(
                        "Code generation %s blocked by policy: %s",
                        task.id,
                        [str(v) for v in policy_result.violations],
                    )
                    return GateRetryResult(code_result, gate_result, attempts, policy_result)
                gate_result = await self._run_gates()
                self._report(gate_result)
                if gate_result.all_passed:
                    logger.info("All gates passed for %s after %d attempt(s)", task.id, attempts)
                    return GateRetryResult(code_result, gate_result, attempts, policy_result)
                prompt = build_retry_prompt(task.prompt, gate_result)
                logger.info(
                    "Retrying %s with gate failures: %s",
                    task.id,
                    [g.gate for g in gate_result.failed],
                )

            violation = self._guard.record_retry()
            if violation is not None:
                logger.warning("Giving up on %s: %s", task.id, violation.message)
                return GateRetryResult(code_result, gate_result, attempts)

    async def _check_policy(self, task: CodeGenTask, code_result: CodeGenResult) -> PolicyCheckResult | None:
        if self._policy is None or not code_result.files_changed:
            return None
        contents = await asyncio.to_thread(read_changed_files, task.working_dir, code_result.files_changed)
        return self._policy.check(task.env, code_result.files_changed, file_contents=contents)

    def _report(self, gate_result: GatePipelineResult) -> None:
        if self._observer is None:
            return
        for gate in gate_result.gates:
            self._observer.on_gate_result(gate.gate, gate.passed, gate.duration_sec)
