"""Verification gates: named shell checks run in order inside a working directory."""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_GATE_TIMEOUT_SEC = 300.0


@dataclass(frozen=True)
class GateResult:
    gate: str
    passed: bool
    output: str
    duration_sec: float


@dataclass(frozen=True)
class GatePipelineResult:
    all_passed: bool
    gates: list[GateResult] = field(default_factory=list)
    total_duration_sec: float = 0.0

    @property
    def failed(self) -> list[GateResult]:
        return [g for g in self.gates if not g.passed]


@dataclass(frozen=True)
class CommandGate:
    name: str
    command: str
    timeout_sec: float = DEFAULT_GATE_TIMEOUT_SEC


async def run_gate(gate: CommandGate, cwd: Path) -> GateResult:
    """Run one gate. Exit code 0 passes; stdout and stderr are captured together."""
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_shell(
            gate.command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as exc:
        logger.error("Gate %s could not start: %s", gate.name, exc)
        return GateResult(gate.name, False, f"Failed to start: {exc}", time.monotonic() - start)

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=gate.timeout_sec)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("Gate %s timed out after %ss", gate.name, gate.timeout_sec)
        return GateResult(gate.name, False, f"Timed out after {gate.timeout_sec}s", time.monotonic() - start)

    output = stdout.decode("utf-8", errors="replace")
    passed = proc.returncode == 0
    duration = time.monotonic() - start
    logger.info("Gate %s %s in %.2fs", gate.name, "passed" if passed else "failed", duration)
    return GateResult(gate.name, passed, output, duration)


async def run_gates(
    gates: Sequence[CommandGate],
    cwd: Path,
    stop_on_failure: bool = True,
) -> GatePipelineResult:
    start = time.monotonic()
    results: list[GateResult] = []
    for gate in gates:
        result = await run_gate(gate, cwd)
        results.append(result)
        if not result.passed and stop_on_failure:
            break
    return GatePipelineResult(
        all_passed=all(r.passed for r in results),
        gates=results,
        total_duration_sec=time.monotonic() - start,
    )
