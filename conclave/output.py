"""Rich console output and markdown transcript save for debate sessions."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from conclave.codegen import GateRetryResult
from conclave.models import DebateSession, DebateTurn, OutcomeStatus
from conclave.observer import AnomalyAlert, Severity

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_STATUS_STYLE = {
    OutcomeStatus.CONSENSUS: "bold green",
    OutcomeStatus.MODERATOR_DECIDED: "bold cyan",
    OutcomeStatus.BUDGET_EXCEEDED: "bold yellow",
    OutcomeStatus.MAX_TURNS_REACHED: "bold yellow",
    OutcomeStatus.ERROR: "bold red",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _turn_preview(turn: DebateTurn, words: int = 50) -> str:
    """Return first N words of a turn."""
    all_words = turn.content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_turn(turn: DebateTurn) -> None:
    """Print a brief panel for one finished turn."""
    console.print(
        Panel(
            _turn_preview(turn),
            title=f"[bold]#{turn.turn_number} {turn.role.value}[/bold] ({turn.type.value})",
            subtitle=f"{turn.model} | {turn.tokens_used.total} tokens | {turn.duration_sec:.1f}s",
            border_style="dim",
        )
    )


def print_anomaly(alert: AnomalyAlert) -> None:
    style = "red" if alert.severity == Severity.CRITICAL else "yellow"
    console.print(f"[{style}]{alert.severity.value.upper()}[/{style}] {alert.type.value}: {alert.message}")


def print_outcome(session: DebateSession) -> None:
    """Print the outcome and decision using Rich markdown."""
    outcome = session.outcome
    if outcome is None:
        return
    style = _STATUS_STYLE.get(outcome.status, "bold")
    console.print(Rule(f"[{style}]Outcome: {outcome.status.value}[/{style}]"))
    console.print(
        Text(
            f"Turns: {len(session.turns)} | "
            f"Tokens: {session.total_tokens.total} | "
            f"Cost: ${session.total_cost_usd:.4f} | "
            f"Duration: {session.duration_sec:.1f}s",
            style="dim",
        )
    )
    if outcome.error:
        console.print(f"[red]Error:[/red] {outcome.error}")
    console.print(Markdown(outcome.decision))
    if outcome.dissenting_views:
        console.print(Rule("[bold]Dissenting views[/bold]"))
        for view in outcome.dissenting_views:
            console.print(Panel(view.view, title=view.role.value, border_style="yellow"))


def print_codegen_result(result: GateRetryResult) -> None:
    console.print(Rule("[bold]Implementation[/bold]"))
    code = result.code_result
    status = "[green]OK[/green]" if code.success else "[red]FAIL[/red]"
    console.print(f"Generation {status} after {result.attempts} attempt(s), {len(code.files_changed)} file(s) changed")
    if code.error:
        console.print(f"  [red]{code.error}[/red]")
    policy = result.policy_result
    if policy is not None:
        for hit in policy.violations + policy.warnings:
            style = "yellow" if hit in policy.warnings else "red"
            files = f" ({', '.join(hit.files)})" if hit.files else ""
            console.print(f"  [{style}]POLICY {hit.action.value}[/{style}] {escape(str(hit))}{files}")
    for gate in result.gate_result.gates:
        mark = "[green]PASS[/green]" if gate.passed else "[red]FAIL[/red]"
        console.print(f"  {mark} {gate.gate} ({gate.duration_sec:.1f}s)")


def save_transcript(session: DebateSession, output_dir: Path) -> Path:
    """Save the full debate transcript as a markdown file.

    Args:
        session: A closed DebateSession.
        output_dir: Directory to save the file in.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(session.config.topic)}.md"

    config = session.config
    outcome = session.outcome
    lines: list[str] = [
        f"# Debate: {config.topic[:80]}",
        "",
        f"**Session:** {session.id}",
        f"**Workflow:** {session.workflow_id}",
        f"**Ticket:** {config.context.ticket_id} ({config.context.env})",
        f"**Participants:** {', '.join(p.value for p in config.participants)}",
        f"**Moderator:** {config.moderator.value}",
        f"**Turns:** {len(session.turns)} / {config.max_turns}",
        f"**Cost:** ${session.total_cost_usd:.4f} (budget ${config.budget_usd:.2f})",
        f"**Duration:** {session.duration_sec:.1f}s",
        f"**Status:** {outcome.status.value if outcome else 'open'}",
        "",
        "---",
        "",
    ]

    for turn in session.turns:
        lines.append(f"## Turn {turn.turn_number}: {turn.role.value} ({turn.type.value})")
        lines.append("")
        lines.append(turn.content)
        lines.append("")
        lines.append(
            f"*Model: {turn.model} | Tokens: {turn.tokens_used.input} in / {turn.tokens_used.output} out"
            f" | {turn.duration_sec:.2f}s*"
        )
        lines.append("")

    if outcome is not None:
        lines += ["## Outcome", "", f"**Status:** {outcome.status.value}", ""]
        if outcome.error:
            lines += [f"**Error:** {outcome.error}", ""]
        lines += [outcome.decision, ""]

        if outcome.artifacts:
            lines += ["## Artifacts", ""]
            for artifact in outcome.artifacts:
                lines += [f"### {artifact.title} ({artifact.type}, {artifact.format})", "", artifact.content, ""]

        if outcome.dissenting_views:
            lines += ["## Dissenting Views", ""]
            for view in outcome.dissenting_views:
                lines += [f"### {view.role.value}", "", view.view, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath
