"""Click CLI — orchestrates config loading, provider routing, debate, and output."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from conclave.brief import CONTEXT_KEYS, parse_brief, split_roles, topic_from_body
from conclave.codegen import (
    CliCodeGenerator,
    CodeGenTask,
    GateRetryExecutor,
    GateRetryResult,
    build_instruction_content,
    build_task_prompt,
)
from conclave.consensus import SUPPORTED_LOCALES
from conclave.costs import make_cost_model
from conclave.engine import DebateEngine, generate_id
from conclave.errors import RoutingError
from conclave.gates import CommandGate, run_gates
from conclave.guard import ExecutionGuard
from conclave.healthcheck import run_health_checks
from conclave.models import DebateConfig, DebateContext, DebateSession, DebateTurn, OutcomeStatus, Role
from conclave.observer import EventType, Observer, ObserverEvent
from conclave.output import print_codegen_result, print_outcome, print_turn, save_transcript
from conclave.policy import PolicyEngine
from conclave.providers.base import AIProvider
from conclave.router import ProviderRouter, build_all_providers, build_router
from conclave.store import FileDebateStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _check_and_filter_providers(all_providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(all_providers))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return all_providers

    working = {n: p for n, p in all_providers.items() if n not in failed_names}

    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(
        f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}"
    )
    console.print(f"Working providers: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _build_debate_config(
    config: AppConfig,
    topic: str,
    meta: dict[str, Any],
    description: str | None,
    participants: str | None,
    moderator: str | None,
    max_turns: int | None,
    budget: float | None,
    env_name: str | None,
    ticket: str | None,
) -> DebateConfig:
    """Precedence for every field: CLI flag > frontmatter > config default.

    Raises ValueError for unknown roles or inconsistent settings.
    """
    defaults = config.defaults

    if participants is not None:
        roles = [Role(r) for r in split_roles(participants)]
    elif "participants" in meta:
        roles = [Role(r) for r in split_roles(meta["participants"])]
    else:
        roles = list(defaults.participants)

    effective_moderator = Role(moderator or meta.get("moderator") or defaults.moderator)

    context_fields = {key: meta.get(key) for key in CONTEXT_KEYS}
    context_fields["summary"] = str(context_fields["summary"] or topic)
    context = DebateContext(
        env=env_name or str(meta.get("env", "dev")),
        ticket_id=ticket or str(meta.get("ticket", "")) or "N/A",
        description=description or None,
        additional={str(k): str(v) for k, v in (meta.get("additional") or {}).items()},
        **context_fields,
    )

    return DebateConfig(
        topic=topic,
        context=context,
        participants=tuple(roles),
        moderator=effective_moderator,
        max_turns=(
            max_turns if max_turns is not None
            else int(meta["max_turns"]) if "max_turns" in meta
            else defaults.max_turns
        ),
        budget_usd=(
            budget if budget is not None
            else float(meta["budget_usd"]) if "budget_usd" in meta
            else defaults.budget_usd
        ),
    )


def _check_routing(router: ProviderRouter, debate_config: DebateConfig) -> None:
    for role in debate_config.participants:
        try:
            provider = router.provider_for(role)
        except RoutingError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}. Check routing in settings.yaml and API keys in .env.")
            sys.exit(1)
        logger.debug("Role %s -> %s (%s)", role.value, provider.name(), provider.model_string())


async def _run_debate(
    config: AppConfig,
    router: ProviderRouter,
    debate_config: DebateConfig,
    output_dir: Path,
    locale: str,
) -> DebateSession:
    store = FileDebateStore(output_dir / "sessions")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task("Framing the debate...", total=None)

        def on_turn_complete(turn: DebateTurn, session: DebateSession) -> None:
            progress.print(f"[green]OK[/green] Turn {turn.turn_number} ({turn.role.value}, {turn.type.value})")
            print_turn(turn)
            progress.update(
                task_id,
                description=f"Turn {turn.turn_number + 1} / {debate_config.max_turns} "
                f"(${session.total_cost_usd:.4f} spent)",
            )

        def on_event(event: ObserverEvent) -> None:
            if event.type == EventType.ANOMALY_DETECTED:
                progress.print(f"[yellow]Anomaly:[/yellow] {event.data.get('message', event.data)}")
            elif event.type == EventType.BUDGET_WARNING:
                progress.print(f"[yellow]Budget warning:[/yellow] {event.data.get('message', event.data)}")

        engine = DebateEngine(
            router,
            store=store,
            cost_model=make_cost_model(config.pricing),
            on_turn_complete=on_turn_complete,
            budget=config.budget,
            temperature=config.defaults.temperature,
            locale=locale,
            tool_allowlist=config.guard.tool_allowlist,
            unknown_role_policy=config.guard.unknown_role_policy,
            on_event=on_event,
        )
        session = await engine.run(debate_config, workflow_id=generate_id("workflow"))

    return session


async def _run_implementation(config: AppConfig, session: DebateSession, working_dir: Path) -> GateRetryResult:
    codegen = config.codegen
    guard = ExecutionGuard(
        session.id,
        budget=config.budget,
        tool_allowlist=config.guard.tool_allowlist,
        unknown_role_policy=config.guard.unknown_role_policy,
    )
    observer = Observer(session.id, config.budget.max_total_cost_usd, config.budget.codegen_timeout_sec)
    gates = [CommandGate(g.name, g.command) for g in codegen.gates]
    policy = PolicyEngine()
    for extra in codegen.policies:
        policy.add_policy(extra)
    env = session.config.context.env

    task = CodeGenTask(
        id=generate_id("codegen"),
        debate_session_id=session.id,
        working_dir=working_dir,
        prompt=build_task_prompt(session),
        system_prompt=policy.generate_constraints(env),
        instruction_content=build_instruction_content(session),
        allowed_tools=tuple(codegen.allowed_tools),
        max_turns=codegen.max_turns,
        timeout_sec=config.budget.codegen_timeout_sec,
        env=env,
    )
    executor = GateRetryExecutor(
        CliCodeGenerator(cli_path=codegen.cli_path, instruction_file=codegen.instruction_file),
        lambda: run_gates(gates, working_dir, stop_on_failure=codegen.stop_on_failure),
        guard,
        observer=observer,
        policy=policy,
    )

    with console.status("Generating implementation..."):
        return await executor.execute(task)


@click.command()
@click.argument("topic", required=False)
@click.option("--file", "brief_file", type=click.Path(exists=True, dir_okay=False),
              help="Read topic and context from a markdown brief with YAML frontmatter")
@click.option("--participants", default=None, help="Comma-separated roles, e.g. pm,backend-developer,qa")
@click.option("--moderator", default=None, help="Moderating role (must be a participant)")
@click.option("--max-turns", type=int, default=None, help="Turn ceiling (default: from config)")
@click.option("--budget", type=float, default=None, help="Cost ceiling in USD (default: from config)")
@click.option("--env", "env_name", default=None, help="Environment tag: dev, staging, prod")
@click.option("--ticket", default=None, help="Originating ticket id")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--locale", type=click.Choice(SUPPORTED_LOCALES), default=None,
              help="Language of consensus summaries (default: from config)")
@click.option("--implement", "implement_dir", type=click.Path(exists=True, file_okay=False), default=None,
              help="After a resolved debate, generate code in this directory and verify it with the configured gates")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    topic: str | None,
    brief_file: str | None,
    participants: str | None,
    moderator: str | None,
    max_turns: int | None,
    budget: float | None,
    env_name: str | None,
    ticket: str | None,
    output_path: str | None,
    locale: str | None,
    implement_dir: str | None,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Conclave -- role-based agent debate with budget and execution guards.

    \b
    Examples:
      conclave "Should checkout use optimistic locking?" --ticket SHOP-42
      conclave --file brief.md --max-turns 8 --budget 2
      conclave "Add rate limiting" --participants pm,backend-developer,devops
      conclave --file brief.md --implement ./worktree
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    meta: dict[str, Any] = {}
    description: str | None = None
    if brief_file:
        body, meta = parse_brief(Path(brief_file))
        description = body or None
        topic = topic or meta.get("topic") or topic_from_body(body)

    if not topic:
        console.print("[bold red]Error:[/bold red] Provide a TOPIC argument or --file.")
        sys.exit(1)

    try:
        debate_config = _build_debate_config(
            config, topic, meta, description, participants, moderator, max_turns, budget, env_name, ticket,
        )
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    all_providers = build_all_providers(config)
    if not all_providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        all_providers = _check_and_filter_providers(all_providers)

    router = build_router(config, all_providers)
    _check_routing(router, debate_config)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    effective_locale = locale or config.defaults.locale

    console.print(
        f"\n[bold cyan]Conclave[/bold cyan] — {len(debate_config.participants)} roles, "
        f"max {debate_config.max_turns} turns, budget ${debate_config.budget_usd:.2f}"
    )
    console.print(f"Participants: {', '.join(p.value for p in debate_config.participants)}")
    console.print(f"Moderator: {debate_config.moderator.value}")
    console.print(f"Topic: [italic]{topic[:80]}{'...' if len(topic) > 80 else ''}[/italic]\n")

    session = asyncio.run(_run_debate(config, router, debate_config, output_dir, effective_locale))

    print_outcome(session)
    saved_path = save_transcript(session, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")

    outcome = session.outcome
    if implement_dir and outcome is not None:
        if outcome.status in (OutcomeStatus.CONSENSUS, OutcomeStatus.MODERATOR_DECIDED):
            result = asyncio.run(_run_implementation(config, session, Path(implement_dir)))
            print_codegen_result(result)
            if not result.succeeded:
                sys.exit(1)
        else:
            console.print(f"[yellow]Skipping implementation:[/yellow] debate ended with {outcome.status.value}")

    if outcome is not None and outcome.status == OutcomeStatus.ERROR:
        sys.exit(1)


if __name__ == "__main__":
    main()
