"""Debate engine: framing, proposals, counter/supplement rounds, resolution.

Turns run strictly one after another. Every turn is checked against the
session's ExecutionGuard and reported to its Observer; consensus is
recomputed from the full history before each iteration round.
"""

import logging
import math
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from conclave.consensus import SUPPORTED_LOCALES, ConsensusDetector, ConsensusStatus, Stance, StanceClassifier
from conclave.costs import CostModel, calculate_cost
from conclave.errors import DebateTimeoutError
from conclave.guard import UNRESTRICTED, Allowlist, ExecutionBudget, ExecutionGuard, GuardViolation, ViolationType
from conclave.models import (
    DebateConfig,
    DebateOutcome,
    DebateSession,
    DebateTurn,
    DissentingView,
    OutcomeStatus,
    Role,
    TurnType,
)
from conclave.observer import EventListener, Observer
from conclave.router import ProviderRouter
from conclave.store import DebateStore
from conclave.turn import TurnInput, execute_turn

logger = logging.getLogger(__name__)

TurnCallback = Callable[[DebateTurn, DebateSession], None]

DISSENT_PREVIEW_CHARS = 500

_VIOLATION_STATUS = {
    ViolationType.BUDGET_EXCEEDED: OutcomeStatus.BUDGET_EXCEEDED,
    ViolationType.TURN_LIMIT: OutcomeStatus.MAX_TURNS_REACHED,
}


def generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


@dataclass
class _Run:
    """Per-session collaborators. Never shared between runs."""

    session: DebateSession
    guard: ExecutionGuard
    observer: Observer
    detector: ConsensusDetector


class DebateEngine:
    def __init__(
        self,
        router: ProviderRouter,
        store: DebateStore | None = None,
        on_turn_complete: TurnCallback | None = None,
        cost_model: CostModel | None = None,
        budget: ExecutionBudget | None = None,
        temperature: float = 0.7,
        locale: str = "en",
        classifier: StanceClassifier | None = None,
        tool_allowlist: Mapping[Role, Allowlist] | None = None,
        unknown_role_policy: Allowlist = UNRESTRICTED,
        on_event: EventListener | None = None,
    ) -> None:
        if locale not in SUPPORTED_LOCALES:
            raise ValueError(f"Unsupported locale '{locale}', expected one of {SUPPORTED_LOCALES}")
        self._router = router
        self._store = store
        self._on_turn_complete = on_turn_complete
        self._cost_model = cost_model or calculate_cost
        self._budget = budget
        self._temperature = temperature
        self._locale = locale
        self._classifier = classifier
        self._tool_allowlist = tool_allowlist
        self._unknown_role_policy = unknown_role_policy
        self._on_event = on_event

    async def run(self, config: DebateConfig, workflow_id: str) -> DebateSession:
        """Run one debate to a terminal outcome. Never raises; failures become an ``error`` outcome."""
        session_id = generate_id("debate")
        start = time.monotonic()
        session = DebateSession(id=session_id, workflow_id=workflow_id, config=config)

        logger.info(
            "Debate started: %s topic=%r participants=%s moderator=%s max_turns=%d",
            session_id,
            config.topic[:80],
            [p.value for p in config.participants],
            config.moderator.value,
            config.max_turns,
        )

        try:
            run = self._start_run(session)
            if self._store is not None:
                await self._store.save(session)
            outcome = await self._debate(run)
        except Exception as exc:
            logger.exception("Debate %s failed", session_id)
            outcome = DebateOutcome(
                status=OutcomeStatus.ERROR,
                decision="Debate failed due to an error",
                artifacts=session.collect_artifacts(),
                error=str(exc),
            )

        session.close(outcome, time.monotonic() - start)

        if self._store is not None:
            try:
                await self._store.complete(session_id, outcome, session.duration_sec)
            except Exception as exc:
                logger.warning("Could not persist outcome for %s: %s", session_id, exc)

        logger.info(
            "Debate completed: %s status=%s turns=%d cost=$%.4f duration=%.1fs",
            session_id,
            outcome.status.value,
            len(session.turns),
            session.total_cost_usd,
            session.duration_sec,
        )
        return session

    def _start_run(self, session: DebateSession) -> _Run:
        """Budget, guard, observer and detector for one session.

        Reads ``DEBATE_*``/``CODEGEN_*`` when no budget was injected, so a
        malformed value raises here, inside ``run``'s error handling.
        """
        config = session.config
        budget = (self._budget or ExecutionBudget.from_env()).with_overrides(
            max_total_cost_usd=config.budget_usd,
            max_debate_turns=config.max_turns,
        )
        observer = Observer(session.id, config.budget_usd, budget.debate_timeout_sec)
        if self._on_event is not None:
            observer.on_event(self._on_event)
        return _Run(
            session=session,
            guard=ExecutionGuard(
                session.id,
                budget=budget,
                tool_allowlist=self._tool_allowlist,
                unknown_role_policy=self._unknown_role_policy,
            ),
            observer=observer,
            detector=ConsensusDetector(self._classifier, self._locale),
        )

    # ─── Phases ───────────────────────────────────────────────────────────────

    async def _debate(self, run: _Run) -> DebateOutcome:
        config = run.session.config
        debaters = config.debaters

        # Framing
        await self._take_turn(run, config.moderator, TurnType.PROPOSAL)

        # Proposals
        for role in debaters:
            _, violation = await self._take_turn(run, role, TurnType.PROPOSAL)
            if violation is not None:
                return self._violation_outcome(run.session, violation)

        return await self._iterate(run, debaters)

    async def _iterate(self, run: _Run, debaters: list[Role]) -> DebateOutcome:
        session = run.session
        config = session.config
        remaining = config.max_turns - len(session.turns)
        max_rounds = math.ceil(remaining / len(debaters)) if debaters else 0

        for round_number in range(1, max_rounds + 1):
            consensus = run.detector.analyze(session.turns, config.participants)
            logger.info("Round %d: %s", round_number, consensus.summary)

            if consensus.status == ConsensusStatus.CONSENSUS:
                turn, _ = await self._take_turn(run, config.moderator, TurnType.CONSENSUS)
                return DebateOutcome(
                    status=OutcomeStatus.CONSENSUS,
                    decision=turn.content,
                    artifacts=session.collect_artifacts(),
                )

            if consensus.is_stalemate:
                turn, _ = await self._take_turn(run, config.moderator, TurnType.DECISION)
                return DebateOutcome(
                    status=OutcomeStatus.MODERATOR_DECIDED,
                    decision=turn.content,
                    artifacts=session.collect_artifacts(),
                    dissenting_views=self._dissenting_views(session, consensus.roles_with(Stance.DISAGREE)),
                )

            for role in debaters:
                turn_type = TurnType.COUNTER if consensus.stances.get(role) == Stance.DISAGREE else TurnType.SUPPLEMENT
                _, violation = await self._take_turn(run, role, turn_type)
                if violation is not None:
                    return self._violation_outcome(session, violation)

        return DebateOutcome(
            status=OutcomeStatus.MAX_TURNS_REACHED,
            decision="Maximum debate turns reached without full consensus",
            artifacts=session.collect_artifacts(),
        )

    # ─── Single turn ──────────────────────────────────────────────────────────

    async def _take_turn(
        self,
        run: _Run,
        role: Role,
        turn_type: TurnType,
    ) -> tuple[DebateTurn, GuardViolation | None]:
        session = run.session
        config = session.config

        timeout = run.guard.check_debate_timeout()
        if timeout is not None:
            raise DebateTimeoutError(timeout.message, timeout.details)

        turn_number = len(session.turns) + 1
        run.observer.on_turn_start(role, turn_number)

        turn = await execute_turn(
            TurnInput(
                turn_number=turn_number,
                role=role,
                turn_type=turn_type,
                topic=config.topic,
                context=config.context,
                previous_turns=tuple(session.turns),
            ),
            self._router,
            temperature=self._temperature,
        )

        cost_usd = self._cost_model(turn.tokens_used.input, turn.tokens_used.output, turn.model)
        violation = run.guard.record_turn(turn.tokens_used, cost_usd)
        session.append_turn(turn, cost_usd)

        token_violation = run.guard.check_turn_tokens(turn.tokens_used)
        if token_violation is not None:
            run.observer.on_budget_warning(token_violation.message, {"role": role.value, **token_violation.details})

        run.observer.on_turn_end(turn, session.total_cost_usd)

        if self._store is not None:
            try:
                await self._store.update_turns(session.id, list(session.turns), session.total_tokens, session.total_cost_usd)
            except Exception as exc:
                logger.warning("Could not persist turn %d for %s: %s", turn_number, session.id, exc)

        if self._on_turn_complete is not None:
            self._on_turn_complete(turn, session)

        return turn, violation

    # ─── Outcomes ─────────────────────────────────────────────────────────────

    @staticmethod
    def _violation_outcome(session: DebateSession, violation: GuardViolation) -> DebateOutcome:
        status = _VIOLATION_STATUS.get(violation.type, OutcomeStatus.ERROR)
        logger.warning("Debate %s stopped by guard: %s", session.id, violation.message)
        return DebateOutcome(
            status=status,
            decision=f"Debate stopped: {violation.type.value}",
            artifacts=session.collect_artifacts(),
        )

    @staticmethod
    def _dissenting_views(session: DebateSession, roles: list[Role]) -> list[DissentingView]:
        views = []
        for role in roles:
            last = session.last_turn_of(role)
            views.append(DissentingView(role=role, view=last.content[:DISSENT_PREVIEW_CHARS] if last else ""))
        return views
