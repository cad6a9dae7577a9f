"""Single debate turn: persona prompt, one provider call, artifact extraction."""

import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass

from conclave.models import Artifact, DebateContext, DebateTurn, Role, TurnType
from conclave.personas import get_persona
from conclave.prompts import build_system_prompt, build_turn_instruction
from conclave.router import ProviderRouter

logger = logging.getLogger(__name__)

_ARTIFACT_RE = re.compile(
    r'<artifact\s+type="([^"]+)"\s+title="([^"]+)"(?:\s+format="([^"]+)")?\s*>(.*?)</artifact>',
    re.DOTALL,
)


@dataclass(frozen=True)
class TurnInput:
    turn_number: int
    role: Role
    turn_type: TurnType
    topic: str
    context: DebateContext
    previous_turns: Sequence[DebateTurn] = ()


def parse_artifacts(text: str) -> list[Artifact]:
    """Extract ``<artifact type=".." title=".." [format=".."]>`` blocks in order."""
    return [
        Artifact(type=kind, title=title, content=content.strip(), format=fmt or "markdown")
        for kind, title, fmt, content in _ARTIFACT_RE.findall(text)
    ]


async def execute_turn(
    turn_input: TurnInput,
    router: ProviderRouter,
    temperature: float = 0.7,
) -> DebateTurn:
    """Run one turn for one role. Provider errors propagate to the caller."""
    persona = get_persona(turn_input.role)
    start = time.monotonic()

    system_prompt = build_system_prompt(persona, turn_input.context)
    instruction = build_turn_instruction(
        turn_input.turn_type,
        turn_input.turn_number,
        turn_input.topic,
        turn_input.previous_turns,
        persona,
    )

    logger.info(
        "Executing turn %d: %s (%s)",
        turn_input.turn_number,
        turn_input.role.value,
        turn_input.turn_type.value,
    )

    provider = router.provider_for(turn_input.role)
    completion = await provider.complete(
        instruction,
        system_prompt=system_prompt,
        max_tokens=persona.max_tokens_per_turn,
        temperature=temperature,
    )

    artifacts = parse_artifacts(completion.text)
    turn = DebateTurn(
        turn_number=turn_input.turn_number,
        role=turn_input.role,
        type=turn_input.turn_type,
        content=completion.text,
        artifacts=tuple(artifacts),
        tokens_used=completion.tokens_used,
        model=completion.model,
        duration_sec=time.monotonic() - start,
    )

    logger.info(
        "Turn %d completed: %s, %d tokens, %d artifacts, %.2fs",
        turn.turn_number,
        turn.role.value,
        turn.tokens_used.total,
        len(artifacts),
        turn.duration_sec,
    )
    return turn
