"""System prompt and per-turn instruction builders for debate turns."""

from collections.abc import Sequence

from conclave.models import DebateContext, DebateTurn, TurnType
from conclave.personas import PersonaDefinition

STANCE_PREVIEW_CHARS = 200

_DEBATE_RULES = """## Debate Rules
1. **Stay in role**: you are the {title}. Argue from your own area of expertise.
2. **Be constructive**: whenever you object, put an alternative on the table.
3. **Give reasons**: every claim needs a justification.
4. **State your stance plainly**: say "I agree", "I partially agree" or "I disagree" so the moderator can track positions.
5. **Produce artifacts**: wrap concrete deliverables in <artifact type="..." title="..." format="...">...</artifact> tags.
6. **Respect the other roles**: acknowledge each participant's expertise."""

_REVIEW_CHECKPOINTS_CONSENSUS = """## REVIEW_CHECKPOINTS
- [Checkpoint 1: a judgement made by the agents that needs business-logic verification]
- [Checkpoint 2: an edge case or error path that needs review]
- [Checkpoint 3: a security, performance or operations call a human must make]"""

_REVIEW_CHECKPOINTS_DECISION = """## REVIEW_CHECKPOINTS
- [Checkpoint 1: where this decision accepted a trade-off]
- [Checkpoint 2: where there was dissent, and whether it is actually safe to override]
- [Checkpoint 3: a business or operations call only a human can make]"""

_INSTRUCTIONS = {
    TurnType.PROPOSAL: """## Instruction: Proposal (Turn {turn_number})

You are the {title} ({codename}).
Make your **initial proposal** on the topic above from the perspective of your area of expertise.

Include:
1. Your analysis of the topic
2. Concrete proposals
3. Expected benefits and risks
4. What the other roles should take into account

Apply your decision framework: {decision_framework}""",
    TurnType.COUNTER: """## Instruction: Counter-argument (Turn {turn_number})

You are the {title} ({codename}).
Review the earlier proposals and raise your **objections or concerns** from your area of expertise.

Include:
1. What worries you in the earlier proposals
2. The concrete reasons you disagree
3. **An alternative you propose instead** (mandatory)
4. Why your alternative is better

Do not only object: offer a constructive alternative.""",
    TurnType.SUPPLEMENT: """## Instruction: Supplement (Turn {turn_number})

You are the {title} ({codename}).
Review the discussion so far and **add what is missing** from your area of expertise.

Include:
1. What you agree with and why
2. Additional considerations
3. Perspectives the discussion has missed
4. Concrete implementation or execution suggestions

Contribute in the direction of agreement.""",
    TurnType.CONSENSUS: """## Instruction: Consensus Summary (Turn {turn_number})

You are the {title} ({codename}), acting as moderator.
Wrap up the whole debate and **summarise what was agreed**.

{stance_overview}

Include:
1. The list of agreed points
2. Remaining disagreements (if any)
3. The final decision
4. Next steps (action items)
5. Concrete deliverables inside <artifact> tags
6. 3 to 5 **points a human reviewer must check**, in this format:

{review_checkpoints}

Reflect every participant's view fairly.""",
    TurnType.DECISION: """## Instruction: Final Decision (Turn {turn_number})

You are the {title} ({codename}), acting as moderator.
The debate has reached a stalemate. **Make the final decision.**

{stance_overview}

Include:
1. A fair assessment of each position
2. The final decision and its rationale
3. An explicit response to each dissenting view
4. Execution plan (action items)
5. Risk mitigations
6. Concrete deliverables inside <artifact> tags
7. 3 to 5 **points a human reviewer must check**, in this format:

{review_checkpoints}

Judge fairly as moderator, with project success as the first priority.""",
}


def build_system_prompt(persona: PersonaDefinition, context: DebateContext) -> str:
    sections: list[str] = []

    sections.append(
        f"# {persona.title} ({persona.codename})\n\n"
        f"{persona.description}\n\n"
        "## Your Identity\n"
        f"- **Codename**: {persona.codename}\n"
        f"- **Role**: {persona.title}\n"
        f"- **Decision Framework**: {persona.decision_framework}\n\n"
        "## Your Traits\n" + "\n".join(f"- {t}" for t in persona.traits) + "\n\n"
        "## Your Domain Expertise\n" + "\n".join(f"- {d}" for d in persona.domain_expertise) + "\n\n"
        "## Your Preferred Vocabulary\n"
        f"Use these terms naturally: {', '.join(persona.vocabulary)}"
    )

    domain = [
        "## Domain Context",
        f"- **Environment**: {context.env}",
        f"- **Ticket**: {context.ticket_id}",
        f"- **Summary**: {context.summary}",
    ]
    if context.description:
        domain.append(f"- **Description**: {context.description}")
    sections.append("\n".join(domain))

    optional = (
        ("Wiki Knowledge (Reference)", context.wiki_knowledge),
        ("Design Context", context.design_context),
        ("Code Context", context.code_context),
        ("Previous Decisions", context.previous_decisions),
    )
    for heading, body in optional:
        if body:
            sections.append(f"## {heading}\n{body}")
    for heading, body in context.additional.items():
        sections.append(f"## {heading}\n{body}")

    sections.append(_DEBATE_RULES.format(title=persona.title))
    return "\n\n".join(sections)


def format_previous_turns(turns: Sequence[DebateTurn]) -> str:
    parts: list[str] = []
    for t in turns:
        artifacts = ""
        if t.artifacts:
            artifacts = f"\n  [Artifacts: {', '.join(a.title for a in t.artifacts)}]"
        parts.append(f"### Turn {t.turn_number} - {t.role.value} ({t.type.value}){artifacts}\n{t.content}")
    return "\n\n---\n\n".join(parts)


def summarize_stances(turns: Sequence[DebateTurn]) -> str:
    """Latest view per role, truncated, for the moderator's wrap-up turns."""
    if not turns:
        return ""
    views: dict[str, str] = {}
    for turn in turns:
        preview = turn.content[:STANCE_PREVIEW_CHARS]
        if len(turn.content) > STANCE_PREVIEW_CHARS:
            preview += "..."
        views[turn.role.value] = f"{turn.type.value}: {preview}"
    lines = [f"- **{role}**: {view}" for role, view in views.items()]
    return "### Positions so far\n" + "\n".join(lines)


def build_turn_instruction(
    turn_type: TurnType,
    turn_number: int,
    topic: str,
    previous_turns: Sequence[DebateTurn],
    persona: PersonaDefinition,
) -> str:
    sections = [f"## Debate Topic\n{topic}"]
    if previous_turns:
        sections.append(f"## Debate So Far\n{format_previous_turns(previous_turns)}")

    template = _INSTRUCTIONS[TurnType(turn_type)]
    checkpoints = (
        _REVIEW_CHECKPOINTS_DECISION if turn_type == TurnType.DECISION else _REVIEW_CHECKPOINTS_CONSENSUS
    )
    sections.append(
        template.format(
            turn_number=turn_number,
            title=persona.title,
            codename=persona.codename,
            decision_framework=persona.decision_framework,
            stance_overview=summarize_stances(previous_turns),
            review_checkpoints=checkpoints,
        )
    )
    return "\n\n".join(sections)
