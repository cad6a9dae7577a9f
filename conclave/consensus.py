"""Consensus detection: keyword stance classification, agreement rate, stalemate history."""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from conclave.models import DebateTurn, Role


class Stance(str, Enum):
    AGREE = "agree"
    PARTIAL = "partial"
    DISAGREE = "disagree"
    NEUTRAL = "neutral"


class ConsensusStatus(str, Enum):
    CONSENSUS = "consensus"
    PARTIAL = "partial"
    DISAGREEMENT = "disagreement"
    STALEMATE = "stalemate"


CONSENSUS_THRESHOLD = 0.8
PARTIAL_THRESHOLD = 0.5
STALEMATE_WINDOW = 3

AGREEMENT_KEYWORDS = (
    # Korean
    "동의합니다",
    "동의해요",
    "찬성합니다",
    "찬성해요",
    "좋습니다",
    "좋은 방향",
    "적절합니다",
    "맞습니다",
    "수긍합니다",
    "합의합니다",
    "이 방향이 좋",
    "이견 없습니다",
    "이견없습니다",
    "문제 없습니다",
    "문제없습니다",
    "지지합니다",
    "동의하며",
    "찬성하며",
    # English
    "i agree",
    "agreed",
    "sounds good",
    "makes sense",
    "i support",
    "no objection",
    "looks good",
    "well aligned",
    "consensus",
    "on board",
    "approve",
    "lgtm",
)

DISAGREEMENT_KEYWORDS = (
    # Korean
    "반대합니다",
    "반대해요",
    "동의하지 않",
    "동의할 수 없",
    "우려됩니다",
    "우려가 있",
    "재고가 필요",
    "다시 생각",
    "문제가 있",
    "위험합니다",
    "대안을 제안",
    "다른 접근",
    "부적절합니다",
    "수정이 필요",
    # English
    "i disagree",
    "i object",
    "concerned about",
    "not convinced",
    "alternative approach",
    "reconsider",
    "push back",
    "not ideal",
    "risky",
    "problem with",
)

# Checked first: these phrases also contain agreement keywords
PARTIAL_AGREEMENT_KEYWORDS = (
    # Korean
    "부분적으로 동의",
    "조건부 동의",
    "일부 동의",
    "대체로 좋지만",
    "기본적으로 찬성하지만",
    "방향은 좋으나",
    "동의하지만 다만",
    # English
    "partially agree",
    "mostly agree but",
    "agree with reservations",
    "conditionally agree",
    "generally supportive but",
)


class StanceClassifier(Protocol):
    """Maps one turn's text to a stance. Any plain function with this signature fits."""

    def __call__(self, content: str) -> Stance: ...


class KeywordStanceClassifier:
    """Substring matching over Korean and English phrase lists."""

    def __init__(
        self,
        agreement: Sequence[str] = AGREEMENT_KEYWORDS,
        disagreement: Sequence[str] = DISAGREEMENT_KEYWORDS,
        partial: Sequence[str] = PARTIAL_AGREEMENT_KEYWORDS,
    ) -> None:
        self._agreement = tuple(k.lower() for k in agreement)
        self._disagreement = tuple(k.lower() for k in disagreement)
        self._partial = tuple(k.lower() for k in partial)

    def __call__(self, content: str) -> Stance:
        """Classify ``content`` case-insensitively.

        Precedence: a partial phrase wins outright; agreement and disagreement
        phrases together also count as partial; otherwise whichever is present,
        or neutral when neither is.
        """
        lower = content.lower()

        if any(kw in lower for kw in self._partial):
            return Stance.PARTIAL

        has_agreement = any(kw in lower for kw in self._agreement)
        has_disagreement = any(kw in lower for kw in self._disagreement)

        if has_agreement and has_disagreement:
            return Stance.PARTIAL
        if has_agreement:
            return Stance.AGREE
        if has_disagreement:
            return Stance.DISAGREE
        return Stance.NEUTRAL


_SUMMARIES = {
    "en": {
        "stalemate": "Stalemate detected (consensus {pct}%). A moderator decision is required.",
        "consensus": "Consensus reached (consensus {pct}%). All participants agree.",
        "partial": "Partial consensus (consensus {pct}%). Dissenting roles: {roles}. Further discussion needed.",
        "disagreement": "Disagreement (consensus {pct}%). Opposing roles: {roles}. Counter-arguments or supplements needed.",
        "none": "none",
    },
    "ko": {
        "stalemate": "교착 상태 감지 (합의율 {pct}%). 중재자 결정이 필요합니다.",
        "consensus": "합의 도달 (합의율 {pct}%). 모든 참여자가 동의합니다.",
        "partial": "부분 합의 (합의율 {pct}%). 이견 에이전트: {roles}. 추가 논의가 필요합니다.",
        "disagreement": "이견 상태 (합의율 {pct}%). 반대 에이전트: {roles}. 반론/보완이 필요합니다.",
        "none": "없음",
    },
}

SUPPORTED_LOCALES = tuple(_SUMMARIES)


@dataclass(frozen=True)
class ConsensusResult:
    status: ConsensusStatus
    consensus_rate: float
    stances: dict[Role, Stance]
    is_stalemate: bool
    summary: str

    def roles_with(self, stance: Stance) -> list[Role]:
        """Roles holding ``stance``, in participant order."""
        return [role for role, s in self.stances.items() if s == stance]


def _round_percent(rate: float) -> int:
    return math.floor(rate * 100 + 0.5)


class ConsensusDetector:
    """Aggregates participant stances for one debate.

    Holds the per-round rate history used for stalemate detection, so an
    instance must not be shared between debates (or must be ``reset()``).
    """

    def __init__(self, classifier: StanceClassifier | None = None, locale: str = "en") -> None:
        if locale not in _SUMMARIES:
            raise ValueError(f"Unsupported locale '{locale}', expected one of {SUPPORTED_LOCALES}")
        self._classify = classifier or KeywordStanceClassifier()
        self._locale = locale
        self._previous_rates: list[int] = []

    def analyze(self, turns: Sequence[DebateTurn], participants: Sequence[Role]) -> ConsensusResult:
        """Classify each participant's latest turn and score the round.

        Every call appends the rounded rate to the stalemate history, so call
        it once per round.

        Args:
            turns: Full debate history, oldest first.
            participants: Voting roles. A role with no turn yet counts as neutral.

        Returns:
            ConsensusResult with ``consensus_rate = (agree + 0.5 * partial) / participants``
            (0.0 with no participants). Stalemate takes precedence over the
            rate thresholds.
        """
        stances: dict[Role, Stance] = {}
        for role in participants:
            latest = next((t for t in reversed(turns) if t.role == role), None)
            stances[role] = self._classify(latest.content) if latest else Stance.NEUTRAL

        agree_count = sum(1 for s in stances.values() if s == Stance.AGREE)
        partial_count = sum(1 for s in stances.values() if s == Stance.PARTIAL)
        voters = len(participants)
        rate = (agree_count + partial_count * 0.5) / voters if voters else 0.0

        self._previous_rates.append(_round_percent(rate))
        is_stalemate = self._detect_stalemate()
        status = self._determine_status(rate, is_stalemate)

        return ConsensusResult(
            status=status,
            consensus_rate=rate,
            stances=stances,
            is_stalemate=is_stalemate,
            summary=self._build_summary(status, rate, stances),
        )

    def reset(self) -> None:
        """Forget the stalemate history."""
        self._previous_rates = []

    def _detect_stalemate(self) -> bool:
        # the last STALEMATE_WINDOW rounded rates are identical
        if len(self._previous_rates) < STALEMATE_WINDOW:
            return False
        return len(set(self._previous_rates[-STALEMATE_WINDOW:])) == 1

    @staticmethod
    def _determine_status(rate: float, is_stalemate: bool) -> ConsensusStatus:
        if is_stalemate:
            return ConsensusStatus.STALEMATE
        if rate >= CONSENSUS_THRESHOLD:
            return ConsensusStatus.CONSENSUS
        if rate >= PARTIAL_THRESHOLD:
            return ConsensusStatus.PARTIAL
        return ConsensusStatus.DISAGREEMENT

    def _build_summary(self, status: ConsensusStatus, rate: float, stances: dict[Role, Stance]) -> str:
        templates = _SUMMARIES[self._locale]
        pct = _round_percent(rate)
        dissenters = [role.value for role, s in stances.items() if s == Stance.DISAGREE]
        roles = ", ".join(dissenters) or templates["none"]
        return templates[status.value].format(pct=pct, roles=roles)
