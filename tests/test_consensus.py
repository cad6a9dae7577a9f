"""Tests for conclave/consensus.py."""

import pytest

from conclave.consensus import ConsensusDetector, ConsensusStatus, KeywordStanceClassifier, Stance
from conclave.models import DebateTurn, Role, TurnType

PARTICIPANTS = (Role.PM, Role.BACKEND_DEVELOPER, Role.QA, Role.DEVOPS)


def _turns(*pairs: tuple[Role, str]) -> list[DebateTurn]:
    return [
        DebateTurn(turn_number=i, role=role, type=TurnType.PROPOSAL, content=content)
        for i, (role, content) in enumerate(pairs, start=1)
    ]


@pytest.mark.parametrize(
    "content, expected",
    [
        ("I agree with the read-through cache.", Stance.AGREE),
        ("동의합니다. 좋은 방향입니다.", Stance.AGREE),
        ("I disagree: cache invalidation here is risky.", Stance.DISAGREE),
        ("반대합니다. 다른 접근이 필요합니다.", Stance.DISAGREE),
        ("I partially agree, the TTL needs work.", Stance.PARTIAL),
        ("Sounds good overall, but I am concerned about invalidation.", Stance.PARTIAL),
        ("Here is the cache layout for the catalogue.", Stance.NEUTRAL),
    ],
)
def test_keyword_classifier(content, expected):
    assert KeywordStanceClassifier()(content) == expected


def test_classifier_is_case_insensitive():
    assert KeywordStanceClassifier()("LGTM") == Stance.AGREE


def test_partial_phrase_wins_over_agree_keyword():
    # "conditionally agree" also contains an agreement keyword
    assert KeywordStanceClassifier()("I conditionally agree") == Stance.PARTIAL


def test_silent_participant_counts_as_neutral():
    detector = ConsensusDetector()
    turns = _turns(
        (Role.PM, "Framing the question."),
        (Role.BACKEND_DEVELOPER, "I agree"),
        (Role.QA, "I agree"),
        (Role.DEVOPS, "I agree"),
    )
    result = detector.analyze(turns, PARTICIPANTS + (Role.UX_DESIGNER,))
    # 3 agree out of 5 voters with ux-designer silent
    assert result.consensus_rate == pytest.approx(0.6)
    assert result.status == ConsensusStatus.PARTIAL
    assert result.stances[Role.UX_DESIGNER] == Stance.NEUTRAL


def test_consensus_rate_counts_partial_as_half():
    detector = ConsensusDetector()
    turns = _turns(
        (Role.PM, "I agree"),
        (Role.BACKEND_DEVELOPER, "I agree"),
        (Role.QA, "I partially agree"),
        (Role.DEVOPS, "I agree"),
    )
    result = detector.analyze(turns, PARTICIPANTS)
    assert result.consensus_rate == pytest.approx(0.875)
    assert result.status == ConsensusStatus.CONSENSUS


def test_half_partial_split_is_three_quarters():
    detector = ConsensusDetector()
    turns = _turns(
        (Role.PM, "I agree"),
        (Role.BACKEND_DEVELOPER, "I partially agree"),
        (Role.QA, "I agree"),
        (Role.DEVOPS, "I partially agree"),
    )
    result = detector.analyze(turns, PARTICIPANTS)
    assert result.consensus_rate == 0.75
    assert result.status == ConsensusStatus.PARTIAL


def test_only_latest_turn_per_role_counts():
    detector = ConsensusDetector()
    turns = _turns(
        (Role.QA, "I disagree"),
        (Role.QA, "After the revision, I agree"),
    )
    result = detector.analyze(turns, (Role.QA,))
    assert result.stances[Role.QA] == Stance.AGREE


def test_disagreement_summary_names_roles():
    detector = ConsensusDetector()
    turns = _turns((Role.PM, "I disagree"), (Role.QA, "I disagree"), (Role.DEVOPS, "Neutral remark"))
    result = detector.analyze(turns, (Role.PM, Role.QA, Role.DEVOPS))
    assert result.status == ConsensusStatus.DISAGREEMENT
    assert result.roles_with(Stance.DISAGREE) == [Role.PM, Role.QA]
    assert "pm, qa" in result.summary
    assert "0%" in result.summary


def test_stalemate_after_three_identical_rates():
    detector = ConsensusDetector()
    turns = _turns((Role.PM, "I agree"), (Role.QA, "I disagree"))
    participants = (Role.PM, Role.QA)

    first = detector.analyze(turns, participants)
    second = detector.analyze(turns, participants)
    third = detector.analyze(turns, participants)

    assert not first.is_stalemate
    assert not second.is_stalemate
    assert third.is_stalemate
    assert third.status == ConsensusStatus.STALEMATE


def test_changed_rate_breaks_stalemate_window():
    detector = ConsensusDetector()
    participants = (Role.PM, Role.QA)
    split = _turns((Role.PM, "I agree"), (Role.QA, "I disagree"))
    detector.analyze(split, participants)
    detector.analyze(split, participants)
    detector.analyze(_turns((Role.PM, "I agree"), (Role.QA, "I partially agree")), participants)
    assert not detector.analyze(split, participants).is_stalemate


def test_reset_clears_history():
    detector = ConsensusDetector()
    turns = _turns((Role.PM, "I agree"), (Role.QA, "I disagree"))
    for _ in range(2):
        detector.analyze(turns, (Role.PM, Role.QA))
    detector.reset()
    assert not detector.analyze(turns, (Role.PM, Role.QA)).is_stalemate


def test_korean_summary():
    detector = ConsensusDetector(locale="ko")
    result = detector.analyze(_turns((Role.PM, "동의합니다")), (Role.PM,))
    assert "합의 도달" in result.summary
    assert "100%" in result.summary


def test_unsupported_locale_rejected():
    with pytest.raises(ValueError, match="locale"):
        ConsensusDetector(locale="fr")


def test_custom_classifier_is_used():
    detector = ConsensusDetector(classifier=lambda content: Stance.AGREE)
    result = detector.analyze(_turns((Role.QA, "I disagree")), (Role.QA,))
    assert result.stances[Role.QA] == Stance.AGREE
