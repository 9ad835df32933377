"""
Answer grading.

Pure functions only: no database access, no logging. A submitted answer is
normalised into an ``AnswerValue`` before grading so every question type can
match on the answer kind instead of probing Python types.
"""
import enum
from dataclasses import dataclass
from typing import Any, Union

from models.quiz import QuestionType


class AnswerKind(str, enum.Enum):
    TEXT = "TEXT"
    BOOL = "BOOL"
    NUMBER = "NUMBER"
    MISSING = "MISSING"


@dataclass(frozen=True)
class AnswerValue:
    kind: AnswerKind
    payload: Union[str, bool, int, float, None] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "AnswerValue":
        # bool is a subclass of int, so it has to be checked first
        if raw is None:
            return MISSING
        if isinstance(raw, bool):
            return cls(AnswerKind.BOOL, raw)
        if isinstance(raw, (int, float)):
            return cls(AnswerKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(AnswerKind.TEXT, raw)
        raise TypeError(f"Unsupported answer value: {type(raw).__name__}")

    @property
    def is_missing(self) -> bool:
        return self.kind is AnswerKind.MISSING

    def to_raw(self):
        """JSON-storable form of the answer."""
        return self.payload


MISSING = AnswerValue(AnswerKind.MISSING)


@dataclass(frozen=True)
class GradeResult:
    is_correct: bool
    points_earned: int


INCORRECT = GradeResult(is_correct=False, points_earned=0)


def _normalise_text(value: str) -> str:
    return value.strip().lower()


def _matches_exactly(answer: AnswerValue, correct: Any) -> bool:
    if isinstance(correct, list):
        return False
    try:
        expected = AnswerValue.from_raw(correct)
    except TypeError:
        return False
    return not expected.is_missing and answer == expected


def _matches_text(answer: AnswerValue, correct: Any) -> bool:
    if answer.kind is not AnswerKind.TEXT:
        return False
    # A list holds accepted alternatives
    accepted = correct if isinstance(correct, list) else [correct]
    given = _normalise_text(answer.payload)
    return any(isinstance(option, str) and _normalise_text(option) == given for option in accepted)


def grade_answer(question, answer: AnswerValue) -> GradeResult:
    """Grade one answer against a question.

    ``question`` only needs ``type``, ``correct_answer`` and ``points``.
    Essays are never auto-graded and always score zero.
    """
    if answer.is_missing:
        return INCORRECT

    question_type = QuestionType(question.type)
    if question_type in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        is_correct = _matches_exactly(answer, question.correct_answer)
    elif question_type in (QuestionType.FILL_IN_BLANK, QuestionType.SHORT_ANSWER):
        is_correct = _matches_text(answer, question.correct_answer)
    elif question_type is QuestionType.ESSAY:
        is_correct = False
    else:  # pragma: no cover - QuestionType() already rejects unknown values
        raise ValueError(f"Unknown question type: {question.type}")

    if not is_correct:
        return INCORRECT
    return GradeResult(is_correct=True, points_earned=question.points)


def calculate_score(earned_points: int, total_points: int) -> float:
    """Percentage score in [0, 100]; zero when the quiz carries no points."""
    if total_points <= 0:
        return 0.0
    return min(100.0, max(0.0, earned_points / total_points * 100))


def is_passing(score: float, passing_score) -> bool:
    if passing_score is None:
        return True
    return score >= passing_score
