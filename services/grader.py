"""
Answer grading.

Raw answers arrive in whatever shape the client sent (index, option label,
list of either, free text). They are first normalized into one of the tagged
answer variants below, keyed by the question type, and then compared against
the question's correct answer. Grading is pure: no I/O, no mutation of the
question record.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from utils import as_int


QUESTION_TYPES = ("multiple_choice", "checkbox", "text", "code")

UNRESOLVED_INDEX = -1


@dataclass(frozen=True)
class MultipleChoiceAnswer:
    index: int

    def to_json(self) -> Any:
        return self.index


@dataclass(frozen=True)
class CheckboxAnswer:
    indices: tuple[int, ...]

    def to_json(self) -> Any:
        return list(self.indices)


@dataclass(frozen=True)
class TextAnswer:
    text: str

    def to_json(self) -> Any:
        return self.text


@dataclass(frozen=True)
class CodeAnswer:
    text: str

    def to_json(self) -> Any:
        return self.text


@dataclass(frozen=True)
class UnsupportedAnswer:
    raw: Any

    def to_json(self) -> Any:
        return self.raw


Answer = Union[MultipleChoiceAnswer, CheckboxAnswer, TextAnswer, CodeAnswer, UnsupportedAnswer]


@dataclass(frozen=True)
class GradeResult:
    normalized_answer: Answer
    answer_text: Any
    is_correct: bool
    points_awarded: int


def _options(question: dict[str, Any]) -> list[str]:
    opts = question.get("options") or []
    if not isinstance(opts, list):
        return []
    return [str(o) for o in opts]


def resolve_option_index(options: list[str], value: Any) -> int:
    """Index for an option given either its position or its label; -1 when unresolvable."""
    if isinstance(value, bool) or value is None:
        return UNRESOLVED_INDEX
    if isinstance(value, int):
        return value if 0 <= value < len(options) else UNRESOLVED_INDEX
    if isinstance(value, float) and value.is_integer():
        idx = int(value)
        return idx if 0 <= idx < len(options) else UNRESOLVED_INDEX
    if isinstance(value, str):
        try:
            return options.index(value)
        except ValueError:
            return UNRESOLVED_INDEX
    return UNRESOLVED_INDEX


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (list, dict, bool)):
        return None
    return str(value)


def normalize_answer(question: dict[str, Any], raw: Any) -> Answer:
    qtype = str(question.get("type") or "")
    if qtype == "multiple_choice":
        return MultipleChoiceAnswer(resolve_option_index(_options(question), raw))
    if qtype == "checkbox":
        if not isinstance(raw, list):
            return CheckboxAnswer((UNRESOLVED_INDEX,))
        options = _options(question)
        return CheckboxAnswer(tuple(sorted({resolve_option_index(options, v) for v in raw})))
    if qtype == "text":
        text = _as_text(raw)
        return TextAnswer(text) if text is not None else UnsupportedAnswer(raw)
    if qtype == "code":
        text = _as_text(raw)
        return CodeAnswer(text) if text is not None else UnsupportedAnswer(raw)
    return UnsupportedAnswer(raw)


def expected_answer(question: dict[str, Any]) -> Answer:
    """The question's stored correct answer, normalized with the same rules as candidate answers."""
    return normalize_answer(question, question.get("correctAnswer"))


def _answer_text(question: dict[str, Any], answer: Answer) -> Any:
    options = _options(question)
    if isinstance(answer, MultipleChoiceAnswer):
        return options[answer.index] if answer.index != UNRESOLVED_INDEX else None
    if isinstance(answer, CheckboxAnswer):
        return [options[i] for i in answer.indices if i != UNRESOLVED_INDEX]
    if isinstance(answer, (TextAnswer, CodeAnswer)):
        return answer.text
    return None


def _is_correct(answer: Answer, expected: Answer) -> bool:
    if isinstance(answer, MultipleChoiceAnswer) and isinstance(expected, MultipleChoiceAnswer):
        return answer.index != UNRESOLVED_INDEX and answer.index == expected.index
    if isinstance(answer, CheckboxAnswer) and isinstance(expected, CheckboxAnswer):
        if UNRESOLVED_INDEX in answer.indices or UNRESOLVED_INDEX in expected.indices:
            return False
        return set(answer.indices) == set(expected.indices)
    if isinstance(answer, TextAnswer) and isinstance(expected, TextAnswer):
        # Free text is compared case-insensitively; code below is not.
        return answer.text.lower() == expected.text.lower()
    if isinstance(answer, CodeAnswer) and isinstance(expected, CodeAnswer):
        return answer.text == expected.text
    return False


def grade(question: dict[str, Any], raw: Any) -> GradeResult:
    answer = normalize_answer(question, raw)
    correct = _is_correct(answer, expected_answer(question))
    points = as_int(question.get("points"), 0) or 0
    return GradeResult(
        normalized_answer=answer,
        answer_text=_answer_text(question, answer),
        is_correct=correct,
        points_awarded=max(0, points) if correct else 0,
    )
