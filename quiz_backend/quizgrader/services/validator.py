"""
Strict validation of raw model output.

Two parsing strategies are tried in order and nothing else:
  1. the JSON document is itself an array of records of the expected shape;
  2. the JSON document is an object with exactly one top-level key holding
     such an array.
Anything else is rejected. Records are never coerced or repaired.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from quizgrader.services.result import Failure, Result, Success
from quizgrader.storage.records import AnswerEvaluation, QuizItem


class ParseErrorKind(str, Enum):
    NOT_JSON = "not-json"
    SHAPE_MISMATCH = "shape-mismatch"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ExpectedShape:
    """Field name → required Python type for each array element."""
    name: str
    fields: Dict[str, type]
    # Fields whose string value must not be blank
    non_empty: FrozenSet[str] = frozenset()


QUIZ_SHAPE = ExpectedShape(
    name="quiz",
    fields={"question": str, "answer": str},
    non_empty=frozenset({"question", "answer"}),
)

SCORING_SHAPE = ExpectedShape(
    name="scoring",
    fields={"question": str, "userAnswer": str, "isCorrect": bool},
)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ScoringOutcome:
    """Validated evaluations plus the derived integer score."""
    evaluations: List[AnswerEvaluation]
    correct_count: int
    total_questions: int
    score: int


def _matches_type(value: Any, expected: type) -> bool:
    # bool is an int subclass; compare exactly so 1/0 are not accepted as booleans
    if expected is bool:
        return type(value) is bool
    return isinstance(value, expected)


def _element_ok(element: Any, shape: ExpectedShape) -> bool:
    if not isinstance(element, dict):
        return False
    if set(element.keys()) != set(shape.fields.keys()):
        return False
    for key, expected in shape.fields.items():
        value = element[key]
        if not _matches_type(value, expected):
            return False
        if key in shape.non_empty and not value.strip():
            return False
    return True


def _array_ok(value: Any, shape: ExpectedShape) -> bool:
    return isinstance(value, list) and len(value) > 0 and all(_element_ok(e, shape) for e in value)


# PUBLIC_INTERFACE
def validate(raw_text: Optional[str], shape: ExpectedShape) -> Result[List[Dict[str, Any]]]:
    """
    Parse `raw_text` and return the array of records matching `shape`.

    Args:
        raw_text: Text returned by the model client.
        shape: The expected element shape.

    Returns:
        Success(list of element dicts) or Failure(ParseErrorKind, detail, raw=raw_text).
    """
    try:
        parsed = json.loads(raw_text or "")
    except (json.JSONDecodeError, TypeError) as exc:
        return Failure(ParseErrorKind.NOT_JSON, f"response is not valid JSON: {exc}", raw=raw_text)

    if isinstance(parsed, list):
        if _array_ok(parsed, shape):
            return Success(parsed)
        return Failure(
            ParseErrorKind.SHAPE_MISMATCH,
            f"array is empty or has elements that are not {shape.name} records",
            raw=raw_text,
        )

    if isinstance(parsed, dict):
        candidates = [key for key, value in parsed.items() if _array_ok(value, shape)]
        if len(candidates) == 1:
            return Success(parsed[candidates[0]])
        return Failure(
            ParseErrorKind.SHAPE_MISMATCH,
            f"object has {len(candidates)} keys holding valid {shape.name} arrays, expected exactly 1",
            raw=raw_text,
        )

    return Failure(
        ParseErrorKind.SHAPE_MISMATCH,
        f"expected an array or an object, got {type(parsed).__name__}",
        raw=raw_text,
    )


# PUBLIC_INTERFACE
def compute_score(correct_count: int, total_questions: int) -> int:
    """
    Percentage of correct answers, rounded half up, as an int in [0, 100].

    Returns 0 when there are no questions.
    """
    if total_questions <= 0:
        return 0
    correct = max(0, min(correct_count, total_questions))
    # floor(100 * correct / total + 0.5) in integer arithmetic
    return (200 * correct + total_questions) // (2 * total_questions)


# PUBLIC_INTERFACE
def validate_quiz(raw_text: Optional[str], question_count: Optional[int] = None) -> Result[List[QuizItem]]:
    """
    Validate generation output into QuizItems.

    When `question_count` is given, an array of any other length is a shape mismatch.
    """
    result = validate(raw_text, QUIZ_SHAPE)
    if isinstance(result, Failure):
        return result
    items = result.value
    if question_count is not None and len(items) != question_count:
        return Failure(
            ParseErrorKind.SHAPE_MISMATCH,
            f"expected {question_count} questions, got {len(items)}",
            raw=raw_text,
        )
    return Success([QuizItem(question=i["question"], answer=i["answer"]) for i in items])


# PUBLIC_INTERFACE
def validate_scoring(raw_text: Optional[str], total_questions: int) -> Result[ScoringOutcome]:
    """
    Validate scoring output and derive the score.

    Args:
        raw_text: Text returned by the model client.
        total_questions: Size of the answer key; the score's denominator.
    """
    result = validate(raw_text, SCORING_SHAPE)
    if isinstance(result, Failure):
        return result
    evaluations = [
        AnswerEvaluation(question=e["question"], user_answer=e["userAnswer"], is_correct=e["isCorrect"])
        for e in result.value
    ]
    correct_count = sum(1 for e in evaluations if e.is_correct)
    return Success(
        ScoringOutcome(
            evaluations=evaluations,
            correct_count=correct_count,
            total_questions=total_questions,
            score=compute_score(correct_count, total_questions),
        )
    )
