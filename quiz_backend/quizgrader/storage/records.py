import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def new_id() -> str:
    """Return a fresh opaque record identifier."""
    return uuid.uuid4().hex


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class ProgressStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class _Record(BaseModel):
    # Python code uses snake_case, the wire format camelCase.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# PUBLIC_INTERFACE
class QuizItem(_Record):
    """A single open-ended question with its reference answer."""
    question: str = Field(..., min_length=1, description="Question text.")
    answer: str = Field(..., min_length=1, description="Ideal answer text.")


# PUBLIC_INTERFACE
class AnswerEvaluation(_Record):
    """The evaluator's verdict on one submitted answer."""
    question: str = Field(..., description="Question as evaluated.")
    user_answer: str = Field(..., description="Answer the learner submitted.")
    is_correct: bool = Field(..., description="Whether the answer was judged semantically correct.")


# PUBLIC_INTERFACE
class ContentItem(_Record):
    """Learning content as stored by the authoring side: a title and a structured document."""
    id: str = Field(default_factory=new_id)
    title: str = Field(default="Untitled Content")
    document: Any = Field(default=None, description="Structured editor document.")
    created_at: str = Field(default_factory=utc_now)


# PUBLIC_INTERFACE
class QuizRecord(_Record):
    """A generated quiz. At most one per (owner_id, source_content_id); never mutated."""
    id: str = Field(default_factory=new_id)
    owner_id: str
    source_content_id: str
    questions: List[QuizItem]
    created_at: str = Field(default_factory=utc_now)


# PUBLIC_INTERFACE
class Challenge(_Record):
    """A learner's challenge: an idealized Q&A key plus a completion status."""
    id: str = Field(default_factory=new_id)
    owner_id: str
    content_id: str
    questions: List[QuizItem] = Field(default_factory=list)
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    created_at: str = Field(default_factory=utc_now)


# PUBLIC_INTERFACE
class ScoreRecord(_Record):
    """One graded submission of a challenge."""
    id: str = Field(default_factory=new_id)
    owner_id: str
    challenge_id: str
    score: int = Field(..., ge=0, le=100)
    answers: List[AnswerEvaluation]
    created_at: str = Field(default_factory=utc_now)


# PUBLIC_INTERFACE
class ProgressRecord(_Record):
    """Per-learner progress on a content item."""
    owner_id: str
    content_id: str
    content_type: str
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    progress: float = Field(default=0, ge=0, le=100)
    updated_at: str = Field(default_factory=utc_now)
