from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# PUBLIC_INTERFACE
class ContentIn(_Schema):
    """Input model for registering learning content."""
    title: Optional[str] = Field(default=None, description="Optional content title.")
    document: Any = Field(..., description="Structured editor document (JSON) or plain text.")


# PUBLIC_INTERFACE
class ContentOut(_Schema):
    """Reference to stored content."""
    id: str = Field(..., description="Content identifier.")
    title: str = Field(..., description="Content title.")
    created_at: str = Field(..., description="Creation timestamp (ISO-8601).")


# PUBLIC_INTERFACE
class GenerateIn(_Schema):
    """Input model for quiz and challenge generation."""
    content_id: str = Field(..., min_length=1, description="Identifier of the source content.")


# PUBLIC_INTERFACE
class QuizMetaOut(_Schema):
    """Metadata view of a quiz for listing endpoints."""
    id: str = Field(..., description="Unique identifier for the quiz.")
    source_content_id: str = Field(..., description="Content the quiz was generated from.")
    created_at: str = Field(..., description="Creation timestamp (ISO-8601).")
    question_count: int = Field(..., description="Number of questions contained in the quiz.")


# PUBLIC_INTERFACE
class AnswerIn(_Schema):
    """A single submitted answer."""
    question: str = Field(..., description="Question being answered.")
    answer: str = Field(default="", description="Learner's free-text answer; blank counts as incorrect.")


# PUBLIC_INTERFACE
class ScoreIn(_Schema):
    """Input model for submitting answers to a challenge."""
    challenge_id: str = Field(..., min_length=1, description="Challenge being answered.")
    answers: List[AnswerIn] = Field(..., description="Answers in question order.")
