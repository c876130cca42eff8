"""
API package initialization.

Exports shared schema models for external use.
"""

# Re-export commonly used schema models
from .schemas import AnswerIn, ContentIn, ContentOut, GenerateIn, QuizMetaOut, ScoreIn  # noqa: F401
