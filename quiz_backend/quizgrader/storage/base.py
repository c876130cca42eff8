from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from quizgrader.storage.records import (
    Challenge,
    ContentItem,
    ProgressRecord,
    ProgressStatus,
    QuizRecord,
    ScoreRecord,
)


class StoreError(Exception):
    """Raised when the backing store cannot complete a read or write."""


# PUBLIC_INTERFACE
class RecordStore(ABC):
    """
    Persistence contract shared by the JSON file and SQL backends.

    Writes are all-or-nothing: a record is either fully visible to later reads
    or not visible at all. Quizzes and challenges are unique per
    (owner_id, content_id); the `*_if_absent` inserts enforce this inside the
    store and hand back the surviving record when they lose a race.
    """

    @property
    @abstractmethod
    def location(self) -> str:
        """Human-readable description of where data lives (path or URL)."""

    # Contents

    @abstractmethod
    def add_content(self, content: ContentItem) -> ContentItem:
        ...

    @abstractmethod
    def get_content(self, content_id: str) -> Optional[ContentItem]:
        ...

    # Quizzes

    @abstractmethod
    def find_quiz(self, owner_id: str, content_id: str) -> Optional[QuizRecord]:
        """Return the quiz for the idempotency key, if any."""

    @abstractmethod
    def insert_quiz_if_absent(self, quiz: QuizRecord) -> Tuple[QuizRecord, bool]:
        """
        Insert `quiz` unless one already exists for its (owner, content) key.

        Returns:
            (record, created): the stored record and whether this call created it.
        """

    @abstractmethod
    def get_quiz(self, quiz_id: str) -> Optional[QuizRecord]:
        ...

    @abstractmethod
    def list_quizzes(self, owner_id: str) -> List[QuizRecord]:
        ...

    # Challenges

    @abstractmethod
    def find_challenge(self, owner_id: str, content_id: str) -> Optional[Challenge]:
        ...

    @abstractmethod
    def insert_challenge_if_absent(self, challenge: Challenge) -> Tuple[Challenge, bool]:
        ...

    @abstractmethod
    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        ...

    @abstractmethod
    def set_challenge_status(self, challenge_id: str, status: ProgressStatus) -> bool:
        """Update a challenge's status. Returns False when the challenge does not exist."""

    # Scores

    @abstractmethod
    def insert_score(self, score: ScoreRecord) -> ScoreRecord:
        ...

    @abstractmethod
    def list_scores(self, challenge_id: str) -> List[ScoreRecord]:
        """Return the scores of a challenge, newest first."""

    # Progress

    @abstractmethod
    def upsert_progress(
        self,
        owner_id: str,
        content_id: str,
        content_type: str,
        status: ProgressStatus,
        progress: float,
    ) -> ProgressRecord:
        ...

    @abstractmethod
    def get_progress(self, owner_id: str, content_id: str, content_type: str) -> Optional[ProgressRecord]:
        ...
