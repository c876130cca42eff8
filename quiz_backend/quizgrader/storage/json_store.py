import json
import os
import tempfile
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from quizgrader.storage.base import RecordStore, StoreError
from quizgrader.storage.records import (
    Challenge,
    ContentItem,
    ProgressRecord,
    ProgressStatus,
    QuizRecord,
    ScoreRecord,
)

DEFAULT_DATA_FILE = "./data/quizzes.json"

COLLECTIONS = ("contents", "challenges", "quizzes", "scores", "progress")

T = TypeVar("T", bound=BaseModel)


def _empty() -> Dict[str, List[Dict[str, Any]]]:
    return {name: [] for name in COLLECTIONS}


def _parse(model: Type[T], row: Any) -> T:
    """Validate a stored row, reporting a malformed one as StoreError."""
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        raise StoreError(f"Malformed {model.__name__} row in data file: {exc}") from exc


class JsonRecordStore(RecordStore):
    """
    A JSON file store with safe atomic write operations.

    Data model:
    {
        "contents":   [ {...}, ... ],
        "challenges": [ {...}, ... ],
        "quizzes":    [ {...}, ... ],
        "scores":     [ {...}, ... ],
        "progress":   [ {...}, ... ]
    }

    Every mutation is a read-modify-write of the whole document performed under
    a process-wide lock, then published with an atomic rename. That makes the
    conditional inserts compare-and-write operations for every thread sharing
    this store instance. Separate processes must not share one file; use the
    SQL backend for multi-worker deployments.
    """

    # PUBLIC_INTERFACE
    def __init__(self, path: Optional[str] = None) -> None:
        """
        Initialize the JSON store.

        - Determines the storage path from the provided argument, the QUIZ_DATA_FILE
          environment variable, or falls back to DEFAULT_DATA_FILE.
        - Ensures the parent directory exists.
        """
        env_path = os.getenv("QUIZ_DATA_FILE")
        self.path = os.path.abspath(path or env_path or DEFAULT_DATA_FILE)
        self._lock = threading.RLock()

        # Ensure parent directory exists
        parent_dir = os.path.dirname(self.path) or "."
        os.makedirs(parent_dir, exist_ok=True)

    @property
    def location(self) -> str:
        return self.path

    # PUBLIC_INTERFACE
    def load_all(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        Load and return the entire data structure from the JSON file.
        If the file does not exist, it will be created with the default structure.

        Returns:
            dict: The data keyed by collection name.

        Raises:
            StoreError: if the file cannot be read or does not hold a JSON object.
        """
        with self._lock:
            if not os.path.exists(self.path):
                default_data = _empty()
                self._atomic_write(default_data)
                return default_data

            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                raise StoreError(f"Cannot read data file {self.path}: {exc}") from exc

            if not isinstance(data, dict):
                raise StoreError(f"Data file {self.path} does not contain a JSON object")

            # Normalize structure; files written by older versions may miss collections
            for name in COLLECTIONS:
                if not isinstance(data.get(name), list):
                    data[name] = []
            return data

    # PUBLIC_INTERFACE
    def save_all(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        """
        Persist the provided data to the JSON file using an atomic write.

        Args:
            data (dict): The full data structure to persist.
        """
        # Basic validation
        if not isinstance(data, dict):
            raise ValueError("Data must be a dict")
        for name in COLLECTIONS:
            if not isinstance(data.get(name), list):
                raise ValueError(f"Data must contain '{name}' as a list")

        self._atomic_write(data)

    # Contents

    def add_content(self, content: ContentItem) -> ContentItem:
        return self._append("contents", content)

    def get_content(self, content_id: str) -> Optional[ContentItem]:
        return self._find_one("contents", ContentItem, lambda c: c.get("id") == content_id)

    # Quizzes

    def find_quiz(self, owner_id: str, content_id: str) -> Optional[QuizRecord]:
        return self._find_one(
            "quizzes",
            QuizRecord,
            lambda q: q.get("owner_id") == owner_id and q.get("source_content_id") == content_id,
        )

    def insert_quiz_if_absent(self, quiz: QuizRecord) -> Tuple[QuizRecord, bool]:
        return self._insert_if_absent(
            "quizzes",
            quiz,
            QuizRecord,
            lambda q: q.get("owner_id") == quiz.owner_id
            and q.get("source_content_id") == quiz.source_content_id,
        )

    def get_quiz(self, quiz_id: str) -> Optional[QuizRecord]:
        return self._find_one("quizzes", QuizRecord, lambda q: q.get("id") == quiz_id)

    def list_quizzes(self, owner_id: str) -> List[QuizRecord]:
        data = self.load_all()
        return [
            _parse(QuizRecord, q) for q in data["quizzes"] if isinstance(q, dict) and q.get("owner_id") == owner_id
        ]

    # Challenges

    def find_challenge(self, owner_id: str, content_id: str) -> Optional[Challenge]:
        return self._find_one(
            "challenges",
            Challenge,
            lambda c: c.get("owner_id") == owner_id and c.get("content_id") == content_id,
        )

    def insert_challenge_if_absent(self, challenge: Challenge) -> Tuple[Challenge, bool]:
        return self._insert_if_absent(
            "challenges",
            challenge,
            Challenge,
            lambda c: c.get("owner_id") == challenge.owner_id
            and c.get("content_id") == challenge.content_id,
        )

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        return self._find_one("challenges", Challenge, lambda c: c.get("id") == challenge_id)

    def set_challenge_status(self, challenge_id: str, status: ProgressStatus) -> bool:
        with self._lock:
            data = self.load_all()
            for c in data["challenges"]:
                if c.get("id") == challenge_id:
                    c["status"] = ProgressStatus(status).value
                    self.save_all(data)
                    return True
            return False

    # Scores

    def insert_score(self, score: ScoreRecord) -> ScoreRecord:
        return self._append("scores", score)

    def list_scores(self, challenge_id: str) -> List[ScoreRecord]:
        data = self.load_all()
        scores = [
            _parse(ScoreRecord, s)
            for s in reversed(data["scores"])
            if isinstance(s, dict) and s.get("challenge_id") == challenge_id
        ]
        # ISO-8601 UTC strings sort chronologically
        scores.sort(key=lambda s: s.created_at, reverse=True)
        return scores

    # Progress

    def upsert_progress(
        self,
        owner_id: str,
        content_id: str,
        content_type: str,
        status: ProgressStatus,
        progress: float,
    ) -> ProgressRecord:
        record = ProgressRecord(
            owner_id=owner_id,
            content_id=content_id,
            content_type=content_type,
            status=status,
            progress=progress,
        )
        with self._lock:
            data = self.load_all()
            rows = data["progress"]
            for i, row in enumerate(rows):
                if (
                    row.get("owner_id") == owner_id
                    and row.get("content_id") == content_id
                    and row.get("content_type") == content_type
                ):
                    rows[i] = record.model_dump(mode="json")
                    break
            else:
                rows.append(record.model_dump(mode="json"))
            self.save_all(data)
        return record

    def get_progress(self, owner_id: str, content_id: str, content_type: str) -> Optional[ProgressRecord]:
        return self._find_one(
            "progress",
            ProgressRecord,
            lambda p: p.get("owner_id") == owner_id
            and p.get("content_id") == content_id
            and p.get("content_type") == content_type,
        )

    # Internals

    def _find_one(self, collection: str, model: Type[T], match: Callable[[Dict[str, Any]], bool]) -> Optional[T]:
        data = self.load_all()
        for row in data[collection]:
            if isinstance(row, dict) and match(row):
                return _parse(model, row)
        return None

    def _append(self, collection: str, record: T) -> T:
        with self._lock:
            data = self.load_all()
            data[collection].append(record.model_dump(mode="json"))
            self.save_all(data)
        return record

    def _insert_if_absent(self, collection: str, record: T, model: Type[T], match: Callable[[Dict[str, Any]], bool]) -> Tuple[T, bool]:
        with self._lock:
            data = self.load_all()
            for row in data[collection]:
                if isinstance(row, dict) and match(row):
                    return _parse(model, row), False
            data[collection].append(record.model_dump(mode="json"))
            self.save_all(data)
        return record, True

    def _atomic_write(self, data: Dict[str, Any]) -> None:
        """
        Write JSON to a temporary file and atomically replace the target.

        This ensures that readers never see a partially-written file.
        """
        directory = os.path.dirname(self.path) or "."
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".quizzes.", suffix=".tmp", dir=directory, text=True)
        except OSError as exc:
            raise StoreError(f"Cannot create temporary file in {directory}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                json.dump(data, tmp_file, indent=2, ensure_ascii=False)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StoreError(f"Cannot write data file {self.path}: {exc}") from exc
        finally:
            # If os.replace succeeded, tmp_path no longer exists
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
