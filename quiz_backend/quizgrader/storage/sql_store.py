import os
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import JSON, Column, Float, Integer, String, UniqueConstraint, create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from quizgrader.storage.base import RecordStore, StoreError
from quizgrader.storage.records import (
    Challenge,
    ContentItem,
    ProgressRecord,
    ProgressStatus,
    QuizRecord,
    ScoreRecord,
    utc_now,
)

Base = declarative_base()


class ContentRow(Base):
    __tablename__ = "contents"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    document = Column(JSON)
    created_at = Column(String, nullable=False)


class QuizRow(Base):
    __tablename__ = "quizzes"
    __table_args__ = (UniqueConstraint("owner_id", "source_content_id", name="uq_quiz_owner_content"),)

    id = Column(String, primary_key=True)
    owner_id = Column(String, index=True, nullable=False)
    source_content_id = Column(String, nullable=False)
    questions = Column(JSON, nullable=False)
    created_at = Column(String, nullable=False)


class ChallengeRow(Base):
    __tablename__ = "challenges"
    __table_args__ = (UniqueConstraint("owner_id", "content_id", name="uq_challenge_owner_content"),)

    id = Column(String, primary_key=True)
    owner_id = Column(String, index=True, nullable=False)
    content_id = Column(String, nullable=False)
    questions = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default=ProgressStatus.NOT_STARTED.value)
    created_at = Column(String, nullable=False)


class ScoreRow(Base):
    __tablename__ = "scores"

    id = Column(String, primary_key=True)
    owner_id = Column(String, index=True, nullable=False)
    challenge_id = Column(String, index=True, nullable=False)
    score = Column(Integer, nullable=False)
    answers = Column(JSON, nullable=False)
    created_at = Column(String, nullable=False)


class ProgressRow(Base):
    __tablename__ = "progress"
    __table_args__ = (
        UniqueConstraint("owner_id", "content_id", "content_type", name="uq_progress_owner_content_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, index=True, nullable=False)
    content_id = Column(String, nullable=False)
    content_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    progress = Column(Float, nullable=False, default=0)
    updated_at = Column(String, nullable=False)


def _content(row: ContentRow) -> ContentItem:
    return ContentItem(id=row.id, title=row.title, document=row.document, created_at=row.created_at)


def _quiz(row: QuizRow) -> QuizRecord:
    return QuizRecord(
        id=row.id,
        owner_id=row.owner_id,
        source_content_id=row.source_content_id,
        questions=row.questions,
        created_at=row.created_at,
    )


def _challenge(row: ChallengeRow) -> Challenge:
    return Challenge(
        id=row.id,
        owner_id=row.owner_id,
        content_id=row.content_id,
        questions=row.questions,
        status=row.status,
        created_at=row.created_at,
    )


def _score(row: ScoreRow) -> ScoreRecord:
    return ScoreRecord(
        id=row.id,
        owner_id=row.owner_id,
        challenge_id=row.challenge_id,
        score=row.score,
        answers=row.answers,
        created_at=row.created_at,
    )


def _progress(row: ProgressRow) -> ProgressRecord:
    return ProgressRecord(
        owner_id=row.owner_id,
        content_id=row.content_id,
        content_type=row.content_type,
        status=row.status,
        progress=row.progress,
        updated_at=row.updated_at,
    )


class SqlRecordStore(RecordStore):
    """
    SQLAlchemy-backed store for multi-worker deployments.

    Uniqueness of quizzes and challenges per (owner, content) is a database
    constraint; a losing concurrent insert is rolled back and the winner's
    row is returned instead.
    """

    # PUBLIC_INTERFACE
    def __init__(self, url: str) -> None:
        """
        Create the engine and the tables if they do not exist yet.

        Args:
            url: SQLAlchemy database URL, e.g. 'sqlite:///./data/quizzes.sqlite'.
        """
        self.url = url
        connect_args = {}
        if url.startswith("sqlite:///"):
            # Make sure the parent directory of a file-backed SQLite database exists
            local_path = url.replace("sqlite:///", "", 1)
            parent_dir = os.path.dirname(local_path)
            if parent_dir:
                os.makedirs(parent_dir, exist_ok=True)
            connect_args = {"check_same_thread": False}
        self.engine = create_engine(url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    @property
    def location(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError(f"Database operation failed: {exc}") from exc
        except ValidationError as exc:
            # A row that no longer matches its record model
            db.rollback()
            raise StoreError(f"Malformed row in database: {exc}") from exc
        finally:
            db.close()

    # Contents

    def add_content(self, content: ContentItem) -> ContentItem:
        with self._session() as db:
            db.add(
                ContentRow(
                    id=content.id,
                    title=content.title,
                    document=content.document,
                    created_at=content.created_at,
                )
            )
            db.commit()
        return content

    def get_content(self, content_id: str) -> Optional[ContentItem]:
        with self._session() as db:
            row = db.get(ContentRow, content_id)
            return _content(row) if row else None

    # Quizzes

    def find_quiz(self, owner_id: str, content_id: str) -> Optional[QuizRecord]:
        with self._session() as db:
            row = (
                db.query(QuizRow)
                .filter(QuizRow.owner_id == owner_id, QuizRow.source_content_id == content_id)
                .first()
            )
            return _quiz(row) if row else None

    def insert_quiz_if_absent(self, quiz: QuizRecord) -> Tuple[QuizRecord, bool]:
        with self._session() as db:
            db.add(
                QuizRow(
                    id=quiz.id,
                    owner_id=quiz.owner_id,
                    source_content_id=quiz.source_content_id,
                    questions=[q.model_dump(mode="json") for q in quiz.questions],
                    created_at=quiz.created_at,
                )
            )
            try:
                db.commit()
                return quiz, True
            except IntegrityError:
                db.rollback()
        existing = self.find_quiz(quiz.owner_id, quiz.source_content_id)
        if existing is None:
            raise StoreError(f"Quiz {quiz.id} violated a constraint but no conflicting quiz exists")
        return existing, False

    def get_quiz(self, quiz_id: str) -> Optional[QuizRecord]:
        with self._session() as db:
            row = db.get(QuizRow, quiz_id)
            return _quiz(row) if row else None

    def list_quizzes(self, owner_id: str) -> List[QuizRecord]:
        with self._session() as db:
            rows = db.query(QuizRow).filter(QuizRow.owner_id == owner_id).all()
            return [_quiz(r) for r in rows]

    # Challenges

    def find_challenge(self, owner_id: str, content_id: str) -> Optional[Challenge]:
        with self._session() as db:
            row = (
                db.query(ChallengeRow)
                .filter(ChallengeRow.owner_id == owner_id, ChallengeRow.content_id == content_id)
                .first()
            )
            return _challenge(row) if row else None

    def insert_challenge_if_absent(self, challenge: Challenge) -> Tuple[Challenge, bool]:
        with self._session() as db:
            db.add(
                ChallengeRow(
                    id=challenge.id,
                    owner_id=challenge.owner_id,
                    content_id=challenge.content_id,
                    questions=[q.model_dump(mode="json") for q in challenge.questions],
                    status=ProgressStatus(challenge.status).value,
                    created_at=challenge.created_at,
                )
            )
            try:
                db.commit()
                return challenge, True
            except IntegrityError:
                db.rollback()
        existing = self.find_challenge(challenge.owner_id, challenge.content_id)
        if existing is None:
            raise StoreError(f"Challenge {challenge.id} violated a constraint but no conflicting challenge exists")
        return existing, False

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        with self._session() as db:
            row = db.get(ChallengeRow, challenge_id)
            return _challenge(row) if row else None

    def set_challenge_status(self, challenge_id: str, status: ProgressStatus) -> bool:
        with self._session() as db:
            row = db.get(ChallengeRow, challenge_id)
            if row is None:
                return False
            row.status = ProgressStatus(status).value
            db.commit()
            return True

    # Scores

    def insert_score(self, score: ScoreRecord) -> ScoreRecord:
        with self._session() as db:
            db.add(
                ScoreRow(
                    id=score.id,
                    owner_id=score.owner_id,
                    challenge_id=score.challenge_id,
                    score=score.score,
                    answers=[a.model_dump(mode="json") for a in score.answers],
                    created_at=score.created_at,
                )
            )
            db.commit()
        return score

    def list_scores(self, challenge_id: str) -> List[ScoreRecord]:
        with self._session() as db:
            rows = (
                db.query(ScoreRow)
                .filter(ScoreRow.challenge_id == challenge_id)
                .order_by(ScoreRow.created_at.desc())
                .all()
            )
            return [_score(r) for r in rows]

    # Progress

    def upsert_progress(
        self,
        owner_id: str,
        content_id: str,
        content_type: str,
        status: ProgressStatus,
        progress: float,
    ) -> ProgressRecord:
        status_value = ProgressStatus(status).value
        with self._session() as db:
            for _ in range(2):
                row = (
                    db.query(ProgressRow)
                    .filter(
                        ProgressRow.owner_id == owner_id,
                        ProgressRow.content_id == content_id,
                        ProgressRow.content_type == content_type,
                    )
                    .first()
                )
                if row is None:
                    row = ProgressRow(owner_id=owner_id, content_id=content_id, content_type=content_type)
                    db.add(row)
                row.status = status_value
                row.progress = progress
                row.updated_at = utc_now()
                try:
                    db.commit()
                    return _progress(row)
                except IntegrityError:
                    # Another writer inserted the row first; update theirs
                    db.rollback()
            raise StoreError(f"Could not upsert progress for {owner_id}/{content_id}/{content_type}")

    def get_progress(self, owner_id: str, content_id: str, content_type: str) -> Optional[ProgressRecord]:
        with self._session() as db:
            row = (
                db.query(ProgressRow)
                .filter(
                    ProgressRow.owner_id == owner_id,
                    ProgressRow.content_id == content_id,
                    ProgressRow.content_type == content_type,
                )
                .first()
            )
            return _progress(row) if row else None
