import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, Tuple, TypeVar

from quizgrader.config import PipelineConfig
from quizgrader.services.model_client import ModelClient, ModelFailureKind, generate_with_retry
from quizgrader.services.prompts import build_generation_prompt
from quizgrader.services.result import Failure, FailureKind, Result, Success
from quizgrader.services.text_extractor import extract_text
from quizgrader.services.validator import validate_quiz
from quizgrader.storage.base import RecordStore, StoreError
from quizgrader.storage.records import Challenge, ProgressStatus, QuizItem, QuizRecord

logger = logging.getLogger(__name__)

R = TypeVar("R")


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class GenerationOutcome(Generic[R]):
    """The stored record and whether this request created it."""
    record: R
    created: bool


def model_failure_kind(failure: Failure) -> FailureKind:
    """Map a model client failure to the orchestrator failure it ends in."""
    if failure.kind == ModelFailureKind.UNCONFIGURED:
        return FailureKind.SERVICE_UNAVAILABLE
    return FailureKind.UPSTREAM_ERROR


class QuizGenerator:
    """
    Quiz generation state machine:

        CacheCheck -> Extracting -> Generating -> Validating -> Persisting -> Done
                                                                          | Failed(kind)

    A cache hit never reaches the model. The final insert is conditional in the
    store, so two racing requests for the same (owner, content) key leave exactly
    one record behind; the loser returns the winner's record with created=False.
    """

    record_label = "quiz"
    # ProgressRecord content type written after a new record; None disables it
    progress_content_type: Optional[str] = "quiz"

    # PUBLIC_INTERFACE
    def __init__(
        self,
        store: RecordStore,
        model_client: ModelClient,
        pipeline: Optional[PipelineConfig] = None,
        extractor: Callable[[Any], str] = extract_text,
    ) -> None:
        self.store = store
        self.model_client = model_client
        self.pipeline = pipeline or PipelineConfig()
        self.extractor = extractor

    # Hooks overridden by ChallengeGenerator

    def _find_existing(self, owner_id: str, content_id: str) -> Optional[Any]:
        return self.store.find_quiz(owner_id, content_id)

    def _persist(self, owner_id: str, content_id: str, questions: List[QuizItem]) -> Tuple[Any, bool]:
        record = QuizRecord(owner_id=owner_id, source_content_id=content_id, questions=questions)
        return self.store.insert_quiz_if_absent(record)

    # PUBLIC_INTERFACE
    def generate(self, owner_id: str, content_id: str) -> Result[GenerationOutcome]:
        """
        Return the learner's record for `content_id`, generating it on first request.

        Args:
            owner_id: Learner id resolved by the caller.
            content_id: Id of the source content.

        Returns:
            Success(GenerationOutcome) or Failure(FailureKind, detail).
        """
        # CacheCheck
        try:
            existing = self._find_existing(owner_id, content_id)
        except StoreError as exc:
            logger.exception("Cache lookup failed for %s %s/%s", self.record_label, owner_id, content_id)
            return Failure(FailureKind.PERSISTENCE_ERROR, str(exc))
        if existing is not None:
            logger.info("Existing %s %s found for learner %s, content %s", self.record_label, existing.id, owner_id, content_id)
            return Success(GenerationOutcome(existing, False))

        # Extracting
        try:
            content = self.store.get_content(content_id)
        except StoreError as exc:
            logger.exception("Content lookup failed for %s", content_id)
            return Failure(FailureKind.PERSISTENCE_ERROR, str(exc))
        if content is None:
            return Failure(FailureKind.NOT_FOUND, f"Content {content_id} not found")

        try:
            text = (self.extractor(content.document) or "").strip()
        except Exception as exc:
            logger.exception("Text extraction failed for content %s", content_id)
            return Failure(FailureKind.INTERNAL_ERROR, f"Text extraction failed: {type(exc).__name__}")
        if len(text) < self.pipeline.min_content_chars:
            logger.info(
                "Content %s has %d characters of text, %d required", content_id, len(text), self.pipeline.min_content_chars
            )
            return Failure(FailureKind.INSUFFICIENT_CONTENT, "Could not extract meaningful text from content")

        # Generating
        prompt = build_generation_prompt(
            title=content.title,
            content_text=text,
            question_count=self.pipeline.question_count,
            max_content_chars=self.pipeline.max_content_chars,
        )
        raw = generate_with_retry(self.model_client, prompt)
        if isinstance(raw, Failure):
            logger.warning("Model call for %s on content %s failed: %s (%s)", self.record_label, content_id, raw.kind.value, raw.detail)
            return Failure(model_failure_kind(raw), raw.detail)

        # Validating
        validated = validate_quiz(raw.value, self.pipeline.question_count)
        if isinstance(validated, Failure):
            logger.warning(
                "Rejected model output for %s on content %s: %s (%s). Raw output: %r",
                self.record_label,
                content_id,
                validated.kind.value,
                validated.detail,
                raw.value,
            )
            return Failure(FailureKind.GENERATION_FAILED, f"Model output rejected: {validated.kind.value}", raw=raw.value)

        # Persisting
        try:
            record, created = self._persist(owner_id, content_id, validated.value)
        except StoreError as exc:
            logger.exception("Could not persist %s for learner %s, content %s", self.record_label, owner_id, content_id)
            return Failure(FailureKind.PERSISTENCE_ERROR, str(exc))

        if created:
            logger.info("New %s %s saved for learner %s, content %s", self.record_label, record.id, owner_id, content_id)
            self._record_progress(owner_id, content_id)
        else:
            logger.info("Lost creation race for %s %s/%s, returning %s", self.record_label, owner_id, content_id, record.id)
        return Success(GenerationOutcome(record, created))

    def _record_progress(self, owner_id: str, content_id: str) -> None:
        if self.progress_content_type is None:
            return
        try:
            self.store.upsert_progress(owner_id, content_id, self.progress_content_type, ProgressStatus.NOT_STARTED, 0)
        except StoreError:
            # The quiz is already durable; progress is best effort
            logger.exception("Failed to upsert progress for %s content %s, learner %s", self.record_label, content_id, owner_id)


class ChallengeGenerator(QuizGenerator):
    """
    Same pipeline as QuizGenerator, persisting a Challenge (status 'not-started')
    instead of a QuizRecord. Challenges are unique per (owner, content) too.
    """

    record_label = "challenge"
    progress_content_type = None

    def _find_existing(self, owner_id: str, content_id: str) -> Optional[Challenge]:
        return self.store.find_challenge(owner_id, content_id)

    def _persist(self, owner_id: str, content_id: str, questions: List[QuizItem]) -> Tuple[Challenge, bool]:
        challenge = Challenge(owner_id=owner_id, content_id=content_id, questions=questions)
        return self.store.insert_challenge_if_absent(challenge)
