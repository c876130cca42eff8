import logging
from dataclasses import dataclass
from typing import Sequence

from quizgrader.services.model_client import ModelClient, generate_with_retry
from quizgrader.services.prompts import build_scoring_prompt
from quizgrader.services.quiz_generator import model_failure_kind
from quizgrader.services.result import Failure, FailureKind, Result, Success
from quizgrader.services.validator import ScoringOutcome, validate_scoring
from quizgrader.storage.base import RecordStore, StoreError
from quizgrader.storage.records import Challenge, ProgressStatus, ScoreRecord

logger = logging.getLogger(__name__)

PROGRESS_CONTENT_TYPE = "challenge"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class SubmittedAnswer:
    """One learner answer as received from the caller."""
    question: str
    answer: str


class AnswerScorer:
    """
    Scoring state machine:

        Ownership -> Evaluating -> Persisting -> UpdatingStatus -> Done
                                                               | Failed(kind)

    Ownership is settled before any model call. Once the ScoreRecord is stored
    the request succeeds; the challenge status and progress updates that follow
    are logged on failure and never undo the score.
    """

    # PUBLIC_INTERFACE
    def __init__(self, store: RecordStore, model_client: ModelClient) -> None:
        self.store = store
        self.model_client = model_client

    # PUBLIC_INTERFACE
    def score(self, owner_id: str, challenge_id: str, answers: Sequence[SubmittedAnswer]) -> Result[ScoreRecord]:
        """
        Grade `answers` against the challenge's answer key and store the result.

        Args:
            owner_id: Learner id resolved by the caller.
            challenge_id: Challenge being answered.
            answers: Submitted answers in question order.

        Returns:
            Success(ScoreRecord) or Failure(FailureKind, detail).
        """
        # Ownership
        try:
            challenge = self.store.get_challenge(challenge_id)
        except StoreError as exc:
            logger.exception("Challenge lookup failed for %s", challenge_id)
            return Failure(FailureKind.PERSISTENCE_ERROR, str(exc))
        if challenge is None:
            return Failure(FailureKind.NOT_FOUND, f"Challenge {challenge_id} not found")
        if challenge.owner_id != owner_id:
            logger.warning("Learner %s attempted to score challenge %s owned by another learner", owner_id, challenge_id)
            return Failure(FailureKind.FORBIDDEN, "Challenge belongs to another learner")

        # Evaluating
        evaluated = self._evaluate(challenge, answers)
        if isinstance(evaluated, Failure):
            return evaluated
        outcome = evaluated.value

        # Persisting
        record = ScoreRecord(
            owner_id=owner_id,
            challenge_id=challenge_id,
            score=outcome.score,
            answers=outcome.evaluations,
        )
        try:
            self.store.insert_score(record)
        except StoreError as exc:
            logger.exception("Could not persist score for challenge %s", challenge_id)
            return Failure(FailureKind.PERSISTENCE_ERROR, str(exc))
        logger.info(
            "Score %d%% (%d/%d) saved as %s for challenge %s",
            record.score,
            outcome.correct_count,
            outcome.total_questions,
            record.id,
            challenge_id,
        )

        # UpdatingStatus
        self._mark_completed(challenge, record)
        return Success(record)

    def _evaluate(self, challenge: Challenge, answers: Sequence[SubmittedAnswer]) -> Result[ScoringOutcome]:
        total = len(challenge.questions)
        if total == 0 or not answers:
            # Nothing to judge
            return Success(ScoringOutcome(evaluations=[], correct_count=0, total_questions=total, score=0))

        prompt = build_scoring_prompt(
            [{"question": q.question, "idealAnswer": q.answer} for q in challenge.questions],
            [{"question": a.question, "submittedAnswer": a.answer} for a in answers],
        )
        raw = generate_with_retry(self.model_client, prompt)
        if isinstance(raw, Failure):
            logger.warning("Model call for challenge %s failed: %s (%s)", challenge.id, raw.kind.value, raw.detail)
            return Failure(model_failure_kind(raw), raw.detail)

        validated = validate_scoring(raw.value, total)
        if isinstance(validated, Failure):
            logger.warning(
                "Rejected scoring output for challenge %s: %s (%s). Raw output: %r",
                challenge.id,
                validated.kind.value,
                validated.detail,
                raw.value,
            )
            return Failure(FailureKind.SCORING_FAILED, f"Model output rejected: {validated.kind.value}", raw=raw.value)

        outcome = validated.value
        if len(outcome.evaluations) != len(answers):
            logger.warning(
                "Scoring output for challenge %s has %d evaluations for %d answers. Raw output: %r",
                challenge.id,
                len(outcome.evaluations),
                len(answers),
                raw.value,
            )
            return Failure(FailureKind.SCORING_FAILED, "Model output rejected: shape-mismatch", raw=raw.value)
        return Success(outcome)

    def _mark_completed(self, challenge: Challenge, record: ScoreRecord) -> None:
        try:
            if not self.store.set_challenge_status(challenge.id, ProgressStatus.COMPLETED):
                logger.error("Challenge %s disappeared before it could be marked completed", challenge.id)
        except StoreError:
            logger.exception("Failed to mark challenge %s completed; score %s is stored", challenge.id, record.id)

        try:
            self.store.upsert_progress(
                challenge.owner_id,
                challenge.content_id,
                PROGRESS_CONTENT_TYPE,
                ProgressStatus.COMPLETED,
                record.score,
            )
        except StoreError:
            logger.exception("Failed to upsert progress for challenge %s", challenge.id)
