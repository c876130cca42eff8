"""Tests for the answer scoring pipeline."""
import json

from quizgrader.services.model_client import ModelFailureKind
from quizgrader.services.result import Failure, FailureKind, Success
from quizgrader.services.scoring import AnswerScorer, SubmittedAnswer
from quizgrader.storage.base import StoreError
from quizgrader.storage.json_store import JsonRecordStore
from quizgrader.storage.records import ProgressStatus

OWNER = "learner-1"

PARIS_ANSWERS = [
    SubmittedAnswer(question="Capital of France?", answer="The capital city is Paris."),
    SubmittedAnswer(question="2 + 2?", answer="3"),
]

PARIS_VERDICT = json.dumps(
    [
        {"question": "Capital of France?", "userAnswer": "The capital city is Paris.", "isCorrect": True},
        {"question": "2 + 2?", "userAnswer": "3", "isCorrect": False},
    ]
)


def test_half_correct_scores_fifty(store, make_model, add_challenge):
    challenge = add_challenge(store)
    model = make_model([PARIS_VERDICT])
    result = AnswerScorer(store, model).score(OWNER, challenge.id, PARIS_ANSWERS)

    assert isinstance(result, Success)
    record = result.value
    assert record.score == 50
    assert record.challenge_id == challenge.id
    assert [a.is_correct for a in record.answers] == [True, False]
    assert model.calls == 1
    assert "The capital city is Paris." in model.prompts[0]
    assert '"idealAnswer": "Paris"' in model.prompts[0]
    assert [s.id for s in store.list_scores(challenge.id)] == [record.id]


def test_all_correct_and_all_wrong(store, make_model, add_challenge, scoring_payload):
    challenge = add_challenge(store)
    full = AnswerScorer(store, make_model([scoring_payload([True, True])])).score(OWNER, challenge.id, PARIS_ANSWERS)
    none = AnswerScorer(store, make_model([scoring_payload([False, False])])).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert full.value.score == 100
    assert none.value.score == 0


def test_unknown_challenge_is_not_found(store, make_model):
    model = make_model()
    result = AnswerScorer(store, model).score(OWNER, "missing", PARIS_ANSWERS)
    assert result.kind == FailureKind.NOT_FOUND
    assert model.calls == 0


def test_foreign_challenge_is_forbidden_before_model_call(store, make_model, add_challenge):
    challenge = add_challenge(store, owner_id="learner-2")
    model = make_model([PARIS_VERDICT])
    result = AnswerScorer(store, model).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert isinstance(result, Failure)
    assert result.kind == FailureKind.FORBIDDEN
    assert model.calls == 0
    assert store.list_scores(challenge.id) == []


def test_challenge_without_questions_scores_zero(store, make_model, add_challenge):
    challenge = add_challenge(store, pairs=())
    model = make_model()
    result = AnswerScorer(store, model).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert result.value.score == 0
    assert result.value.answers == []
    assert model.calls == 0


def test_no_answers_scores_zero(store, make_model, add_challenge):
    challenge = add_challenge(store)
    model = make_model()
    assert AnswerScorer(store, model).score(OWNER, challenge.id, []).value.score == 0
    assert model.calls == 0


def test_malformed_output_persists_nothing(store, make_model, add_challenge):
    challenge = add_challenge(store)
    model = make_model(["Looks good to me!"])
    result = AnswerScorer(store, model).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert result.kind == FailureKind.SCORING_FAILED
    assert result.raw == "Looks good to me!"
    assert store.list_scores(challenge.id) == []
    assert store.get_challenge(challenge.id).status == ProgressStatus.NOT_STARTED


def test_evaluation_count_mismatch_is_scoring_failure(store, make_model, add_challenge, scoring_payload):
    challenge = add_challenge(store)
    model = make_model([scoring_payload([True])])
    result = AnswerScorer(store, model).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert result.kind == FailureKind.SCORING_FAILED
    assert store.list_scores(challenge.id) == []


def test_unconfigured_model_is_service_unavailable(store, make_model, add_challenge):
    challenge = add_challenge(store)
    result = AnswerScorer(store, make_model(configured=False)).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert result.kind == FailureKind.SERVICE_UNAVAILABLE


def test_transport_failure_is_upstream_error(store, make_model, add_challenge):
    challenge = add_challenge(store)
    model = make_model([Failure(ModelFailureKind.TRANSPORT_ERROR, "timeout")])
    result = AnswerScorer(store, model).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert result.kind == FailureKind.UPSTREAM_ERROR
    assert model.calls == 2


def test_scoring_completes_challenge_and_progress(store, make_model, add_challenge):
    challenge = add_challenge(store)
    AnswerScorer(store, make_model([PARIS_VERDICT])).score(OWNER, challenge.id, PARIS_ANSWERS)

    assert store.get_challenge(challenge.id).status == ProgressStatus.COMPLETED
    progress = store.get_progress(OWNER, challenge.content_id, "challenge")
    assert progress.status == ProgressStatus.COMPLETED
    assert progress.progress == 50


def test_resubmission_adds_history(store, make_model, add_challenge, scoring_payload):
    challenge = add_challenge(store)
    first = AnswerScorer(store, make_model([PARIS_VERDICT])).score(OWNER, challenge.id, PARIS_ANSWERS).value
    second = AnswerScorer(store, make_model([scoring_payload([True, True])])).score(
        OWNER, challenge.id, PARIS_ANSWERS
    ).value

    history = store.list_scores(challenge.id)
    assert [s.id for s in history] == [second.id, first.id]
    assert store.get_progress(OWNER, challenge.content_id, "challenge").progress == 100


class StatusFailingStore(JsonRecordStore):
    def set_challenge_status(self, challenge_id, status):
        raise StoreError("status column locked")

    def upsert_progress(self, *args, **kwargs):
        raise StoreError("progress table unavailable")


class ScoreFailingStore(JsonRecordStore):
    def insert_score(self, score):
        raise StoreError("disk full")


def test_status_update_failure_keeps_score(tmp_path, make_model, add_challenge):
    store = StatusFailingStore(path=str(tmp_path / "quizzes.json"))
    challenge = add_challenge(store)
    result = AnswerScorer(store, make_model([PARIS_VERDICT])).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert result.value.score == 50
    assert len(store.list_scores(challenge.id)) == 1
    assert store.get_challenge(challenge.id).status == ProgressStatus.NOT_STARTED


def test_score_write_failure_is_persistence_error(tmp_path, make_model, add_challenge):
    store = ScoreFailingStore(path=str(tmp_path / "quizzes.json"))
    challenge = add_challenge(store)
    result = AnswerScorer(store, make_model([PARIS_VERDICT])).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert result.kind == FailureKind.PERSISTENCE_ERROR
    assert store.get_challenge(challenge.id).status == ProgressStatus.NOT_STARTED


def test_evaluations_missing_verdict_persist_nothing(store, make_model, add_challenge):
    challenge = add_challenge(store)
    evaluations = [
        {"question": "Capital of France?", "userAnswer": "The capital city is Paris."},
        {"question": "2 + 2?", "userAnswer": "3"},
    ]
    model = make_model([json.dumps(evaluations)])
    result = AnswerScorer(store, model).score(OWNER, challenge.id, PARIS_ANSWERS)
    assert result.kind == FailureKind.SCORING_FAILED
    assert store.list_scores(challenge.id) == []
    assert store.get_challenge(challenge.id).status == ProgressStatus.NOT_STARTED
    assert store.get_progress(OWNER, challenge.content_id, "challenge") is None


def test_blank_question_text_is_scored(store, make_model, add_challenge):
    challenge = add_challenge(store)
    answers = [SubmittedAnswer(question="", answer="Paris"), SubmittedAnswer(question="", answer="4")]
    verdicts = json.dumps(
        [
            {"question": "", "userAnswer": "Paris", "isCorrect": True},
            {"question": "", "userAnswer": "4", "isCorrect": True},
        ]
    )
    result = AnswerScorer(store, make_model([verdicts])).score(OWNER, challenge.id, answers)
    assert result.value.score == 100
