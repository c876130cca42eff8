"""Tests for the quiz and challenge generation pipelines."""
import json
import threading

from quizgrader.config import PipelineConfig
from quizgrader.services.model_client import ModelFailureKind
from quizgrader.services.quiz_generator import ChallengeGenerator, QuizGenerator
from quizgrader.services.result import Failure, FailureKind, Success
from quizgrader.storage.base import StoreError
from quizgrader.storage.json_store import JsonRecordStore
from quizgrader.storage.records import ProgressStatus, QuizItem, QuizRecord

OWNER = "learner-1"


def test_first_request_creates_quiz(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([quiz_payload()])
    result = QuizGenerator(store, model).generate(OWNER, content_id)

    assert isinstance(result, Success)
    outcome = result.value
    assert outcome.created is True
    assert len(outcome.record.questions) == 5
    assert outcome.record.owner_id == OWNER
    assert outcome.record.source_content_id == content_id
    assert model.calls == 1
    assert store.find_quiz(OWNER, content_id).id == outcome.record.id


def test_prompt_uses_title_and_text(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([quiz_payload()])
    QuizGenerator(store, model).generate(OWNER, content_id)
    assert '"Plant Biology"' in model.prompts[0]
    assert "chloroplasts" in model.prompts[0]


def test_second_request_returns_cached_quiz_without_model_call(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([quiz_payload()])
    generator = QuizGenerator(store, model)

    first = generator.generate(OWNER, content_id).value
    second = generator.generate(OWNER, content_id).value

    assert second.created is False
    assert second.record.id == first.record.id
    assert model.calls == 1
    assert len(store.list_quizzes(OWNER)) == 1


def test_other_learner_gets_own_quiz(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([quiz_payload()])
    generator = QuizGenerator(store, model)
    mine = generator.generate(OWNER, content_id).value
    theirs = generator.generate("learner-2", content_id).value
    assert theirs.created is True
    assert theirs.record.id != mine.record.id
    assert model.calls == 2


def test_new_quiz_records_progress(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    QuizGenerator(store, make_model([quiz_payload()])).generate(OWNER, content_id)
    progress = store.get_progress(OWNER, content_id, "quiz")
    assert progress.status == ProgressStatus.NOT_STARTED
    assert progress.progress == 0


def test_short_content_is_insufficient(store, make_model, add_content, quiz_payload):
    content_id = add_content(store, document="Cats are mammals.")
    model = make_model([quiz_payload()])
    result = QuizGenerator(store, model).generate(OWNER, content_id)
    assert isinstance(result, Failure)
    assert result.kind == FailureKind.INSUFFICIENT_CONTENT
    assert model.calls == 0


def test_empty_document_is_insufficient(store, make_model, add_content):
    content_id = add_content(store, document={"ROOT": {"props": {}, "nodes": []}})
    model = make_model()
    assert QuizGenerator(store, model).generate(OWNER, content_id).kind == FailureKind.INSUFFICIENT_CONTENT
    assert model.calls == 0


def test_editor_document_is_accepted(store, make_model, add_content, quiz_payload):
    document = {
        "ROOT": {"props": {}, "nodes": ["heading", "body"]},
        "heading": {"props": {"text": "<h1>Photosynthesis</h1>"}, "nodes": []},
        "body": {
            "props": {"text": "Plants convert light energy into chemical energy stored in glucose molecules."},
            "nodes": [],
        },
    }
    content_id = add_content(store, document=document)
    model = make_model([quiz_payload()])
    assert QuizGenerator(store, model).generate(OWNER, content_id).value.created is True
    assert "Photosynthesis\nPlants convert light energy" in model.prompts[0]


def test_missing_content_is_not_found(store, make_model):
    model = make_model()
    result = QuizGenerator(store, model).generate(OWNER, "no-such-content")
    assert result.kind == FailureKind.NOT_FOUND
    assert model.calls == 0


def test_unconfigured_model_is_service_unavailable(store, make_model, add_content):
    content_id = add_content(store)
    model = make_model(configured=False)
    result = QuizGenerator(store, model).generate(OWNER, content_id)
    assert result.kind == FailureKind.SERVICE_UNAVAILABLE
    assert store.find_quiz(OWNER, content_id) is None


def test_transport_error_retried_once_then_upstream_error(store, make_model, add_content):
    content_id = add_content(store)
    model = make_model([Failure(ModelFailureKind.TRANSPORT_ERROR, "connection reset")])
    result = QuizGenerator(store, model).generate(OWNER, content_id)
    assert result.kind == FailureKind.UPSTREAM_ERROR
    assert model.calls == 2


def test_transport_error_then_success(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([Failure(ModelFailureKind.TRANSPORT_ERROR, "timeout"), quiz_payload()])
    assert QuizGenerator(store, model).generate(OWNER, content_id).value.created is True
    assert model.calls == 2


def test_blocked_content_is_not_retried(store, make_model, add_content):
    content_id = add_content(store)
    model = make_model([Failure(ModelFailureKind.CONTENT_BLOCKED, "SAFETY")])
    assert QuizGenerator(store, model).generate(OWNER, content_id).kind == FailureKind.UPSTREAM_ERROR
    assert model.calls == 1


def test_malformed_output_persists_nothing(store, make_model, add_content):
    content_id = add_content(store)
    model = make_model(["Here is your quiz: [...]"])
    result = QuizGenerator(store, model).generate(OWNER, content_id)
    assert result.kind == FailureKind.GENERATION_FAILED
    assert result.raw == "Here is your quiz: [...]"
    assert model.calls == 1
    assert store.find_quiz(OWNER, content_id) is None
    assert store.get_progress(OWNER, content_id, "quiz") is None


def test_wrong_question_count_is_rejected(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([quiz_payload(3)])
    assert QuizGenerator(store, model).generate(OWNER, content_id).kind == FailureKind.GENERATION_FAILED
    assert store.find_quiz(OWNER, content_id) is None


def test_question_count_is_configurable(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([quiz_payload(3)])
    generator = QuizGenerator(store, model, PipelineConfig(question_count=3))
    assert len(generator.generate(OWNER, content_id).value.record.questions) == 3
    assert "exactly 3 objects" in model.prompts[0]


def test_wrapped_output_is_accepted(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([quiz_payload(wrap_key="questions")])
    record = QuizGenerator(store, model).generate(OWNER, content_id).value.record
    assert record.questions[0] == QuizItem(question="Question 1?", answer="Answer 1")


def test_extractor_crash_is_internal_error(store, make_model, add_content):
    content_id = add_content(store)

    def broken(document):
        raise RuntimeError("bad node")

    model = make_model()
    result = QuizGenerator(store, model, extractor=broken).generate(OWNER, content_id)
    assert result.kind == FailureKind.INTERNAL_ERROR
    assert model.calls == 0


class ProgressFailingStore(JsonRecordStore):
    def upsert_progress(self, *args, **kwargs):
        raise StoreError("progress table unavailable")


class BrokenStore(JsonRecordStore):
    def find_quiz(self, owner_id, content_id):
        raise StoreError("disk unavailable")


def test_progress_failure_keeps_quiz(tmp_path, make_model, add_content, quiz_payload):
    store = ProgressFailingStore(path=str(tmp_path / "quizzes.json"))
    content_id = add_content(store)
    result = QuizGenerator(store, make_model([quiz_payload()])).generate(OWNER, content_id)
    assert result.value.created is True
    assert store.find_quiz(OWNER, content_id) is not None


def test_store_failure_is_persistence_error(tmp_path, make_model, add_content):
    store = BrokenStore(path=str(tmp_path / "quizzes.json"))
    content_id = add_content(store)
    model = make_model()
    assert QuizGenerator(store, model).generate(OWNER, content_id).kind == FailureKind.PERSISTENCE_ERROR
    assert model.calls == 0


class CacheBlindGenerator(QuizGenerator):
    """Skips the cache check, as a request that lost the race to another would."""

    def _find_existing(self, owner_id, content_id):
        return None


def test_race_loser_returns_winner(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    winner = QuizRecord(
        owner_id=OWNER,
        source_content_id=content_id,
        questions=[QuizItem(question="Winner?", answer="Yes")],
    )
    store.insert_quiz_if_absent(winner)

    result = CacheBlindGenerator(store, make_model([quiz_payload()])).generate(OWNER, content_id)

    assert result.value.created is False
    assert result.value.record.id == winner.id
    assert len(store.list_quizzes(OWNER)) == 1
    # Losing a race does not count as a new quiz
    assert store.get_progress(OWNER, content_id, "quiz") is None


def test_concurrent_requests_leave_one_quiz(json_store, make_model, add_content, quiz_payload):
    content_id = add_content(json_store)
    model = make_model([quiz_payload()], barrier=threading.Barrier(2))
    generator = QuizGenerator(json_store, model)
    results = []

    def run():
        results.append(generator.generate(OWNER, content_id))

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(results) == 2
    assert sorted(r.value.created for r in results) == [False, True]
    assert results[0].value.record.id == results[1].value.record.id
    assert len(json_store.list_quizzes(OWNER)) == 1


def test_challenge_generation(store, make_model, add_content, quiz_payload):
    content_id = add_content(store)
    model = make_model([quiz_payload()])
    generator = ChallengeGenerator(store, model)

    first = generator.generate(OWNER, content_id).value
    second = generator.generate(OWNER, content_id).value

    assert first.created is True
    assert first.record.status == ProgressStatus.NOT_STARTED
    assert len(first.record.questions) == 5
    assert second.created is False
    assert second.record.id == first.record.id
    assert model.calls == 1
    # Challenges and quizzes are separate records
    assert store.find_quiz(OWNER, content_id) is None
    assert store.get_progress(OWNER, content_id, "quiz") is None


def test_items_missing_answer_persist_nothing(store, make_model, add_content):
    content_id = add_content(store)
    items = [{"question": f"Question {i}?"} for i in range(1, 6)]
    model = make_model([json.dumps(items)])
    result = QuizGenerator(store, model).generate(OWNER, content_id)
    assert result.kind == FailureKind.GENERATION_FAILED
    assert store.find_quiz(OWNER, content_id) is None
    assert store.list_quizzes(OWNER) == []
    assert store.get_progress(OWNER, content_id, "quiz") is None
