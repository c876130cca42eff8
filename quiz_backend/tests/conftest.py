"""Shared fixtures: scripted model client, both store backends, seeded content."""
import json
import threading

import pytest

from quizgrader.services.model_client import ModelClient, ModelFailureKind
from quizgrader.services.result import Failure, Success
from quizgrader.storage.json_store import JsonRecordStore
from quizgrader.storage.records import Challenge, ContentItem, QuizItem
from quizgrader.storage.sql_store import SqlRecordStore

LONG_TEXT = (
    "Photosynthesis is the process by which green plants use sunlight, water and carbon dioxide "
    "to produce glucose and oxygen. It takes place mainly in the chloroplasts of leaf cells."
)


class FakeModelClient(ModelClient):
    """
    Scripted ModelClient. Each call consumes the next response; the last one repeats.
    Responses may be raw strings or ready-made Success/Failure values.
    """

    def __init__(self, responses=None, configured=True, barrier=None):
        self._responses = list(responses or [])
        self._configured = configured
        self._barrier = barrier
        self._lock = threading.Lock()
        self.calls = 0
        self.prompts = []

    @property
    def configured(self):
        return self._configured

    def generate(self, prompt):
        with self._lock:
            self.calls += 1
            self.prompts.append(prompt)
            if len(self._responses) > 1:
                response = self._responses.pop(0)
            else:
                response = self._responses[0] if self._responses else ""
        if self._barrier is not None:
            self._barrier.wait(timeout=5)
        if not self._configured:
            return Failure(ModelFailureKind.UNCONFIGURED, "no key")
        if isinstance(response, (Success, Failure)):
            return response
        return Success(response)


def quiz_json(count=5, wrap_key=None):
    items = [{"question": f"Question {i}?", "answer": f"Answer {i}"} for i in range(1, count + 1)]
    return json.dumps({wrap_key: items} if wrap_key else items)


def scoring_json(verdicts):
    return json.dumps(
        [
            {"question": f"Q{i}", "userAnswer": f"A{i}", "isCorrect": verdict}
            for i, verdict in enumerate(verdicts, start=1)
        ]
    )


@pytest.fixture
def make_model():
    return FakeModelClient


@pytest.fixture(params=["json", "sql"])
def store(request, tmp_path):
    if request.param == "json":
        yield JsonRecordStore(path=str(tmp_path / "quizzes.json"))
    else:
        sql_store = SqlRecordStore(f"sqlite:///{tmp_path / 'quizzes.sqlite'}")
        yield sql_store
        sql_store.engine.dispose()


@pytest.fixture
def json_store(tmp_path):
    return JsonRecordStore(path=str(tmp_path / "quizzes.json"))


@pytest.fixture
def add_content():
    def _add(store, document=LONG_TEXT, title="Plant Biology"):
        return store.add_content(ContentItem(title=title, document=document)).id
    return _add


@pytest.fixture
def add_challenge():
    def _add(store, owner_id="learner-1", content_id="content-1", pairs=(("Capital of France?", "Paris"), ("2 + 2?", "4"))):
        challenge = Challenge(
            owner_id=owner_id,
            content_id=content_id,
            questions=[QuizItem(question=q, answer=a) for q, a in pairs],
        )
        stored, _ = store.insert_challenge_if_absent(challenge)
        return stored
    return _add


@pytest.fixture
def quiz_payload():
    return quiz_json


@pytest.fixture
def scoring_payload():
    return scoring_json
