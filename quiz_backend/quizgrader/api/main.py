import logging
import threading
from typing import Dict, List, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quizgrader.api.schemas import ContentIn, ContentOut, GenerateIn, QuizMetaOut, ScoreIn
from quizgrader.config import Settings, load_settings
from quizgrader.services.model_client import GeminiModelClient, ModelClient
from quizgrader.services.quiz_generator import ChallengeGenerator, GenerationOutcome, QuizGenerator
from quizgrader.services.result import Failure, FailureKind, Result
from quizgrader.services.scoring import AnswerScorer, SubmittedAnswer
from quizgrader.storage.base import RecordStore, StoreError
from quizgrader.storage.json_store import JsonRecordStore
from quizgrader.storage.records import Challenge, ContentItem, QuizRecord, ScoreRecord
from quizgrader.storage.sql_store import SqlRecordStore

# Load environment variables from a .env file if present
load_dotenv()

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "System", "description": "System and service endpoints"},
    {"name": "Contents", "description": "Learning content registration"},
    {"name": "Quizzes", "description": "Quiz generation and retrieval endpoints"},
    {"name": "Challenges", "description": "Challenge generation and retrieval endpoints"},
    {"name": "Scores", "description": "Answer submission and score history"},
]

STATUS_BY_KIND: Dict[FailureKind, int] = {
    FailureKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    FailureKind.INSUFFICIENT_CONTENT: status.HTTP_400_BAD_REQUEST,
    FailureKind.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    FailureKind.UPSTREAM_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    FailureKind.GENERATION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    FailureKind.SCORING_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    FailureKind.PERSISTENCE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    FailureKind.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Server-side failures get a fixed message; their details stay in the logs.
PUBLIC_MESSAGES: Dict[FailureKind, str] = {
    FailureKind.SERVICE_UNAVAILABLE: "The AI service is currently unavailable",
    FailureKind.UPSTREAM_ERROR: "The AI service did not respond, please try again later",
    FailureKind.GENERATION_FAILED: "Failed to generate questions using AI",
    FailureKind.SCORING_FAILED: "Failed to evaluate answers using AI",
    FailureKind.PERSISTENCE_ERROR: "Failed to save results",
    FailureKind.INTERNAL_ERROR: "Internal server error",
}


# PUBLIC_INTERFACE
def build_store(settings: Settings) -> RecordStore:
    """Construct the configured persistence backend."""
    if settings.store_backend == "sql":
        return SqlRecordStore(settings.database_url)
    logger.warning(
        "Using the JSON file store at %s; it is safe for a single process only. "
        "Set QUIZ_STORE_BACKEND=sql when running several workers",
        settings.data_file,
    )
    return JsonRecordStore(path=settings.data_file)


# PUBLIC_INTERFACE
def build_model_client(settings: Settings) -> ModelClient:
    """Construct the Gemini client; unconfigured when no API key is set."""
    client = GeminiModelClient(settings.model)
    if not client.configured:
        logger.error("GEMINI_API_KEY is not set; generation and scoring will answer 503")
    return client


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> RecordStore:
    """Return the app's store, building it on first use."""
    state = request.app.state
    if state.store is None:
        with state.build_lock:
            if state.store is None:
                state.store = build_store(state.settings)
    return state.store


def get_model_client(request: Request) -> ModelClient:
    """Return the app's model client, building it on first use."""
    state = request.app.state
    if state.model_client is None:
        with state.build_lock:
            if state.model_client is None:
                state.model_client = build_model_client(state.settings)
    return state.model_client


def get_learner_id(x_learner_id: Optional[str] = Header(default=None)) -> str:
    """Learner identity, resolved upstream and forwarded in the X-Learner-Id header."""
    if not x_learner_id or not x_learner_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_learner_id.strip()


def get_quiz_generator(
    settings: Settings = Depends(get_settings),
    store: RecordStore = Depends(get_store),
    model_client: ModelClient = Depends(get_model_client),
) -> QuizGenerator:
    return QuizGenerator(store, model_client, settings.pipeline)


def get_challenge_generator(
    settings: Settings = Depends(get_settings),
    store: RecordStore = Depends(get_store),
    model_client: ModelClient = Depends(get_model_client),
) -> ChallengeGenerator:
    return ChallengeGenerator(store, model_client, settings.pipeline)


def get_scorer(
    store: RecordStore = Depends(get_store),
    model_client: ModelClient = Depends(get_model_client),
) -> AnswerScorer:
    return AnswerScorer(store, model_client)


def _unwrap(result: Result):
    """Return a Success value or raise the HTTPException for a Failure."""
    if isinstance(result, Failure):
        kind = result.kind
        code = STATUS_BY_KIND.get(kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=code, detail=PUBLIC_MESSAGES.get(kind, result.detail))
    return result.value


def _owned_challenge(store: RecordStore, challenge_id: str, learner_id: str) -> Challenge:
    challenge = store.get_challenge(challenge_id)
    if challenge is None:
        raise HTTPException(status_code=404, detail="Challenge not found")
    if challenge.owner_id != learner_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return challenge


router = APIRouter()


@router.get("/", summary="Health Check", tags=["System"])
def health_check(
    store: RecordStore = Depends(get_store),
    model_client: ModelClient = Depends(get_model_client),
):
    """
    Health check endpoint.

    Returns:
        JSON payload with a simple 'Healthy' message, the store location and
        whether the AI model is configured.
    """
    return {"message": "Healthy", "store": store.location, "modelConfigured": model_client.configured}


@router.post(
    "/contents",
    response_model=ContentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Register learning content",
    tags=["Contents"],
)
def create_content(content_in: ContentIn, store: RecordStore = Depends(get_store)) -> ContentOut:
    """
    Store a content document so quizzes and challenges can be generated from it.

    Args:
        content_in: Title and structured document.

    Returns:
        ContentOut: Reference to the stored content.
    """
    title = (content_in.title or "").strip() or "Untitled Content"
    content = store.add_content(ContentItem(title=title, document=content_in.document))
    return ContentOut(id=content.id, title=content.title, created_at=content.created_at)


@router.post(
    "/quizzes",
    response_model=QuizRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Generate quiz from content",
    description="Returns the learner's quiz for the content, generating it with AI on the first request.",
    responses={200: {"description": "Existing quiz returned"}},
    tags=["Quizzes"],
)
def generate_quiz(
    body: GenerateIn,
    response: Response,
    learner_id: str = Depends(get_learner_id),
    generator: QuizGenerator = Depends(get_quiz_generator),
) -> QuizRecord:
    """
    Fetch or create the quiz for (learner, content).

    Returns:
        QuizRecord: 200 when it already existed, 201 when created by this call.

    Raises:
        HTTPException 400 if the content has too little text, 404 if it does not
        exist, 503 if the AI service is unavailable, 500 otherwise.
    """
    outcome: GenerationOutcome = _unwrap(generator.generate(learner_id, body.content_id))
    response.status_code = status.HTTP_201_CREATED if outcome.created else status.HTTP_200_OK
    return outcome.record


@router.get(
    "/quizzes",
    response_model=List[QuizMetaOut],
    summary="List quizzes",
    description="Returns metadata of the learner's quizzes, newest first.",
    tags=["Quizzes"],
)
def list_quizzes(
    learner_id: str = Depends(get_learner_id),
    store: RecordStore = Depends(get_store),
) -> List[QuizMetaOut]:
    metas = [
        QuizMetaOut(
            id=q.id,
            source_content_id=q.source_content_id,
            created_at=q.created_at,
            question_count=len(q.questions),
        )
        for q in store.list_quizzes(learner_id)
    ]
    metas.sort(key=lambda m: m.created_at, reverse=True)
    return metas


@router.get(
    "/quizzes/{quiz_id}",
    response_model=QuizRecord,
    summary="Get quiz by id",
    tags=["Quizzes"],
)
def get_quiz(
    quiz_id: str,
    learner_id: str = Depends(get_learner_id),
    store: RecordStore = Depends(get_store),
) -> QuizRecord:
    """
    Retrieve one of the learner's quizzes.

    Raises:
        HTTPException 404 if the quiz does not exist or belongs to someone else.
    """
    quiz = store.get_quiz(quiz_id)
    if quiz is None or quiz.owner_id != learner_id:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return quiz


@router.post(
    "/challenges",
    response_model=Challenge,
    status_code=status.HTTP_201_CREATED,
    summary="Generate challenge from content",
    responses={200: {"description": "Existing challenge returned"}},
    tags=["Challenges"],
)
def generate_challenge(
    body: GenerateIn,
    response: Response,
    learner_id: str = Depends(get_learner_id),
    generator: ChallengeGenerator = Depends(get_challenge_generator),
) -> Challenge:
    """Fetch or create the challenge for (learner, content); same status codes as quiz generation."""
    outcome: GenerationOutcome = _unwrap(generator.generate(learner_id, body.content_id))
    response.status_code = status.HTTP_201_CREATED if outcome.created else status.HTTP_200_OK
    return outcome.record


@router.get(
    "/challenges/{challenge_id}",
    response_model=Challenge,
    summary="Get challenge by id",
    tags=["Challenges"],
)
def get_challenge(
    challenge_id: str,
    learner_id: str = Depends(get_learner_id),
    store: RecordStore = Depends(get_store),
) -> Challenge:
    return _owned_challenge(store, challenge_id, learner_id)


@router.post(
    "/scores",
    response_model=ScoreRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Submit answers for AI scoring",
    tags=["Scores"],
)
def submit_score(
    body: ScoreIn,
    learner_id: str = Depends(get_learner_id),
    scorer: AnswerScorer = Depends(get_scorer),
) -> ScoreRecord:
    """
    Grade the submitted answers and store the score.

    Raises:
        HTTPException 403 if the learner does not own the challenge, 404 if it
        does not exist, 503 if the AI service is unavailable, 500 otherwise.
    """
    answers = [SubmittedAnswer(question=a.question, answer=a.answer) for a in body.answers]
    return _unwrap(scorer.score(learner_id, body.challenge_id, answers))


@router.get(
    "/scores",
    response_model=List[ScoreRecord],
    summary="Score history for a challenge",
    tags=["Scores"],
)
def list_scores(
    challenge_id: str = Query(..., alias="challengeId", min_length=1),
    learner_id: str = Depends(get_learner_id),
    store: RecordStore = Depends(get_store),
) -> List[ScoreRecord]:
    _owned_challenge(store, challenge_id, learner_id)
    return store.list_scores(challenge_id)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies and parameters are client errors, reported as 400
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Malformed request", "errors": jsonable_encoder(exc.errors())})


async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": PUBLIC_MESSAGES[FailureKind.PERSISTENCE_ERROR]})


# PUBLIC_INTERFACE
def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
    model_client: Optional[ModelClient] = None,
) -> FastAPI:
    """
    Assemble the application.

    Args:
        settings: Defaults to `load_settings()` (environment and .env).
        store: Pre-built store; built lazily from settings when omitted.
        model_client: Pre-built model client; built lazily from settings when omitted.
    """
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s  %(levelname)s  %(name)s  %(message)s")

    app = FastAPI(
        title="Quiz Generation and Scoring Backend",
        description="Generates quizzes from learning content and grades free-text answers with a generative model.",
        version="0.1.0",
        openapi_tags=openapi_tags,
    )

    # CORS configuration to allow frontend integration (adjust origins in env if needed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StoreError, _store_error_handler)

    app.state.settings = settings
    app.state.store = store
    app.state.model_client = model_client
    app.state.build_lock = threading.Lock()

    app.include_router(router)
    return app


app = create_app()
