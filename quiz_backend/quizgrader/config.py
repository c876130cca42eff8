import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_DATA_FILE = "./data/quizzes.json"
DEFAULT_DATABASE_URL = "sqlite:///./data/quizzes.sqlite"

# Harm categories filtered at the moderate threshold.
DEFAULT_SAFETY_CATEGORIES: Tuple[str, ...] = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ModelConfig:
    """Immutable configuration for the generative model client."""
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    temperature: float = 0.2
    max_output_tokens: int = 2048
    timeout_seconds: float = 30.0
    json_mode: bool = True
    safety_threshold: str = "BLOCK_MEDIUM_AND_ABOVE"
    safety_categories: Tuple[str, ...] = DEFAULT_SAFETY_CATEGORIES

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class PipelineConfig:
    """Knobs shared by the generation and scoring pipelines."""
    question_count: int = 5
    min_content_chars: int = 50
    max_content_chars: int = 100_000


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Settings:
    """Everything the application assembly needs, read once at startup."""
    model: ModelConfig = field(default_factory=ModelConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    store_backend: str = "json"
    data_file: str = DEFAULT_DATA_FILE
    database_url: str = DEFAULT_DATABASE_URL
    cors_allow_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _split_origins(value: Optional[str]) -> List[str]:
    if not value:
        return ["*"]
    origins = [o.strip() for o in value.split(",") if o.strip()]
    return origins or ["*"]


# PUBLIC_INTERFACE
def load_settings() -> Settings:
    """
    Build Settings from environment variables.

    Call `dotenv.load_dotenv()` beforehand if a .env file should be honoured;
    this function only reads `os.environ`.

    Raises:
        ValueError: when a numeric variable cannot be parsed or the store backend is unknown.
    """
    model = ModelConfig(
        api_key=os.getenv("GEMINI_API_KEY") or None,
        model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL),
        temperature=_env_float("GEMINI_TEMPERATURE", 0.2),
        max_output_tokens=_env_int("GEMINI_MAX_OUTPUT_TOKENS", 2048),
        timeout_seconds=_env_float("GEMINI_TIMEOUT_SECONDS", 30.0),
    )
    pipeline = PipelineConfig(
        question_count=_env_int("QUIZ_QUESTION_COUNT", 5),
        min_content_chars=_env_int("QUIZ_MIN_CONTENT_CHARS", 50),
        max_content_chars=_env_int("QUIZ_MAX_CONTENT_CHARS", 100_000),
    )
    backend = os.getenv("QUIZ_STORE_BACKEND", "json").strip().lower()
    if backend not in ("json", "sql"):
        raise ValueError(f"QUIZ_STORE_BACKEND must be 'json' or 'sql', got {backend!r}")
    return Settings(
        model=model,
        pipeline=pipeline,
        store_backend=backend,
        data_file=os.getenv("QUIZ_DATA_FILE") or DEFAULT_DATA_FILE,
        database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
        cors_allow_origins=tuple(_split_origins(os.getenv("CORS_ALLOW_ORIGINS"))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
