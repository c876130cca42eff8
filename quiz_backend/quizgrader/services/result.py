from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class FailureKind(str, Enum):
    """Failure kinds an orchestrator can end in. Each maps to one HTTP status."""
    NOT_FOUND = "not-found"
    FORBIDDEN = "forbidden"
    INSUFFICIENT_CONTENT = "insufficient-content"
    SERVICE_UNAVAILABLE = "service-unavailable"
    UPSTREAM_ERROR = "upstream-error"
    GENERATION_FAILED = "generation-failed"
    SCORING_FAILED = "scoring-failed"
    PERSISTENCE_ERROR = "persistence-error"
    INTERNAL_ERROR = "internal-error"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful stage outcome carrying its value."""
    value: T

    @property
    def ok(self) -> bool:
        return True


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Failure:
    """
    Failed stage outcome.

    `kind` is an Enum member from the stage that failed (model client, validator
    or orchestrator). `detail` is a short human-readable message and `raw` keeps
    whatever the failing stage wants retained for diagnostics (e.g. model text).
    """
    kind: Enum
    detail: str = ""
    raw: Optional[Any] = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Success[T], Failure]
