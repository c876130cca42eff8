"""
Adapter around the Gemini text generation API.

The client only moves text: it sends a prompt and returns the raw response
string, or a classified Failure. Parsing belongs to the validator.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, List, Optional

import httpx
from google import genai
from google.genai import errors, types

from quizgrader.config import ModelConfig
from quizgrader.services.result import Failure, Result, Success

logger = logging.getLogger(__name__)

# Finish reasons that mean the candidate was withheld by a filter.
BLOCKING_FINISH_REASONS = frozenset({"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"})


class ModelFailureKind(str, Enum):
    UNCONFIGURED = "unconfigured"
    EMPTY_RESPONSE = "empty-response"
    CONTENT_BLOCKED = "content-blocked"
    TRANSPORT_ERROR = "transport-error"
    SERVICE_ERROR = "service-error"


# Only network-level failures are worth a second attempt.
RETRYABLE_KINDS = frozenset({ModelFailureKind.TRANSPORT_ERROR})


# PUBLIC_INTERFACE
class ModelClient(ABC):
    """Contract every generative model adapter satisfies."""

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when the client can attempt calls."""

    @abstractmethod
    def generate(self, prompt: str) -> Result[str]:
        """Return Success(raw text) or Failure(ModelFailureKind, detail)."""


def _enum_name(value: Any) -> str:
    return getattr(value, "name", None) or str(value)


# PUBLIC_INTERFACE
class GeminiModelClient(ModelClient):
    """
    Gemini implementation of ModelClient.

    Configuration is fixed at construction from an immutable ModelConfig. When
    no API key is configured the client stays unconfigured and every call fails
    immediately with UNCONFIGURED, without touching the network.
    """

    def __init__(self, config: ModelConfig, client: Optional[Any] = None) -> None:
        """
        Args:
            config: Model settings (name, temperature, safety threshold, timeout).
            client: Optional pre-built `genai.Client`-compatible object, mainly for tests.
        """
        self.config = config
        self._client = client
        if self._client is None and config.configured:
            self._client = genai.Client(
                api_key=config.api_key,
                http_options=types.HttpOptions(timeout=int(config.timeout_seconds * 1000)),
            )
        self._generate_config = self._build_generate_config(config)

    @staticmethod
    def _build_generate_config(config: ModelConfig) -> types.GenerateContentConfig:
        safety_settings: List[types.SafetySetting] = [
            types.SafetySetting(
                category=types.HarmCategory(category),
                threshold=types.HarmBlockThreshold(config.safety_threshold),
            )
            for category in config.safety_categories
        ]
        return types.GenerateContentConfig(
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            response_mime_type="application/json" if config.json_mode else None,
            safety_settings=safety_settings,
        )

    @property
    def configured(self) -> bool:
        return self._client is not None

    def generate(self, prompt: str) -> Result[str]:
        if self._client is None:
            return Failure(ModelFailureKind.UNCONFIGURED, "GEMINI_API_KEY is not set")

        try:
            response = self._client.models.generate_content(
                model=self.config.model,
                contents=prompt,
                config=self._generate_config,
            )
        except httpx.TransportError as exc:
            # Connection failures and timeouts
            return Failure(ModelFailureKind.TRANSPORT_ERROR, f"{type(exc).__name__}: {exc}")
        except errors.ServerError as exc:
            return Failure(ModelFailureKind.TRANSPORT_ERROR, f"server error {exc.code}: {exc.message}")
        except errors.APIError as exc:
            return Failure(ModelFailureKind.SERVICE_ERROR, f"request rejected {exc.code}: {exc.message}")
        except ValueError as exc:
            # Includes errors.UnknownApiResponseError: a non-JSON body, e.g. from a gateway
            return Failure(ModelFailureKind.SERVICE_ERROR, f"unreadable response: {type(exc).__name__}: {exc}")
        except Exception as exc:
            logger.exception("Unexpected error from model %s", self.config.model)
            return Failure(ModelFailureKind.SERVICE_ERROR, f"unexpected error: {type(exc).__name__}")

        return self._read_text(response)

    @staticmethod
    def _read_text(response: Any) -> Result[str]:
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None)
        if block_reason:
            return Failure(
                ModelFailureKind.CONTENT_BLOCKED,
                f"prompt blocked: {_enum_name(block_reason)}",
                raw=getattr(feedback, "block_reason_message", None),
            )

        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return Failure(ModelFailureKind.EMPTY_RESPONSE, "no candidates returned")

        candidate = candidates[0]
        finish_reason = getattr(candidate, "finish_reason", None)
        if finish_reason is not None and _enum_name(finish_reason) in BLOCKING_FINISH_REASONS:
            return Failure(ModelFailureKind.CONTENT_BLOCKED, f"candidate blocked: {_enum_name(finish_reason)}")

        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) or []
        text = "".join(part.text for part in parts if getattr(part, "text", None))
        if not text.strip():
            return Failure(ModelFailureKind.EMPTY_RESPONSE, "candidate has no text")
        return Success(text)


# PUBLIC_INTERFACE
def generate_with_retry(client: ModelClient, prompt: str, max_retries: int = 1) -> Result[str]:
    """
    Call `client.generate`, retrying only retryable failures up to `max_retries` times.

    Validation and content failures are returned as-is on the first attempt.
    """
    attempt = 0
    while True:
        result = client.generate(prompt)
        if isinstance(result, Success):
            return result
        if result.kind not in RETRYABLE_KINDS or attempt >= max_retries:
            return result
        attempt += 1
        logger.warning("Model call failed (%s: %s), retrying %d/%d", result.kind.value, result.detail, attempt, max_retries)
