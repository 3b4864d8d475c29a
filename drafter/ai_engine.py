"""
AI Engine module for the Financial Statements Drafter.

Handles all Gemini API interactions: model-candidate fallback, the overall
deadline, and pulling text out of the response.
This module is stateless - it does not interact with the file system directly.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .config import (
    GEMINI_API_KEY,
    MODEL_NAME,
    DEFAULT_MODEL_CANDIDATES,
    GEMINI_TIMEOUT_SECONDS,
)
from .errors import (
    GenerationTimeoutError,
    ModelUnavailableError,
    NoTextGeneratedError,
    UpstreamAPIError,
    UpstreamAuthError,
)
from .request_builder import BinaryPart, GenerativeRequest, TextPart

logger = logging.getLogger(__name__)

PING_PROMPT = "Say hello from Gemini."

# Substrings of upstream messages that mean "try the next model"
RETRYABLE_MESSAGES = ("not found", "not supported")


# =============================================================================
# INITIALIZATION
# =============================================================================

def configure_gemini(api_key: Optional[str] = None) -> None:
    """
    Configure Google Generative AI with the API key.

    Raises:
        UpstreamAuthError: If no API key is configured
    """
    api_key = api_key or GEMINI_API_KEY
    if not api_key:
        raise UpstreamAuthError("Missing GEMINI_API_KEY")

    genai.configure(api_key=api_key)
    logger.info("Gemini API configured successfully")


def candidate_models(
    override: Optional[str] = None,
    defaults: Optional[list[str]] = None
) -> list[str]:
    """
    Build the ordered list of models to try.

    The override (usually GEMINI_MODEL) goes first; duplicates and the
    "models/" resource prefix are removed.
    """
    names = [override if override is not None else MODEL_NAME]
    names.extend(defaults if defaults is not None else DEFAULT_MODEL_CANDIDATES)

    result = []
    for name in names:
        if not name:
            continue
        name = name.strip()
        if name.startswith("models/"):
            name = name[len("models/"):]
        if name and name not in result:
            result.append(name)
    return result


def list_available_models() -> list[str]:
    """Names of the models this key can call generateContent on."""
    return [
        m.name
        for m in genai.list_models()
        if "generateContent" in getattr(m, "supported_generation_methods", [])
    ]


# =============================================================================
# REQUEST / RESPONSE SHAPING
# =============================================================================

def to_gemini_contents(request: GenerativeRequest) -> list[Any]:
    """Convert prompt parts into the content list the Gemini SDK accepts."""
    contents = []
    for part in request:
        if isinstance(part, TextPart):
            contents.append(part.content)
        elif isinstance(part, BinaryPart):
            contents.append({"mime_type": part.mime_type, "data": part.data})
        else:
            raise TypeError(f"Unknown prompt part: {type(part).__name__}")
    return contents


def _enum_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "name", None) or str(value)


def extract_response_text(response: Any) -> Optional[str]:
    """Return the first non-empty text part of the first candidate, if any."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None

    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        text = getattr(part, "text", None)
        if text and text.strip():
            return text.strip()
    return None


def response_diagnostics(response: Any) -> dict:
    """Finish reason, safety ratings and prompt block reason, for a response without text."""
    diagnostics = {}

    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback else None
    if block_reason:
        diagnostics["blockReason"] = _enum_name(block_reason)

    candidates = getattr(response, "candidates", None) or []
    if candidates:
        candidate = candidates[0]
        finish_reason = getattr(candidate, "finish_reason", None)
        if finish_reason:
            diagnostics["finishReason"] = _enum_name(finish_reason)
        ratings = getattr(candidate, "safety_ratings", None) or []
        if ratings:
            diagnostics["safetyRatings"] = [
                f"{_enum_name(getattr(r, 'category', None))}:{_enum_name(getattr(r, 'probability', None))}"
                for r in ratings
            ]

    return diagnostics


# =============================================================================
# CANDIDATE FALLBACK
# =============================================================================

class AttemptOutcome(Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass
class GenerationResult:
    text: str
    model_used: str


def classify_error(error: Exception) -> AttemptOutcome:
    """
    Decide whether a failed attempt may move on to the next model.

    Only "model not found" and "method not supported" errors are retryable;
    anything else stops the fallback.
    """
    if isinstance(error, (google_exceptions.NotFound, google_exceptions.MethodNotImplemented)):
        return AttemptOutcome.RETRYABLE

    message = str(error).lower()
    if any(m in message for m in RETRYABLE_MESSAGES):
        return AttemptOutcome.RETRYABLE

    return AttemptOutcome.TERMINAL


def _default_model_factory(model_name: str) -> Any:
    return genai.GenerativeModel(model_name)


class ModelInvoker:
    """
    Sends a GenerativeRequest to Gemini, walking the candidate models in order.

    Each attempt ends in one of three outcomes: SUCCESS returns immediately,
    RETRYABLE moves to the next candidate, TERMINAL raises without trying the
    rest. The whole walk is bounded by one deadline.
    """

    def __init__(
        self,
        model_factory: Optional[Callable[[str], Any]] = None,
        timeout: float = GEMINI_TIMEOUT_SECONDS,
        model_lister: Optional[Callable[[], list[str]]] = list_available_models
    ):
        self.model_factory = model_factory or _default_model_factory
        self.timeout = timeout
        self.model_lister = model_lister

    async def generate(self, request: GenerativeRequest, candidates: list[str]) -> GenerationResult:
        """
        Generate text from the first model that accepts the request.

        Raises:
            GenerationTimeoutError: Deadline expired; the in-flight call is cancelled
            NoTextGeneratedError: A model answered without any text
            UpstreamAPIError: A model failed with a non-retryable error
            ModelUnavailableError: Every candidate was not found / not supported
        """
        if not candidates:
            raise ModelUnavailableError([])

        contents = to_gemini_contents(request)
        try:
            return await asyncio.wait_for(self._walk_candidates(contents, candidates), timeout=self.timeout)
        except ModelUnavailableError as e:
            # Model listing is not bounded by the deadline
            raise ModelUnavailableError(e.tried, await self._available_models())
        except asyncio.TimeoutError:
            logger.error(f"❌ Gemini request exceeded {self.timeout}s deadline")
            raise GenerationTimeoutError(
                f"Gemini request timed out after {self.timeout:g}s",
                details="Try fewer or smaller files, or retry in a moment.",
            )

    async def _walk_candidates(self, contents: list[Any], candidates: list[str]) -> GenerationResult:
        tried = []
        for model_name in candidates:
            tried.append(model_name)
            outcome, value = await self._attempt(model_name, contents)

            if outcome is AttemptOutcome.SUCCESS:
                logger.info(f"✓ Generated {len(value.text):,} characters with {model_name}")
                return value

            if outcome is AttemptOutcome.TERMINAL:
                raise value

            logger.warning(f"Model {model_name} unavailable ({value}), trying next candidate...")

        logger.error(f"❌ No usable model among: {', '.join(tried)}")
        raise ModelUnavailableError(tried)

    async def _attempt(self, model_name: str, contents: list[Any]) -> tuple[AttemptOutcome, Any]:
        logger.debug(f"  Calling {model_name}...")
        try:
            model = self.model_factory(model_name)
            response = await model.generate_content_async(contents)
        except Exception as e:
            outcome = classify_error(e)
            if outcome is AttemptOutcome.RETRYABLE:
                return outcome, e
            logger.error(f"Gemini error from {model_name}: {e}")
            details = {"model": model_name, "message": str(e)}
            code = getattr(e, "code", None)
            if isinstance(code, int):
                details["upstreamStatus"] = int(code)
            return outcome, UpstreamAPIError("Gemini request failed", details=details)

        text = extract_response_text(response)
        if not text:
            diagnostics = response_diagnostics(response)
            logger.warning(f"  {model_name}: empty response {diagnostics}")
            return AttemptOutcome.TERMINAL, NoTextGeneratedError(
                model_name,
                finish_reason=diagnostics.pop("finishReason", None),
                diagnostics=diagnostics,
            )

        return AttemptOutcome.SUCCESS, GenerationResult(text=text, model_used=model_name)

    async def _available_models(self) -> Optional[list[str]]:
        if self.model_lister is None:
            return None
        try:
            return await asyncio.to_thread(self.model_lister)
        except Exception as e:
            logger.warning(f"Could not list available models: {e}")
            return None

    async def ping(self, candidates: list[str]) -> GenerationResult:
        """One-line round trip to check the key and model are usable."""
        return await self.generate([TextPart(PING_PROMPT)], candidates)
