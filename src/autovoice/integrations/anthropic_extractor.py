"""Anthropic vision integration for invoice amount extraction."""

import asyncio
import base64
import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path

from anthropic import AsyncAnthropic
from anthropic.types import (
    CacheControlEphemeralParam,
    ImageBlockParam,
    MessageParam,
    TextBlockParam,
)
from jinja2 import Environment, FileSystemLoader, select_autoescape
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from autovoice.models import ExtractionFailure, ExtractionResult, FailureKind
from autovoice.utils.response_parser import ResponseParseError, parse_extraction

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Base exception for extraction errors."""


class ExtractionRefusedError(ExtractionError):
    """Raised when the model refuses to process the request."""


class ExtractionIncompleteError(ExtractionError):
    """Raised when the response is truncated."""

# Labels searched for the parts amount, highest priority first
PARTS_LABELS = ["parts", "total", "subtotal", "sub-total", "total due", "invoice total"]
LABOR_LABELS = ["labor"]
TAX_LABELS = ["tax", "sales tax"]

IMAGE_MEDIA_TYPE = "image/jpeg"

QUOTA_EXCEEDED_MESSAGE = (
    "The vision API rate limit or quota was exceeded. "
    "Check your plan and billing details, then try this invoice again."
)

_QUOTA_MARKERS = re.compile(
    r"quota|rate[ _]?limit|too many requests|billing|credit balance",
    re.IGNORECASE,
)
_STATUS_429 = re.compile(r"\b429\b")


def _error_body_text(exception: BaseException) -> str:
    """Return the error type and message from an API error body, if any."""
    body = getattr(exception, "body", None)
    if not isinstance(body, dict):
        return ""
    error = body.get("error", body)
    if not isinstance(error, dict):
        return ""
    return " ".join(str(error.get(key, "")) for key in ("type", "code", "message"))


def is_quota_error(exception: BaseException) -> bool:
    """Determine if an exception is a rate-limit, quota or billing failure.

    Errors carrying an HTTP status are judged by that status plus the error
    type, code and message of the response body. The rendered message is not
    searched for them since it also holds the request id. Errors without a
    status are judged by their type name, code and message, where "429" must
    appear as a whole word.

    Args:
        exception: The exception to check

    Returns:
        True if the exception should be retried with backoff, False otherwise
    """
    status = getattr(exception, "status_code", None)
    if status is None:
        status = getattr(exception, "status", None)

    code = getattr(exception, "code", None)
    code_text = "" if code is None else str(code)

    if isinstance(status, int):
        if status == 429:
            return True
        detail = f"{_error_body_text(exception)} {code_text}"
        return bool(_QUOTA_MARKERS.search(detail))

    text = f"{type(exception).__name__} {exception} {code_text}"
    return bool(_QUOTA_MARKERS.search(text) or _STATUS_429.search(text))


class AnthropicExtractor:
    """
    Anthropic-powered invoice extractor.

    Sends one invoice image per request together with a fixed instruction
    prompt, and turns the reply into an ExtractionResult. Rate-limit and
    quota errors are retried with exponential backoff; every other failure
    is reported as an ExtractionFailure so that a batch can carry on.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5",
        max_tokens: int = 512,
        temperature: float = 0.1,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        prompts_dir: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the Anthropic extractor.

        Args:
            api_key: Anthropic API key
            model: Model to use (default: claude-haiku-4-5)
            max_tokens: Maximum tokens for response (default: 512)
            temperature: Sampling temperature (default: 0.1, near-deterministic)
            max_attempts: Attempts per image, including the first (default: 3)
            backoff_base: First backoff delay in seconds, doubled per retry
            prompts_dir: Directory containing Jinja2 templates
                (default: the package's prompts/ directory)
            sleep: Awaitable sleep used between retries
        """
        self.client = AsyncAnthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep

        if prompts_dir is None:
            prompts_dir = str(Path(__file__).parent.parent / "prompts")

        self.jinja_env = Environment(
            loader=FileSystemLoader(prompts_dir),
            autoescape=select_autoescape(),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render_prompts(self) -> tuple[str, str]:
        """
        Render system and user prompts from Jinja2 templates.

        Returns:
            Tuple of (system_prompt, user_prompt)
        """
        system_template = self.jinja_env.get_template("extractor_system.jinja2")
        user_template = self.jinja_env.get_template("extractor_user.jinja2")

        system_prompt = system_template.render(
            parts_labels=PARTS_LABELS,
            labor_labels=LABOR_LABELS,
            tax_labels=TAX_LABELS,
        )
        user_prompt = user_template.render()

        return system_prompt, user_prompt

    def _build_messages(self, image: bytes, user_prompt: str) -> list[MessageParam]:
        image_block: ImageBlockParam = {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": IMAGE_MEDIA_TYPE,
                "data": base64.standard_b64encode(image).decode("ascii"),
            },
        }
        text_block: TextBlockParam = {"type": "text", "text": user_prompt}
        return [{"role": "user", "content": [image_block, text_block]}]

    async def _request_completion(self, image: bytes) -> str:
        """
        Send a single extraction request and return the reply text.

        Raises:
            ExtractionRefusedError: If the model refuses the request
            ExtractionIncompleteError: If response is truncated
            anthropic.APIError: For errors reported by the API
        """
        system_prompt, user_prompt = self._render_prompts()

        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=[
                TextBlockParam(
                    type="text",
                    text=system_prompt,
                    cache_control=CacheControlEphemeralParam(type="ephemeral"),
                )
            ],
            messages=self._build_messages(image, user_prompt),
        )

        if response.stop_reason == "refusal":
            raise ExtractionRefusedError("Model refused to process the request")

        if response.stop_reason == "max_tokens":
            raise ExtractionIncompleteError(
                "Response truncated due to token limit. Try increasing max_tokens."
            )

        return "".join(
            block.text for block in response.content if block.type == "text"
        )

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Rate limited on attempt %d/%d, retrying in %.1fs: %s",
            retry_state.attempt_number,
            self.max_attempts,
            delay,
            error,
        )

    async def _complete_with_retry(self, image: bytes) -> str:
        """Request a completion, retrying only rate-limit and quota errors.

        Waits backoff_base * 2 ** (attempt - 1) seconds between attempts.
        The last error is re-raised once attempts run out, and any other
        error is raised straight away.
        """
        retrying = AsyncRetrying(
            sleep=self._sleep,
            retry=retry_if_exception(is_quota_error),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, exp_base=2),
            before_sleep=self._log_backoff,
            reraise=True,
        )

        text = ""
        async for attempt in retrying:
            with attempt:
                text = await self._request_completion(image)
        return text

    async def extract(
        self, image: bytes, filename: str
    ) -> ExtractionResult | ExtractionFailure:
        """
        Extract parts, labor and tax from one invoice image.

        Upstream and parse errors are returned as an ExtractionFailure rather
        than raised. A reply that is not valid JSON is not retried.

        Args:
            image: Raw image bytes (format is not validated here)
            filename: Display name used for logging and labelling

        Returns:
            ExtractionResult on success, ExtractionFailure otherwise
        """
        logger.info("Extracting %s (%d bytes)", filename, len(image))

        try:
            raw_text = await self._complete_with_retry(image)
        except Exception as e:
            if is_quota_error(e):
                logger.error(
                    "Quota exhausted for %s after %d attempts: %s",
                    filename,
                    self.max_attempts,
                    e,
                )
                return ExtractionFailure(
                    filename=filename,
                    error=QUOTA_EXCEEDED_MESSAGE,
                    kind=FailureKind.QUOTA,
                )
            logger.error("Extraction failed for %s: %s", filename, e)
            return ExtractionFailure(
                filename=filename, error=str(e), kind=FailureKind.UPSTREAM
            )

        logger.debug("Raw response for %s: %s", filename, raw_text)

        try:
            result = parse_extraction(raw_text, filename)
        except ResponseParseError as e:
            logger.error("Could not parse response for %s: %s", filename, e)
            return ExtractionFailure(
                filename=filename,
                error=str(e),
                kind=FailureKind.PARSE,
                raw_response_text=raw_text,
            )

        logger.info(
            "Extracted %s: parts=%s labor=%s tax=%s flagged=%s confidence=%s",
            filename,
            result.parts,
            result.labor,
            result.tax,
            result.flagged,
            result.confidence,
        )
        return result
