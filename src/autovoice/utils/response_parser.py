"""Decoding and normalization of vision-model replies.

The model is asked for a bare JSON object but often wraps it in a Markdown
code fence. Replies are decoded in two stages: fence stripping, then a strict
JSON decode into a plain dict. Each field is then validated and coerced on its
own; the decoded types are never trusted directly.
"""

import json
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from autovoice.models import (
    ZERO,
    Confidence,
    ExtractionResult,
    NumericTax,
    Tax,
    TextualTax,
)

logger = logging.getLogger(__name__)


class ResponseParseError(ValueError):
    """Raised when a model reply cannot be decoded into a JSON object."""


_LEADING_FENCE = re.compile(r"^```[ \t]*(?:json)?[ \t]*\r?\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\r?\n?```$")

# Currency symbols, ISO codes and whitespace dropped before a decimal parse
_AMOUNT_NOISE = re.compile(r"[\s$€£¥₹]|USD|EUR|GBP|CAD|AUD", re.IGNORECASE)
_THOUSANDS_COMMAS = re.compile(r"^-?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
_THOUSANDS_DOTS = re.compile(r"^-?\d{1,3}(?:\.\d{3})+(?:,\d+)?$")
_DECIMAL_COMMA = re.compile(r"^-?\d+,\d{1,2}$")


def _normalize_separators(text: str) -> str | None:
    """Rewrite grouped amounts such as 1,234.56 or 1.234,56 as 1234.56.

    Returns None when the separators do not form a recognisable grouping.
    """
    if "," not in text:
        return text
    if _THOUSANDS_COMMAS.match(text):
        return text.replace(",", "")
    if _THOUSANDS_DOTS.match(text) or _DECIMAL_COMMA.match(text):
        return text.replace(".", "").replace(",", ".")
    return None


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ``` or ```json fence, if present."""
    stripped = text.strip()
    stripped = _LEADING_FENCE.sub("", stripped, count=1)
    stripped = _TRAILING_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def decode_response(text: str) -> dict[str, Any]:
    """Decode a (possibly fenced) reply into a JSON object.

    Floats are decoded as ``Decimal`` so amounts never pass through binary
    floating point.

    Raises:
        ResponseParseError: If the text is not valid JSON or not an object
    """
    candidate = strip_code_fences(text)
    try:
        payload = json.loads(candidate, parse_float=Decimal)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Invalid JSON in model response: {e}") from e

    if not isinstance(payload, dict):
        raise ResponseParseError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )
    return payload


def parse_decimal(value: Any) -> Decimal | None:
    """Best-effort decimal parse; None when the value is not a finite amount."""
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, Decimal | int):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = _normalize_separators(_AMOUNT_NOISE.sub("", value))
        if not cleaned:
            return None
        try:
            number = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None

    if not number.is_finite():
        return None
    return number


def coerce_amount(value: Any) -> Decimal:
    """Coerce a parts/labor value to a non-negative decimal, else 0.00."""
    number = parse_decimal(value)
    if number is None or number < 0:
        if value is not None:
            logger.debug("Unusable amount %r replaced with 0.00", value)
        return ZERO
    return number


def coerce_tax(value: Any) -> Tax:
    """Carry tax through as a number or, for anything else, as text.

    Strings are never converted to numbers: a textual tax always needs review.
    """
    if value is None:
        return NumericTax(amount=ZERO)

    if isinstance(value, str):
        return TextualTax(text=value)

    number = parse_decimal(value)
    if number is not None and number >= 0:
        return NumericTax(amount=number)

    return TextualTax(text=json.dumps(value, default=str))


def coerce_confidence(value: Any) -> Confidence:
    if isinstance(value, str):
        try:
            return Confidence(value.strip().lower())
        except ValueError:
            logger.debug("Unknown confidence %r, using medium", value)
    return Confidence.MEDIUM


def normalize_response(
    payload: dict[str, Any], filename: str, raw_text: str
) -> ExtractionResult:
    """Build an ExtractionResult from a decoded reply.

    The model's own ``flagged`` value is ignored; the result derives it
    from the tax field.
    """
    return ExtractionResult(
        filename=filename,
        parts=coerce_amount(payload.get("parts")),
        labor=coerce_amount(payload.get("labor")),
        tax=coerce_tax(payload.get("tax")),
        confidence=coerce_confidence(payload.get("confidence")),
        raw_response_text=raw_text,
    )


def parse_extraction(raw_text: str, filename: str) -> ExtractionResult:
    """Decode and normalize a raw model reply.

    Raises:
        ResponseParseError: If the reply is not a JSON object
    """
    payload = decode_response(raw_text)
    return normalize_response(payload, filename, raw_text)
