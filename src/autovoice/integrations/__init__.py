"""AutoVoice integrations module."""

from autovoice.integrations.anthropic_extractor import (
    AnthropicExtractor,
    ExtractionError,
    ExtractionIncompleteError,
    ExtractionRefusedError,
    is_quota_error,
)
from autovoice.integrations.local_export import LocalExporter

__all__ = [
    "AnthropicExtractor",
    "ExtractionError",
    "ExtractionRefusedError",
    "ExtractionIncompleteError",
    "LocalExporter",
    "is_quota_error",
]
