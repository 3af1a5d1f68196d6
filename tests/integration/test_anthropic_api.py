"""
Integration tests for invoice extraction against the real Anthropic API.

These tests make real API calls and require:
1. ANTHROPIC_API_KEY set in the environment or a .env file
2. Invoice images in tests/dataset/

Run these tests with: pytest tests/integration -m integration

Note: These tests are marked as 'integration' and can be skipped in CI/CD pipelines.
"""

import os
from decimal import Decimal
from pathlib import Path

import pytest
from dotenv import load_dotenv

from autovoice.integrations.anthropic_extractor import AnthropicExtractor
from autovoice.models import ExtractionRequest, ExtractionResult, NumericTax
from autovoice.pipeline import process_batch, round_currency
from tests.integration.utils import skip_if_missing_env_vars

load_dotenv()

pytestmark = pytest.mark.integration


@pytest.fixture
def dataset_dir():
    """Return path to test dataset directory."""
    return Path(__file__).parent.parent / "dataset"


@pytest.fixture
def extractor():
    return AnthropicExtractor(api_key=os.getenv("ANTHROPIC_API_KEY", ""))


def load_image(dataset_dir: Path, name: str) -> bytes:
    path = dataset_dir / name
    if not path.exists():
        pytest.skip(f"Test image not found: {path}")
    return path.read_bytes()


@pytest.mark.asyncio
@skip_if_missing_env_vars(["ANTHROPIC_API_KEY"])
async def test_extract_parts_only_invoice(extractor, dataset_dir):
    """A parts-only invoice with no tax extracts cleanly and is not flagged."""
    image = load_image(dataset_dir, "invoice_parts_only.jpg")

    result = await extractor.extract(image, "invoice_parts_only.jpg")

    assert isinstance(result, ExtractionResult), result
    assert result.parts > 0
    assert result.flagged is (result.tax != NumericTax(amount=Decimal("0")))
    assert result.raw_response_text


@pytest.mark.asyncio
@skip_if_missing_env_vars(["ANTHROPIC_API_KEY"])
async def test_batch_summary_matches_results(extractor, dataset_dir):
    """Totals over a real batch equal the sum of its unflagged rows."""
    names = sorted(p.name for p in dataset_dir.glob("invoice_*.jpg"))
    if not names:
        pytest.skip(f"No invoice images in {dataset_dir}")

    requests = [
        ExtractionRequest(image=(dataset_dir / name).read_bytes(), filename=name)
        for name in names
    ]

    batch = await process_batch(requests, extractor)

    clean = [r for r in batch.results if not r.flagged]
    assert batch.summary.total_invoices == len(names)
    assert batch.summary.processed_count == len(clean)
    assert batch.summary.total_parts == round_currency(
        sum((r.parts for r in clean), Decimal("0"))
    )
