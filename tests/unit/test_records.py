"""Unit tests for persistence and export row mapping."""

from decimal import Decimal

import pytest

from autovoice.integrations.records import (
    result_to_csv_row,
    result_to_invoice_row,
    summary_to_batch_row,
)
from autovoice.models import (
    BatchSummary,
    Confidence,
    ExtractionFailure,
    ExtractionResult,
    FailureKind,
    NumericTax,
    TextualTax,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def clean_result():
    return ExtractionResult(
        filename="a.jpg",
        parts=Decimal("134.02"),
        labor=Decimal("45"),
        tax=NumericTax(),
        confidence=Confidence.HIGH,
    )


@pytest.fixture
def textual_tax_result():
    return ExtractionResult(
        filename="b.jpg",
        parts=Decimal("50"),
        labor=Decimal("20"),
        tax=TextualTax(text="Included"),
        confidence=Confidence.MEDIUM,
        edited=True,
    )


@pytest.fixture
def quota_failure():
    return ExtractionFailure(
        filename="c.jpg", error="Quota exceeded", kind=FailureKind.QUOTA
    )


class TestInvoiceRow:
    def test_clean_result(self, clean_result):
        row = result_to_invoice_row(clean_result, "batch-1", "user-1")

        assert row == {
            "batch_id": "batch-1",
            "user_id": "user-1",
            "original_filename": "a.jpg",
            "extracted_parts": 134.02,
            "extracted_labor": 45.0,
            "extracted_tax": 0.0,
            "tax_text": None,
            "is_flagged": False,
            "confidence_level": "high",
            "is_edited": False,
            "error": None,
            "quota_exceeded": False,
        }

    def test_textual_tax_kept_in_text_column(self, textual_tax_result):
        row = result_to_invoice_row(textual_tax_result, "batch-1", "user-1")

        assert row["extracted_tax"] == 0.0
        assert row["tax_text"] == "Included"
        assert row["is_flagged"] is True
        assert row["is_edited"] is True

    def test_failure_row(self, quota_failure):
        row = result_to_invoice_row(quota_failure, "batch-1", None)

        assert row["user_id"] is None
        assert row["extracted_parts"] == 0.0
        assert row["is_flagged"] is True
        assert row["confidence_level"] is None
        assert row["error"] == "Quota exceeded"
        assert row["quota_exceeded"] is True


def test_summary_to_batch_row():
    summary = BatchSummary(
        total_parts=Decimal("100.00"),
        total_labor=Decimal("12.50"),
        total_tax=Decimal("0.00"),
        total_invoices=3,
        flagged_count=2,
        processed_count=1,
    )

    row = summary_to_batch_row(summary, "batch-1", "user-1", "Batch 2025-03-09")

    assert row == {
        "id": "batch-1",
        "user_id": "user-1",
        "batch_name": "Batch 2025-03-09",
        "status": "completed",
        "total_invoices": 3,
        "processed_invoices": 1,
        "flagged_count": 2,
        "total_parts": 100.0,
        "total_labor": 12.5,
        "total_tax": 0.0,
    }


class TestCsvRow:
    def test_clean_result(self, clean_result):
        assert result_to_csv_row(clean_result) == [
            "a.jpg",
            "134.02",
            "45.00",
            "0.00",
            "no",
            "high",
            "no",
            "",
        ]

    def test_textual_tax(self, textual_tax_result):
        row = result_to_csv_row(textual_tax_result)
        assert row[3] == "Included"
        assert row[4] == "yes"
        assert row[6] == "yes"

    def test_failure(self, quota_failure):
        assert result_to_csv_row(quota_failure) == [
            "c.jpg",
            "0.00",
            "0.00",
            "0.00",
            "yes",
            "",
            "no",
            "Quota exceeded",
        ]
