"""Row shapes for persisting and exporting extraction outcomes.

The batch and invoice tables are owned by the hosting application; these
helpers only produce the values it stores. Rows are scoped by ``user_id``
so the store's row-level policies can restrict access per user.
"""

from typing import Any

from autovoice.models import (
    BatchSummary,
    ExtractionFailure,
    ExtractionResult,
    NumericTax,
)


def _tax_columns(outcome: ExtractionResult | ExtractionFailure) -> tuple[float, str | None]:
    """Split a tax into (numeric amount, free text)."""
    if isinstance(outcome.tax, NumericTax):
        return float(outcome.tax.amount), None
    return 0.0, outcome.tax.text


def result_to_invoice_row(
    outcome: ExtractionResult | ExtractionFailure,
    batch_id: str | None,
    user_id: str | None,
) -> dict[str, Any]:
    """Convert one outcome to an invoice row.

    Textual tax values are kept in ``tax_text`` while ``extracted_tax`` stays
    numeric. Failure rows carry zero amounts, the error and the quota flag.

    Args:
        outcome: ExtractionResult or ExtractionFailure for one image
        batch_id: Identifier of the batch row this invoice belongs to
        user_id: Identifier of the uploading user

    Returns:
        Dictionary of column name to value
    """
    tax_amount, tax_text = _tax_columns(outcome)
    row: dict[str, Any] = {
        "batch_id": batch_id,
        "user_id": user_id,
        "original_filename": outcome.filename,
        "extracted_parts": float(outcome.parts),
        "extracted_labor": float(outcome.labor),
        "extracted_tax": tax_amount,
        "tax_text": tax_text,
        "is_flagged": outcome.flagged,
    }

    if isinstance(outcome, ExtractionFailure):
        row.update(
            confidence_level=None,
            is_edited=False,
            error=outcome.error,
            quota_exceeded=outcome.quota_exceeded,
        )
    else:
        row.update(
            confidence_level=outcome.confidence.value,
            is_edited=outcome.edited,
            error=None,
            quota_exceeded=False,
        )
    return row


def summary_to_batch_row(
    summary: BatchSummary,
    batch_id: str | None,
    user_id: str | None,
    batch_name: str,
) -> dict[str, Any]:
    """Convert a batch summary to the completed batch row."""
    return {
        "id": batch_id,
        "user_id": user_id,
        "batch_name": batch_name,
        "status": "completed",
        "total_invoices": summary.total_invoices,
        "processed_invoices": summary.processed_count,
        "flagged_count": summary.flagged_count,
        "total_parts": float(summary.total_parts),
        "total_labor": float(summary.total_labor),
        "total_tax": float(summary.total_tax),
    }


def result_to_csv_row(outcome: ExtractionResult | ExtractionFailure) -> list[Any]:
    """Convert one outcome to a CSV export row.

    The row contains 8 columns in this order:
    1. Filename
    2. Parts (2 decimal places)
    3. Labor (2 decimal places)
    4. Tax - the amount, or the text as written on the invoice
    5. Flagged - "yes" or "no"
    6. Confidence - empty for failures
    7. Edited - "yes" or "no"
    8. Error - empty for successful extractions

    Args:
        outcome: ExtractionResult or ExtractionFailure to convert

    Returns:
        A list with 8 values
    """
    if isinstance(outcome.tax, NumericTax):
        tax = f"{outcome.tax.amount:.2f}"
    else:
        tax = outcome.tax.text

    if isinstance(outcome, ExtractionFailure):
        confidence, edited, error = "", False, outcome.error
    else:
        confidence, edited, error = outcome.confidence.value, outcome.edited, ""

    return [
        outcome.filename,
        f"{outcome.parts:.2f}",
        f"{outcome.labor:.2f}",
        tax,
        "yes" if outcome.flagged else "no",
        confidence,
        "yes" if edited else "no",
        error,
    ]
