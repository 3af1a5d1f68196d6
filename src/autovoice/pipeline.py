"""Batch processing: run each image through the extractor and total the results."""

import asyncio
import logging
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from autovoice.models import (
    ZERO,
    BatchResult,
    BatchSummary,
    Confidence,
    ExtractionFailure,
    ExtractionRequest,
    ExtractionResult,
    FailureKind,
    MonthlySummary,
    NumericTax,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

ProgressCallback = Callable[[str, str], None]


class Extractor(Protocol):
    async def extract(
        self, image: bytes, filename: str
    ) -> ExtractionResult | ExtractionFailure: ...


def round_currency(value: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def default_batch_name(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"Batch {now:%Y-%m-%d}"


def summarize_batch(
    results: Sequence[ExtractionResult | ExtractionFailure],
) -> BatchSummary:
    """Total a batch's outcomes.

    Amounts are summed over non-flagged extractions only, and tax only when
    it is numeric. Failures and flagged extractions both count as flagged.

    Args:
        results: Outcomes for every image in the batch

    Returns:
        BatchSummary with currency totals rounded to 2 decimal places
    """
    total_parts = ZERO
    total_labor = ZERO
    total_tax = ZERO
    flagged_count = 0

    for outcome in results:
        if outcome.flagged:
            flagged_count += 1
            continue
        total_parts += outcome.parts
        total_labor += outcome.labor
        if isinstance(outcome.tax, NumericTax):
            total_tax += outcome.tax.amount

    return BatchSummary(
        total_parts=round_currency(total_parts),
        total_labor=round_currency(total_labor),
        total_tax=round_currency(total_tax),
        total_invoices=len(results),
        flagged_count=flagged_count,
        processed_count=len(results) - flagged_count,
    )


def summarize_by_month(
    results: Iterable[ExtractionResult | ExtractionFailure],
    year: int | None = None,
) -> list[MonthlySummary]:
    """Group outcomes by the month they were extracted in and total each month.

    Totals follow the same rule as summarize_batch. Confidence counts cover
    successful extractions only.

    Args:
        results: Outcomes from any number of batches
        year: Only include outcomes extracted in this year

    Returns:
        One MonthlySummary per month, most recent month first
    """
    months: dict[str, list[ExtractionResult | ExtractionFailure]] = {}
    for outcome in results:
        if year is not None and outcome.extracted_at.year != year:
            continue
        months.setdefault(f"{outcome.extracted_at:%Y-%m}", []).append(outcome)

    summaries = []
    for month_key in sorted(months, reverse=True):
        outcomes = months[month_key]
        totals = summarize_batch(outcomes)
        confidences = Counter(
            o.confidence for o in outcomes if isinstance(o, ExtractionResult)
        )
        summaries.append(
            MonthlySummary(
                month_key=month_key,
                month=f"{outcomes[0].extracted_at:%B %Y}",
                invoice_count=totals.total_invoices,
                total_parts=totals.total_parts,
                total_labor=totals.total_labor,
                total_tax=totals.total_tax,
                flagged_count=totals.flagged_count,
                high_confidence=confidences[Confidence.HIGH],
                medium_confidence=confidences[Confidence.MEDIUM],
                low_confidence=confidences[Confidence.LOW],
            )
        )
    return summaries


async def process_image(
    request: ExtractionRequest,
    extractor: Extractor,
    on_progress: ProgressCallback | None = None,
) -> ExtractionResult | ExtractionFailure:
    """Run a single image through the extractor.

    Never raises: anything the extractor lets escape becomes a failure row.

    Args:
        request: Image bytes and display filename
        extractor: Extractor exposing an async extract(image, filename)
        on_progress: Optional callback for progress updates (event_type, message)

    Returns:
        The extraction outcome for this image
    """
    filename = request.filename

    try:
        outcome = await extractor.extract(request.image, filename)
    except Exception as e:
        logger.exception("Unexpected error extracting %s", filename)
        outcome = ExtractionFailure(
            filename=filename, error=str(e), kind=FailureKind.UPSTREAM
        )

    if isinstance(outcome, ExtractionFailure):
        event_type = "extract_error"
        message = f"Failed to extract {filename}: {outcome.error}"
    else:
        event_type = "extract_flagged" if outcome.flagged else "extract_success"
        message = (
            f"Extracted {filename}: parts {outcome.parts:.2f}, "
            f"labor {outcome.labor:.2f}, tax {_format_tax(outcome)}, "
            f"confidence {outcome.confidence}"
        )
        if outcome.flagged:
            message += " (flagged for review)"

    if on_progress:
        on_progress(event_type, message)

    return outcome


def _format_tax(result: ExtractionResult) -> str:
    if isinstance(result.tax, NumericTax):
        return f"{result.tax.amount:.2f}"
    return repr(result.tax.text)


async def process_batch(
    requests: Iterable[ExtractionRequest],
    extractor: Extractor,
    *,
    max_concurrency: int = 1,
    on_progress: ProgressCallback | None = None,
    batch_name: str | None = None,
) -> BatchResult:
    """Extract every image of a batch and summarize the outcomes.

    With the default max_concurrency of 1 images are processed one at a time
    in submission order. Higher values run up to that many extractions at
    once. Each task only returns its own outcome and the totals are computed
    once at the end, so results are identical either way and always listed
    in submission order.

    Args:
        requests: Images to extract, in submission order
        extractor: Extractor exposing an async extract(image, filename)
        max_concurrency: Maximum number of extractions in flight
        on_progress: Optional callback for progress updates (event_type, message)
        batch_name: Display name for the batch (default: "Batch YYYY-MM-DD")

    Returns:
        BatchResult with per-image outcomes and the batch summary
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be at least 1")

    requests = list(requests)
    batch_name = batch_name or default_batch_name()
    logger.info("Processing %d invoices in %s", len(requests), batch_name)

    results: list[ExtractionResult | ExtractionFailure]
    if max_concurrency == 1:
        results = []
        for request in requests:
            results.append(await process_image(request, extractor, on_progress))
    else:
        semaphore = asyncio.Semaphore(max_concurrency)

        async def bounded(request: ExtractionRequest):
            async with semaphore:
                return await process_image(request, extractor, on_progress)

        results = list(await asyncio.gather(*(bounded(r) for r in requests)))

    summary = summarize_batch(results)
    logger.info("Processing complete for %s: %s", batch_name, summary)

    if on_progress:
        on_progress(
            "batch_complete",
            f"Processed {summary.total_invoices} invoices: "
            f"{summary.processed_count} totalled, {summary.flagged_count} flagged",
        )

    return BatchResult(batch_name=batch_name, results=results, summary=summary)
