"""Data models for invoice extraction and batch aggregation."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
)
from pydantic.alias_generators import to_camel

ZERO = Decimal("0.00")

# Currency amounts stay Decimal in Python and become plain numbers in JSON
Money = Annotated[
    Decimal,
    Field(ge=0),
    PlainSerializer(float, return_type=float, when_used="json"),
]


class Confidence(StrEnum):
    """Self-reported reliability of an extraction."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FailureKind(StrEnum):
    """Why an image could not be extracted."""

    QUOTA = "quota"
    UPSTREAM = "upstream"
    PARSE = "parse"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )


class NumericTax(_CamelModel):
    """Tax reported as an amount."""

    kind: Literal["numeric"] = "numeric"
    amount: Money = ZERO

    @property
    def requires_review(self) -> bool:
        return self.amount != ZERO


class TextualTax(_CamelModel):
    """Tax reported as free text such as "N/A" or "Included"."""

    kind: Literal["text"] = "text"
    text: str

    @property
    def requires_review(self) -> bool:
        return True


Tax = Annotated[NumericTax | TextualTax, Field(discriminator="kind")]


class ExtractionRequest(BaseModel):
    """A single uploaded image waiting to be extracted."""

    model_config = ConfigDict(frozen=True)

    image: bytes = Field(repr=False)
    filename: str


class OriginalValues(_CamelModel):
    """Amounts as first extracted, kept once a result has been edited."""

    parts: Money = ZERO
    labor: Money = ZERO
    tax: Tax = Field(default_factory=NumericTax)


class ExtractionResult(_CamelModel):
    """Normalized monetary breakdown extracted from one invoice image.

    ``flagged`` is derived from ``tax`` alone. A ``flagged`` value supplied
    by the model (or by any other input) is ignored.
    """

    status: Literal["extracted"] = "extracted"
    filename: str
    parts: Money = ZERO
    labor: Money = ZERO
    tax: Tax = Field(default_factory=NumericTax)
    confidence: Confidence = Confidence.MEDIUM
    raw_response_text: str = ""
    edited: bool = False
    original_values: OriginalValues | None = None
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def flagged(self) -> bool:
        return self.tax.requires_review


class ExtractionFailure(_CamelModel):
    """An image that produced no usable extraction.

    Failure rows always count as flagged and carry zero amounts.
    """

    status: Literal["failed"] = "failed"
    filename: str
    error: str
    kind: FailureKind = FailureKind.UPSTREAM
    raw_response_text: str | None = None
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def quota_exceeded(self) -> bool:
        return self.kind == FailureKind.QUOTA

    @computed_field  # type: ignore[prop-decorator]
    @property
    def flagged(self) -> bool:
        return True

    @property
    def parts(self) -> Decimal:
        return ZERO

    @property
    def labor(self) -> Decimal:
        return ZERO

    @property
    def tax(self) -> NumericTax:
        return NumericTax()


ExtractionOutcome = Annotated[
    ExtractionResult | ExtractionFailure, Field(discriminator="status")
]


class BatchSummary(_CamelModel):
    """Totals for one upload batch.

    Currency totals cover non-flagged results only; counts cover every image.
    """

    total_parts: Money = ZERO
    total_labor: Money = ZERO
    total_tax: Money = ZERO
    total_invoices: int = Field(default=0, ge=0)
    flagged_count: int = Field(default=0, ge=0)
    processed_count: int = Field(default=0, ge=0)


class BatchResult(_CamelModel):
    """Per-image outcomes of a batch, in submission order, plus its summary."""

    batch_name: str
    results: list[ExtractionOutcome] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)


class MonthlySummary(_CamelModel):
    """Totals and confidence counts for the results of one calendar month."""

    month_key: str
    month: str
    invoice_count: int = Field(default=0, ge=0)
    total_parts: Money = ZERO
    total_labor: Money = ZERO
    total_tax: Money = ZERO
    flagged_count: int = Field(default=0, ge=0)
    high_confidence: int = Field(default=0, ge=0)
    medium_confidence: int = Field(default=0, ge=0)
    low_confidence: int = Field(default=0, ge=0)
