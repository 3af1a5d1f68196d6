"""Manual corrections of extracted invoice values."""

from decimal import Decimal

from pydantic import BaseModel

from autovoice.models import (
    ExtractionResult,
    NumericTax,
    OriginalValues,
    Tax,
    TextualTax,
)
from autovoice.utils.response_parser import coerce_amount, parse_decimal


class InvoiceEdit(BaseModel):
    """Values typed in by a reviewer. Fields left as None are not changed."""

    parts: Decimal | float | str | None = None
    labor: Decimal | float | str | None = None
    tax: Decimal | float | str | None = None


def _edited_tax(value: Decimal | float | str) -> Tax:
    number = parse_decimal(value)
    if number is not None and number >= 0:
        return NumericTax(amount=number)
    return TextualTax(text=str(value))


def apply_edit(result: ExtractionResult, edit: InvoiceEdit) -> ExtractionResult:
    """Return a copy of result with the reviewer's values applied.

    The flag follows the edited tax, so entering a tax of 0 clears it. The
    values extracted before the first edit are kept in ``original_values``
    and later edits leave them alone.
    """
    update: dict = {"edited": True}
    if result.original_values is None:
        update["original_values"] = OriginalValues(
            parts=result.parts, labor=result.labor, tax=result.tax
        )
    if edit.parts is not None:
        update["parts"] = coerce_amount(edit.parts)
    if edit.labor is not None:
        update["labor"] = coerce_amount(edit.labor)
    if edit.tax is not None:
        update["tax"] = _edited_tax(edit.tax)
    return result.model_copy(update=update)


def revert_edit(result: ExtractionResult) -> ExtractionResult:
    """Restore the values extracted before any edit was applied."""
    original = result.original_values
    if original is None:
        return result
    return result.model_copy(
        update={
            "parts": original.parts,
            "labor": original.labor,
            "tax": original.tax,
            "edited": False,
            "original_values": None,
        }
    )
