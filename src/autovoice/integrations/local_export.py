"""Local CSV export of extraction results."""

import csv
import fcntl
import os
from collections.abc import Sequence
from pathlib import Path

from autovoice.integrations.records import result_to_csv_row
from autovoice.models import ExtractionFailure, ExtractionResult

CSV_HEADER = [
    "Filename",
    "Parts",
    "Labor",
    "Tax",
    "Flagged",
    "Confidence",
    "Edited",
    "Error",
]


class LocalExporter:
    """Exporter for writing extraction results to local CSV files.

    Rows use the same column layout as ``result_to_csv_row`` so exports from
    different batches can be appended to a single file.
    """

    def export(
        self,
        results: Sequence[ExtractionResult | ExtractionFailure],
        path: Path,
    ) -> None:
        """Export results to a local CSV file.

        If the file doesn't exist, it will be created with headers.
        If the file exists, data will be appended to it.

        Args:
            results: Extraction outcomes to export
            path: Path to the CSV file to write/append to

        Raises:
            PermissionError: If the file cannot be written due to permissions
            OSError: If there are filesystem-related errors
        """
        if not results:
            return

        path.parent.mkdir(parents=True, exist_ok=True)

        # BOM is written by hand on creation so appends never repeat it
        with open(path, mode="a", encoding="utf-8", newline="") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                # Size is checked after locking so concurrent writers agree
                is_new_file = os.fstat(f.fileno()).st_size == 0

                if is_new_file:
                    f.write("\ufeff")  # UTF-8 BOM for Excel

                writer = csv.writer(f)

                if is_new_file:
                    writer.writerow(CSV_HEADER)

                for outcome in results:
                    writer.writerow(result_to_csv_row(outcome))
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
