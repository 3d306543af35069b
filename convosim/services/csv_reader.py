"""CSV text to ordered rows.

Rows come back as dicts in header order with whitespace-trimmed keys and
values. Blank lines are skipped. Any structural problem (unbalanced
quotes, ragged rows, duplicate headers) raises MalformedInputError so the
caller can reject the upload before a job exists.
"""

import csv
import io

from convosim.services.errors import MalformedInputError

Row = dict[str, str]


def parse_csv_rows(csv_text: str) -> list[Row]:
    """Parse CSV text with a header line into ordered rows.

    Args:
        csv_text: Raw CSV content. A leading UTF-8 BOM is ignored.

    Returns:
        List of rows, each an ordered mapping of column name to value.
        Empty when the text holds no data rows.

    Raises:
        MalformedInputError: If the text cannot be parsed as CSV.
    """
    reader = csv.reader(io.StringIO(csv_text.lstrip("\ufeff")), strict=True)
    header: list[str] | None = None
    rows: list[Row] = []

    try:
        for record in reader:
            if not record:
                continue
            if header is None:
                header = [name.strip() for name in record]
                duplicates = sorted({n for n in header if header.count(n) > 1})
                if duplicates:
                    raise MalformedInputError(
                        f"duplicate column name(s): {', '.join(duplicates)}"
                    )
                continue
            if len(record) != len(header):
                raise MalformedInputError(
                    f"line {reader.line_num} has {len(record)} fields, "
                    f"expected {len(header)}"
                )
            rows.append(
                {name: value.strip() for name, value in zip(header, record)}
            )
    except csv.Error as e:
        raise MalformedInputError(f"line {reader.line_num}: {e}") from e

    return rows
