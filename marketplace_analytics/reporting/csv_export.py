"""
CSV export of report rows.

Rendering goes through a polars DataFrame and ``write_csv``: fields containing
a comma, double quote, CR or LF are quoted with inner quotes doubled, missing
values render as empty fields, rows end with LF (including the last one).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional

import polars as pl


@dataclass(frozen=True)
class CsvColumn:
    key: str
    label: str


def _format(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _write(frame: pl.DataFrame, include_header: bool = True) -> str:
    return frame.write_csv(
        include_header=include_header,
        separator=",",
        line_terminator="\n",
        quote_char='"',
        quote_style="necessary",
        null_value="",
    )


def escape_csv_field(value: str) -> str:
    """Single field as it appears inside a CSV row."""
    frame = pl.DataFrame({"field": [value]}, schema={"field": pl.String})
    return _write(frame, include_header=False)[: -len("\n")]


def export_to_csv(rows: Iterable[Mapping[str, Any]], headers: List[CsvColumn]) -> str:
    """
    Render rows as CSV in ``headers`` order, with the labels as header row.

    Values are stringified first (bools as true/false, enums by value) so a
    column mixing types still renders; zero rows give the header line only.
    """
    rows = list(rows)
    frame = pl.DataFrame(
        {column.label: [_format(row.get(column.key)) for row in rows] for column in headers},
        schema={column.label: pl.String for column in headers},
    )
    return _write(frame)
