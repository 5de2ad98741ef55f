"""CSV export restricted to the caller's visible columns."""
from __future__ import annotations

import csv
import io
from typing import Iterable, Mapping, Sequence


def rows_to_csv(rows: Iterable[Mapping], columns: Sequence[str]) -> str:
    """Render ``rows`` as CSV with a header of ``columns``; keys outside ``columns`` are dropped."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(columns), extrasaction='ignore', lineterminator='\n')
    writer.writeheader()
    for row in rows:
        writer.writerow({c: _cell(row.get(c)) for c in columns})
    return buf.getvalue()


def _cell(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return value
