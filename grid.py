"""
Read-only view over one sheet's raw cells.

Rows may have different lengths; anything outside a row, and any NaN the
workbook reader produced, reads back as ``None``.
"""

from __future__ import annotations

from typing import Any, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from normalizers import clean, is_blank


class GridScanner:
    """Bounded lookups over a 2-D grid of raw cell values (0-indexed)."""

    def __init__(self, rows: Sequence[Sequence[Any]]):
        self._rows: List[List[Any]] = [
            [None if is_blank(v) else v for v in row] for row in rows
        ]

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "GridScanner":
        """Build from a frame read with ``header=None`` (raw rows kept)."""
        return cls(df.astype(object).values.tolist())

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def n_rows(self) -> int:
        return len(self._rows)

    def row(self, r: int) -> List[Any]:
        if r < 0 or r >= len(self._rows):
            return []
        return self._rows[r]

    def cell(self, r: int, c: Optional[int]) -> Any:
        if c is None or c < 0:
            return None
        row = self.row(r)
        if c >= len(row):
            return None
        return row[c]

    def text(self, r: int, c: Optional[int]) -> str:
        return clean(self.cell(r, c))

    def row_text(self, r: int) -> str:
        """All cells of a row joined by spaces, blanks as empty strings."""
        return " ".join(clean(v) for v in self.row(r))

    def iter_cells(self, max_rows: Optional[int] = None) -> Iterator[Tuple[int, int, Any]]:
        """Yield ``(row, col, value)`` for non-empty cells, row-major."""
        limit = len(self._rows) if max_rows is None else min(max_rows, len(self._rows))
        for r in range(limit):
            for c, v in enumerate(self._rows[r]):
                if v is not None:
                    yield r, c, v
