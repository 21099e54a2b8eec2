"""
extractors.py — header metadata and task table discovery
=========================================================
Project sheets are hand-made: a loose block of "Label: value" cells on top,
then a task table whose header row can sit anywhere in the first rows and
whose column titles vary from template to template.

Nothing here relies on fixed column positions.  The task table is read in
two phases: the header row is located and every column role resolved once,
then each data row is extracted through those named roles.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, FrozenSet, List, Optional, Tuple

from grid import GridScanner
from models import Task
from normalizers import (
    clean,
    is_blank,
    parse_currency,
    parse_date,
    parse_duration,
    parse_progress,
)

logger = logging.getLogger(__name__)

METADATA_MAX_ROWS = 15
HEADER_MAX_ROWS = 20

# Fixed cell holding the description in the common templates (C3)
DESCRIPTION_CELL = (2, 2)

# ══════════════════════════════════════════════════════════════════════════════
# Header metadata
# ══════════════════════════════════════════════════════════════════════════════

# (field, substrings that trigger the rule, label keywords tried for the value)
# Scanned top to bottom; the first rule that resolves a field owns it.
_LABEL_RULES: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...]], ...] = (
    ("name",        ("projeto",),             ("nome do projeto", "projeto")),
    ("description", ("descrição", "descricao"), ("descrição", "descricao")),
    ("factory",     ("fábrica", "fabrica"),   ("fábrica", "fabrica")),
    ("squad",       ("squad",),               ("squad",)),
    ("architect",   ("arquiteto",),           ("arquiteto",)),
    ("analyst",     ("analista",),            ("analista",)),
    ("developer",   ("desenvol",),            ("desenvol",)),
)

# Abbreviations only count when the cell is the abbreviation itself
_ABBREVIATION_RULES: Tuple[Tuple[str, str], ...] = (
    ("architect", "arq"),
    ("analyst",   "af"),
)

_SAVING_LABELS = ("benefício", "saving")
_SAVING_VALUE_RE = re.compile(r"[:\s]\s*(?:R\$)?\s*([\d.,]+)")
_HAS_DIGIT_RE = re.compile(r"\d")


@dataclass
class SheetMetadata:
    name: Optional[str] = None
    description: Optional[str] = None
    saving: Optional[float] = None
    factory: Optional[str] = None
    squad: Optional[str] = None
    architect: Optional[str] = None
    analyst: Optional[str] = None
    developer: Optional[str] = None


def _label_value(grid: GridScanner, r: int, c: int, keyword: str) -> str:
    """
    Value attached to a label cell: the ``Label: value`` (or ``Label value``)
    text of the cell itself, else the cell to its right when the cell *is*
    the label.
    """
    cell = grid.text(r, c)
    kw = re.escape(keyword)
    for pattern in (rf"^{kw}[^:]*:\s*(.+)$", rf"^{kw}\s+(.+)$"):
        m = re.match(pattern, cell, re.IGNORECASE)
        if m and m.group(1).strip():
            return m.group(1).strip()

    bare = cell.lower().replace(":", "").strip()
    if bare == keyword or bare.startswith(keyword):
        return grid.text(r, c + 1)
    return ""


def _saving_value(grid: GridScanner, r: int, c: int) -> Optional[float]:
    m = _SAVING_VALUE_RE.search(grid.text(r, c))
    if m:
        return parse_currency(m.group(1))
    nxt = grid.cell(r, c + 1)
    if isinstance(nxt, (int, float)) and not isinstance(nxt, bool):
        return parse_currency(nxt)
    if isinstance(nxt, str) and _HAS_DIGIT_RE.search(nxt):
        return parse_currency(nxt)
    return None


def _is_developer_label(lower: str) -> bool:
    return "dev" in lower and "delivery" not in lower


def extract_metadata(
    grid: GridScanner,
    max_rows: int = METADATA_MAX_ROWS,
    table_start: Optional[int] = None,
    table_columns: FrozenSet[int] = frozenset(),
) -> SheetMetadata:
    """
    Best-effort header metadata from the first ``max_rows`` rows.

    Cells are visited row-major, left to right; a field keeps the first value
    it resolves.  The description cell at C3, when filled and inside the
    scanned region, replaces whatever the label scan found for it.

    Cells of the task table (``table_columns`` from row ``table_start`` down)
    are never read as labels, so task names cannot fill team fields.
    """
    meta = SheetMetadata()

    def in_table(r: int, c: int) -> bool:
        return table_start is not None and r >= table_start and c in table_columns

    for r, c, raw in grid.iter_cells(max_rows):
        if in_table(r, c):
            continue
        lower = clean(raw).lower()

        if meta.saving is None and any(kw in lower for kw in _SAVING_LABELS):
            meta.saving = _saving_value(grid, r, c)

        for fld, triggers, keywords in _LABEL_RULES:
            if getattr(meta, fld) or not any(t in lower for t in triggers):
                continue
            for kw in keywords:
                value = _label_value(grid, r, c, kw)
                if value:
                    setattr(meta, fld, value)
                    break

        for fld, abbr in _ABBREVIATION_RULES:
            if getattr(meta, fld):
                continue
            if lower == abbr or lower.startswith(abbr + ":"):
                setattr(meta, fld, _label_value(grid, r, c, abbr) or None)

        if not meta.developer and _is_developer_label(lower) and "desenvol" not in lower:
            meta.developer = _label_value(grid, r, c, "dev") or None

    dr, dc = DESCRIPTION_CELL
    if dr < max_rows and not in_table(dr, dc):
        description = grid.text(dr, dc)
        if description:
            meta.description = description

    return meta


# ══════════════════════════════════════════════════════════════════════════════
# Task table
# ══════════════════════════════════════════════════════════════════════════════

_HEADER_MARKERS = ("TAREFA", "ETAPA")

# Ordered stage keyword table: the first keyword found in a task name decides
# its single stage.
STAGE_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("DISCOVERY", "Discovery"),
    ("MAPEAMENTO", "Discovery"),
    ("DEV", "Desenvolvimento"),
    ("DESENVOLVIMENTO", "Desenvolvimento"),
    ("HOMOLOGAÇÃO", "Homologação"),
    ("QA", "Homologação"),
    ("ROLLOUT", "Implantação"),
    ("IMPLANTAÇÃO", "Implantação"),
    ("DELIVERY", "Delivery"),
)


@dataclass(frozen=True)
class ColumnRoles:
    task: int
    start: Optional[int] = None
    planned_end: Optional[int] = None
    actual_end: Optional[int] = None
    duration: Optional[int] = None
    progress: Optional[int] = None

    def indices(self) -> FrozenSet[int]:
        """Every column the table occupies."""
        return frozenset(
            c for c in (self.task, self.start, self.planned_end,
                        self.actual_end, self.duration, self.progress)
            if c is not None
        )


@dataclass
class TaskTable:
    header_row: int
    columns: ColumnRoles
    tasks: List[Task] = field(default_factory=list)
    stage_durations: Dict[str, int] = field(default_factory=dict)


def find_header_row(grid: GridScanner, max_scan: int = HEADER_MAX_ROWS) -> Optional[int]:
    """First row (0-indexed) within ``max_scan`` mentioning TAREFA or ETAPA."""
    for r in range(min(max_scan, grid.n_rows)):
        text = grid.row_text(r).upper()
        if any(marker in text for marker in _HEADER_MARKERS):
            return r
    return None


def _first_index(headers: List[str], *needles: str) -> Optional[int]:
    for i, h in enumerate(headers):
        if h and any(n in h for n in needles):
            return i
    return None


def resolve_columns(grid: GridScanner, header_row: int) -> Optional[ColumnRoles]:
    """
    Map column roles from the header row.  Only the task-name column is
    mandatory.  Planned end is the first column titled exactly FIM, actual
    end the last one when it is a different column.
    """
    headers = [clean(v).upper() for v in grid.row(header_row)]

    task_col = _first_index(headers, *_HEADER_MARKERS)
    if task_col is None:
        return None

    fim_cols = [i for i, h in enumerate(headers) if h == "FIM"]
    planned_end = fim_cols[0] if fim_cols else None
    actual_end = fim_cols[-1] if len(fim_cols) > 1 else None

    return ColumnRoles(
        task=task_col,
        start=_first_index(headers, "INICIO", "INÍCIO"),
        planned_end=planned_end,
        actual_end=actual_end,
        duration=_first_index(headers, "DIAS", "DURAÇÃO"),
        progress=_first_index(headers, "PROGRE", "%"),
    )


def stage_for(task_name: str) -> Optional[str]:
    upper = task_name.upper()
    for keyword, stage in STAGE_KEYWORDS:
        if keyword in upper:
            return stage
    return None


def extract_task_table(grid: GridScanner) -> Optional[TaskTable]:
    """
    Locate the task table and read every row below its header.

    Returns None when no header row exists, which marks the sheet as not a
    project sheet.  Rows whose first two cells are empty are skipped; a row
    becomes a Task only when its planned end date parses.
    """
    header_row = find_header_row(grid)
    if header_row is None:
        return None
    cols = resolve_columns(grid, header_row)
    if cols is None:
        return None

    table = TaskTable(header_row=header_row, columns=cols)

    for r in range(header_row + 1, grid.n_rows):
        if is_blank(grid.cell(r, 0)) and is_blank(grid.cell(r, 1)):
            continue
        name = grid.text(r, cols.task)
        if not name:
            continue

        planned_end = parse_date(grid.cell(r, cols.planned_end))
        actual_end = parse_date(grid.cell(r, cols.actual_end))
        start = parse_date(grid.cell(r, cols.start))
        duration = parse_duration(grid.cell(r, cols.duration))
        progress = parse_progress(grid.cell(r, cols.progress))

        if start is None and planned_end is not None and duration > 0:
            start = planned_end - timedelta(days=duration)

        if planned_end is not None:
            table.tasks.append(Task(
                name=name,
                start_date=start,
                planned_end=planned_end,
                actual_end=actual_end,
                duration_days=duration,
                progress=progress,
            ))

        stage = stage_for(name)
        if stage is not None:
            days = duration
            if days == 0 and planned_end is not None and start is not None:
                days = 1
            table.stage_durations[stage] = table.stage_durations.get(stage, 0) + days

    logger.debug("Task table at row %d: %d tasks", header_row + 1, len(table.tasks))
    return table
