"""
workbook_parser.py — project portfolio workbook parser
=======================================================
Turns uploaded project-tracking workbooks (one tab per project) into
``Project`` records.

Design principles
-----------------
  1. A sheet that does not look like a project is skipped, never an error.
  2. A workbook that cannot be decoded fails that file only; sibling files
     in the same upload keep their projects.
  3. NEVER hard-code column positions; the task table is discovered by its
     header labels (see ``extractors``).
  4. Project ids are stable for the same file content, so re-uploading a
     workbook adds nothing new.

Usage
-----
    from workbook_parser import parse_file, parse_session

    projects = parse_file("/path/to/portfolio.xlsx")

    session = parse_session([{"name": "a.xlsx", "data": "<base64>"}])
    session["projects"]      # merged, de-duplicated by id
"""

from __future__ import annotations

import base64
import binascii
import concurrent.futures
import hashlib
import io
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from extractors import (
    METADATA_MAX_ROWS,
    SheetMetadata,
    TaskTable,
    extract_metadata,
    extract_task_table,
)
from grid import GridScanner
from models import DONE_THRESHOLD, Project, Team
from normalizers import classify_status

logger = logging.getLogger(__name__)

# Tabs whose name contains any of these are never project sheets
SKIPPED_SHEETS = (
    "feriados", "config", "instrucoes", "instruções", "menu",
    "legenda", "historico", "histórico", "capa",
)

_EXCEL_SUFFIXES = (".xlsx", ".xls", ".xlsm", ".xlsb")

Source = Union[str, bytes, bytearray, io.BytesIO, Path]


class WorkbookReadError(Exception):
    """The workbook container could not be decoded."""

    def __init__(self, filename: str, reason: str):
        super().__init__(f"Could not read workbook '{filename}': {reason}")
        self.filename = filename
        self.reason = reason


# ══════════════════════════════════════════════════════════════════════════════
# Excel loader: path, bytes, BytesIO, or base64 string
# ══════════════════════════════════════════════════════════════════════════════

def _read_source(source: Source, filename: str = "", is_base64: bool = False) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, io.BytesIO):
        return source.getvalue()
    if isinstance(source, Path):
        return source.read_bytes()
    if isinstance(source, str):
        if not is_base64 and source.lower().endswith(_EXCEL_SUFFIXES):
            try:
                return Path(source).read_bytes()
            except OSError as e:
                raise WorkbookReadError(filename or source, str(e)) from e
        payload = source.split(",", 1)[1] if source.startswith("data:") else source
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise WorkbookReadError(filename, f"base64 decode failed: {e}") from e
    raise WorkbookReadError(filename, f"unsupported source type {type(source).__name__}")


def content_token(raw: bytes) -> str:
    """Short digest of the file content, used in project ids."""
    return hashlib.sha1(raw).hexdigest()[:10]


def load_workbook(source: Source, filename: str = "", is_base64: bool = False) -> Dict[str, GridScanner]:
    """
    Load every sheet of a workbook into ``{name: GridScanner}``, in tab order.
    Sheets are read with ``header=None``; raw rows preserved.
    """
    raw = _read_source(source, filename, is_base64)
    try:
        xl = pd.ExcelFile(io.BytesIO(raw))
    except Exception as e:
        logger.error("Failed to load workbook '%s': %s", filename, e)
        raise WorkbookReadError(filename, str(e)) from e

    sheets: Dict[str, GridScanner] = {}
    for name in xl.sheet_names:
        try:
            df = xl.parse(name, header=None, dtype=object)
        except Exception as e:
            logger.warning("Skipped sheet '%s' of '%s': %s", name, filename, e)
            continue
        sheets[str(name)] = GridScanner.from_dataframe(df)
    return sheets


def is_skipped_sheet(sheet_name: str) -> bool:
    lower = sheet_name.lower()
    return any(skip in lower for skip in SKIPPED_SHEETS)


# ══════════════════════════════════════════════════════════════════════════════
# Project assembly
# ══════════════════════════════════════════════════════════════════════════════

def make_project_id(sheet_name: str, filename: str = "", token: str = "") -> str:
    """
    ``<file>-<sheet>-<token>`` with whitespace turned into underscores.
    Without a file name the sheet name alone is the id.
    """
    if not filename:
        return sheet_name
    parts = [re.sub(r"\s+", "_", filename.strip()), re.sub(r"\s+", "_", sheet_name.strip())]
    if token:
        parts.append(token)
    return "-".join(parts)


def _today() -> datetime:
    now = datetime.now()
    return datetime(now.year, now.month, now.day)


def assemble_project(
    meta: SheetMetadata,
    table: TaskTable,
    project_id: str,
    sheet_name: str,
    source_file: str = "",
    today: Optional[datetime] = None,
) -> Optional[Project]:
    """
    Combine header metadata and the task table into one Project.

    Returns None when the sheet has neither a planned date nor a saving
    amount: such tabs are legends, instructions or similar.
    """
    tasks = table.tasks
    today = today or _today()

    planned = [t.planned_end for t in tasks if t.planned_end is not None]
    starts = [t.start_date for t in tasks if t.start_date is not None]

    progress = (
        sum(t.progress for t in tasks if t.planned_end is not None) / len(planned)
        if planned else 0.0
    )
    is_done = progress >= DONE_THRESHOLD

    baseline = max(planned) if planned else None
    start = min(starts) if starts else None

    finished = [t.actual_end for t in tasks if t.actual_end is not None and t.is_done]
    actual = max(finished) if is_done and finished else None

    saving = meta.saving or 0.0
    if baseline is None and saving == 0:
        logger.info("Sheet '%s' has no schedule and no saving; skipped", sheet_name)
        return None

    is_past_deadline = baseline is not None and today > baseline and not is_done
    status = classify_status("", progress, is_past_deadline)

    return Project(
        id=project_id,
        name=meta.name or sheet_name,
        description=meta.description,
        team=Team(
            factory=meta.factory,
            squad=meta.squad,
            architect=meta.architect,
            analyst=meta.analyst,
            developer=meta.developer,
        ),
        saving=saving,
        tasks=list(tasks),
        stage_durations=dict(table.stage_durations),
        progress=progress,
        start_date=start,
        baseline_date=baseline,
        actual_date=actual,
        status=status,
        source_file=source_file,
        source_sheet=sheet_name,
    )


def parse_sheet(
    grid: GridScanner,
    sheet_name: str,
    filename: str = "",
    token: str = "",
    today: Optional[datetime] = None,
) -> Optional[Project]:
    """One sheet → one Project, or None when the sheet is not a project."""
    table = extract_task_table(grid)
    if table is None:
        logger.debug("Sheet '%s': no task table header", sheet_name)
        return None

    meta = extract_metadata(
        grid,
        max_rows=METADATA_MAX_ROWS,
        table_start=table.header_row,
        table_columns=table.columns.indices(),
    )
    return assemble_project(
        meta,
        table,
        project_id=make_project_id(sheet_name, filename, token),
        sheet_name=sheet_name,
        source_file=filename,
        today=today,
    )


# ══════════════════════════════════════════════════════════════════════════════
# Public API
# ══════════════════════════════════════════════════════════════════════════════

def parse_file(
    source: Source,
    filename: str = "",
    is_base64: bool = False,
    today: Optional[datetime] = None,
) -> List[Project]:
    """
    Parse one workbook and return its projects (possibly none).

    Parameters
    ----------
    source   : file path, raw bytes, BytesIO, or base64-encoded string
    filename : original file name (used in project ids and provenance)
    is_base64: True when ``source`` is a base64-encoded string
    today    : reference date for deadline checks (defaults to today)

    Raises
    ------
    WorkbookReadError when the container cannot be decoded.
    """
    if not filename and isinstance(source, (str, Path)) and not is_base64:
        filename = Path(str(source)).name
    raw = _read_source(source, filename, is_base64)
    sheets = load_workbook(raw, filename)
    token = content_token(raw)

    projects: List[Project] = []
    for sheet_name, grid in sheets.items():
        if is_skipped_sheet(sheet_name):
            logger.debug("Sheet '%s' is on the deny-list", sheet_name)
            continue
        try:
            project = parse_sheet(grid, sheet_name, filename, token, today)
        except Exception:
            logger.exception("Parser crashed on sheet '%s' of '%s'", sheet_name, filename)
            continue
        if project is not None:
            projects.append(project)

    if not projects:
        logger.warning("File '%s' holds no valid project sheets", filename)
    return projects


def merge_projects(
    existing: Sequence[Project],
    incoming: Sequence[Project],
) -> Tuple[List[Project], int, int]:
    """
    Append ``incoming`` to ``existing`` keeping the first project seen for
    each id.  Returns ``(merged, added, duplicates)``.
    """
    merged = list(existing)
    seen = {p.id for p in merged}
    added = duplicates = 0
    for project in incoming:
        if project.id in seen:
            duplicates += 1
            continue
        seen.add(project.id)
        merged.append(project)
        added += 1
    return merged, added, duplicates


def parse_session(
    files: List[Dict[str, Any]],
    is_base64: bool = True,
    existing: Optional[Sequence[Project]] = None,
    max_workers: int = 4,
    today: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Parse several uploaded workbooks and merge them into one project list.

    Files are parsed concurrently; merging happens afterwards in upload order,
    first-seen-wins by project id, on top of ``existing``.

    Parameters
    ----------
    files     : list of {"name": "...", "data": <base64, bytes or path>}
    is_base64 : True when string data fields are base64-encoded
    existing  : projects already loaded; never overwritten

    Returns
    -------
    {
        "projects":   [Project, ...],     # existing + new, de-duplicated
        "added":      N,
        "duplicates": M,
        "files":      [{"file", "status": ok|empty|error, "projects", "error"}],
        "errors":     [{"file", "error"}],
    }
    """
    reports: List[Dict[str, Any]] = []
    errors: List[Dict[str, str]] = []
    parsed: List[List[Project]] = []

    workers = max(1, min(max_workers, len(files) or 1))
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(
                parse_file,
                f.get("data", b""),
                filename=f.get("name", "unknown.xlsx"),
                is_base64=is_base64,
                today=today,
            )
            for f in files
        ]
        for f, future in zip(files, futures):
            name = f.get("name", "unknown.xlsx")
            try:
                projects = future.result()
            except Exception as e:
                if not isinstance(e, WorkbookReadError):
                    logger.exception("Session parse failed for '%s'", name)
                errors.append({"file": name, "error": str(e)})
                reports.append({"file": name, "status": "error", "projects": 0, "error": str(e)})
                parsed.append([])
                continue
            reports.append({
                "file": name,
                "status": "ok" if projects else "empty",
                "projects": len(projects),
                "error": None,
            })
            parsed.append(projects)

    merged = list(existing or [])
    added = duplicates = 0
    for projects in parsed:
        merged, n_added, n_dup = merge_projects(merged, projects)
        added += n_added
        duplicates += n_dup

    return {
        "projects": merged,
        "added": added,
        "duplicates": duplicates,
        "files": reports,
        "errors": errors,
    }
