"""
analytics.py — portfolio KPIs, stage durations and burnup forecast
===================================================================
Pure views over a list of ``Project``.  Nothing here keeps state: callers
filter the portfolio and recompute on every change.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from models import (
    DONE_THRESHOLD,
    STAGE_ORDER,
    STATUS_DONE,
    STATUS_LATE,
    STATUSES,
    Project,
)
from normalizers import classify_status

logger = logging.getLogger(__name__)

ALL = "Todos"
NO_SQUAD = "SEM SQUAD"

# Months appended after the last known date for the forecast
FORECAST_TAIL_MONTHS = 3


def _today() -> datetime:
    now = datetime.now()
    return datetime(now.year, now.month, now.day)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ══════════════════════════════════════════════════════════════════════════════
# KPIs
# ══════════════════════════════════════════════════════════════════════════════

def calculate_kpis(projects: Sequence[Project], today: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Headline numbers for the portfolio.

    ``completion_rate`` is the share of projects with status Concluído, in
    percent.  ``avg_delay_days`` averages how far late projects are past
    their baseline date.
    """
    today = today or _today()
    total = len(projects)

    counts = Counter(p.status for p in projects)
    distribution = {s: counts[s] for s in STATUSES if counts[s]}
    for status, n in counts.items():
        distribution.setdefault(status, n)

    late = [
        (today - p.baseline_date).days
        for p in projects
        if p.status == STATUS_LATE and p.baseline_date is not None
    ]

    return {
        "total_saving": float(sum(p.saving for p in projects)),
        "total_projects": total,
        "status_distribution": distribution,
        "completion_rate": (counts[STATUS_DONE] / total * 100) if total else 0.0,
        "avg_delay_days": (sum(late) / len(late)) if late else 0.0,
    }


# ══════════════════════════════════════════════════════════════════════════════
# Stage durations
# ══════════════════════════════════════════════════════════════════════════════

def _stage_rank(stage: str) -> int:
    return STAGE_ORDER.index(stage) if stage in STAGE_ORDER else len(STAGE_ORDER)


def average_stage_durations(projects: Iterable[Project]) -> List[Dict[str, Any]]:
    """
    Mean days per stage, averaged only over projects that spent time in it.
    Returned in lifecycle order; unknown stages last.
    """
    sums: Dict[str, int] = {}
    counts: Dict[str, int] = {}
    for project in projects:
        for stage, days in project.stage_durations.items():
            if days > 0:
                sums[stage] = sums.get(stage, 0) + days
                counts[stage] = counts.get(stage, 0) + 1

    result = [
        {"stage": stage, "avg_days": _round_half_up(sums[stage] / counts[stage])}
        for stage in sums
    ]
    result.sort(key=lambda row: _stage_rank(row["stage"]))
    return result


# ══════════════════════════════════════════════════════════════════════════════
# Burnup + forecast
# ══════════════════════════════════════════════════════════════════════════════

def _fit_line(xs: List[int], ys: List[int]) -> Optional[tuple]:
    """Least-squares ``(slope, intercept)``; None with fewer than 2 points."""
    if len(xs) < 2:
        return None
    slope, intercept = np.polyfit(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float), 1)
    return float(slope), float(intercept)


def build_burnup(projects: Sequence[Project], today: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    Monthly cumulative completion across every task of ``projects``.

    Each point carries the planned count (``baseline``), the realized count
    for months up to the current one (``realized``), and for later months a
    linear-trend ``forecast`` clamped to ``[0, total]``.  The trend is only
    drawn when its slope is positive.
    """
    today = today or _today()
    tasks = [t for p in projects for t in p.tasks]
    if not tasks:
        return []

    stamps = [d for t in tasks for d in (t.planned_end, t.actual_end) if d is not None]
    if not stamps:
        return []

    total = len(tasks)
    first = pd.Timestamp(min(stamps)).to_period("M").to_timestamp()
    last = pd.Timestamp(max(stamps)).to_period("M").to_timestamp() + pd.DateOffset(months=FORECAST_TAIL_MONTHS)
    months = pd.date_range(first, last, freq="MS")
    current_month = pd.Timestamp(today).to_period("M").to_timestamp()

    points: List[Dict[str, Any]] = []
    xs: List[int] = []
    ys: List[int] = []

    for i, month in enumerate(months):
        month_end = (month + pd.offsets.MonthBegin(1)).to_pydatetime()
        baseline = sum(1 for t in tasks if t.planned_end is not None and t.planned_end < month_end)

        realized: Optional[int] = None
        if month <= current_month:
            realized = sum(
                1 for t in tasks
                if t.actual_end is not None and t.actual_end < month_end and t.progress >= DONE_THRESHOLD
            )
            xs.append(i)
            ys.append(realized)

        points.append({
            "index": i,
            "date": month.date().isoformat(),
            "baseline": baseline,
            "realized": realized,
            "forecast": None,
            "total": total,
        })

    fit = _fit_line(xs, ys)
    if fit is not None and fit[0] > 0:
        slope, intercept = fit
        for point in points:
            if point["realized"] is None:
                value = _round_half_up(slope * point["index"] + intercept)
                point["forecast"] = min(max(value, 0), total)
    elif fit is not None:
        # TODO: surface a stalled trend to the dashboard instead of hiding it
        logger.debug("Burnup trend slope %.3f is not positive; no forecast", fit[0])

    return points


# ══════════════════════════════════════════════════════════════════════════════
# Filtering and grouping
# ══════════════════════════════════════════════════════════════════════════════

def _unset(value: Optional[str]) -> bool:
    return not value or value == ALL


def filter_projects(
    projects: Iterable[Project],
    search: Optional[str] = None,
    status: Optional[str] = None,
    squad: Optional[str] = None,
    factory: Optional[str] = None,
    project: Optional[str] = None,
) -> List[Project]:
    """Keep projects matching every given filter; ``Todos`` or empty is no filter."""
    needle = (search or "").strip().lower()
    result = []
    for p in projects:
        if needle and needle not in p.name.lower():
            continue
        if not _unset(status) and p.status != status:
            continue
        if not _unset(squad) and (p.squad or "").upper() != squad.upper():
            continue
        if not _unset(factory) and (p.factory or "").upper() != factory.upper():
            continue
        if not _unset(project) and p.name != project:
            continue
        result.append(p)
    return result


def unique_squads(projects: Iterable[Project]) -> List[str]:
    return sorted({p.squad.upper() for p in projects if p.squad})


def group_by_squad(projects: Iterable[Project]) -> List[Dict[str, Any]]:
    """Projects per squad, squads alphabetical, ``SEM SQUAD`` last."""
    groups: Dict[str, List[Project]] = {}
    for p in projects:
        groups.setdefault(p.squad.upper() if p.squad else NO_SQUAD, []).append(p)

    ordered = sorted(groups, key=lambda name: (name == NO_SQUAD, name))
    return [
        {
            "squad": name,
            "projects": [p.id for p in groups[name]],
            "total": len(groups[name]),
            "status_counts": dict(Counter(p.status for p in groups[name])),
            "total_saving": float(sum(p.saving for p in groups[name])),
        }
        for name in ordered
    ]


def _first_name(full: Optional[str]) -> str:
    return full.split()[0] if full and full.split() else ""


def timeline_items(projects: Sequence[Project], single_project: bool = False) -> List[Dict[str, Any]]:
    """
    Rows for a roadmap/Gantt view, sorted by start date.

    With ``single_project`` and exactly one project, rows are its tasks;
    otherwise one row per project spanning start → baseline date.
    """
    items: List[Dict[str, Any]] = []

    if single_project and len(projects) == 1:
        for t in projects[0].tasks:
            if t.start_date is None or t.planned_end is None:
                continue
            items.append({
                "name": t.name,
                "subtitle": "",
                "start": t.start_date,
                "end": t.planned_end,
                "duration_days": t.duration_days,
                "progress": t.progress,
                "status": classify_status("", t.progress),
            })
    else:
        for p in projects:
            if p.start_date is None or p.baseline_date is None:
                continue
            parts = [x for x in (p.team.squad, p.team.factory) if x]
            for label, person in (("Dev", p.team.developer), ("AF", p.team.analyst), ("Arq", p.team.architect)):
                if _first_name(person):
                    parts.append(f"{label}: {_first_name(person)}")
            items.append({
                "name": p.name,
                "subtitle": " • ".join(parts),
                "start": p.start_date,
                "end": p.baseline_date,
                "duration_days": (p.baseline_date - p.start_date).days,
                "progress": 100.0 if p.status == STATUS_DONE else p.progress,
                "status": p.status,
            })

    items.sort(key=lambda item: item["start"])
    for item in items:
        item["start"] = item["start"].isoformat()
        item["end"] = item["end"].isoformat()
    return items


def build_dashboard(projects: Sequence[Project], today: Optional[datetime] = None) -> Dict[str, Any]:
    """Everything the dashboard renders for one filtered project set."""
    today = today or _today()
    return {
        "kpis": calculate_kpis(projects, today),
        "stage_durations": average_stage_durations(projects),
        "burnup": build_burnup(projects, today),
        "timeline": timeline_items(projects, single_project=len(projects) == 1),
        "squads": group_by_squad(projects),
    }
