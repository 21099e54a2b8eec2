"""
Normalized portfolio model: one Project per spreadsheet tab, each holding
its ordered Task rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

# Project status vocabulary
STATUS_DONE = "Concluído"
STATUS_IN_PROGRESS = "Em Andamento"
STATUS_LATE = "Atrasado"
STATUS_CANCELLED = "Cancelado"
STATUS_NOT_STARTED = "Não Iniciado"

STATUSES = (
    STATUS_DONE,
    STATUS_IN_PROGRESS,
    STATUS_LATE,
    STATUS_CANCELLED,
    STATUS_NOT_STARTED,
)

# Canonical lifecycle order of stages
STAGE_ORDER = ("Discovery", "Desenvolvimento", "Homologação", "Implantação", "Delivery")

# Progress at or above this counts as finished
DONE_THRESHOLD = 99


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Task:
    """One row of a sheet's task table."""
    name: str
    start_date: Optional[datetime]
    planned_end: Optional[datetime]
    actual_end: Optional[datetime]
    duration_days: int = 0
    progress: float = 0.0

    @property
    def is_done(self) -> bool:
        return self.progress >= DONE_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "start_date": _iso(self.start_date),
            "planned_end": _iso(self.planned_end),
            "actual_end": _iso(self.actual_end),
            "duration_days": self.duration_days,
            "progress": self.progress,
        }


@dataclass(frozen=True)
class Team:
    factory: Optional[str] = None
    squad: Optional[str] = None
    architect: Optional[str] = None
    analyst: Optional[str] = None
    developer: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "factory": self.factory,
            "squad": self.squad,
            "architect": self.architect,
            "analyst": self.analyst,
            "developer": self.developer,
        }


@dataclass(frozen=True)
class Project:
    """
    A project as read from one sheet.

    Dates and status are derived from the task list by the assembler and are
    never set independently.
    """
    id: str
    name: str
    description: Optional[str]
    team: Team
    saving: float
    tasks: List[Task]
    stage_durations: Dict[str, int]
    progress: float
    start_date: Optional[datetime]
    baseline_date: Optional[datetime]
    actual_date: Optional[datetime]
    status: str
    source_file: str = ""
    source_sheet: str = ""

    @property
    def squad(self) -> Optional[str]:
        return self.team.squad

    @property
    def factory(self) -> Optional[str]:
        return self.team.factory

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "team": self.team.to_dict(),
            "saving": self.saving,
            "tasks": [t.to_dict() for t in self.tasks],
            "stage_durations": dict(self.stage_durations),
            "progress": self.progress,
            "start_date": _iso(self.start_date),
            "baseline_date": _iso(self.baseline_date),
            "actual_date": _iso(self.actual_date),
            "status": self.status,
            "source_file": self.source_file,
            "source_sheet": self.source_sheet,
        }
