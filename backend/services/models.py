"""Typed records consumed and produced by the sprint report engine.

Raw Jira payloads are converted into these at the parsing boundary
(see ``services.jira_records``), so the engine never reaches into a generic
field bag.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Union


class _Missing:
    """Marker for a field that is absent from an issue's field set.

    Distinct from ``None``, which Jira uses for a present-but-unset field.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()


class Outcome(str, Enum):
    """Relationship of an issue to a sprint, as the Jira sprint report sees it."""

    COMPLETED = "COMPLETED"
    NOT_COMPLETED = "NOT_COMPLETED"
    REMOVED = "REMOVED"
    PUNTED = "REMOVED"
    COMPLETED_IN_ANOTHER_SPRINT = "COMPLETED_IN_ANOTHER_SPRINT"
    NOT_RELEVANT = "NOT_RELEVANT"


@dataclass(frozen=True)
class FieldChange:
    """One field-level change inside a changelog history."""

    field_id: str
    from_value: Optional[str] = None
    to_value: Optional[str] = None
    from_string: Optional[str] = None
    to_string: Optional[str] = None


@dataclass(frozen=True)
class HistoryEntry:
    """A changelog history: every change made in a single edit."""

    created: datetime
    items: Tuple[FieldChange, ...] = ()


@dataclass(frozen=True)
class SprintRef:
    """A sprint as it appears in an issue's current sprint field."""

    id: int
    start_date: Optional[datetime] = None


@dataclass(frozen=True)
class Item:
    """A Jira issue reduced to what the sprint report needs.

    ``story_points`` and ``story_point_estimate`` hold a float, ``None`` when the
    field is present but unset, or ``MISSING`` when the field was not returned.
    ``sprints`` follows the same convention. ``change_log`` is newest first.
    """

    key: str
    status: str
    created: Optional[datetime] = None
    story_points: Union[float, None, _Missing] = MISSING
    story_point_estimate: Union[float, None, _Missing] = MISSING
    sprints: Union[Tuple[SprintRef, ...], None, _Missing] = MISSING
    change_log: Optional[Tuple[HistoryEntry, ...]] = None


@dataclass(frozen=True)
class Sprint:
    """A board sprint from the Jira agile API."""

    id: int
    state: str
    start_date: Optional[datetime] = None
    complete_date: Optional[datetime] = None
    name: str = ""
    end_date: Optional[datetime] = None

    @property
    def has_boundaries(self) -> bool:
        return self.start_date is not None and self.complete_date is not None


@dataclass(frozen=True)
class SprintReportResult:
    """How one issue fared in one sprint."""

    outcome: Outcome
    initial_estimate: Optional[float] = None
    final_estimate: Optional[float] = None
    added_during_sprint: Optional[bool] = None

    def to_dict(self) -> dict:
        """Serialize in the shape of a GreenHopper sprint report entry."""
        if self.outcome is Outcome.NOT_RELEVANT:
            return {"outcome": self.outcome.value}
        return {
            "outcome": self.outcome.value,
            "initialEstimate": self.initial_estimate,
            "finalEstimate": self.final_estimate,
            "addedDuringSprint": self.added_during_sprint,
        }


@dataclass
class VelocityEntry:
    """Planned vs. completed points for one sprint."""

    planned: float = 0
    completed: float = 0

    def to_dict(self) -> dict:
        return {"planned": self.planned, "completed": self.completed}
