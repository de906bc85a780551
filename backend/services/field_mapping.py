"""Custom field mapping for the sprint report engine.

Jira sites expose story points under site-specific custom field IDs, and
cloud sites may carry both "Story Points" and "Story point estimate". The
mapping records which IDs to read, plus the status names that count as done.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from services.errors import ConfigurationError, MissingEstimateError, NotInitializedError
from services.models import MISSING, Item

logger = logging.getLogger(__name__)

STATUS_FIELD_ID = "status"

# Keys of the custom-fields map, as saved from /rest/api/3/field
SPRINT_KEY = "sprint"
STORY_POINTS_KEY = "storyPoints"
STORY_POINT_ESTIMATE_KEY = "storyPointEstimate"


@dataclass(frozen=True)
class FieldMapping:
    """Resolved field IDs and done statuses for one Jira site."""

    sprint: str
    story_points: Optional[str] = None
    story_point_estimate: Optional[str] = None
    done_statuses: frozenset = frozenset()

    def is_done(self, status: Optional[str]) -> bool:
        return status is not None and status in self.done_statuses

    def estimate_field_of(self, item: Item) -> str:
        """Return the ID of the estimate field the item's estimate comes from.

        The primary "Story Points" field wins whenever the item carries it, even
        with a null value. "Story point estimate" is used only when the primary
        field is absent from the item altogether.
        """
        if self.story_points and item.story_points is not MISSING:
            return self.story_points
        if self.story_point_estimate and item.story_point_estimate is not MISSING:
            return self.story_point_estimate
        raise MissingEstimateError(f"Issue {item.key} has no story points field")

    def estimate_of(self, item: Item) -> Optional[float]:
        """Return the item's current estimate (``None`` when unset)."""
        if self.estimate_field_of(item) == self.story_points:
            return item.story_points
        return item.story_point_estimate

    def to_dict(self) -> dict:
        return {
            "fields": {
                SPRINT_KEY: self.sprint,
                STORY_POINTS_KEY: self.story_points,
                STORY_POINT_ESTIMATE_KEY: self.story_point_estimate,
            },
            "doneStatuses": sorted(self.done_statuses),
        }


_active_mapping: Optional[FieldMapping] = None


def build_mapping(fields: Mapping, done_statuses: Iterable[str]) -> FieldMapping:
    """Validate a custom-fields map and build a ``FieldMapping`` from it.

    Args:
        fields: Map with ``sprint`` and at least one of ``storyPoints`` /
            ``storyPointEstimate``
        done_statuses: Status names that count as done

    Raises:
        ConfigurationError: If a required field ID is missing
    """
    if not fields or not fields.get(SPRINT_KEY):
        raise ConfigurationError(f"Missing required field mapping: '{SPRINT_KEY}'")

    story_points = fields.get(STORY_POINTS_KEY) or None
    story_point_estimate = fields.get(STORY_POINT_ESTIMATE_KEY) or None
    if not story_points and not story_point_estimate:
        raise ConfigurationError(
            f"Missing required field mapping: '{STORY_POINTS_KEY}' "
            f"or '{STORY_POINT_ESTIMATE_KEY}'"
        )

    if isinstance(done_statuses, str):
        done_statuses = [done_statuses]
    elif done_statuses is not None and not isinstance(done_statuses, (list, tuple, set, frozenset)):
        raise ConfigurationError(f"Done statuses must be a list, got {done_statuses!r}")

    return FieldMapping(
        sprint=fields[SPRINT_KEY],
        story_points=story_points,
        story_point_estimate=story_point_estimate,
        done_statuses=frozenset(done_statuses or ()),
    )


def configure(fields: Mapping, done_statuses: Iterable[str]) -> FieldMapping:
    """Build a mapping and install it as the process-wide default."""
    global _active_mapping
    mapping = build_mapping(fields, done_statuses)
    _active_mapping = mapping
    logger.info(
        f"Configured sprint field {mapping.sprint}, estimate fields "
        f"{mapping.story_points}/{mapping.story_point_estimate}, "
        f"{len(mapping.done_statuses)} done statuses"
    )
    return mapping


def reset():
    """Clear the process-wide default mapping."""
    global _active_mapping
    _active_mapping = None


def active_mapping() -> FieldMapping:
    """Return the process-wide default mapping.

    Raises:
        NotInitializedError: If ``configure`` has not been called
    """
    if _active_mapping is None:
        raise NotInitializedError("Custom fields not initialized, call configure() first")
    return _active_mapping


def estimate_of(item: Item) -> Optional[float]:
    """Current estimate of an item under the default mapping."""
    return active_mapping().estimate_of(item)
