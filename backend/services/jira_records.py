"""Parsing of raw Jira JSON into sprint report records.

Handles issues fetched with ``expand=changelog`` from the agile API and
sprints from ``/rest/agile/1.0/board/{id}/sprint``.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from services.errors import DataValidationError
from services.field_mapping import FieldMapping
from services.models import (
    MISSING,
    FieldChange,
    HistoryEntry,
    Item,
    Sprint,
    SprintRef,
)

_SPRINT_ID_SEPARATOR = re.compile(r"[,\s]+")


def _sprint_id(value) -> int:
    if isinstance(value, dict):
        if "id" not in value:
            raise DataValidationError(f"Sprint is missing 'id': {value!r}")
        value = value["id"]
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise DataValidationError(f"Invalid sprint ID: {value!r}") from e


def parse_datetime(date_str: Optional[str]) -> Optional[datetime]:
    """Parse a Jira date string into a timezone-aware datetime.

    Values without an offset are taken to be UTC.
    """
    if not date_str:
        return None
    if isinstance(date_str, datetime):
        parsed = date_str
    else:
        # Jira formats: "2024-10-31T12:11:56.289-0400" or "2024-10-31T12:11:56.289Z"
        formats = [
            "%Y-%m-%dT%H:%M:%S.%f%z",  # With milliseconds and timezone
            "%Y-%m-%dT%H:%M:%S%z",      # Without milliseconds, with timezone
            "%Y-%m-%dT%H:%M:%S.%f",     # With milliseconds, no timezone
            "%Y-%m-%dT%H:%M:%S",        # Basic ISO format
            "%Y-%m-%d"                   # Date only
        ]

        parsed = None
        for fmt in formats:
            try:
                parsed = datetime.strptime(date_str, fmt)
                break
            except (TypeError, ValueError):
                continue

        if parsed is None:
            raise DataValidationError(f"Unrecognized Jira date: {date_str!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_estimate(value) -> Optional[float]:
    """Parse a story points value, keeping ``None`` for unset."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise DataValidationError(f"Invalid story points value: {value!r}") from e


def parse_sprint_ids(value) -> frozenset:
    """Normalize a sprint field value to a set of sprint IDs.

    Current issue fields hold a list of sprint objects; changelog values hold
    a delimited string such as ``"123, 456"``. Both are accepted.
    """
    if value is None:
        return frozenset()

    if isinstance(value, str):
        tokens = [t for t in _SPRINT_ID_SEPARATOR.split(value) if t]
    elif isinstance(value, (int, SprintRef, dict)):
        tokens = [value]
    else:
        tokens = list(value)

    ids = set()
    for token in tokens:
        if isinstance(token, SprintRef):
            ids.add(token.id)
        else:
            ids.add(_sprint_id(token))
    return frozenset(ids)


def parse_sprint_refs(value) -> tuple:
    """Parse the current sprint field of an issue into ``SprintRef`` objects."""
    refs = []
    for sprint in value or []:
        if isinstance(sprint, dict):
            refs.append(SprintRef(
                id=_sprint_id(sprint),
                start_date=parse_datetime(sprint.get("startDate"))
            ))
        else:
            refs.append(SprintRef(id=_sprint_id(sprint)))
    return tuple(refs)


def parse_history(history: dict) -> HistoryEntry:
    """Parse one changelog history."""
    if not isinstance(history, dict):
        raise DataValidationError(f"Invalid changelog history: {history!r}")

    items = []
    for item in history.get("items") or []:
        if not isinstance(item, dict):
            raise DataValidationError(f"Invalid changelog item: {item!r}")
        # Older payloads only carry the display name in "field"
        field_id = item.get("fieldId") or item.get("field")
        items.append(FieldChange(
            field_id=field_id,
            from_value=item.get("from"),
            to_value=item.get("to"),
            from_string=item.get("fromString"),
            to_string=item.get("toString")
        ))
    created = parse_datetime(history.get("created"))
    if created is None:
        raise DataValidationError("Changelog history is missing 'created'")

    return HistoryEntry(created=created, items=tuple(items))


def parse_issue(issue: dict, mapping: FieldMapping) -> Item:
    """Parse a Jira issue into an ``Item``.

    Only the configured estimate and sprint fields are read. Changelog
    histories are sorted newest first, which is the order the sprint report
    replays them in.
    """
    if not isinstance(issue, dict) or "key" not in issue:
        raise DataValidationError("Issue payload is missing 'key'")

    fields = issue.get("fields") or {}
    if not isinstance(fields, dict):
        raise DataValidationError(f"Issue {issue['key']} has invalid 'fields'")

    story_points = MISSING
    if mapping.story_points and mapping.story_points in fields:
        story_points = parse_estimate(fields[mapping.story_points])

    story_point_estimate = MISSING
    if mapping.story_point_estimate and mapping.story_point_estimate in fields:
        story_point_estimate = parse_estimate(fields[mapping.story_point_estimate])

    sprints = MISSING
    if mapping.sprint in fields:
        sprint_value = fields[mapping.sprint]
        sprints = None if sprint_value is None else parse_sprint_refs(sprint_value)

    # Changelog can be at issue level (when using expand=changelog) or in fields
    changelog = issue.get("changelog") or fields.get("changelog")
    change_log = None
    if isinstance(changelog, dict):
        histories = [parse_history(h) for h in changelog.get("histories") or []]
        histories.sort(key=lambda h: h.created, reverse=True)
        change_log = tuple(histories)

    status = fields.get("status") or {}

    return Item(
        key=issue["key"],
        status=status.get("name") if isinstance(status, dict) else status,
        created=parse_datetime(fields.get("created")),
        story_points=story_points,
        story_point_estimate=story_point_estimate,
        sprints=sprints,
        change_log=change_log
    )


def parse_sprint(sprint: dict) -> Sprint:
    """Parse a Jira agile sprint object into a ``Sprint``."""
    if not isinstance(sprint, dict) or "id" not in sprint:
        raise DataValidationError("Sprint payload is missing 'id'")

    return Sprint(
        id=_sprint_id(sprint),
        state=sprint.get("state", ""),
        start_date=parse_datetime(sprint.get("startDate")),
        complete_date=parse_datetime(sprint.get("completeDate")),
        name=sprint.get("name", ""),
        end_date=parse_datetime(sprint.get("endDate"))
    )
