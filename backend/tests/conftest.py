"""Shared fixtures for sprint report tests."""

import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services import field_mapping
from services.models import MISSING, FieldChange, HistoryEntry, Item, Sprint, SprintRef

SPRINT_FIELD = "customfield_10020"
STORY_POINTS_FIELD = "customfield_10002"
STORY_POINT_ESTIMATE_FIELD = "customfield_10016"


def at(month, day, hour=12, minute=0, year=2024):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def sprint_change(from_ids, to_ids):
    return FieldChange(SPRINT_FIELD, from_value=from_ids, to_value=to_ids)


def points_change(from_points, to_points, field_id=STORY_POINTS_FIELD):
    return FieldChange(field_id, from_string=from_points, to_string=to_points)


def status_change(from_status, to_status):
    return FieldChange("status", from_value="1", to_value="2",
                       from_string=from_status, to_string=to_status)


def make_item(key="PROJ-1", status="To Do", points=3.0, sprints=(100,), history=(),
              created=at(12, 20, year=2023)):
    """Build an issue; history is a list of (created, [changes]) newest first."""
    return Item(
        key=key,
        status=status,
        created=created,
        story_points=points,
        sprints=sprints if sprints in (None, MISSING) else tuple(SprintRef(id=s) for s in sprints),
        change_log=tuple(HistoryEntry(created=when, items=tuple(changes)) for when, changes in history)
    )


@pytest.fixture(autouse=True)
def reset_field_mapping():
    """Every test starts and ends with an unconfigured engine."""
    field_mapping.reset()
    yield
    field_mapping.reset()


@pytest.fixture
def custom_fields():
    """Custom field map as saved from /rest/api/3/field."""
    return {
        "sprint": SPRINT_FIELD,
        "storyPoints": STORY_POINTS_FIELD,
        "storyPointEstimate": STORY_POINT_ESTIMATE_FIELD
    }


@pytest.fixture
def done_statuses():
    return ["Done", "Closed"]


@pytest.fixture
def mapping(custom_fields, done_statuses):
    """Field mapping built without touching the process-wide default."""
    return field_mapping.build_mapping(custom_fields, done_statuses)


@pytest.fixture
def configured(custom_fields, done_statuses):
    """Configure the process-wide default mapping."""
    return field_mapping.configure(custom_fields, done_statuses)


@pytest.fixture
def sample_sprint():
    """Closed sprint running 2024-01-01 09:00 to 2024-01-14 17:00 UTC."""
    return Sprint(
        id=100,
        state="closed",
        name="Sprint 1",
        start_date=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
        complete_date=datetime(2024, 1, 14, 17, 0, tzinfo=timezone.utc),
        end_date=datetime(2024, 1, 14, 9, 0, tzinfo=timezone.utc)
    )


@pytest.fixture
def next_sprint():
    """Closed sprint following sample_sprint."""
    return Sprint(
        id=101,
        state="closed",
        name="Sprint 2",
        start_date=datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
        complete_date=datetime(2024, 1, 28, 17, 0, tzinfo=timezone.utc)
    )


@pytest.fixture
def future_sprint():
    """Sprint that has not started yet."""
    return Sprint(id=102, state="future", name="Sprint 3")


@pytest.fixture
def raw_sprints():
    """Sprints as returned by /rest/agile/1.0/board/{id}/sprint."""
    return [
        {
            "id": 100,
            "name": "Sprint 1",
            "state": "closed",
            "startDate": "2024-01-01T09:00:00.000Z",
            "endDate": "2024-01-14T09:00:00.000Z",
            "completeDate": "2024-01-14T17:00:00.000Z"
        },
        {
            "id": 101,
            "name": "Sprint 2",
            "state": "active",
            "startDate": "2024-01-15T09:00:00.000Z",
            "endDate": "2024-01-28T09:00:00.000Z"
        }
    ]


@pytest.fixture
def raw_completed_issue():
    """Issue committed at sprint start and completed inside the sprint."""
    return {
        "key": "PROJ-1",
        "fields": {
            "status": {"name": "Done"},
            "created": "2023-12-20T10:00:00.000+0000",
            STORY_POINTS_FIELD: 3.0,
            SPRINT_FIELD: [
                {"id": 100, "name": "Sprint 1", "state": "closed",
                 "startDate": "2024-01-01T09:00:00.000Z"}
            ]
        },
        "changelog": {
            "histories": [
                {
                    "created": "2023-12-28T10:00:00.000+0000",
                    "items": [
                        {"field": "Sprint", "fieldId": SPRINT_FIELD,
                         "from": "", "fromString": "", "to": "100", "toString": "Sprint 1"}
                    ]
                },
                {
                    "created": "2024-01-05T10:00:00.000+0000",
                    "items": [
                        {"field": "status", "fieldId": "status",
                         "from": "10000", "fromString": "To Do",
                         "to": "10001", "toString": "Done"}
                    ]
                }
            ]
        }
    }


@pytest.fixture
def raw_added_issue():
    """Issue pulled into the sprint mid-way and completed."""
    return {
        "key": "PROJ-2",
        "fields": {
            "status": {"name": "Done"},
            "created": "2023-12-20T10:00:00.000+0000",
            STORY_POINTS_FIELD: 5.0,
            SPRINT_FIELD: [{"id": 100, "name": "Sprint 1", "state": "closed"}]
        },
        "changelog": {
            "histories": [
                {
                    "created": "2024-01-08T10:00:00.000+0000",
                    "items": [
                        {"field": "status", "fieldId": "status",
                         "from": "10000", "fromString": "To Do",
                         "to": "10001", "toString": "Done"}
                    ]
                },
                {
                    "created": "2024-01-03T10:00:00.000+0000",
                    "items": [
                        {"field": "Sprint", "fieldId": SPRINT_FIELD,
                         "from": None, "fromString": None, "to": "100", "toString": "Sprint 1"}
                    ]
                }
            ]
        }
    }


@pytest.fixture
def raw_punted_issue():
    """Issue moved from Sprint 1 to Sprint 2 before Sprint 1 closed."""
    return {
        "key": "PROJ-3",
        "fields": {
            "status": {"name": "In Progress"},
            "created": "2023-12-20T10:00:00.000+0000",
            STORY_POINTS_FIELD: 8.0,
            SPRINT_FIELD: [{"id": 101, "name": "Sprint 2", "state": "active"}]
        },
        "changelog": {
            "histories": [
                {
                    "created": "2024-01-10T10:00:00.000+0000",
                    "items": [
                        {"field": "Sprint", "fieldId": SPRINT_FIELD,
                         "from": "100", "fromString": "Sprint 1",
                         "to": "101", "toString": "Sprint 2"}
                    ]
                },
                {
                    "created": "2023-12-28T10:00:00.000+0000",
                    "items": [
                        {"field": "Sprint", "fieldId": SPRINT_FIELD,
                         "from": None, "fromString": None, "to": "100", "toString": "Sprint 1"}
                    ]
                }
            ]
        }
    }


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Create Flask test app with no default field mapping."""
    monkeypatch.setenv("FIELD_MAPPING_CONFIG", str(tmp_path / "missing.json"))

    from app import create_app
    app = create_app()
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
