"""Sprint report reconstruction and velocity service.

Rebuilds each issue's story points, status and sprint membership at the
start and close of a sprint by replaying its changelog backwards, then
classifies the issue the way Jira's sprint report does. Velocity totals are
built from those per-issue results and are meant to match Jira's velocity
chart exactly.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from services import field_mapping
from services.errors import (
    ChangeLogOrderError,
    MissingChangeLogError,
    MissingItemError,
    MissingSprintFieldError,
    SprintBoundaryError,
)
from services.field_mapping import STATUS_FIELD_ID, FieldMapping
from services.jira_records import parse_estimate, parse_sprint_ids
from services.models import (
    MISSING,
    FieldChange,
    Item,
    Outcome,
    Sprint,
    SprintReportResult,
    VelocityEntry,
)

logger = logging.getLogger(__name__)


@dataclass
class _Replay:
    """Running state while walking a changelog from now back to sprint start."""

    estimate: Optional[float]
    sprint_ids: frozenset
    status: Optional[str]
    final_estimate: Optional[float]
    final_sprint_ids: frozenset
    final_status: Optional[str]
    added_during_sprint: bool = False
    estimate_when_added: Optional[float] = None
    sprint_changed_in_window: bool = False
    done_transition_in_window: bool = False


def _changed_estimate(change: FieldChange) -> Optional[float]:
    # Number fields keep the value in fromString and leave "from" null
    if change.from_string is not None:
        return parse_estimate(change.from_string)
    return parse_estimate(change.from_value)


def _sprint_ids_before(change: FieldChange) -> frozenset:
    return parse_sprint_ids(change.from_value)


def _sprint_ids_after(change: FieldChange) -> frozenset:
    return parse_sprint_ids(change.to_value)


class SprintReportService:
    """Service for reproducing Jira sprint reports from issue changelogs."""

    def __init__(self, mapping: FieldMapping):
        self.mapping = mapping

    def _current_sprint_ids(self, item: Item) -> frozenset:
        if item.sprints is MISSING:
            raise MissingSprintFieldError(f"Issue {item.key} has no sprint field")
        return parse_sprint_ids(item.sprints)

    def _check_item(self, item: Optional[Item]):
        if item is None:
            raise MissingItemError("Issue is undefined")
        if item.sprints is MISSING:
            raise MissingSprintFieldError(f"Issue {item.key} has no sprint field")
        # Raises MissingEstimateError when no configured estimate field is present
        self.mapping.estimate_field_of(item)
        if item.change_log is None:
            raise MissingChangeLogError(f"Issue {item.key} has no changelog")

        previous: Optional[datetime] = None
        for entry in item.change_log:
            if previous is not None and entry.created > previous:
                raise ChangeLogOrderError(
                    f"Issue {item.key} changelog is not ordered newest first "
                    f"({entry.created.isoformat()} follows {previous.isoformat()})"
                )
            previous = entry.created

    def _check_sprint(self, sprint: Sprint):
        if not sprint.has_boundaries:
            raise SprintBoundaryError(f"Sprint {sprint.id} is missing its start or complete date")

    def _mentions_sprint(self, item: Item, sprint_id: int) -> bool:
        """Check whether any sprint field change ever involved the sprint."""
        for entry in item.change_log:
            for change in entry.items:
                if change.field_id != self.mapping.sprint:
                    continue
                if sprint_id in _sprint_ids_before(change) or sprint_id in _sprint_ids_after(change):
                    return True
        return False

    def evaluate(self, item: Optional[Item], sprint: Sprint) -> SprintReportResult:
        """Reconstruct how an issue fared in a sprint.

        Walks the changelog newest first, undoing each change made after the
        sprint started. Changes made after the sprint completed also move the
        "final" values, which freeze once the walk passes the complete date.

        Boundaries:
        - A change made exactly at the start date counts as before the sprint
        - A change made exactly at the complete date counts as inside the sprint

        Returns:
            SprintReportResult with only ``outcome`` set to NOT_RELEVANT when the
            issue never belonged to the sprint
        """
        self._check_item(item)
        self._check_sprint(sprint)

        mapping = self.mapping
        sprint_id = sprint.id
        current_sprint_ids = self._current_sprint_ids(item)

        if sprint_id not in current_sprint_ids and not self._mentions_sprint(item, sprint_id):
            logger.debug(f"Issue {item.key} never belonged to sprint {sprint_id}")
            return SprintReportResult(outcome=Outcome.NOT_RELEVANT)

        estimate_field = mapping.estimate_field_of(item)
        current_estimate = mapping.estimate_of(item)

        state = _Replay(
            estimate=current_estimate,
            sprint_ids=current_sprint_ids,
            status=item.status,
            final_estimate=current_estimate,
            final_sprint_ids=current_sprint_ids,
            final_status=item.status
        )

        for entry in item.change_log:
            if entry.created <= sprint.start_date:
                break

            after_complete = entry.created > sprint.complete_date
            # Estimate as it stood right after this edit
            estimate_after_entry = state.estimate

            for change in entry.items:
                if change.field_id == estimate_field:
                    state.estimate = _changed_estimate(change)
                    if after_complete:
                        state.final_estimate = state.estimate

                elif change.field_id == mapping.sprint:
                    before = _sprint_ids_before(change)
                    after = _sprint_ids_after(change)
                    state.sprint_ids = before
                    if after_complete:
                        state.final_sprint_ids = before
                        continue

                    state.sprint_changed_in_window = True
                    if sprint_id in after and sprint_id not in before:
                        state.added_during_sprint = True
                        state.estimate_when_added = estimate_after_entry

                elif change.field_id == STATUS_FIELD_ID:
                    state.status = change.from_string
                    if after_complete:
                        state.final_status = state.status
                        continue

                    if mapping.is_done(change.from_string) != mapping.is_done(change.to_string):
                        state.done_transition_in_window = True

        # In the sprint when it started; later removals and re-adds don't count
        if sprint_id in state.sprint_ids:
            state.added_during_sprint = False

        # Sub-tasks created inside the sprint inherit it without a sprint change
        # TODO: confirm with product whether some board setups treat these as committed at start
        if (
            item.created is not None
            and item.created > sprint.start_date
            and not state.sprint_changed_in_window
        ):
            state.added_during_sprint = True
            state.estimate_when_added = state.estimate

        if mapping.is_done(item.status) and not state.done_transition_in_window:
            outcome = Outcome.COMPLETED_IN_ANOTHER_SPRINT
        elif sprint_id in state.final_sprint_ids:
            outcome = Outcome.COMPLETED if mapping.is_done(state.final_status) else Outcome.NOT_COMPLETED
        else:
            outcome = Outcome.REMOVED

        initial_estimate = state.estimate_when_added if state.added_during_sprint else state.estimate

        return SprintReportResult(
            outcome=outcome,
            initial_estimate=initial_estimate,
            final_estimate=state.final_estimate,
            added_during_sprint=state.added_during_sprint
        )

    def find_removed(self, items: list, sprints_by_id: dict) -> dict:
        """Find issues removed from sprints while those sprints were running.

        Such issues no longer list the sprint in their sprint field, so a
        "current issues of the sprint" query misses them even though Jira's
        sprint report still counts them.

        Args:
            items: Issues to scan
            sprints_by_id: Known sprints; removals from other sprints are ignored

        Returns:
            Dict of sprint ID -> list of removed issues (unique by key)
        """
        removed = {}

        for item in items:
            for entry in item.change_log or ():
                for change in entry.items:
                    if change.field_id != self.mapping.sprint:
                        continue

                    dropped = _sprint_ids_before(change) - _sprint_ids_after(change)
                    for sprint_id in dropped:
                        sprint = sprints_by_id.get(sprint_id)
                        # Sprint from another board
                        if sprint is None or not sprint.has_boundaries:
                            continue
                        if sprint.start_date <= entry.created <= sprint.complete_date:
                            removed.setdefault(sprint_id, {}).setdefault(item.key, item)

        return {sprint_id: list(by_key.values()) for sprint_id, by_key in removed.items()}

    def velocity_report(self, items: list, sprints: list) -> list:
        """Calculate planned and completed points per sprint.

        Planned points are the initial estimates of issues committed at sprint
        start. Completed points are the final estimates of issues completed in
        the sprint, including those added mid-sprint. Null estimates count as 0.

        Returns:
            List of VelocityEntry, one per input sprint in the same order
        """
        sprints_by_id = {sprint.id: sprint for sprint in sprints}
        removed_by_sprint = self.find_removed(items, sprints_by_id)

        report = []
        for sprint in sprints:
            entry = VelocityEntry()
            report.append(entry)

            if not sprint.has_boundaries:
                logger.debug(f"Sprint {sprint.id} ({sprint.state}) has no boundaries, reporting zero")
                continue

            sprint_items = {}
            for item in items:
                if sprint.id in self._current_sprint_ids(item):
                    sprint_items.setdefault(item.key, item)
            for item in removed_by_sprint.get(sprint.id, []):
                sprint_items.setdefault(item.key, item)

            for item in sprint_items.values():
                result = self.evaluate(item, sprint)
                if result.outcome is Outcome.NOT_RELEVANT:
                    continue

                if not result.added_during_sprint and result.initial_estimate is not None:
                    entry.planned += result.initial_estimate

                if result.outcome is Outcome.COMPLETED and result.final_estimate is not None:
                    entry.completed += result.final_estimate

            logger.info(
                f"Sprint {sprint.id}: {len(sprint_items)} issues, "
                f"planned {entry.planned}, completed {entry.completed}"
            )

        return report


def evaluate(item: Optional[Item], sprint: Sprint) -> SprintReportResult:
    """Evaluate an issue against a sprint with the configured field mapping."""
    return SprintReportService(field_mapping.active_mapping()).evaluate(item, sprint)


def find_removed(items: list, sprints_by_id: dict) -> dict:
    """Find issues removed from running sprints with the configured field mapping."""
    return SprintReportService(field_mapping.active_mapping()).find_removed(items, sprints_by_id)


def velocity_report(items: list, sprints: list) -> list:
    """Build the velocity report with the configured field mapping."""
    return SprintReportService(field_mapping.active_mapping()).velocity_report(items, sprints)
