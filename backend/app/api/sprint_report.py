"""Sprint report API endpoints.

These take issues and sprints already fetched from Jira (with changelogs)
and return the reconstructed sprint report and velocity figures.
"""

from flask import Blueprint, request, jsonify

from services import field_mapping
from services.errors import (
    ConfigurationError,
    DataValidationError,
    NotInitializedError,
    PreconditionError,
)
from services.jira_records import parse_issue, parse_sprint
from services.sprint_report import SprintReportService

bp = Blueprint("sprint_report", __name__, url_prefix="/api/sprint-report")


def get_mapping(data):
    """Use the request's field mapping, or the configured default."""
    if data.get("fields") is not None:
        if not isinstance(data["fields"], dict):
            raise ConfigurationError("fields must be a JSON object")
        return field_mapping.build_mapping(data["fields"], data.get("doneStatuses", []))
    return field_mapping.active_mapping()


def parse_batch(data, mapping):
    """Parse the issues and sprints of a batch request body."""
    raw_issues = data.get("issues") or []
    raw_sprints = data.get("sprints") or []
    if not isinstance(raw_issues, list) or not isinstance(raw_sprints, list):
        raise DataValidationError("issues and sprints must be lists")

    issues = [parse_issue(issue, mapping) for issue in raw_issues]
    sprints = [parse_sprint(sprint) for sprint in raw_sprints]
    return issues, sprints


def error_response(e):
    """Map engine errors to JSON error responses."""
    if isinstance(e, NotInitializedError):
        return jsonify({"error": str(e)}), 500
    return jsonify({"error": str(e)}), 400


@bp.route("/evaluate", methods=["POST"])
def evaluate_issue():
    """Classify one issue against one sprint.

    Expects JSON body with:
        - issue: Jira issue with changelog
        - sprint: Jira sprint
        - fields: Optional custom field map (sprint, storyPoints, storyPointEstimate)
        - doneStatuses: Status names counted as done, used with fields

    Returns the issue's outcome, initial/final estimates and whether it was
    added during the sprint.
    """
    data = request.get_json(silent=True)

    if not data:
        return jsonify({"error": "Missing request body"}), 400

    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    if not data.get("issue") or not data.get("sprint"):
        return jsonify({"error": "Missing required fields: issue, sprint"}), 400

    try:
        mapping = get_mapping(data)
        service = SprintReportService(mapping)
        result = service.evaluate(parse_issue(data["issue"], mapping), parse_sprint(data["sprint"]))
        return jsonify({"data": result.to_dict()})
    except (ConfigurationError, NotInitializedError, PreconditionError, DataValidationError) as e:
        return error_response(e)


@bp.route("/velocity", methods=["POST"])
def get_velocity():
    """Calculate planned vs. completed points for each sprint.

    Expects JSON body with:
        - issues: Jira issues with changelogs (sprint issues plus any others
          that may have been removed from those sprints)
        - sprints: Jira sprints, in the order the report should follow
        - fields / doneStatuses: as for /evaluate

    Returns one entry per sprint, in input order.
    """
    data = request.get_json(silent=True)

    if not data:
        return jsonify({"error": "Missing request body"}), 400

    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        mapping = get_mapping(data)
        issues, sprints = parse_batch(data, mapping)
        report = SprintReportService(mapping).velocity_report(issues, sprints)
        return jsonify({
            "data": [
                {"sprintId": sprint.id, **entry.to_dict()}
                for sprint, entry in zip(sprints, report)
            ]
        })
    except (ConfigurationError, NotInitializedError, PreconditionError, DataValidationError) as e:
        return error_response(e)


@bp.route("/removed", methods=["POST"])
def get_removed_issues():
    """List issues removed from each sprint while it was running.

    Expects the same body as /velocity. Returns a map of sprint ID to the keys
    of issues removed from it.
    """
    data = request.get_json(silent=True)

    if not data:
        return jsonify({"error": "Missing request body"}), 400

    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    try:
        mapping = get_mapping(data)
        issues, sprints = parse_batch(data, mapping)
        removed = SprintReportService(mapping).find_removed(
            issues, {sprint.id: sprint for sprint in sprints}
        )
        return jsonify({
            "data": {
                str(sprint_id): [issue.key for issue in removed_issues]
                for sprint_id, removed_issues in removed.items()
            }
        })
    except (ConfigurationError, NotInitializedError, PreconditionError, DataValidationError) as e:
        return error_response(e)
