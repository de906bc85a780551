"""Exception types raised by the sprint report engine."""


class SprintReportError(Exception):
    """Base exception for all sprint report errors."""


class ConfigurationError(SprintReportError):
    """Raised when the field mapping is missing a required field."""


class NotInitializedError(SprintReportError):
    """Raised when the engine is used before a field mapping is configured."""


class DataValidationError(SprintReportError):
    """Raised when a raw Jira record cannot be parsed."""


class PreconditionError(SprintReportError):
    """Raised when an input record is malformed for a sprint report call."""


class MissingItemError(PreconditionError):
    """Raised when no issue was supplied."""


class MissingSprintFieldError(PreconditionError):
    """Raised when an issue has no sprint field."""


class MissingEstimateError(PreconditionError):
    """Raised when an issue has none of the configured estimate fields."""


class MissingChangeLogError(PreconditionError):
    """Raised when an issue was fetched without its changelog."""


class SprintBoundaryError(PreconditionError):
    """Raised when a sprint is missing its start or complete date."""


class ChangeLogOrderError(PreconditionError):
    """Raised when changelog histories are not ordered newest first."""
