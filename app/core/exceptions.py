"""
QA Tracking Dashboard
Domain exceptions.

Services raise these and never build HTTP responses themselves; the app
factory maps each type to one status and error code:

    NotFoundError          404  ERR_NOT_FOUND
    ValidationError        400  ERR_VALIDATION_REQUIRED / ERR_VALIDATION_INVALID
    ConflictError          409  ERR_CONFLICT_DUPLICATE
    AIConfigurationError   500  ERR_AI_CONFIG
    AIResponseParseError   502  ERR_AI_PARSE

The handler rolls the session back before answering, so a service may
raise after it has already flushed partial changes.
"""


class NotFoundError(Exception):
    """A requirement, cycle, system or scenario id that does not exist."""

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        suffix = f" id={resource_id}" if resource_id is not None else ""
        super().__init__(f"{resource}{suffix} not found")


class ValidationError(Exception):
    """Input rejected before any write.

    ``details`` maps field → problem. A value of ``"required"`` marks a
    missing selection (no system chosen, no cycle id); anything else is an
    invalid value, e.g. ``{"status": "Done"}``.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """A unique value that is already taken (system name)."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class AIConfigurationError(Exception):
    """The selected model's provider has no API key (or the model is unknown)."""


class AIResponseParseError(Exception):
    """The model answered, but not in the expected shape.

    ``raw`` keeps the untouched response so the editor can show it.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)
