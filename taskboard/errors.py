"""
Error taxonomy.

Store-level exceptions (``StoreError`` and subclasses) describe what the
backing database did. ``TaskBoardError`` subclasses describe what the caller
sees: each carries an HTTP status and renders as ``{"error", "details"}``.
Handlers translate the former into the latter; raw store errors never reach
a client.
"""
from typing import Optional, Dict, Any

POSITION_ATTRIBUTE_HELP = (
    "The tasks table does not have the 'position' attribute. "
    "Add an integer 'position' column to the tasks table to persist ordering."
)


# ── Store errors ─────────────────────────────────────────────────────────────


class StoreError(Exception):
    """Raised when the document store fails."""
    pass


class UnknownAttributeError(StoreError):
    """Raised when a read or write names a field the schema does not have."""

    def __init__(self, attribute: str):
        self.attribute = attribute
        super().__init__(f"Unknown attribute: {attribute}")


class DocumentNotFound(StoreError):
    """Raised when an id does not resolve."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection} {doc_id} not found")


# ── API errors ───────────────────────────────────────────────────────────────


class TaskBoardError(Exception):
    kind = "generic"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthorized(TaskBoardError):
    """Caller has no session, or is not a member of the workspace."""
    kind = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(TaskBoardError):
    """Caller is a member but lacks the admin role."""
    kind = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class InvalidField(TaskBoardError):
    """The store rejected the ``position`` attribute; needs a schema fix, not a retry."""
    kind = "invalid_field"
    status_code = 400
    default_message = "Invalid update field"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message, details or POSITION_ATTRIBUTE_HELP)


class NotFound(TaskBoardError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class ValidationError(TaskBoardError):
    kind = "validation"
    status_code = 400
    default_message = "Invalid request"


class GenericError(TaskBoardError):
    pass
