"""
Error types raised by the traceability core.

Anything that would break a store invariant is raised before the documents
are touched. Degraded extraction is not an error; it is a flag on the
extracted test.
"""


class TraceError(Exception):
    """Base class for all reqtrace errors."""


class ValidationError(TraceError):
    """Malformed arguments or data (unknown enum value, empty description, ...)."""


class NotFoundError(TraceError):
    """Unknown requirement ID, test file, test identifier or test link."""


class ConflictError(TraceError):
    """Operation would overwrite or contradict existing state."""


class StoreIOError(TraceError):
    """Store document could not be read or written."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")
