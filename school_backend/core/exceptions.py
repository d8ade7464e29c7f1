"""Application error types.

Every error carries the HTTP status it should surface as; the handlers
registered in ``school_backend.main`` turn them into JSON responses.
"""

from typing import Any


class SchoolBackendError(Exception):
    """Base exception for all school backend errors."""

    status_code = 500

    def __init__(self, detail: str, status_code: int | None = None, **extra: Any):
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.detail, **self.extra}


class NotFoundError(SchoolBackendError):
    """Raised when a referenced entity does not exist."""

    status_code = 404


class ConflictError(SchoolBackendError):
    """Raised when a write would duplicate an existing unique value."""

    status_code = 409


class BusinessRuleError(SchoolBackendError):
    """Raised when a request is well formed but breaks a business rule."""

    status_code = 400


class BatchRejectedError(BusinessRuleError):
    """Raised when an all-or-nothing batch has at least one rejected entry.

    ``buckets`` maps a bucket name (e.g. ``duplicateIds``) to the inputs that
    landed in it. All buckets are reported, empty ones included.
    """

    def __init__(self, buckets: dict[str, list], detail: str = "Some students could not be rostered"):
        self.buckets = buckets
        super().__init__(detail, **buckets)


class CsvFormatError(SchoolBackendError):
    """Raised when an uploaded CSV cannot be read as a table at all."""

    status_code = 422
