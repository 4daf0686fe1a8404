"""Typed failures raised by listing operations.

Every failure has a stable ``kind`` so callers can branch on it instead of on
the message text, and a ``status_code`` used by the HTTP layer.
"""

from typing import Any


class ListingError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, detail: Any = None) -> None:
        self.detail = detail if detail is not None else self.default_detail()
        super().__init__(self.detail if isinstance(self.detail, str) else self.kind)

    @classmethod
    def default_detail(cls) -> str:
        return cls.kind.replace("_", " ").capitalize()


class ValidationError(ListingError):
    """Missing or malformed input. Nothing was changed."""

    kind = "validation"
    status_code = 400


class NotFoundError(ListingError):
    """The referenced product or notification does not exist."""

    kind = "not_found"
    status_code = 404


class ForbiddenError(ListingError):
    """The caller does not own the resource."""

    kind = "forbidden"
    status_code = 403


class ConflictError(ListingError):
    """The listing is not in a state that allows the operation."""

    kind = "conflict"
    status_code = 409


class StorageError(ListingError):
    """The database rejected or failed the write."""

    kind = "storage"
    status_code = 500
