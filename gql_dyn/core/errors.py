"""Exceptions and error records used across gql-dyn.

Only CatalogError is meant to escape the client's public methods. Every
other failure ends up as an error record inside a result's ``errors`` list.
"""

from enum import Enum
from typing import Any

PACKAGE_NAME = "gql-dyn"


class GqlDynError(Exception):
    """Base exception for all gql-dyn errors."""
    pass


class CatalogError(GqlDynError):
    """Raised when an include spec or variable names something the catalog doesn't declare."""

    def __init__(self, entity: str, name: str, what: str = "relation"):
        self.entity = entity
        self.name = name
        self.what = what
        super().__init__(f"Unknown {what} '{name}' on '{entity}'")


class MalformedIncludeError(GqlDynError):
    """Raised when an include spec is neither a list, a mapping nor a string."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(
            f"Includes must be a list, a mapping or a string, got {type(value).__name__}: {value!r}"
        )


class GraphQLError(GqlDynError):
    """Exception raised for GraphQL errors."""

    def __init__(self, message: str, errors: list[dict[str, Any]]):
        self.message = message
        self.errors = errors
        super().__init__(message)


class ErrorKind(Enum):
    """Origin of a synthesized error record."""
    APPLICATION = "application"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


def error_record(kind: ErrorKind, message: str, **extra: Any) -> dict[str, Any]:
    """Build a ``{"message": ..., "kind": ...}`` error record."""
    record = {"message": message, "kind": kind.value}
    record.update(extra)
    return record


class StaleResponseError(GqlDynError):
    """Raised by unwrap() for a response superseded by a newer call with the same request id."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Response for request '{request_id}' lapsed")
