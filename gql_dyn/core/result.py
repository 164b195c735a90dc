"""Normalization of raw transport outcomes into one result contract.

A normalized result is either:

- the payload found under the operation's key in ``data``,
- a mapping with an ``errors`` list (possibly next to partial ``data``),
- a Lapsed marker for a response that a newer call superseded.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .errors import (
    PACKAGE_NAME,
    ErrorKind,
    GraphQLError,
    StaleResponseError,
    error_record,
)

# Keys used by the transport layer to report failures
APPLICATION_ERRORS_KEY = "graphQLErrors"
NETWORK_ERROR_KEY = "networkError"


@dataclass(frozen=True)
class Lapsed:
    """A response superseded by a newer call with the same request id."""
    request_id: str


def normalize(
    raw: Any,
    expected_key: str,
    *,
    multi: bool = False,
    endpoint: str = "",
) -> Any:
    """Map a raw transport result onto the uniform result contract.

    Args:
        raw: What the transport returned (or the exception it raised)
        expected_key: Root field of the operation, unwrapped from ``data``
        multi: Return the whole ``data`` mapping (batches)
        endpoint: Named in the synthesized message when nothing else explains the failure

    Returns:
        The unwrapped payload, or a mapping with an ``errors`` list
    """
    if isinstance(raw, Lapsed):
        return raw

    if not isinstance(raw, Mapping):
        return {"errors": [error_record(ErrorKind.UNKNOWN, str(raw))]}

    if raw.get("errors"):
        return raw

    if "data" in raw and raw["data"] is not None:
        data = raw["data"]
        if multi or not isinstance(data, Mapping):
            return data
        if expected_key in data:
            return data[expected_key]
        if len(data) == 1:
            return next(iter(data.values()))
        return data

    result = {k: v for k, v in raw.items() if k not in (APPLICATION_ERRORS_KEY, NETWORK_ERROR_KEY)}
    result["errors"] = _extract_errors(raw, endpoint)
    return result


def _extract_errors(raw: Mapping, endpoint: str) -> list[dict[str, Any]]:
    application_errors = raw.get(APPLICATION_ERRORS_KEY)
    if application_errors:
        return list(application_errors)

    network_error = raw.get(NETWORK_ERROR_KEY)
    if network_error:
        if isinstance(network_error, Mapping):
            body = network_error.get("result")
            if isinstance(body, Mapping) and body.get("errors"):
                return list(body["errors"])
            record = {k: v for k, v in network_error.items() if k != "result"}
            record.setdefault("message", "Network error")
            record.setdefault("kind", ErrorKind.TRANSPORT.value)
            return [record]
        return [error_record(ErrorKind.TRANSPORT, str(network_error))]

    return [
        error_record(
            ErrorKind.UNKNOWN,
            f"Unknown error during request in {PACKAGE_NAME}. Endpoint: {endpoint}",
        )
    ]


def is_lapsed(result: Any) -> bool:
    return isinstance(result, Lapsed)


def is_error(result: Any) -> bool:
    """True for lapsed results and for results carrying an ``errors`` list."""
    if isinstance(result, Lapsed):
        return True
    return isinstance(result, Mapping) and bool(result.get("errors"))


def unwrap(result: Any) -> Any:
    """Return the payload or raise for failed and lapsed results.

    Raises:
        GraphQLError: If the result carries errors
        StaleResponseError: If the result lapsed
    """
    if isinstance(result, Lapsed):
        raise StaleResponseError(result.request_id)
    if is_error(result):
        errors = list(result["errors"])
        error_messages = "; ".join(
            e.get("message", str(e)) if isinstance(e, Mapping) else str(e) for e in errors
        )
        raise GraphQLError(f"GraphQL errors: {error_messages}", errors)
    return result
