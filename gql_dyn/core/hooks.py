"""Caller hooks consulted by the client during dispatch.

Hooks may be plain functions or coroutine functions.

Example usage:
    from gql_dyn.core.hooks import RetryOnErrorKinds

    # Retry once when the network failed or the call timed out
    client = GraphQLClient(ClientConfig(url, should_retry=RetryOnErrorKinds("transport", "timeout")))

    # Async hook refreshing a token before retrying on auth errors
    async def refresh_and_retry(result):
        if any(e.get("extensions", {}).get("code") == "UNAUTHENTICATED" for e in result["errors"]):
            auth.set_token(await fetch_token())
            return True
        return False
"""

import inspect
from collections.abc import Mapping
from typing import Any, Awaitable, Protocol, runtime_checkable

from .errors import ErrorKind


@runtime_checkable
class RetryHook(Protocol):
    """Decides whether a failed request is sent once more.

    Receives the normalized failed result. Consulted at most once per
    call: the resubmitted request never reaches the hook again.
    """

    def __call__(self, result: Any) -> bool | Awaitable[bool]:
        ...


@runtime_checkable
class ProgressHook(Protocol):
    """Called after each chunk of a chunked batch.

    Returning False stops the remaining chunks from being sent.
    """

    def __call__(self, chunk_index: int, chunk_count: int, result: Any) -> bool | None | Awaitable[bool | None]:
        ...


async def run_hook(hook: Any, *args: Any) -> Any:
    """Call a sync or async hook and return its value."""
    value = hook(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


class RetryOnErrorKinds:
    """Built-in retry hook matching the ``kind`` of synthesized error records.

    Example:
        hook = RetryOnErrorKinds("transport", "timeout")
    """

    def __init__(self, *kinds: str | ErrorKind):
        self.kinds = {k.value if isinstance(k, ErrorKind) else k for k in kinds}

    def __call__(self, result: Any) -> bool:
        if not isinstance(result, Mapping):
            return False
        return any(
            isinstance(error, Mapping) and error.get("kind") in self.kinds
            for error in result.get("errors") or []
        )
