"""GraphQL client: builds documents from the catalog, dispatches them and
normalizes the results.

Handles timeouts, the retry hook, stale responses and chunked batches.
Only CatalogError is raised to callers; every other failure comes back as
a result with an ``errors`` list (see result.normalize).
"""

import asyncio
import itertools
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import httpx

from .auth import Auth, NoAuth
from .catalog import Catalog
from .errors import PACKAGE_NAME, ErrorKind, error_record
from .hooks import ProgressHook, RetryHook, run_hook
from .query_builder import BatchOperation, Document, QueryBuilder
from .result import Lapsed, is_error, normalize
from .subscriptions import CONNECT_ERRORS, SubscriptionManager, ws_url_for
from .transport import HttpTransport, Transport, decode_exception

logger = logging.getLogger(__name__)

# Documents or variables mentioning these are never written to the debug log
CREDENTIAL_PATTERN = re.compile(
    r"password|passwd|secret|token|api_?key|credential|authorization", re.IGNORECASE
)


@dataclass
class ClientConfig:
    """Per-client settings.

    Args:
        url: GraphQL HTTP endpoint
        auth: Header provider, consulted on every request
        ws_url: Subscription endpoint (derived from ``url`` when omitted)
        timeout: Seconds to wait for a result before giving up (None waits forever).
            The request itself is not cancelled.
        http_timeout: httpx timeout for the underlying HTTP client
        debug: Log documents and variables at DEBUG level
        should_retry: Hook deciding whether a failed request is sent once more
        chunk_size: Default number of operations per request in batch()
        reconnect: Reopen the subscription stream after it drops
        reconnect_delay: Seconds to wait before reopening the stream
        extra_headers: Static headers sent with every request
        http_client: Pre-built httpx.AsyncClient to send requests with
    """
    url: str
    auth: Auth | None = None
    ws_url: str | None = None
    timeout: float | None = None
    http_timeout: float | None = 30.0
    debug: bool = False
    should_retry: RetryHook | None = None
    chunk_size: int = 100
    reconnect: bool = True
    reconnect_delay: float = 1.0
    extra_headers: dict[str, str] = field(default_factory=dict)
    http_client: httpx.AsyncClient | None = None

    @property
    def stream_url(self) -> str:
        return self.ws_url or ws_url_for(self.url)


@dataclass
class Subscription:
    """Handle for an active subscription."""
    id: str
    name: str
    manager: SubscriptionManager

    async def unsubscribe(self):
        await self.manager.unsubscribe(self.id)


def _load_catalog(catalog: Catalog | str | Path | Mapping | None) -> Catalog:
    if catalog is None:
        return Catalog.empty()
    if isinstance(catalog, Catalog):
        return catalog
    if isinstance(catalog, Mapping):
        return Catalog.model_validate(catalog)
    return Catalog.load(catalog)


class GraphQLClient:
    """Builds, sends and normalizes GraphQL operations.

    Examples:
        client = GraphQLClient("https://api.example.com/graphql", "definitions.json")
        user = await client.get("user", {"id": 1}, ["*", {"posts": ["comments"]}])

        config = ClientConfig(url, auth=BearerAuth(token), timeout=5, debug=True)
        async with GraphQLClient(config, catalog) as client:
            await client.mutate("addPost", {"input": {...}}, "id")
    """

    def __init__(
        self,
        config: ClientConfig | str,
        catalog: Catalog | str | Path | Mapping | None = None,
        *,
        transport: Transport | None = None,
        subscriptions: SubscriptionManager | None = None,
    ):
        """Initialize the client.

        Args:
            config: Client settings, or just the endpoint URL
            catalog: Catalog, path to a definitions file, or definitions mapping
            transport: Sends documents; an HttpTransport for ``config.url`` by default
            subscriptions: Subscription stream; created on the first subscribe() by default
        """
        if isinstance(config, str):
            config = ClientConfig(url=config)
        self.config = config
        self.catalog = _load_catalog(catalog)
        self.builder = QueryBuilder(self.catalog)
        self.transport = transport or self._make_transport()
        self._subscriptions = subscriptions
        self._request_ids: dict[str, int] = {}
        self._call_ids = itertools.count(1)
        # Timed-out requests still running in the background
        self._pending: set[asyncio.Future] = set()

    def _make_transport(self) -> HttpTransport:
        return HttpTransport(
            self.config.url,
            self.config.auth or NoAuth(),
            timeout=self.config.http_timeout,
            extra_headers=self.config.extra_headers,
            client=self.config.http_client,
        )

    async def __aenter__(self) -> "GraphQLClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        """Close the HTTP client and the subscription stream."""
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
        if self._subscriptions is not None:
            await self._subscriptions.close()

    async def set_endpoint(self, url: str):
        """Point the client at another endpoint; the next request uses it."""
        await self.close()
        self.config.url = url
        self.transport = self._make_transport()
        self._subscriptions = None
        logger.info("%s endpoint set to %s", PACKAGE_NAME, url)

    # ------------------------------------------------------------------
    # Document building
    # ------------------------------------------------------------------

    def build_query(
        self,
        kind: str,
        name: str,
        variables: Mapping[str, Any] | None = None,
        include: Any = None,
        fields: str | None = None,
    ) -> Document:
        return self.builder.build_document(kind, name, variables, include, fields)

    def fragment(self, entity_name: str, include: Any = None, fields: str | None = None) -> str:
        return self.builder.fragment(entity_name, include, fields)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def get(
        self,
        name: str,
        variables: Mapping[str, Any] | None = None,
        include: Any = None,
        fields: str | None = None,
        **options: Any,
    ) -> Any:
        """Run a query. See submit() for ``options``."""
        return await self.submit("query", name, variables, include, fields, **options)

    async def mutate(
        self,
        name: str,
        variables: Mapping[str, Any] | None = None,
        include: Any = None,
        fields: str | None = None,
        **options: Any,
    ) -> Any:
        """Run a mutation. See submit() for ``options``."""
        return await self.submit("mutation", name, variables, include, fields, **options)

    async def submit(
        self,
        kind: str,
        name: str,
        variables: Mapping[str, Any] | None = None,
        include: Any = None,
        fields: str | None = None,
        *,
        timeout: float | None = None,
        request_id: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Build and send one operation.

        Args:
            kind: 'query' or 'mutation'
            name: Operation name from the catalog (or a raw document)
            variables: Operation variables
            include: Include spec for the returned entity
            fields: Field text overriding the entity's default fields
            timeout: Overrides ``config.timeout`` for this call
            request_id: Results of older calls with the same id come back as Lapsed
            headers: Extra headers for this call

        Returns:
            The normalized result

        Raises:
            CatalogError: If the include or variables don't match the catalog
        """
        document = self.builder.build_document(kind, name, variables, include, fields)
        return await self._dispatch(
            document.text,
            document.variables,
            name,
            timeout=timeout,
            request_id=request_id,
            headers=headers,
        )

    async def execute(
        self,
        document: str,
        variables: Mapping[str, Any] | None = None,
        *,
        key: str = "",
        multi: bool = False,
        timeout: float | None = None,
        request_id: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a ready-made document and normalize the result."""
        return await self._dispatch(
            document,
            dict(variables or {}),
            key,
            multi=multi,
            timeout=timeout,
            request_id=request_id,
            headers=headers,
        )

    async def batch(
        self,
        kind: str,
        operations: Mapping[Any, BatchOperation | str | tuple],
        *,
        chunk_size: int | None = None,
        on_progress: ProgressHook | None = None,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[Any, Any]:
        """Send many operations of one kind, ``chunk_size`` per request.

        Chunks are sent one after another. The result maps each caller key
        to its payload; a failed chunk adds its errors under
        ``errors_<chunk index>`` and the other chunks' data is still returned.
        """
        items = list(operations.items())
        size = chunk_size or self.config.chunk_size
        if size < 1:
            raise ValueError(f"chunk_size must be positive, got {size}")
        chunks = [dict(items[i:i + size]) for i in range(0, len(items), size)]

        merged: dict[Any, Any] = {}
        for index, chunk in enumerate(chunks):
            document = self.builder.build_batch(kind, chunk)
            result = await self._dispatch(
                document.text,
                document.variables,
                "",
                multi=True,
                timeout=timeout,
                headers=headers,
            )
            data = result
            if is_error(result):
                merged[f"errors_{index}"] = list(result["errors"])
                data = result.get("data")
            if isinstance(data, Mapping):
                for alias, value in data.items():
                    merged[document.aliases.get(alias, alias)] = value

            if on_progress is not None:
                if await run_hook(on_progress, index, len(chunks), result) is False:
                    break
        return merged

    async def subscribe(
        self,
        callback: Callable[[Any], Any],
        name: str,
        variables: Mapping[str, Any] | None = None,
        include: Any = None,
        fields: str | None = None,
        *,
        on_error: Callable[[Any], Any] | None = None,
    ) -> Subscription | None:
        """Subscribe to an operation; ``callback`` gets each normalized message.

        The stream connection is opened on the first call and shared by
        all subscriptions of this client. If it cannot be opened, the
        transport error goes to ``on_error`` (or the log) and None is
        returned.
        """
        document = self.builder.build_document("subscription", name, variables, include, fields)
        manager = self._get_subscriptions()
        self._log_request(document.text, document.variables)
        endpoint = manager.url

        def on_message(payload: dict[str, Any]) -> Any:
            return callback(normalize(payload, name, endpoint=endpoint))

        def on_stream_error(error: Any) -> Any:
            if isinstance(error, list):
                raw = {"errors": error}
            else:
                raw = {"networkError": error}
            result = normalize(raw, name, endpoint=endpoint)
            if on_error is None:
                logger.error("Subscription error on %s (%s): %s", name, endpoint, result["errors"])
                return None
            return on_error(result)

        try:
            sub_id = await manager.subscribe(document.text, document.variables, on_message, on_stream_error)
        except CONNECT_ERRORS as e:
            on_stream_error(error_record(ErrorKind.TRANSPORT, str(e) or type(e).__name__))
            return None
        return Subscription(id=sub_id, name=name, manager=manager)

    def _get_subscriptions(self) -> SubscriptionManager:
        if self._subscriptions is None:
            self._subscriptions = SubscriptionManager(
                self.config.stream_url,
                self.config.auth,
                reconnect=self.config.reconnect,
                reconnect_delay=self.config.reconnect_delay,
            )
        return self._subscriptions

    async def _dispatch(
        self,
        document: str,
        variables: dict[str, Any],
        key: str,
        *,
        multi: bool = False,
        timeout: float | None = None,
        request_id: str | None = None,
        headers: Mapping[str, str] | None = None,
        retried: bool = False,
    ) -> Any:
        call_id = next(self._call_ids)
        if request_id is not None:
            self._request_ids[request_id] = call_id

        self._log_request(document, variables)
        options = {"headers": dict(headers)} if headers else {}
        raw = await self._send(document, variables, options, timeout)

        if request_id is not None and self._request_ids.get(request_id) != call_id:
            return Lapsed(request_id)

        result = normalize(raw, key, multi=multi, endpoint=self.config.url)
        if not is_error(result):
            return result

        self._log_request(document, variables, failed=True)
        if not retried and self.config.should_retry is not None:
            if await run_hook(self.config.should_retry, result):
                logger.warning("Retrying '%s' after errors: %s", key or "document", result["errors"])
                return await self._dispatch(
                    document,
                    variables,
                    key,
                    multi=multi,
                    timeout=timeout,
                    request_id=request_id,
                    headers=headers,
                    retried=True,
                )
        return result

    async def _send(
        self,
        document: str,
        variables: dict[str, Any],
        options: dict[str, Any],
        timeout: float | None,
    ) -> Any:
        """Run the transport, racing it against the timeout if there is one."""
        if timeout is None:
            timeout = self.config.timeout
        task = asyncio.ensure_future(self.transport.execute(document, variables, options))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task not in done:
            # Not cancelled: the request may still complete in the background
            self._pending.add(task)
            task.add_done_callback(self._forget_pending)
            logger.warning("Request to %s timed out after %ss", self.config.url, timeout)
            return {"errors": [error_record(ErrorKind.TIMEOUT, f"Request timed out after {timeout}s")]}

        try:
            return task.result()
        except Exception as e:
            return decode_exception(e)

    def _forget_pending(self, task: asyncio.Future):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Timed-out request failed later: %s", task.exception())

    def _log_request(self, document: str, variables: Mapping[str, Any], failed: bool = False):
        if not self.config.debug:
            return
        title = "Failed request" if failed else "Query"
        if CREDENTIAL_PATTERN.search(document) or any(CREDENTIAL_PATTERN.search(str(k)) for k in variables):
            logger.debug("--- %s - %s --- [redacted]", PACKAGE_NAME, title)
            return
        logger.debug("--- %s - %s ---\n%s\n%s", PACKAGE_NAME, title, document, variables)
