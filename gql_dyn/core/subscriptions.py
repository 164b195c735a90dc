"""Subscription stream over a single shared WebSocket.

Speaks the ``graphql-ws`` subprotocol (connection_init / connection_ack,
start / data / error / complete / stop). The connection is opened on the
first subscribe call and reused by every later one; when it drops and
``reconnect`` is on, it is reopened and active subscriptions are started
again.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .auth import Auth, NoAuth
from .errors import PACKAGE_NAME, ErrorKind, error_record
from .transport import serialize_variables

logger = logging.getLogger(__name__)

SUBPROTOCOL = "graphql-ws"

# Failures of one attempt to open the stream
CONNECT_ERRORS = (OSError, asyncio.TimeoutError, ValueError, WebSocketException)


def ws_url_for(url: str) -> str:
    """Derive the stream URL from an HTTP endpoint (http -> ws, https -> wss)."""
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


@dataclass
class _Registration:
    document: str
    variables: dict[str, Any]
    on_message: Callable[[dict[str, Any]], Any]
    on_error: Callable[[Any], Any] | None = None


class SubscriptionManager:
    """Multiplexes subscriptions over one lazily opened WebSocket.

    Args:
        url: WebSocket endpoint
        auth: Header provider used when (re)connecting
        reconnect: Reopen the connection after it drops
        reconnect_delay: Seconds to wait before reopening
        connect: Connection factory, ``websockets.connect`` by default
    """

    def __init__(
        self,
        url: str,
        auth: Auth | None = None,
        *,
        reconnect: bool = True,
        reconnect_delay: float = 1.0,
        connect: Callable[..., Any] | None = None,
    ):
        self.url = url
        self.auth = auth or NoAuth()
        self.reconnect = reconnect
        self.reconnect_delay = reconnect_delay
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._subscriptions: dict[str, _Registration] = {}
        self._next_id = 0
        self._closed = False
        self._callbacks: set[asyncio.Future] = set()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def subscribe(
        self,
        document: str,
        variables: dict[str, Any],
        on_message: Callable[[dict[str, Any]], Any],
        on_error: Callable[[Any], Any] | None = None,
    ) -> str:
        """Start a subscription and return its id.

        ``on_message`` gets the raw payload of every ``data`` frame;
        ``on_error`` gets error frames and stream failures.

        Raises:
            One of CONNECT_ERRORS if the stream cannot be opened or the
            start frame cannot be sent; nothing stays registered then.
        """
        await self._ensure_connected()
        self._next_id += 1
        sub_id = str(self._next_id)
        self._subscriptions[sub_id] = _Registration(
            document=document,
            variables=serialize_variables(variables or {}),
            on_message=on_message,
            on_error=on_error,
        )
        try:
            await self._send_start(sub_id)
        except ConnectionClosed:
            self._subscriptions.pop(sub_id, None)
            raise
        return sub_id

    async def unsubscribe(self, sub_id: str):
        if self._subscriptions.pop(sub_id, None) is None:
            return
        if self._ws is not None:
            try:
                await self._send({"id": sub_id, "type": "stop"})
            except ConnectionClosed:
                pass

    async def close(self):
        """Stop all subscriptions and close the connection."""
        self._closed = True
        self._subscriptions.clear()
        if self._reader is not None:
            # A reader that already failed was reported by _reader_done
            if not self._reader.done():
                self._reader.cancel()
                try:
                    await self._reader
                except asyncio.CancelledError:
                    pass
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _ensure_connected(self):
        async with self._lock:
            if self._ws is None:
                self._closed = False
                await self._open()
                self._reader = asyncio.create_task(self._listen())
                self._reader.add_done_callback(self._reader_done)

    async def _open(self):
        ws = await self._connect(
            self.url,
            subprotocols=[SUBPROTOCOL],
            additional_headers=self.auth.get_headers(),
        )
        await ws.send(json.dumps({"type": "connection_init", "payload": {}}))
        while True:
            message = json.loads(await ws.recv())
            if not isinstance(message, Mapping):
                continue
            msg_type = message.get("type")
            if msg_type == "connection_ack":
                break
            if msg_type == "connection_error":
                await ws.close()
                raise ConnectionError(f"Stream connection refused by {self.url}: {message.get('payload')}")
            # Keep-alives may arrive before the ack
        self._ws = ws
        logger.info(
            "connected %s to %s (%s)", PACKAGE_NAME, self.url, datetime.now().strftime("%H:%M:%S")
        )

    async def _send(self, message: dict[str, Any]):
        await self._ws.send(json.dumps(message))

    async def _send_start(self, sub_id: str):
        registration = self._subscriptions[sub_id]
        payload: dict[str, Any] = {"query": registration.document}
        if registration.variables:
            payload["variables"] = registration.variables
        await self._send({"id": sub_id, "type": "start", "payload": payload})

    async def _listen(self):
        while not self._closed:
            try:
                async for raw in self._ws:
                    try:
                        message = json.loads(raw)
                    except ValueError:
                        logger.warning("Ignoring undecodable frame from %s: %r", self.url, raw)
                        continue
                    if not isinstance(message, Mapping):
                        logger.warning("Ignoring unexpected frame from %s: %r", self.url, message)
                        continue
                    self._dispatch(message)
            except ConnectionClosed:
                pass
            if self._closed:
                return
            logger.info(
                "disconnected %s from %s (%s)", PACKAGE_NAME, self.url, datetime.now().strftime("%H:%M:%S")
            )
            self._ws = None
            if not self.reconnect:
                self._fail_all(error_record(ErrorKind.TRANSPORT, f"Stream to {self.url} closed"))
                return
            if not await self._reopen():
                return

    async def _reopen(self) -> bool:
        """Reopen the connection and restart active subscriptions. False once closed."""
        while not self._closed:
            await asyncio.sleep(self.reconnect_delay)
            try:
                await self._open()
                for sub_id in list(self._subscriptions):
                    await self._send_start(sub_id)
            except CONNECT_ERRORS as e:
                logger.warning("Reconnecting to %s failed: %s", self.url, e)
                self._ws = None
                continue
            return True
        return False

    def _reader_done(self, task: asyncio.Task):
        if task.cancelled() or task.exception() is None:
            return
        error = task.exception()
        logger.error("Subscription reader for %s stopped", self.url, exc_info=error)
        self._ws = None
        self._fail_all(error_record(ErrorKind.UNKNOWN, f"Stream reader for {self.url} stopped: {error}"))

    def _dispatch(self, message: Mapping[str, Any]):
        msg_type = message.get("type")
        sub_id = message.get("id")
        registration = self._subscriptions.get(sub_id) if isinstance(sub_id, str) else None

        if msg_type == "data" and registration is not None:
            self._call(registration.on_message, message.get("payload") or {})
        elif msg_type == "error" and registration is not None:
            payload = message.get("payload")
            if registration.on_error is not None:
                self._call(registration.on_error, payload)
            else:
                logger.error("Subscription error from %s: %s", self.url, payload)
        elif msg_type == "complete" and isinstance(sub_id, str):
            self._subscriptions.pop(sub_id, None)
        elif msg_type == "connection_error":
            self._fail_all(message.get("payload"))

    def _fail_all(self, error: Any):
        for registration in list(self._subscriptions.values()):
            if registration.on_error is not None:
                self._call(registration.on_error, error)
            else:
                logger.error("Subscription error from %s: %s", self.url, error)

    def _call(self, callback: Callable[..., Any], *args: Any):
        """Run a subscriber callback; a failing callback never stops the reader."""
        try:
            value = callback(*args)
            if asyncio.iscoroutine(value):
                task = asyncio.ensure_future(value)
                self._callbacks.add(task)
                task.add_done_callback(self._callbacks.discard)
        except Exception:
            logger.exception("Subscription callback raised")
