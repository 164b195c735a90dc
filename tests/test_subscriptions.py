"""Tests for the shared subscription stream."""

import asyncio
import json

import pytest
from websockets.exceptions import InvalidHandshake

from conftest import FakeTransport, settle
from gql_dyn.core.auth import HeaderAuth
from gql_dyn.core.executor import GraphQLClient
from gql_dyn.core.subscriptions import SubscriptionManager, ws_url_for

DOCUMENT = "subscription do { postAdded { id title } }"


class FakeWebSocket:
    """In-memory graphql-ws peer. Pushing None ends the stream."""

    def __init__(self, ack=True):
        self.sent = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        if ack:
            self.push({"type": "connection_ack"})

    def push(self, message):
        self.incoming.put_nowait(json.dumps(message))

    def drop(self):
        self.incoming.put_nowait(None)

    async def send(self, raw):
        self.sent.append(json.loads(raw))

    async def recv(self):
        return await self.incoming.get()

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self.incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self):
        self.closed = True


class FakeConnector:
    """Stands in for websockets.connect, handing out a fresh socket per call.

    A queued exception is raised instead of connecting.
    """

    def __init__(self, *sockets):
        self.queued = list(sockets)
        self.sockets = []
        self.calls = []

    async def __call__(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        ws = self.queued.pop(0) if self.queued else FakeWebSocket()
        if isinstance(ws, Exception):
            raise ws
        self.sockets.append(ws)
        return ws


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
async def manager(connector):
    manager = SubscriptionManager(
        "ws://api.test/graphql",
        HeaderAuth({"Authorization": "Bearer t"}),
        reconnect_delay=0,
        connect=connector,
    )
    yield manager
    await manager.close()


class TestWsUrl:

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("http://api.test/graphql", "ws://api.test/graphql"),
            ("https://api.test/graphql", "wss://api.test/graphql"),
            ("wss://api.test/graphql", "wss://api.test/graphql"),
        ],
    )
    def test_scheme(self, url, expected):
        assert ws_url_for(url) == expected


class TestSubscriptionManager:
    """Tests for SubscriptionManager."""

    async def test_connection_is_lazy_and_shared(self, manager, connector):
        assert not manager.connected
        first = await manager.subscribe(DOCUMENT, {}, lambda payload: None)
        second = await manager.subscribe(DOCUMENT, {"id": 1}, lambda payload: None)

        assert manager.connected
        assert (first, second) == ("1", "2")
        assert len(connector.sockets) == 1
        assert connector.calls[0]["subprotocols"] == ["graphql-ws"]
        assert connector.calls[0]["additional_headers"] == {"Authorization": "Bearer t"}

        ws = connector.sockets[0]
        assert ws.sent == [
            {"type": "connection_init", "payload": {}},
            {"id": "1", "type": "start", "payload": {"query": DOCUMENT}},
            {"id": "2", "type": "start", "payload": {"query": DOCUMENT, "variables": {"id": 1}}},
        ]

    async def test_data_frames_reach_callback(self, manager, connector):
        received = []
        sub_id = await manager.subscribe(DOCUMENT, {}, received.append)
        payload = {"data": {"postAdded": {"id": "1"}}}

        connector.sockets[0].push({"id": sub_id, "type": "data", "payload": payload})
        connector.sockets[0].push({"id": "99", "type": "data", "payload": {"data": {}}})
        await settle()

        assert received == [payload]

    async def test_error_frames_reach_error_callback(self, manager, connector):
        errors = []
        sub_id = await manager.subscribe(DOCUMENT, {}, lambda payload: None, errors.append)

        connector.sockets[0].push({"id": sub_id, "type": "error", "payload": [{"message": "nope"}]})
        await settle()

        assert errors == [[{"message": "nope"}]]

    async def test_async_callbacks(self, manager, connector):
        received = []

        async def on_message(payload):
            received.append(payload)

        await manager.subscribe(DOCUMENT, {}, on_message)
        connector.sockets[0].push({"id": "1", "type": "data", "payload": {"data": {"n": 1}}})
        await settle()

        assert received == [{"data": {"n": 1}}]

    async def test_failing_callback_does_not_stop_reader(self, manager, connector, caplog):
        received = []

        def on_message(payload):
            received.append(payload)
            raise RuntimeError("subscriber bug")

        await manager.subscribe(DOCUMENT, {}, on_message)
        ws = connector.sockets[0]
        ws.push({"id": "1", "type": "data", "payload": {"n": 1}})
        ws.push({"id": "1", "type": "data", "payload": {"n": 2}})
        await settle()

        assert len(received) == 2
        assert "Subscription callback raised" in caplog.text

    async def test_unsubscribe(self, manager, connector):
        received = []
        sub_id = await manager.subscribe(DOCUMENT, {}, received.append)
        await manager.unsubscribe(sub_id)

        ws = connector.sockets[0]
        assert ws.sent[-1] == {"id": sub_id, "type": "stop"}
        ws.push({"id": sub_id, "type": "data", "payload": {}})
        await settle()
        assert received == []

    async def test_complete_frame_ends_subscription(self, manager, connector):
        received = []
        await manager.subscribe(DOCUMENT, {}, received.append)
        ws = connector.sockets[0]
        ws.push({"id": "1", "type": "complete"})
        ws.push({"id": "1", "type": "data", "payload": {}})
        await settle()
        assert received == []

    async def test_close(self, manager, connector):
        await manager.subscribe(DOCUMENT, {}, lambda payload: None)
        await manager.close()
        assert connector.sockets[0].closed
        assert not manager.connected

    async def test_reconnect_restarts_subscriptions(self, manager, connector):
        received = []
        await manager.subscribe(DOCUMENT, {}, received.append)

        connector.sockets[0].drop()
        await settle()

        assert len(connector.sockets) == 2
        second = connector.sockets[1]
        assert second.sent == [
            {"type": "connection_init", "payload": {}},
            {"id": "1", "type": "start", "payload": {"query": DOCUMENT}},
        ]
        second.push({"id": "1", "type": "data", "payload": {"n": 1}})
        await settle()
        assert received == [{"n": 1}]

    async def test_drop_without_reconnect_fails_subscriptions(self, connector):
        manager = SubscriptionManager("ws://api.test/graphql", reconnect=False, connect=connector)
        errors = []
        await manager.subscribe(DOCUMENT, {}, lambda payload: None, errors.append)

        connector.sockets[0].drop()
        await settle()

        (error,) = errors
        assert error["kind"] == "transport"
        assert len(connector.sockets) == 1
        await manager.close()

    async def test_refused_connection(self):
        ws = FakeWebSocket(ack=False)
        ws.push({"type": "ka"})
        ws.push({"type": "connection_error", "payload": {"message": "unauthorized"}})
        manager = SubscriptionManager("ws://api.test/graphql", connect=FakeConnector(ws))

        with pytest.raises(ConnectionError):
            await manager.subscribe(DOCUMENT, {}, lambda payload: None)
        assert ws.closed
        assert not manager.connected

    async def test_bad_frames_are_skipped(self, manager, connector, caplog):
        received = []
        await manager.subscribe(DOCUMENT, {}, received.append)
        ws = connector.sockets[0]

        ws.incoming.put_nowait("not json")
        ws.push([1, 2])
        ws.push({"id": "1", "type": "data", "payload": {"n": 1}})
        await settle()

        assert received == [{"n": 1}]
        assert not manager._reader.done()
        assert "Ignoring undecodable frame" in caplog.text
        assert "Ignoring unexpected frame" in caplog.text

    async def test_reconnect_survives_rejected_handshake(self, connector, caplog):
        connector.queued = [FakeWebSocket(), InvalidHandshake("server rejected WebSocket connection: HTTP 503")]
        manager = SubscriptionManager("ws://api.test/graphql", reconnect_delay=0, connect=connector)
        await manager.subscribe(DOCUMENT, {}, lambda payload: None)

        connector.sockets[0].drop()
        await settle()

        assert len(connector.calls) == 3
        assert len(connector.sockets) == 2
        assert connector.sockets[1].sent[-1] == {"id": "1", "type": "start", "payload": {"query": DOCUMENT}}
        assert manager.connected
        assert "Reconnecting to ws://api.test/graphql failed" in caplog.text
        await manager.close()

    async def test_failed_connect_registers_nothing(self):
        connector = FakeConnector(OSError("connection refused"))
        manager = SubscriptionManager("ws://api.test/graphql", connect=connector)

        with pytest.raises(OSError):
            await manager.subscribe(DOCUMENT, {}, lambda payload: None)
        assert not manager.connected

        assert await manager.subscribe(DOCUMENT, {}, lambda payload: None) == "1"
        await manager.close()


class TestClientSubscribe:
    """GraphQLClient.subscribe normalizes stream messages."""

    async def test_messages_are_normalized(self, catalog, manager, connector):
        client = GraphQLClient("http://api.test/graphql", catalog, transport=FakeTransport(), subscriptions=manager)
        received = []
        errors = []

        subscription = await client.subscribe(
            received.append, "postAdded", None, ["author"], on_error=errors.append
        )
        ws = connector.sockets[0]
        assert ws.sent[1]["payload"]["query"] == (
            "subscription do { postAdded { id title author{id name} } }"
        )

        ws.push({"id": subscription.id, "type": "data", "payload": {"data": {"postAdded": {"id": "7"}}}})
        ws.push({"id": subscription.id, "type": "error", "payload": [{"message": "denied"}]})
        await settle()

        assert received == [{"id": "7"}]
        assert errors == [{"errors": [{"message": "denied"}]}]

        await subscription.unsubscribe()
        assert ws.sent[-1] == {"id": subscription.id, "type": "stop"}

    async def test_errors_are_logged_without_handler(self, catalog, manager, connector, caplog):
        client = GraphQLClient("http://api.test/graphql", catalog, transport=FakeTransport(), subscriptions=manager)
        await client.subscribe(lambda result: None, "postAdded")

        connector.sockets[0].push({"id": "1", "type": "error", "payload": {"message": "gone"}})
        await settle()

        assert "Subscription error on postAdded" in caplog.text

    async def test_failed_connect_goes_to_error_callback(self, catalog):
        connector = FakeConnector(OSError("connection refused"))
        manager = SubscriptionManager("ws://api.test/graphql", connect=connector)
        client = GraphQLClient("http://api.test/graphql", catalog, transport=FakeTransport(), subscriptions=manager)
        errors = []

        subscription = await client.subscribe(lambda result: None, "postAdded", on_error=errors.append)

        assert subscription is None
        assert errors == [{"errors": [{"message": "connection refused", "kind": "transport"}]}]

        subscription = await client.subscribe(lambda result: None, "postAdded", on_error=errors.append)
        assert subscription.id == "1"
        assert len(errors) == 1
        await client.close()

    async def test_failed_connect_is_logged_without_handler(self, catalog, caplog):
        connector = FakeConnector(OSError("connection refused"))
        manager = SubscriptionManager("ws://api.test/graphql", connect=connector)
        client = GraphQLClient("http://api.test/graphql", catalog, transport=FakeTransport(), subscriptions=manager)

        assert await client.subscribe(lambda result: None, "postAdded") is None
        assert "Subscription error on postAdded" in caplog.text
        assert "connection refused" in caplog.text
        await client.close()
