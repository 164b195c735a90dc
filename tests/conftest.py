"""Shared fixtures: a small blog catalog and fake transports."""

import asyncio
import json

import pytest

from gql_dyn.core.catalog import Catalog

DEFINITIONS = {
    "entities": {
        "user": {
            "entity": "User",
            "fields": "id name",
            "availableInc": {
                "posts": {"type": "post", "args": {"first": "Int", "after": "String"}},
                "profile": {"type": "profile", "args": {}},
                "friends": {"type": "user", "args": {"first": "Int!"}},
                "avatar": {"type": "image", "args": {"size": "Int"}},
            },
        },
        "post": {
            "entity": "Post",
            "fields": "id title",
            "availableInc": {
                "author": {"type": "user", "args": {}},
                "comments": {"type": "comment", "args": {"first": "Int"}},
            },
        },
        "comment": {
            "entity": "Comment",
            "fields": "id body",
            "availableInc": {"author": {"type": "user", "args": {}}},
        },
        "profile": {"entity": "Profile", "fields": "bio", "availableInc": {}},
    },
    "query": {
        "user": [{"id": "ID!"}, "user"],
        "users": [{"first": "Int", "filter": "UserFilter"}, "user"],
        "post": [{"id": "ID!"}, "post"],
        "version": [{}, "string"],
    },
    "mutation": {
        "addPost": [{"input": "PostInput!"}, "post"],
        "login": [{"email": "String!", "password": "String!"}, "session"],
    },
    "subscription": {
        "postAdded": [{}, "post"],
    },
}


@pytest.fixture
def definitions():
    return json.loads(json.dumps(DEFINITIONS))


@pytest.fixture
def catalog(definitions):
    return Catalog.model_validate(definitions)


class FakeTransport:
    """Transport returning queued raw results and recording every call."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def execute(self, document, variables, options=None):
        self.calls.append({"document": document, "variables": variables, "options": options})
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0] if self.results else {"data": {}}


class GatedTransport:
    """Transport whose calls only finish when their gate is opened."""

    def __init__(self):
        self.gates: list[asyncio.Event] = []
        self.calls = []

    async def execute(self, document, variables, options=None):
        gate = asyncio.Event()
        self.gates.append(gate)
        self.calls.append(variables)
        await gate.wait()
        return {"data": {"users": dict(variables)}}


@pytest.fixture
def fake_transport():
    return FakeTransport({"data": {}})


async def settle(rounds: int = 10):
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
