"""In-memory stand-ins for a MongoDB deployment."""

from __future__ import annotations

from typing import Any

import bson
import pytest
from pymongo.errors import AutoReconnect, OperationFailure, ServerSelectionTimeoutError


class FakeServer:
    """A deployment shared by every client it hands out.

    ``drop_connections()`` breaks existing clients (new ones work again);
    ``reachable = False`` refuses every client.
    """

    def __init__(self, *, users: dict[str, str] | None = None) -> None:
        self.users = dict(users or {})
        self.reachable = True
        self.hide_authenticated_users = False
        self.generation = 0
        self.collections: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.clients: list[FakeClient] = []
        self.find_calls: list[dict[str, Any]] = []
        self.find_errors: list[Exception] = []

    def insert(self, database: str, collection: str, *documents: dict[str, Any]) -> None:
        self.collections.setdefault((database, collection), []).extend(documents)

    def drop_connections(self) -> None:
        self.generation += 1

    def client_factory(self, host: Any = None, port: Any = None, **options: Any) -> FakeClient:
        client = FakeClient(self, host, port, options)
        self.clients.append(client)
        return client

    @property
    def open_clients(self) -> list[FakeClient]:
        return [client for client in self.clients if not client.closed]


class FakeClient:
    def __init__(self, server: FakeServer, host: Any, port: Any, options: dict[str, Any]) -> None:
        self.server = server
        self.host = host
        self.port = port
        self.options = options
        self.generation = server.generation
        self.closed = False
        self.admin = FakeDatabase(self, "admin")

    def __getitem__(self, name: str) -> FakeDatabase:
        return FakeDatabase(self, name)

    def close(self) -> None:
        self.closed = True

    def check_io(self) -> None:
        if not self.server.reachable:
            raise ServerSelectionTimeoutError("localhost:27017: [Errno 111] Connection refused")
        if self.generation != self.server.generation:
            raise AutoReconnect("localhost:27017: connection closed")
        username = self.options.get("username")
        if username is not None and self.server.users.get(username) != self.options.get("password"):
            raise OperationFailure("Authentication failed.", code=18)


class FakeDatabase:
    def __init__(self, client: FakeClient, name: str) -> None:
        self.client = client
        self.name = name

    def __getitem__(self, name: str) -> FakeCollection:
        return FakeCollection(self.client, self.name, name)

    def command(self, name: str) -> dict[str, Any]:
        self.client.check_io()
        if name == "ping":
            return {"ok": 1.0}
        if name == "connectionStatus":
            username = self.client.options.get("username")
            users = [{"user": username, "db": self.client.options.get("authSource")}] if username else []
            if self.client.server.hide_authenticated_users:
                users = []
            return {"authInfo": {"authenticatedUsers": users, "authenticatedUserRoles": []}, "ok": 1.0}
        raise OperationFailure(f"no such command: '{name}'", code=59)


class FakeCollection:
    def __init__(self, client: FakeClient, database: str, name: str) -> None:
        self.client = client
        self.database = database
        self.name = name

    def find_one(self, filter: dict[str, Any], projection: dict[str, int] | None = None) -> dict[str, Any] | None:
        server = self.client.server
        server.find_calls.append(dict(filter))
        # the driver encodes the filter before touching the network
        bson.encode(filter)
        if server.find_errors:
            raise server.find_errors.pop(0)
        self.client.check_io()
        for document in server.collections.get((self.database, self.name), []):
            if all(document.get(field) == value for field, value in filter.items()):
                if projection:
                    return {field: document[field] for field, flag in projection.items() if flag and field in document}
                return dict(document)
        return None


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def base_options() -> dict[str, str]:
    return {
        "host": "localhost",
        "port": "27017",
        "dbname": "mail",
        "collection": "aliases",
        "key": "email",
        "value": "value",
    }
