"""Tests for the lookup query executor."""

from __future__ import annotations

import json

import pytest
from bson.errors import InvalidBSON
from pymongo.errors import AutoReconnect, NetworkTimeout, OperationFailure

from mongodict.config import config_from_mapping
from mongodict.connections import TransientError
from mongodict.query import QueryError, QueryExecutor


def _executor(options: dict[str, str]) -> QueryExecutor:
    return QueryExecutor(config_from_mapping(options))


def test_find_returns_value_field(server, base_options) -> None:
    server.insert("mail", "aliases", {"email": "a@b.com", "value": "x@y.com"})
    executor = _executor(base_options)

    assert executor.find(server.client_factory(), "a@b.com") == "x@y.com"
    assert server.find_calls == [{"email": "a@b.com"}]


def test_find_returns_none_without_match(server, base_options) -> None:
    executor = _executor(base_options)

    assert executor.find(server.client_factory(), "nobody@b.com") is None


def test_find_uses_configured_fields(server, base_options) -> None:
    base_options.update({"key": "address", "value": "goto", "collection": "forwards"})
    server.insert("mail", "forwards", {"address": "a@b.com", "goto": "c@d.com"})
    executor = _executor(base_options)

    assert executor.build_filter("a@b.com") == {"address": "a@b.com"}
    assert executor.find(server.client_factory(), "a@b.com") == "c@d.com"


def test_non_string_values_are_rendered(server, base_options) -> None:
    server.insert(
        "mail",
        "aliases",
        {"email": "list@b.com", "value": ["a@b.com", "c@b.com"]},
        {"email": "n@b.com", "value": 42},
    )
    executor = _executor(base_options)
    client = server.client_factory()

    assert json.loads(executor.find(client, "list@b.com")) == ["a@b.com", "c@b.com"]
    assert executor.find(client, "n@b.com") == "42"


def test_null_value_is_a_miss(server, base_options) -> None:
    server.insert("mail", "aliases", {"email": "a@b.com", "value": None})
    executor = _executor(base_options)

    assert executor.find(server.client_factory(), "a@b.com") is None


def test_dotted_value_field(server, base_options) -> None:
    base_options["value"] = "route.target"
    server.insert("mail", "aliases", {"email": "a@b.com", "route": {"target": "x@y.com"}})
    executor = _executor(base_options)

    assert executor.find(server.client_factory(), "a@b.com") == "x@y.com"


def test_missing_value_field_falls_back_to_document(server, base_options) -> None:
    server.insert("mail", "aliases", {"email": "a@b.com", "other": "x"})
    executor = _executor(base_options)

    value = executor.find(server.client_factory(), "a@b.com")

    assert json.loads(value) == {"email": "a@b.com", "other": "x"}


def test_missing_value_field_without_fallback_is_a_miss(server, base_options) -> None:
    base_options["document_fallback"] = "no"
    server.insert("mail", "aliases", {"email": "a@b.com", "other": "x"})
    executor = _executor(base_options)

    assert executor.projection() == {"value": 1, "_id": 0}
    assert executor.find(server.client_factory(), "a@b.com") is None


def test_unset_value_field_returns_document(server, base_options) -> None:
    base_options.pop("value")
    server.insert("mail", "aliases", {"email": "a@b.com", "value": "x@y.com"})
    executor = _executor(base_options)

    assert executor.projection() is None
    value = executor.find(server.client_factory(), "a@b.com")
    assert json.loads(value) == {"email": "a@b.com", "value": "x@y.com"}


@pytest.mark.parametrize("error", [AutoReconnect("connection reset"), NetworkTimeout("timed out")])
def test_transport_failures_are_transient(server, base_options, error) -> None:
    server.find_errors.append(error)
    executor = _executor(base_options)

    with pytest.raises(TransientError):
        executor.find(server.client_factory(), "a@b.com")


def test_other_failures_are_query_errors(server, base_options) -> None:
    server.find_errors.append(OperationFailure("not authorized on mail", code=13))
    executor = _executor(base_options)

    with pytest.raises(QueryError):
        executor.find(server.client_factory(), "a@b.com")


def test_undecodable_documents_are_query_errors(server, base_options) -> None:
    server.find_errors.append(InvalidBSON("invalid utf-8 in value"))
    executor = _executor(base_options)

    with pytest.raises(QueryError):
        executor.find(server.client_factory(), "a@b.com")


def test_unencodable_keys_are_query_errors(server, base_options) -> None:
    executor = _executor(base_options)

    with pytest.raises(QueryError):
        executor.find(server.client_factory(), "a\udcff@b.com")
