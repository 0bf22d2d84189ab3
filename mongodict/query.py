"""Query execution against the configured collection."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping

from bson import json_util
from bson.errors import BSONError
from bson.json_util import RELAXED_JSON_OPTIONS
from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError

from .config import ConnectionConfig
from .connections import TransientError

LOG = logging.getLogger(__name__)

_MISSING = object()


class QueryError(RuntimeError):
    """Raised when a lookup query fails for a reason a retry will not fix."""


class QueryExecutor:
    """Runs the single-field equality lookup for one table."""

    def __init__(self, config: ConnectionConfig) -> None:
        self._config = config

    def build_filter(self, key: str) -> dict[str, str]:
        return {self._config.key_field: key}

    def projection(self) -> dict[str, int] | None:
        """Fetch only the value field unless the whole document may be returned."""

        field = self._config.value_field
        if field is None or self._config.document_fallback:
            return None
        return {field: 1, "_id": 0}

    def find(self, client: MongoClient, key: str) -> str | None:
        """Return the value stored for ``key`` or None when nothing matches.

        Transport failures surface as TransientError so the caller can
        reconnect; every other driver error is a QueryError.
        """

        collection = client[self._config.dbname][self._config.collection]
        started = time.perf_counter()
        try:
            document = collection.find_one(self.build_filter(key), projection=self.projection())
        except ConnectionFailure as exc:
            raise TransientError(f"Lookup in {self._config.namespace} lost its connection: {exc}") from exc
        except PyMongoError as exc:
            raise QueryError(f"Lookup in {self._config.namespace} failed: {exc}") from exc
        except (BSONError, UnicodeError) as exc:
            # Keys that are not valid UTF-8, or stored documents that fail to decode.
            raise QueryError(f"Lookup in {self._config.namespace} failed: {exc}") from exc
        LOG.debug(
            "Lookup query finished",
            extra={
                "namespace": self._config.namespace,
                "matched": document is not None,
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        if document is None:
            return None
        return self.extract(document)

    def extract(self, document: Mapping[str, Any]) -> str | None:
        field = self._config.value_field
        if field is None:
            return _render(document)
        value = _get_path(document, field)
        if value is _MISSING:
            if self._config.document_fallback:
                return _render(document)
            LOG.warning(
                "Matched document has no value field",
                extra={"namespace": self._config.namespace, "field": field},
            )
            return None
        if value is None:
            return None
        return _render(value)


def _get_path(document: Mapping[str, Any], path: str) -> Any:
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json_util.dumps(value, json_options=RELAXED_JSON_OPTIONS)


__all__ = ["QueryError", "QueryExecutor"]
