"""Lookup table surface: open, lookup, close."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

from .address import normalize_address
from .config import ConfigError, ConnectionConfig, config_from_mapping, load_config
from .connections import AuthError, ClientConfigError, ClientFactory, ConnectError, ConnectionManager, TransientError
from .models import ConnectionState, ErrorKind, LookupResult
from .query import QueryError, QueryExecutor

LOG = logging.getLogger(__name__)


@runtime_checkable
class LookupTable(Protocol):
    """Protocol implemented by opened tables and their surrogates."""

    name: str

    def lookup(self, key: str) -> LookupResult:
        """Resolve ``key``; never raises."""

    def close(self) -> None:
        """Release held resources."""


class MongoResolver:
    """Resolves keys against one MongoDB collection.

    Every lookup is a fresh round trip; nothing is cached. Lookups are
    serialized so one resolver can be shared between threads.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        name: str = "",
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.name = name or config.namespace
        self._config = config
        self._manager = ConnectionManager(config, client_factory=client_factory)
        self._executor = QueryExecutor(config)
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_mapping(
        cls,
        options: Mapping[str, object],
        *,
        name: str = "",
        client_factory: ClientFactory | None = None,
    ) -> MongoResolver:
        """Open from an already parsed option mapping; raises ConfigError."""

        return cls(config_from_mapping(options), name=name, client_factory=client_factory)

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._manager.state

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self) -> bool:
        """Connect ahead of the first lookup; failures are left for lookup to report."""

        with self._lock:
            if self._closed:
                return False
            try:
                self._manager.ensure_connected()
            except (AuthError, ClientConfigError):
                return False
            except ConnectError as exc:
                LOG.warning("Deferring MongoDB connection to first lookup", extra={"table": self.name, "reason": str(exc)})
                return False
            return True

    def check(self) -> ErrorKind | None:
        """Connect if needed and ping the server; None means healthy."""

        with self._lock:
            if self._closed:
                return ErrorKind.UNAVAILABLE
            try:
                self._manager.ensure_connected()
                healthy = self._manager.ping()
            except AuthError:
                return ErrorKind.AUTH
            except ClientConfigError:
                return ErrorKind.CONFIG
            except ConnectError:
                return ErrorKind.UNAVAILABLE
            return None if healthy else ErrorKind.UNAVAILABLE

    def lookup(self, key: str) -> LookupResult:
        with self._lock:
            if self._closed:
                return LookupResult.failure(ErrorKind.UNAVAILABLE, f"table {self.name} is closed")
            try:
                return self._lookup(key)
            except AuthError as exc:
                return LookupResult.failure(ErrorKind.AUTH, str(exc))
            except ClientConfigError as exc:
                return LookupResult.failure(ErrorKind.CONFIG, str(exc))
            except ConnectError as exc:
                LOG.warning("Lookup failed: no connection to MongoDB server", extra={"table": self.name, "reason": str(exc)})
                return LookupResult.failure(ErrorKind.UNAVAILABLE, str(exc))
            except QueryError as exc:
                LOG.warning("Lookup failed", extra={"table": self.name, "reason": str(exc)})
                return LookupResult.failure(ErrorKind.QUERY, str(exc))

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._manager.close()

    def __enter__(self) -> MongoResolver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _lookup(self, key: str) -> LookupResult:
        client = self._manager.ensure_connected()
        normalized = normalize_address(key)
        reconnects = 0
        while True:
            try:
                value = self._executor.find(client, normalized)
            except TransientError:
                self._manager.mark_disconnected()
                if reconnects >= self._config.max_reconnects:
                    raise
                reconnects += 1
                client = self._manager.reconnect()
                continue
            break
        if value is None:
            return LookupResult.miss()
        return LookupResult.hit(value)


class SurrogateResolver:
    """Stand-in for a table that could not be opened; every lookup fails."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason

    def lookup(self, key: str) -> LookupResult:
        LOG.warning("Lookup on unusable table", extra={"table": self.name, "reason": self.reason})
        return LookupResult.failure(ErrorKind.CONFIG, self.reason)

    def close(self) -> None:
        return None

    def __enter__(self) -> SurrogateResolver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_table(
    name: str | Path,
    flags: int = os.O_RDONLY,
    *,
    client_factory: ClientFactory | None = None,
) -> MongoResolver | SurrogateResolver:
    """Open the table described by the file ``name``.

    Configuration problems do not raise: they yield a SurrogateResolver so
    the caller can keep running and report the failure per lookup.
    """

    label = str(name)
    if flags & (os.O_WRONLY | os.O_RDWR):
        return SurrogateResolver(label, f"mongodb:{label} map requires O_RDONLY access mode")
    try:
        config = load_config(name)
    except ConfigError as exc:
        LOG.warning("Cannot open table", extra={"table": label, "reason": str(exc)})
        return SurrogateResolver(label, str(exc))
    resolver = MongoResolver(config, name=label, client_factory=client_factory)
    if config.connect_on_open:
        resolver.connect()
    return resolver


__all__ = ["LookupTable", "MongoResolver", "SurrogateResolver", "open_table"]
